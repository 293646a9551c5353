from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Practice(db.Model):
    """
    Multi-tenant root: every tenant is a Practice.

    All locations, items, counts and memberships belong to exactly one
    practice. No data may cross practice boundaries.
    """
    __tablename__ = "practices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Practice id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Location(db.Model):
    """
    Storage location within a practice (clinic room, pharmacy, van...).

    Location names are unique within a practice, not globally.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("practice_id", "name", name="uq_locations_practice_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    practice = db.relationship("Practice", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} practice_id={self.practice_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    User account. Authentication lives upstream; this row exists for
    attribution (who created a count, who adjusted stock).
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PracticeMembership(db.Model):
    """
    A user's role within one practice.

    A user may belong to several practices with different roles; the role
    used for a request is the one for the practice the request is scoped to.
    """
    __tablename__ = "practice_memberships"
    __table_args__ = (
        db.UniqueConstraint("practice_id", "user_id", name="uq_practice_memberships_practice_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # VIEWER, STAFF, ADMIN
    role = db.Column(db.String(16), nullable=False, default="STAFF")
    # ACTIVE, INVITED, SUSPENDED
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    practice = db.relationship("Practice", backref=db.backref("memberships", lazy=True))
    user = db.relationship("User", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
