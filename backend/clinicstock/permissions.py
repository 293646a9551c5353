"""
Practice roles and the request context every service call receives.

DESIGN PRINCIPLES:
- Roles are ordered; a check asks for a minimum role, never an exact one
- Fail closed: unknown roles rank below VIEWER
- The tenant (practice_id) travels with the actor, never with the payload
"""

from __future__ import annotations

from dataclasses import dataclass


class PracticeRole:
    """Membership roles within a practice."""
    VIEWER = "VIEWER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


ROLE_PRIORITY = {
    PracticeRole.VIEWER: 1,
    PracticeRole.STAFF: 2,
    PracticeRole.ADMIN: 3,
}

ALL_ROLES = tuple(ROLE_PRIORITY)


class MembershipStatus:
    ACTIVE = "ACTIVE"
    INVITED = "INVITED"
    SUSPENDED = "SUSPENDED"


def role_priority(role: str | None) -> int:
    return ROLE_PRIORITY.get(role or "", 0)


def role_satisfies(role: str | None, minimum_role: str) -> bool:
    return role_priority(role) >= role_priority(minimum_role)


@dataclass(frozen=True)
class RequestContext:
    """
    Authenticated actor scoped to one practice (tenant).

    user_id may be None for system callers; operations that attribute
    ownership (creating a count) reject such actors explicitly.
    """
    practice_id: int
    user_id: int | None
    role: str

    def has_role(self, minimum_role: str) -> bool:
        return role_satisfies(self.role, minimum_role)
