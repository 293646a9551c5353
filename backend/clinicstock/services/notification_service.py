# Overview: Low-stock detection and in-app notification fan-out.

from __future__ import annotations

from ..extensions import db
from ..models import InAppNotification, Item, Location, PracticeMembership
from ..permissions import MembershipStatus, PracticeRole
from ..time_utils import hours_ago


NOTIFICATION_TYPE_LOW_STOCK = "LOW_STOCK"

# An unread LOW_STOCK notice for the same item/location suppresses new ones
LOW_STOCK_DEDUPE_HOURS = 24

NOTIFIED_ROLES = (PracticeRole.ADMIN, PracticeRole.STAFF)


class LowStockChecker:
    """
    Creates LOW_STOCK notifications when a quantity drops below its reorder point.

    Writes into the caller's transaction (flush only).
    """

    def check_and_notify(
        self,
        *,
        practice_id: int,
        item_id: int,
        location_id: int,
        new_quantity: int,
        reorder_point: int | None,
    ) -> list[InAppNotification]:
        if reorder_point is None or new_quantity >= reorder_point:
            return []

        item = db.session.get(Item, item_id)
        location = db.session.get(Location, location_id)
        if item is None or location is None:
            return []

        recent = db.session.query(InAppNotification).filter(
            InAppNotification.practice_id == practice_id,
            InAppNotification.type == NOTIFICATION_TYPE_LOW_STOCK,
            InAppNotification.item_id == item_id,
            InAppNotification.location_id == location_id,
            InAppNotification.read.is_(False),
            InAppNotification.created_at >= hours_ago(LOW_STOCK_DEDUPE_HOURS),
        ).first()
        if recent is not None:
            return []

        memberships = db.session.query(PracticeMembership).filter(
            PracticeMembership.practice_id == practice_id,
            PracticeMembership.role.in_(NOTIFIED_ROLES),
            PracticeMembership.status == MembershipStatus.ACTIVE,
        ).all()

        notifications = [
            InAppNotification(
                practice_id=practice_id,
                user_id=membership.user_id,
                type=NOTIFICATION_TYPE_LOW_STOCK,
                title=f"Low stock: {item.name}",
                message=(
                    f'Location "{location.name}" is below its reorder point '
                    f"({new_quantity} < {reorder_point})."
                ),
                item_id=item_id,
                location_id=location_id,
            )
            for membership in memberships
        ]
        db.session.add_all(notifications)
        db.session.flush()
        return notifications
