# Overview: Role gating and security event logging with practice (tenant) context.

"""
Permission Checking and Security Event Logging

WHY: Enforce minimum-role access control and keep an audit trail of denials.

DESIGN PRINCIPLES:
- Fail closed: missing actor -> Unauthorized, unknown role -> Forbidden
- Log denials only: granted checks are not logged
- Tenant isolation: every event carries the practice_id it was checked under
"""

from __future__ import annotations

from ..errors import ForbiddenError, UnauthorizedError
from ..extensions import db
from ..models import PracticeMembership, SecurityEvent, User
from ..permissions import MembershipStatus, RequestContext, role_satisfies
from ..time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    practice_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    Committed immediately so the record survives the rollback that follows
    a rejected request.

    event_type examples:
    - PERMISSION_DENIED
    - CROSS_TENANT_ACCESS_DENIED
    - UNAUTHENTICATED
    """
    event = SecurityEvent(
        user_id=user_id,
        practice_id=practice_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def resolve_request_context(user_id: int, practice_id: int) -> RequestContext | None:
    """
    Build the actor for a request from an ACTIVE membership.

    Returns None when the user is unknown, inactive, or not an active member
    of the practice; callers treat that as unauthenticated.
    """
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None

    membership = db.session.query(PracticeMembership).filter_by(
        user_id=user_id,
        practice_id=practice_id,
        status=MembershipStatus.ACTIVE,
    ).first()
    if membership is None:
        return None

    return RequestContext(practice_id=practice_id, user_id=user_id, role=membership.role)


class PermissionGate:
    """requireMinimumRole, used identically by every write operation."""

    def require_actor(self, actor: RequestContext | None) -> RequestContext:
        if actor is None or actor.practice_id is None:
            raise UnauthorizedError()
        return actor

    def require_minimum_role(self, actor: RequestContext | None, minimum_role: str, action: str | None = None) -> None:
        actor = self.require_actor(actor)
        if role_satisfies(actor.role, minimum_role):
            return

        # Log only denials (policy: no granted logs)
        log_security_event(
            user_id=actor.user_id,
            event_type="PERMISSION_DENIED",
            success=False,
            action=action or f"MIN_ROLE:{minimum_role}",
            reason=f"Required: {minimum_role}, Has: {actor.role}",
            practice_id=actor.practice_id,
        )
        raise ForbiddenError(f"Insufficient permissions. Required: {minimum_role}, Has: {actor.role}")
