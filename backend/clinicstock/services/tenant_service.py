"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Centralize tenant scoping so no repository call repeats the practice
filter ad hoc. Every lookup of tenant-owned data goes through scoped_query.

SECURITY INVARIANTS:
1. Every service call carries a RequestContext with practice_id
2. IDs from client input are resolved inside the actor's practice only
3. Cross-tenant access surfaces as NotFound, never as Forbidden
4. Cross-tenant access attempts are logged as security events

USAGE:
    from clinicstock.services.tenant_service import require_location_in_practice

    location = require_location_in_practice(location_id, actor.practice_id)
"""

from __future__ import annotations

from flask import g, has_request_context, request

from ..errors import NotFoundError
from ..extensions import db
from ..models import Item, Location, StockCountLine, StockCountSession
from .concurrency import lock_for_update
from .permission_service import log_security_event


def scoped_query(model, practice_id: int):
    """
    Base query for a practice-owned model, filtered to one tenant.

    Args:
        model: SQLAlchemy model class with a practice_id column
        practice_id: Tenant to scope to (mandatory)

    Usage:
        sessions = scoped_query(StockCountSession, actor.practice_id).all()
    """
    if practice_id is None:
        raise ValueError("practice_id is required for scoped queries")
    return db.session.query(model).filter(model.practice_id == practice_id)


def _require_scoped(model, entity: str, entity_id: int, practice_id: int, *, lock: bool = False):
    query = scoped_query(model, practice_id).filter(model.id == entity_id)
    if lock:
        # Locked reads must not be answered from the identity map
        query = lock_for_update(query).populate_existing()
    found = query.first()
    if found is not None:
        return found

    other_practice_id = db.session.query(model.practice_id).filter(model.id == entity_id).scalar()
    if other_practice_id is not None:
        # CRITICAL: Cross-tenant access attempt
        _log_cross_tenant_attempt(
            f"{entity} {entity_id} belongs to practice {other_practice_id}, not {practice_id}",
            practice_id=practice_id,
        )
    # Don't reveal it exists in another practice
    raise NotFoundError(entity, entity_id)


def require_location_in_practice(location_id: int, practice_id: int) -> Location:
    return _require_scoped(Location, "Location", location_id, practice_id)


def require_item_in_practice(item_id: int, practice_id: int) -> Item:
    return _require_scoped(Item, "Item", item_id, practice_id)


def require_session_in_practice(session_id: int, practice_id: int, *, lock: bool = False) -> StockCountSession:
    return _require_scoped(StockCountSession, "Stock count session", session_id, practice_id, lock=lock)


def require_line_in_practice(line_id: int, practice_id: int) -> StockCountLine:
    """Lines carry no practice_id; they are scoped through their session."""
    line = (
        db.session.query(StockCountLine)
        .join(StockCountSession, StockCountLine.session_id == StockCountSession.id)
        .filter(StockCountLine.id == line_id, StockCountSession.practice_id == practice_id)
        .first()
    )
    if line is not None:
        return line

    if db.session.get(StockCountLine, line_id) is not None:
        _log_cross_tenant_attempt(
            f"Count line {line_id} belongs to another practice",
            practice_id=practice_id,
        )
    raise NotFoundError("Count line", line_id)


def _log_cross_tenant_attempt(reason: str, practice_id: int | None = None) -> None:
    """
    Log a cross-tenant access attempt as a security event.

    SECURITY: Critical audit trail for detecting unauthorized access attempts.
    """
    user_id = None
    resource = None
    action = None
    if has_request_context():
        actor = getattr(g, "actor", None)
        user_id = actor.user_id if actor is not None else None
        resource = request.path
        action = request.method

    log_security_event(
        user_id=user_id,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=resource,
        action=action,
        reason=reason,
        practice_id=practice_id,
    )
