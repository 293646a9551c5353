# Overview: Domain error taxonomy shared by services, routes, and the CLI.

"""
Domain-level errors.

Every failure a service raises on purpose is a DomainError subclass carrying
a stable code and the HTTP status the route layer should answer with.
Storage-level failures are translated into this taxonomy before they leave
the service layer (see translate_integrity_error).
"""

from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError


class DomainError(Exception):
    """Base class for all business-logic failures."""

    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class UnauthorizedError(DomainError):
    """No authenticated actor."""

    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(DomainError):
    """Authenticated, but the role is insufficient."""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(DomainError):
    """
    Entity missing within the actor's tenant.

    Cross-tenant lookups raise this too, so callers cannot tell
    "exists elsewhere" from "does not exist".
    """

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        message = f"{entity} not found" if entity_id is None else f"{entity} with ID '{entity_id}' not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(DomainError):
    """422-level input problem."""

    code = "VALIDATION_ERROR"
    status_code = 422


class ConflictError(DomainError):
    """409-level duplicate or uniqueness clash."""

    code = "CONFLICT"
    status_code = 409


class BusinessRuleViolationError(DomainError):
    """409-level state machine violation (e.g., editing a completed session)."""

    code = "BUSINESS_RULE_VIOLATION"
    status_code = 409


class ConcurrencyError(DomainError):
    """
    Ledger moved since the count lines were written.

    Carries the list of changed items. Only this kind of failure may be
    overridden, and only by an ADMIN.
    """

    code = "CONCURRENCY_CONFLICT"
    status_code = 409

    def __init__(self, changes: list, message: str | None = None):
        if message is None:
            names = ", ".join(change.describe() for change in changes)
            message = f"Inventory changed during count: {names}"
        super().__init__(message, details={"changes": [change.to_dict() for change in changes]})
        self.changes = list(changes)


class InvariantViolationError(DomainError):
    """A storage constraint fired that pre-flight checks should have caught."""

    code = "INVARIANT_VIOLATION"
    status_code = 500


# Constraint names are declared on the models; keep this table in sync.
CONSTRAINT_MESSAGES = {
    "check_quantity_non_negative": "Inventory quantity cannot be negative",
    "check_quantity_not_zero": "Adjustment quantity cannot be zero",
    "check_counted_quantity_non_negative": "Counted quantity cannot be negative",
    "check_reorder_point_non_negative": "Reorder point must be zero or greater",
    "check_reorder_quantity_positive": "Reorder quantity must be greater than zero",
    "uq_stock_count_lines_session_item": "This item has already been counted in this session",
    "uq_inventory_records_location_item": "Inventory record already exists for this item and location",
    "uq_locations_practice_name": "A location with this name already exists",
}

_UNIQUE_CONSTRAINTS = {
    "uq_stock_count_lines_session_item",
    "uq_inventory_records_location_item",
    "uq_locations_practice_name",
}

_CONSTRAINT_RE = re.compile(r"constraint [`\"']?([A-Za-z0-9_]+)", re.IGNORECASE)
# SQLite reports unique failures by column list instead of constraint name
_SQLITE_UNIQUE_COLUMNS = {
    "stock_count_lines.session_id, stock_count_lines.item_id": "uq_stock_count_lines_session_item",
    "inventory_records.location_id, inventory_records.item_id": "uq_inventory_records_location_item",
    "locations.practice_id, locations.name": "uq_locations_practice_name",
}


def _constraint_name(exc: IntegrityError) -> str | None:
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name

    text = str(orig if orig is not None else exc)
    for columns, name in _SQLITE_UNIQUE_COLUMNS.items():
        if columns in text:
            return name
    for name in CONSTRAINT_MESSAGES:
        if name in text:
            return name
    match = _CONSTRAINT_RE.search(text)
    return match.group(1) if match else None


def translate_integrity_error(exc: IntegrityError) -> DomainError:
    """Map a raw IntegrityError onto the domain taxonomy."""
    name = _constraint_name(exc)
    message = CONSTRAINT_MESSAGES.get(name or "")

    if name in _UNIQUE_CONSTRAINTS or "UNIQUE" in str(exc).upper():
        return ConflictError(message or "A record with this value already exists")

    return InvariantViolationError(
        message or "The operation violated a database constraint",
        details={"constraint": name} if name else None,
    )
