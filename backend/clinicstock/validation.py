from __future__ import annotations

from typing import Any

from .errors import ValidationError


SESSION_NOTES_MAX_LENGTH = 512
LINE_NOTES_MAX_LENGTH = 256

# Largest quantity we accept from a counter; well inside a 32-bit column
MAX_COUNT_QUANTITY = 1_000_000_000


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for client input.

    - int (not bool) passes through
    - digit strings (optional leading minus) are parsed
    - floats, decimals, scientific notation and other types are rejected
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_id(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    parsed = coerce_int(value, field)
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return parsed


def validate_counted_quantity(value: Any) -> int:
    if value is None:
        raise ValidationError("counted_quantity is required")
    quantity = coerce_int(value, "counted_quantity")
    if quantity < 0:
        raise ValidationError("Counted quantity cannot be negative")
    if quantity > MAX_COUNT_QUANTITY:
        raise ValidationError(f"Counted quantity cannot exceed {MAX_COUNT_QUANTITY}")
    return quantity


def normalize_notes(value: Any, *, max_length: int, field: str = "notes") -> str | None:
    """Trim notes; blank becomes None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    if not stripped:
        return None
    if len(stripped) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return stripped


def coerce_bool(value: Any, field: str, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
        return False
    raise ValidationError(f"{field} must be a boolean")


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
