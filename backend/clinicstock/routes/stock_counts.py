# Overview: Flask API routes for stock count sessions; parses input and returns JSON responses.

# backend/clinicstock/routes/stock_counts.py
"""
Stock count API routes.

All routes require an actor (see decorators.require_actor). Role checks,
tenant scoping and transactions live in the service; routes only translate
between HTTP and service calls.
"""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import DomainError
from ..extensions import db
from ..services.stock_count_service import build_stock_count_service
from ..validation import coerce_bool, require_json_object


stock_counts_bp = Blueprint("stock_counts", __name__, url_prefix="/api/stock-counts")


def _json_error(exc: Exception, failure: str):
    db.session.rollback()
    if isinstance(exc, DomainError):
        return jsonify(exc.to_dict()), exc.status_code
    current_app.logger.exception(failure)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def _payload() -> dict:
    return require_json_object(request.get_json(silent=True))


@stock_counts_bp.get("")
@require_actor
def list_sessions_route():
    """
    List count sessions for the actor's practice, newest first.

    Query: page (default 1), limit (default 50, max 200), status

    count is the size of this page; total counts every matching session.
    """
    try:
        service = build_stock_count_service()
        status = request.args.get("status")
        sessions = service.list_sessions(
            g.actor,
            page=request.args.get("page", 1),
            limit=request.args.get("limit"),
            status=status,
        )
        return jsonify({
            "sessions": sessions,
            "count": len(sessions),
            "total": service.count_sessions(g.actor, status=status),
        })
    except Exception as exc:
        return _json_error(exc, "Failed to list stock counts")


@stock_counts_bp.post("")
@require_actor
def create_session_route():
    """
    Start a count at a location.

    Request body:
    {
        "location_id": int,
        "notes": str (optional)
    }

    Returns:
        201: {"session_id": int}
        403: Role below STAFF
        404: Location not found
        422: Invalid input
    """
    try:
        data = _payload()
        count_session = build_stock_count_service().create_session(
            g.actor,
            data.get("location_id"),
            notes=data.get("notes"),
        )
        return jsonify({"session_id": count_session.id}), 201
    except Exception as exc:
        return _json_error(exc, "Failed to create stock count")


@stock_counts_bp.get("/<int:session_id>")
@require_actor
def get_session_route(session_id: int):
    try:
        return jsonify({"session": build_stock_count_service().get_session(g.actor, session_id)})
    except Exception as exc:
        return _json_error(exc, "Failed to load stock count")


@stock_counts_bp.get("/<int:session_id>/expected-items")
@require_actor
def expected_items_route(session_id: int):
    """Items stocked at the session's location that have no line yet."""
    try:
        items = build_stock_count_service().get_expected_items(g.actor, session_id)
        return jsonify({"items": items, "count": len(items)})
    except Exception as exc:
        return _json_error(exc, "Failed to load expected items")


@stock_counts_bp.get("/<int:session_id>/changes")
@require_actor
def session_changes_route(session_id: int):
    """Preview of ledger changes since lines were counted (completion dialog)."""
    try:
        changes = build_stock_count_service().detect_session_changes(g.actor, session_id)
        return jsonify({
            "changes": [change.to_dict() for change in changes],
            "warnings": [change.describe() for change in changes],
        })
    except Exception as exc:
        return _json_error(exc, "Failed to detect inventory changes")


@stock_counts_bp.post("/<int:session_id>/lines")
@require_actor
def add_line_route(session_id: int):
    """
    Count an item; counting the same item again updates its line.

    Request body:
    {
        "item_id": int,
        "counted_quantity": int,
        "notes": str (optional)
    }
    """
    try:
        data = _payload()
        result = build_stock_count_service().add_or_update_line(
            g.actor,
            session_id,
            data.get("item_id"),
            data.get("counted_quantity"),
            notes=data.get("notes"),
        )
        return jsonify(result.to_dict())
    except Exception as exc:
        return _json_error(exc, "Failed to record count line")


@stock_counts_bp.patch("/lines/<int:line_id>")
@require_actor
def update_line_route(line_id: int):
    try:
        data = _payload()
        result = build_stock_count_service().update_line(
            g.actor,
            line_id,
            data.get("counted_quantity"),
            notes=data.get("notes"),
        )
        return jsonify(result.to_dict())
    except Exception as exc:
        return _json_error(exc, "Failed to update count line")


@stock_counts_bp.delete("/lines/<int:line_id>")
@require_actor
def remove_line_route(line_id: int):
    try:
        build_stock_count_service().remove_line(g.actor, line_id)
        return "", 204
    except Exception as exc:
        return _json_error(exc, "Failed to remove count line")


@stock_counts_bp.post("/<int:session_id>/complete")
@require_actor
def complete_session_route(session_id: int):
    """
    Complete a count.

    Request body:
    {
        "apply_adjustments": bool,
        "admin_override": bool (optional, ADMIN only)
    }

    Returns:
        200: {"adjusted_items": int, "warnings": [str]}
        409: Inventory changed during the count (details.changes lists them)
             or session not in progress
        422: Empty session or negative resulting inventory
    """
    try:
        data = _payload()
        result = build_stock_count_service().complete_session(
            g.actor,
            session_id,
            apply_adjustments=coerce_bool(data.get("apply_adjustments"), "apply_adjustments"),
            admin_override=coerce_bool(data.get("admin_override"), "admin_override"),
        )
        return jsonify(result.to_dict())
    except Exception as exc:
        return _json_error(exc, "Failed to complete stock count")


@stock_counts_bp.post("/<int:session_id>/cancel")
@require_actor
def cancel_session_route(session_id: int):
    try:
        count_session = build_stock_count_service().cancel_session(g.actor, session_id)
        return jsonify({"session": count_session.to_dict()})
    except Exception as exc:
        return _json_error(exc, "Failed to cancel stock count")


@stock_counts_bp.delete("/<int:session_id>")
@require_actor
def delete_session_route(session_id: int):
    try:
        build_stock_count_service().delete_session(g.actor, session_id)
        return "", 204
    except Exception as exc:
        return _json_error(exc, "Failed to delete stock count")
