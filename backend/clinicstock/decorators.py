# Overview: Request decorators that establish the acting user and practice.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Practice, User
from .services import permission_service
from .validation import coerce_id
from .errors import ValidationError


def _header_id(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return coerce_id(raw.strip(), name)
    except ValidationError:
        return None


def _unresolved_reason(user_id, practice_id, known_user, known_practice) -> str:
    if not known_user:
        return f"Unknown user id {user_id}"
    if not known_practice:
        return f"Unknown practice id {practice_id}"
    return "No active membership for requested practice"


def require_actor(f):
    """
    Establish the request's actor from the trusted gateway headers.

    MULTI-TENANT: Sets g.actor to a RequestContext(practice_id, user_id, role)
    built from the user's ACTIVE membership in the practice.

    SECURITY: Returns 401 if:
    - X-User-Id or X-Practice-Id is missing or malformed
    - User is unknown or deactivated
    - User has no active membership in the practice
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = _header_id("X-User-Id")
        practice_id = _header_id("X-Practice-Id")

        if user_id is None or practice_id is None:
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401

        actor = permission_service.resolve_request_context(user_id, practice_id)
        if actor is None:
            # Unknown ids are kept in the reason only; the event columns are foreign keys
            known_user = db.session.get(User, user_id) is not None
            known_practice = db.session.get(Practice, practice_id) is not None
            permission_service.log_security_event(
                user_id=user_id if known_user else None,
                event_type="UNAUTHENTICATED",
                success=False,
                resource=request.path,
                action=request.method,
                reason=_unresolved_reason(user_id, practice_id, known_user, known_practice),
                practice_id=practice_id if known_practice else None,
            )
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function
