# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .errors import PermissionDeniedError, ValidationError
from .permissions import ROLE_CUSTOMER
from .services import permission_service


def resolve_caller(f):
    """
    Load the caller identity resolved upstream into Flask g.

    Sets:
    - g.user_id: customer id from X-User-Id (None for guests)
    - g.session_id: guest cart session from X-Session-Id
    - g.role: X-User-Role, defaulting to customer for signed-in callers

    Token issuance and validation happen in front of this service.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user_id = (request.headers.get("X-User-Id") or "").strip()
        if raw_user_id:
            if not raw_user_id.isdigit() or int(raw_user_id) < 1:
                error = ValidationError("X-User-Id", "must be a positive integer")
                return jsonify(error.to_dict()), error.status_code
            g.user_id = int(raw_user_id)
        else:
            g.user_id = None

        g.session_id = (request.headers.get("X-Session-Id") or "").strip() or None

        role = (request.headers.get("X-User-Role") or "").strip() or None
        if role is None and g.user_id is not None:
            role = ROLE_CUSTOMER
        g.role = role

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a role permission. Must be applied after @resolve_caller."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if getattr(g, "role", None) is None:
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(g.role, permission_code)
            except PermissionDeniedError as e:
                return jsonify(e.to_dict()), e.status_code

            return f(*args, **kwargs)

        return decorated_function

    return decorator


def current_actor() -> str:
    """Audit label for the caller, e.g. "admin:7" or "guest"."""
    if g.user_id is not None:
        return f"{g.role}:{g.user_id}"
    return g.role or "guest"
