# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .errors import PermissionDenied
from .models import User
from .permissions import auth_context_for_user, validate_permission_code


ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Resolve the acting user and their AuthContext.

    Token mechanics live in the external auth subsystem, which forwards the
    authenticated user id in X-User-Id. Sets:
    - g.current_user: the User row
    - g.auth: the AuthContext handed to services

    Returns 401 when the header is missing, malformed, or names no active user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER, "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required", "error_code": "UNAUTHENTICATED"}), 401

        user = db.session.get(User, int(raw))
        if user is None:
            return jsonify({"error": "Unknown user", "error_code": "UNAUTHENTICATED"}), 401

        try:
            ctx = auth_context_for_user(user)
        except PermissionDenied as e:
            return jsonify({"error": e.message, "error_code": "UNAUTHENTICATED"}), 401

        g.current_user = user
        g.auth = ctx
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a capability of the AuthContext set by @require_actor."""
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission code: {permission_code}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            ctx = getattr(g, "auth", None)
            if ctx is None:
                return jsonify({"error": "Authentication required", "error_code": "UNAUTHENTICATED"}), 401

            if not ctx.has(permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "error_code": PermissionDenied.code,
                    "details": {"required_permission": permission_code, "role": ctx.role},
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
