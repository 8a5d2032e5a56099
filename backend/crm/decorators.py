# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .permissions import Role
from .services import session_service, permission_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'session_context')


def require_auth(f):
    """
    Require a valid bearer session and establish caller context.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext (identity + role)

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"success": False, "error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"success": False, "error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_permission(resource: str, action: str):
    """
    Require (resource, action) for the caller's role.

    PENDING accounts are always denied; see permission_service.evaluate.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"success": False, "error": "Authentication required"}), 401

            if not permission_service.evaluate(g.current_user.role, resource, action):
                return jsonify({
                    "success": False,
                    "error": "Permission denied",
                    "required_permission": f"{resource}:{action}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_roles(*roles: Role, message: str = "권한이 없습니다."):
    """Require the caller's role to be one of `roles`."""
    allowed = frozenset(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"success": False, "error": "Authentication required"}), 401

            if g.current_user.role_enum not in allowed:
                return jsonify({"success": False, "error": message}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
