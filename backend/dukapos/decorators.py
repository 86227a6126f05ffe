# Overview: Request authentication and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .permissions import PermissionDeniedError, require_permission as check_permission
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and g.current_user is not None


def require_auth(f):
    """
    Require a bearer token and establish the acting user.

    Sets:
    - g.current_user: the authenticated User
    - g.store_id: the session's store (None for org-level users)
    - g.session_context: the full SessionContext

    Returns 401 when the header is missing or the token is invalid/expired.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "unauthenticated", "message": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "unauthenticated", "message": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.store_id = context.store_id
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require the acting user's role to grant permission_code (403 otherwise)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "unauthenticated", "message": "Authentication required"}), 401

            try:
                check_permission(g.current_user, permission_code)
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "permission_denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def resolve_store_id(requested=None):
    """
    Store scope for the current request.

    Store-bound users always act on their own store. Org-level users
    (store_id NULL) must name one via body/query "store_id".
    """
    if g.get("store_id"):
        return g.store_id
    if requested is None:
        requested = request.args.get("store_id", type=int)
    return requested
