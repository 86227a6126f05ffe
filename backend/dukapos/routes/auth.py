# Overview: Flask API routes for login, logout and the current user.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..permissions import get_role_permissions
from ..services import auth_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login():
    """
    Request body: {"username": str, "password": str}

    Returns:
        200: {"token": str, "user": {...}}
        400: Missing credentials
        401: Invalid credentials
    """
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return jsonify({"error": "validation_error", "message": "username and password required"}), 400

    try:
        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"error": "unauthenticated", "message": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "token": token,
            "expires_at": session.to_dict()["expires_at"],
            "user": user.to_dict(),
        })
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout():
    token = request.headers["Authorization"].split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"status": "logged_out"})


@auth_bp.get("/me")
@require_auth
def me():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "store_id": g.store_id,
        "permissions": sorted(get_role_permissions(user.role)),
    })
