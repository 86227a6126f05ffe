# Overview: Flask API routes for the signed-in user's notifications.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import notification_service
from ..validation import DOMAIN_ERRORS, error_payload


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """
    Query params: unread (1/true), limit (max 200)
    """
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    limit = max(1, min(request.args.get("limit", 50, type=int), 200))
    rows = notification_service.list_for_user(g.current_user.id, unread_only=unread_only, limit=limit)
    return jsonify({"items": [row.to_dict() for row in rows], "count": len(rows)})


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        row = notification_service.mark_read(notification_id, g.current_user.id)
        return jsonify({"notification": row.to_dict()})
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code


@notifications_bp.post("/read-all")
@require_auth
def mark_all_read_route():
    updated = notification_service.mark_all_read(g.current_user.id)
    return jsonify({"updated": updated})
