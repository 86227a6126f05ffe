# Overview: Flask API routes for stock-take submission and review.

"""
Stock-take API routes.

Review is a single endpoint: POST /<id>/review with {"action": "apply"|"reject"}.
/apply and /reject are kept as shorthand.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission, resolve_store_id
from ..services import stock_take_service
from ..validation import DOMAIN_ERRORS, error_payload, parse_review_notes, parse_stock_take_submission


stock_takes_bp = Blueprint("stock_takes", __name__, url_prefix="/api/stock-takes")


@stock_takes_bp.post("")
@require_auth
@require_permission("SUBMIT_STOCK_TAKE")
def submit_stock_take_route():
    """
    Submit a physical count.

    Request body:
    {
        "items": [{"product_id": int, "counted_quantity": int, "notes": str?}],
        "notes": str (optional)
    }

    Returns:
        201: Pending session with items (system snapshot and variance)
    """
    try:
        data = parse_stock_take_submission(request.get_json(silent=True))
        session = stock_take_service.submit_stock_take(
            data,
            user_id=g.current_user.id,
            store_id=resolve_store_id(data.store_id),
        )
        return jsonify({"stock_take": session.to_dict(include_items=True)}), 201

    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit stock-take")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


def _review(session_id: int, action: str, notes):
    if action == "apply":
        return stock_take_service.apply_stock_take(
            session_id,
            user_id=g.current_user.id,
            store_id=resolve_store_id(),
            notes=notes,
        )
    return stock_take_service.reject_stock_take(
        session_id,
        user_id=g.current_user.id,
        store_id=resolve_store_id(),
        notes=notes,
    )


def _review_response(session_id: int, action: str):
    try:
        notes = parse_review_notes(request.get_json(silent=True))
        session = _review(session_id, action, notes)
        return jsonify({"stock_take": session.to_dict(include_items=True)})

    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to %s stock-take %s", action, session_id)
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


@stock_takes_bp.post("/<int:session_id>/review")
@require_auth
@require_permission("REVIEW_STOCK_TAKE")
def review_stock_take_route(session_id: int):
    """
    Apply or reject a pending session.

    Request body: {"action": "apply"|"reject", "notes": str?}

    Returns:
        200: Reviewed session
        404: Not found
        409: Already reviewed, or live stock drifted below the variance
    """
    data = request.get_json(silent=True) or {}
    action = str(data.get("action", "")).strip().lower()
    if action not in ("apply", "reject"):
        return jsonify({"error": "validation_error", "message": "action must be 'apply' or 'reject'"}), 400
    return _review_response(session_id, action)


@stock_takes_bp.post("/<int:session_id>/apply")
@require_auth
@require_permission("REVIEW_STOCK_TAKE")
def apply_stock_take_route(session_id: int):
    return _review_response(session_id, "apply")


@stock_takes_bp.post("/<int:session_id>/reject")
@require_auth
@require_permission("REVIEW_STOCK_TAKE")
def reject_stock_take_route(session_id: int):
    return _review_response(session_id, "reject")


@stock_takes_bp.get("")
@require_auth
@require_permission("SUBMIT_STOCK_TAKE")
def list_stock_takes_route():
    store_id = resolve_store_id()
    if not store_id:
        return jsonify({"error": "validation_error", "message": "store_id required"}), 400

    limit = max(1, min(request.args.get("limit", 100, type=int), 500))
    offset = max(request.args.get("offset", 0, type=int), 0)
    try:
        sessions, total = stock_take_service.list_stock_takes(
            store_id,
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [session.to_dict() for session in sessions],
            "count": total,
            "limit": limit,
            "offset": offset,
        })
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code


@stock_takes_bp.get("/<int:session_id>")
@require_auth
@require_permission("SUBMIT_STOCK_TAKE")
def get_stock_take_route(session_id: int):
    try:
        session = stock_take_service.get_stock_take(session_id, resolve_store_id())
        return jsonify({"stock_take": session.to_dict(include_items=True)})
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
