# Overview: Flask API routes for stock receiving, adjustment, movements and reports.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission, resolve_store_id
from ..services import stock_ledger_service
from ..time_utils import parse_date_range
from ..validation import (
    DOMAIN_ERRORS,
    error_payload,
    parse_adjust_stock,
    parse_receive_stock,
    parse_receive_stock_bulk,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _store_required():
    return jsonify({"error": "validation_error", "message": "store_id required"}), 400


@stock_bp.post("/receive")
@require_auth
@require_permission("RECEIVE_STOCK")
def receive_stock_route():
    """
    Receive goods for one product.

    Request body:
    {
        "product_id": int,
        "quantity": int,              // in unit_type units
        "unit_type": "piece|pack|dozen",
        "buying_price": number,       // per unit_type
        "selling_price": number,      // per unit_type
        "notes": str (optional)
    }

    Returns:
        201: Stock log entry and updated product
    """
    try:
        data = parse_receive_stock(request.get_json(silent=True))
        entry = stock_ledger_service.receive_stock(
            data,
            user_id=g.current_user.id,
            store_id=resolve_store_id(data.store_id),
        )
        return jsonify({"stock_log": entry.to_dict(), "product": entry.product.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


@stock_bp.post("/receive/bulk")
@require_auth
@require_permission("RECEIVE_STOCK")
def receive_stock_bulk_route():
    """Receive several products at once; the whole batch succeeds or fails."""
    try:
        items = parse_receive_stock_bulk(request.get_json(silent=True))
        entries = stock_ledger_service.receive_stock_bulk(
            items,
            user_id=g.current_user.id,
            store_id=resolve_store_id(items[0].store_id),
        )
        return jsonify({
            "stock_logs": [entry.to_dict() for entry in entries],
            "received": len(entries),
        }), 201

    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive stock batch")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


@stock_bp.post("/adjust")
@require_auth
@require_permission("ADJUST_STOCK")
def adjust_stock_route():
    """
    Manual stock correction in base units.

    Request body: {"product_id": int, "quantity_delta": int (non-zero), "reason": str}
    """
    try:
        data = parse_adjust_stock(request.get_json(silent=True))
        entry = stock_ledger_service.adjust_stock(
            data,
            user_id=g.current_user.id,
            store_id=resolve_store_id(data.store_id),
        )
        return jsonify({"stock_log": entry.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


@stock_bp.get("/<int:product_id>/movements")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_movements_route(product_id: int):
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))
    try:
        entries = stock_ledger_service.list_movements(product_id, resolve_store_id(), limit=limit)
        return jsonify({"items": [entry.to_dict() for entry in entries], "count": len(entries)})
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code


@stock_bp.get("/<int:product_id>/verify")
@require_auth
@require_permission("VIEW_INVENTORY")
def verify_ledger_route(product_id: int):
    try:
        rows = stock_ledger_service.verify_ledger(product_id, resolve_store_id())
        return jsonify(rows[0])
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code


@stock_bp.get("/low-stock")
@require_auth
@require_permission("VIEW_INVENTORY")
def low_stock_route():
    store_id = resolve_store_id()
    if not store_id:
        return _store_required()
    products = stock_ledger_service.low_stock(store_id)
    return jsonify({"items": [product.to_dict() for product in products], "count": len(products)})


@stock_bp.get("/value-report")
@require_auth
@require_permission("VIEW_INVENTORY")
def stock_value_report_route():
    """
    Value of received stock, by day and by product.

    Query params: start_date, end_date (ISO-8601, optional), store_id (org-level users)
    """
    store_id = resolve_store_id()
    if not store_id:
        return _store_required()
    try:
        start, end = parse_date_range(request.args.get("start_date"), request.args.get("end_date"))
    except ValueError as e:
        return jsonify({"error": "validation_error", "message": f"Invalid date range: {e}"}), 400

    return jsonify(stock_ledger_service.stock_value_report(store_id, start, end))
