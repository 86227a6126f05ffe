# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""Sales API routes with permission enforcement"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission, resolve_store_id
from ..services import sales_service
from ..time_utils import parse_date_range
from ..validation import DOMAIN_ERRORS, error_payload, parse_create_sale


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _page_args() -> tuple[int, int]:
    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)
    return max(1, min(limit, 500)), max(offset, 0)


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def create_sale_route():
    """
    Create a sale (stock, loyalty and delivery expense in one transaction).

    Request body:
    {
        "items": [{"product_id": int, "quantity": int, "unit_type": "piece|pack|dozen",
                   "unit_price": number?, "total": number?}],
        "total": number?,
        "payment_method": "cash|mpesa|card|credit"?,
        "status": "pending|completed"?,
        "payment_status": "paid|pending|failed"?,
        "amount_paid": number?,
        "customer_id": int?,
        "delivery_fee": number?,
        "historical_date": ISO-8601?,
        "redeem_points": int?
    }

    Returns:
        201: Sale with items
        400: Validation error (no items, bad totals, ...)
        401: Not authenticated
        409: Insufficient stock / points
    """
    try:
        data = parse_create_sale(request.get_json(silent=True))
        sale = sales_service.create_sale(
            data,
            user_id=g.current_user.id,
            store_id=resolve_store_id(data.store_id),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales_route():
    store_id = resolve_store_id()
    if not store_id:
        return jsonify({"error": "validation_error", "message": "store_id required"}), 400

    limit, offset = _page_args()
    try:
        start, end = parse_date_range(request.args.get("start_date"), request.args.get("end_date"))
    except ValueError as e:
        return jsonify({"error": "validation_error", "message": f"Invalid date range: {e}"}), 400

    try:
        sales, total = sales_service.list_sales(
            store_id,
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            start=start,
            end=end,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [sale.to_dict(include_items=False) for sale in sales],
            "count": total,
            "limit": limit,
            "offset": offset,
        })
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id, resolve_store_id())
        return jsonify({"sale": sale.to_dict()})
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_permission("CANCEL_SALE")
def cancel_sale_route(sale_id: int):
    """
    Cancel a sale: restore stock, reverse loyalty, drop the delivery expense.

    Returns:
        200: Cancelled sale
        404: Sale not found
        409: Already cancelled
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.cancel_sale(
            sale_id,
            user_id=g.current_user.id,
            store_id=resolve_store_id(),
            reason=(data.get("reason") or None),
        )
        return jsonify({"sale": sale.to_dict()})

    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "server_error", "message": "Internal server error"}), 500
