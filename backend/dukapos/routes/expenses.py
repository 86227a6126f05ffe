# Overview: Flask API routes for store expenses.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_permission, resolve_store_id
from ..services import expense_service
from ..time_utils import parse_date_range


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.get("")
@require_auth
@require_permission("VIEW_EXPENSES")
def list_expenses_route():
    """
    Query params: category, start_date, end_date, limit, offset, store_id (org-level users)
    """
    store_id = resolve_store_id()
    if not store_id:
        return jsonify({"error": "validation_error", "message": "store_id required"}), 400

    try:
        start, end = parse_date_range(request.args.get("start_date"), request.args.get("end_date"))
    except ValueError as e:
        return jsonify({"error": "validation_error", "message": f"Invalid date range: {e}"}), 400

    limit = max(1, min(request.args.get("limit", 100, type=int), 500))
    offset = max(request.args.get("offset", 0, type=int), 0)

    expenses, total = expense_service.list_expenses(
        store_id,
        category=request.args.get("category"),
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [expense.to_dict() for expense in expenses],
        "count": total,
        "limit": limit,
        "offset": offset,
    })
