# Overview: Flask API routes for loyalty balances and history.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_permission, resolve_store_id
from ..services import loyalty_service
from ..validation import DOMAIN_ERRORS, error_payload


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/<int:customer_id>")
@require_auth
@require_permission("VIEW_LOYALTY")
def get_balance_route(customer_id: int):
    try:
        return jsonify(loyalty_service.get_balance(customer_id, resolve_store_id()))
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code


@loyalty_bp.get("/<int:customer_id>/transactions")
@require_auth
@require_permission("VIEW_LOYALTY")
def list_transactions_route(customer_id: int):
    limit = max(1, min(request.args.get("limit", 100, type=int), 500))
    try:
        txns = loyalty_service.list_transactions(customer_id, resolve_store_id(), limit=limit)
        return jsonify({"items": [txn.to_dict() for txn in txns], "count": len(txns)})
    except DOMAIN_ERRORS as e:
        return jsonify(error_payload(e)), e.status_code
