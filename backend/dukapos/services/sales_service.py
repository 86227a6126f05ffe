# Overview: Sale transaction orchestrator; one atomic unit for sale, items, stock, loyalty and delivery expense.

"""
Sales Service

CREATE (single pass, all-or-nothing):
1. Reject before any transaction: no acting user, no items, backdated
   timestamp in the future.
2. Inside one transaction, for every item: check the product is active,
   price the line (catalog price for its unit type when the caller sent
   none), and deduct quantity * base units through the stock ledger.
3. Insert the Sale and its SaleItems.
4. Optional loyalty redemption (discount) and accrual (completed + paid
   sales with a non walk-in customer).
5. Delivery fee > 0 produces a linked "Delivery" expense.
6. Commit. Any failure rolls everything back: no sale, no items, no stock
   movement, no points, no expense.

TOTALS (cents):
- item total = quantity * unit_price
- total_amount = SUM(item totals) + delivery_fee
- amount_due = total_amount - loyalty discount
- change = max(amount_paid - amount_due, 0)

CANCEL: sales are never deleted. Cancelling restores stock (source
"sale-cancel"), reverses loyalty and removes the delivery expense, all in
one transaction. A sale's total is never edited after creation.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import Sale, SaleItem
from ..time_utils import is_in_future, utcnow
from ..validation import (
    ConflictError,
    CreateSaleInput,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from .concurrency import atomic, lock_for_update
from . import expense_service, loyalty_service
from .pricing_service import base_units_per_unit, resolve, validate_unit_type
from .stock_ledger_service import (
    SOURCE_SALE,
    SOURCE_SALE_CANCEL,
    adjust,
    get_product,
)


logger = logging.getLogger(__name__)

SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"

PAYMENT_STATUS_PAID = "paid"

# Client-computed totals may differ from ours by at most this much
ROUNDING_TOLERANCE_CENTS = 1


class SaleStateError(ConflictError):
    code = "invalid_sale_state"


def _future_skew() -> timedelta:
    minutes = 2
    if has_app_context():
        minutes = int(current_app.config.get("FUTURE_SKEW_MINUTES", minutes))
    return timedelta(minutes=minutes)


def _validate_request(data: CreateSaleInput, user_id: int | None, store_id: int | None) -> None:
    if not user_id:
        raise UnauthenticatedError("Unauthorized")
    if store_id is None:
        raise ValidationError("store_id required")
    if not data.items:
        raise ValidationError("No items provided for sale")
    if data.historical_date is not None and is_in_future(data.historical_date, skew=_future_skew()):
        raise ValidationError("historical_date cannot be in the future")
    for index, item in enumerate(data.items):
        if item.quantity <= 0:
            raise ValidationError(f"items[{index}]: quantity must be > 0")


def _price_lines(data: CreateSaleInput, store_id: int | None) -> list[dict]:
    lines = []
    for index, item in enumerate(data.items):
        product = get_product(item.product_id, store_id)
        if not product.is_active:
            raise ValidationError(
                f"items[{index}]: product {product.id} is inactive",
                details={"product_id": product.id},
            )

        unit_type = validate_unit_type(item.unit_type)
        units = base_units_per_unit(product, unit_type)
        if item.unit_price_cents is None:
            unit_price = resolve(product, unit_type).selling_price_cents
        else:
            unit_price = item.unit_price_cents

        line_total = item.quantity * unit_price
        if item.total_cents is not None and abs(item.total_cents - line_total) > ROUNDING_TOLERANCE_CENTS:
            raise ValidationError(
                f"items[{index}]: total does not equal quantity x unit_price",
                details={"expected_cents": line_total, "received_cents": item.total_cents},
            )

        lines.append({
            "product": product,
            "unit_type": unit_type,
            "quantity": item.quantity,
            "base_quantity": item.quantity * units,
            "unit_price_cents": unit_price,
            "total_cents": line_total,
        })
    return lines


def create_sale(data: CreateSaleInput, *, user_id: int | None, store_id: int | None) -> Sale:
    """
    Create a sale atomically.

    Args:
        data: Validated create-sale request
        user_id: Acting user (required)
        store_id: Store the sale belongs to

    Returns:
        Sale: committed sale with items

    Raises:
        UnauthenticatedError: no acting user
        ValidationError: no store, no items, bad prices/totals, inactive product, bad unit type
        NotFoundError: unknown product or customer
        InsufficientStock: any item would drive stock negative (nothing persisted)
        InsufficientPoints / InvalidRedeemAmount: loyalty redemption rejected
    """
    _validate_request(data, user_id, store_id)

    def _op():
        customer = None
        if data.customer_id:
            customer = loyalty_service.get_customer(data.customer_id, store_id)
        if data.redeem_points and not loyalty_service.is_loyalty_customer(customer):
            raise ValidationError("redeem_points requires a registered customer")

        lines = _price_lines(data, store_id)
        subtotal = sum(line["total_cents"] for line in lines)
        total = subtotal + data.delivery_fee_cents
        if data.total_cents is not None and abs(data.total_cents - total) > ROUNDING_TOLERANCE_CENTS:
            raise ValidationError(
                "Sale total does not equal the sum of item totals plus delivery fee",
                details={"expected_cents": total, "received_cents": data.total_cents},
            )

        sale = Sale(
            store_id=store_id,
            customer_id=customer.id if customer else None,
            user_id=user_id,
            total_amount_cents=total,
            delivery_fee_cents=data.delivery_fee_cents,
            amount_due_cents=total,
            payment_method=data.payment_method,
            payment_status=data.payment_status,
            status=data.status,
            is_historical=data.historical_date is not None,
        )
        if data.historical_date is not None:
            sale.created_at = data.historical_date
            sale.updated_at = data.historical_date
        db.session.add(sale)
        db.session.flush()  # Get ID

        for line in lines:
            product = line["product"]
            entry = adjust(
                product.id,
                -line["base_quantity"],
                SOURCE_SALE,
                user_id=user_id,
                store_id=store_id,
                unit_type=line["unit_type"],
                note=f"Sale #{sale.id}",
                sale_id=sale.id,
                occurred_at=data.historical_date,
            )
            sale_item = SaleItem(
                sale_id=sale.id,
                product_id=product.id,
                unit_type=line["unit_type"],
                quantity=line["quantity"],
                base_quantity=line["base_quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_cents=line["total_cents"],
                stock_log_id=entry.id,
            )
            if data.historical_date is not None:
                sale_item.created_at = data.historical_date
            db.session.add(sale_item)

        discount = 0
        if data.redeem_points:
            discount = loyalty_service.redeem(
                customer.id,
                data.redeem_points,
                sale_id=sale.id,
                user_id=user_id,
                occurred_at=data.historical_date,
            )
            if discount > subtotal:
                raise loyalty_service.InvalidRedeemAmount(
                    "Redeemed points exceed the value of the items",
                    details={"discount_cents": discount, "subtotal_cents": subtotal},
                )
            sale.loyalty_points_redeemed = data.redeem_points
            sale.loyalty_discount_cents = discount

        amount_due = total - discount
        amount_paid = data.amount_paid_cents if data.amount_paid_cents is not None else amount_due
        if data.payment_status == PAYMENT_STATUS_PAID and amount_paid < amount_due:
            raise ValidationError(
                "amount_paid is less than the amount due",
                details={"amount_due_cents": amount_due, "amount_paid_cents": amount_paid},
            )
        sale.amount_due_cents = amount_due
        sale.amount_paid_cents = amount_paid
        sale.change_amount_cents = max(amount_paid - amount_due, 0)

        if (
            loyalty_service.is_loyalty_customer(customer)
            and data.status == SALE_STATUS_COMPLETED
            and data.payment_status == PAYMENT_STATUS_PAID
        ):
            sale.loyalty_points_earned = loyalty_service.accrue(
                customer.id,
                subtotal - discount,
                sale_id=sale.id,
                user_id=user_id,
                occurred_at=data.historical_date,
            )

        if data.delivery_fee_cents > 0:
            expense_service.create_delivery_expense(sale, user_id=user_id)

        db.session.flush()
        return sale

    return atomic(_op)


def cancel_sale(
    sale_id: int,
    *,
    user_id: int | None,
    store_id: int | None,
    reason: str | None = None,
) -> Sale:
    """
    Cancel a sale and undo its effects in one transaction.

    Raises:
        NotFoundError: sale missing
        SaleStateError: sale already cancelled
    """
    if not user_id:
        raise UnauthenticatedError("Unauthorized")

    def _op():
        query = db.session.query(Sale).filter_by(id=sale_id)
        if store_id is not None:
            query = query.filter_by(store_id=store_id)
        sale = lock_for_update(query).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleStateError(f"Sale {sale_id} is already cancelled", details={"sale_id": sale_id})

        for item in sale.items:
            adjust(
                item.product_id,
                item.base_quantity,
                SOURCE_SALE_CANCEL,
                user_id=user_id,
                store_id=sale.store_id,
                unit_type=item.unit_type,
                note=f"Cancel sale #{sale.id}",
                sale_id=sale.id,
            )

        loyalty_service.reverse_for_sale(sale, user_id=user_id)
        expense_service.delete_for_sale(sale.id)

        now = utcnow()
        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_by_user_id = user_id
        sale.cancelled_at = now
        sale.cancel_reason = reason
        sale.updated_at = now
        db.session.flush()
        return sale

    sale = atomic(_op)
    logger.info("Sale %s cancelled by user %s", sale_id, user_id)
    return sale


def get_sale(sale_id: int, store_id: int | None = None) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    sale = query.first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    store_id: int,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    query = db.session.query(Sale).filter(Sale.store_id == store_id)
    if status:
        query = query.filter(Sale.status == status)
    if customer_id:
        query = query.filter(Sale.customer_id == customer_id)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    total = query.count()
    sales = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return sales, total
