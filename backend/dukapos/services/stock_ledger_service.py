# Overview: Stock ledger; the only writer of Product.quantity, one StockLog row per movement.

"""
Stock Ledger Service

WHY: Product.quantity is contended by sales, receiving and stock-takes.
Every change goes through adjust(), which serializes on the product row and
leaves an append-only StockLog entry explaining it.

CONCURRENCY:
- The product row is locked (SELECT ... FOR UPDATE where supported).
- The quantity write is a conditional UPDATE:
      UPDATE products SET quantity = quantity + :delta
       WHERE id = :id AND quantity + :delta >= 0
  Zero rows affected means the delta would drive stock negative. This holds
  even on SQLite, which ignores row locks, so two concurrent deductions can
  never both pass a stale sufficiency check.

RECONCILIATION:
    product.opening_quantity + SUM(stock_logs.quantity_added) == product.quantity

adjust() never commits. Public operations below wrap it in atomic().
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockLog
from ..validation import (
    AdjustStockInput,
    ConflictError,
    NotFoundError,
    ReceiveStockInput,
    ValidationError,
)
from .concurrency import atomic, lock_for_update
from .pricing_service import base_units_per_unit, price_fields


SOURCE_RECEIVE = "receive"
SOURCE_SALE = "sale"
SOURCE_SALE_CANCEL = "sale-cancel"
SOURCE_STOCK_TAKE = "stock-take"
SOURCE_ADJUSTMENT = "adjustment"

STOCK_SOURCES = {
    SOURCE_RECEIVE,
    SOURCE_SALE,
    SOURCE_SALE_CANCEL,
    SOURCE_STOCK_TAKE,
    SOURCE_ADJUSTMENT,
}


class InsufficientStock(ConflictError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, delta: int, available: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: available {available}, requested {-delta}",
            details={"product_id": product_id, "requested": -delta, "available": available},
        )
        self.product_id = product_id
        self.delta = delta
        self.available = available


def get_product(product_id: int, store_id: int | None = None, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def adjust(
    product_id: int,
    delta: int,
    source: str,
    *,
    user_id: int | None = None,
    store_id: int | None = None,
    unit_type: str = "piece",
    unit_cost_cents: int | None = None,
    total_cost_cents: int = 0,
    note: str | None = None,
    sale_id: int | None = None,
    stock_take_session_id: int | None = None,
    occurred_at: datetime | None = None,
) -> StockLog:
    """
    Apply a signed base-unit delta to a product and log it.

    Runs inside the caller's transaction (flushes, never commits). Exactly one
    StockLog row is written per call, zero deltas included.

    Raises:
        ValidationError: unknown source or non-integer delta
        NotFoundError: product missing (or in another store)
        InsufficientStock: resulting quantity would be negative (nothing written)
    """
    if source not in STOCK_SOURCES:
        raise ValidationError(f"Invalid stock source: {source}")
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("Stock delta must be an integer number of base units")

    product = get_product(product_id, store_id, lock=True)

    updated = (
        db.session.query(Product)
        .filter(Product.id == product.id, Product.quantity + delta >= 0)
        .update({Product.quantity: Product.quantity + delta}, synchronize_session=False)
    )
    # Reload the committed-in-transaction value either way
    db.session.expire(product, ["quantity"])
    if updated == 0:
        raise InsufficientStock(product.id, delta, product.quantity, product.name)

    entry = StockLog(
        store_id=product.store_id,
        product_id=product.id,
        quantity_added=delta,
        quantity_after=product.quantity,
        unit_type=unit_type,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=total_cost_cents,
        source=source,
        note=note,
        user_id=user_id,
        sale_id=sale_id,
        stock_take_session_id=stock_take_session_id,
    )
    if occurred_at is not None:
        entry.occurred_at = occurred_at

    db.session.add(entry)
    db.session.flush()
    return entry


# =============================================================================
# RECEIVING
# =============================================================================

def _receive_one(data: ReceiveStockInput, *, user_id: int | None, store_id: int | None) -> StockLog:
    product = get_product(data.product_id, store_id)
    if not product.is_active:
        raise ValidationError(f"Product {product.id} is inactive", details={"product_id": product.id})

    units = base_units_per_unit(product, data.unit_type)
    unit_type = data.unit_type.strip().lower()

    # Receiving re-prices the received denomination
    buying_attr, selling_attr = price_fields(unit_type)
    setattr(product, buying_attr, data.buying_price_cents)
    setattr(product, selling_attr, data.selling_price_cents)

    # Per-base-unit cost, rounded half-up
    unit_cost_cents = (data.buying_price_cents * 2 + units) // (units * 2)

    return adjust(
        product.id,
        data.quantity * units,
        SOURCE_RECEIVE,
        user_id=user_id,
        store_id=store_id,
        unit_type=unit_type,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=data.buying_price_cents * data.quantity,
        note=data.notes,
    )


def receive_stock(data: ReceiveStockInput, *, user_id: int | None, store_id: int | None) -> StockLog:
    """
    Receive goods for one product.

    quantity is in data.unit_type units and is converted to base units
    before reaching the ledger; the product's prices for that unit type are
    updated to the received prices.
    """
    return atomic(lambda: _receive_one(data, user_id=user_id, store_id=store_id))


def receive_stock_bulk(
    items: list[ReceiveStockInput], *, user_id: int | None, store_id: int | None
) -> list[StockLog]:
    """Receive several lines in one transaction; any failure fails the batch."""
    if not items:
        raise ValidationError("No items provided")

    def _op():
        return [_receive_one(item, user_id=user_id, store_id=store_id) for item in items]

    return atomic(_op)


def adjust_stock(data: AdjustStockInput, *, user_id: int | None, store_id: int | None) -> StockLog:
    """Manual correction (damage, shrinkage, recount) in base units."""
    def _op():
        return adjust(
            data.product_id,
            data.quantity_delta,
            SOURCE_ADJUSTMENT,
            user_id=user_id,
            store_id=store_id,
            note=data.reason,
        )

    return atomic(_op)


# =============================================================================
# READS
# =============================================================================

def list_movements(product_id: int, store_id: int | None = None, *, limit: int = 100) -> list[StockLog]:
    product = get_product(product_id, store_id)
    return (
        db.session.query(StockLog)
        .filter_by(product_id=product.id)
        # Insertion order; quantity_after is a running balance in this order
        .order_by(StockLog.id.desc())
        .limit(limit)
        .all()
    )


def verify_ledger(product_id: int | None = None, store_id: int | None = None) -> list[dict]:
    """
    Compare each product's live quantity with opening_quantity + SUM(deltas).

    Returns one row per product; "ok" is False where the two disagree.
    """
    sums = (
        db.session.query(
            StockLog.product_id.label("product_id"),
            func.coalesce(func.sum(StockLog.quantity_added), 0).label("logged"),
            func.count(StockLog.id).label("entries"),
        )
        .group_by(StockLog.product_id)
        .subquery()
    )

    query = (
        db.session.query(Product, sums.c.logged, sums.c.entries)
        .outerjoin(sums, sums.c.product_id == Product.id)
        .order_by(Product.id)
    )
    if product_id is not None:
        query = query.filter(Product.id == product_id)
    if store_id is not None:
        query = query.filter(Product.store_id == store_id)

    rows = []
    for product, logged, entries in query.all():
        logged = int(logged or 0)
        expected = (product.opening_quantity or 0) + logged
        rows.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "opening_quantity": product.opening_quantity,
            "logged_delta": logged,
            "log_entries": int(entries or 0),
            "expected_quantity": expected,
            "quantity": product.quantity,
            "ok": expected == product.quantity,
        })
    if product_id is not None and not rows:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return rows


def low_stock(store_id: int) -> list[Product]:
    """Active products at or below their reorder threshold."""
    return (
        db.session.query(Product)
        .filter(
            Product.store_id == store_id,
            Product.is_active.is_(True),
            Product.quantity <= Product.min_quantity,
        )
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )


def stock_value_report(
    store_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Value of goods received, totalled by day and by product."""
    filters = [StockLog.store_id == store_id, StockLog.source == SOURCE_RECEIVE]
    if start is not None:
        filters.append(StockLog.occurred_at >= start)
    if end is not None:
        filters.append(StockLog.occurred_at <= end)

    day = func.date(StockLog.occurred_at)
    by_day = (
        db.session.query(
            day.label("day"),
            func.sum(StockLog.total_cost_cents).label("total_cost_cents"),
            func.sum(StockLog.quantity_added).label("quantity"),
            func.count(StockLog.id).label("entries"),
        )
        .filter(*filters)
        .group_by(day)
        .order_by(day.desc())
        .all()
    )

    by_product = (
        db.session.query(
            Product.id,
            Product.sku,
            Product.name,
            func.sum(StockLog.total_cost_cents).label("total_cost_cents"),
            func.sum(StockLog.quantity_added).label("quantity"),
        )
        .join(Product, Product.id == StockLog.product_id)
        .filter(*filters)
        .group_by(Product.id, Product.sku, Product.name)
        .order_by(func.sum(StockLog.total_cost_cents).desc())
        .all()
    )

    return {
        "by_day": [
            {
                "date": str(row.day),
                "total_cost_cents": int(row.total_cost_cents or 0),
                "quantity": int(row.quantity or 0),
                "entries": int(row.entries or 0),
            }
            for row in by_day
        ],
        "by_product": [
            {
                "product_id": row.id,
                "sku": row.sku,
                "name": row.name,
                "total_cost_cents": int(row.total_cost_cents or 0),
                "quantity": int(row.quantity or 0),
            }
            for row in by_product
        ],
        "total_cost_cents": sum(int(row.total_cost_cents or 0) for row in by_day),
    }
