# Overview: Store expenses, including the delivery expense generated by a sale.

from __future__ import annotations

from datetime import datetime

from flask import current_app, has_app_context

from ..extensions import db
from ..models import Expense, Sale


DEFAULT_DELIVERY_CATEGORY = "Delivery"


def delivery_category() -> str:
    if has_app_context():
        return current_app.config.get("DELIVERY_EXPENSE_CATEGORY", DEFAULT_DELIVERY_CATEGORY)
    return DEFAULT_DELIVERY_CATEGORY


def create_delivery_expense(sale: Sale, *, user_id: int) -> Expense:
    """
    Record a sale's delivery fee as an expense (caller's transaction).

    The expense is dated like the sale, so backdated sales produce
    backdated expenses.
    """
    expense = Expense(
        store_id=sale.store_id,
        user_id=user_id,
        sale_id=sale.id,
        description=f"Delivery fee for sale #{sale.id}",
        amount_cents=sale.delivery_fee_cents,
        category=delivery_category(),
        payment_method=sale.payment_method,
    )
    if sale.is_historical:
        expense.expense_date = sale.created_at
    db.session.add(expense)
    db.session.flush()
    return expense


def delete_for_sale(sale_id: int) -> int:
    """Remove expenses generated by a sale. Returns the number deleted."""
    expenses = db.session.query(Expense).filter_by(sale_id=sale_id).all()
    for expense in expenses:
        db.session.delete(expense)
    db.session.flush()
    return len(expenses)


def list_expenses(
    store_id: int,
    *,
    category: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Expense], int]:
    query = db.session.query(Expense).filter(Expense.store_id == store_id)
    if category:
        query = query.filter(Expense.category == category)
    if start is not None:
        query = query.filter(Expense.expense_date >= start)
    if end is not None:
        query = query.filter(Expense.expense_date <= end)

    total = query.count()
    rows = (
        query.order_by(Expense.expense_date.desc(), Expense.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total
