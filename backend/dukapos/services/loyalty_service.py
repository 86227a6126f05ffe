# Overview: Loyalty accrual engine; tier-based earning and point redemption.

"""
Loyalty Service

EARN: points = floor(subtotal in currency units * tier multiplier).
REDEEM: LOYALTY_POINTS_PER_CURRENCY_UNIT points buy one currency unit of
discount; the amount must be a positive multiple of LOYALTY_REDEEM_INCREMENT.

Every balance change writes a LoyaltyTransaction in the caller's
transaction; nothing here commits. Invariant:
    loyalty_points.points == SUM(loyalty_transactions.points)
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_FLOOR

from flask import current_app, has_app_context
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, LoyaltyPoints, LoyaltyTransaction, Sale
from ..validation import ConflictError, NotFoundError, ValidationError
from .concurrency import lock_for_update


TXN_EARN = "earn"
TXN_REDEEM = "redeem"
TXN_REVERSAL = "reversal"

DEFAULT_TIER_MULTIPLIERS = {"bronze": "1", "silver": "1.5", "gold": "2"}
DEFAULT_POINTS_PER_CURRENCY_UNIT = 10
DEFAULT_REDEEM_INCREMENT = 100


class InsufficientPoints(ConflictError):
    code = "insufficient_points"


class InvalidRedeemAmount(ValidationError):
    code = "invalid_redeem_amount"


def _setting(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def tier_multiplier(tier: str | None) -> Decimal:
    multipliers = _setting("LOYALTY_TIER_MULTIPLIERS", DEFAULT_TIER_MULTIPLIERS)
    raw = multipliers.get((tier or "bronze").lower())
    if raw is None:
        raw = multipliers.get("bronze", "1")
    return Decimal(str(raw))


def points_for_amount(amount_cents: int, tier: str | None) -> int:
    """floor(amount in currency units * tier multiplier); never negative."""
    if amount_cents <= 0:
        return 0
    units = Decimal(amount_cents) / Decimal(100)
    return int((units * tier_multiplier(tier)).to_integral_value(rounding=ROUND_FLOOR))


def discount_for_points(points: int) -> int:
    """Currency discount (cents) bought by a number of points."""
    per_unit = int(_setting("LOYALTY_POINTS_PER_CURRENCY_UNIT", DEFAULT_POINTS_PER_CURRENCY_UNIT))
    return points * 100 // per_unit


def is_loyalty_customer(customer: Customer | None) -> bool:
    return customer is not None and not customer.is_walk_in and customer.is_active


def get_customer(customer_id: int, store_id: int | None = None) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer or (store_id is not None and customer.store_id not in (None, store_id)):
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def _balance_row(customer_id: int, *, lock: bool = False) -> LoyaltyPoints:
    query = db.session.query(LoyaltyPoints).filter_by(customer_id=customer_id)
    if lock:
        query = lock_for_update(query)
    row = query.first()
    if row is None:
        row = LoyaltyPoints(customer_id=customer_id, points=0)
        db.session.add(row)
        db.session.flush()
    return row


def _apply(
    customer_id: int,
    delta: int,
    txn_type: str,
    *,
    sale_id: int | None,
    user_id: int | None,
    note: str | None = None,
    occurred_at: datetime | None = None,
) -> LoyaltyTransaction:
    row = _balance_row(customer_id, lock=True)

    # Conditional write keeps the balance non-negative under concurrency
    updated = (
        db.session.query(LoyaltyPoints)
        .filter(LoyaltyPoints.id == row.id, LoyaltyPoints.points + delta >= 0)
        .update({LoyaltyPoints.points: LoyaltyPoints.points + delta}, synchronize_session=False)
    )
    db.session.expire(row, ["points"])
    if updated == 0:
        raise InsufficientPoints(
            f"Insufficient loyalty points: balance {row.points}, requested {-delta}",
            details={"customer_id": customer_id, "balance": row.points, "requested": -delta},
        )

    txn = LoyaltyTransaction(
        customer_id=customer_id,
        sale_id=sale_id,
        points=delta,
        type=txn_type,
        note=note,
        user_id=user_id,
    )
    if occurred_at is not None:
        txn.created_at = occurred_at
    db.session.add(txn)
    db.session.flush()
    return txn


def accrue(
    customer_id: int,
    subtotal_cents: int,
    *,
    sale_id: int | None = None,
    user_id: int | None = None,
    occurred_at: datetime | None = None,
) -> int:
    """
    Award points for a purchase. Returns the points earned (0 for walk-in
    customers or subtotals too small to earn a whole point).
    """
    customer = get_customer(customer_id)
    if not is_loyalty_customer(customer):
        return 0

    points = points_for_amount(subtotal_cents, customer.loyalty_tier)
    if points <= 0:
        return 0

    _apply(customer.id, points, TXN_EARN, sale_id=sale_id, user_id=user_id, occurred_at=occurred_at)
    return points


def validate_redeem_amount(points) -> int:
    increment = int(_setting("LOYALTY_REDEEM_INCREMENT", DEFAULT_REDEEM_INCREMENT))
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidRedeemAmount("Points to redeem must be a positive integer")
    if points % increment != 0:
        raise InvalidRedeemAmount(
            f"Points to redeem must be a multiple of {increment}",
            details={"points": points, "increment": increment},
        )
    return points


def redeem(
    customer_id: int,
    points: int,
    *,
    sale_id: int | None = None,
    user_id: int | None = None,
    occurred_at: datetime | None = None,
) -> int:
    """
    Spend points for a discount. Returns the discount in cents.

    Raises:
        InvalidRedeemAmount: points <= 0, not a multiple of the increment, or walk-in customer
        InsufficientPoints: balance too low
    """
    points = validate_redeem_amount(points)
    customer = get_customer(customer_id)
    if not is_loyalty_customer(customer):
        raise InvalidRedeemAmount("Walk-in customers cannot redeem loyalty points")

    _apply(customer.id, -points, TXN_REDEEM, sale_id=sale_id, user_id=user_id, occurred_at=occurred_at)
    return discount_for_points(points)


def reverse_for_sale(sale: Sale, *, user_id: int | None = None) -> list[LoyaltyTransaction]:
    """
    Undo a sale's loyalty effects: take back earned points, give back
    redeemed points. Earned points already spent elsewhere are reversed only
    down to a zero balance.
    """
    if not sale.customer_id:
        return []

    reversals = []
    if sale.loyalty_points_redeemed:
        reversals.append(_apply(
            sale.customer_id,
            sale.loyalty_points_redeemed,
            TXN_REVERSAL,
            sale_id=sale.id,
            user_id=user_id,
            note=f"Restore points redeemed on sale #{sale.id}",
        ))

    if sale.loyalty_points_earned:
        balance = _balance_row(sale.customer_id, lock=True).points
        take_back = min(sale.loyalty_points_earned, balance)
        if take_back > 0:
            reversals.append(_apply(
                sale.customer_id,
                -take_back,
                TXN_REVERSAL,
                sale_id=sale.id,
                user_id=user_id,
                note=f"Reverse points earned on sale #{sale.id}",
            ))
    return reversals


# =============================================================================
# READS
# =============================================================================

def get_balance(customer_id: int, store_id: int | None = None) -> dict:
    customer = get_customer(customer_id, store_id)
    row = db.session.query(LoyaltyPoints).filter_by(customer_id=customer.id).first()
    points = row.points if row else 0
    return {
        "customer_id": customer.id,
        "customer_name": customer.name,
        "loyalty_tier": customer.loyalty_tier,
        "points": points,
        "redeemable_value_cents": discount_for_points(points),
    }


def list_transactions(customer_id: int, store_id: int | None = None, *, limit: int = 100) -> list[LoyaltyTransaction]:
    customer = get_customer(customer_id, store_id)
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer.id)
        .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )


def verify_balances() -> list[dict]:
    """Compare every stored balance with its signed transaction sum."""
    sums = dict(
        db.session.query(LoyaltyTransaction.customer_id, func.sum(LoyaltyTransaction.points))
        .group_by(LoyaltyTransaction.customer_id)
        .all()
    )
    balances = dict(db.session.query(LoyaltyPoints.customer_id, LoyaltyPoints.points).all())

    report = []
    for customer_id in sorted(set(sums) | set(balances)):
        logged = int(sums.get(customer_id) or 0)
        balance = int(balances.get(customer_id) or 0)
        report.append({
            "customer_id": customer_id,
            "points": balance,
            "transaction_sum": logged,
            "ok": logged == balance,
        })
    return report
