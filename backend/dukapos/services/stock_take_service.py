# Overview: Stock-take reconciliation; submitted counts reviewed into the stock ledger.

"""
Stock-Take Service

WHY: Physical counts catch shrinkage and data-entry drift. A count is
submitted with per-product system snapshots, then a reviewer applies the
variances to stock or rejects the session.

LIFECYCLE:
1. pending: submitted; variance = counted - system (snapshot), no stock effect;
   reviewers of the store get an in-app notification
2. applied: variances written through the stock ledger (terminal)
3. rejected: reviewer declined; no stock effect (terminal)

APPLY vs. CONCURRENT SALES:
Sales between submission and review make the snapshot stale. Apply locks
each product, re-reads the live quantity and writes the recorded variance
as a delta against it (never "set to counted"). When live + variance < 0:
- policy "fail" (default): StockTakeDriftError, nothing applied, session stays pending
- policy "clamp": write -live instead, leaving the product at 0
Each item records the live quantity seen and the delta actually written.
Apply is atomic across all items.
"""
from __future__ import annotations

import logging

from flask import current_app, has_app_context

from ..extensions import db
from ..models import StockTakeItem, StockTakeSession
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    StockTakeSubmissionInput,
    UnauthenticatedError,
    ValidationError,
)
from .concurrency import atomic, lock_for_update
from .notification_service import notify_stock_take_submitted
from .stock_ledger_service import SOURCE_STOCK_TAKE, adjust, get_product


logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_APPLIED = "applied"
STATUS_REJECTED = "rejected"
STOCK_TAKE_STATUSES = (STATUS_PENDING, STATUS_APPLIED, STATUS_REJECTED)

POLICY_FAIL = "fail"
POLICY_CLAMP = "clamp"
NEGATIVE_POLICIES = (POLICY_FAIL, POLICY_CLAMP)


class StockTakeStateError(ConflictError):
    code = "invalid_stock_take_state"


class StockTakeDriftError(ConflictError):
    code = "stock_take_drift"


def _negative_policy(policy: str | None) -> str:
    if policy is None:
        policy = POLICY_FAIL
        if has_app_context():
            policy = current_app.config.get("STOCK_TAKE_NEGATIVE_POLICY", POLICY_FAIL)
    policy = (policy or "").strip().lower()
    if policy not in NEGATIVE_POLICIES:
        raise ValidationError(f"Invalid stock-take negative policy: {policy}")
    return policy


def submit_stock_take(
    data: StockTakeSubmissionInput,
    *,
    user_id: int | None,
    store_id: int | None,
) -> StockTakeSession:
    """
    Create a pending session, snapshotting each product's current quantity.

    Raises:
        ValidationError: no store, no items, duplicate product, negative count
        NotFoundError: unknown product, or a product from another store
    """
    if not user_id:
        raise UnauthenticatedError("Unauthorized")
    if store_id is None:
        raise ValidationError("store_id required")
    if not data.items:
        raise ValidationError("No counted items provided")

    seen = set()
    for item in data.items:
        if item.counted_quantity < 0:
            raise ValidationError(f"Counted quantity for product {item.product_id} must be >= 0")
        if item.product_id in seen:
            raise ValidationError(f"Product {item.product_id} is counted more than once")
        seen.add(item.product_id)

    def _op():
        products = [get_product(item.product_id, store_id) for item in data.items]

        session = StockTakeSession(
            store_id=store_id,
            submitted_by_user_id=user_id,
            status=STATUS_PENDING,
            notes=data.notes,
        )
        db.session.add(session)
        db.session.flush()  # Get ID

        for item, product in zip(data.items, products):
            db.session.add(StockTakeItem(
                session_id=session.id,
                product_id=product.id,
                product_name=product.name,
                sku=product.sku,
                category_name=product.category.name if product.category else None,
                system_quantity=product.quantity,
                counted_quantity=item.counted_quantity,
                variance=item.counted_quantity - product.quantity,
                notes=item.notes,
            ))
        db.session.flush()
        notify_stock_take_submitted(session)
        return session

    return atomic(_op)


def _get_pending_for_review(session_id: int, store_id: int | None) -> StockTakeSession:
    query = db.session.query(StockTakeSession).filter_by(id=session_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    session = lock_for_update(query).first()
    if not session:
        raise NotFoundError(f"Stock-take {session_id} not found", details={"session_id": session_id})
    if session.status != STATUS_PENDING:
        raise StockTakeStateError(
            f"Stock-take {session_id} is already {session.status}",
            details={"session_id": session_id, "status": session.status},
        )
    return session


def apply_stock_take(
    session_id: int,
    *,
    user_id: int | None,
    store_id: int | None,
    notes: str | None = None,
    policy: str | None = None,
) -> StockTakeSession:
    """
    Write a pending session's variances into the stock ledger.

    Raises:
        NotFoundError: session missing
        StockTakeStateError: session already applied or rejected
        StockTakeDriftError: policy "fail" and an item would go negative
    """
    if not user_id:
        raise UnauthenticatedError("Unauthorized")
    policy = _negative_policy(policy)

    def _op():
        session = _get_pending_for_review(session_id, store_id)

        for item in session.items:
            if item.product_id is None:
                # Product removed since the count; nothing left to adjust
                continue

            product = get_product(item.product_id, lock=True)
            live = product.quantity
            delta = item.variance
            if live + delta < 0:
                if policy == POLICY_FAIL:
                    raise StockTakeDriftError(
                        f"Stock for {product.name} dropped to {live} since the count; "
                        f"variance {delta} would make it negative",
                        details={
                            "product_id": product.id,
                            "system_quantity": item.system_quantity,
                            "live_quantity": live,
                            "variance": delta,
                        },
                    )
                delta = -live

            entry = adjust(
                product.id,
                delta,
                SOURCE_STOCK_TAKE,
                user_id=user_id,
                store_id=session.store_id,
                note=f"Stock-take #{session.id}",
                stock_take_session_id=session.id,
            )
            item.live_quantity_at_apply = live
            item.applied_variance = delta
            item.stock_log_id = entry.id

        session.status = STATUS_APPLIED
        session.reviewed_by_user_id = user_id
        session.reviewed_at = utcnow()
        session.review_notes = notes
        db.session.flush()
        return session

    session = atomic(_op)
    logger.info("Stock-take %s applied by user %s (policy=%s)", session_id, user_id, policy)
    return session


def reject_stock_take(
    session_id: int,
    *,
    user_id: int | None,
    store_id: int | None,
    notes: str | None = None,
) -> StockTakeSession:
    """Decline a pending session; stock is untouched."""
    if not user_id:
        raise UnauthenticatedError("Unauthorized")

    def _op():
        session = _get_pending_for_review(session_id, store_id)
        session.status = STATUS_REJECTED
        session.reviewed_by_user_id = user_id
        session.reviewed_at = utcnow()
        session.review_notes = notes
        db.session.flush()
        return session

    session = atomic(_op)
    logger.info("Stock-take %s rejected by user %s", session_id, user_id)
    return session


def get_stock_take(session_id: int, store_id: int | None = None) -> StockTakeSession:
    query = db.session.query(StockTakeSession).filter_by(id=session_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    session = query.first()
    if not session:
        raise NotFoundError(f"Stock-take {session_id} not found", details={"session_id": session_id})
    return session


def list_stock_takes(
    store_id: int,
    *,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[StockTakeSession], int]:
    if status and status not in STOCK_TAKE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(STOCK_TAKE_STATUSES)}")

    query = db.session.query(StockTakeSession).filter(StockTakeSession.store_id == store_id)
    if status:
        query = query.filter(StockTakeSession.status == status)

    total = query.count()
    sessions = (
        query.order_by(StockTakeSession.created_at.desc(), StockTakeSession.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return sessions, total
