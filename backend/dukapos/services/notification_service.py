# Overview: In-app notifications; stock-take submissions alert the store's reviewers.

from __future__ import annotations

import logging

from sqlalchemy import and_, or_

from ..extensions import db
from ..models import Notification, StockTakeSession, User
from ..permissions import ROLE_ADMIN, ROLE_MANAGER
from ..time_utils import utcnow
from ..validation import NotFoundError
from .concurrency import atomic


logger = logging.getLogger(__name__)

TYPE_STOCK_TAKE = "stock_take"


def stock_take_reviewers(store_id: int) -> list[User]:
    """Active admins and managers of the store, plus org-level admins."""
    return (
        db.session.query(User)
        .filter(User.is_active.is_(True))
        .filter(or_(
            and_(User.store_id == store_id, User.role.in_((ROLE_ADMIN, ROLE_MANAGER))),
            and_(User.store_id.is_(None), User.role == ROLE_ADMIN),
        ))
        .order_by(User.id)
        .all()
    )


def notify_users(
    users: list[User],
    *,
    title: str,
    message: str,
    type: str = "info",
    store_id: int | None = None,
    data: dict | None = None,
) -> list[Notification]:
    """Add one notification per user to the caller's transaction."""
    rows = [
        Notification(user_id=user.id, store_id=store_id, title=title, message=message, type=type, data=data)
        for user in users
    ]
    db.session.add_all(rows)
    db.session.flush()
    return rows


def notify_stock_take_submitted(session: StockTakeSession) -> list[Notification]:
    """Tell every reviewer of the session's store that a count awaits review."""
    reviewers = [u for u in stock_take_reviewers(session.store_id) if u.id != session.submitted_by_user_id]
    submitter = db.session.get(User, session.submitted_by_user_id)
    who = (submitter.name or submitter.username) if submitter else "A user"
    variance_items = sum(1 for item in session.items if item.variance != 0)

    rows = notify_users(
        reviewers,
        title="Stock-take awaiting review",
        message=f"{who} submitted stock-take #{session.id} with {len(session.items)} item(s), "
                f"{variance_items} with a variance.",
        type=TYPE_STOCK_TAKE,
        store_id=session.store_id,
        data={"stock_take_id": session.id, "item_count": len(session.items), "variance_items": variance_items},
    )
    logger.info("Stock-take %s: notified %d reviewer(s)", session.id, len(rows))
    return rows


def list_for_user(user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = db.session.query(Notification).filter_by(user_id=user_id)
    if unread_only:
        query = query.filter_by(is_read=False)
    return query.order_by(Notification.id.desc()).limit(limit).all()


def mark_read(notification_id: int, user_id: int) -> Notification:
    """Mark one of the user's notifications read. Other users' rows are not found."""
    def _op():
        row = db.session.query(Notification).filter_by(id=notification_id, user_id=user_id).first()
        if not row:
            raise NotFoundError("Notification not found", details={"notification_id": notification_id})
        if not row.is_read:
            row.is_read = True
            row.read_at = utcnow()
        return row

    return atomic(_op)


def mark_all_read(user_id: int) -> int:
    def _op():
        return (
            db.session.query(Notification)
            .filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
        )

    return atomic(_op)
