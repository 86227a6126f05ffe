from __future__ import annotations

from ..extensions import db
from dukapos.time_utils import to_utc_z


class StockTakeSession(db.Model):
    """
    Physical count submitted for review.

    LIFECYCLE:
    1. pending: submitted, variances computed but not written to stock
    2. applied: variances written through the stock ledger (terminal)
    3. rejected: no stock effect (terminal)
    """
    __tablename__ = "stock_take_sessions"
    __table_args__ = (
        db.Index("ix_stock_take_sessions_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text, nullable=True)
    review_notes = db.Column(db.Text, nullable=True)

    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("stock_take_sessions", lazy=True))
    submitted_by = db.relationship("User", foreign_keys=[submitted_by_user_id])
    reviewed_by = db.relationship("User", foreign_keys=[reviewed_by_user_id])
    items = db.relationship(
        "StockTakeItem",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="StockTakeItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "submitted_by_user_id": self.submitted_by_user_id,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "status": self.status,
            "notes": self.notes,
            "review_notes": self.review_notes,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "item_count": len(self.items),
            "total_variance": sum(item.variance for item in self.items),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class StockTakeItem(db.Model):
    """
    One counted product.

    product_name/sku/category_name are snapshots so the record survives the
    product being removed later (product_id is then NULL).
    variance = counted_quantity - system_quantity, fixed at submission.
    live_quantity_at_apply / applied_variance record what apply actually did.
    """
    __tablename__ = "stock_take_items"
    __table_args__ = (
        db.UniqueConstraint("session_id", "product_id", name="uq_stock_take_items_session_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("stock_take_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    category_name = db.Column(db.String(120), nullable=True)

    system_quantity = db.Column(db.Integer, nullable=False, default=0)
    counted_quantity = db.Column(db.Integer, nullable=False, default=0)
    variance = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    live_quantity_at_apply = db.Column(db.Integer, nullable=True)
    applied_variance = db.Column(db.Integer, nullable=True)
    stock_log_id = db.Column(db.Integer, db.ForeignKey("stock_logs.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("StockTakeSession", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "category_name": self.category_name,
            "system_quantity": self.system_quantity,
            "counted_quantity": self.counted_quantity,
            "variance": self.variance,
            "notes": self.notes,
            "live_quantity_at_apply": self.live_quantity_at_apply,
            "applied_variance": self.applied_variance,
            "stock_log_id": self.stock_log_id,
            "created_at": to_utc_z(self.created_at),
        }
