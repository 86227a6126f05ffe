from __future__ import annotations

from ..extensions import db
from dukapos.time_utils import to_utc_z


PAYMENT_METHODS = ("cash", "mpesa", "card", "credit")
PAYMENT_STATUSES = ("paid", "pending", "failed")
SALE_STATUSES = ("pending", "completed", "cancelled")


class Sale(db.Model):
    """
    Sale header.

    TOTALS (all cents):
    - total_amount_cents = SUM(items.total_cents) + delivery_fee_cents
    - amount_due_cents = total_amount_cents - loyalty_discount_cents
    - change_amount_cents = max(amount_paid_cents - amount_due_cents, 0)

    created_at may be backdated for historical sales (is_historical=True).

    LIFECYCLE: pending|completed -> cancelled. Sales are never hard-deleted;
    cancelling restores stock through the stock ledger.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # NULL means walk-in customer
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    loyalty_points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    loyalty_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_status = db.Column(db.String(16), nullable=False, default="paid", index=True)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    is_historical = db.Column(db.Boolean, nullable=False, default=False)

    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id])
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "total_amount_cents": self.total_amount_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "loyalty_points_redeemed": self.loyalty_points_redeemed,
            "loyalty_discount_cents": self.loyalty_discount_cents,
            "loyalty_points_earned": self.loyalty_points_earned,
            "amount_due_cents": self.amount_due_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "amount_paid_cents": self.amount_paid_cents,
            "change_amount_cents": self.change_amount_cents,
            "is_historical": self.is_historical,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale, priced in its own unit type.

    quantity counts units of unit_type; base_quantity is what the line took
    out of stock (quantity * base units per unit). Immutable after insert.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    unit_type = db.Column(db.String(16), nullable=False, default="piece")
    quantity = db.Column(db.Integer, nullable=False)
    base_quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    stock_log_id = db.Column(db.Integer, db.ForeignKey("stock_logs.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "unit_type": self.unit_type,
            "quantity": self.quantity,
            "base_quantity": self.base_quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
            "stock_log_id": self.stock_log_id,
            "created_at": to_utc_z(self.created_at),
        }
