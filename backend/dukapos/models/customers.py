from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from dukapos.time_utils import to_utc_z


LOYALTY_TIERS = ("bronze", "silver", "gold")


class Customer(db.Model):
    """
    Customer directory entry.

    WALK-IN: sales with customer_id=NULL, or pointing at the store's
    is_walk_in sentinel customer, never earn or redeem loyalty points.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    loyalty_tier = db.Column(db.String(16), nullable=False, default="bronze")
    is_walk_in = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "loyalty_tier": self.loyalty_tier,
            "is_walk_in": self.is_walk_in,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyPoints(db.Model):
    """
    Running points balance, one row per customer.

    INVARIANT: points == SUM(loyalty_transactions.points) for the customer.
    Only loyalty_service writes this row, in the caller's transaction.
    """
    __tablename__ = "loyalty_points"
    __table_args__ = (
        db.UniqueConstraint("customer_id", name="uq_loyalty_points_customer"),
        db.CheckConstraint("points >= 0", name="ck_loyalty_points_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("loyalty_points", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "points": self.points,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - earn: points earned from a sale (positive)
    - redeem: points spent as a sale discount (negative)
    - reversal: undo of earn/redeem when a sale is cancelled (either sign)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    points = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    note = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "points": self.points,
            "type": self.type,
            "note": self.note,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(LoyaltyTransaction, "before_update")
def _loyalty_txn_is_immutable(mapper, connection, target):
    raise ValueError("loyalty transactions are append-only")


@event.listens_for(LoyaltyTransaction, "before_delete")
def _loyalty_txn_is_undeletable(mapper, connection, target):
    raise ValueError("loyalty transactions are append-only")
