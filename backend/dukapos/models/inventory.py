from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from dukapos.time_utils import to_utc_z


UNIT_TYPES = ("piece", "pack", "dozen")


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("store_id", "name", name="uq_categories_store_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("categories", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data with multi-unit pricing.

    STOCK MODEL:
    - quantity is the authoritative on-hand count, always in base units
      (stock_unit, normally "piece").
    - pack and dozen are pricing denominations, not separate stock pools.
      One pack consumes pack_size base units (Config.DEFAULT_PACK_SIZE when
      NULL), one dozen consumes 12.
    - quantity is mutated ONLY through stock_ledger_service.adjust(), which
      writes a StockLog row for every change.
    - opening_quantity is the seeded quantity the product was created with;
      opening_quantity + SUM(stock_logs.quantity_added) == quantity.

    LIFECYCLE: products referenced by sales are deactivated (is_active=False),
    never hard-deleted.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonnegative"),
        db.Index("ix_products_store_name", "store_id", "name"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    stock_unit = db.Column(db.String(16), nullable=False, default="piece")
    quantity = db.Column(db.Integer, nullable=False, default=0)
    opening_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Base units in one pack; NULL falls back to Config.DEFAULT_PACK_SIZE
    pack_size = db.Column(db.Integer, nullable=True)

    # Authoritative storage in cents, per unit type
    piece_buying_price_cents = db.Column(db.Integer, nullable=True)
    piece_selling_price_cents = db.Column(db.Integer, nullable=True)
    pack_buying_price_cents = db.Column(db.Integer, nullable=True)
    pack_selling_price_cents = db.Column(db.Integer, nullable=True)
    dozen_buying_price_cents = db.Column(db.Integer, nullable=True)
    dozen_selling_price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))
    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __init__(self, **kwargs):
        # A product starts life with its seed quantity recorded as the opening balance
        if "quantity" in kwargs and "opening_quantity" not in kwargs:
            kwargs["opening_quantity"] = kwargs["quantity"]
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "sku": self.sku,
            "name": self.name,
            "stock_unit": self.stock_unit,
            "quantity": self.quantity,
            "opening_quantity": self.opening_quantity,
            "min_quantity": self.min_quantity,
            "pack_size": self.pack_size,
            "piece_buying_price_cents": self.piece_buying_price_cents,
            "piece_selling_price_cents": self.piece_selling_price_cents,
            "pack_buying_price_cents": self.pack_buying_price_cents,
            "pack_selling_price_cents": self.pack_selling_price_cents,
            "dozen_buying_price_cents": self.dozen_buying_price_cents,
            "dozen_selling_price_cents": self.dozen_selling_price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLog(db.Model):
    """
    Append-only stock movement ledger.

    SOURCES:
    - receive: goods received (positive)
    - sale: deduction for a sale item (negative)
    - sale-cancel: restoration when a sale is cancelled (positive)
    - stock-take: variance written when a stock-take is applied (either sign)
    - adjustment: manual correction, damage, shrinkage (either sign)

    quantity_added is signed and always in base units. quantity_after is the
    product quantity immediately after this movement.

    IMMUTABLE: Records are never updated or deleted (enforced by ORM events).
    """
    __tablename__ = "stock_logs"
    __table_args__ = (
        db.Index("ix_stock_logs_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_logs_store_source_occurred", "store_id", "source", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_added = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # Denomination the movement was expressed in (receive in packs, sell by dozen...)
    unit_type = db.Column(db.String(16), nullable=False, default="piece")
    unit_cost_cents = db.Column(db.Integer, nullable=True)  # per base unit
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    source = db.Column(db.String(16), nullable=False, index=True)
    note = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    stock_take_session_id = db.Column(
        db.Integer, db.ForeignKey("stock_take_sessions.id"), nullable=True, index=True
    )

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_logs", lazy=True))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity_added": self.quantity_added,
            "quantity_after": self.quantity_after,
            "unit_type": self.unit_type,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "source": self.source,
            "note": self.note,
            "user_id": self.user_id,
            "sale_id": self.sale_id,
            "stock_take_session_id": self.stock_take_session_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockLog, "before_update")
def _stock_log_is_immutable(mapper, connection, target):
    raise ValueError("stock log entries are append-only")


@event.listens_for(StockLog, "before_delete")
def _stock_log_is_undeletable(mapper, connection, target):
    raise ValueError("stock log entries are append-only")
