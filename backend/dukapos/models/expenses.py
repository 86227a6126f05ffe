from __future__ import annotations

from ..extensions import db
from dukapos.time_utils import to_utc_z


class Expense(db.Model):
    """
    Store expense. Rows with sale_id set were generated from a sale's
    delivery fee and are removed if that sale is cancelled.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_store_date", "store_id", "expense_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    expense_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "sale_id": self.sale_id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "payment_method": self.payment_method,
            "expense_date": to_utc_z(self.expense_date),
            "created_at": to_utc_z(self.created_at),
        }
