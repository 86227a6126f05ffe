"""
Stock ledger tests.

Verifies:
- Every adjust writes exactly one StockLog row, zero deltas included
- Quantity never goes negative, even against a stale in-memory read
- Receiving converts units to base units and re-prices the product
- opening_quantity + SUM(quantity_added) == quantity
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from dukapos.models import Product, StockLog
from dukapos.services import stock_ledger_service
from dukapos.services.pricing_service import InvalidUnitType
from dukapos.services.stock_ledger_service import InsufficientStock, adjust
from dukapos.time_utils import utcnow
from dukapos.validation import AdjustStockInput, NotFoundError, ReceiveStockInput, ValidationError


def _logs(db_session, product):
    return db_session.query(StockLog).filter_by(product_id=product.id).order_by(StockLog.id).all()


# =============================================================================
# ADJUST
# =============================================================================


class TestAdjust:

    def test_deduction_writes_one_log(self, db_session, product, cashier_user):
        entry = adjust(product.id, -3, "sale", user_id=cashier_user.id)
        db_session.commit()

        assert product.quantity == 7
        logs = _logs(db_session, product)
        assert len(logs) == 1
        assert logs[0].id == entry.id
        assert logs[0].quantity_added == -3
        assert logs[0].quantity_after == 7
        assert logs[0].source == "sale"
        assert logs[0].user_id == cashier_user.id

    def test_zero_delta_is_still_logged(self, db_session, product):
        adjust(product.id, 0, "adjustment", note="recount, no change")
        db_session.commit()

        assert product.quantity == 10
        logs = _logs(db_session, product)
        assert len(logs) == 1
        assert logs[0].quantity_added == 0

    def test_insufficient_stock_writes_nothing(self, db_session, make_product):
        product = make_product(quantity=2)

        with pytest.raises(InsufficientStock) as exc:
            adjust(product.id, -5, "sale")
        db_session.rollback()

        assert exc.value.available == 2
        assert exc.value.details == {"product_id": product.id, "requested": 5, "available": 2}
        assert exc.value.status_code == 409
        assert product.quantity == 2
        assert _logs(db_session, product) == []

    def test_can_reach_exactly_zero(self, db_session, make_product):
        product = make_product(quantity=4)
        adjust(product.id, -4, "sale")
        db_session.commit()
        assert product.quantity == 0

    def test_guard_uses_database_value_not_stale_read(self, db_session, product):
        assert product.quantity == 10  # loaded into the identity map

        # Another writer takes stock behind this session's back
        db_session.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(quantity=1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(InsufficientStock) as exc:
            adjust(product.id, -3, "sale")

        assert exc.value.available == 1
        assert db_session.query(StockLog).count() == 0
        db_session.rollback()

    def test_unknown_source(self, db_session, product):
        with pytest.raises(ValidationError):
            adjust(product.id, 1, "gift")

    def test_non_integer_delta(self, db_session, product):
        with pytest.raises(ValidationError):
            adjust(product.id, 1.5, "adjustment")

    def test_unknown_product(self, db_session, store):
        with pytest.raises(NotFoundError):
            adjust(999999, 1, "adjustment")

    def test_other_store_product_is_not_found(self, db_session, product, other_store):
        with pytest.raises(NotFoundError):
            adjust(product.id, 1, "adjustment", store_id=other_store.id)

    def test_logs_are_append_only(self, db_session, product):
        entry = adjust(product.id, 2, "adjustment")
        db_session.commit()

        entry.note = "rewritten"
        with pytest.raises(ValueError, match="append-only"):
            db_session.commit()
        db_session.rollback()


# =============================================================================
# RECEIVING
# =============================================================================


class TestReceive:

    def test_receive_packs_converts_to_base_units(self, db_session, product, cashier_user, store):
        # 2 packs of 3 pieces at 300.00 per pack
        entry = stock_ledger_service.receive_stock(
            ReceiveStockInput(
                product_id=product.id,
                quantity=2,
                unit_type="pack",
                buying_price_cents=30000,
                selling_price_cents=40000,
                notes="Supplier delivery",
            ),
            user_id=cashier_user.id,
            store_id=store.id,
        )

        assert product.quantity == 16
        assert product.pack_buying_price_cents == 30000
        assert product.pack_selling_price_cents == 40000
        # Other denominations untouched
        assert product.piece_buying_price_cents == 8000

        assert entry.quantity_added == 6
        assert entry.unit_type == "pack"
        assert entry.source == "receive"
        assert entry.unit_cost_cents == 10000
        assert entry.total_cost_cents == 60000
        assert entry.note == "Supplier delivery"

    def test_receive_dozen(self, db_session, make_product, store):
        product = make_product(quantity=0)
        stock_ledger_service.receive_stock(
            ReceiveStockInput(product.id, 1, "dozen", 90000, 120000),
            user_id=None,
            store_id=store.id,
        )
        assert product.quantity == 12

    def test_unit_cost_rounds_half_up(self, db_session, product, store):
        entry = stock_ledger_service.receive_stock(
            ReceiveStockInput(product.id, 1, "pack", 1000, 1500),
            user_id=None,
            store_id=store.id,
        )
        # 1000 / 3 = 333.33 cents per piece
        assert entry.unit_cost_cents == 333

    def test_invalid_unit_type_changes_nothing(self, db_session, product, store):
        with pytest.raises(InvalidUnitType):
            stock_ledger_service.receive_stock(
                ReceiveStockInput(product.id, 2, "crate", 1000, 1200),
                user_id=None,
                store_id=store.id,
            )
        assert product.quantity == 10
        assert _logs(db_session, product) == []

    def test_inactive_product_cannot_be_received(self, db_session, make_product, store):
        product = make_product(is_active=False)
        with pytest.raises(ValidationError, match="inactive"):
            stock_ledger_service.receive_stock(
                ReceiveStockInput(product.id, 1, "piece", 100, 150),
                user_id=None,
                store_id=store.id,
            )

    def test_bulk_is_all_or_nothing(self, db_session, make_product, store):
        first = make_product(quantity=5)
        items = [
            ReceiveStockInput(first.id, 4, "piece", 8000, 10000),
            ReceiveStockInput(999999, 1, "piece", 100, 200),
        ]
        with pytest.raises(NotFoundError):
            stock_ledger_service.receive_stock_bulk(items, user_id=None, store_id=store.id)

        assert first.quantity == 5
        assert db_session.query(StockLog).count() == 0

    def test_bulk_receives_every_item(self, db_session, make_product, store):
        a = make_product(quantity=0)
        b = make_product(quantity=1)
        entries = stock_ledger_service.receive_stock_bulk(
            [
                ReceiveStockInput(a.id, 2, "pack", 24000, 30000),
                ReceiveStockInput(b.id, 5, "piece", 8000, 10000),
            ],
            user_id=None,
            store_id=store.id,
        )
        assert len(entries) == 2
        assert a.quantity == 6
        assert b.quantity == 6


# =============================================================================
# MANUAL ADJUSTMENT, READS, RECONCILIATION
# =============================================================================


class TestAdjustStock:

    def test_damage_write_off(self, db_session, product, manager_user, store):
        entry = stock_ledger_service.adjust_stock(
            AdjustStockInput(product_id=product.id, quantity_delta=-2, reason="Broken bottles"),
            user_id=manager_user.id,
            store_id=store.id,
        )
        assert product.quantity == 8
        assert entry.source == "adjustment"
        assert entry.note == "Broken bottles"

    def test_write_off_cannot_exceed_stock(self, db_session, product, store):
        with pytest.raises(InsufficientStock):
            stock_ledger_service.adjust_stock(
                AdjustStockInput(product_id=product.id, quantity_delta=-11, reason="Theft"),
                user_id=None,
                store_id=store.id,
            )
        assert product.quantity == 10


class TestLedgerReads:

    def test_movements_newest_first(self, db_session, product, store):
        adjust(product.id, 5, "receive")
        adjust(product.id, -2, "sale")
        db_session.commit()

        movements = stock_ledger_service.list_movements(product.id, store.id)
        assert [m.quantity_added for m in movements] == [-2, 5]

    def test_backdated_entry_keeps_running_balance_order(self, db_session, product, store):
        adjust(product.id, 5, "receive")
        adjust(product.id, -3, "sale", occurred_at=utcnow() - timedelta(days=10))
        db_session.commit()

        movements = stock_ledger_service.list_movements(product.id, store.id)
        assert [m.quantity_added for m in movements] == [-3, 5]
        assert [m.quantity_after for m in movements] == [12, 15]

    def test_ledger_reconciles(self, db_session, product, store):
        stock_ledger_service.receive_stock(
            ReceiveStockInput(product.id, 2, "pack", 24000, 30000), user_id=None, store_id=store.id
        )
        adjust(product.id, -4, "sale")
        adjust(product.id, 1, "adjustment")
        db_session.commit()

        [row] = stock_ledger_service.verify_ledger(product.id)
        assert row["opening_quantity"] == 10
        assert row["logged_delta"] == 3
        assert row["quantity"] == 13
        assert row["ok"] is True

    def test_out_of_band_write_is_detected(self, db_session, product):
        db_session.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(quantity=99)
            .execution_options(synchronize_session=False)
        )
        db_session.commit()

        [row] = stock_ledger_service.verify_ledger(product.id)
        assert row["ok"] is False
        assert row["expected_quantity"] == 10

    def test_verify_unknown_product(self, db_session, store):
        with pytest.raises(NotFoundError):
            stock_ledger_service.verify_ledger(424242)

    def test_low_stock(self, db_session, make_product, store):
        low = make_product(quantity=3, min_quantity=5)
        make_product(quantity=10, min_quantity=5)
        make_product(quantity=0, min_quantity=5, is_active=False)

        products = stock_ledger_service.low_stock(store.id)
        assert [p.id for p in products] == [low.id]

    def test_value_report(self, db_session, make_product, store):
        a = make_product(quantity=0)
        b = make_product(quantity=0)
        stock_ledger_service.receive_stock(ReceiveStockInput(a.id, 2, "pack", 30000, 40000), user_id=None, store_id=store.id)
        stock_ledger_service.receive_stock(ReceiveStockInput(b.id, 5, "piece", 8000, 10000), user_id=None, store_id=store.id)
        # Sales do not count towards stock value received
        adjust(b.id, -1, "sale")
        db_session.commit()

        report = stock_ledger_service.stock_value_report(store.id)
        assert report["total_cost_cents"] == 100000
        assert len(report["by_day"]) == 1
        assert report["by_day"][0]["quantity"] == 11
        by_product = {row["product_id"]: row for row in report["by_product"]}
        assert by_product[a.id]["total_cost_cents"] == 60000
        assert by_product[b.id]["total_cost_cents"] == 40000
