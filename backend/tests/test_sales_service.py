"""
Sale transaction tests.

Verifies:
- Stock deduction per unit type with one ledger entry per item
- All-or-nothing: a failing item leaves no sale, items, stock or points behind
- total_amount = SUM(item totals) + delivery_fee
- Delivery fee produces a linked "Delivery" expense
- Loyalty accrual/redemption inside the sale, reversal on cancel
"""

from datetime import timedelta

import pytest

from dukapos.models import Expense, LoyaltyPoints, LoyaltyTransaction, Sale, SaleItem, StockLog
from dukapos.services import loyalty_service, sales_service, stock_ledger_service
from dukapos.services.loyalty_service import InsufficientPoints, InvalidRedeemAmount
from dukapos.services.pricing_service import MissingPriceConfiguration
from dukapos.services.sales_service import SaleStateError
from dukapos.services.stock_ledger_service import InsufficientStock
from dukapos.time_utils import utcnow
from dukapos.validation import (
    CreateSaleInput,
    NotFoundError,
    SaleItemInput,
    UnauthenticatedError,
    ValidationError,
)


def _sell(user, store, *items, **fields):
    data = CreateSaleInput(items=[SaleItemInput(*item) for item in items], **fields)
    return sales_service.create_sale(data, user_id=user.id, store_id=store.id)


def _points(db_session, customer):
    row = db_session.query(LoyaltyPoints).filter_by(customer_id=customer.id).first()
    return row.points if row else 0


# =============================================================================
# STOCK
# =============================================================================


class TestSaleStock:

    def test_sale_of_three_pieces(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 3))

        assert product.quantity == 7
        logs = db_session.query(StockLog).filter_by(product_id=product.id).all()
        assert len(logs) == 1
        assert logs[0].quantity_added == -3
        assert logs[0].source == "sale"
        assert logs[0].sale_id == sale.id
        assert sale.items[0].stock_log_id == logs[0].id

    def test_insufficient_stock_creates_nothing(self, db_session, make_product, cashier_user, store):
        product = make_product(quantity=2)

        with pytest.raises(InsufficientStock):
            _sell(cashier_user, store, (product.id, 5))

        assert product.quantity == 2
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockLog).count() == 0

    def test_failure_on_second_item_rolls_back_all_items(self, db_session, make_product, cashier_user, store):
        first = make_product(quantity=10)
        second = make_product(quantity=1)
        third = make_product(quantity=10)

        with pytest.raises(InsufficientStock) as exc:
            _sell(cashier_user, store, (first.id, 2), (second.id, 5), (third.id, 2))

        assert exc.value.product_id == second.id
        assert (first.quantity, second.quantity, third.quantity) == (10, 1, 10)
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(StockLog).count() == 0

    def test_pack_sale_deducts_base_units(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 2, "pack"))

        assert product.quantity == 4
        item = sale.items[0]
        assert item.unit_type == "pack"
        assert item.quantity == 2
        assert item.base_quantity == 6
        assert item.unit_price_cents == 30000
        assert item.total_cents == 60000

    def test_dozen_larger_than_stock(self, db_session, product, cashier_user, store):
        with pytest.raises(InsufficientStock):
            _sell(cashier_user, store, (product.id, 1, "dozen"))
        assert product.quantity == 10

    def test_same_product_twice_in_one_cart(self, db_session, make_product, cashier_user, store):
        product = make_product(quantity=5)
        with pytest.raises(InsufficientStock):
            _sell(cashier_user, store, (product.id, 3), (product.id, 3))
        assert product.quantity == 5

    def test_inactive_product_rejected(self, db_session, make_product, cashier_user, store):
        product = make_product(is_active=False)
        with pytest.raises(ValidationError, match="inactive"):
            _sell(cashier_user, store, (product.id, 1))

    def test_unknown_product(self, db_session, cashier_user, store):
        with pytest.raises(NotFoundError):
            _sell(cashier_user, store, (987654, 1))

    def test_catalog_price_required_when_not_supplied(self, db_session, make_product, cashier_user, store):
        product = make_product(dozen_buying_price_cents=None, quantity=24)
        with pytest.raises(MissingPriceConfiguration):
            _sell(cashier_user, store, (product.id, 1, "dozen"))

        # An explicit price bypasses the catalog lookup
        sale = _sell(cashier_user, store, (product.id, 1, "dozen", 100000))
        assert sale.total_amount_cents == 100000
        assert product.quantity == 12


# =============================================================================
# PRE-TRANSACTION CHECKS
# =============================================================================


class TestSaleRejections:

    def test_requires_acting_user(self, db_session, product, store):
        data = CreateSaleInput(items=[SaleItemInput(product.id, 1)])
        with pytest.raises(UnauthenticatedError):
            sales_service.create_sale(data, user_id=None, store_id=store.id)
        assert product.quantity == 10

    def test_requires_items(self, db_session, cashier_user, store):
        with pytest.raises(ValidationError, match="No items"):
            sales_service.create_sale(CreateSaleInput(items=[]), user_id=cashier_user.id, store_id=store.id)

    def test_requires_store(self, db_session, product, org_admin):
        data = CreateSaleInput(items=[SaleItemInput(product.id, 1)])
        with pytest.raises(ValidationError, match="store_id required"):
            sales_service.create_sale(data, user_id=org_admin.id, store_id=None)
        assert product.quantity == 10
        assert db_session.query(Sale).count() == 0

    def test_future_historical_date(self, db_session, product, cashier_user, store):
        with pytest.raises(ValidationError, match="future"):
            _sell(cashier_user, store, (product.id, 1), historical_date=utcnow() + timedelta(days=1))
        assert product.quantity == 10


# =============================================================================
# TOTALS AND PAYMENT
# =============================================================================


class TestSaleTotals:

    def test_defaults(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 3))

        assert sale.status == "completed"
        assert sale.payment_status == "paid"
        assert sale.payment_method == "cash"
        assert sale.total_amount_cents == 30000
        assert sale.amount_due_cents == 30000
        assert sale.amount_paid_cents == 30000
        assert sale.change_amount_cents == 0
        assert sale.is_historical is False
        assert sale.user_id == cashier_user.id
        assert sale.store_id == store.id

    def test_total_equals_items_plus_delivery(self, db_session, make_product, cashier_user, store):
        a = make_product()
        b = make_product()
        sale = _sell(
            cashier_user, store,
            (a.id, 2, "piece", 15050),
            (b.id, 1, "pack"),
            delivery_fee_cents=5000,
        )
        assert sum(item.total_cents for item in sale.items) == 30100 + 30000
        assert sale.total_amount_cents == 30100 + 30000 + 5000

    def test_client_item_total_must_match(self, db_session, product, cashier_user, store):
        with pytest.raises(ValidationError, match="quantity x unit_price"):
            _sell(cashier_user, store, (product.id, 2, "piece", 10000, 25000))
        assert db_session.query(Sale).count() == 0

    def test_client_sale_total_must_match(self, db_session, product, cashier_user, store):
        with pytest.raises(ValidationError, match="Sale total"):
            _sell(cashier_user, store, (product.id, 2), total_cents=25000)
        assert product.quantity == 10

    def test_client_total_within_rounding_tolerance(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 3, "piece", 3333, 10000), total_cents=10000)
        # The stored total is always the recomputed one
        assert sale.total_amount_cents == 9999

    def test_change_is_returned(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 3), amount_paid_cents=50000)
        assert sale.amount_paid_cents == 50000
        assert sale.change_amount_cents == 20000

    def test_underpaid_paid_sale_rejected(self, db_session, product, cashier_user, store):
        with pytest.raises(ValidationError, match="amount_paid"):
            _sell(cashier_user, store, (product.id, 3), amount_paid_cents=10000)
        assert product.quantity == 10

    def test_pending_credit_sale_may_be_unpaid(self, db_session, product, cashier_user, store):
        sale = _sell(
            cashier_user, store, (product.id, 1),
            payment_method="credit", payment_status="pending", amount_paid_cents=0,
        )
        assert sale.payment_status == "pending"
        assert sale.amount_paid_cents == 0
        assert product.quantity == 9

    def test_historical_sale_is_backdated(self, db_session, product, cashier_user, store):
        when = (utcnow() - timedelta(days=30)).replace(microsecond=0)
        sale = _sell(cashier_user, store, (product.id, 1), historical_date=when)

        assert sale.is_historical is True
        assert sale.created_at == when
        assert sale.updated_at == when
        log = db_session.query(StockLog).filter_by(sale_id=sale.id).one()
        assert log.occurred_at == when
        assert product.quantity == 9

    def test_historical_sale_backdates_items_and_points(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer()
        loyalty_service.accrue(customer.id, 50000)
        db_session.commit()
        when = (utcnow() - timedelta(days=7)).replace(microsecond=0)
        sale = _sell(
            cashier_user, store, (product.id, 2),
            customer_id=customer.id, redeem_points=100, historical_date=when,
        )

        assert [item.created_at for item in sale.items] == [when]
        txns = db_session.query(LoyaltyTransaction).filter_by(sale_id=sale.id).all()
        assert sorted(t.type for t in txns) == ["earn", "redeem"]
        assert all(t.created_at == when for t in txns)


# =============================================================================
# DELIVERY EXPENSE
# =============================================================================


class TestDeliveryExpense:

    def test_delivery_fee_creates_expense(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 1), delivery_fee_cents=10000)

        assert sale.total_amount_cents == 20000
        expense = db_session.query(Expense).one()
        assert expense.amount_cents == 10000
        assert expense.category == "Delivery"
        assert expense.sale_id == sale.id
        assert f"#{sale.id}" in expense.description
        assert expense.store_id == store.id
        assert expense.user_id == cashier_user.id

    def test_no_fee_no_expense(self, db_session, product, cashier_user, store):
        _sell(cashier_user, store, (product.id, 1))
        assert db_session.query(Expense).count() == 0

    def test_expense_rolls_back_with_sale(self, db_session, make_product, cashier_user, store):
        product = make_product(quantity=1)
        with pytest.raises(InsufficientStock):
            _sell(cashier_user, store, (product.id, 2), delivery_fee_cents=10000)
        assert db_session.query(Expense).count() == 0


# =============================================================================
# LOYALTY
# =============================================================================


class TestSaleLoyalty:

    def test_completed_paid_sale_earns_by_tier(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer(tier="silver")
        sale = _sell(cashier_user, store, (product.id, 3), customer_id=customer.id)

        # 300.00 spent x 1.5
        assert sale.loyalty_points_earned == 450
        assert _points(db_session, customer) == 450
        txn = db_session.query(LoyaltyTransaction).filter_by(customer_id=customer.id).one()
        assert (txn.type, txn.points, txn.sale_id) == ("earn", 450, sale.id)

    def test_points_ignore_delivery_fee(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer()
        sale = _sell(cashier_user, store, (product.id, 1), customer_id=customer.id, delivery_fee_cents=5000)
        assert sale.loyalty_points_earned == 100

    def test_points_are_floored(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer(tier="silver")
        sale = _sell(cashier_user, store, (product.id, 1, "piece", 999), customer_id=customer.id)
        # 9.99 x 1.5 = 14.985
        assert sale.loyalty_points_earned == 14

    def test_walk_in_earns_nothing(self, db_session, product, walk_in, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 3), customer_id=walk_in.id)
        assert sale.loyalty_points_earned == 0
        assert db_session.query(LoyaltyTransaction).count() == 0

    def test_pending_payment_earns_nothing(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer()
        sale = _sell(
            cashier_user, store, (product.id, 3),
            customer_id=customer.id, payment_status="pending", amount_paid_cents=0,
        )
        assert sale.loyalty_points_earned == 0
        assert _points(db_session, customer) == 0

    def test_unknown_customer(self, db_session, product, cashier_user, store):
        with pytest.raises(NotFoundError):
            _sell(cashier_user, store, (product.id, 1), customer_id=55555)
        assert product.quantity == 10

    def test_redeem_at_checkout(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer()
        loyalty_service.accrue(customer.id, 50000)  # 500 points
        db_session.commit()

        sale = _sell(cashier_user, store, (product.id, 3), customer_id=customer.id, redeem_points=200)

        assert sale.loyalty_points_redeemed == 200
        assert sale.loyalty_discount_cents == 2000  # 200 points / 10 per unit
        assert sale.total_amount_cents == 30000
        assert sale.amount_due_cents == 28000
        assert sale.amount_paid_cents == 28000
        # Earned on the discounted subtotal
        assert sale.loyalty_points_earned == 280
        assert _points(db_session, customer) == 500 - 200 + 280
        assert all(row["ok"] for row in loyalty_service.verify_balances())

    def test_redeem_not_a_multiple_rolls_back(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer()
        loyalty_service.accrue(customer.id, 50000)
        db_session.commit()

        with pytest.raises(InvalidRedeemAmount):
            _sell(cashier_user, store, (product.id, 3), customer_id=customer.id, redeem_points=150)

        assert product.quantity == 10
        assert _points(db_session, customer) == 500
        assert db_session.query(Sale).count() == 0

    def test_redeem_more_than_balance_rolls_back(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer()
        loyalty_service.accrue(customer.id, 50000)
        db_session.commit()

        with pytest.raises(InsufficientPoints):
            _sell(cashier_user, store, (product.id, 3), customer_id=customer.id, redeem_points=1000)

        assert product.quantity == 10
        assert _points(db_session, customer) == 500

    def test_walk_in_cannot_redeem(self, db_session, product, walk_in, cashier_user, store):
        with pytest.raises(ValidationError, match="registered customer"):
            _sell(cashier_user, store, (product.id, 1), customer_id=walk_in.id, redeem_points=100)


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancelSale:

    def test_cancel_restores_everything(self, db_session, product, make_customer, cashier_user, manager_user, store):
        customer = make_customer()
        sale = _sell(cashier_user, store, (product.id, 3), customer_id=customer.id, delivery_fee_cents=10000)
        assert product.quantity == 7
        assert _points(db_session, customer) == 300

        cancelled = sales_service.cancel_sale(
            sale.id, user_id=manager_user.id, store_id=store.id, reason="Customer returned goods"
        )

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by_user_id == manager_user.id
        assert cancelled.cancel_reason == "Customer returned goods"
        assert cancelled.cancelled_at is not None
        assert product.quantity == 10
        assert _points(db_session, customer) == 0
        assert db_session.query(Expense).count() == 0

        restore = db_session.query(StockLog).filter_by(sale_id=sale.id, source="sale-cancel").one()
        assert restore.quantity_added == 3
        reversal = db_session.query(LoyaltyTransaction).filter_by(type="reversal").one()
        assert reversal.points == -300

        [row] = stock_ledger_service.verify_ledger(product.id)
        assert row["ok"] is True
        assert all(row["ok"] for row in loyalty_service.verify_balances())

    def test_cancel_returns_redeemed_points(self, db_session, product, make_customer, cashier_user, store):
        customer = make_customer()
        loyalty_service.accrue(customer.id, 50000)
        db_session.commit()
        sale = _sell(cashier_user, store, (product.id, 3), customer_id=customer.id, redeem_points=200)
        assert _points(db_session, customer) == 580

        sales_service.cancel_sale(sale.id, user_id=cashier_user.id, store_id=store.id)

        assert _points(db_session, customer) == 500
        assert all(row["ok"] for row in loyalty_service.verify_balances())

    def test_cancel_twice_is_rejected(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 3))
        sales_service.cancel_sale(sale.id, user_id=cashier_user.id, store_id=store.id)

        with pytest.raises(SaleStateError):
            sales_service.cancel_sale(sale.id, user_id=cashier_user.id, store_id=store.id)
        assert product.quantity == 10

    def test_cancel_unknown_sale(self, db_session, cashier_user, store):
        with pytest.raises(NotFoundError):
            sales_service.cancel_sale(1234, user_id=cashier_user.id, store_id=store.id)

    def test_cancel_from_other_store(self, db_session, product, cashier_user, store, other_store):
        sale = _sell(cashier_user, store, (product.id, 1))
        with pytest.raises(NotFoundError):
            sales_service.cancel_sale(sale.id, user_id=cashier_user.id, store_id=other_store.id)


class TestSaleReads:

    def test_list_and_filter(self, db_session, product, cashier_user, store):
        first = _sell(cashier_user, store, (product.id, 1))
        second = _sell(cashier_user, store, (product.id, 1))
        sales_service.cancel_sale(first.id, user_id=cashier_user.id, store_id=store.id)

        sales, total = sales_service.list_sales(store.id)
        assert total == 2
        assert {s.id for s in sales} == {first.id, second.id}

        sales, total = sales_service.list_sales(store.id, status="completed")
        assert total == 1
        assert sales[0].id == second.id

    def test_get_sale_with_items(self, db_session, product, cashier_user, store):
        sale = _sell(cashier_user, store, (product.id, 2))
        data = sales_service.get_sale(sale.id, store.id).to_dict()
        assert data["items"][0]["product_name"] == product.name
        assert data["items"][0]["total_cents"] == 20000
