"""Request schemas: coercion, defaults and rejection at the boundary."""

from datetime import datetime

import pytest

from dukapos.validation import (
    ValidationError,
    parse_adjust_stock,
    parse_create_sale,
    parse_receive_stock,
    parse_receive_stock_bulk,
    parse_stock_take_submission,
    to_cents,
)


class TestToCents:

    @pytest.mark.parametrize("raw,expected", [
        (150, 15000),
        (150.5, 15050),
        ("150.50", 15050),
        ("1,200", 120000),
        ("0.005", 1),
        ("0.004", 0),
        (0, 0),
    ])
    def test_converts_major_units(self, raw, expected):
        assert to_cents("amount", raw) == expected

    @pytest.mark.parametrize("raw", [-1, "abc", True, None, [], "NaN"])
    def test_rejects_bad_amounts(self, raw):
        with pytest.raises(ValidationError):
            to_cents("amount", raw)


class TestCreateSale:

    def test_defaults_are_explicit(self):
        data = parse_create_sale({"items": [{"product_id": 1, "quantity": 2}]})
        assert data.status == "completed"
        assert data.payment_status == "paid"
        assert data.payment_method == "cash"
        assert data.delivery_fee_cents == 0
        assert data.items[0].unit_type == "piece"
        assert data.items[0].unit_price_cents is None

    def test_parses_full_body(self):
        data = parse_create_sale({
            "items": [{"product_id": "3", "quantity": "2", "unit_type": "Pack", "unit_price": 300, "total": 600}],
            "total": 700,
            "payment_method": "mpesa",
            "status": "pending",
            "payment_status": "pending",
            "amount_paid": "700",
            "customer_id": 9,
            "delivery_fee": 100,
            "historical_date": "2026-01-05T10:00:00Z",
            "redeem_points": 200,
        })
        item = data.items[0]
        assert (item.product_id, item.quantity, item.unit_type) == (3, 2, "pack")
        assert item.unit_price_cents == 30000
        assert item.total_cents == 60000
        assert data.total_cents == 70000
        assert data.payment_method == "mpesa"
        assert data.amount_paid_cents == 70000
        assert data.delivery_fee_cents == 10000
        assert data.historical_date == datetime(2026, 1, 5, 10, 0, 0)
        assert data.redeem_points == 200

    @pytest.mark.parametrize("body", [None, {}, {"items": []}])
    def test_no_items(self, body):
        with pytest.raises(ValidationError, match="No items provided for sale"):
            parse_create_sale(body)

    @pytest.mark.parametrize("item", [
        {"quantity": 1},
        {"product_id": 1, "quantity": 0},
        {"product_id": 1, "quantity": -2},
        {"product_id": 1, "quantity": 1.5},
        {"product_id": 1, "quantity": "1e3"},
    ])
    def test_bad_items(self, item):
        with pytest.raises(ValidationError, match=r"items\[0\]"):
            parse_create_sale({"items": [item]})

    def test_cancelled_is_not_a_creation_status(self):
        with pytest.raises(ValidationError):
            parse_create_sale({"items": [{"product_id": 1, "quantity": 1}], "status": "cancelled"})

    def test_unknown_payment_method(self):
        with pytest.raises(ValidationError):
            parse_create_sale({"items": [{"product_id": 1, "quantity": 1}], "payment_method": "barter"})

    def test_bad_historical_date(self):
        with pytest.raises(ValidationError):
            parse_create_sale({"items": [{"product_id": 1, "quantity": 1}], "historical_date": "yesterday"})


class TestStockBodies:

    def test_receive_requires_prices(self):
        with pytest.raises(ValidationError, match="buying_price is required"):
            parse_receive_stock({"product_id": 1, "quantity": 2, "unit_type": "pack", "selling_price": 400})

    def test_receive(self):
        data = parse_receive_stock({
            "product_id": 1, "quantity": 2, "unit_type": "pack",
            "buying_price": 300, "selling_price": 400, "notes": "Supplier A",
        })
        assert data.buying_price_cents == 30000
        assert data.selling_price_cents == 40000
        assert data.notes == "Supplier A"

    def test_bulk_reports_item_index(self):
        with pytest.raises(ValidationError, match=r"items\[1\]"):
            parse_receive_stock_bulk({"items": [
                {"product_id": 1, "quantity": 1, "buying_price": 1, "selling_price": 2},
                {"product_id": 2, "quantity": 0, "buying_price": 1, "selling_price": 2},
            ]})

    def test_bulk_store_id_applies_to_items(self):
        items = parse_receive_stock_bulk({"store_id": 4, "items": [
            {"product_id": 1, "quantity": 1, "buying_price": 1, "selling_price": 2},
        ]})
        assert items[0].store_id == 4

    def test_adjust_requires_reason_and_non_zero_delta(self):
        with pytest.raises(ValidationError, match="reason"):
            parse_adjust_stock({"product_id": 1, "quantity_delta": -2})
        with pytest.raises(ValidationError, match="non-zero"):
            parse_adjust_stock({"product_id": 1, "quantity_delta": 0, "reason": "damage"})

    def test_stock_take_rejects_duplicates(self):
        with pytest.raises(ValidationError, match="more than once"):
            parse_stock_take_submission({"items": [
                {"product_id": 1, "counted_quantity": 4},
                {"product_id": 1, "counted_quantity": 5},
            ]})

    def test_stock_take_rejects_negative_count(self):
        with pytest.raises(ValidationError):
            parse_stock_take_submission({"items": [{"product_id": 1, "counted_quantity": -1}]})
