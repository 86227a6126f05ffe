from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from dukapos.time_utils import parse_iso_datetime


# Maximum money amount: 99,999,999.99 (9,999,999,999 cents)
MAX_AMOUNT_CENTS = 9_999_999_999

# Payment vocabulary. Kept here (not imported from models) so the boundary
# has no ORM dependency.
PAYMENT_METHODS = ("cash", "mpesa", "card", "credit")
PAYMENT_STATUSES = ("paid", "pending", "failed")
CREATE_SALE_STATUSES = ("pending", "completed")


class ValidationError(ValueError):
    """400-level input problem."""
    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level missing resource."""
    code = "not_found"
    status_code = 404

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class UnauthenticatedError(PermissionError):
    """401: no acting user attached to the request."""
    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., insufficient stock)."""
    code = "conflict"
    status_code = 409

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# Errors that carry their own status code and are safe to show the caller
DOMAIN_ERRORS = (ValidationError, NotFoundError, ConflictError, UnauthenticatedError)


def error_payload(exc: Exception) -> dict:
    """JSON body for a classified domain error."""
    body = {
        "error": getattr(exc, "code", "error"),
        "message": str(exc),
    }
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return body


# =============================================================================
# FIELD COERCION
# =============================================================================

def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Whole-number floats from JSON (3.0) are accepted, fractional ones are not
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _get_int(
    payload: dict,
    key: str,
    *,
    required: bool = True,
    minimum: int | None = None,
    default: int | None = None,
) -> int | None:
    raw = payload.get(key)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{key} is required")
        return default
    value = _coerce_int(key, raw)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def to_cents(key: str, value: Any) -> int:
    """
    Convert a major-unit currency amount (150, 150.5, "150.50") to integer
    cents, rounding half-up. Negative amounts are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        raw = str(value)
    elif isinstance(value, str):
        raw = value.strip().replace(",", "")
    else:
        raise ValidationError(f"{key} must be a number")
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{key} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{key} must be a number")

    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0:
        raise ValidationError(f"{key} must be >= 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} exceeds the maximum allowed amount")
    return cents


def _get_cents(payload: dict, key: str, *, required: bool = False) -> int | None:
    raw = payload.get(key)
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{key} is required")
        return None
    return to_cents(key, raw)


def _get_text(payload: dict, key: str, *, max_length: int = 255) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text


def _get_choice(payload: dict, key: str, choices: tuple[str, ...], default: str) -> str:
    raw = payload.get(key)
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return default
    value = str(raw).strip().lower()
    if value not in choices:
        raise ValidationError(f"{key} must be one of: {', '.join(choices)}")
    return value


def _get_unit_type(payload: dict, key: str = "unit_type") -> str:
    # Unknown unit types are rejected by the pricing resolver (InvalidUnitType)
    raw = payload.get(key)
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return "piece"
    return str(raw).strip().lower()


def _require_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _get_list(payload: dict, key: str, *, empty_message: str) -> list:
    raw = payload.get(key)
    if raw is None:
        raise ValidationError(empty_message)
    if not isinstance(raw, list):
        raise ValidationError(f"{key} must be a list")
    if not raw:
        raise ValidationError(empty_message)
    return raw


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class SaleItemInput:
    product_id: int
    quantity: int
    unit_type: str = "piece"
    # None means "price from the catalog for this unit type"
    unit_price_cents: int | None = None
    total_cents: int | None = None


@dataclass(frozen=True)
class CreateSaleInput:
    """
    Validated create-sale body.

    Defaults are part of the contract: a sale is "completed" and "paid"
    unless the caller says otherwise, and is paid in cash.
    """
    items: list[SaleItemInput]
    payment_method: str = "cash"
    status: str = "completed"
    payment_status: str = "paid"
    total_cents: int | None = None
    amount_paid_cents: int | None = None
    customer_id: int | None = None
    delivery_fee_cents: int = 0
    historical_date: datetime | None = None
    redeem_points: int | None = None
    store_id: int | None = None


@dataclass(frozen=True)
class ReceiveStockInput:
    product_id: int
    quantity: int
    unit_type: str
    buying_price_cents: int
    selling_price_cents: int
    notes: str | None = None
    store_id: int | None = None


@dataclass(frozen=True)
class AdjustStockInput:
    product_id: int
    quantity_delta: int
    reason: str
    store_id: int | None = None


@dataclass(frozen=True)
class StockTakeCountInput:
    product_id: int
    counted_quantity: int
    notes: str | None = None


@dataclass(frozen=True)
class StockTakeSubmissionInput:
    items: list[StockTakeCountInput] = field(default_factory=list)
    notes: str | None = None
    store_id: int | None = None


def _parse_sale_item(index: int, raw: Any) -> SaleItemInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")
    try:
        return SaleItemInput(
            product_id=_get_int(raw, "product_id", minimum=1),
            quantity=_get_int(raw, "quantity", minimum=1),
            unit_type=_get_unit_type(raw),
            unit_price_cents=_get_cents(raw, "unit_price"),
            total_cents=_get_cents(raw, "total"),
        )
    except ValidationError as e:
        raise ValidationError(f"items[{index}]: {e}") from e


def parse_create_sale(payload: Any) -> CreateSaleInput:
    payload = _require_object(payload)
    raw_items = _get_list(payload, "items", empty_message="No items provided for sale")
    items = [_parse_sale_item(i, raw) for i, raw in enumerate(raw_items)]

    historical_date = None
    raw_date = payload.get("historical_date")
    if raw_date not in (None, ""):
        if not isinstance(raw_date, str):
            raise ValidationError("historical_date must be an ISO-8601 datetime")
        try:
            historical_date = parse_iso_datetime(raw_date)
        except ValueError:
            raise ValidationError("historical_date must be an ISO-8601 datetime")

    redeem_points = _get_int(payload, "redeem_points", required=False)
    if redeem_points == 0:
        redeem_points = None

    return CreateSaleInput(
        items=items,
        payment_method=_get_choice(payload, "payment_method", PAYMENT_METHODS, "cash"),
        status=_get_choice(payload, "status", CREATE_SALE_STATUSES, "completed"),
        payment_status=_get_choice(payload, "payment_status", PAYMENT_STATUSES, "paid"),
        total_cents=_get_cents(payload, "total"),
        amount_paid_cents=_get_cents(payload, "amount_paid"),
        customer_id=_get_int(payload, "customer_id", required=False, minimum=1),
        delivery_fee_cents=_get_cents(payload, "delivery_fee") or 0,
        historical_date=historical_date,
        redeem_points=redeem_points,
        store_id=_get_int(payload, "store_id", required=False, minimum=1),
    )


def _parse_receive(payload: dict) -> ReceiveStockInput:
    return ReceiveStockInput(
        product_id=_get_int(payload, "product_id", minimum=1),
        quantity=_get_int(payload, "quantity", minimum=1),
        unit_type=_get_unit_type(payload),
        buying_price_cents=_get_cents(payload, "buying_price", required=True),
        selling_price_cents=_get_cents(payload, "selling_price", required=True),
        notes=_get_text(payload, "notes"),
        store_id=_get_int(payload, "store_id", required=False, minimum=1),
    )


def parse_receive_stock(payload: Any) -> ReceiveStockInput:
    return _parse_receive(_require_object(payload))


def parse_receive_stock_bulk(payload: Any) -> list[ReceiveStockInput]:
    payload = _require_object(payload)
    raw_items = _get_list(payload, "items", empty_message="No items provided")
    store_id = _get_int(payload, "store_id", required=False, minimum=1)

    parsed = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        try:
            item = _parse_receive(raw)
        except ValidationError as e:
            raise ValidationError(f"items[{i}]: {e}") from e
        if store_id is not None and item.store_id is None:
            item = replace(item, store_id=store_id)
        parsed.append(item)
    return parsed


def parse_adjust_stock(payload: Any) -> AdjustStockInput:
    payload = _require_object(payload)
    reason = _get_text(payload, "reason")
    if not reason:
        raise ValidationError("reason is required")
    delta = _get_int(payload, "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    return AdjustStockInput(
        product_id=_get_int(payload, "product_id", minimum=1),
        quantity_delta=delta,
        reason=reason,
        store_id=_get_int(payload, "store_id", required=False, minimum=1),
    )


def parse_stock_take_submission(payload: Any) -> StockTakeSubmissionInput:
    payload = _require_object(payload)
    raw_items = _get_list(payload, "items", empty_message="No counted items provided")

    items = []
    seen: set[int] = set()
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        try:
            item = StockTakeCountInput(
                product_id=_get_int(raw, "product_id", minimum=1),
                counted_quantity=_get_int(raw, "counted_quantity", minimum=0),
                notes=_get_text(raw, "notes", max_length=1000),
            )
        except ValidationError as e:
            raise ValidationError(f"items[{i}]: {e}") from e
        if item.product_id in seen:
            raise ValidationError(f"Product {item.product_id} is counted more than once")
        seen.add(item.product_id)
        items.append(item)

    return StockTakeSubmissionInput(
        items=items,
        notes=_get_text(payload, "notes", max_length=2000),
        store_id=_get_int(payload, "store_id", required=False, minimum=1),
    )


def parse_review_notes(payload: Any) -> str | None:
    return _get_text(_require_object(payload), "notes", max_length=2000)
