# Overview: Unit pricing resolver; maps piece/pack/dozen to prices and base-unit multipliers.

"""
Unit Pricing Service

A product keeps one stock pool in base units (pieces) and up to three
price pairs: per piece, per pack and per dozen. Resolving a unit type
answers "what does one of these cost, what does it sell for, and how many
base units does it take out of (or put into) stock?"

RULES:
- piece = 1 base unit, pack = product.pack_size (DEFAULT_PACK_SIZE when
  unset), dozen = DOZEN_SIZE.
- A buying price of NULL or 0 is "not configured".
- A selling price of NULL is "not configured"; 0 is allowed but flagged
  for review (logged, never rejected).

Pure lookups: nothing here touches the session.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app, has_app_context

from ..models import Product, UNIT_TYPES
from ..validation import ValidationError


logger = logging.getLogger(__name__)

DEFAULT_PACK_SIZE = 3
DOZEN_SIZE = 12


class InvalidUnitType(ValidationError):
    code = "invalid_unit_type"


class MissingPriceConfiguration(ValidationError):
    code = "missing_price_configuration"


@dataclass(frozen=True)
class UnitPrice:
    unit_type: str
    buying_price_cents: int
    selling_price_cents: int
    base_units_per_unit: int
    needs_review: bool = False

    def to_dict(self) -> dict:
        return {
            "unit_type": self.unit_type,
            "buying_price_cents": self.buying_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "base_units_per_unit": self.base_units_per_unit,
            "needs_review": self.needs_review,
        }


def _config_int(key: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(key, default))
    return default


def validate_unit_type(unit_type: str) -> str:
    normalized = (unit_type or "").strip().lower()
    if normalized not in UNIT_TYPES:
        raise InvalidUnitType(
            f"Invalid unit type: {unit_type!r}. Must be one of: {', '.join(UNIT_TYPES)}",
            details={"unit_type": unit_type},
        )
    return normalized


def base_units_per_unit(product: Product, unit_type: str) -> int:
    """How many base units one unit_type of this product represents."""
    unit_type = validate_unit_type(unit_type)
    if unit_type == "piece":
        return 1
    if unit_type == "pack":
        if product.pack_size and product.pack_size > 0:
            return product.pack_size
        return _config_int("DEFAULT_PACK_SIZE", DEFAULT_PACK_SIZE)
    return _config_int("DOZEN_SIZE", DOZEN_SIZE)


def price_fields(unit_type: str) -> tuple[str, str]:
    """Product attribute names (buying, selling) for a unit type."""
    unit_type = validate_unit_type(unit_type)
    return f"{unit_type}_buying_price_cents", f"{unit_type}_selling_price_cents"


def resolve(product: Product, unit_type: str) -> UnitPrice:
    """
    Resolve prices and the stock multiplier for one unit of unit_type.

    Raises:
        InvalidUnitType: unit_type is not piece/pack/dozen
        MissingPriceConfiguration: no buying price (NULL or 0) or no selling price (NULL)
    """
    unit_type = validate_unit_type(unit_type)
    buying_attr, selling_attr = price_fields(unit_type)
    buying = getattr(product, buying_attr)
    selling = getattr(product, selling_attr)

    if not buying:
        raise MissingPriceConfiguration(
            f"Product {product.id} has no {unit_type} buying price configured",
            details={"product_id": product.id, "unit_type": unit_type, "field": "buying_price"},
        )
    if selling is None:
        raise MissingPriceConfiguration(
            f"Product {product.id} has no {unit_type} selling price configured",
            details={"product_id": product.id, "unit_type": unit_type, "field": "selling_price"},
        )

    needs_review = selling == 0
    if needs_review:
        logger.warning(
            "Product %s (%s) has a zero %s selling price; flagged for review",
            product.id, product.sku, unit_type,
        )

    return UnitPrice(
        unit_type=unit_type,
        buying_price_cents=buying,
        selling_price_cents=selling,
        base_units_per_unit=base_units_per_unit(product, unit_type),
        needs_review=needs_review,
    )
