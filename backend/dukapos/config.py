# backend/dukapos/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/dukapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///dukapos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Unit pricing: pack size applies when a product has none of its own
    DEFAULT_PACK_SIZE = _env_int("DEFAULT_PACK_SIZE", 3)
    DOZEN_SIZE = 12

    # Loyalty policy (multipliers are strings so Decimal math stays exact)
    LOYALTY_TIER_MULTIPLIERS = {
        "bronze": "1",
        "silver": "1.5",
        "gold": "2",
    }
    LOYALTY_POINTS_PER_CURRENCY_UNIT = _env_int("LOYALTY_POINTS_PER_CURRENCY_UNIT", 10)
    LOYALTY_REDEEM_INCREMENT = _env_int("LOYALTY_REDEEM_INCREMENT", 100)

    # "fail" rejects the whole apply, "clamp" floors drifted items at zero
    STOCK_TAKE_NEGATIVE_POLICY = os.environ.get("STOCK_TAKE_NEGATIVE_POLICY", "fail")

    DELIVERY_EXPENSE_CATEGORY = "Delivery"

    # Backdated timestamps may sit this far in the future (clock skew)
    FUTURE_SKEW_MINUTES = 2

    SESSION_ABSOLUTE_HOURS = _env_int("SESSION_ABSOLUTE_HOURS", 24)
    SESSION_IDLE_HOURS = _env_int("SESSION_IDLE_HOURS", 2)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
