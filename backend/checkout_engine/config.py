# backend/checkout_engine/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///checkout.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bound on how long a checkout waits for the write lock before giving up
    CHECKOUT_LOCK_TIMEOUT_SECONDS = _env_int("CHECKOUT_LOCK_TIMEOUT_SECONDS", 5)
    CHECKOUT_RETRY_ATTEMPTS = 3

    # Pricing policy (all money in cents, tax in basis points: 800 = 8%)
    TAX_RATE_BPS = _env_int("TAX_RATE_BPS", 800)
    FREE_SHIPPING_THRESHOLD_CENTS = _env_int("FREE_SHIPPING_THRESHOLD_CENTS", 10000)
    FLAT_SHIPPING_CENTS = _env_int("FLAT_SHIPPING_CENTS", 999)

    ORDER_NUMBER_MAX_ATTEMPTS = 3
    IDEMPOTENCY_KEY_TTL_HOURS = _env_int("IDEMPOTENCY_KEY_TTL_HOURS", 24)

    # Cancelling a pending/processing order puts its quantities back on the shelf
    RESTOCK_ON_CANCEL = _env_bool("RESTOCK_ON_CANCEL", True)

    PERMISSION_CACHE_TTL_SECONDS = 300

    # "manual" (settled out-of-band) or "hosted" (redirect to a payment page)
    PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "manual")
    PAYMENT_REDIRECT_BASE_URL = os.environ.get("PAYMENT_REDIRECT_BASE_URL")
