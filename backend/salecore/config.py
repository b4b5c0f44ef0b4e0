# backend/salecore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salecore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///salecore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Receipt numbers are rendered as f"{RECEIPT_PREFIX}-{year}-{sequence}"
    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "INV")

    # Combined line + manual discount above this share of sub_total needs a manager
    DISCOUNT_APPROVAL_THRESHOLD_PERCENT = int(
        os.environ.get("DISCOUNT_APPROVAL_THRESHOLD_PERCENT", "10")
    )

    # One loyalty point per N currency units of grand total
    LOYALTY_CURRENCY_UNITS_PER_POINT = int(
        os.environ.get("LOYALTY_CURRENCY_UNITS_PER_POINT", "10")
    )

    # Upper bound on compare-and-swap retry loops for shared counters
    CAS_MAX_ATTEMPTS = int(os.environ.get("CAS_MAX_ATTEMPTS", "25"))
