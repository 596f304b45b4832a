# backend/pharmapos/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///pharmapos.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Cash shift close: |real - expected| above this flags the shift for audit
    CASH_TOLERANCE_THRESHOLD = Decimal(os.environ.get("TOLERANCE_THRESHOLD", "10.00"))

    # Invoice numbers look like F-000001
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "F")
    INVOICE_NUMBER_PADDING = int(os.environ.get("INVOICE_NUMBER_PADDING", "6"))
    PURCHASE_PREFIX = os.environ.get("PURCHASE_PREFIX", "C")

    KARDEX_DEFAULT_LIMIT = 50


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
