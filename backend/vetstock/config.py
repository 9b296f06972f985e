# backend/vetstock/config.py
from __future__ import annotations
import os


def _float_or_none(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vetstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///vetstock.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # What happens when a paid invoice cannot be fully deducted from stock:
    # "report" keeps the invoice paid and returns advisory errors,
    # "revert" reverses the deductions and moves the invoice back to "sent".
    STOCK_SHORTFALL_POLICY = os.environ.get("STOCK_SHORTFALL_POLICY", "report")

    # Wall-clock budget for one reconciliation run (unset = no deadline)
    RECONCILIATION_DEADLINE_SECONDS = _float_or_none(
        os.environ.get("RECONCILIATION_DEADLINE_SECONDS")
    )

    EXPIRY_CRITICAL_DAYS = int(os.environ.get("EXPIRY_CRITICAL_DAYS", "7"))
    EXPIRY_WARNING_DAYS = int(os.environ.get("EXPIRY_WARNING_DAYS", "30"))
