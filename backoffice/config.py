# backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///backoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # 1000 bps = 10% sales tax on the subtotal
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "1000"))

    # 1 point per 100 currency units spent (100 units = 10000 cents)
    LOYALTY_CENTS_PER_POINT = int(os.environ.get("LOYALTY_CENTS_PER_POINT", "10000"))
    LOYALTY_COUPON_THRESHOLD = int(os.environ.get("LOYALTY_COUPON_THRESHOLD", "500"))
    LOYALTY_COUPON_PERCENT = int(os.environ.get("LOYALTY_COUPON_PERCENT", "5"))
    LOYALTY_COUPON_EXPIRY_DAYS = int(os.environ.get("LOYALTY_COUPON_EXPIRY_DAYS", "30"))

    COUPON_CODE_ATTEMPTS = int(os.environ.get("COUPON_CODE_ATTEMPTS", "10"))
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
