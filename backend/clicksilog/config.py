# backend/clicksilog/config.py
from __future__ import annotations
import os
from decimal import Decimal


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/clicksilog.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///clicksilog.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Payment provider. USE_MOCK_PAYMENTS swaps the PayMongo client for the
    # in-process mock when the app is composed.
    USE_MOCK_PAYMENTS = _env_flag("USE_MOCK_PAYMENTS")
    PAYMONGO_API_URL = os.environ.get("PAYMONGO_API_URL", "https://api.paymongo.com/v1")
    PAYMONGO_SECRET_KEY = os.environ.get("PAYMONGO_SECRET_KEY", "")
    PAYMONGO_WEBHOOK_SECRET = os.environ.get("PAYMONGO_WEBHOOK_SECRET", "")
    PAYMONGO_TIMEOUT_SECONDS = float(os.environ.get("PAYMONGO_TIMEOUT_SECONDS", "15"))
    WEBHOOK_VERIFY_SIGNATURE = _env_flag("WEBHOOK_VERIFY_SIGNATURE", "true")

    # QR PH codes expire after 30 minutes
    QR_TTL_MINUTES = int(os.environ.get("QR_TTL_MINUTES", "30"))
    CHECKOUT_REDIRECT_URL = os.environ.get("CHECKOUT_REDIRECT_URL", "https://paymongo.com/success")

    # Payment input limits (pesos)
    MIN_PAYMENT_AMOUNT = Decimal(os.environ.get("MIN_PAYMENT_AMOUNT", "1.00"))
    MAX_PAYMENT_AMOUNT = Decimal(os.environ.get("MAX_PAYMENT_AMOUNT", "50000.00"))
    ALLOWED_CURRENCIES = ("PHP", "USD", "EUR")

    # Request guards for the public function endpoints
    MAX_CONTENT_LENGTH = 1024 * 1024
    RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "60"))
    RATE_LIMIT_MAX_REQUESTS = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", "100"))
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get("CORS_ALLOWED_ORIGINS", "*").split(",") if o.strip()
    )

    # Scheduled jobs
    ORDER_RETENTION_DAYS = int(os.environ.get("ORDER_RETENTION_DAYS", "30"))
    ORDER_CLEANUP_LIMIT = int(os.environ.get("ORDER_CLEANUP_LIMIT", "100"))
    PAYMENT_EXPIRY_BATCH_LIMIT = int(os.environ.get("PAYMENT_EXPIRY_BATCH_LIMIT", "50"))

    # Cash payment confirmation password
    PAYMENT_PASSWORD_MAX_ATTEMPTS = int(os.environ.get("PAYMENT_PASSWORD_MAX_ATTEMPTS", "5"))
    PAYMENT_PASSWORD_LOCKOUT_MINUTES = int(os.environ.get("PAYMENT_PASSWORD_LOCKOUT_MINUTES", "15"))
    PAYMENT_PASSWORD_ATTEMPT_RESET_MINUTES = 60


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    USE_MOCK_PAYMENTS = True
    WEBHOOK_VERIFY_SIGNATURE = False
    PAYMONGO_WEBHOOK_SECRET = ""
    RATE_LIMIT_MAX_REQUESTS = 10_000
