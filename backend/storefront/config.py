# backend/storefront/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storefront.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Serialize checkout writers on SQLite (ignored by other dialects)
    SQLITE_BEGIN_IMMEDIATE = _env_bool("SQLITE_BEGIN_IMMEDIATE", True)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Web checkouts are booked against this branch's stock and cash session
    ONLINE_BRANCH_ID = _env_int("ONLINE_BRANCH_ID", 1)
    ONLINE_SELLER_USER_ID = _env_int("ONLINE_SELLER_USER_ID", None)

    APP_URL = os.environ.get("APP_URL", "http://localhost:5173")
    CURRENCY = os.environ.get("CURRENCY", "ARS")

    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)

    # Payment gateway
    GATEWAY_API_URL = os.environ.get("GATEWAY_API_URL", "")
    GATEWAY_CHECKOUT_PATH = os.environ.get("GATEWAY_CHECKOUT_PATH", "/v1/checkouts")
    GATEWAY_STATUS_PATH = os.environ.get("GATEWAY_STATUS_PATH", "/v1/payments/{transaction_id}")
    GATEWAY_AUTH_TYPE = os.environ.get("GATEWAY_AUTH_TYPE", "apikey")
    GATEWAY_PUBLIC_KEY = os.environ.get("GATEWAY_PUBLIC_KEY", "")
    GATEWAY_PRIVATE_KEY = os.environ.get("GATEWAY_PRIVATE_KEY", "")
    GATEWAY_SITE_ID = os.environ.get("GATEWAY_SITE_ID", "")
    GATEWAY_TOKEN_URL = os.environ.get("GATEWAY_TOKEN_URL", "")
    GATEWAY_CLIENT_ID = os.environ.get("GATEWAY_CLIENT_ID", "")
    GATEWAY_CLIENT_SECRET = os.environ.get("GATEWAY_CLIENT_SECRET", "")
    # "production" verifies certificates; "sandbox" and "test" do not
    GATEWAY_ENVIRONMENT = os.environ.get("GATEWAY_ENVIRONMENT", "sandbox")
    GATEWAY_CA_BUNDLE = os.environ.get("GATEWAY_CA_BUNDLE") or None
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "30"))
    GATEWAY_RETRY_ATTEMPTS = _env_int("GATEWAY_RETRY_ATTEMPTS", 3)
    GATEWAY_RETRY_BACKOFF_SECONDS = float(os.environ.get("GATEWAY_RETRY_BACKOFF_SECONDS", "0.5"))
    GATEWAY_WEBHOOK_SECRET = os.environ.get("GATEWAY_WEBHOOK_SECRET") or None
    GATEWAY_STATUS_REFRESH = _env_bool("GATEWAY_STATUS_REFRESH", False)
