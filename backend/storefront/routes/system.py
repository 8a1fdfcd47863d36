# backend/storefront/routes/system.py
"""
System health endpoint.

Reports database reachability and whether a payment gateway is configured.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..formatting import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_gateway_config() -> dict:
    gateway = current_app.extensions.get("payment_gateway")
    settings = getattr(gateway, "settings", None)
    if settings is None or not settings.api_url:
        return {"status": "degraded", "warning": "GATEWAY_API_URL is not configured"}
    return {
        "status": "healthy",
        "details": {
            "environment": settings.environment,
            "auth_type": settings.auth_type,
            "verify_tls": gateway.trust.is_strict,
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (gateway not configured)
    - 503: database unreachable
    """
    database_health = check_database_health()
    gateway_health = check_gateway_config()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif gateway_health["status"] != "healthy":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
            "payment_gateway": gateway_health,
        },
    }, http_status
