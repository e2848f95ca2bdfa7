# backend/retailcore/routes/system.py
"""
System health endpoint.

Checks the database and reports whether the payment gateway is configured.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import UnreconciledCapture
from ..services import payment_service
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        open_captures = db.session.query(UnreconciledCapture).filter(
            UnreconciledCapture.status == "open",
            ~payment_service.capture_has_order(),
        ).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"open_unreconciled_captures": open_captures},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_gateway_config() -> dict:
    missing = [
        key for key in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")
        if not current_app.config.get(key)
    ]
    if missing:
        return {"status": "degraded", "warning": f"Missing config: {', '.join(missing)}"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (gateway not configured; cash checkout still works)
    - 503: database unreachable
    """
    database_health = check_database_health()
    gateway_health = check_gateway_config()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif gateway_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
            "payment_gateway": gateway_health,
        },
    }, http_status
