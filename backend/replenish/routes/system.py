# backend/replenish/routes/system.py
"""
System health endpoint.

Checks the database and, when LEDGER_MODE=remote, that the ledger service
answers within its timeout.
"""

import time
from flask import Blueprint, current_app

from ..errors import OrderError
from ..extensions import db
from ..models import ProductRequest, SagaLog
from ..models.sagas import SAGA_STARTED
from ..services.ledger_client import get_ledger_client
from ..services.order_service import LEDGER_MODE_REMOTE, ledger_mode
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        request_count = db.session.query(ProductRequest).count()
        open_sagas = db.session.query(SagaLog).filter_by(status=SAGA_STARTED).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if open_sagas else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "requests": request_count,
                "open_sagas": open_sagas,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_ledger_health() -> dict:
    start_time = time.time()
    mode = ledger_mode()
    if mode != LEDGER_MODE_REMOTE:
        return {"status": "healthy", "mode": mode, "latency_ms": 0.0}

    try:
        get_ledger_client().get_account()
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "mode": mode, "latency_ms": round(elapsed_ms, 2)}
    except OrderError as e:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.warning("Ledger service health check failed: %s", e)
        return {
            "status": "unhealthy",
            "mode": mode,
            "latency_ms": round(elapsed_ms, 2),
            "error": e.code,
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy, or degraded (sagas waiting for recovery)
    - 503: database or remote ledger unavailable
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = check_ledger_health()

    all_checks = [database_health, ledger_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        }
    }

    return response, http_status
