# backend/pharmavault/routes/system.py
"""
System health, connectivity and schema endpoints.

/health is the natural target of CONNECTIVITY_PROBE_URL when the register
runs against a remote deployment.
"""

import time

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from ..errors import ValidationError
from ..extensions import db, connectivity
from ..services import schema_service
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Run SELECT 1 and time it."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }
    return response, 200 if healthy else 503


@system_bp.get("/api/system/connectivity")
def connectivity_status():
    return jsonify({
        "online": connectivity.is_online,
        "monitor_running": connectivity.running,
        "probe_interval_seconds": connectivity.interval,
        "probe_timeout_seconds": connectivity.timeout,
    }), 200


@system_bp.post("/api/system/connectivity")
def connectivity_signal():
    """
    Network-change signal from the host.

    Request body:
    {
        "online": false
    }

    Going offline applies at once; coming online is confirmed by a probe.
    Without a body the probe simply runs now.
    """
    data = request.get_json(silent=True) or {}
    if "online" in data:
        if not isinstance(data["online"], bool):
            err = ValidationError("online must be true or false", online=data["online"])
            return jsonify(err.to_dict()), err.http_status
        online = connectivity.handle_network_change(data["online"])
    else:
        online = connectivity.check_now()
    return jsonify({"online": online}), 200


@system_bp.get("/api/system/schema")
def schema_status():
    refresh = request.args.get("refresh", "").lower() in ("1", "true", "yes")
    readiness = schema_service.get_credit_schema_readiness(refresh=refresh)
    return jsonify({"credit_sales": readiness.to_dict()}), 200
