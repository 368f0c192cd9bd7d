from __future__ import annotations

"""
Health endpoints for Receipt Bridge.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Background worker status (via receipt_bridge.printing.worker.worker_status)
- Job counts by status
- Basic printer reachability (open + close, nothing printed)
"""

from typing import Any, Dict

from flask import Blueprint

from receipt_bridge.core.errors import StorageError
from receipt_bridge.printing.worker import check_connection, job_stats, worker_status

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    status: Dict[str, Any] = {"status": "ok"}
    status.update(worker_status())
    if not status["worker_alive"]:
        status["status"] = "degraded"
        status["reason"] = "worker_not_running"

    try:
        status["jobs"] = job_stats()
    except StorageError as e:
        status["status"] = "degraded"
        status["reason"] = "job_store_unavailable"
        status["jobs_error"] = str(e)

    connection = check_connection()
    status["printer_ok"] = connection["connected"]
    status["printer_message"] = connection["message"]
    if not connection["connected"] and status["status"] == "ok":
        status["status"] = "degraded"
        status["reason"] = "printer_unreachable"

    return status, 200
