from __future__ import annotations

"""
JSON API (v1) for Receipt Bridge.

Endpoints:
- POST /api/v1/print         : Queue a receipt. 202 + jobId, or the print result when "wait" is set
- GET  /api/v1/jobs          : Recent jobs, newest first
- GET  /api/v1/jobs/<job_id> : One job's status/attempts/error
- GET  /api/v1/status        : Job counts by status plus a printer connection check
- POST /api/v1/drawer        : Kick the cash drawer now (not queued)
- POST /api/v1/test-print    : Queue the built-in test receipt
- GET  /api/v1/config        : Saved config and the snapshot the worker runs with
- POST /api/v1/config        : Merge + save config, then restart the worker on the new snapshot
- POST /api/v1/rfcomm-bind   : Bind the Bluetooth printer to /dev/rfcomm0

Payload shape (POST /api/v1/print):
{
  "payload": {
    "header": {"title", "address", "phone"},
    "meta": {"invoice", "date", "cashier", "payment_method"},
    "items": [{"name", "qty", "price", "subtotal"}],
    "totals": {"subtotal", "discount", "total", "paid", "change"},
    "footer": {"thanks", "note"}
  },
  "requestId": str,
  "wait": number (seconds, max 30)
}
"""

import threading
import uuid
from typing import Optional

from flask import Blueprint, current_app, jsonify, request, url_for
from pydantic import ValidationError

from receipt_bridge.core.config import default_config, get_printer_config, load_config, merge_config, resolve_config, save_config
from receipt_bridge.core.errors import BridgeError, StorageError
from receipt_bridge.printing.notifier import PrintResult
from receipt_bridge.printing.transport import bind_rfcomm
from receipt_bridge.printing.worker import (
    NOTIFIER,
    check_connection,
    current_config,
    enqueue_receipt,
    enqueue_test_print,
    get_job,
    job_stats,
    list_jobs,
    open_drawer,
    restart_worker,
)

from . import schemas

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")


def _json_error(msg: str, code: int = 400):
    return jsonify({"error": msg}), code


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))


class _ResponseWaiter:
    """
    Waiter handle that parks the HTTP request until the print result arrives.
    """

    def __init__(self) -> None:
        self.event = threading.Event()
        self.result: Optional[PrintResult] = None

    def __call__(self, result: PrintResult) -> None:
        self.result = result
        self.event.set()


def _queued_response(job_id: str, request_id: Optional[str]):
    body = {
        "type": "print-queued",
        "jobId": job_id,
        "requestId": request_id,
        "status": "queued",
        "links": {"self": url_for("api.job_detail", job_id=job_id)},
    }
    resp = jsonify(body)
    resp.status_code = 202
    resp.headers["Location"] = body["links"]["self"]
    return resp


@api_bp.post("/print")
def submit_print():
    """
    Validate a receipt payload and durably queue it.
    """
    if not request.is_json:
        return _json_error("Expected application/json body", 415)
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("Payload must be a JSON object.")
    try:
        req = schemas.PrintRequest.model_validate(data)
    except ValidationError as e:
        return _json_error(_validation_message(e))

    request_id = req.request_id or uuid.uuid4().hex
    waiter = _ResponseWaiter() if req.wait else None
    try:
        job_id = enqueue_receipt(req.payload.to_job_payload(), waiter=waiter, request_id=request_id)
    except StorageError as e:
        current_app.logger.error("Print failed to queue: %s", e)
        return jsonify({"type": "print-result", "status": "error", "message": str(e), "requestId": request_id}), 500

    current_app.logger.info("POST /api/v1/print queued job=%s request=%s", job_id, request_id)
    if waiter is None:
        return _queued_response(job_id, request_id)

    if waiter.event.wait(req.wait) and waiter.result is not None:
        return jsonify(waiter.result.to_message()), 200
    # Caller stops waiting; the outcome stays available via GET /jobs/<id>.
    NOTIFIER.discard(job_id)
    return _queued_response(job_id, request_id)


@api_bp.get("/jobs")
def jobs_list():
    try:
        limit = max(1, min(int(request.args.get("limit", 50)), 500))
    except ValueError:
        return _json_error("limit must be an integer")
    return jsonify({"jobs": list_jobs(limit)})


@api_bp.get("/jobs/<job_id>")
def job_detail(job_id: str):
    job = get_job(job_id)
    if job is None:
        current_app.logger.info("GET /api/v1/jobs/%s not found", job_id)
        return _json_error("not_found", 404)
    return jsonify(job)


@api_bp.get("/status")
def status():
    stats = job_stats()
    connection = check_connection()
    current_app.logger.info("[Status] connected=%s pending=%d", connection["connected"], stats.get("pending", 0))
    return jsonify({"type": "status", "stats": stats, "connection": connection})


@api_bp.post("/drawer")
def drawer():
    result = open_drawer()
    body = {
        "type": "drawer-result",
        "status": "success" if result["success"] else "error",
        "message": result["message"],
    }
    return jsonify(body), 200 if result["success"] else 502


@api_bp.post("/test-print")
def test_print():
    try:
        job_id = enqueue_test_print(origin="api")
    except StorageError as e:
        return _json_error(str(e), 500)
    return _queued_response(job_id, None)


@api_bp.get("/config")
def get_config():
    try:
        return jsonify({"config": resolve_config(), "active": current_config().to_dict()})
    except (BridgeError, ValueError) as e:
        current_app.logger.error("Failed to read config: %s", e)
        return _json_error(str(e), 500)


@api_bp.post("/config")
def update_config():
    """
    Save a partial config update and restart the queue worker against it.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("Payload must be a JSON object.")
    try:
        update = schemas.ConfigUpdate.model_validate(data)
    except ValidationError as e:
        return _json_error(_validation_message(e))

    try:
        saved = load_config() or default_config()
        nxt = merge_config(saved, update.to_update())
        save_config(nxt)
    except (OSError, ValueError) as e:
        current_app.logger.error("Failed to save config: %s", e)
        return jsonify({"success": False, "message": str(e)}), 500

    restart_worker(get_printer_config())
    current_app.logger.info("Bridge config updated; queue worker restarted (driver=%s)", nxt.get("driver"))
    return jsonify({"success": True, "message": "Config saved. Queue worker restarted.", "config": nxt})


@api_bp.post("/rfcomm-bind")
def rfcomm_bind():
    data = request.get_json(silent=True) or {}
    try:
        cfg = current_config()
        address = data.get("address") or cfg.bluetooth_address
        channel = int(data.get("channel") or cfg.bluetooth_channel or 1)
    except (TypeError, ValueError):
        return _json_error("channel must be an integer")
    except BridgeError as e:
        return jsonify({"success": False, "message": str(e)}), 500
    try:
        info = bind_rfcomm(address, channel)
    except BridgeError as e:
        return jsonify({"success": False, "message": str(e)}), 500
    current_app.logger.info("[RFCOMM] Bound %s ch%d -> %s", info["address"], info["channel"], info["device"])
    return jsonify({"success": True, **info})
