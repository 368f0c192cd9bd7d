import json
import subprocess

import pytest

from receipt_bridge import create_app
from receipt_bridge.core.config import get_config_path, load_config, save_config
from receipt_bridge.core.errors import StorageError
from receipt_bridge.printing import transport as transport_mod
from receipt_bridge.printing import worker

CHICKEN = {
    "items": [{"name": "Dada Ayam", "qty": "1.20 Kg", "price": "Rp 50.000", "subtotal": "Rp 60.000"}],
    "totals": {"total": "Rp 60.000", "discount": 0},
}


@pytest.fixture
def client(store):
    app = create_app(register_worker=False)
    app.config.update(TESTING=True)
    return app.test_client()


def _post(client, url, body):
    return client.post(url, data=json.dumps(body), headers={"Content-Type": "application/json"})


def test_print_queues_job(client):
    r = _post(client, "/api/v1/print", {"payload": CHICKEN, "requestId": "pos-42"})
    assert r.status_code == 202, r.get_data(as_text=True)
    body = r.get_json()
    assert body["type"] == "print-queued"
    assert body["requestId"] == "pos-42"
    assert body["status"] == "queued"
    assert r.headers["Location"].endswith(f"/api/v1/jobs/{body['jobId']}")

    job = client.get(body["links"]["self"]).get_json()
    assert job["status"] == "pending"
    assert job["attempts"] == 0

    stored = worker.get_store().get(body["jobId"])
    assert stored.payload["items"][0]["qty"] == "1.20 Kg"
    assert stored.payload["totals"]["discount"] == 0


def test_print_accepts_empty_payload(client):
    r = _post(client, "/api/v1/print", {})
    assert r.status_code == 202
    assert r.get_json()["requestId"]


def test_print_validation_errors(client):
    r = _post(client, "/api/v1/print", {"payload": {"items": "not-a-list"}})
    assert r.status_code == 400
    assert "items" in r.get_json()["error"]

    r = _post(client, "/api/v1/print", {"payload": {}, "wait": 99})
    assert r.status_code == 400

    r = _post(client, "/api/v1/print", ["not", "an", "object"])
    assert r.status_code == 400


def test_print_requires_json(client):
    r = client.post("/api/v1/print", data="hello", headers={"Content-Type": "text/plain"})
    assert r.status_code == 415


def test_print_storage_failure_is_500(client, monkeypatch):
    def _fail(*args, **kwargs):
        raise StorageError("database is locked")

    import receipt_bridge.web.api as api

    monkeypatch.setattr(api, "enqueue_receipt", _fail)
    r = _post(client, "/api/v1/print", {"payload": CHICKEN})
    assert r.status_code == 500
    body = r.get_json()
    assert body["status"] == "error"
    assert "database is locked" in body["message"]


def test_print_wait_returns_result(client, fake_printer, net_config):
    worker.ensure_worker(net_config)
    r = _post(client, "/api/v1/print", {"payload": CHICKEN, "requestId": "r1", "wait": 5})
    assert r.status_code == 200, r.get_data(as_text=True)
    body = r.get_json()
    assert body["type"] == "print-result"
    assert body["status"] == "done"
    assert body["requestId"] == "r1"
    assert "cut" in fake_printer.names()


def test_print_wait_timeout_falls_back_to_queued(client):
    r = _post(client, "/api/v1/print", {"payload": CHICKEN, "wait": 0.1})
    assert r.status_code == 202
    assert worker.NOTIFIER.pending_count() == 0


def test_job_not_found(client):
    r = client.get("/api/v1/jobs/job_missing")
    assert r.status_code == 404
    assert r.get_json() == {"error": "not_found"}


def test_jobs_list(client):
    for _ in range(3):
        _post(client, "/api/v1/print", {"payload": CHICKEN})
    r = client.get("/api/v1/jobs?limit=2")
    assert r.status_code == 200
    assert len(r.get_json()["jobs"]) == 2

    assert client.get("/api/v1/jobs?limit=abc").status_code == 400


def test_status_reports_counts_and_connection(client, fake_printer):
    _post(client, "/api/v1/print", {"payload": CHICKEN})
    body = client.get("/api/v1/status").get_json()
    assert body["type"] == "status"
    assert body["stats"] == {"pending": 1, "done": 0, "failed": 0}
    assert body["connection"] == {"connected": True, "message": "Printer ready"}

    fake_printer.fail_open = "Connection refused"
    body = client.get("/api/v1/status").get_json()
    assert body["connection"]["connected"] is False
    # The probe never consumes a job attempt
    assert body["stats"]["pending"] == 1


def test_drawer(client, fake_printer):
    r = client.post("/api/v1/drawer")
    assert r.status_code == 200
    assert r.get_json() == {"type": "drawer-result", "status": "success", "message": "Cash drawer opened."}
    assert ("cashdraw", 2) in fake_printer.calls

    fake_printer.fail_open = "offline"
    r = client.post("/api/v1/drawer")
    assert r.status_code == 502
    assert r.get_json()["status"] == "error"


def test_test_print_queues_builtin_receipt(client):
    r = client.post("/api/v1/test-print")
    assert r.status_code == 202
    job_id = r.get_json()["jobId"]
    payload = worker.get_store().get(job_id).payload
    assert payload["meta"]["invoice"].startswith("TEST-")


def test_get_config_defaults(client):
    body = client.get("/api/v1/config").get_json()
    assert body["config"]["driver"] == "network"
    assert body["config"]["port"] == 1818
    assert body["active"]["encoding"] == "GB18030"


def test_update_config_saves_and_restarts_worker(client):
    save_config({"driver": "network", "address": "10.0.0.5", "encoding": "cp437"})
    r = _post(
        client,
        "/api/v1/config",
        {"printer": {"driver": "usb", "usb": {"vendorId": "0x0416", "productId": "0x5011"}}},
    )
    assert r.status_code == 200, r.get_data(as_text=True)
    assert r.get_json()["success"] is True

    saved = load_config()
    assert saved["driver"] == "usb"
    assert saved["usb_vendor_id"] == "0416"
    assert saved["address"] == "10.0.0.5"
    assert saved["encoding"] == "cp437"

    active = worker.current_config()
    assert active.driver == "usb"
    assert active.usb_product_id == "5011"
    assert worker.worker_status()["worker_alive"] is True


@pytest.mark.parametrize(
    "body",
    [
        {"driver": "parallel"},
        {"usb_vendor_id": "xyz"},
        {"bluetooth_channel": 99},
        {"port": 0},
    ],
)
def test_update_config_rejects_invalid_values(client, body):
    r = _post(client, "/api/v1/config", body)
    assert r.status_code == 400
    assert load_config() is None


def test_rfcomm_bind(client, monkeypatch):
    calls = []

    def fake_run(cmd, check=False, **kwargs):
        calls.append(list(cmd))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(transport_mod.subprocess, "run", fake_run)
    r = _post(client, "/api/v1/rfcomm-bind", {"address": "66:32:8D:F3:FF:8E", "channel": 2})
    assert r.status_code == 200
    assert r.get_json() == {
        "success": True,
        "address": "66:32:8D:F3:FF:8E",
        "channel": 2,
        "device": "/dev/rfcomm0",
    }
    assert calls[-1] == ["rfcomm", "bind", "0", "66:32:8D:F3:FF:8E", "2"]


def test_rfcomm_bind_without_address(client):
    r = _post(client, "/api/v1/rfcomm-bind", {})
    assert r.status_code == 500
    assert r.get_json()["success"] is False


def test_healthz_reports_degraded_without_worker(client, fake_printer):
    body = client.get("/healthz").get_json()
    assert body["status"] == "degraded"
    assert body["reason"] == "worker_not_running"
    assert body["jobs"] == {"pending": 0, "done": 0, "failed": 0}
    assert body["printer_ok"] is True


def test_healthz_ok_with_worker(client, fake_printer, net_config):
    worker.ensure_worker(net_config)
    body = client.get("/healthz").get_json()
    assert body["status"] == "ok"
    assert body["worker_alive"] is True
    assert body["driver"] == "network"


def test_invalid_config_file_reports_degraded(client, fake_printer):
    with open(get_config_path(), "w", encoding="utf-8") as f:
        f.write("{not json")

    r = client.get("/api/v1/status")
    assert r.status_code == 200
    connection = r.get_json()["connection"]
    assert connection["connected"] is False
    assert "not valid JSON" in connection["message"]

    body = client.get("/healthz").get_json()
    assert body["status"] == "degraded"
    assert body["printer_ok"] is False

    r = client.post("/api/v1/drawer")
    assert r.status_code == 502
    assert "not valid JSON" in r.get_json()["message"]

    r = client.get("/api/v1/config")
    assert r.status_code == 500
    assert "error" in r.get_json()

    r = _post(client, "/api/v1/rfcomm-bind", {"address": "66:32:8D:F3:FF:8E"})
    assert r.status_code == 500
    assert r.get_json()["success"] is False
    # Nothing was ever sent to the device
    assert fake_printer.calls == []
