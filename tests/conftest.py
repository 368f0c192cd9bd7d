# Ensure the repository root is on sys.path so `receipt_bridge` can be imported in tests.

import sys
import threading
import time
from pathlib import Path
from typing import Any, List, Optional, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    here = Path(__file__).resolve()
    repo_str = str(here.parent.parent)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

from receipt_bridge.core.config import ENV_OVERRIDES, PrinterConfig  # noqa: E402
from receipt_bridge.core.db import JobStore  # noqa: E402
from receipt_bridge.printing import transport as transport_mod  # noqa: E402
from receipt_bridge.printing import worker  # noqa: E402


class PrinterRecorder:
    """
    Shared state for fake escpos printers: call log, open/close intervals,
    injectable failures and an optional hold time inside open().
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[Any, ...]] = []
        self.intervals: List[Tuple[float, float]] = []
        self.fail_open: Optional[str] = None
        self.fail_write: Optional[str] = None
        self.open_failures: List[str] = []
        self.hold = 0.0
        self.closes = 0
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]


class FakeEscpos:
    def __init__(self, recorder: PrinterRecorder):
        self.rec = recorder
        self._opened_at: Optional[float] = None

    def open(self) -> None:
        rec = self.rec
        if rec.open_failures:
            raise OSError(rec.open_failures.pop(0))
        if rec.fail_open:
            raise OSError(rec.fail_open)
        with rec._lock:
            rec.active += 1
            rec.max_active = max(rec.max_active, rec.active)
        self._opened_at = time.monotonic()
        rec.calls.append(("open",))
        if rec.hold:
            time.sleep(rec.hold)

    def close(self) -> None:
        rec = self.rec
        rec.closes += 1
        if self._opened_at is not None:
            rec.intervals.append((self._opened_at, time.monotonic()))
            with rec._lock:
                rec.active -= 1
            self._opened_at = None
        rec.calls.append(("close",))

    def set(self, **kwargs: Any) -> None:
        self.rec.calls.append(("set", kwargs))

    def image(self, img: Any) -> None:
        self.rec.calls.append(("image", getattr(img, "size", None)))

    def _raw(self, data: bytes) -> None:
        if self.rec.fail_write:
            raise OSError(self.rec.fail_write)
        self.rec.calls.append(("raw", data))

    def cut(self) -> None:
        self.rec.calls.append(("cut",))

    def cashdraw(self, pin: int) -> None:
        self.rec.calls.append(("cashdraw", pin))


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("RECEIPTBRIDGE_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("RECEIPTBRIDGE_MEDIA_PATH", str(tmp_path / "media"))
    monkeypatch.setenv("RECEIPTBRIDGE_DB_PATH", str(tmp_path / "queue.db"))
    for key in ENV_OVERRIDES:
        monkeypatch.delenv(key, raising=False)
    yield
    worker.stop_worker(timeout=5)


@pytest.fixture
def store(tmp_path):
    s = JobStore(str(tmp_path / "jobs.db"))
    worker.set_store(s)
    yield s
    worker.stop_worker(timeout=5)
    worker.set_store(None)
    s.close()


@pytest.fixture
def fake_printer(monkeypatch) -> PrinterRecorder:
    """
    Route the "network" driver to a fake escpos printer and return its recorder.
    """
    recorder = PrinterRecorder()

    class FakeNetworkTransport(transport_mod.PrinterTransport):
        driver = "network"

        def _make_printer(self):
            return FakeEscpos(recorder)

    monkeypatch.setitem(transport_mod.TRANSPORTS, "network", FakeNetworkTransport)
    return recorder


@pytest.fixture
def net_config() -> PrinterConfig:
    return PrinterConfig(driver="network", address="printer.local")


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
