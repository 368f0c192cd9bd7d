"""
Background worker, durable job queue, and print orchestration for Receipt Bridge.

This module owns:
- print_receipt() / open_cash_drawer(): device sessions against the configured printer
- QueueProcessor: one thread that drains pending jobs oldest-first with bounded retry
- Module-level helpers used by the web layer (enqueue, stats, health, reconfigure)

Job lifecycle (persisted in the job store):
    pending -> done                       print succeeded
    pending -> pending                    print failed, attempts < max_retries
    pending -> failed                     print failed, attempts reached max_retries

The store is updated only after an attempt finishes. A crash between a
successful print and that update leaves the job pending, so it is printed
again on the next start.

It does not import Flask.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any, Dict, List, Optional

from receipt_bridge.core.assets import resolve_logo_path
from receipt_bridge.core.config import PrinterConfig, get_printer_config
from receipt_bridge.core.db import STATUS_DONE, STATUS_FAILED, STATUS_PENDING, Job, JobStore
from receipt_bridge.core.errors import BridgeError, ConfigurationError, StorageError
from receipt_bridge.core.logging import job_context
from receipt_bridge.printing.notifier import RESULT_DONE, RESULT_FAILED, Handle, ResultNotifier
from receipt_bridge.printing.receipt import format_receipt, make_test_payload
from receipt_bridge.printing.render import load_logo
from receipt_bridge.printing.transport import printer_session

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 0.2
STORE_UPDATE_ATTEMPTS = 3

_WAKE = "job"
_STOP = "stop"

PrintFn = Callable[[Mapping[str, Any], PrinterConfig], None]


# ----- Device operations -----------------------------------------------------


def _encode(text: str, encoding: str) -> bytes:
    try:
        return text.encode(encoding, errors="replace")
    except LookupError:
        raise ConfigurationError(f"Unknown printer encoding: {encoding!r}") from None


def print_receipt(payload: Mapping[str, Any], config: PrinterConfig) -> None:
    """
    Print one receipt: logo (if any), centered text body, then cut.

    Raises ConfigurationError or TransportError; the device is closed on every path.
    """
    data = _encode(format_receipt(payload) + "\n", config.encoding)
    with printer_session(config) as dev:
        logo = load_logo(resolve_logo_path(config.logo_path))
        dev.align_center()
        if logo is not None:
            logger.info("Printing logo...")
            dev.image(logo)
        else:
            logger.info("No logo found, printing text only")
        dev.write(data)
        dev.cut()
    logger.info("Print command sent, connection closed")


def open_cash_drawer(config: PrinterConfig) -> None:
    with printer_session(config) as dev:
        dev.kick_drawer()
    logger.info("Drawer kick sent, connection closed")


def probe_printer(config: PrinterConfig) -> Dict[str, Any]:
    """
    Open and immediately close the configured printer without printing.
    """
    try:
        with printer_session(config):
            pass
    except BridgeError as e:
        return {"connected": False, "message": str(e) or type(e).__name__}
    return {"connected": True, "message": "Printer ready"}


# ----- Queue processor --------------------------------------------------------


class QueueProcessor:
    """
    Single worker draining the job store, oldest pending job first.

    The worker thread blocks on a queue of wake signals. After a pass that
    handled a job it polls again after retry_delay; after an empty pass it
    sleeps until woken. Wakes that arrive during a pass are coalesced, so at
    most one attempt is ever in flight.

    Store reads and writes are retried STORE_UPDATE_ATTEMPTS times. If they
    keep failing the thread exits and the jobs stay pending on disk;
    enqueue_receipt() starts a replacement worker.
    """

    def __init__(
        self,
        store: JobStore,
        config: PrinterConfig,
        notifier: Optional[ResultNotifier] = None,
        printer: PrintFn = print_receipt,
        retry_delay: float = RETRY_DELAY_SECONDS,
        claim_lock: Optional[threading.Lock] = None,
    ):
        self.store = store
        self.config = config
        self.notifier = notifier or ResultNotifier()
        self.retry_delay = retry_delay
        self._print = printer
        self._signals: queue.Queue[str] = queue.Queue()
        self._pass_lock = threading.Lock()
        # Held while a pass picks its job and while a job is inserted with its waiter.
        self._claim_lock = claim_lock or threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def max_retries(self) -> int:
        return max(1, int(self.config.max_retries))

    # Lifecycle

    def start(self) -> None:
        if self.is_alive():
            return
        t = threading.Thread(target=self._run, daemon=True, name="receipt-bridge-worker")
        t.start()
        self._thread = t
        # Resume whatever a previous process left pending.
        self.wake()
        logger.info("Queue worker started (driver=%s)", self.config.driver)

    def is_alive(self) -> bool:
        return bool(self._thread) and self._thread.is_alive()  # type: ignore[union-attr]

    def wake(self) -> None:
        self._signals.put(_WAKE)

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        """
        Ask the worker to exit after its current pass. Returns True if it stopped in time.
        """
        t = self._thread
        if t is None:
            return True
        self._signals.put(_STOP)
        t.join(timeout)
        stopped = not t.is_alive()
        if stopped:
            logger.info("Queue worker stopped")
        else:
            logger.warning("Queue worker still busy after %.1fs; it will exit after the current attempt", timeout or 0)
        return stopped

    # Loop

    def _drain_signals(self) -> bool:
        """
        Discard queued wake signals; return True if a stop was among them.
        """
        stop = False
        while True:
            try:
                if self._signals.get_nowait() == _STOP:
                    stop = True
            except queue.Empty:
                return stop

    def _run(self) -> None:
        idle = True
        while True:
            try:
                signal = self._signals.get() if idle else self._signals.get(timeout=self.retry_delay)
            except queue.Empty:
                signal = _WAKE
            if signal == _STOP or self._drain_signals():
                return
            try:
                handled = self.run_pending_once()
            except StorageError:
                logger.exception("Job store unavailable; queue worker exiting (the next enqueue resumes pending jobs)")
                return
            idle = not handled

    def run_pending_once(self) -> bool:
        """
        Attempt the oldest pending job, if any. Returns True when a job was attempted.
        """
        with self._pass_lock:
            job = self._fetch_next()
            if job is None:
                return False
            self._attempt(job)
            return True

    def _fetch_next(self) -> Optional[Job]:
        for n in range(1, STORE_UPDATE_ATTEMPTS + 1):
            try:
                with self._claim_lock:
                    return self.store.fetch_oldest_pending()
            except StorageError as e:
                if n == STORE_UPDATE_ATTEMPTS:
                    raise
                logger.warning("Reading the job queue failed (%s); retrying", e)
                time.sleep(self.retry_delay)
        return None

    def _attempt(self, job: Job) -> None:
        with job_context(job.id):
            self._attempt_print(job)

    def _attempt_print(self, job: Job) -> None:
        logger.info("Processing job %s (attempt %d/%d)", job.id, job.attempts + 1, self.max_retries)
        try:
            if job.payload is None:
                raise StorageError(f"Job {job.id} has an unreadable payload")
            self._print(job.payload, self.config)
        except Exception as e:
            attempts = job.attempts + 1
            status = STATUS_FAILED if attempts >= self.max_retries else STATUS_PENDING
            message = str(e) or type(e).__name__
            if isinstance(e, BridgeError):
                logger.error("Job %s failed (attempt %d/%d): %s", job.id, attempts, self.max_retries, message)
            else:
                logger.exception("Job %s failed (attempt %d/%d)", job.id, attempts, self.max_retries)
            self._record(job.id, status, attempts, message)
            if status == STATUS_FAILED:
                logger.warning("Job %s gave up after %d attempts", job.id, attempts)
            self.notifier.deliver(job.id, RESULT_FAILED, message, attempts)
            return

        self._record(job.id, STATUS_DONE, job.attempts, None)
        logger.info("Job %s done", job.id)
        self.notifier.deliver(job.id, RESULT_DONE, "Receipt sent to printer.", job.attempts)

    def _record(self, job_id: str, status: str, attempts: int, error: Optional[str]) -> None:
        for n in range(1, STORE_UPDATE_ATTEMPTS + 1):
            try:
                self.store.update(job_id, status, attempts, error)
                return
            except StorageError as e:
                if n == STORE_UPDATE_ATTEMPTS:
                    raise
                logger.warning("Updating job %s failed (%s); retrying", job_id, e)
                time.sleep(self.retry_delay)


# ----- Module-level service ---------------------------------------------------

_LOCK = threading.RLock()
_STORE: Optional[JobStore] = None
_PROCESSOR: Optional[QueueProcessor] = None
# Shared by every processor ensure_worker() starts; enqueue_receipt() holds it across insert + waiter registration.
_CLAIM_LOCK = threading.Lock()
NOTIFIER = ResultNotifier()


def get_store() -> JobStore:
    global _STORE
    with _LOCK:
        if _STORE is None:
            _STORE = JobStore()
        return _STORE


def set_store(store: Optional[JobStore]) -> None:
    """
    Replace the shared job store (tests, alternate DB paths). Stops the current worker.
    """
    global _STORE
    with _LOCK:
        stop_worker()
        _STORE = store


def current_config() -> PrinterConfig:
    """
    Config of the running worker, else the saved one. Raises ConfigurationError
    when the config file is not valid JSON.
    """
    proc = _PROCESSOR
    if proc is not None:
        return proc.config
    try:
        return get_printer_config()
    except ValueError as e:
        raise ConfigurationError(f"Config file is not valid JSON: {e}") from e


def ensure_worker(config: Optional[PrinterConfig] = None) -> QueueProcessor:
    """
    Ensure the background worker thread is running (idempotent).
    """
    global _PROCESSOR
    with _LOCK:
        if _PROCESSOR is not None and _PROCESSOR.is_alive():
            return _PROCESSOR
        cfg = config or (_PROCESSOR.config if _PROCESSOR is not None else get_printer_config())
        proc = QueueProcessor(get_store(), cfg, notifier=NOTIFIER, claim_lock=_CLAIM_LOCK)
        # Visible to enqueue_receipt() before its thread starts.
        _PROCESSOR = proc
        proc.start()
        return proc


def restart_worker(config: PrinterConfig) -> QueueProcessor:
    """
    Replace the running worker with a fresh one bound to a new config snapshot.

    The old worker finishes its in-flight attempt first; waiters carry over.
    """
    with _LOCK:
        stop_worker()
        logger.info("Restarting queue worker with driver=%s", config.driver)
        return ensure_worker(config)


def stop_worker(timeout: Optional[float] = None) -> None:
    global _PROCESSOR
    with _LOCK:
        proc, _PROCESSOR = _PROCESSOR, None
    if proc is not None:
        proc.stop(timeout)


def enqueue_receipt(
    payload: Mapping[str, Any],
    waiter: Optional[Handle] = None,
    request_id: Optional[str] = None,
) -> str:
    """
    Durably queue a receipt and wake the worker. Returns the job id.

    Raises StorageError when the job could not be persisted; no waiter is
    registered in that case.
    """
    with _CLAIM_LOCK:
        job_id = get_store().insert(dict(payload))
        if waiter is not None:
            NOTIFIER.register(job_id, waiter, request_id)
    logger.info("Queued job %s", job_id)

    proc = _PROCESSOR
    if proc is None:
        return job_id
    if not proc.is_alive():
        logger.warning("Queue worker is not running; starting a new one for job %s", job_id)
        proc = ensure_worker()
    proc.wake()
    return job_id


def enqueue_test_print(origin: Optional[str] = None) -> str:
    job_id = enqueue_receipt(make_test_payload())
    logger.info("enqueue_test_print: job id=%s origin=%s", job_id, origin or "-")
    return job_id


def job_stats() -> Dict[str, int]:
    return get_store().counts_by_status()


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    job = get_store().get(job_id)
    return job.to_dict() if job else None


def list_jobs(limit: int = 50) -> List[Dict[str, Any]]:
    return [j.to_dict() for j in get_store().list_recent(limit)]


def check_connection(config: Optional[PrinterConfig] = None) -> Dict[str, Any]:
    try:
        cfg = config or current_config()
    except ConfigurationError as e:
        return {"connected": False, "message": str(e)}
    return probe_printer(cfg)


def open_drawer(config: Optional[PrinterConfig] = None) -> Dict[str, Any]:
    """
    Kick the cash drawer right away, bypassing the job queue.
    """
    try:
        open_cash_drawer(config or current_config())
    except BridgeError as e:
        logger.error("Failed to open drawer: %s", e)
        return {"success": False, "message": str(e) or type(e).__name__}
    return {"success": True, "message": "Cash drawer opened."}


def worker_status() -> Dict[str, Any]:
    """
    Return basic worker/queue status.
    """
    proc = _PROCESSOR
    return {
        "worker_started": proc is not None,
        "worker_alive": bool(proc and proc.is_alive()),
        "driver": proc.config.driver if proc else None,
        "waiters": NOTIFIER.pending_count(),
    }


__all__ = [
    "NOTIFIER",
    "RETRY_DELAY_SECONDS",
    "QueueProcessor",
    "check_connection",
    "current_config",
    "enqueue_receipt",
    "enqueue_test_print",
    "ensure_worker",
    "get_job",
    "get_store",
    "job_stats",
    "list_jobs",
    "open_cash_drawer",
    "open_drawer",
    "print_receipt",
    "probe_printer",
    "restart_worker",
    "set_store",
    "stop_worker",
    "worker_status",
]
