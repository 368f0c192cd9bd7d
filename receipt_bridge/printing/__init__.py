"""
Printing subsystem for Receipt Bridge.

- receipt: payload -> receipt text lines
- render: store logo loading for ESC/POS raster output
- transport: network / usb / bluetooth printer connections
- notifier: best-effort result delivery to waiting callers
- worker: durable job queue processing and print orchestration
"""

from .notifier import PrintResult, ResultNotifier
from .receipt import format_receipt, format_receipt_lines, make_test_payload
from .transport import bind_rfcomm, create_transport, printer_session
from .worker import (
    QueueProcessor,
    check_connection,
    enqueue_receipt,
    ensure_worker,
    job_stats,
    open_drawer,
    print_receipt,
    restart_worker,
    worker_status,
)

__all__ = [
    "PrintResult",
    "QueueProcessor",
    "ResultNotifier",
    "bind_rfcomm",
    "check_connection",
    "create_transport",
    "enqueue_receipt",
    "ensure_worker",
    "format_receipt",
    "format_receipt_lines",
    "job_stats",
    "make_test_payload",
    "open_drawer",
    "print_receipt",
    "printer_session",
    "restart_worker",
    "worker_status",
]
