"""
Logging utilities for Receipt Bridge.

Records carry two correlation fields:
- request_id: the Flask request id when logged inside a request
- job_id: the print job being attempted when logged from the queue worker
Either is "-" outside its scope.

configure_logging() initializes root logging with journald or console, plain
or JSON output (RECEIPTBRIDGE_JSON_LOGS), and the level from
RECEIPTBRIDGE_LOG_LEVEL.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_CURRENT_JOB: ContextVar[Optional[str]] = ContextVar("receipt_bridge_job", default=None)

PLAIN_FORMAT = "[%(asctime)s] %(levelname)s req=%(request_id)s job=%(job_id)s %(name)s: %(message)s"


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """
    Tag every record logged inside the block (same thread) with job_id.
    """
    token = _CURRENT_JOB.set(job_id)
    try:
        yield
    finally:
        _CURRENT_JOB.reset(token)


def current_job_id() -> Optional[str]:
    return _CURRENT_JOB.get()


class ContextFilter(logging.Filter):
    """
    Attach request_id, path and job_id to log records.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.job_id = _CURRENT_JOB.get() or "-"
        try:
            from flask import g, has_request_context, request  # lazy import

            in_request = has_request_context()
            record.request_id = getattr(g, "request_id", "-") if in_request else "-"
            record.path = request.path if in_request else "-"
        except ImportError:
            record.request_id = "-"
            record.path = "-"
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record. Correlation fields are only emitted when set.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        for field in ("request_id", "job_id", "path"):
            value = getattr(record, field, "-")
            if value and value != "-":
                base[field] = value
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def _env_level(default: int) -> int:
    name = os.environ.get("RECEIPTBRIDGE_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def configure_logging(level: Optional[int] = None) -> logging.Logger:
    """
    Configure root logging for the bridge.

    - Level: argument, else RECEIPTBRIDGE_LOG_LEVEL, else INFO
    - Replaces existing root handlers so repeated app creation does not duplicate output
    - systemd JournalHandler when the bindings are installed, else StreamHandler
    - Flask's app logger propagates to root

    Returns the configured root logger.
    """
    root = logging.getLogger()
    root.setLevel(level if level is not None else _env_level(logging.INFO))
    root.handlers = []

    json_logs = os.environ.get("RECEIPTBRIDGE_JSON_LOGS", "false").lower() in ("1", "true", "yes")
    formatter = JsonFormatter() if json_logs else logging.Formatter(PLAIN_FORMAT)

    # The bridge usually runs as a systemd unit on the till
    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler(SYSLOG_IDENTIFIER="receipt-bridge")
    except ImportError:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    root.addHandler(handler)

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    return root


__all__ = ["ContextFilter", "JsonFormatter", "configure_logging", "current_job_id", "job_context"]
