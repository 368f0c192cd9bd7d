"""
Best-effort delivery of print outcomes to waiting callers.

A waiter is registered right after a job is durably queued and is consumed by
the first outcome delivered for that job. Jobs without a waiter are simply not
reported; callers that need the outcome later poll the job store.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

RESULT_DONE = "done"
RESULT_FAILED = "failed"


@dataclass(frozen=True)
class PrintResult:
    job_id: str
    request_id: Optional[str]
    status: str
    message: str
    attempts: int = 0

    def to_message(self) -> Dict[str, Any]:
        body = asdict(self)
        return {
            "type": "print-result",
            "jobId": body["job_id"],
            "requestId": body["request_id"],
            "status": body["status"],
            "message": body["message"],
            "attempts": body["attempts"],
        }


Handle = Callable[[PrintResult], None]


class ResultNotifier:
    def __init__(self) -> None:
        self._waiters: Dict[str, Tuple[Handle, Optional[str]]] = {}
        self._lock = threading.Lock()

    def register(self, job_id: str, handle: Handle, request_id: Optional[str] = None) -> None:
        with self._lock:
            self._waiters[job_id] = (handle, request_id)

    def discard(self, job_id: str) -> bool:
        """
        Drop a waiter without delivering (caller gave up). Returns True if one was registered.
        """
        with self._lock:
            return self._waiters.pop(job_id, None) is not None

    def pending_count(self) -> int:
        with self._lock:
            return len(self._waiters)

    def deliver(self, job_id: str, status: str, message: str, attempts: int = 0) -> bool:
        """
        Hand the outcome to the registered waiter, if any, and forget it.

        Handle errors are logged and never reach the queue worker.
        Returns True when a waiter received the result.
        """
        with self._lock:
            entry = self._waiters.pop(job_id, None)
        if entry is None:
            return False
        handle, request_id = entry
        result = PrintResult(job_id=job_id, request_id=request_id, status=status, message=message, attempts=attempts)
        try:
            handle(result)
        except Exception as e:
            logger.warning("Failed to deliver result for job %s: %s", job_id, e)
            return False
        return True


__all__ = ["RESULT_DONE", "RESULT_FAILED", "Handle", "PrintResult", "ResultNotifier"]
