from __future__ import annotations

"""
SQLite persistence for the Receipt Bridge print queue.

Features:
- DB path resolution with env/XDG defaults
- PRAGMAs for reliability: WAL, synchronous=NORMAL
- Schema bootstrap with a schema_version table (schema_version = 1)
- JobStore: insert/update/fetch helpers for the jobs table, serialized by a lock

The jobs table is the only durable artifact of the bridge. Its shape
(id, payload, status, attempts, error, created_at, updated_at) is relied on by
operational tooling and must stay stable.
"""

import json
import logging
import os
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from receipt_bridge.core.errors import StorageError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

STATUS_PENDING = "pending"
STATUS_DONE = "done"
STATUS_FAILED = "failed"
STATUSES = (STATUS_PENDING, STATUS_DONE, STATUS_FAILED)


# ----- Path resolution -------------------------------------------------------


def get_db_path() -> str:
    """
    Resolve the database path using:
    1) RECEIPTBRIDGE_DB_PATH (env)
    2) $XDG_DATA_HOME/receiptbridge/queue.db
    3) ~/.local/share/receiptbridge/queue.db
    """
    if "RECEIPTBRIDGE_DB_PATH" in os.environ:
        return os.environ["RECEIPTBRIDGE_DB_PATH"]
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return str(Path(xdg) / "receiptbridge" / "queue.db")
    return str(Path.home() / ".local" / "share" / "receiptbridge" / "queue.db")


def _ensure_parent_dir(p: str) -> None:
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)


# ----- Connection management -------------------------------------------------


def _apply_pragmas(db: sqlite3.Connection) -> None:
    # journal_mode cannot change for in-memory databases; executing is harmless there.
    db.execute("PRAGMA journal_mode = WAL")
    db.execute("PRAGMA synchronous = NORMAL")


def _connect(path: Optional[str] = None) -> sqlite3.Connection:
    db_path = path or get_db_path()
    _ensure_parent_dir(db_path)
    # Shared between the worker thread and request threads; JobStore serializes access.
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    return conn


def _ensure_schema(db: sqlite3.Connection) -> None:
    """
    Create tables if not present and ensure schema_version is initialized.
    """
    with db:
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
              version INTEGER NOT NULL
            )
            """,
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
              id          TEXT PRIMARY KEY,
              payload     TEXT NOT NULL,
              status      TEXT NOT NULL DEFAULT 'pending',
              attempts    INTEGER NOT NULL DEFAULT 0,
              error       TEXT,
              created_at  TEXT NOT NULL,
              updated_at  TEXT NOT NULL
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at)")
        cur = db.execute("SELECT version FROM schema_version LIMIT 1")
        if cur.fetchone() is None:
            db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# ----- Records ----------------------------------------------------------------


@dataclass(frozen=True)
class Job:
    id: str
    # None when the stored JSON cannot be read; the worker fails such attempts.
    payload: Optional[Dict[str, Any]]
    status: str
    attempts: int
    last_error: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Job":
        payload: Optional[Dict[str, Any]]
        try:
            payload = json.loads(row["payload"])
        except (TypeError, ValueError):
            payload = None
        if not isinstance(payload, dict):
            logger.warning("Job %s has an unreadable payload", row["id"])
            payload = None
        return cls(
            id=row["id"],
            payload=payload,
            status=row["status"],
            attempts=int(row["attempts"] or 0),
            last_error=row["error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.last_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


# ----- Store -----------------------------------------------------------------


class JobStore:
    """
    Durable job table backed by one SQLite connection.

    Every statement runs under a re-entrant lock, so the queue worker and
    concurrent status readers never observe a half-written row. sqlite3 errors
    surface as StorageError.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or get_db_path()
        self._lock = threading.RLock()
        try:
            self._conn = _connect(self.path)
            _ensure_schema(self._conn)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open job store at {self.path}: {e}") from e
        logger.info("Job store ready at %s", self.path)

    def insert(self, payload: Dict[str, Any]) -> str:
        """
        Persist a new pending job with attempts=0 and return its id.
        """
        job_id = new_job_id()
        now = _iso_now()
        try:
            body = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Payload is not JSON serializable: {e}") from e
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO jobs (id, payload, status, attempts, error, created_at, updated_at) "
                    "VALUES (?, ?, ?, 0, NULL, ?, ?)",
                    (job_id, body, STATUS_PENDING, now, now),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to insert job: {e}") from e
        return job_id

    def update(self, job_id: str, status: str, attempts: int, error: Optional[str] = None) -> None:
        """
        Overwrite status/attempts/error for a job and bump updated_at.
        """
        if status not in STATUSES:
            raise ValueError(f"Unknown job status: {status!r}")
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "UPDATE jobs SET status = ?, attempts = ?, error = ?, updated_at = ? WHERE id = ?",
                    (status, int(attempts), error, _iso_now(), job_id),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update job {job_id}: {e}") from e

    def fetch_oldest_pending(self) -> Optional[Job]:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM jobs WHERE status = ? ORDER BY created_at ASC, rowid ASC LIMIT 1",
                    (STATUS_PENDING,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to fetch pending job: {e}") from e
        return Job.from_row(row) if row else None

    def get(self, job_id: str) -> Optional[Job]:
        try:
            with self._lock:
                row = self._conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read job {job_id}: {e}") from e
        return Job.from_row(row) if row else None

    def list_recent(self, limit: int = 50) -> List[Job]:
        """
        Return the most recently created jobs, newest first.
        """
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT * FROM jobs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                    (int(limit),),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list jobs: {e}") from e
        return [Job.from_row(r) for r in rows]

    def counts_by_status(self) -> Dict[str, int]:
        counts = {s: 0 for s in STATUSES}
        try:
            with self._lock:
                rows = self._conn.execute("SELECT status, COUNT(*) AS total FROM jobs GROUP BY status").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count jobs: {e}") from e
        for r in rows:
            counts[r["status"]] = int(r["total"])
        return counts

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = [
    "Job",
    "JobStore",
    "SCHEMA_VERSION",
    "STATUSES",
    "STATUS_DONE",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "get_db_path",
    "new_job_id",
]
