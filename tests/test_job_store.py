import sqlite3

import pytest

from receipt_bridge.core.db import (
    SCHEMA_VERSION,
    STATUS_DONE,
    STATUS_FAILED,
    STATUS_PENDING,
    JobStore,
)
from receipt_bridge.core.errors import StorageError


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "queue.db")


def test_insert_creates_pending_job(db_path):
    s = JobStore(db_path)
    job_id = s.insert({"items": [{"name": "Kopi"}]})
    job = s.get(job_id)

    assert job_id.startswith("job_")
    assert job.status == STATUS_PENDING
    assert job.attempts == 0
    assert job.last_error is None
    assert job.payload == {"items": [{"name": "Kopi"}]}
    assert job.created_at == job.updated_at
    s.close()


def test_fetch_oldest_pending_is_fifo(db_path):
    s = JobStore(db_path)
    a = s.insert({"n": 1})
    b = s.insert({"n": 2})
    c = s.insert({"n": 3})

    assert s.fetch_oldest_pending().id == a
    s.update(a, STATUS_DONE, 0)
    assert s.fetch_oldest_pending().id == b
    s.update(b, STATUS_FAILED, 3, "boom")
    assert s.fetch_oldest_pending().id == c
    s.update(c, STATUS_DONE, 1)
    assert s.fetch_oldest_pending() is None
    s.close()


def test_update_overwrites_fields(db_path):
    s = JobStore(db_path)
    job_id = s.insert({})
    s.update(job_id, STATUS_PENDING, 1, "Cannot open network printer: refused")
    job = s.get(job_id)
    assert job.attempts == 1
    assert job.last_error == "Cannot open network printer: refused"
    assert job.updated_at >= job.created_at

    s.update(job_id, STATUS_DONE, 1, None)
    job = s.get(job_id)
    assert job.status == STATUS_DONE
    assert job.last_error is None
    s.close()


def test_update_rejects_unknown_status(db_path):
    s = JobStore(db_path)
    job_id = s.insert({})
    with pytest.raises(ValueError):
        s.update(job_id, "printing", 0)
    s.close()


def test_counts_by_status_always_has_all_keys(db_path):
    s = JobStore(db_path)
    assert s.counts_by_status() == {"pending": 0, "done": 0, "failed": 0}

    ids = [s.insert({"n": i}) for i in range(4)]
    s.update(ids[0], STATUS_DONE, 0)
    s.update(ids[1], STATUS_FAILED, 3, "x")
    assert s.counts_by_status() == {"pending": 2, "done": 1, "failed": 1}
    s.close()


def test_list_recent_newest_first(db_path):
    s = JobStore(db_path)
    ids = [s.insert({"n": i}) for i in range(3)]
    recent = s.list_recent(2)
    assert [j.id for j in recent] == [ids[2], ids[1]]
    assert set(recent[0].to_dict()) == {"id", "status", "attempts", "error", "created_at", "updated_at"}
    s.close()


def test_jobs_survive_reopen(db_path):
    s = JobStore(db_path)
    a = s.insert({"n": 1})
    b = s.insert({"n": 2})
    s.update(a, STATUS_PENDING, 2, "timeout")
    s.close()

    s2 = JobStore(db_path)
    job = s2.fetch_oldest_pending()
    assert job.id == a
    assert job.attempts == 2
    assert job.last_error == "timeout"
    assert s2.get(b).status == STATUS_PENDING
    s2.close()


def test_schema_version_initialized_once(db_path):
    JobStore(db_path).close()
    JobStore(db_path).close()
    conn = sqlite3.connect(db_path)
    rows = conn.execute("SELECT version FROM schema_version").fetchall()
    conn.close()
    assert rows == [(SCHEMA_VERSION,)]


def test_unreadable_payload_loads_as_none(db_path):
    s = JobStore(db_path)
    broken = s.insert({"n": 1})
    not_object = s.insert({"n": 2})
    conn = sqlite3.connect(db_path)
    with conn:
        conn.execute("UPDATE jobs SET payload = ? WHERE id = ?", ("{not json", broken))
        conn.execute("UPDATE jobs SET payload = ? WHERE id = ?", ("[1, 2]", not_object))
    conn.close()

    assert s.get(broken).payload is None
    assert s.get(not_object).payload is None
    assert s.fetch_oldest_pending().id == broken
    s.close()


def test_non_json_payload_raises_storage_error(db_path):
    s = JobStore(db_path)
    with pytest.raises(StorageError):
        s.insert({"when": object()})
    assert s.counts_by_status()["pending"] == 0
    s.close()


def test_closed_store_raises_storage_error(db_path):
    s = JobStore(db_path)
    job_id = s.insert({})
    s.close()
    with pytest.raises(StorageError):
        s.insert({})
    with pytest.raises(StorageError):
        s.update(job_id, STATUS_DONE, 0)
    with pytest.raises(StorageError):
        s.fetch_oldest_pending()


def test_default_path_from_env(tmp_path, monkeypatch):
    target = tmp_path / "nested" / "env.db"
    monkeypatch.setenv("RECEIPTBRIDGE_DB_PATH", str(target))
    s = JobStore()
    assert s.path == str(target)
    assert target.exists()
    s.close()
