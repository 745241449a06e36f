"""
SQLite storage for the attestation event log.

One connection per thread, opened lazily against config.DB_PATH. Rows are
append-only; each carries the hash link to its predecessor.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from . import config

_local = threading.local()

EVENT_COLUMNS = (
    "seq", "event_type", "device", "stage_index", "value", "event_sequence",
    "emitted_at", "payload_hash", "prev_entry_hash", "entry_hash", "event_json",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS event_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    device TEXT,
    stage_index INTEGER,
    value INTEGER,
    event_sequence INTEGER NOT NULL,
    emitted_at TEXT NOT NULL,
    payload_hash TEXT NOT NULL,
    prev_entry_hash TEXT,
    entry_hash TEXT NOT NULL UNIQUE,
    event_json TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_event_log_type ON event_log(event_type);
CREATE INDEX IF NOT EXISTS idx_event_log_device ON event_log(device, stage_index);
"""


def _connection() -> sqlite3.Connection:
    conn = getattr(_local, "conn", None)
    if conn is None:
        path = Path(config.DB_PATH)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
    return conn


@contextmanager
def _transaction() -> Iterator[sqlite3.Connection]:
    """Commit on success, roll back and re-raise on failure."""
    conn = _connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """Create the schema. Idempotent."""
    conn = _connection()
    conn.executescript(SCHEMA)
    conn.commit()


def latest_entry_hash() -> Optional[str]:
    """Hash of the newest entry, None for an empty log."""
    row = _connection().execute(
        "SELECT entry_hash FROM event_log ORDER BY seq DESC LIMIT 1"
    ).fetchone()
    return row["entry_hash"] if row else None


def append_event(**row: Any) -> None:
    """Insert one event_log row (every column except seq)."""
    columns = [c for c in EVENT_COLUMNS if c != "seq"]
    with _transaction() as conn:
        conn.execute(
            f"INSERT INTO event_log({', '.join(columns)}) VALUES({', '.join('?' * len(columns))})",
            [row[c] for c in columns],
        )


def query_events(
    event_type: Optional[str] = None,
    device: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Rows in emission order, optionally filtered by type and device."""
    sql = "SELECT * FROM event_log WHERE 1=1"
    params: List[Any] = []
    if event_type:
        sql += " AND event_type=?"
        params.append(event_type)
    if device is not None:
        sql += " AND device=?"
        params.append(device)
    sql += " ORDER BY seq ASC"
    return [dict(row) for row in _connection().execute(sql, params)]


def export_event_log() -> List[Dict[str, Any]]:
    """The full log, chain hashes included."""
    return query_events()


def get_db_stats() -> Dict[str, int]:
    row = _connection().execute(
        "SELECT COUNT(*) AS events, COUNT(DISTINCT device) AS devices FROM event_log"
    ).fetchone()
    return {"event_log_count": row["events"], "devices_seen": row["devices"]}


def reset_db() -> None:
    """Empty the log (test isolation). Schema stays."""
    with _transaction() as conn:
        conn.execute("DELETE FROM event_log")


def close_connection() -> None:
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
        _local.conn = None
