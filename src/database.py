"""SQLite database for pipeline run logs and the published-item ledger."""

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from config import settings
from src.models import CandidateItem

logger = logging.getLogger(__name__)


def _get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    """Get a database connection, creating the DB and tables if needed."""
    path = db_path or settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    _create_tables(conn)
    return conn


def _create_tables(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS pipeline_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT UNIQUE NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            status TEXT NOT NULL DEFAULT 'running',
            current_step TEXT,
            error_message TEXT,
            steps_log TEXT NOT NULL DEFAULT '[]'
        );

        CREATE TABLE IF NOT EXISTS published_items (
            item_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            page_id TEXT NOT NULL DEFAULT '',
            created_time TEXT NOT NULL,
            published_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_runs_started ON pipeline_runs(started_at);
    """)
    conn.commit()


# --- Published-item ledger ---


def mark_published(item: CandidateItem, page_id: str, db_path: Path | None = None) -> None:
    """Record that an item's summary page exists."""
    conn = _get_connection(db_path)
    try:
        conn.execute(
            """INSERT INTO published_items (item_id, name, page_id, created_time, published_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(item_id) DO UPDATE SET
               page_id=excluded.page_id,
               published_at=excluded.published_at""",
            (item.id, item.name, page_id, item.created_time.isoformat(),
             datetime.now(UTC).isoformat()),
        )
        conn.commit()
    finally:
        conn.close()


def is_published(item_id: str, db_path: Path | None = None) -> bool:
    """Check whether an item was already published in an earlier pass."""
    conn = _get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT 1 FROM published_items WHERE item_id = ?", (item_id,)
        ).fetchone()
        return row is not None
    finally:
        conn.close()


def list_published(limit: int = 50, db_path: Path | None = None) -> list[dict]:
    """List recently published items (most recent first)."""
    conn = _get_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM published_items ORDER BY published_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


# --- Pipeline run logging ---


def start_run(run_id: str, db_path: Path | None = None) -> None:
    """Record the start of a pass."""
    conn = _get_connection(db_path)
    try:
        conn.execute(
            "INSERT INTO pipeline_runs (run_id, started_at, status) VALUES (?, ?, 'running')",
            (run_id, datetime.now(UTC).isoformat()),
        )
        conn.commit()
    finally:
        conn.close()


def log_step(run_id: str, step: str, status: str, message: str = "",
             db_path: Path | None = None) -> None:
    """Append a step entry to a run's log."""
    conn = _get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT steps_log FROM pipeline_runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        if row is None:
            logger.warning("log_step for unknown run %s", run_id)
            return
        steps = json.loads(row["steps_log"])
        steps.append({
            "step": step,
            "status": status,
            "message": message,
            "at": datetime.now(UTC).isoformat(),
        })
        conn.execute(
            "UPDATE pipeline_runs SET steps_log = ?, current_step = ? WHERE run_id = ?",
            (json.dumps(steps), step, run_id),
        )
        conn.commit()
    finally:
        conn.close()


def finish_run(run_id: str, status: str, error_message: str | None = None,
               db_path: Path | None = None) -> None:
    """Mark a pass as finished."""
    conn = _get_connection(db_path)
    try:
        conn.execute(
            "UPDATE pipeline_runs SET status = ?, error_message = ?, finished_at = ? WHERE run_id = ?",
            (status, error_message, datetime.now(UTC).isoformat(), run_id),
        )
        conn.commit()
    finally:
        conn.close()


def get_run(run_id: str, db_path: Path | None = None) -> dict | None:
    """Get a single run with its decoded step log."""
    conn = _get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM pipeline_runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        if not row:
            return None
        run = dict(row)
        run["steps_log"] = json.loads(run["steps_log"])
        return run
    finally:
        conn.close()


def list_runs(limit: int = 20, db_path: Path | None = None) -> list[dict]:
    """List recent runs (most recent first), without step logs."""
    conn = _get_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT run_id, started_at, finished_at, status, current_step, error_message "
            "FROM pipeline_runs ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()
