import os
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Set

from .constants import DEFAULT_DB_PATH

_SCHEMA_READY: Set[str] = set()


def _db_path() -> str:
    return os.environ.get("PLANNER_DB_PATH", DEFAULT_DB_PATH)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _utcnow_iso() -> str:
    return _utcnow().isoformat()


def _ensure_schema(conn: sqlite3.Connection, db_path: str) -> None:
    if db_path in _SCHEMA_READY and db_path != ":memory:":
        return

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            location TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'planning',
            start_date TEXT NULL,
            end_date TEXT NULL,
            budget REAL NOT NULL DEFAULT 0,
            source TEXT NULL,
            is_placeholder INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS profiles (
            user_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'worker',
            is_placeholder INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schedules (
            work_date TEXT PRIMARY KEY,
            created_by TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schedule_items (
            id TEXT PRIMARY KEY,
            work_date TEXT NOT NULL REFERENCES schedules(work_date),
            address TEXT NOT NULL,
            address_key TEXT NOT NULL,
            category TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            project_id TEXT NULL REFERENCES projects(id),
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL,
            UNIQUE (work_date, address_key, category)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schedule_item_workers (
            schedule_item_id TEXT NOT NULL REFERENCES schedule_items(id) ON DELETE CASCADE,
            user_id TEXT NOT NULL REFERENCES profiles(user_id),
            is_assistant INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            PRIMARY KEY (schedule_item_id, user_id)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS absences (
            work_date TEXT NOT NULL,
            user_id TEXT NOT NULL REFERENCES profiles(user_id),
            reason TEXT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (work_date, user_id)
        )
        """
    )
    conn.commit()
    _SCHEMA_READY.add(db_path)


def _get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = db_path or _db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    _ensure_schema(conn, path)
    return conn
