"""SQLite connection management and schema for the relay database."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Dict

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS subscriptions (
    owner_id TEXT NOT NULL,
    feed_url TEXT NOT NULL,
    display_name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (owner_id, feed_url)
);
CREATE INDEX IF NOT EXISTS idx_subscriptions_feed ON subscriptions(feed_url);

CREATE TABLE IF NOT EXISTS feed_items (
    feed_url TEXT NOT NULL,
    guid TEXT NOT NULL,
    title TEXT NOT NULL,
    link TEXT,
    published_at TEXT,
    description TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (feed_url, guid)
);
CREATE INDEX IF NOT EXISTS idx_feed_items_created ON feed_items(created_at);

CREATE TABLE IF NOT EXISTS feed_failures (
    feed_url TEXT PRIMARY KEY,
    error_message TEXT NOT NULL,
    failure_count INTEGER NOT NULL DEFAULT 1,
    last_failure TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS push_targets (
    owner_id TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    chat_type TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    username TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT NOT NULL,
    PRIMARY KEY (owner_id, chat_id)
);

CREATE TABLE IF NOT EXISTS bindings (
    owner_id TEXT NOT NULL,
    feed_url TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (owner_id, feed_url, chat_id)
);

CREATE TABLE IF NOT EXISTS push_records (
    feed_url TEXT NOT NULL,
    guid TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    pushed_at TEXT NOT NULL,
    PRIMARY KEY (feed_url, guid, chat_id)
);
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> str:
    """Serialise a datetime in the single UTC format all tables use, so text order is time order."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class SQLiteManager:
    """Manage shared SQLite connections with schema guarantees.

    One connection is kept per database path and shared across threads; callers
    serialise statement/commit pairs through :meth:`lock_for`.
    """

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._locks: Dict[Path, RLock] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False, timeout=30)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._locks.setdefault(path, RLock())
                self._ensure_schema(conn)
            return self._connections[path]

    def lock_for(self, path: Path) -> RLock:
        with self._lock:
            return self._locks.setdefault(path, RLock())

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        for candidate in (path, path.with_name(path.name + "-wal"), path.with_name(path.name + "-shm")):
            if candidate.exists():
                candidate.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["SCHEMA_SQL", "SQLiteManager", "to_timestamp", "utc_now"]
