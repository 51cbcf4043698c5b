"""Durable "seen" and "pushed" markers backed by SQLite."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

from ..infra.storage import SQLiteManager, to_timestamp, utc_now
from ..models import FeedItem


class DedupStore:
    """Idempotent records of which items were seen and where they were pushed.

    Both writers use ``INSERT OR IGNORE`` and report through their boolean
    result whether the row is new, so concurrent runs can race safely.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = manager.lock_for(db_path)
        self._conn = manager.connect(db_path)

    # ------------------------------------------------------------------
    def item_seen(self, feed_url: str, guid: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "SELECT 1 FROM feed_items WHERE feed_url = ? AND guid = ?", (feed_url, guid)
            )
            return cur.fetchone() is not None

    def record_item(self, item: FeedItem, seen_at: datetime | None = None) -> bool:
        """Store the item as seen; ``False`` when it was already recorded."""

        with self._lock:
            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO feed_items
                    (feed_url, guid, title, link, published_at, description, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.feed_url,
                    item.guid,
                    item.title,
                    item.link,
                    item.published_at,
                    item.description,
                    to_timestamp(seen_at or utc_now()),
                ),
            )
            self._conn.commit()
            return cur.rowcount == 1

    def pushed(self, feed_url: str, guid: str, chat_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "SELECT 1 FROM push_records WHERE feed_url = ? AND guid = ? AND chat_id = ?",
                (feed_url, guid, str(chat_id)),
            )
            return cur.fetchone() is not None

    def record_push(self, feed_url: str, guid: str, chat_id: str) -> bool:
        """Mark the item delivered to ``chat_id``; ``False`` when already marked."""

        with self._lock:
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO push_records (feed_url, guid, chat_id, pushed_at) VALUES (?, ?, ?, ?)",
                (feed_url, guid, str(chat_id), to_timestamp(utc_now())),
            )
            self._conn.commit()
            return cur.rowcount == 1

    # ------------------------------------------------------------------
    def purge_items_older_than(self, days: int, now: datetime | None = None) -> int:
        """Delete seen markers older than ``days``; returns the number removed."""

        cutoff = to_timestamp((now or utc_now()) - timedelta(days=days))
        with self._lock:
            cur = self._conn.execute("DELETE FROM feed_items WHERE created_at < ?", (cutoff,))
            self._conn.commit()
            return cur.rowcount

    def count_items(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM feed_items").fetchone()[0]

    def recent_items(self, feed_url: str, limit: int = 10) -> list[FeedItem]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT feed_url, guid, title, link, published_at, description
                FROM feed_items WHERE feed_url = ?
                ORDER BY created_at DESC LIMIT ?
                """,
                (feed_url, limit),
            ).fetchall()
        return [
            FeedItem(
                feed_url=row["feed_url"],
                guid=row["guid"],
                title=row["title"],
                link=row["link"] or "",
                published_at=row["published_at"] or "",
                description=row["description"] or "",
            )
            for row in rows
        ]


__all__ = ["DedupStore"]
