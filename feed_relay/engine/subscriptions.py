"""Owner subscriptions, feed failure records and relay statistics."""

from __future__ import annotations

from collections import OrderedDict
from pathlib import Path
from urllib.parse import urlparse

from ..infra.storage import SQLiteManager, to_timestamp, utc_now
from ..models import FeedFailure, Subscription


def site_name_for(url: str) -> str:
    """Default display name: the feed host without a leading ``www.``."""

    try:
        host = urlparse(url).hostname or url
    except ValueError:
        return url
    return host[4:] if host.startswith("www.") else host


def is_valid_feed_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class SubscriptionStore:
    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = manager.lock_for(db_path)
        self._conn = manager.connect(db_path)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def add(self, owner_id: str, feed_url: str, display_name: str | None = None) -> bool:
        """Subscribe ``owner_id``; ``False`` when the subscription already exists."""

        with self._lock:
            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO subscriptions (owner_id, feed_url, display_name, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (str(owner_id), feed_url, display_name or site_name_for(feed_url), to_timestamp(utc_now())),
            )
            self._conn.commit()
            return cur.rowcount == 1

    def remove(self, owner_id: str, feed_url: str) -> bool:
        """Drop the subscription together with the owner's bindings for that feed."""

        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM subscriptions WHERE owner_id = ? AND feed_url = ?",
                (str(owner_id), feed_url),
            )
            self._conn.execute(
                "DELETE FROM bindings WHERE owner_id = ? AND feed_url = ?",
                (str(owner_id), feed_url),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def exists(self, owner_id: str, feed_url: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "SELECT 1 FROM subscriptions WHERE owner_id = ? AND feed_url = ?",
                (str(owner_id), feed_url),
            )
            return cur.fetchone() is not None

    def for_owner(self, owner_id: str) -> list[Subscription]:
        """Owner's subscriptions, newest first; list indices in commands follow this order."""

        with self._lock:
            rows = self._conn.execute(
                """
                SELECT owner_id, feed_url, display_name, created_at FROM subscriptions
                WHERE owner_id = ? ORDER BY created_at DESC, rowid DESC
                """,
                (str(owner_id),),
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def all(self) -> list[Subscription]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT owner_id, feed_url, display_name, created_at FROM subscriptions ORDER BY rowid"
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def grouped_by_feed(self) -> "OrderedDict[str, list[Subscription]]":
        """All subscriptions grouped by feed URL, in first-subscribed order."""

        groups: OrderedDict[str, list[Subscription]] = OrderedDict()
        for subscription in self.all():
            groups.setdefault(subscription.feed_url, []).append(subscription)
        return groups

    @staticmethod
    def _row_to_subscription(row) -> Subscription:
        return Subscription(
            owner_id=row["owner_id"],
            feed_url=row["feed_url"],
            display_name=row["display_name"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Failure records
    # ------------------------------------------------------------------
    def record_failure(self, feed_url: str, error_message: str) -> int:
        """Upsert the failure record, returning the new consecutive failure count."""

        now = to_timestamp(utc_now())
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO feed_failures (feed_url, error_message, failure_count, last_failure, created_at)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT(feed_url) DO UPDATE SET
                    error_message = excluded.error_message,
                    failure_count = feed_failures.failure_count + 1,
                    last_failure = excluded.last_failure
                """,
                (feed_url, error_message, now, now),
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT failure_count FROM feed_failures WHERE feed_url = ?", (feed_url,)
            ).fetchone()
        return int(row["failure_count"]) if row else 0

    def clear_failure(self, feed_url: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM feed_failures WHERE feed_url = ?", (feed_url,))
            self._conn.commit()
            return cur.rowcount > 0

    def failures(self, min_count: int = 3, owner_id: str | None = None) -> list[FeedFailure]:
        """Failure records at or above ``min_count``, optionally limited to one owner's feeds."""

        query = """
            SELECT f.feed_url, f.error_message, f.failure_count, f.last_failure, f.created_at,
                   COALESCE(MIN(s.display_name), '') AS display_name
            FROM feed_failures f
            {join} subscriptions s ON s.feed_url = f.feed_url {owner_clause}
            WHERE f.failure_count >= ?
            GROUP BY f.feed_url
            ORDER BY f.failure_count DESC, f.last_failure DESC
        """
        if owner_id is None:
            sql = query.format(join="LEFT JOIN", owner_clause="")
            params: tuple = (min_count,)
        else:
            sql = query.format(join="JOIN", owner_clause="AND s.owner_id = ?")
            params = (str(owner_id), min_count)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [
            FeedFailure(
                feed_url=row["feed_url"],
                error_message=row["error_message"],
                failure_count=row["failure_count"],
                last_failure=row["last_failure"],
                created_at=row["created_at"],
                display_name=row["display_name"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    def stats(self) -> dict[str, int]:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM subscriptions) AS subscriptions,
                    (SELECT COUNT(DISTINCT feed_url) FROM subscriptions) AS feeds,
                    (SELECT COUNT(DISTINCT owner_id) FROM subscriptions) AS owners,
                    (SELECT COUNT(*) FROM feed_items) AS items,
                    (SELECT COUNT(*) FROM push_targets) AS targets,
                    (SELECT COUNT(*) FROM bindings) AS bindings,
                    (SELECT COUNT(*) FROM feed_failures) AS failing_feeds
                """
            ).fetchone()
        return {key: int(row[key]) for key in row.keys()}


__all__ = ["SubscriptionStore", "is_valid_feed_url", "site_name_for"]
