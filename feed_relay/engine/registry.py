"""Push targets and the owner → feed → target bindings."""

from __future__ import annotations

from pathlib import Path

from ..infra.storage import SQLiteManager, to_timestamp, utc_now
from ..models import Binding, ChatType, PushTarget, TargetStatus


class BindingRegistry:
    """Store of push targets and bindings.

    Bindings are not tied to target rows by a foreign key: a binding whose
    target row is missing still resolves, one whose target is inactive does not.
    """

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = manager.lock_for(db_path)
        self._conn = manager.connect(db_path)

    # ------------------------------------------------------------------
    # Push targets
    # ------------------------------------------------------------------
    def register_target(self, target: PushTarget) -> bool:
        """Create or refresh a target; returns ``True`` when the row is new.

        Re-registering keeps the owner's chosen status but updates title and username.
        """

        with self._lock:
            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO push_targets
                    (owner_id, chat_id, chat_type, title, username, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(target.owner_id),
                    str(target.chat_id),
                    target.chat_type.value,
                    target.title,
                    target.username,
                    target.status.value,
                    to_timestamp(utc_now()),
                ),
            )
            created = cur.rowcount == 1
            if not created:
                self._conn.execute(
                    """
                    UPDATE push_targets SET chat_type = ?, title = ?, username = ?
                    WHERE owner_id = ? AND chat_id = ?
                    """,
                    (
                        target.chat_type.value,
                        target.title,
                        target.username,
                        str(target.owner_id),
                        str(target.chat_id),
                    ),
                )
            self._conn.commit()
            return created

    def get_target(self, owner_id: str, chat_id: str) -> PushTarget | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM push_targets WHERE owner_id = ? AND chat_id = ?",
                (str(owner_id), str(chat_id)),
            ).fetchone()
        return self._row_to_target(row) if row else None

    def targets_for(self, owner_id: str) -> list[PushTarget]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM push_targets WHERE owner_id = ? ORDER BY created_at, chat_id",
                (str(owner_id),),
            ).fetchall()
        return [self._row_to_target(row) for row in rows]

    def targets_by_chat(self, chat_id: str) -> list[PushTarget]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM push_targets WHERE chat_id = ? ORDER BY owner_id", (str(chat_id),)
            ).fetchall()
        return [self._row_to_target(row) for row in rows]

    def set_status(self, owner_id: str, chat_id: str, status: TargetStatus) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE push_targets SET status = ? WHERE owner_id = ? AND chat_id = ?",
                (status.value, str(owner_id), str(chat_id)),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def delete_target(self, owner_id: str, chat_id: str) -> bool:
        """Remove the target and every binding of this owner pointing at it."""

        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM push_targets WHERE owner_id = ? AND chat_id = ?",
                (str(owner_id), str(chat_id)),
            )
            self._conn.execute(
                "DELETE FROM bindings WHERE owner_id = ? AND chat_id = ?",
                (str(owner_id), str(chat_id)),
            )
            self._conn.commit()
            return cur.rowcount > 0

    @staticmethod
    def _row_to_target(row) -> PushTarget:
        return PushTarget(
            owner_id=row["owner_id"],
            chat_id=row["chat_id"],
            chat_type=ChatType(row["chat_type"]),
            title=row["title"],
            username=row["username"],
            status=TargetStatus(row["status"]),
        )

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------
    def bind(self, owner_id: str, feed_url: str, chat_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO bindings (owner_id, feed_url, chat_id, created_at) VALUES (?, ?, ?, ?)",
                (str(owner_id), feed_url, str(chat_id), to_timestamp(utc_now())),
            )
            self._conn.commit()
            return cur.rowcount == 1

    def unbind(self, owner_id: str, feed_url: str, chat_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM bindings WHERE owner_id = ? AND feed_url = ? AND chat_id = ?",
                (str(owner_id), feed_url, str(chat_id)),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def bindings_for(self, owner_id: str, feed_url: str | None = None) -> list[Binding]:
        sql = "SELECT owner_id, feed_url, chat_id FROM bindings WHERE owner_id = ?"
        params: list[str] = [str(owner_id)]
        if feed_url is not None:
            sql += " AND feed_url = ?"
            params.append(feed_url)
        sql += " ORDER BY feed_url, created_at, chat_id"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [Binding(owner_id=row["owner_id"], feed_url=row["feed_url"], chat_id=row["chat_id"]) for row in rows]

    def active_targets(self, owner_id: str, feed_url: str) -> list[str]:
        """Chat ids bound to ``(owner_id, feed_url)`` whose target is missing or active."""

        with self._lock:
            rows = self._conn.execute(
                """
                SELECT b.chat_id FROM bindings b
                LEFT JOIN push_targets t ON t.owner_id = b.owner_id AND t.chat_id = b.chat_id
                WHERE b.owner_id = ? AND b.feed_url = ?
                  AND (t.chat_id IS NULL OR t.status = ?)
                ORDER BY b.created_at, b.chat_id
                """,
                (str(owner_id), feed_url, TargetStatus.ACTIVE.value),
            ).fetchall()
        return [row["chat_id"] for row in rows]


__all__ = ["BindingRegistry"]
