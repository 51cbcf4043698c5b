from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from feed_relay.config import HeaderProfile
from feed_relay.infra import HeaderProfilePool, SQLiteManager
from feed_relay.infra.storage import to_timestamp


def test_schema_is_created_once_per_path(tmp_path: Path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "nested" / "relay.db"
    conn = manager.connect(path)

    tables = {
        row["name"]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    }
    assert {"subscriptions", "feed_items", "feed_failures", "push_targets", "bindings", "push_records"} <= tables
    assert manager.connect(path) is conn
    assert manager.lock_for(path) is manager.lock_for(path)
    manager.close_all()


def test_reset_removes_database_files(tmp_path: Path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "relay.db"
    manager.connect(path).execute("INSERT INTO bindings VALUES ('1', 'u', '-1', 'now')").connection.commit()

    manager.reset(path)

    assert not path.exists()
    fresh = manager.connect(path)
    assert fresh.execute("SELECT COUNT(*) FROM bindings").fetchone()[0] == 0
    manager.close_all()


def test_timestamps_sort_chronologically() -> None:
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=8)))

    assert to_timestamp(moment) == "2024-01-01T19:04:05Z"
    assert to_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05Z"
    assert to_timestamp(moment) < to_timestamp(moment + timedelta(seconds=1))


def test_header_profile_pool_caps_at_last_profile() -> None:
    pool = HeaderProfilePool([HeaderProfile(name="one"), HeaderProfile(name="two")])

    assert [pool.for_attempt(n).name for n in (0, 1, 2, 3, 9)] == ["one", "one", "two", "two", "two"]
    assert len(pool) == 2

    pool.refresh([HeaderProfile(name="three")])
    assert pool.for_attempt(2).name == "three"
