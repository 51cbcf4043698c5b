from __future__ import annotations

from feed_relay.engine.registry import BindingRegistry
from feed_relay.models import ChatType, PushTarget, TargetStatus

OWNER = "1001"
FEED = "https://example.com/feed.xml"


def test_register_target_keeps_status_on_refresh(storage, db_path) -> None:
    registry = BindingRegistry(storage, db_path)
    target = PushTarget(owner_id=OWNER, chat_id="-100", chat_type=ChatType.CHANNEL, title="News")

    assert registry.register_target(target) is True
    registry.set_status(OWNER, "-100", TargetStatus.INACTIVE)
    assert registry.register_target(
        PushTarget(owner_id=OWNER, chat_id="-100", chat_type=ChatType.SUPERGROUP, title="Renamed")
    ) is False

    stored = registry.get_target(OWNER, "-100")
    assert stored is not None
    assert stored.title == "Renamed"
    assert stored.chat_type is ChatType.SUPERGROUP
    assert stored.status is TargetStatus.INACTIVE
    assert not stored.active


def test_active_targets_filters_inactive_but_keeps_unregistered(storage, db_path) -> None:
    registry = BindingRegistry(storage, db_path)
    registry.register_target(PushTarget(owner_id=OWNER, chat_id="-1", chat_type=ChatType.GROUP))
    registry.register_target(PushTarget(owner_id=OWNER, chat_id="-2", chat_type=ChatType.GROUP))
    registry.set_status(OWNER, "-2", TargetStatus.INACTIVE)
    for chat in ("-1", "-2", "-3"):
        assert registry.bind(OWNER, FEED, chat)

    assert registry.bind(OWNER, FEED, "-1") is False
    assert registry.active_targets(OWNER, FEED) == ["-1", "-3"]
    assert registry.active_targets("someone-else", FEED) == []


def test_targets_are_scoped_per_owner(storage, db_path) -> None:
    registry = BindingRegistry(storage, db_path)
    registry.register_target(PushTarget(owner_id=OWNER, chat_id="-1", chat_type=ChatType.GROUP))
    registry.register_target(PushTarget(owner_id="2002", chat_id="-1", chat_type=ChatType.GROUP))
    registry.set_status("2002", "-1", TargetStatus.INACTIVE)
    registry.bind(OWNER, FEED, "-1")

    assert [t.owner_id for t in registry.targets_by_chat("-1")] == [OWNER, "2002"]
    assert registry.active_targets(OWNER, FEED) == ["-1"]


def test_delete_target_drops_its_bindings(storage, db_path) -> None:
    registry = BindingRegistry(storage, db_path)
    registry.register_target(PushTarget(owner_id=OWNER, chat_id="-1", chat_type=ChatType.CHANNEL))
    registry.bind(OWNER, FEED, "-1")
    registry.bind(OWNER, "https://other.example.com/rss", "-1")

    assert registry.delete_target(OWNER, "-1") is True
    assert registry.bindings_for(OWNER) == []
    assert registry.targets_for(OWNER) == []
    assert registry.delete_target(OWNER, "-1") is False


def test_unbind_and_listing(storage, db_path) -> None:
    registry = BindingRegistry(storage, db_path)
    registry.bind(OWNER, FEED, "-1")
    registry.bind(OWNER, FEED, "-2")

    assert registry.unbind(OWNER, FEED, "-1") is True
    assert registry.unbind(OWNER, FEED, "-1") is False
    assert [(b.feed_url, b.chat_id) for b in registry.bindings_for(OWNER, FEED)] == [(FEED, "-2")]
