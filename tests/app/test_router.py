from __future__ import annotations

import sqlite3

import pytest

from conftest import RecordingMessenger, rss_feed

from feed_relay.commands import CommandRouter, describe_schedule, parse_command
from feed_relay.config import ScheduleConfig, ScheduleType
from feed_relay.models import TargetStatus

OWNER = "1001"
FEED = "https://www.example.com/feed.xml"
OTHER = "https://blog.example.org/rss"


@pytest.fixture
def router(services) -> CommandRouter:
    return CommandRouter(
        services.subscriptions,
        services.registry,
        services.fetcher,
        messenger=services.messenger,
        policy=services.config.ingestion,
        schedule=services.config.schedule,
    )


def _membership(status: str, chat_id: int = -100, chat_type: str = "channel", sender: int = 1001) -> dict:
    return {
        "update_id": 1,
        "my_chat_member": {
            "chat": {"id": chat_id, "type": chat_type, "title": "News"},
            "from": {"id": sender},
            "new_chat_member": {"status": status},
        },
    }


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("/add https://a https://b", ("add", ["https://a", "https://b"])),
        ("/LIST@feed_relay_bot", ("list", [])),
        ("  /del 1 2 ", ("del", ["1", "2"])),
        ("hello", None),
        ("/", None),
        ("", None),
    ],
)
def test_parse_command(text, expected) -> None:
    assert parse_command(text) == expected


def test_describe_schedule() -> None:
    assert describe_schedule(ScheduleConfig()) == "every 10 min"
    assert describe_schedule(ScheduleConfig(value=90)) == "every 90 s"
    assert describe_schedule(ScheduleConfig(type=ScheduleType.CRON, value="0 * * * *")) == "cron (0 * * * *)"


def test_unknown_and_plain_text(router: CommandRouter) -> None:
    assert router.handle_text(OWNER, "/frobnicate") == "Unknown command. Send /help to see what I can do."
    assert router.handle_text(OWNER, "just chatting") is None
    assert "/bind <n> <chat id>" in router.handle_text(OWNER, "/help")


def test_add_probes_before_subscribing(router: CommandRouter, services, serve_feeds) -> None:
    calls = serve_feeds(services.fetcher, {FEED: rss_feed(2)})

    reply = router.handle_text(OWNER, f"/add {FEED} not-a-url {OTHER}")

    assert "✅ Added: 1" in reply
    assert "✅ Added: example.com" in reply
    assert "❌ Invalid URL: not-a-url" in reply
    assert f"⚠️ Unreachable: {OTHER}" in reply
    assert "HTTP 404" in reply
    assert services.subscriptions.exists(OWNER, FEED)
    assert not services.subscriptions.exists(OWNER, OTHER)
    assert calls.count(FEED) == 1
    # probing does not mark anything as seen
    assert services.dedup.count_items() == 0

    again = router.handle_text(OWNER, f"/add {FEED}")
    assert "⚠️ Already subscribed: example.com" in again


def test_list_and_delete_use_newest_first_numbering(router: CommandRouter, services) -> None:
    services.subscriptions.add(OWNER, FEED)
    services.subscriptions.add(OWNER, OTHER)

    listing = router.handle_text(OWNER, "/list")
    assert listing.index("blog.example.org") < listing.index("example.com\n")

    reply = router.handle_text(OWNER, "/del 1 1 7 x")

    assert "🗑 Removed 1 subscription(s)" in reply
    assert "✅ Removed: blog.example.org" in reply
    assert "❌ Invalid number: 7" in reply
    assert "❌ Invalid number: x" in reply
    assert [s.feed_url for s in services.subscriptions.for_owner(OWNER)] == [FEED]


def test_empty_list(router: CommandRouter) -> None:
    assert "no subscriptions yet" in router.handle_text(OWNER, "/list")
    assert router.handle_text(OWNER, "/del 1") == "You have no subscriptions."


def test_membership_registers_and_deactivates_target(router: CommandRouter, services) -> None:
    reply = router.handle_update(_membership("administrator"))

    assert "News (channel) is now a push target" in reply
    assert services.messenger.to(OWNER) == [reply]
    target = services.registry.get_target(OWNER, "-100")
    assert target is not None and target.active

    router.handle_update(_membership("kicked"))

    assert services.registry.get_target(OWNER, "-100").status is TargetStatus.INACTIVE


def test_private_chat_membership_is_ignored(router: CommandRouter, services) -> None:
    assert router.handle_update(_membership("member", chat_id=1001, chat_type="private")) is None
    assert services.registry.targets_for(OWNER) == []


def test_bind_requires_registered_target(router: CommandRouter, services) -> None:
    services.subscriptions.add(OWNER, FEED)

    assert "No push target -100" in router.handle_text(OWNER, "/bind 1 -100")

    router.handle_update(_membership("member"))
    assert "will now be pushed to -100" in router.handle_text(OWNER, "/bind 1 -100")
    assert "already pushed" in router.handle_text(OWNER, "/bind 1 -100")
    assert "example.com → -100" in router.handle_text(OWNER, "/bindings")
    assert "Invalid subscription number: 2" in router.handle_text(OWNER, "/bind 2 -100")

    assert "no longer pushed" in router.handle_text(OWNER, "/unbind 1 -100")
    assert services.registry.bindings_for(OWNER) == []


def test_target_management_commands(router: CommandRouter, services) -> None:
    router.handle_update(_membership("administrator"))

    assert "now inactive" in router.handle_text(OWNER, "/disable -100")
    assert "⏸ News [channel] id: -100" in router.handle_text(OWNER, "/targets")
    assert "now active" in router.handle_text(OWNER, "/enable -100")
    assert "No push target -5" in router.handle_text(OWNER, "/enable -5")
    assert "were removed" in router.handle_text(OWNER, "/rmtarget -100")
    assert "No push targets yet" in router.handle_text(OWNER, "/targets")


def test_failed_lists_only_feeds_over_threshold(router: CommandRouter, services) -> None:
    services.subscriptions.add(OWNER, FEED)
    assert router.handle_text(OWNER, "/failed") == "✅ All of your feeds are working."

    for _ in range(3):
        services.subscriptions.record_failure(FEED, "HTTP 503 " + "x" * 80)
    reply = router.handle_text(OWNER, "/failed")

    assert "⚠️ Failing feeds (1):" in reply
    assert "🔄 Failures: 3" in reply
    assert "..." in reply


def test_stats_and_probe(router: CommandRouter, services, serve_feeds) -> None:
    services.subscriptions.add(OWNER, FEED)
    serve_feeds(services.fetcher, {FEED: rss_feed(1)})

    stats = router.handle_text(OWNER, "/stats")
    assert "👤 Your subscriptions: 1" in stats
    assert "every 10 min" in stats

    probe = router.handle_text(OWNER, f"/probe {FEED}")
    assert "✅ Reachable (HTTP 200, attempt 1)" in probe
    assert "📄 Latest: Post 1" in probe
    assert router.handle_text(OWNER, "/probe") == "Usage: /probe <feed url>"


def test_message_update_replies_to_sender(router: CommandRouter, services) -> None:
    reply = router.handle_update({"update_id": 5, "message": {"from": {"id": 1001}, "text": "/start"}})

    assert reply.startswith("Welcome to feed-relay!")
    assert services.messenger.sent[-1]["destination"] == OWNER
    assert services.messenger.sent[-1]["link_preview"] is False
    assert router.handle_update({"update_id": 6, "message": {"from": {"id": 1001}}}) is None


def test_reply_delivery_failure_is_not_raised(services) -> None:
    router = CommandRouter(
        services.subscriptions,
        services.registry,
        services.fetcher,
        messenger=RecordingMessenger(failing={OWNER}),
    )

    assert router.handle_update({"message": {"from": {"id": 1001}, "text": "/help"}}).startswith("📖")


def test_storage_errors_become_a_reply(router: CommandRouter, services, monkeypatch) -> None:
    def broken(owner_id):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(services.subscriptions, "for_owner", broken)

    assert "Something went wrong" in router.handle_text(OWNER, "/list")


def test_malformed_urls_are_rejected_not_raised(router: CommandRouter, services) -> None:
    bad = "http://[::1/feed"

    assert f"❌ Invalid URL: {bad}" in router.handle_text(OWNER, f"/add {bad}")
    reply = router.handle_update({"update_id": 7, "message": {"from": {"id": 1001}, "text": f"/probe {bad}"}})
    assert reply is not None and "❌ Invalid URL" in reply
    assert services.subscriptions.for_owner(OWNER) == []


def test_failing_update_handler_is_logged_and_skipped(router: CommandRouter, services, monkeypatch) -> None:
    def broken(target):
        raise RuntimeError("registry unavailable")

    monkeypatch.setattr(services.registry, "register_target", broken)

    assert router.handle_update(_membership("administrator")) is None
    assert services.messenger.to(OWNER) == []
    # the router keeps serving later updates
    assert router.handle_update({"update_id": 8, "message": {"from": {"id": 1001}, "text": "/start"}}) is not None


def test_add_reports_feeds_in_cooldown(router: CommandRouter, services, serve_feeds) -> None:
    calls = serve_feeds(services.fetcher, {FEED: rss_feed(1)})
    services.fetcher.tracker.record_rate_limit(FEED)

    reply = router.handle_text(OWNER, f"/add {FEED}")

    assert f"⏳ Cooling down: {FEED}" in reply
    assert "Unreachable" not in reply
    assert calls == []
    assert not services.subscriptions.exists(OWNER, FEED)
