from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import httpx

from conftest import http_response, rss_feed

from feed_relay.config import IngestionPolicy
from feed_relay.infra.storage import utc_now
from feed_relay.models import FeedItem
from feed_relay.orchestrator import IngestionScheduler

FEED = "https://example.com/feed.xml"


def test_new_items_reach_every_subscriber_once(services, serve_feeds) -> None:
    services.subscriptions.add("A", FEED)
    services.subscriptions.add("B", FEED, "Example")
    calls = serve_feeds(services.fetcher, {FEED: rss_feed(2)})

    summary = services.ingestion.check_feeds()

    assert calls == [FEED]
    assert summary.feeds == 1
    assert summary.fetched == 1
    assert summary.new_items == 2
    assert summary.private_deliveries == 4
    assert len(services.messenger.to("A")) == 2
    assert "Example" in services.messenger.to("B")[0]
    assert services.dedup.item_seen(FEED, "https://example.com/posts/1")

    second = services.ingestion.check_feeds()
    assert second.new_items == 0
    assert len(services.messenger.sent) == 4


def test_items_are_delivered_in_source_order(services, serve_feeds) -> None:
    services.subscriptions.add("A", FEED)
    serve_feeds(services.fetcher, {FEED: rss_feed(3)})

    services.ingestion.check_feeds()

    assert [text.splitlines()[0] for text in services.messenger.to("A")] == [
        f"🔗 [Post {index}](https://example.com/posts/{index})" for index in (1, 2, 3)
    ]


def test_crash_before_seen_commit_redelivers_privately_but_not_to_targets(
    services, serve_feeds, monkeypatch
) -> None:
    services.subscriptions.add("A", FEED)
    services.subscriptions.add("B", FEED)
    services.registry.bind("B", FEED, "G")
    serve_feeds(services.fetcher, {FEED: rss_feed(1)})

    def broken_record(item: FeedItem, seen_at=None) -> bool:
        raise sqlite3.OperationalError("database is locked")

    with monkeypatch.context() as patch:
        patch.setattr(services.dedup, "record_item", broken_record)
        first = services.ingestion.check_feeds()

    assert first.failures == 1
    assert services.subscriptions.failures(min_count=1)[0].error_message.startswith("OperationalError")
    assert not services.dedup.item_seen(FEED, "https://example.com/posts/1")

    second = services.ingestion.check_feeds()

    assert second.new_items == 1
    assert len(services.messenger.to("A")) == 2
    assert len(services.messenger.to("B")) == 2
    assert len(services.messenger.to("G")) == 1
    assert services.subscriptions.failures(min_count=1) == []


def test_overlapping_runs_store_one_row_per_item_and_push(services, monkeypatch) -> None:
    services.subscriptions.add("A", FEED)
    services.subscriptions.add("B", FEED)
    services.registry.bind("B", FEED, "G")
    both_fetching = threading.Barrier(2, timeout=5)

    def racing_request(method: str, url: str, **kwargs) -> httpx.Response:
        both_fetching.wait()
        return http_response(200, text=rss_feed(2), url=url)

    monkeypatch.setattr(services.fetcher._client, "request", racing_request)

    with ThreadPoolExecutor(max_workers=2) as pool:
        runs = [pool.submit(services.ingestion.check_feeds) for _ in range(2)]
        summaries = [run.result() for run in runs]

    assert [summary.failures for summary in summaries] == [0, 0]
    conn = services.storage.connect(services.db_path)
    assert conn.execute("SELECT COUNT(*) FROM feed_items").fetchone()[0] == 2
    assert conn.execute("SELECT COUNT(*) FROM push_records").fetchone()[0] == 2
    duplicates = conn.execute(
        "SELECT feed_url, guid, chat_id FROM push_records GROUP BY feed_url, guid, chat_id HAVING COUNT(*) > 1"
    ).fetchall()
    assert duplicates == []
    assert services.dedup.item_seen(FEED, "https://example.com/posts/1")
    assert services.dedup.item_seen(FEED, "https://example.com/posts/2")


def test_failed_feed_is_recorded_and_does_not_stop_others(services, serve_feeds) -> None:
    broken = "https://broken.example.com/rss"
    services.subscriptions.add("A", broken)
    services.subscriptions.add("A", FEED)
    calls = serve_feeds(services.fetcher, {FEED: rss_feed(1), broken: httpx.ConnectError("refused")})

    summary = services.ingestion.check_feeds()

    assert calls.count(broken) == services.config.fetch.max_attempts
    assert summary.failures == 1
    assert summary.new_items == 1
    (failure,) = services.subscriptions.failures(min_count=1)
    assert failure.feed_url == broken
    assert failure.failure_count == 1


def test_rate_limited_feed_cools_down_on_next_run(services, serve_feeds) -> None:
    services.subscriptions.add("A", FEED)
    calls = serve_feeds(services.fetcher, {FEED: http_response(429, url=FEED)})

    first = services.ingestion.check_feeds()
    second = services.ingestion.check_feeds()

    assert calls == [FEED]
    assert first.failures == 1
    assert second.cooling_down == 1
    assert second.fetched == 0


def test_batches_are_separated_by_pause(services, serve_feeds) -> None:
    urls = [f"https://feed{index}.example.com/rss" for index in range(5)]
    for url in urls:
        services.subscriptions.add("A", url)
    serve_feeds(services.fetcher, {url: rss_feed(0) for url in urls})
    sleeps: list[float] = []
    scheduler = IngestionScheduler(
        services.subscriptions,
        services.fetcher,
        services.dedup,
        services.dispatcher,
        policy=IngestionPolicy(batch_size=2, owner_delay=0, item_delay=0, batch_pause=1.5),
        sleep=sleeps.append,
    )

    summary = scheduler.check_feeds()

    assert summary.feeds == 5
    assert summary.fetched == 5
    assert sleeps == [1.5, 1.5]


def test_owner_and_item_delays_are_applied(services, serve_feeds) -> None:
    for owner in ("A", "B", "C"):
        services.subscriptions.add(owner, FEED)
    serve_feeds(services.fetcher, {FEED: rss_feed(2)})
    sleeps: list[float] = []
    scheduler = IngestionScheduler(
        services.subscriptions,
        services.fetcher,
        services.dedup,
        services.dispatcher,
        policy=IngestionPolicy(owner_delay=0.1, item_delay=0.2, batch_pause=0),
        sleep=sleeps.append,
    )

    scheduler.check_feeds()

    assert sleeps == [0.1, 0.1, 0.2, 0.1, 0.1, 0.2]


def test_retention_purge_runs_after_check(services) -> None:
    services.dedup.record_item(
        FeedItem(feed_url=FEED, guid="ancient", title="Old"),
        seen_at=utc_now() - timedelta(days=45),
    )

    summary = services.ingestion.check_feeds()

    assert summary.feeds == 0
    assert summary.purged == 1
    assert services.dedup.count_items() == 0
