"""Periodic ingestion driver wiring fetching, dedup and fan-out together."""

from __future__ import annotations

import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Sequence

import structlog

from .config import GlobalConfig, IngestionPolicy
from .engine import (
    BindingRegistry,
    CooldownTracker,
    DedupStore,
    FanoutDispatcher,
    FeedFetcher,
    FeedNormalizer,
    FetchStatus,
    SubscriptionStore,
)
from .engine.dispatcher import Messenger
from .infra import HeaderProfilePool, SQLiteManager, TelegramMessenger
from .logging_conf import component_logger
from .models import Subscription


@dataclass(slots=True)
class RunSummary:
    """Counters describing one ``check_feeds`` run."""

    feeds: int = 0
    fetched: int = 0
    cooling_down: int = 0
    new_items: int = 0
    private_deliveries: int = 0
    target_deliveries: int = 0
    failures: int = 0
    purged: int = 0

    def merge(self, other: "RunSummary") -> None:
        self.fetched += other.fetched
        self.cooling_down += other.cooling_down
        self.new_items += other.new_items
        self.private_deliveries += other.private_deliveries
        self.target_deliveries += other.target_deliveries
        self.failures += other.failures

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class IngestionScheduler:
    """Check every subscribed feed once and fan out what is new.

    Feeds are fetched once per URL regardless of how many owners subscribe,
    in sequential batches with concurrent fetching inside a batch. An item is
    marked seen only after it was handed to every subscriber, so a crash in
    between re-delivers privately on the next run while push records keep
    group and channel targets from seeing it twice.
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        fetcher: FeedFetcher,
        dedup: DedupStore,
        dispatcher: FanoutDispatcher,
        policy: IngestionPolicy | None = None,
        logger: structlog.BoundLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.subscriptions = subscriptions
        self.fetcher = fetcher
        self.dedup = dedup
        self.dispatcher = dispatcher
        self.policy = policy or IngestionPolicy()
        self.logger = logger or component_logger("ingestion")
        self._sleep = sleep

    # ------------------------------------------------------------------
    def check_feeds(self) -> RunSummary:
        groups = self.subscriptions.grouped_by_feed()
        urls = list(groups)
        summary = RunSummary(feeds=len(urls))
        size = self.policy.batch_size
        batches = [urls[start : start + size] for start in range(0, len(urls), size)]
        self.logger.info("check_started", feeds=len(urls), batches=len(batches))

        for index, batch in enumerate(batches):
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="feed-relay-fetch") as executor:
                futures = {executor.submit(self._process_feed, url, groups[url]): url for url in batch}
                for future in as_completed(futures):
                    summary.merge(future.result())
            if index < len(batches) - 1:
                self._pause(self.policy.batch_pause)

        try:
            summary.purged = self.dedup.purge_items_older_than(self.policy.retention_days)
        except sqlite3.Error as exc:
            self.logger.error("retention_purge_failed", error=str(exc))
        self.logger.info("check_finished", **summary.as_dict())
        return summary

    def _process_feed(self, feed_url: str, subscribers: Sequence[Subscription]) -> RunSummary:
        result = RunSummary()
        try:
            outcome = self.fetcher.fetch_result(feed_url)
            if outcome.status is FetchStatus.COOLDOWN:
                result.cooling_down = 1
                return result
            result.fetched = 1
            if outcome.failed:
                self._record_failure(feed_url, outcome.error or outcome.status.value)
                result.failures = 1
                return result
            if outcome.items:
                self.subscriptions.clear_failure(feed_url)

            for item in outcome.items:
                if self.dedup.item_seen(feed_url, item.guid):
                    continue
                for position, subscription in enumerate(subscribers):
                    if position:
                        self._pause(self.policy.owner_delay)
                    report = self.dispatcher.deliver(
                        subscription.owner_id, feed_url, item, subscription.display_name
                    )
                    result.private_deliveries += int(report.private_sent)
                    result.target_deliveries += len(report.targets_sent)
                self.dedup.record_item(item)
                result.new_items += 1
                self._pause(self.policy.item_delay)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("feed_failed", feed_url=feed_url, error=str(exc), exc_info=True)
            self._record_failure(feed_url, f"{type(exc).__name__}: {exc}")
            result.failures = 1
        return result

    def _record_failure(self, feed_url: str, message: str) -> None:
        try:
            count = self.subscriptions.record_failure(feed_url, message)
        except sqlite3.Error as exc:
            self.logger.error("failure_record_failed", feed_url=feed_url, error=str(exc))
            return
        self.logger.warning("feed_failure_recorded", feed_url=feed_url, failure_count=count, error=message)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------
@dataclass
class RelayServices:
    """Every long-lived component, built once from the global config."""

    config: GlobalConfig
    storage: SQLiteManager
    db_path: Path
    subscriptions: SubscriptionStore
    registry: BindingRegistry
    dedup: DedupStore
    fetcher: FeedFetcher
    messenger: Messenger
    dispatcher: FanoutDispatcher
    ingestion: IngestionScheduler

    def close(self) -> None:
        self.fetcher.close()
        close = getattr(self.messenger, "close", None)
        if close is not None:
            close()
        self.storage.close_all()


def build_services(
    config: GlobalConfig,
    db_path: Path,
    messenger: Messenger | None = None,
    storage: SQLiteManager | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RelayServices:
    storage = storage or SQLiteManager()
    subscriptions = SubscriptionStore(storage, db_path)
    registry = BindingRegistry(storage, db_path)
    dedup = DedupStore(storage, db_path)
    normalizer = FeedNormalizer(
        max_items=config.ingestion.max_items,
        description_limit=config.ingestion.description_limit,
        display_timezone=config.ingestion.display_timezone,
    )
    fetcher = FeedFetcher(
        config.fetch,
        normalizer=normalizer,
        tracker=CooldownTracker(config.fetch),
        profiles=HeaderProfilePool(config.fetch.header_profiles),
        sleep=sleep,
    )
    messenger = messenger or TelegramMessenger(config.messaging)
    dispatcher = FanoutDispatcher(messenger, registry, dedup, link_preview=config.messaging.link_preview)
    ingestion = IngestionScheduler(
        subscriptions, fetcher, dedup, dispatcher, policy=config.ingestion, sleep=sleep
    )
    return RelayServices(
        config=config,
        storage=storage,
        db_path=db_path,
        subscriptions=subscriptions,
        registry=registry,
        dedup=dedup,
        fetcher=fetcher,
        messenger=messenger,
        dispatcher=dispatcher,
        ingestion=ingestion,
    )


__all__ = ["IngestionScheduler", "RelayServices", "RunSummary", "build_services"]
