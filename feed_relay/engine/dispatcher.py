"""Fan a new feed item out to the owner's chat and bound push targets."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from ..errors import DeliveryError
from ..models import FeedItem
from .dedup import DedupStore
from .registry import BindingRegistry

_MARKDOWN_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")
_LINK_SPECIAL = re.compile(r"([)\\])")


class Messenger(Protocol):
    def send_text(
        self,
        destination_id: str,
        text: str,
        link_preview: bool = True,
        markdown: bool = False,
    ) -> Any:
        ...


def escape_markdown(text: str) -> str:
    """Escape text for Telegram MarkdownV2."""

    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def render_item(item: FeedItem, site_name: str) -> str:
    """Compose the MarkdownV2 notification for one item."""

    title = escape_markdown(item.title)
    if item.link:
        link = _LINK_SPECIAL.sub(r"\\\1", item.link)
        lines = [f"🔗 [{title}]({link})"]
    else:
        lines = [f"🔗 *{title}*"]
    if item.description:
        lines.append(f"📝 {escape_markdown(item.description)}")
    published = escape_markdown(item.published_at or "unknown time")
    lines.append(f"📰 Source: {escape_markdown(site_name)} \\| ⏰ {published}")
    return "\n".join(lines)


@dataclass(slots=True)
class DeliveryReport:
    owner_id: str
    guid: str
    private_sent: bool = False
    targets_sent: list[str] = field(default_factory=list)
    targets_skipped: list[str] = field(default_factory=list)
    targets_failed: list[str] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return int(self.private_sent) + len(self.targets_sent)


class FanoutDispatcher:
    """Deliver one item to an owner and every active target bound to the feed.

    The owner's private chat receives the item on every call. Group and channel
    targets receive it at most once, guarded by the push records in
    :class:`DedupStore`. Delivery failures are logged and skipped.
    """

    def __init__(
        self,
        messenger: Messenger,
        registry: BindingRegistry,
        dedup: DedupStore,
        link_preview: bool = True,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.messenger = messenger
        self.registry = registry
        self.dedup = dedup
        self.link_preview = link_preview
        self.logger = logger or structlog.get_logger("feed_relay.dispatcher").bind(component="dispatcher")

    def deliver(self, owner_id: str, feed_url: str, item: FeedItem, site_name: str) -> DeliveryReport:
        report = DeliveryReport(owner_id=str(owner_id), guid=item.guid)
        text = render_item(item, site_name)

        report.private_sent = self._send(str(owner_id), text, feed_url, item)

        for chat_id in self.registry.active_targets(owner_id, feed_url):
            if self.dedup.pushed(feed_url, item.guid, chat_id):
                report.targets_skipped.append(chat_id)
                continue
            if not self._send(chat_id, text, feed_url, item):
                report.targets_failed.append(chat_id)
                continue
            if self.dedup.record_push(feed_url, item.guid, chat_id):
                report.targets_sent.append(chat_id)
            else:
                self.logger.info("push_already_recorded", feed_url=feed_url, guid=item.guid, chat_id=chat_id)
                report.targets_skipped.append(chat_id)
        return report

    def _send(self, destination_id: str, text: str, feed_url: str, item: FeedItem) -> bool:
        try:
            self.messenger.send_text(destination_id, text, link_preview=self.link_preview, markdown=True)
        except DeliveryError as exc:
            self.logger.warning(
                "delivery_failed",
                destination=destination_id,
                feed_url=feed_url,
                guid=item.guid,
                error=str(exc),
            )
            return False
        return True


__all__ = ["DeliveryReport", "FanoutDispatcher", "Messenger", "escape_markdown", "render_item"]
