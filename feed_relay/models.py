"""Records exchanged between the storage layer and the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ChatType(str, Enum):
    GROUP = "group"
    SUPERGROUP = "supergroup"
    CHANNEL = "channel"


class TargetStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(slots=True, frozen=True)
class FeedItem:
    """One normalized feed entry; ``(feed_url, guid)`` is its identity."""

    feed_url: str
    guid: str
    title: str
    link: str = ""
    published_at: str = ""
    description: str = ""


@dataclass(slots=True, frozen=True)
class Subscription:
    owner_id: str
    feed_url: str
    display_name: str
    created_at: str = ""


@dataclass(slots=True, frozen=True)
class PushTarget:
    """A group or channel an owner may bind feeds to."""

    owner_id: str
    chat_id: str
    chat_type: ChatType
    title: str = ""
    username: str = ""
    status: TargetStatus = TargetStatus.ACTIVE

    @property
    def active(self) -> bool:
        return self.status is TargetStatus.ACTIVE


@dataclass(slots=True, frozen=True)
class Binding:
    owner_id: str
    feed_url: str
    chat_id: str


@dataclass(slots=True, frozen=True)
class FeedFailure:
    """Last recorded feed-level failure, cleared on the next good fetch."""

    feed_url: str
    error_message: str
    failure_count: int
    last_failure: str
    created_at: str = ""
    display_name: str = ""


__all__ = [
    "Binding",
    "ChatType",
    "FeedFailure",
    "FeedItem",
    "PushTarget",
    "Subscription",
    "TargetStatus",
]
