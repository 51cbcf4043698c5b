"""Engine components: fetch → normalize → dedup → fan-out."""

from .cooldown import CooldownTracker, RateLimitState, cooldown_ms
from .dedup import DedupStore
from .dispatcher import DeliveryReport, FanoutDispatcher, render_item
from .fetcher import FeedFetcher, FetchOutcome, FetchStatus
from .normalizer import FeedNormalizer, Normalizer
from .registry import BindingRegistry
from .subscriptions import SubscriptionStore, is_valid_feed_url, site_name_for

__all__ = [
    "BindingRegistry",
    "CooldownTracker",
    "DedupStore",
    "DeliveryReport",
    "FanoutDispatcher",
    "FeedFetcher",
    "FeedNormalizer",
    "FetchOutcome",
    "FetchStatus",
    "Normalizer",
    "RateLimitState",
    "SubscriptionStore",
    "cooldown_ms",
    "is_valid_feed_url",
    "render_item",
    "site_name_for",
]
