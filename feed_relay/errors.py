"""Exception taxonomy shared by the ingestion pipeline."""

from __future__ import annotations


class FeedRelayError(Exception):
    """Base class for all feed-relay errors."""


class TransientFetchError(FeedRelayError):
    """Network failure or unexpected HTTP status; retried inside the fetcher."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RateLimitError(TransientFetchError):
    """Upstream answered 429; the remaining attempts are abandoned."""

    def __init__(self, url: str, retry_after: str | None = None) -> None:
        super().__init__(url, "HTTP 429 Too Many Requests", status_code=429)
        self.retry_after = retry_after


class EntryParseError(FeedRelayError):
    """A single feed entry could not be normalized and is dropped."""


class DeliveryError(FeedRelayError):
    """Messaging API rejected or failed to accept a message."""

    def __init__(self, destination_id: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.destination_id = destination_id
        self.status_code = status_code


__all__ = [
    "DeliveryError",
    "EntryParseError",
    "FeedRelayError",
    "RateLimitError",
    "TransientFetchError",
]
