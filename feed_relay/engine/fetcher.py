"""Feed fetching with retry, header rotation and per-URL cooldown."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import httpx
import structlog

from ..config import FetchPolicy
from ..errors import RateLimitError, TransientFetchError
from ..infra import HeaderProfilePool
from ..models import FeedItem
from .antibot import strategies
from .antibot.chain import AntiBotChain, FetchContext
from .cooldown import CooldownTracker
from .normalizer import FeedNormalizer, Normalizer


class FetchStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    COOLDOWN = "cooldown"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass(slots=True)
class FetchOutcome:
    """What happened to one ``fetch`` call; ``items`` is always safe to iterate."""

    url: str
    status: FetchStatus
    items: list[FeedItem] = field(default_factory=list)
    attempts: int = 0
    error: str | None = None
    status_code: int | None = None

    @property
    def failed(self) -> bool:
        return self.status in (FetchStatus.FAILED, FetchStatus.RATE_LIMITED)


class FeedFetcher:
    """Retrieve and normalize feeds without ever raising for remote failures.

    Per-URL throttling state lives in the injected :class:`CooldownTracker`; a
    URL still cooling down is skipped without touching the network.
    """

    def __init__(
        self,
        policy: FetchPolicy | None = None,
        normalizer: Normalizer | None = None,
        tracker: CooldownTracker | None = None,
        profiles: HeaderProfilePool | None = None,
        logger: structlog.BoundLogger | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or FetchPolicy()
        self.normalizer = normalizer or FeedNormalizer()
        self.tracker = tracker or CooldownTracker(self.policy)
        self.profiles = profiles or HeaderProfilePool(self.policy.header_profiles)
        self.logger = logger or structlog.get_logger("feed_relay.fetcher").bind(component="fetcher")
        self._client = client or httpx.Client(follow_redirects=True, timeout=self.policy.timeout)
        self._sleep = sleep
        self._rng = rng

    def close(self) -> None:
        self._client.close()

    def fetch(self, url: str) -> list[FeedItem]:
        return self.fetch_result(url).items

    def fetch_result(self, url: str) -> FetchOutcome:
        remaining = self.tracker.remaining_ms(url)
        if remaining > 0:
            self.logger.info("fetch_skipped_cooldown", url=url, remaining_ms=remaining)
            return FetchOutcome(url=url, status=FetchStatus.COOLDOWN)

        context, chain = self._build_chain(url)
        last_error: TransientFetchError | None = None
        while True:
            directive = chain.prepare(context)
            if directive.delay:
                self._sleep(directive.delay)
            try:
                response = self._client.request(
                    "GET",
                    url,
                    headers=directive.headers,
                    timeout=directive.timeout or self.policy.timeout,
                )
            except httpx.HTTPError as exc:
                last_error = TransientFetchError(url, f"{type(exc).__name__}: {exc}")
                self.logger.warning(
                    "fetch_error",
                    url=url,
                    attempt=context.attempt,
                    profile=directive.profile,
                    error=str(exc),
                )
                chain.notify_failure(context, None, last_error)
            else:
                if response.is_success:
                    chain.notify_success(context, response)
                    return self._handle_payload(url, response, context.attempt)
                last_error = TransientFetchError(url, f"HTTP {response.status_code}", response.status_code)
                self.logger.warning(
                    "fetch_rejected",
                    url=url,
                    attempt=context.attempt,
                    profile=directive.profile,
                    status=response.status_code,
                )
                chain.notify_failure(context, response, last_error)

            if context.aborted:
                return self._handle_rate_limit(url, context)
            if not chain.should_retry(context):
                break

        state = self.tracker.record_failure(url)
        self.logger.warning(
            "fetch_exhausted",
            url=url,
            attempts=context.attempt - 1,
            failure_count=state.failure_count,
            error=str(last_error) if last_error else None,
        )
        return FetchOutcome(
            url=url,
            status=FetchStatus.FAILED,
            attempts=context.attempt - 1,
            error=str(last_error) if last_error else "fetch failed",
            status_code=last_error.status_code if last_error else None,
        )

    # ------------------------------------------------------------------
    def _build_chain(self, url: str) -> tuple[FetchContext, AntiBotChain]:
        return strategies.build_chain(url, self.policy, self.profiles, self._rng)

    def _handle_payload(self, url: str, response: httpx.Response, attempt: int) -> FetchOutcome:
        items = self.normalizer.normalize(response.text, url)
        if not items:
            # a valid answer without entries: nothing to retry, counters untouched
            self.tracker.touch(url)
            self.logger.info("fetch_empty", url=url, attempt=attempt)
            return FetchOutcome(url=url, status=FetchStatus.EMPTY, attempts=attempt, status_code=response.status_code)
        self.tracker.record_success(url)
        self.logger.info("fetch_ok", url=url, attempt=attempt, items=len(items))
        return FetchOutcome(
            url=url,
            status=FetchStatus.SUCCESS,
            items=items,
            attempts=attempt,
            status_code=response.status_code,
        )

    def _handle_rate_limit(self, url: str, context: FetchContext) -> FetchOutcome:
        retry_after = None
        if context.last_response is not None:
            retry_after = context.last_response.headers.get("Retry-After")
        error = RateLimitError(url, retry_after)
        state = self.tracker.record_rate_limit(url)
        self.logger.warning(
            "fetch_rate_limited",
            url=url,
            attempt=context.attempt - 1,
            rate_limit_count=state.rate_limit_count,
            retry_after=retry_after,
        )
        return FetchOutcome(
            url=url,
            status=FetchStatus.RATE_LIMITED,
            attempts=context.attempt - 1,
            error=str(error),
            status_code=error.status_code,
        )


__all__ = ["FeedFetcher", "FetchOutcome", "FetchStatus"]
