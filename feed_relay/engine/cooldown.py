"""Per-URL rate-limit bookkeeping for the feed fetcher."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from threading import Lock
from typing import Callable, Dict

from ..config import FetchPolicy


@dataclass(slots=True)
class RateLimitState:
    """Adaptive throttling counters for one feed URL (milliseconds since epoch)."""

    last_access_time: int = 0
    failure_count: int = 0
    rate_limit_count: int = 0
    success_count: int = 0


def cooldown_ms(state: RateLimitState, policy: FetchPolicy) -> int:
    """Required quiet period after the last access.

    Rate limiting dominates: ``min(base * 2**n, cap)`` for ``n`` 429 answers,
    otherwise ``min(step * n, cap)`` for ``n`` exhausted fetches.
    """

    if state.rate_limit_count > 0:
        return min(policy.rate_limit_base_ms * (2 ** state.rate_limit_count), policy.rate_limit_cap_ms)
    if state.failure_count > 0:
        return min(policy.failure_step_ms * state.failure_count, policy.failure_cap_ms)
    return 0


class CooldownTracker:
    """Thread-safe store of :class:`RateLimitState` keyed by feed URL.

    Owned by one fetcher instance; nothing here is persisted.
    """

    def __init__(self, policy: FetchPolicy | None = None, clock: Callable[[], float] = time.time) -> None:
        self.policy = policy or FetchPolicy()
        self._clock = clock
        self._states: Dict[str, RateLimitState] = {}
        self._lock = Lock()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get(self, url: str) -> RateLimitState:
        """Return a snapshot copy of the state for ``url``."""

        with self._lock:
            return replace(self._states.get(url) or RateLimitState())

    def set(self, url: str, state: RateLimitState) -> None:
        with self._lock:
            self._states[url] = replace(state)

    def remaining_ms(self, url: str) -> int:
        state = self.get(url)
        required = cooldown_ms(state, self.policy)
        if required <= 0:
            return 0
        return max(0, required - (self.now_ms() - state.last_access_time))

    def in_cooldown(self, url: str) -> bool:
        return self.remaining_ms(url) > 0

    # ------------------------------------------------------------------
    def record_success(self, url: str) -> RateLimitState:
        with self._lock:
            state = self._states.setdefault(url, RateLimitState())
            state.failure_count = 0
            state.rate_limit_count = 0
            state.success_count += 1
            state.last_access_time = self.now_ms()
            return replace(state)

    def record_rate_limit(self, url: str) -> RateLimitState:
        with self._lock:
            state = self._states.setdefault(url, RateLimitState())
            state.rate_limit_count += 1
            state.last_access_time = self.now_ms()
            return replace(state)

    def record_failure(self, url: str) -> RateLimitState:
        with self._lock:
            state = self._states.setdefault(url, RateLimitState())
            state.failure_count += 1
            state.last_access_time = self.now_ms()
            return replace(state)

    def touch(self, url: str) -> RateLimitState:
        with self._lock:
            state = self._states.setdefault(url, RateLimitState())
            state.last_access_time = self.now_ms()
            return replace(state)


__all__ = ["CooldownTracker", "RateLimitState", "cooldown_ms"]
