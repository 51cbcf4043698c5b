"""Concrete per-attempt strategies used by the fetch chain."""

from __future__ import annotations

import random

import httpx

from ...config import FetchPolicy
from ...infra import HeaderProfilePool
from .chain import AntiBotChain, FetchContext, RequestDirective, Strategy

HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429


class HeaderProfileStrategy(Strategy):
    """Present a different header profile on each attempt."""

    def __init__(self, pool: HeaderProfilePool) -> None:
        self.pool = pool

    def before_request(self, context: FetchContext, directive: RequestDirective) -> None:
        profile = self.pool.for_attempt(context.attempt)
        if profile is None:
            return
        directive.headers.update(profile.headers)
        directive.profile = profile.name

    def after_success(self, context: FetchContext, response: httpx.Response) -> None:
        return

    def after_failure(self, context: FetchContext, response: httpx.Response | None, error: Exception | None) -> None:
        # 403 usually means the identity was refused; the next attempt already moves on
        return


class BackoffStrategy(Strategy):
    """Exponential back-off with random jitter before every retry."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def before_request(self, context: FetchContext, directive: RequestDirective) -> None:
        if context.attempt <= 1:
            return
        base = context.policy.backoff_base * (2 ** (context.attempt - 2))
        jitter = self.rng.uniform(0, context.policy.backoff_jitter) if context.policy.backoff_jitter else 0.0
        directive.delay = base + jitter

    def after_success(self, context: FetchContext, response: httpx.Response) -> None:
        return

    def after_failure(self, context: FetchContext, response: httpx.Response | None, error: Exception | None) -> None:
        return


class RateLimitStrategy(Strategy):
    """Abandon remaining attempts as soon as upstream answers 429."""

    def before_request(self, context: FetchContext, directive: RequestDirective) -> None:
        return

    def after_success(self, context: FetchContext, response: httpx.Response) -> None:
        return

    def after_failure(self, context: FetchContext, response: httpx.Response | None, error: Exception | None) -> None:
        if response is not None and response.status_code == HTTP_TOO_MANY_REQUESTS:
            context.aborted = True


class RetryStrategy(Strategy):
    """Expose the attempt budget from the fetch policy to the fetch loop."""

    def before_request(self, context: FetchContext, directive: RequestDirective) -> None:
        context.max_attempts = max(1, context.policy.max_attempts)
        directive.timeout = context.policy.timeout

    def after_success(self, context: FetchContext, response: httpx.Response) -> None:
        return

    def after_failure(self, context: FetchContext, response: httpx.Response | None, error: Exception | None) -> None:
        context.attempt += 1


def build_chain(
    url: str,
    policy: FetchPolicy,
    profiles: HeaderProfilePool,
    rng: random.Random | None = None,
) -> tuple[FetchContext, AntiBotChain]:
    """Utility to build a ready-to-use chain for one URL."""

    context = FetchContext(url=url, policy=policy, max_attempts=policy.max_attempts)
    strategies: list[Strategy] = [
        RetryStrategy(),
        HeaderProfileStrategy(profiles),
        BackoffStrategy(rng),
        RateLimitStrategy(),
    ]
    return context, AntiBotChain(strategies)


__all__ = [
    "BackoffStrategy",
    "HTTP_FORBIDDEN",
    "HTTP_TOO_MANY_REQUESTS",
    "HeaderProfileStrategy",
    "RateLimitStrategy",
    "RetryStrategy",
    "build_chain",
]
