"""Request header profiles rotated across fetch attempts."""

from __future__ import annotations

from threading import Lock
from typing import Iterable, List

from ..config import HeaderProfile


class HeaderProfilePool:
    """Hand out header profiles by attempt number.

    Attempt ``n`` (1-based) gets profile ``n - 1``; attempts past the end of the
    pool keep reusing the last profile.
    """

    def __init__(self, profiles: Iterable[HeaderProfile] | None = None) -> None:
        self._lock = Lock()
        self._profiles: List[HeaderProfile] = list(profiles or [])

    def __len__(self) -> int:
        return len(self._profiles)

    def for_attempt(self, attempt: int) -> HeaderProfile | None:
        with self._lock:
            if not self._profiles:
                return None
            index = min(max(attempt, 1) - 1, len(self._profiles) - 1)
            return self._profiles[index]

    def refresh(self, profiles: Iterable[HeaderProfile]) -> None:
        with self._lock:
            self._profiles = list(profiles)


__all__ = ["HeaderProfilePool"]
