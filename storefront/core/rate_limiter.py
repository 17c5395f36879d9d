from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from threading import Lock

from storefront.core.config import PUBLIC_RATE_LIMIT, PUBLIC_RATE_LIMIT_WINDOW_SECONDS

# idle clients are dropped from memory once every this many checks
EVICT_EVERY_CHECKS = 256


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class RateLimiterService(ABC):
    @abstractmethod
    def check(self, *, client_key: str, endpoint: str) -> RateLimitDecision:
        """Decide whether a client's request to an endpoint may proceed."""


class InMemoryRateLimiterService(RateLimiterService):
    """Sliding-window limiter per client+endpoint, kept in process memory.

    Public coupon lookups are the main target: without a limit the validate
    endpoints can be used to enumerate codes.
    """

    def __init__(
        self,
        *,
        limit: int = PUBLIC_RATE_LIMIT,
        window_seconds: int = PUBLIC_RATE_LIMIT_WINDOW_SECONDS,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._store: dict[tuple[str, str], deque[float]] = {}
        self._lock = Lock()
        self._checks_since_sweep = 0

    def _evict_idle(self, cutoff: float) -> None:
        idle = [key for key, bucket in self._store.items() if not bucket or bucket[-1] <= cutoff]
        for key in idle:
            del self._store[key]

    def check(self, *, client_key: str, endpoint: str) -> RateLimitDecision:
        now = time.monotonic()
        key = (client_key, endpoint)

        with self._lock:
            bucket = self._store.setdefault(key, deque())
            cutoff = now - self.window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            self._checks_since_sweep += 1
            if self._checks_since_sweep >= EVICT_EVERY_CHECKS:
                self._checks_since_sweep = 0
                self._evict_idle(cutoff)
                bucket = self._store.setdefault(key, bucket)

            if len(bucket) >= self.limit:
                retry_after = max(1, int(self.window_seconds - (now - bucket[0])))
                return RateLimitDecision(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    retry_after_seconds=retry_after,
                )

            bucket.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self.limit,
                remaining=max(0, self.limit - len(bucket)),
                retry_after_seconds=0,
            )

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._store)

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


public_rate_limiter = InMemoryRateLimiterService()
