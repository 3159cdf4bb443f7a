"""
Per-user fixed-window rate limiting for chat requests.

Buckets live in process memory. Expired buckets are pruned on every check
through an expiry heap, so keys that never return do not accumulate.
"""

from __future__ import annotations

import heapq
import logging
import math
import time
from dataclasses import dataclass

from lumai.errors import TooManyRequests

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(self, max_requests: int = 5, window_seconds: float = 60.0, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._expiry: list[tuple[float, str]] = []

    @classmethod
    def from_config(cls, cfg: dict) -> "RateLimiter":
        rl_cfg = cfg.get("rate_limit", {})
        return cls(
            max_requests=int(rl_cfg.get("max_requests", 5)),
            window_seconds=float(rl_cfg.get("window_seconds", 60)),
        )

    def _prune(self, now: float):
        while self._expiry and self._expiry[0][0] <= now:
            reset_at, key = heapq.heappop(self._expiry)
            bucket = self._buckets.get(key)
            # a newer window for the key has its own heap entry
            if bucket is not None and bucket.reset_at == reset_at:
                del self._buckets[key]

    def check(self, key: str):
        """Count one request for `key`; raise TooManyRequests when the window is full."""
        now = self._clock()
        self._prune(now)

        bucket = self._buckets.get(key)
        if bucket is None:
            reset_at = now + self.window_seconds
            self._buckets[key] = _Bucket(count=1, reset_at=reset_at)
            heapq.heappush(self._expiry, (reset_at, key))
            return

        if bucket.count >= self.max_requests:
            retry_after = math.ceil(bucket.reset_at - now)
            logger.info("Rate limit hit for %s (retry in %ds)", key, retry_after)
            raise TooManyRequests(
                f"AI requests throttled. Try again in {retry_after} seconds.",
                details={"retry_after": retry_after},
            )
        bucket.count += 1
