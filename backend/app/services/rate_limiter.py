"""Simple in-memory rate limiting utilities."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict

from app.core.exceptions import RateLimitExceededError


@dataclass
class _Bucket:
    timestamps: Deque[float]


class InMemoryRateLimiter:
    """Sliding-window rate limiter suitable for single-node deployments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: Dict[str, _Bucket] = {}

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = time.time()
        cutoff = now - window_seconds

        with self._lock:
            bucket = self._buckets.setdefault(key, _Bucket(timestamps=deque()))
            while bucket.timestamps and bucket.timestamps[0] < cutoff:
                bucket.timestamps.popleft()

            if len(bucket.timestamps) >= limit:
                return False

            bucket.timestamps.append(now)
            return True

    def check(self, key: str, limit: int, window_seconds: int) -> None:
        """Like allow(), but raises RateLimitExceededError when over the limit."""
        if not self.allow(key, limit, window_seconds):
            raise RateLimitExceededError()

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


rate_limiter = InMemoryRateLimiter()
