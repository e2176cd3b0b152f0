"""Per-client request throttling for the auth endpoints.

Each bucket allows ``hits`` requests per ``window`` seconds per client IP.
State lives in process memory, so the limits hold per API instance.
"""

import asyncio
import math
import time
from collections import deque
from enum import Enum
from typing import NamedTuple

from fastapi import Request

from tollgate.errors import RateLimited


class Bucket(str, Enum):
    SIGN_IN = "sign_in"
    EMAIL = "email"
    TOKEN = "token"


class Limit(NamedTuple):
    hits: int
    window: float


# Sign-in and token redemption are guessable; email sends hit a paid provider
LIMITS: dict[Bucket, Limit] = {
    Bucket.SIGN_IN: Limit(hits=10, window=60),
    Bucket.EMAIL: Limit(hits=5, window=60),
    Bucket.TOKEN: Limit(hits=20, window=60),
}


class SlidingWindowLimiter:
    """Remembers the timestamps of recent hits for every (bucket, client) key.

    Keys whose window has drained are dropped, at most once per longest
    window, so spoofed client addresses can't grow the table without bound.
    """

    def __init__(self, limits: dict[Bucket, Limit], clock=time.monotonic) -> None:
        self.limits = limits
        self._clock = clock
        self._hits: dict[tuple[Bucket, str], deque[float]] = {}
        self._lock = asyncio.Lock()
        self._sweep_every = max(limit.window for limit in limits.values())
        self._last_sweep = clock()

    async def hit(self, bucket: Bucket, client: str) -> None:
        """Record a hit, raising RateLimited when the window is already full."""
        limit = self.limits[bucket]
        now = self._clock()

        async with self._lock:
            if now - self._last_sweep >= self._sweep_every:
                self._evict_idle(now)

            hits = self._hits.setdefault((bucket, client), deque())
            while hits and hits[0] <= now - limit.window:
                hits.popleft()

            if len(hits) >= limit.hits:
                raise RateLimited(retry_after=math.ceil(hits[0] + limit.window - now))
            hits.append(now)

    def _evict_idle(self, now: float) -> int:
        idle = [
            key
            for key, hits in self._hits.items()
            if not hits or hits[-1] <= now - self.limits[key[0]].window
        ]
        for key in idle:
            del self._hits[key]
        self._last_sweep = now
        return len(idle)

    async def cleanup(self) -> int:
        """Drop every key with no hits left in its window; returns how many."""
        async with self._lock:
            return self._evict_idle(self._clock())

    def __len__(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()


_limiter = SlidingWindowLimiter(LIMITS)


def get_rate_limiter() -> SlidingWindowLimiter:
    return _limiter


def client_address(request: Request) -> str:
    """Best guess at the caller's address behind a reverse proxy."""
    if forwarded := request.headers.get("x-forwarded-for"):
        return forwarded.split(",")[0].strip()
    if real_ip := request.headers.get("x-real-ip"):
        return real_ip.strip()
    return request.client.host if request.client else "unknown"
