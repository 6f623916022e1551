"""
Fixed-window request rate limiting.

Counters live behind a small store interface so a single instance can keep
them in memory while horizontally scaled deployments share them through
MongoDB.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from fastapi import Depends, Request
from pymongo import ReturnDocument

from farfield.core.config import settings
from farfield.core.errors import RateLimited
from farfield.db.session import get_db

logger = logging.getLogger(__name__)


class RateLimitStore(ABC):
    """Counts hits per key inside fixed time windows."""

    @abstractmethod
    async def hit(self, key: str, window_seconds: int) -> int:
        """Record one hit for ``key`` and return the count in the current window."""


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._next_sweep = 0.0
        self._lock = asyncio.Lock()

    def _evict_expired(self, now: float, window_seconds: int) -> None:
        """Drop finished windows, at most once per window length"""
        if now < self._next_sweep:
            return
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + window_seconds

    async def hit(self, key: str, window_seconds: int) -> int:
        async with self._lock:
            now = self._clock()
            self._evict_expired(now, window_seconds)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count

    def reset(self) -> None:
        self._windows.clear()
        self._next_sweep = 0.0


class MongoRateLimitStore(RateLimitStore):
    """Shares counters across instances; windows are reaped by a TTL index on expires_at."""

    def __init__(self, database) -> None:
        self.collection = database.rate_limits

    async def hit(self, key: str, window_seconds: int) -> int:
        now = time.time()
        window_start = int(now // window_seconds) * window_seconds
        document = await self.collection.find_one_and_update(
            {"_id": f"{key}:{window_start}"},
            {
                "$inc": {"count": 1},
                "$setOnInsert": {
                    "expires_at": datetime.utcfromtimestamp(window_start) + timedelta(seconds=window_seconds),
                },
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(document["count"])


_memory_store = InMemoryRateLimitStore()


def get_rate_limit_store(db=Depends(get_db)) -> RateLimitStore:
    if settings.RATE_LIMIT_BACKEND == "mongo":
        return MongoRateLimitStore(db)
    return _memory_store


def get_client_ip(request: Request) -> str:
    """Forwarding headers are only honoured when the socket peer is a trusted proxy"""
    peer = request.client.host if request.client else "unknown"
    if peer not in settings.TRUSTED_PROXIES:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return peer


class RateLimiter:
    """
    FastAPI dependency enforcing ``max_requests`` per client IP per window.

    Usage::

        @router.post("/purchase/initiate", dependencies=[Depends(RateLimiter(scope="purchase"))])
    """

    def __init__(
        self,
        scope: str,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> None:
        self.scope = scope
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def __call__(self, request: Request, store: RateLimitStore = Depends(get_rate_limit_store)) -> None:
        max_requests = self.max_requests or settings.RATE_LIMIT_MAX_REQUESTS
        window_seconds = self.window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        key = f"{self.scope}:{get_client_ip(request)}"

        count = await store.hit(key, window_seconds)
        if count > max_requests:
            logger.warning(f"Rate limit exceeded for {key} ({count}/{max_requests})")
            raise RateLimited("Too many requests, please try again later")
