"""
Rate Limiting for API Endpoints

Fixed-window counters keyed by client identity. Counters live in an
injectable async store: process memory by default, Redis when configured.
"""
import asyncio
import json
import math
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from ..auth.context import RequestContext, get_client_ip
from .logging import get_logger

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_ms: int
    skip_successful_requests: bool = False


class EndpointRateLimits:
    """
    Predefined rate limits for endpoint categories"""

    AUTH_LOGIN = RateLimitRule(max_requests=5, window_ms=60_000, skip_successful_requests=True)
    API_READ = RateLimitRule(max_requests=100, window_ms=60_000)
    API_WRITE = RateLimitRule(max_requests=50, window_ms=60_000)
    ADMIN_WRITE = RateLimitRule(max_requests=100, window_ms=60_000)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    now: float = 0.0

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets, at least one"""
        return max(1, math.ceil((self.reset_time - self.now) / 1000))

    @property
    def reset_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.reset_time / 1000, tz=timezone.utc)

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_time / 1000)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_error_body(self) -> Dict[str, Any]:
        return {
            "error": "Too many requests",
            "message": RATE_LIMIT_MESSAGE,
            "retry_after": self.retry_after,
        }


class MemoryRateLimitStore:
    """In-process store; entries are lost on restart"""

    def __init__(self):
        self._entries: Dict[str, Dict[str, float]] = {}

    async def get(self, key: str) -> Optional[Dict[str, float]]:
        entry = self._entries.get(key)
        return dict(entry) if entry is not None else None

    async def set(self, key: str, entry: Dict[str, float], ttl_ms: Optional[int] = None) -> None:
        self._entries[key] = dict(entry)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def sweep(self, now_ms: float) -> int:
        expired = [k for k, entry in self._entries.items() if entry["reset_time"] <= now_ms]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def clear(self) -> None:
        self._entries.clear()

    async def size(self) -> int:
        return len(self._entries)


class RedisRateLimitStore:
    """Redis-backed store shared between worker processes; Redis expires keys"""

    def __init__(self, client: Any = None, redis_url: Optional[str] = None, prefix: str = "rate_limit:"):
        if client is None:
            if not redis_url:
                raise ValueError("A Redis client or URL is required")
            client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[Dict[str, float]]:
        raw = await self.client.get(self._key(key))
        return json.loads(raw) if raw else None

    async def set(self, key: str, entry: Dict[str, float], ttl_ms: Optional[int] = None) -> None:
        await self.client.set(self._key(key), json.dumps(entry), px=ttl_ms)

    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(self._key(key)))

    async def sweep(self, now_ms: float) -> int:
        # Keys carry a TTL, Redis expires them itself
        return 0

    async def clear(self) -> None:
        async for key in self.client.scan_iter(match=f"{self.prefix}*"):
            await self.client.delete(key)

    async def size(self) -> int:
        count = 0
        async for _ in self.client.scan_iter(match=f"{self.prefix}*"):
            count += 1
        return count

    async def close(self) -> None:
        await self.client.aclose()


class RateLimiter:
    """
    Fixed-window rate limiter
    The first request for a key opens a window; once the counter reaches
    the maximum, requests are rejected until the window elapses.
    """

    def __init__(
        self,
        store: Any = None,
        cleanup_probability: float = 0.1,
        clock: Optional[Callable[[], float]] = None,
        random_func: Callable[[], float] = random.random,
    ):
        self.store = store if store is not None else MemoryRateLimitStore()
        self.cleanup_probability = cleanup_probability
        self._clock = clock or time.time
        self._random = random_func
        self._lock = asyncio.Lock()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    async def check(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        """
        Count one request against key
        Args:
            key: Client identity, usually "ip:<address>"
            max_requests: Requests allowed per window
            window_ms: Window length in milliseconds
        Returns:
            RateLimitResult with the remaining quota and reset time
        """
        now = self._now_ms()

        try:
            async with self._lock:
                if self._random() < self.cleanup_probability:
                    await self.store.sweep(now)

                entry = await self.store.get(key)
                if entry is None or entry["reset_time"] <= now:
                    entry = {"count": 0, "reset_time": now + window_ms}

                if entry["count"] >= max_requests:
                    logger.warning(f"Rate limit exceeded for {key}")
                    return RateLimitResult(
                        allowed=False,
                        limit=max_requests,
                        remaining=0,
                        reset_time=entry["reset_time"],
                        now=now,
                    )

                entry["count"] += 1
                await self.store.set(key, entry, ttl_ms=max(1, int(entry["reset_time"] - now)))
        except redis.RedisError as e:
            # Fail open when the shared store is unavailable
            logger.error(f"Rate limit store unavailable: {e}")
            return RateLimitResult(
                allowed=True,
                limit=max_requests,
                remaining=max_requests,
                reset_time=now + window_ms,
                now=now,
            )

        return RateLimitResult(
            allowed=True,
            limit=max_requests,
            remaining=max(0, max_requests - int(entry["count"])),
            reset_time=entry["reset_time"],
            now=now,
        )

    async def release(self, key: str) -> None:
        """Un-count a request, used when successful requests are exempt"""
        now = self._now_ms()
        try:
            async with self._lock:
                entry = await self.store.get(key)
                if entry is None or entry["reset_time"] <= now or entry["count"] <= 0:
                    return
                entry["count"] -= 1
                await self.store.set(key, entry, ttl_ms=max(1, int(entry["reset_time"] - now)))
        except redis.RedisError as e:
            logger.error(f"Rate limit store unavailable: {e}")

    async def status(self, key: str, max_requests: int) -> Optional[RateLimitResult]:
        """Current quota for key without counting a request"""
        now = self._now_ms()
        entry = await self.store.get(key)
        if entry is None or entry["reset_time"] <= now:
            return None
        count = int(entry["count"])
        return RateLimitResult(
            allowed=count < max_requests,
            limit=max_requests,
            remaining=max(0, max_requests - count),
            reset_time=entry["reset_time"],
            now=now,
        )

    async def reset(self, key: str) -> bool:
        return await self.store.delete(key)

    async def clear(self) -> None:
        await self.store.clear()

    async def sweep(self) -> int:
        """Deterministic sweep of elapsed windows"""
        async with self._lock:
            return await self.store.sweep(self._now_ms())


def get_ip_key(request: RequestContext) -> str:
    """Rate limit key derived from the caller's IP"""
    return f"ip:{get_client_ip(request, default=UNKNOWN_CLIENT)}"
