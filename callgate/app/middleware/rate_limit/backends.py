"""Storage backends for the sliding-window rate limiter.

The in-memory backend is the default and is scoped to one process. The
Redis backend shares the window across instances.
"""

import asyncio
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from callgate.app.core.config import settings
from callgate.app.core.logging import get_logger
from callgate.app.middleware.rate_limit.models import RateLimitEntry, RateLimitResult

logger = get_logger(__name__)


def retry_after_seconds(oldest: float, window_seconds: float, now: float) -> int:
    """Seconds until the oldest admitted request leaves the window, rounded up."""
    return max(1, math.ceil(oldest + window_seconds - now))


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    def __init__(self, max_requests: int = 10, window_seconds: float = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    @abstractmethod
    async def admit(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        """Record a request for key if it fits in the window.

        Args:
            key: Rate limit key (caller identity)
            now: Current time in epoch seconds, defaults to time.time()

        Returns:
            RateLimitResult with allowed status and metadata
        """

    @abstractmethod
    async def sweep(self, idle_seconds: float, now: Optional[float] = None) -> int:
        """Remove keys idle for longer than idle_seconds. Returns the number removed."""

    async def close(self) -> None:
        pass


class InMemoryRateLimiter(RateLimitBackend):
    """Per-process sliding-window limiter.

    Each key maps to the timestamps of its admitted requests. The whole
    read-prune-append step runs under one asyncio.Lock so concurrent
    requests from the same key cannot undercount.

    The key table is an OrderedDict in LRU order, capped at max_keys; the
    least recently used 20% are evicted when the cap is reached.
    """

    DEFAULT_MAX_KEYS = 10000

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        max_keys: int = DEFAULT_MAX_KEYS,
    ):
        super().__init__(max_requests, window_seconds)
        self._max_keys = max_keys
        self._storage: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._storage)

    def _enforce_key_limit(self) -> None:
        if len(self._storage) >= self._max_keys:
            remove_count = max(1, int(self._max_keys * 0.2))
            for _ in range(min(remove_count, len(self._storage))):
                self._storage.popitem(last=False)

    async def admit(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        async with self._lock:
            if now is None:
                now = time.time()

            entry = self._storage.get(key)
            if entry is None:
                self._enforce_key_limit()
                entry = RateLimitEntry()
                self._storage[key] = entry
            else:
                self._storage.move_to_end(key)

            entry.prune(now - self.window_seconds)
            count = len(entry.timestamps)

            if count >= self.max_requests:
                oldest = entry.timestamps[0]
                return RateLimitResult(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_time=math.ceil(oldest + self.window_seconds),
                    retry_after=retry_after_seconds(oldest, self.window_seconds, now),
                )

            entry.timestamps.append(now)
            return RateLimitResult(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - (count + 1),
                reset_time=math.ceil(entry.timestamps[0] + self.window_seconds),
            )

    async def sweep(self, idle_seconds: float, now: Optional[float] = None) -> int:
        async with self._lock:
            if now is None:
                now = time.time()
            idle_keys = [
                key for key, entry in self._storage.items()
                if entry.last_seen is None or now - entry.last_seen > idle_seconds
            ]
            for key in idle_keys:
                del self._storage[key]
            return len(idle_keys)


class RedisRateLimiter(RateLimitBackend):
    """Redis-based sliding-window limiter shared by every gateway instance.

    Each key is a sorted set of request timestamps. The request is added
    optimistically in the same transaction that prunes and counts, and
    removed again when it turns out to be over the limit.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        max_requests: int = 10,
        window_seconds: float = 60,
    ):
        super().__init__(max_requests, window_seconds)
        self._redis_url = redis_url or settings.redis_url
        self._redis = redis_client

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def admit(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        if now is None:
            now = time.time()
        member = f"{now}:{uuid.uuid4().hex[:8]}"

        try:
            redis_client = self._get_redis()
            pipe = redis_client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", now - self.window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, math.ceil(self.window_seconds))
            results = await pipe.execute()
        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}")
            return self._handle_redis_failure("connection_error", now)
        except redis.TimeoutError as e:
            logger.warning(f"Redis timeout: {e}")
            return self._handle_redis_failure("timeout", now)
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}")
            return self._handle_redis_failure("redis_error", now)
        except Exception as e:
            logger.exception(f"Unexpected rate limit error: {e}")
            return self._handle_redis_failure("unexpected", now)

        count = results[2]
        oldest_entries = results[3]
        oldest = float(oldest_entries[0][1]) if oldest_entries else now

        if count > self.max_requests:
            # Rejected either way; a member left behind expires with the key
            try:
                await redis_client.zrem(key, member)
            except redis.RedisError as e:
                logger.warning(f"Failed to remove rejected request from {key}: {e}")
            return RateLimitResult(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_time=math.ceil(oldest + self.window_seconds),
                retry_after=retry_after_seconds(oldest, self.window_seconds, now),
            )

        return RateLimitResult(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - count,
            reset_time=math.ceil(oldest + self.window_seconds),
        )

    def _handle_redis_failure(self, error_type: str, now: float) -> RateLimitResult:
        """Apply the fail-open/fail-closed policy when Redis is unusable."""
        if settings.rate_limit_fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. "
                "Request denied."
            )
            return RateLimitResult(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_time=math.ceil(now + self.window_seconds),
                retry_after=math.ceil(self.window_seconds),
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check."
        )
        return RateLimitResult(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - 1,
            reset_time=math.ceil(now + self.window_seconds),
        )

    async def sweep(self, idle_seconds: float, now: Optional[float] = None) -> int:
        # Keys carry an EXPIRE of one window, Redis reclaims them itself.
        return 0

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
