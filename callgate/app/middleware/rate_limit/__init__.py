"""Per-caller sliding-window rate limiting for the trigger-call endpoint.

The limiter is applied as a FastAPI dependency rather than a global
middleware so it only runs after routing has accepted the method: OPTIONS
preflights and 405s never consume a slot.
"""

import asyncio
import hashlib
from typing import Optional

from fastapi import Request

from callgate.app.core.config import settings
from callgate.app.core.logging import get_log_context, get_logger
from callgate.app.exceptions import RateLimitedError
from callgate.app.middleware.request_id import get_request_id

# Re-export models
from callgate.app.middleware.rate_limit.models import (
    RateLimitEntry,
    RateLimitResult,
)

# Re-export backends
from callgate.app.middleware.rate_limit.backends import (
    InMemoryRateLimiter,
    RateLimitBackend,
    RedisRateLimiter,
    retry_after_seconds,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateLimitResult",
    "RateLimitEntry",
    # Backends
    "RateLimitBackend",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "retry_after_seconds",
    # Main classes
    "RateLimiter",
    "RateLimitSweeper",
    "get_client_ip",
    "get_client_key",
    "get_rate_limiter",
    "reset_rate_limiter",
    "require_rate_limit",
]


class RateLimiter:
    """Main rate limiter that selects the storage backend.

    Uses Redis when enabled in settings (or forced with use_redis),
    otherwise the in-memory backend.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        use_redis: Optional[bool] = None,
        backend: Optional[RateLimitBackend] = None,
    ):
        """Initialize rate limiter with appropriate backend.

        Args:
            max_requests: Maximum admitted requests per key per window
            window_seconds: Length of the sliding window in seconds
            use_redis: Force Redis usage (None = auto-detect from settings)
            backend: Pre-built backend, overrides the other options
        """
        if backend is not None:
            self._backend = backend
            return

        should_use_redis = use_redis if use_redis is not None else settings.redis_enabled

        if should_use_redis:
            self._backend = RedisRateLimiter(
                max_requests=max_requests,
                window_seconds=window_seconds,
            )
            logger.info("Using Redis rate limiter backend")
        else:
            self._backend = InMemoryRateLimiter(
                max_requests=max_requests,
                window_seconds=window_seconds,
                max_keys=settings.rate_limit_max_keys,
            )
            logger.debug("Using in-memory rate limiter backend")

    @property
    def backend(self) -> RateLimitBackend:
        return self._backend

    async def admit(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        return await self._backend.admit(key, now)

    async def sweep(self, idle_seconds: float, now: Optional[float] = None) -> int:
        return await self._backend.sweep(idle_seconds, now)

    async def close(self) -> None:
        await self._backend.close()


class RateLimitSweeper:
    """Background task that periodically drops idle rate-limit keys.

    Usage:
        sweeper = RateLimitSweeper(limiter, interval=300, idle_seconds=600)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(self, limiter: RateLimiter, interval: float = 300.0, idle_seconds: float = 600.0):
        self._limiter = limiter
        self._interval = interval
        self._idle_seconds = idle_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Rate limit sweeper already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started rate limit sweeper (interval: {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Rate limit sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped rate limit sweeper")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                removed = await self._limiter.sweep(self._idle_seconds)
                if removed:
                    logger.debug(f"Swept {removed} idle rate limit keys")
            except Exception as e:
                logger.error(f"Error during rate limit sweep: {e}")


def get_client_ip(request: Request) -> str:
    """Best-effort caller IP: proxy headers first, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def get_client_key(request: Request) -> str:
    """Rate limit key for the request.

    The IP is hashed (SHA-256, 32 hex chars) so raw addresses are never
    held in memory, Redis or logs.
    """
    ip_hash = hashlib.sha256(get_client_ip(request).encode()).hexdigest()[:32]
    return f"ratelimit:ip:{ip_hash}"


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide rate limiter, creating it from settings on first use."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the process-wide limiter (used by tests and on shutdown)."""
    global _rate_limiter
    _rate_limiter = None


async def require_rate_limit(request: Request) -> RateLimitResult:
    """FastAPI dependency that consumes one slot for the calling IP.

    The slot is consumed before any credential or input validation, so
    failed password guesses count against the limit too.

    Raises:
        RateLimitedError: If the caller is over the limit
    """
    key = get_client_key(request)
    request.state.client_key = key

    result = await get_rate_limiter().admit(key)
    if not result.allowed:
        retry_after = result.retry_after or 1
        logger.info(
            "Rate limit exceeded",
            extra=get_log_context(
                request_id=get_request_id(request),
                client_key=key,
                retry_after=retry_after,
            ),
        )
        raise RateLimitedError(retry_after)
    return result
