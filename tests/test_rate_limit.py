"""Tests for the sliding-window rate limiter."""

import asyncio
import hashlib
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
import redis

from callgate.app.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimitEntry,
    RateLimiter,
    RateLimitResult,
    RateLimitSweeper,
    RedisRateLimiter,
    get_client_ip,
    get_client_key,
    get_rate_limiter,
    retry_after_seconds,
)

T0 = 1_700_000_000.0


class TestInMemoryRateLimiter:
    """Tests for in-memory rate limiter."""

    @pytest.fixture
    def limiter(self):
        return InMemoryRateLimiter(max_requests=10, window_seconds=60)

    @pytest.mark.asyncio
    async def test_allows_requests_under_limit(self, limiter):
        result = await limiter.admit("test_key", now=T0)
        assert result.allowed is True
        assert result.remaining == 9
        assert result.limit == 10
        assert result.retry_after is None

    @pytest.mark.asyncio
    async def test_remaining_counts_down(self, limiter):
        remaining = []
        for i in range(10):
            result = await limiter.admit("test_key", now=T0 + i)
            remaining.append(result.remaining)
        assert remaining == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]

    @pytest.mark.asyncio
    async def test_blocks_over_limit(self, limiter):
        for i in range(10):
            assert (await limiter.admit("test_key", now=T0 + i)).allowed

        result = await limiter.admit("test_key", now=T0 + 10)
        assert result.allowed is False
        assert result.remaining == 0
        # Oldest request at T0 leaves the window at T0 + 60
        assert result.retry_after == 50

    @pytest.mark.asyncio
    async def test_retry_after_rounds_up(self, limiter):
        for _ in range(10):
            await limiter.admit("test_key", now=T0)

        result = await limiter.admit("test_key", now=T0 + 59.2)
        assert result.allowed is False
        assert result.retry_after == 1

    @pytest.mark.asyncio
    async def test_rejected_requests_do_not_extend_window(self, limiter):
        for _ in range(10):
            await limiter.admit("test_key", now=T0)
        for i in range(5):
            assert not (await limiter.admit("test_key", now=T0 + 30 + i)).allowed

        result = await limiter.admit("test_key", now=T0 + 60.5)
        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_window_resets_after_window_elapses(self, limiter):
        for _ in range(10):
            await limiter.admit("test_key", now=T0)
        assert not (await limiter.admit("test_key", now=T0 + 1)).allowed

        result = await limiter.admit("test_key", now=T0 + 60)
        assert result.allowed is True
        assert result.remaining == 9

    @pytest.mark.asyncio
    async def test_window_slides_one_request_at_a_time(self, limiter):
        for i in range(10):
            await limiter.admit("test_key", now=T0 + i)

        # Only the request made at T0 has left the window
        assert (await limiter.admit("test_key", now=T0 + 60.5)).allowed
        assert not (await limiter.admit("test_key", now=T0 + 60.6)).allowed

    @pytest.mark.asyncio
    async def test_stale_timestamps_are_pruned_on_access(self, limiter):
        for i in range(5):
            await limiter.admit("test_key", now=T0 + i)

        await limiter.admit("test_key", now=T0 + 200)
        entry = limiter._storage["test_key"]
        assert list(entry.timestamps) == [T0 + 200]

    @pytest.mark.asyncio
    async def test_different_keys_independent(self, limiter):
        for _ in range(10):
            await limiter.admit("key1", now=T0)

        assert (await limiter.admit("key1", now=T0)).allowed is False
        assert (await limiter.admit("key2", now=T0)).allowed is True

    @pytest.mark.asyncio
    async def test_concurrent_admits_never_exceed_limit(self, limiter):
        results = await asyncio.gather(
            *(limiter.admit("test_key", now=T0) for _ in range(25))
        )
        assert sum(r.allowed for r in results) == 10

    @pytest.mark.asyncio
    async def test_key_table_is_capped(self):
        limiter = InMemoryRateLimiter(max_requests=10, window_seconds=60, max_keys=10)
        for i in range(25):
            await limiter.admit(f"key{i}", now=T0)
        assert len(limiter) <= 10
        assert "key24" in limiter._storage


class TestSweep:
    """Tests for idle key reclamation."""

    @pytest.mark.asyncio
    async def test_sweep_removes_idle_keys(self):
        limiter = InMemoryRateLimiter()
        await limiter.admit("idle", now=T0)
        await limiter.admit("active", now=T0 + 500)

        removed = await limiter.sweep(600, now=T0 + 700)

        assert removed == 1
        assert "idle" not in limiter._storage
        assert "active" in limiter._storage

    @pytest.mark.asyncio
    async def test_sweep_keeps_recent_keys(self):
        limiter = InMemoryRateLimiter()
        await limiter.admit("key", now=T0)
        assert await limiter.sweep(600, now=T0 + 600) == 0
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_sweeper_runs_periodically(self):
        limiter = RateLimiter(backend=InMemoryRateLimiter())
        await limiter.admit("old", now=T0)

        sweeper = RateLimitSweeper(limiter, interval=0.01, idle_seconds=600)
        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert not sweeper.running
        assert len(limiter.backend) == 0

    @pytest.mark.asyncio
    async def test_sweeper_stop_without_start(self):
        sweeper = RateLimitSweeper(RateLimiter(backend=InMemoryRateLimiter()))
        await sweeper.stop()
        assert not sweeper.running


class TestRateLimitEntry:
    def test_prune_drops_boundary_timestamp(self):
        entry = RateLimitEntry()
        entry.timestamps.extend([1.0, 2.0, 3.0])
        entry.prune(2.0)
        assert list(entry.timestamps) == [3.0]
        assert entry.last_seen == 3.0

    def test_empty_entry_has_no_last_seen(self):
        assert RateLimitEntry().last_seen is None


def test_retry_after_is_at_least_one_second():
    assert retry_after_seconds(oldest=T0, window_seconds=60, now=T0 + 60) == 1
    assert retry_after_seconds(oldest=T0, window_seconds=60, now=T0) == 60


class TestRateLimiterBackendSelection:
    """Tests for backend selection logic."""

    def test_uses_in_memory_by_default(self):
        with patch("callgate.app.middleware.rate_limit.settings") as mock_settings:
            mock_settings.redis_enabled = False
            mock_settings.rate_limit_max_keys = 100
            limiter = RateLimiter()
            assert isinstance(limiter.backend, InMemoryRateLimiter)

    def test_uses_redis_when_enabled(self):
        with patch("callgate.app.middleware.rate_limit.settings") as mock_settings:
            mock_settings.redis_enabled = True

            with patch("callgate.app.middleware.rate_limit.RedisRateLimiter") as mock_redis:
                mock_redis.return_value = Mock()
                RateLimiter()
                mock_redis.assert_called_once()

    def test_process_limiter_uses_settings(self, gateway_settings, monkeypatch):
        monkeypatch.setattr(gateway_settings, "rate_limit_max_requests", 3)
        limiter = get_rate_limiter()
        assert limiter.backend.max_requests == 3
        assert get_rate_limiter() is limiter


def _mock_redis(execute_result):
    pipeline = MagicMock()
    pipeline.execute = AsyncMock(return_value=execute_result)
    client = MagicMock()
    client.pipeline.return_value = pipeline
    client.zrem = AsyncMock()
    return client, pipeline


class TestRedisRateLimiter:
    """Tests for Redis rate limiter."""

    @pytest.mark.asyncio
    async def test_allows_when_under_limit(self):
        # zremrangebyscore, zadd, zcard, zrange, expire
        client, pipeline = _mock_redis([0, 1, 3, [(b"m", T0 - 10)], True])

        limiter = RedisRateLimiter(redis_client=client, max_requests=10, window_seconds=60)
        result = await limiter.admit("test_key", now=T0)

        assert result.allowed is True
        assert result.remaining == 7
        pipeline.zremrangebyscore.assert_called_once_with("test_key", "-inf", T0 - 60)
        client.zrem.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_and_removes_member_when_over_limit(self):
        client, pipeline = _mock_redis([0, 1, 11, [(b"m", T0 - 20)], True])

        limiter = RedisRateLimiter(redis_client=client, max_requests=10, window_seconds=60)
        result = await limiter.admit("test_key", now=T0)

        assert result.allowed is False
        assert result.retry_after == 40
        client.zrem.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejects_when_rollback_loses_connection(self):
        client, _ = _mock_redis([0, 1, 11, [(b"m", T0 - 20)], True])
        client.zrem.side_effect = redis.ConnectionError("connection reset")

        limiter = RedisRateLimiter(redis_client=client, max_requests=10, window_seconds=60)
        result = await limiter.admit("test_key", now=T0)

        assert result.allowed is False
        assert result.retry_after == 40

    @pytest.mark.asyncio
    async def test_fail_open_on_error(self, gateway_settings, monkeypatch):
        monkeypatch.setattr(gateway_settings, "rate_limit_fail_closed", False)
        client = MagicMock()
        client.pipeline.side_effect = redis.ConnectionError("down")

        limiter = RedisRateLimiter(redis_client=client)
        result = await limiter.admit("test_key")

        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_fail_closed_on_error(self, gateway_settings, monkeypatch):
        monkeypatch.setattr(gateway_settings, "rate_limit_fail_closed", True)
        client = MagicMock()
        client.pipeline.side_effect = Exception("Redis error")

        limiter = RedisRateLimiter(redis_client=client, window_seconds=60)
        result = await limiter.admit("test_key")

        assert result.allowed is False
        assert result.retry_after == 60

    @pytest.mark.asyncio
    async def test_sweep_is_noop(self):
        client, _ = _mock_redis([])
        limiter = RedisRateLimiter(redis_client=client)
        assert await limiter.sweep(600) == 0


class TestClientKey:
    """Tests for caller identity extraction."""

    def _request(self, headers, host="127.0.0.1"):
        request = Mock()
        request.headers = headers
        request.client.host = host
        return request

    def test_first_forwarded_for_entry_wins(self):
        request = self._request({"X-Forwarded-For": "10.0.0.1, 192.168.1.1"})
        assert get_client_ip(request) == "10.0.0.1"

    def test_real_ip_header_used_without_forwarded_for(self):
        request = self._request({"X-Real-IP": "10.0.0.2"})
        assert get_client_ip(request) == "10.0.0.2"

    def test_falls_back_to_socket_peer(self):
        assert get_client_ip(self._request({}, host="192.168.1.1")) == "192.168.1.1"

    def test_unknown_without_client(self):
        request = Mock()
        request.headers = {}
        request.client = None
        assert get_client_ip(request) == "unknown"

    def test_key_is_hashed(self):
        request = self._request({}, host="192.168.1.1")
        key = get_client_key(request)
        expected_hash = hashlib.sha256("192.168.1.1".encode()).hexdigest()[:32]
        assert key == f"ratelimit:ip:{expected_hash}"
        assert "192.168.1.1" not in key


def test_result_creation():
    result = RateLimitResult(allowed=True, limit=10, remaining=9, reset_time=1234567890)
    assert result.allowed is True
    assert result.retry_after is None
