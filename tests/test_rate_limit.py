"""Tests for rate-limit counters."""

from unittest.mock import MagicMock

from trustbridge.core.redis_client import MemoryCounterStore, RateLimiter, RedisCounterStore


class FailingStore:
    """Counter store whose backend is down."""

    def increment(self, key: str, window: int) -> int:
        raise ConnectionError("counter backend unavailable")


class TestMemoryCounterStore:
    """Tests for process-local counters."""

    def test_counts_per_key(self):
        """Test keys are counted independently."""
        store = MemoryCounterStore()

        assert store.increment("rl:login:1.1.1.1", 60) == 1
        assert store.increment("rl:login:1.1.1.1", 60) == 2
        assert store.increment("rl:login:2.2.2.2", 60) == 1

    def test_window_expiry(self):
        """Test the count restarts once the window has passed."""
        clock = [1000.0]
        store = MemoryCounterStore(clock=lambda: clock[0])

        store.increment("key", 60)
        store.increment("key", 60)
        clock[0] += 61

        assert store.increment("key", 60) == 1

    def test_reset(self):
        """Test reset forgets every counter."""
        store = MemoryCounterStore()
        store.increment("key", 60)

        store.reset()

        assert store.increment("key", 60) == 1


class TestRedisCounterStore:
    """Tests for Redis-backed counters."""

    def test_increment_sets_expiry_once(self):
        """Test the counter is incremented and the window set only if missing."""
        redis_client = MagicMock()
        pipe = redis_client.pipeline.return_value
        pipe.execute.return_value = [3, False]

        count = RedisCounterStore(redis_client).increment("rl:2fa:abc", 300)

        assert count == 3
        pipe.incr.assert_called_once_with("rl:2fa:abc")
        pipe.expire.assert_called_once_with("rl:2fa:abc", 300, nx=True)


class TestRateLimiter:
    """Tests for the fixed-window rate limiter."""

    def test_allows_up_to_limit(self):
        """Test the limit itself is allowed and the next hit is not."""
        limiter = RateLimiter(MemoryCounterStore())

        results = [limiter.check_rate_limit("rl:login:ip", 3, 60) for _ in range(4)]

        assert results == [True, True, True, False]

    def test_fails_open(self):
        """Test requests are allowed when the counter backend errors."""
        limiter = RateLimiter(FailingStore())

        assert limiter.check_rate_limit("rl:login:ip", 1, 60) is True
        assert limiter.check_rate_limit("rl:login:ip", 1, 60) is True
