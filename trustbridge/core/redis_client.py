"""Redis client configuration and rate-limit counters."""

import threading
import time
from collections.abc import Callable
from typing import Protocol, cast

import redis

from trustbridge.config import settings

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class CounterStore(Protocol):
    """Fixed-window hit counter keyed by an arbitrary string."""

    def increment(self, key: str, window: int) -> int:
        """Count one hit and return the total within the current window."""
        ...


class MemoryCounterStore:
    """Process-local counters; suitable for a single worker or tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize an empty counter table."""
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, window: int) -> int:
        now = self._clock()
        with self._lock:
            count, expires_at = self._counters.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + window
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    def reset(self) -> None:
        """Forget every counter."""
        with self._lock:
            self._counters.clear()


class RedisCounterStore:
    """Counters shared by every worker through Redis."""

    def __init__(self, redis_client: redis.Redis):
        """Initialize counter store with Redis client."""
        self.redis = redis_client

    def increment(self, key: str, window: int) -> int:
        pipe = self.redis.pipeline()
        pipe.incr(key)
        # Only the first hit in a window sets the expiry
        pipe.expire(key, window, nx=True)
        count, _ = pipe.execute()
        return int(cast(int, count))


# Rate limiting helper
class RateLimiter:
    """Fixed-window rate limiter over a counter store."""

    def __init__(self, store: CounterStore):
        """Initialize rate limiter with a counter store."""
        self.store = store

    def check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int = 60,
    ) -> bool:
        """
        Check if rate limit is exceeded.

        Args:
            key: Rate limit key (e.g., ``rl:login:{ip}``)
            limit: Maximum number of requests
            window: Time window in seconds

        Returns:
            True if within limit, False if exceeded
        """
        try:
            return self.store.increment(key, window) <= limit
        except Exception:
            # On error, allow request (fail open)
            return True


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter for the configured backend."""
    global _rate_limiter

    if _rate_limiter is None:
        store: CounterStore
        if settings.uses_redis:
            store = RedisCounterStore(get_redis_client())
        else:
            store = MemoryCounterStore()
        _rate_limiter = RateLimiter(store)

    return _rate_limiter
