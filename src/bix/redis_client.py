"""Shared Redis client for cross-instance rate-limit counters."""

import redis.asyncio as redis

_client: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Open the Redis pool used by the shared rate limiter and readiness probe."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def redis_enabled() -> bool:
    """True once init_redis() has run in this process."""
    return _client is not None


def get_redis() -> redis.Redis:
    """Return the Redis client, failing loudly when the pool was never opened."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client
