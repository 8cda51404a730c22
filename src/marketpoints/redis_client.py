"""Redis client lifecycle.

Redis is optional for the ledger: it backs the stats cache and rate
limiting only. Every caller must cope with ``get_optional_redis()``
returning None.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

_client: redis.Redis | None = None


async def init_redis(url: str) -> None:
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=2,
        max_connections=20,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The shared client. Raises RuntimeError before ``init_redis``."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


async def get_optional_redis() -> redis.Redis | None:
    """FastAPI dependency: the shared client, or None when Redis was never set up."""
    return _client


async def redis_status() -> str:
    """Readiness check result: ``ok``, or why Redis cannot be used."""
    if _client is None:
        return "unavailable: not configured"
    try:
        await _client.ping()
    except RedisError as exc:
        return f"unavailable: {type(exc).__name__}"
    return "ok"
