"""
FormStock Service — Shared Redis connection

One lazily created client serves the stock cache, the idempotency store and
the health probe. Tests swap in a stand-in with set_redis().
"""
import redis.asyncio as aioredis

from formstock.core.config import get_settings

settings = get_settings()

_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    global _client
    if _client is None:
        _client = aioredis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
            socket_timeout=settings.HEALTH_CHECK_TIMEOUT,
        )
    return _client


def set_redis(client) -> None:
    global _client
    _client = client


async def close_redis() -> None:
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
