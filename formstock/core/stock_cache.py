"""
FormStock Service — Redis stock cache

Best-effort mirror of current_stock under ``stock:{item_id}``. The database
stays authoritative; cache failures are logged and never fail a request.
"""
import logging

from redis.exceptions import RedisError

from formstock.core.config import get_settings
from formstock.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

STOCK_CACHE_KEY = "stock:{item_id}"


async def cache_stock_levels(levels: dict[str, int]) -> None:
    if not settings.STOCK_CACHE_ENABLED or not levels:
        return
    try:
        redis = get_redis()
        for item_id, stock in levels.items():
            await redis.setex(STOCK_CACHE_KEY.format(item_id=item_id), settings.STOCK_CACHE_TTL_SECONDS, stock)
    except (RedisError, OSError) as exc:
        logger.warning("Stock cache update skipped: %s", exc)
