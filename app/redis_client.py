import logging
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from .config import get_settings

log = logging.getLogger(__name__)

_settings = get_settings()
# used for rate limiting only; registration state never lives here
redis = aioredis.from_url(_settings.REDIS_URL, encoding="utf-8", decode_responses=True)


async def redis_health() -> bool:
    try:
        return bool(await redis.ping())
    except (RedisError, OSError):
        log.warning("redis_health_failed", exc_info=True)
        return False


async def close_redis() -> None:
    await redis.aclose()
