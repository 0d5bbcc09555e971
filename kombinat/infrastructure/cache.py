import json
import logging
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from kombinat.config import REDIS_URL

logger = logging.getLogger(__name__)
_redis: Optional[aioredis.Redis] = None


def _get_redis() -> aioredis.Redis:
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
    return _redis


def state_cache_key(user_id: int) -> str:
    return f"game_state:{user_id}"


async def cache_get(key: str) -> Optional[Any]:
    try:
        s = await _get_redis().get(key)
    except (RedisError, OSError) as e:
        logger.warning("Cache get failed: %s", e)
        return None
    if s is None:
        return None
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        logger.warning("Cache entry %s is not JSON, ignoring", key)
        return None


async def cache_set(key: str, value: Any, ttl_sec: int = 300) -> None:
    try:
        await _get_redis().setex(key, ttl_sec, json.dumps(value, ensure_ascii=False))
    except (RedisError, OSError) as e:
        logger.warning("Cache set failed: %s", e)


async def cache_delete(key: str) -> None:
    try:
        await _get_redis().delete(key)
    except (RedisError, OSError) as e:
        logger.warning("Cache delete failed: %s", e)


async def close_cache() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
