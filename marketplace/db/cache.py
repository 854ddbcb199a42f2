# marketplace/db/cache.py
import json
from typing import Any, Optional

from redis import asyncio as aioredis

from marketplace.config import settings

redis = None


def get_redis():
    global redis
    if redis is None:
        redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return redis


async def get_json(cache, key: str) -> Optional[Any]:
    raw = await cache.get(key)
    if raw is None:
        return None
    return json.loads(raw)


async def set_json(cache, key: str, value: Any, ex: Optional[int] = None) -> None:
    # ObjectId and datetime values are stored as strings
    await cache.set(key, json.dumps(value, default=str), ex=ex)


async def close_redis() -> None:
    global redis
    if redis is not None:
        await redis.aclose()
        redis = None
