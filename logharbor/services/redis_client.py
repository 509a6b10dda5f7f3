"""
Redis client for the optional processor stats sink.

- Processor periodically writes its counters to a key (expires after 60s) so
  dashboards and other replicas can read them without hitting the health API.
- Disabled when REDIS_URL is empty.
"""
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

from logharbor.core.config import Settings, settings

logger = logging.getLogger("logharbor.redis")

_redis: Optional[redis.Redis] = None


def stats_sink_enabled(config: Settings = settings) -> bool:
    return bool(config.REDIS_URL.strip())


async def get_redis(config: Settings = settings) -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(
            config.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def write_stats(stats: dict[str, Any], config: Settings = settings) -> None:
    """Write processor stats to Redis (processor calls this periodically)."""
    r = await get_redis(config)
    await r.set(config.REDIS_STATS_KEY, json.dumps(stats), ex=60)
