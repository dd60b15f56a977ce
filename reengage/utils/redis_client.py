"""
Shared async Redis client (locks, worker heartbeats, alert cooldowns).
"""
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

KEY_PREFIX = "reengage"
HEARTBEAT_TTL_SECONDS = 300

# Lazily initialized
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from reengage.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


async def write_heartbeat(worker_name: str) -> None:
    """Store a worker heartbeat timestamp. Redis failures are non-fatal."""
    try:
        redis = await get_redis()
        await redis.set(
            f"{KEY_PREFIX}:worker_health:{worker_name}",
            datetime.now(timezone.utc).isoformat(),
            ex=HEARTBEAT_TTL_SECONDS,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed for %s: %s", worker_name, str(e))
