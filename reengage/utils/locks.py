"""
Per-conversation locks - serialize every writer of a conversation's
follow-up ledger and ownership state.

Two layers:
- an in-process asyncio.Lock per conversation (tasks inside one run)
- a Redis SET NX lock with TTL (overlapping runs, other processes)
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 5
LOCK_POLL_INTERVAL = 0.1  # 100ms

# key -> [lock, number of holders and waiters]
_local_locks: dict[str, list] = {}


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout."""
    pass


def _checkout_local(key: str) -> asyncio.Lock:
    entry = _local_locks.get(key)
    if entry is None:
        entry = [asyncio.Lock(), 0]
        _local_locks[key] = entry
    entry[1] += 1
    return entry[0]


def _checkin_local(key: str) -> None:
    entry = _local_locks.get(key)
    if entry is None:
        return
    entry[1] -= 1
    if entry[1] <= 0:
        _local_locks.pop(key, None)


@asynccontextmanager
async def conversation_lock(
    conversation_id: str,
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Hold exclusive access to a conversation.

    Usage:
        async with conversation_lock(str(conversation.id)):
            # check ledger, send, record
    """
    key = f"reengage:lock:conversation:{conversation_id}"
    local = _checkout_local(key)
    try:
        try:
            await asyncio.wait_for(local.acquire(), timeout=wait)
        except asyncio.TimeoutError:
            raise LockTimeoutError(
                f"Conversation {conversation_id[:8]} is busy in this process"
            )

        token = uuid.uuid4().hex  # only release our own Redis lock
        acquired = False
        try:
            acquired = await _acquire_lock(key, token, ttl, wait)
            if not acquired:
                raise LockTimeoutError(
                    f"Could not acquire lock for conversation {conversation_id[:8]} within {wait}s"
                )
            yield
        finally:
            if acquired:
                await _release_lock(key, token)
            local.release()
    finally:
        _checkin_local(key)


async def _acquire_lock(
    key: str,
    value: str,
    ttl: int,
    wait: float,
) -> bool:
    """Try to acquire a Redis lock with polling."""
    try:
        from reengage.utils.redis_client import get_redis
        redis = await get_redis()

        was_set = await redis.set(key, value, nx=True, ex=ttl)
        if was_set:
            return True

        elapsed = 0.0
        while elapsed < wait:
            await asyncio.sleep(LOCK_POLL_INTERVAL)
            elapsed += LOCK_POLL_INTERVAL
            was_set = await redis.set(key, value, nx=True, ex=ttl)
            if was_set:
                return True

        logger.warning("Lock acquisition timed out for %s", key)
        return False
    except Exception as e:
        # Redis down: only the in-process lock and the ledger's unique index hold
        logger.error(
            "Redis lock error for %s: %s. Proceeding with local lock only.", key, str(e),
            exc_info=True,
        )
        from reengage.utils.alerting import AlertType, send_alert
        await send_alert(
            AlertType.LOCK_DEGRADED,
            f"Redis unavailable for conversation locks, cross-process exclusion is off: {e}",
        )
        return True


async def _release_lock(key: str, value: str) -> None:
    """Release a Redis lock only if we still own it (compare-and-delete)."""
    try:
        from reengage.utils.redis_client import get_redis
        redis = await get_redis()

        lua_script = """
        if redis.call('get', KEYS[1]) == ARGV[1] then
            return redis.call('del', KEYS[1])
        else
            return 0
        end
        """
        await redis.eval(lua_script, 1, key, value)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))
