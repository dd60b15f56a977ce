"""
Critical alerting - for events an operator must see, above all a follow-up
that was delivered but could not be recorded (risk of a duplicate send).

Channels:
1. Structured log (always) - ERROR or CRITICAL
2. Webhook (optional) - Discord/Slack URL via ALERT_WEBHOOK_URL

Per-type cooldown in Redis (SET NX EX) with an in-memory fallback.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300

ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "followup_run_failed": 900,
    "lock_degraded": 900,
}

_local_cooldowns: dict[str, float] = {}  # alert_type → expiry (monotonic)


class AlertType:
    FOLLOWUP_UNRECORDED = "followup_unrecorded"
    FOLLOWUP_RUN_FAILED = "followup_run_failed"
    CALLBACK_UNRECORDED = "callback_unrecorded"
    LOCK_DEGRADED = "lock_degraded"


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "error",
    extra: Optional[dict] = None,
    dedup_key: Optional[str] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per alert type (and dedup_key, when given).
    """
    cooldown_name = f"{alert_type}:{dedup_key}" if dedup_key else alert_type
    if not await _acquire_cooldown(cooldown_name, _get_cooldown_seconds(alert_type)):
        return

    from reengage.utils.logging import get_correlation_id
    cid = get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    await _send_webhook_alert(alert_type, message, severity, cid, extra)


async def _acquire_cooldown(name: str, cooldown: int) -> bool:
    """Atomic check-and-set of the cooldown. True means the alert should go out."""
    try:
        from reengage.utils.redis_client import get_redis
        redis = await get_redis()
        acquired = await redis.set(f"reengage:alert_cooldown:{name}", "1", nx=True, ex=cooldown)
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        if now < _local_cooldowns.get(name, 0):
            return False
        _local_cooldowns[name] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Post to the configured Discord/Slack webhook."""
    try:
        from reengage.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx

        prefix = {"critical": "\U0001f6a8", "error": "❌", "warning": "⚠️"}.get(severity, "ℹ️")
        content = f"{prefix} **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        for key, val in (extra or {}).items():
            content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Never let alerting take down the caller
        logger.warning("Failed to send webhook alert: %s", str(e))
