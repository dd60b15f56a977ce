"""
Callback dispatch worker - sends the follow-ups the agent promised.
Runs every CALLBACK_POLL_INTERVAL_SECONDS (default 60).

Due callbacks are sent oldest first. A callback whose conversation is gone
or closed is cancelled. A failed send leaves it pending for the next tick.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select

from reengage.database import async_session_factory
from reengage.models.callback import ScheduledCallback, CALLBACK_PENDING, CALLBACK_CANCELLED
from reengage.models.conversation import Conversation, STATUS_CLOSED
from reengage.services.composer import compose_callback_message
from reengage.services.credentials import CredentialResolver
from reengage.services.delivery import (
    resolve_route,
    deliver,
    record_callback,
    log_unrecorded,
    DeliveryError,
    BookkeepingError,
)
from reengage.utils.alerting import send_alert, AlertType
from reengage.utils.locks import conversation_lock, LockTimeoutError
from reengage.utils.logging import generate_correlation_id, set_correlation_id
from reengage.utils.redis_client import write_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "callback_dispatch"
BATCH_SIZE = 20


async def run_callback_dispatcher():
    """Main loop - send due callbacks, then sleep."""
    from reengage.config import get_settings
    interval = get_settings().callback_poll_interval_seconds
    logger.info("Callback dispatcher started (poll every %ds)", interval)

    while True:
        try:
            await dispatch_due_callbacks()
        except Exception as e:
            logger.error("Callback dispatcher error: %s", str(e), exc_info=True)

        await write_heartbeat(WORKER_NAME)
        await asyncio.sleep(interval)


async def dispatch_due_callbacks(
    session_factory: Optional[Callable] = None,
    now: Optional[datetime] = None,
    resolver: Optional[CredentialResolver] = None,
) -> dict:
    """
    Send every pending callback that is due.
    Returns {"sent_count", "cancelled", "failed", "unrecorded"}.
    """
    session_factory = session_factory or async_session_factory
    now = now or datetime.now(timezone.utc)
    resolver = resolver or CredentialResolver.from_settings()
    set_correlation_id(generate_correlation_id())

    async with session_factory() as db:
        result = await db.execute(
            select(ScheduledCallback.id)
            .where(
                ScheduledCallback.status == CALLBACK_PENDING,
                ScheduledCallback.scheduled_for <= now,
            )
            .order_by(ScheduledCallback.scheduled_for)
            .limit(BATCH_SIZE)
        )
        callback_ids = list(result.scalars().all())

    summary = {"sent_count": 0, "cancelled": 0, "failed": 0, "unrecorded": 0}
    if not callback_ids:
        return summary

    logger.info("Processing %d due callbacks", len(callback_ids))

    for callback_id in callback_ids:
        try:
            outcome = await _dispatch_callback(callback_id, session_factory, resolver, now)
        except Exception as e:
            logger.error(
                "Failed to dispatch callback %s: %s", str(callback_id)[:8], str(e),
                exc_info=True,
            )
            outcome = "failed"
        if outcome in summary:
            summary[outcome] += 1

    logger.info(
        "Callbacks: %d sent, %d cancelled, %d failed",
        summary["sent_count"], summary["cancelled"], summary["failed"],
    )
    return summary


async def _dispatch_callback(
    callback_id: uuid.UUID,
    session_factory: Callable,
    resolver: CredentialResolver,
    now: datetime,
) -> str:
    async with session_factory() as db:
        callback = await db.get(ScheduledCallback, callback_id)
        if callback is None or callback.status != CALLBACK_PENDING:
            return "skipped"
        conversation_id = callback.conversation_id

    try:
        async with conversation_lock(str(conversation_id)):
            async with session_factory() as db:
                # Re-read under the lock: another dispatcher may have sent it
                callback = await db.get(ScheduledCallback, callback_id)
                if callback is None or callback.status != CALLBACK_PENDING:
                    return "skipped"

                conversation = await db.get(Conversation, conversation_id)
                if conversation is None or conversation.status == STATUS_CLOSED:
                    callback.status = CALLBACK_CANCELLED
                    await db.commit()
                    logger.info(
                        "Callback %s cancelled: conversation missing or closed",
                        str(callback_id)[:8],
                        extra={"conversation_id": str(conversation_id)},
                    )
                    return "cancelled"

                try:
                    connection, contact = await resolve_route(db, conversation)
                except DeliveryError as e:
                    logger.warning("Callback %s not routable: %s", str(callback_id)[:8], str(e))
                    return "failed"

                await resolver.load_tenant(db, callback.tenant_id)
                composed = await compose_callback_message(
                    callback.tenant_id, contact.name, callback.reason, callback.context, resolver,
                )

                try:
                    channel_result = await deliver(connection, contact.phone, composed.text)
                except DeliveryError as e:
                    logger.warning(
                        "Callback %s not delivered, will retry: %s", str(callback_id)[:8], str(e),
                        extra={"conversation_id": str(conversation_id)},
                    )
                    return "failed"

                try:
                    await record_callback(db, callback, conversation, composed.text, now, channel_result)
                except BookkeepingError as e:
                    logger.critical(str(e), extra={"conversation_id": str(conversation_id)})
                    await send_alert(
                        AlertType.CALLBACK_UNRECORDED,
                        str(e),
                        severity="critical",
                        dedup_key=str(callback_id),
                    )
                    await log_unrecorded(
                        session_factory, conversation.tenant_id, conversation_id,
                        "callback_unrecorded", str(e),
                    )
                    return "unrecorded"

                logger.info(
                    "Callback %s sent", str(callback_id)[:8],
                    extra={"conversation_id": str(conversation_id), "provider": channel_result.get("provider")},
                )
                return "sent_count"
    except LockTimeoutError:
        logger.info("Conversation %s busy, callback retried next tick", str(conversation_id)[:8])
        return "failed"
