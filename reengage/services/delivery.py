"""
Delivery and bookkeeping for automated sends.

Send first, then record everything in ONE transaction:
outbound message + conversation update + attempt row + event log.
A send whose bookkeeping fails is an operator problem (the next run could
send again), so it surfaces as BookkeepingError and gets alerted.
"""
import logging
import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.attempt import FollowupAttempt
from reengage.models.callback import ScheduledCallback, CALLBACK_SENT
from reengage.models.connection import ChannelConnection
from reengage.models.contact import Contact
from reengage.models.conversation import Conversation, DIRECTION_OUTBOUND, STATUS_ACTIVE, PREVIEW_MAX_CHARS
from reengage.models.event_log import EventLog
from reengage.models.message import Message, MESSAGE_TYPE_TEXT
from reengage.schemas.rule_config import RuleConfig
from reengage.services.channels import send_text
from reengage.services.handoff import apply_outbound

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """The message could not be routed or the channel refused it."""
    pass


class BookkeepingError(Exception):
    """The message went out but its record could not be committed."""
    pass


async def resolve_route(
    db: AsyncSession,
    conversation: Conversation,
) -> tuple[ChannelConnection, Contact]:
    """Channel connection and contact for a conversation. Raises DeliveryError."""
    contact = await db.get(Contact, conversation.contact_id)
    if contact is None or not contact.phone:
        raise DeliveryError(f"Conversation {str(conversation.id)[:8]} has no contact address")
    if conversation.connection_id is None:
        raise DeliveryError(f"Conversation {str(conversation.id)[:8]} has no channel connection")
    connection = await db.get(ChannelConnection, conversation.connection_id)
    if connection is None:
        raise DeliveryError(f"Channel connection {conversation.connection_id} not found")
    return connection, contact


async def deliver(connection: ChannelConnection, address: str, text: str) -> dict:
    """Send through the channel adapter. Raises DeliveryError on failure."""
    result = await send_text(connection, address, text)
    if not result["ok"]:
        raise DeliveryError(result["error"] or "channel send failed")
    return result


async def record_followup(
    db: AsyncSession,
    rule: RuleConfig,
    conversation: Conversation,
    attempt_number: int,
    text: str,
    now: datetime,
    channel_result: dict,
) -> FollowupAttempt:
    """
    Record a delivered follow-up in one transaction.
    Raises BookkeepingError (after rolling back) if the commit fails,
    including when another writer already took this attempt ordinal.
    """
    try:
        db.add(Message(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            direction=DIRECTION_OUTBOUND,
            content=text,
            message_type=MESSAGE_TYPE_TEXT,
            sent_by_agent=True,
            external_id=channel_result.get("message_id"),
            extra_data={
                "followup_rule_id": str(rule.id),
                "attempt": attempt_number,
                "agent_id": str(rule.agent_id) if rule.agent_id else None,
            },
            created_at=now,
        ))
        apply_outbound(conversation, text, now)

        attempt = FollowupAttempt(
            rule_id=rule.id,
            conversation_id=conversation.id,
            attempt_number=attempt_number,
            sent_at=now,
            message=text,
        )
        db.add(attempt)
        db.add(EventLog(
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            action="followup_sent",
            message=f"Rule '{rule.name}' attempt {attempt_number}",
            data={
                "rule_id": str(rule.id),
                "attempt": attempt_number,
                "provider": channel_result.get("provider"),
            },
        ))
        await db.commit()
        return attempt
    except Exception as e:
        await db.rollback()
        raise BookkeepingError(
            f"Follow-up sent but not recorded (rule {str(rule.id)[:8]}, "
            f"conversation {str(conversation.id)[:8]}, attempt {attempt_number}): {e}"
        ) from e


async def record_callback(
    db: AsyncSession,
    callback: ScheduledCallback,
    conversation: Conversation,
    text: str,
    now: datetime,
    channel_result: dict,
) -> None:
    """Record a delivered callback and mark it sent, in one transaction."""
    try:
        db.add(Message(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            direction=DIRECTION_OUTBOUND,
            content=text,
            message_type=MESSAGE_TYPE_TEXT,
            sent_by_agent=True,
            external_id=channel_result.get("message_id"),
            extra_data={"callback_id": str(callback.id), "kind": "scheduled_callback"},
            created_at=now,
        ))
        # The promised conversation resumes: the thread is live again
        conversation.status = STATUS_ACTIVE
        conversation.last_message_at = now
        conversation.last_message_direction = DIRECTION_OUTBOUND
        conversation.last_message_preview = text[:PREVIEW_MAX_CHARS]

        callback.status = CALLBACK_SENT
        callback.sent_at = now
        callback.sent_message = text

        db.add(EventLog(
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            action="callback_sent",
            data={"callback_id": str(callback.id), "provider": channel_result.get("provider")},
        ))
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise BookkeepingError(
            f"Callback {str(callback.id)[:8]} sent but not recorded: {e}"
        ) from e


async def log_unrecorded(
    session_factory,
    tenant_id: uuid.UUID,
    conversation_id: uuid.UUID,
    action: str,
    detail: str,
) -> None:
    """Best-effort audit row for a send whose bookkeeping failed."""
    try:
        async with session_factory() as db:
            db.add(EventLog(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                action=action,
                status="failure",
                message=detail[:1000],
            ))
            await db.commit()
    except Exception as e:
        logger.error("Could not write audit row for unrecorded send: %s", str(e))
