"""
Handoff - ownership and lifecycle state machine for conversations.

Ownership:
  agent   → agent_active=True (optionally a specific agent_id)
  human   → agent_active=False, assigned_user_id set
  unowned → agent_active=False, nobody assigned

Lifecycle:
  active ──outbound──→ awaiting_reply ──inbound──→ active
  active/awaiting_reply ──close──→ closed ──reopen / inbound──→ active

Every mutation holds the same per-conversation lock the follow-up
scheduler uses, so a transfer never interleaves with a follow-up send.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.agent import Agent
from reengage.models.attempt import FollowupAttempt
from reengage.models.conversation import (
    Conversation,
    STATUS_ACTIVE,
    STATUS_AWAITING_REPLY,
    STATUS_CLOSED,
    DIRECTION_INBOUND,
    DIRECTION_OUTBOUND,
    PREVIEW_MAX_CHARS,
)
from reengage.models.event_log import EventLog
from reengage.models.handoff import HandoffTransfer
from reengage.models.message import Message, MESSAGE_TYPE_SYSTEM, MESSAGE_TYPE_TEXT
from reengage.models.tenant import Tenant
from reengage.schemas.handoff import TransferRequest
from reengage.utils.locks import conversation_lock

logger = logging.getLogger(__name__)

EVENT_OUTBOUND = "outbound"
EVENT_INBOUND = "inbound"
EVENT_CLOSE = "close"
EVENT_REOPEN = "reopen"

# event → (statuses it may fire from, resulting status)
VALID_TRANSITIONS = {
    EVENT_OUTBOUND: ((STATUS_ACTIVE, STATUS_AWAITING_REPLY), STATUS_AWAITING_REPLY),
    EVENT_INBOUND: ((STATUS_ACTIVE, STATUS_AWAITING_REPLY, STATUS_CLOSED), STATUS_ACTIVE),
    EVENT_CLOSE: ((STATUS_ACTIVE, STATUS_AWAITING_REPLY), STATUS_CLOSED),
    EVENT_REOPEN: ((STATUS_CLOSED,), STATUS_ACTIVE),
}


class InvalidTransitionError(Exception):
    """The conversation's current status does not allow this event."""
    pass


class ConversationNotFoundError(Exception):
    pass


def next_status(current: str, event: str) -> str:
    """Resulting status for an event. Raises InvalidTransitionError."""
    if event not in VALID_TRANSITIONS:
        raise InvalidTransitionError(f"Unknown conversation event: {event}")
    allowed_from, target = VALID_TRANSITIONS[event]
    if current not in allowed_from:
        raise InvalidTransitionError(f"Cannot apply '{event}' to a conversation in '{current}'")
    return target


def _preview(content: str) -> str:
    return (content or "")[:PREVIEW_MAX_CHARS]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def apply_outbound(
    conversation: Conversation,
    content: str,
    now: datetime,
    from_external_device: bool = False,
) -> None:
    """
    Update a conversation for an outbound chat message (not persisted here).
    A human typing on the connected phone takes the conversation from the agent.
    """
    conversation.status = next_status(conversation.status, EVENT_OUTBOUND)
    conversation.last_message_at = now
    conversation.last_message_direction = DIRECTION_OUTBOUND
    conversation.last_message_preview = _preview(content)
    if from_external_device and conversation.agent_active:
        conversation.agent_active = False
        logger.info(
            "Agent paused on conversation %s: human replied from external device",
            str(conversation.id)[:8],
            extra={"conversation_id": str(conversation.id)},
        )


async def _load(db: AsyncSession, conversation_id: uuid.UUID) -> Conversation:
    # Re-read under the lock so decisions use the latest committed state
    conversation = await db.get(Conversation, conversation_id, populate_existing=True)
    if conversation is None:
        raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
    return conversation


async def _primary_agent(db: AsyncSession, tenant_id: uuid.UUID) -> Optional[Agent]:
    result = await db.execute(
        select(Agent)
        .where(
            Agent.tenant_id == tenant_id,
            Agent.kind == "primary",
            Agent.is_active == True,  # noqa: E712
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


def _system_message(conversation: Conversation, content: str, data: dict) -> Message:
    return Message(
        conversation_id=conversation.id,
        tenant_id=conversation.tenant_id,
        direction=DIRECTION_OUTBOUND,
        content=content,
        message_type=MESSAGE_TYPE_SYSTEM,
        sent_by_agent=False,
        extra_data={"internal": True, **data},
    )


def _transfer_note(request: TransferRequest) -> str:
    by = f" by {request.from_user_name}" if request.from_user_name else ""
    if request.to_agent or request.to_agent_id:
        if request.to_name:
            return f"Conversation transferred to agent \"{request.to_name}\"{by}"
        return f"Conversation transferred to the AI agent{by}"
    if request.to_name:
        return f"Conversation transferred to {request.to_name}{by}"
    return f"Conversation transferred{by}"


async def transfer(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    request: TransferRequest,
) -> Conversation:
    """Move reply ownership to an agent or a user. Writes an audit row and a system note."""
    async with conversation_lock(str(conversation_id)):
        conversation = await _load(db, conversation_id)
        if conversation.status == STATUS_CLOSED:
            raise InvalidTransitionError("Cannot transfer a closed conversation")

        to_agent = bool(request.to_agent or request.to_agent_id)
        conversation.agent_active = to_agent
        conversation.assigned_user_id = request.to_user_id
        if request.to_agent_id:
            conversation.agent_id = request.to_agent_id

        reason = (
            f"Manual transfer to agent {request.to_name or ''}".strip()
            if to_agent
            else f"Manual transfer to {request.to_name or 'user'}"
        )
        db.add(HandoffTransfer(
            conversation_id=conversation.id,
            from_user_id=request.from_user_id,
            to_user_id=request.to_user_id,
            to_agent=to_agent,
            to_agent_id=request.to_agent_id,
            reason=reason,
        ))
        db.add(_system_message(conversation, _transfer_note(request), {
            "action": "transfer",
            "from_user_id": str(request.from_user_id) if request.from_user_id else None,
            "to_user_id": str(request.to_user_id) if request.to_user_id else None,
            "to_agent_id": str(request.to_agent_id) if request.to_agent_id else None,
        }))
        db.add(EventLog(
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            action="conversation_transferred",
            message=reason,
        ))
        await db.commit()

    logger.info(
        "Conversation %s transferred to %s",
        str(conversation_id)[:8], "agent" if to_agent else "user",
        extra={"conversation_id": str(conversation_id)},
    )
    return conversation


async def set_agent_active(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    active: bool,
) -> Conversation:
    """Pause or resume the agent without changing the assignee."""
    async with conversation_lock(str(conversation_id)):
        conversation = await _load(db, conversation_id)
        if conversation.agent_active != active:
            conversation.agent_active = active
            db.add(_system_message(
                conversation,
                "AI agent resumed" if active else "AI agent paused",
                {"action": "agent_toggle", "active": active},
            ))
            await db.commit()
    return conversation


async def close_conversation(db: AsyncSession, conversation_id: uuid.UUID) -> Conversation:
    async with conversation_lock(str(conversation_id)):
        conversation = await _load(db, conversation_id)
        conversation.status = next_status(conversation.status, EVENT_CLOSE)
        conversation.closed_at = _utcnow()
        db.add(_system_message(conversation, "Conversation closed", {"action": "close"}))
        db.add(EventLog(
            tenant_id=conversation.tenant_id,
            conversation_id=conversation.id,
            action="conversation_closed",
        ))
        await db.commit()
    return conversation


async def reopen_conversation(db: AsyncSession, conversation_id: uuid.UUID) -> Conversation:
    async with conversation_lock(str(conversation_id)):
        conversation = await _load(db, conversation_id)
        conversation.status = next_status(conversation.status, EVENT_REOPEN)
        conversation.closed_at = None
        db.add(_system_message(conversation, "Conversation reopened", {"action": "reopen"}))
        await db.commit()
    return conversation


async def record_inbound_message(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    content: str,
    external_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Message:
    """
    Store a message from the lead.

    The lead writing back clears every rule at once: last direction becomes
    inbound and the conversation's follow-up attempts are marked replied.
    A closed conversation is reopened, owned by the tenant's primary agent
    when the tenant allows it, otherwise left to a human.
    """
    now = now or _utcnow()
    async with conversation_lock(str(conversation_id)):
        conversation = await _load(db, conversation_id)

        if conversation.status == STATUS_CLOSED:
            tenant = await db.get(Tenant, conversation.tenant_id)
            agent = None
            if tenant is not None and tenant.reopen_with_agent:
                agent = await _primary_agent(db, conversation.tenant_id)
            if agent is not None:
                conversation.agent_active = True
                conversation.agent_id = agent.id
            else:
                conversation.agent_active = False
            conversation.closed_at = None
            logger.info(
                "Closed conversation %s reopened by lead (%s)",
                str(conversation_id)[:8], "agent" if agent else "human",
                extra={"conversation_id": str(conversation_id)},
            )

        conversation.status = next_status(conversation.status, EVENT_INBOUND)
        conversation.last_message_at = now
        conversation.last_message_direction = DIRECTION_INBOUND
        conversation.last_message_preview = _preview(content)
        conversation.unread_count = (conversation.unread_count or 0) + 1

        message = Message(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            direction=DIRECTION_INBOUND,
            content=content,
            message_type=MESSAGE_TYPE_TEXT,
            external_id=external_id,
            created_at=now,
        )
        db.add(message)

        await db.execute(
            update(FollowupAttempt)
            .where(
                FollowupAttempt.conversation_id == conversation.id,
                FollowupAttempt.replied == False,  # noqa: E712
            )
            .values(replied=True)
        )
        await db.commit()
    return message


async def record_outbound_message(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    content: str,
    sent_by_agent: bool = False,
    from_external_device: bool = False,
    external_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Message:
    """Store a message we sent (agent reply, CRM user, or the connected phone)."""
    now = now or _utcnow()
    async with conversation_lock(str(conversation_id)):
        conversation = await _load(db, conversation_id)
        apply_outbound(conversation, content, now, from_external_device=from_external_device)

        message = Message(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            direction=DIRECTION_OUTBOUND,
            content=content,
            message_type=MESSAGE_TYPE_TEXT,
            sent_by_agent=sent_by_agent,
            external_id=external_id,
            extra_data={"external_device": True} if from_external_device else {},
            created_at=now,
        )
        db.add(message)
        await db.commit()
    return message
