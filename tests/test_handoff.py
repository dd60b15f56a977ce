"""
Handoff tests - ownership transfers, agent toggle, close/reopen and the
message-driven status transitions. Redis is mocked, the DB is SQLite.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from reengage.models.attempt import FollowupAttempt
from reengage.models.event_log import EventLog
from reengage.models.handoff import HandoffTransfer
from reengage.models.message import Message
from reengage.schemas.handoff import TransferRequest
from reengage.services.handoff import (
    ConversationNotFoundError,
    InvalidTransitionError,
    VALID_TRANSITIONS,
    apply_outbound,
    close_conversation,
    next_status,
    record_inbound_message,
    record_outbound_message,
    reopen_conversation,
    set_agent_active,
    transfer,
)

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


async def _system_messages(db, conversation_id):
    result = await db.execute(
        select(Message).where(
            Message.conversation_id == conversation_id,
            Message.message_type == "system",
        )
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_every_event_has_a_target(self):
        for event, (allowed_from, target) in VALID_TRANSITIONS.items():
            assert allowed_from
            assert target in ("active", "awaiting_reply", "closed")

    @pytest.mark.parametrize("current,event,expected", [
        ("active", "outbound", "awaiting_reply"),
        ("awaiting_reply", "outbound", "awaiting_reply"),
        ("awaiting_reply", "inbound", "active"),
        ("active", "inbound", "active"),
        ("closed", "inbound", "active"),
        ("active", "close", "closed"),
        ("awaiting_reply", "close", "closed"),
        ("closed", "reopen", "active"),
    ])
    def test_valid(self, current, event, expected):
        assert next_status(current, event) == expected

    @pytest.mark.parametrize("current,event", [
        ("closed", "outbound"),
        ("closed", "close"),
        ("active", "reopen"),
        ("awaiting_reply", "reopen"),
        ("active", "teleport"),
    ])
    def test_invalid(self, current, event):
        with pytest.raises(InvalidTransitionError):
            next_status(current, event)


# ---------------------------------------------------------------------------
# transfer / set_agent_active
# ---------------------------------------------------------------------------


class TestTransfer:
    async def test_transfer_to_user(self, db, seed):
        world = await seed(db)
        user_id = uuid.uuid4()
        from_user = uuid.uuid4()

        conversation = await transfer(db, world.conversation.id, TransferRequest(
            to_user_id=user_id, from_user_id=from_user, from_user_name="Ana", to_name="Bruno",
        ))

        assert conversation.agent_active is False
        assert conversation.assigned_user_id == user_id

        audit = (await db.execute(select(HandoffTransfer))).scalars().all()
        assert len(audit) == 1
        assert audit[0].to_agent is False
        assert audit[0].from_user_id == from_user

        notes = await _system_messages(db, world.conversation.id)
        assert notes[0].content == "Conversation transferred to Bruno by Ana"
        assert notes[0].extra_data["internal"] is True

        events = (await db.execute(select(EventLog))).scalars().all()
        assert [e.action for e in events] == ["conversation_transferred"]

    async def test_transfer_to_agent_clears_assignee(self, db, seed, add_conversation):
        world = await seed(db)
        human = await add_conversation(db, world, agent_active=False, assigned_user_id=uuid.uuid4())

        conversation = await transfer(db, human.id, TransferRequest(
            to_agent_id=world.agent.id, to_name="Sofia",
        ))

        assert conversation.agent_active is True
        assert conversation.agent_id == world.agent.id
        assert conversation.assigned_user_id is None
        notes = await _system_messages(db, human.id)
        assert notes[0].content == 'Conversation transferred to agent "Sofia"'

    async def test_system_note_keeps_last_message_fields(self, db, seed):
        world = await seed(db, last_message_at=T0)

        conversation = await transfer(db, world.conversation.id, TransferRequest(to_user_id=uuid.uuid4()))

        assert conversation.last_message_preview == "Vou pensar e te aviso"
        assert conversation.last_message_direction == "outbound"
        assert conversation.status == "active"

    async def test_closed_conversation_cannot_be_transferred(self, db, seed):
        world = await seed(db, status="closed")

        with pytest.raises(InvalidTransitionError):
            await transfer(db, world.conversation.id, TransferRequest(to_agent=True))

    async def test_unknown_conversation(self, db, seed):
        await seed(db)

        with pytest.raises(ConversationNotFoundError):
            await transfer(db, uuid.uuid4(), TransferRequest(to_agent=True))

    def test_request_needs_exactly_one_target(self):
        with pytest.raises(ValidationError):
            TransferRequest()
        with pytest.raises(ValidationError):
            TransferRequest(to_agent=True, to_user_id=uuid.uuid4())


class TestAgentToggle:
    async def test_pause_keeps_assignee(self, db, seed, add_conversation):
        world = await seed(db)
        user_id = uuid.uuid4()
        conv = await add_conversation(db, world, agent_active=True, assigned_user_id=user_id)

        conversation = await set_agent_active(db, conv.id, False)

        assert conversation.agent_active is False
        assert conversation.assigned_user_id == user_id
        notes = await _system_messages(db, conv.id)
        assert [n.content for n in notes] == ["AI agent paused"]

    async def test_no_op_writes_nothing(self, db, seed):
        world = await seed(db)

        await set_agent_active(db, world.conversation.id, True)

        assert await _system_messages(db, world.conversation.id) == []


# ---------------------------------------------------------------------------
# close / reopen
# ---------------------------------------------------------------------------


class TestCloseReopen:
    async def test_close_then_reopen(self, db, seed):
        world = await seed(db)

        closed = await close_conversation(db, world.conversation.id)
        assert closed.status == "closed"
        assert closed.closed_at is not None

        reopened = await reopen_conversation(db, world.conversation.id)
        assert reopened.status == "active"
        assert reopened.closed_at is None

        notes = await _system_messages(db, world.conversation.id)
        assert sorted(n.content for n in notes) == ["Conversation closed", "Conversation reopened"]

    async def test_close_twice_is_rejected(self, db, seed):
        world = await seed(db, status="closed")

        with pytest.raises(InvalidTransitionError):
            await close_conversation(db, world.conversation.id)

    async def test_reopen_open_conversation_is_rejected(self, db, seed):
        world = await seed(db)

        with pytest.raises(InvalidTransitionError):
            await reopen_conversation(db, world.conversation.id)


# ---------------------------------------------------------------------------
# record_inbound_message / record_outbound_message
# ---------------------------------------------------------------------------


class TestInboundMessage:
    async def test_inbound_updates_summary(self, db, seed):
        world = await seed(db, status="awaiting_reply")
        now = T0 + timedelta(hours=3)

        await record_inbound_message(db, world.conversation.id, "Oi, ainda tenho interesse", now=now)
        await db.refresh(world.conversation)

        conv = world.conversation
        assert conv.status == "active"
        assert conv.last_message_direction == "inbound"
        assert conv.last_message_preview == "Oi, ainda tenho interesse"
        assert conv.unread_count == 1

    async def test_inbound_marks_attempts_replied(self, db, seed):
        world = await seed(db)
        db.add(FollowupAttempt(
            rule_id=world.rule.id, conversation_id=world.conversation.id,
            attempt_number=1, sent_at=T0, message="Ainda por aí?",
        ))
        await db.commit()

        await record_inbound_message(db, world.conversation.id, "Sim!")

        attempts = (await db.execute(select(FollowupAttempt))).scalars().all()
        assert [a.replied for a in attempts] == [True]

    async def test_closed_conversation_reopens_with_agent(self, db, seed):
        world = await seed(db, status="closed", agent_active=False)

        await record_inbound_message(db, world.conversation.id, "Voltei")
        await db.refresh(world.conversation)

        assert world.conversation.status == "active"
        assert world.conversation.agent_active is True
        assert world.conversation.agent_id == world.agent.id

    async def test_closed_conversation_reopens_to_human(self, db, seed):
        world = await seed(db, status="closed")
        world.tenant.reopen_with_agent = False
        await db.commit()

        await record_inbound_message(db, world.conversation.id, "Voltei")
        await db.refresh(world.conversation)

        assert world.conversation.status == "active"
        assert world.conversation.agent_active is False

    async def test_preview_is_truncated(self, db, seed):
        world = await seed(db)

        await record_inbound_message(db, world.conversation.id, "x" * 500)
        await db.refresh(world.conversation)

        assert len(world.conversation.last_message_preview) == 100


class TestOutboundMessage:
    async def test_outbound_awaits_reply(self, db, seed):
        world = await seed(db, last_message_direction="inbound")

        message = await record_outbound_message(db, world.conversation.id, "Posso ajudar?", sent_by_agent=True)
        await db.refresh(world.conversation)

        assert message.sent_by_agent is True
        assert world.conversation.status == "awaiting_reply"
        assert world.conversation.last_message_direction == "outbound"
        assert world.conversation.agent_active is True

    async def test_external_device_pauses_agent(self, db, seed):
        world = await seed(db)

        message = await record_outbound_message(
            db, world.conversation.id, "Te ligo já", from_external_device=True,
        )
        await db.refresh(world.conversation)

        assert world.conversation.agent_active is False
        assert message.extra_data == {"external_device": True}

    async def test_outbound_on_closed_conversation_is_rejected(self, db, seed):
        world = await seed(db, status="closed")

        with pytest.raises(InvalidTransitionError):
            await record_outbound_message(db, world.conversation.id, "Olá")

    async def test_apply_outbound_is_in_memory(self, db, seed):
        world = await seed(db)
        now = T0 + timedelta(days=1)

        apply_outbound(world.conversation, "Oi", now)

        assert world.conversation.last_message_at == now
        assert world.conversation.status == "awaiting_reply"
