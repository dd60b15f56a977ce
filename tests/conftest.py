"""
Test configuration and fixtures.
Uses SQLite (aiosqlite) for fast tests. Mocks Redis, channels and generation providers.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key")
os.environ.setdefault("WORKERS_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from reengage.database import Base
from reengage.models import (
    Tenant,
    Agent,
    Contact,
    ChannelConnection,
    FollowupRule,
    Conversation,
)

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path):
    """File-backed SQLite shared by many sessions (scheduler runs, concurrency)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reengage.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("reengage.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.eval = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def mock_channel():
    """Mock for the channel adapter - prevents real WhatsApp/Instagram calls."""
    with patch("reengage.services.delivery.send_text", new_callable=AsyncMock) as mock:
        mock.return_value = {
            "ok": True,
            "provider": "evolution",
            "message_id": "MSG_test_123",
            "error": None,
        }
        yield mock


@pytest.fixture
def mock_ai():
    """Mock for async generate_response - prevents real model calls."""
    with patch("reengage.services.composer.generate_response", new_callable=AsyncMock) as mock:
        mock.return_value = {
            "content": "Still thinking about the 2-bedroom? Happy to send photos.",
            "provider": "tenant:openai",
            "model": "gpt-4o-mini",
            "latency_ms": 420,
            "cost_usd": 0.0001,
            "input_tokens": 120,
            "output_tokens": 20,
            "error": None,
        }
        yield mock


@pytest.fixture
def seed():
    """
    Factory that stores a tenant, contact, connection, agent, one conversation
    and one rule. Rule defaults: 60 min threshold, 3 attempts, 1440 min interval,
    fixed text "Ainda por aí?".
    """
    async def _seed(
        session: AsyncSession,
        *,
        last_message_at=T0,
        last_message_direction="outbound",
        agent_active=True,
        status="active",
        tenant_key=None,
        **rule_overrides,
    ) -> SimpleNamespace:
        tenant = Tenant(id=uuid.uuid4(), name="Imobiliária Sol", openai_api_key=tenant_key)
        agent = Agent(id=uuid.uuid4(), tenant_id=tenant.id, name="Sofia", kind="primary")
        contact = Contact(id=uuid.uuid4(), tenant_id=tenant.id, name="Maria", phone="+55 11 99999-0000")
        connection = ChannelConnection(
            id=uuid.uuid4(), tenant_id=tenant.id, provider="evolution",
            instance_name="sol-main", token="evo-token",
        )
        conversation = Conversation(
            id=uuid.uuid4(),
            tenant_id=tenant.id,
            contact_id=contact.id,
            connection_id=connection.id,
            agent_active=agent_active,
            agent_id=agent.id if agent_active else None,
            status=status,
            last_message_at=last_message_at,
            last_message_direction=last_message_direction,
            last_message_preview="Vou pensar e te aviso",
        )
        rule_fields = {
            "name": "Silent leads",
            "strategy": "fixed_text",
            "fixed_message": "Ainda por aí?",
            "trigger_minutes": 60,
            "max_attempts": 3,
            "min_interval_minutes": 1440,
            "apply_to_agent_active": True,
            "apply_to_human_owned": False,
            "created_at": T0,
        }
        rule_fields.update(rule_overrides)
        rule = FollowupRule(id=uuid.uuid4(), tenant_id=tenant.id, **rule_fields)

        session.add_all([tenant, agent, contact, connection, conversation, rule])
        await session.commit()
        return SimpleNamespace(
            tenant=tenant,
            agent=agent,
            contact=contact,
            connection=connection,
            conversation=conversation,
            rule=rule,
        )

    return _seed


@pytest.fixture
def add_conversation():
    """Factory for extra conversations in an already seeded tenant."""
    async def _add(session: AsyncSession, world: SimpleNamespace, **fields) -> Conversation:
        contact = Contact(id=uuid.uuid4(), tenant_id=world.tenant.id, name="Lead", phone="+5511988887777")
        values = {
            "tenant_id": world.tenant.id,
            "contact_id": contact.id,
            "connection_id": world.connection.id,
            "agent_active": True,
            "status": "active",
            "last_message_at": T0,
            "last_message_direction": "outbound",
        }
        values.update(fields)
        conversation = Conversation(id=uuid.uuid4(), **values)
        session.add_all([contact, conversation])
        await session.commit()
        return conversation

    return _add
