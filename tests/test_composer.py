"""
Composer tests - fixed templates, transcript building, the provider chain
and the callback message. generate_response is mocked (see conftest.mock_ai).
"""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from reengage.models.message import Message
from reengage.services.composer import (
    CALLBACK_FALLBACK_MESSAGE,
    DEFAULT_FIXED_MESSAGE,
    DEFAULT_FOLLOWUP_PROMPT,
    CompositionError,
    build_providers,
    compose_callback_message,
    compose_followup,
    format_transcript,
    load_context_messages,
)
from reengage.services.credentials import CredentialResolver
from reengage.services.rule_store import validate_rule

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _add_messages(db, world, *pairs, message_type="text"):
    for i, (direction, content) in enumerate(pairs):
        db.add(Message(
            conversation_id=world.conversation.id,
            tenant_id=world.tenant.id,
            direction=direction,
            content=content,
            message_type=message_type,
            created_at=T0 + timedelta(minutes=i),
        ))


def _generated(world, **overrides):
    world.rule.strategy = "model_generated"
    for key, value in overrides.items():
        setattr(world.rule, key, value)
    return validate_rule(world.rule)


class TestFixedText:
    async def test_template_verbatim(self, db, seed, mock_ai):
        world = await seed(db)

        composed = await compose_followup(db, validate_rule(world.rule), world.conversation.id, CredentialResolver())

        assert composed.text == "Ainda por aí?"
        assert composed.source == "fixed_text"
        mock_ai.assert_not_called()

    @pytest.mark.parametrize("template", [None, "", "   "])
    async def test_empty_template_uses_default(self, db, seed, mock_ai, template):
        world = await seed(db, fixed_message=template)

        composed = await compose_followup(db, validate_rule(world.rule), world.conversation.id, CredentialResolver())

        assert composed.text == DEFAULT_FIXED_MESSAGE
        assert composed.source == "default"


class TestContext:
    async def test_last_n_text_messages_oldest_first(self, db, seed):
        world = await seed(db)
        _add_messages(
            db, world,
            ("inbound", "Oi, vi o anúncio"),
            ("outbound", "Olá! Qual imóvel?"),
            ("inbound", "O de 2 quartos"),
            ("outbound", "Posso agendar visita?"),
        )
        _add_messages(db, world, ("outbound", "Conversation transferred"), message_type="system")
        await db.commit()

        messages = await load_context_messages(db, world.conversation.id, limit=3)

        assert [m.content for m in messages] == [
            "Olá! Qual imóvel?",
            "O de 2 quartos",
            "Posso agendar visita?",
        ]

    def test_transcript_speakers(self):
        messages = [
            MagicMock(direction="inbound", content="Quanto custa?"),
            MagicMock(direction="outbound", content="R$ 2.500 por mês"),
        ]

        assert format_transcript(messages) == "lead: Quanto custa?\nagent: R$ 2.500 por mês"


class TestModelGenerated:
    async def test_generated_message(self, db, seed, mock_ai):
        world = await seed(db)
        _add_messages(db, world, ("inbound", "Vou pensar"), ("outbound", "Claro, fico à disposição"))
        await db.commit()
        rule = _generated(world, context_window=5)

        composed = await compose_followup(db, rule, world.conversation.id, CredentialResolver())

        assert composed.text.startswith("Still thinking")
        assert composed.source == "tenant:openai"
        kwargs = mock_ai.call_args.kwargs
        assert kwargs["system_prompt"] == DEFAULT_FOLLOWUP_PROMPT
        assert "lead: Vou pensar\nagent: Claro, fico à disposição" in kwargs["user_message"]
        assert kwargs["user_message"].endswith("Write the follow-up message:")

    async def test_rule_prompt_overrides_default(self, db, seed, mock_ai):
        world = await seed(db)
        rule = _generated(world, prompt="Be playful and mention the open house on Saturday.")

        await compose_followup(db, rule, world.conversation.id, CredentialResolver())

        assert mock_ai.call_args.kwargs["system_prompt"] == "Be playful and mention the open house on Saturday."

    async def test_all_providers_failed(self, db, seed, mock_ai):
        world = await seed(db)
        mock_ai.return_value = {
            "content": "", "provider": "none", "model": "none", "latency_ms": 0,
            "cost_usd": 0.0, "input_tokens": 0, "output_tokens": 0,
            "error": "tenant:openai: no credential; platform:openai: timeout",
        }

        with pytest.raises(CompositionError) as exc_info:
            await compose_followup(db, _generated(world), world.conversation.id, CredentialResolver())

        assert "timeout" in str(exc_info.value)


class TestProviders:
    def test_tenant_first_then_platform(self):
        tenant_id = uuid.uuid4()
        resolver = CredentialResolver(platform_key="sk-platform", tenant_keys={tenant_id: "sk-tenant"})

        providers = build_providers(tenant_id, resolver)

        assert [p.name for p in providers] == ["tenant:openai", "platform:openai"]
        assert providers[0].api_key == "sk-tenant"
        assert providers[1].api_key == "sk-platform"

    def test_anthropic_platform(self):
        settings = MagicMock(
            ai_platform_provider="anthropic",
            anthropic_model="claude-haiku-4-5-20251001",
            ai_platform_model="unused",
            ai_platform_base_url="",
            openai_model="gpt-4o-mini",
        )
        with patch("reengage.config.get_settings", return_value=settings):
            providers = build_providers(uuid.uuid4(), CredentialResolver(platform_key="sk-ant"))

        assert providers[0].api_key is None
        assert providers[1].kind == "anthropic"
        assert providers[1].model == "claude-haiku-4-5-20251001"
        assert providers[1].base_url is None


class TestCredentialResolver:
    async def test_loads_and_caches_tenant_key(self, db, seed):
        world = await seed(db, tenant_key="sk-tenant-123")
        resolver = CredentialResolver()

        assert resolver.tenant_credential(world.tenant.id) is None
        assert await resolver.load_tenant(db, world.tenant.id) == "sk-tenant-123"
        assert resolver.tenant_credential(world.tenant.id) == "sk-tenant-123"

        world.tenant.openai_api_key = "sk-rotated"
        await db.commit()
        assert await resolver.load_tenant(db, world.tenant.id) == "sk-tenant-123"

    async def test_tenant_without_key(self, db, seed):
        world = await seed(db)
        resolver = CredentialResolver(platform_key="")

        assert await resolver.load_tenant(db, world.tenant.id) is None
        assert resolver.platform_fallback_credential() is None


class TestCallbackMessage:
    async def test_without_tenant_key_uses_fallback(self, mock_ai):
        composed = await compose_callback_message(
            uuid.uuid4(), "Maria", "Asked us to call back after lunch", None, CredentialResolver(),
        )

        assert composed.text == CALLBACK_FALLBACK_MESSAGE
        mock_ai.assert_not_called()

    async def test_generated_with_tenant_key(self, mock_ai):
        tenant_id = uuid.uuid4()
        resolver = CredentialResolver(platform_key="sk-platform", tenant_keys={tenant_id: "sk-tenant"})

        composed = await compose_callback_message(
            tenant_id, "Maria", "Wants the price list", "Asked about the 2-bedroom", resolver,
        )

        assert composed.source == "tenant:openai"
        kwargs = mock_ai.call_args.kwargs
        assert [p.name for p in kwargs["providers"]] == ["tenant:openai"]
        assert "Lead name: Maria" in kwargs["user_message"]
        assert "Why we are getting back: Wants the price list" in kwargs["user_message"]

    async def test_generation_failure_uses_fallback(self, mock_ai):
        tenant_id = uuid.uuid4()
        mock_ai.return_value = {"content": "", "provider": "none", "error": "tenant:openai: timeout"}

        composed = await compose_callback_message(
            tenant_id, None, None, None, CredentialResolver(tenant_keys={tenant_id: "sk-tenant"}),
        )

        assert composed.text == CALLBACK_FALLBACK_MESSAGE
