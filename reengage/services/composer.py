"""
Message composer - builds the follow-up text for a rule.

fixed_text:       the rule's template verbatim.
model_generated:  last N chat messages as a transcript, sent to the tenant's
                  provider first and the platform provider second.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.message import Message, MESSAGE_TYPE_TEXT
from reengage.models.conversation import DIRECTION_INBOUND
from reengage.models.rule import STRATEGY_FIXED_TEXT
from reengage.schemas.rule_config import RuleConfig
from reengage.services.ai import ProviderSpec, generate_response, PROVIDER_OPENAI
from reengage.services.credentials import CredentialResolver

logger = logging.getLogger(__name__)

DEFAULT_FIXED_MESSAGE = "Hi! Just checking in to see if there is anything else I can help you with."

DEFAULT_FOLLOWUP_PROMPT = (
    "You write short follow-up messages for a business chatting with a lead "
    "who stopped replying. Write one brief, friendly message that picks up "
    "the last subject of the conversation. Be direct and professional. "
    "At most 2 sentences. Reply with the message only."
)

CALLBACK_FALLBACK_MESSAGE = "Hi! Getting back to you as we agreed. How can I help?"

CALLBACK_PROMPT = (
    "You are a sales assistant getting back to a lead at the time you "
    "promised. Write one short, warm message that resumes the conversation "
    "naturally. At most 2 sentences. Reply with the message only."
)

SOURCE_FIXED = "fixed_text"
SOURCE_DEFAULT = "default"


class CompositionError(Exception):
    """No provider produced a usable follow-up message."""
    pass


@dataclass
class ComposedMessage:
    text: str
    source: str  # fixed_text, default, or the provider name
    cost_usd: float = 0.0


async def load_context_messages(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    limit: int,
) -> list[Message]:
    """Most recent chat messages (system notes excluded), oldest first."""
    result = await db.execute(
        select(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.message_type == MESSAGE_TYPE_TEXT,
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    messages = list(result.scalars().all())
    messages.reverse()
    return messages


def format_transcript(messages: list[Message]) -> str:
    lines = []
    for msg in messages:
        speaker = "lead" if msg.direction == DIRECTION_INBOUND else "agent"
        lines.append(f"{speaker}: {msg.content}")
    return "\n".join(lines)


def build_providers(tenant_id: uuid.UUID, resolver: CredentialResolver) -> list[ProviderSpec]:
    """Tenant OpenAI first, then the platform-wide provider."""
    from reengage.config import get_settings
    settings = get_settings()

    platform_kind = settings.ai_platform_provider
    platform_model = (
        settings.anthropic_model if platform_kind == "anthropic" else settings.ai_platform_model
    )
    return [
        ProviderSpec(
            kind=PROVIDER_OPENAI,
            api_key=resolver.tenant_credential(tenant_id),
            model=settings.openai_model,
            label="tenant",
        ),
        ProviderSpec(
            kind=platform_kind,
            api_key=resolver.platform_fallback_credential(),
            model=platform_model,
            base_url=settings.ai_platform_base_url or None,
            label="platform",
        ),
    ]


async def compose_followup(
    db: AsyncSession,
    rule: RuleConfig,
    conversation_id: uuid.UUID,
    resolver: CredentialResolver,
) -> ComposedMessage:
    """
    Build the follow-up text for one conversation.

    Raises:
        CompositionError: model_generated and every provider failed.
    """
    if rule.strategy == STRATEGY_FIXED_TEXT:
        text = (rule.fixed_message or "").strip()
        if text:
            return ComposedMessage(text=text, source=SOURCE_FIXED)
        logger.info(
            "Rule %s has an empty template, using default text",
            str(rule.id)[:8],
            extra={"rule_id": str(rule.id)},
        )
        return ComposedMessage(text=DEFAULT_FIXED_MESSAGE, source=SOURCE_DEFAULT)

    messages = await load_context_messages(db, conversation_id, rule.context_window)
    transcript = format_transcript(messages)
    system_prompt = (rule.prompt or "").strip() or DEFAULT_FOLLOWUP_PROMPT
    user_content = (
        f"Conversation so far:\n{transcript}\n\n"
        "Write the follow-up message:"
    )

    result = await generate_response(
        system_prompt=system_prompt,
        user_message=user_content,
        providers=build_providers(rule.tenant_id, resolver),
    )
    if result.get("error") or not result["content"]:
        raise CompositionError(
            f"No follow-up generated for conversation {str(conversation_id)[:8]}: "
            f"{result.get('error') or 'empty output'}"
        )

    return ComposedMessage(
        text=result["content"],
        source=result["provider"],
        cost_usd=result.get("cost_usd", 0.0),
    )


async def compose_callback_message(
    tenant_id: uuid.UUID,
    contact_name: Optional[str],
    reason: Optional[str],
    context: Optional[str],
    resolver: CredentialResolver,
) -> ComposedMessage:
    """
    Message for a promised callback. Uses the tenant's key only; any failure
    falls back to a fixed sentence so a due callback is never blocked.
    """
    tenant_key = resolver.tenant_credential(tenant_id)
    if not tenant_key:
        return ComposedMessage(text=CALLBACK_FALLBACK_MESSAGE, source=SOURCE_DEFAULT)

    from reengage.config import get_settings
    settings = get_settings()

    details = [f"Lead name: {contact_name or 'unknown'}"]
    if reason:
        details.append(f"Why we are getting back: {reason}")
    if context:
        details.append(f"Conversation summary: {context}")
    user_content = "\n".join(details) + "\n\nWrite the message:"

    result = await generate_response(
        system_prompt=CALLBACK_PROMPT,
        user_message=user_content,
        providers=[
            ProviderSpec(
                kind=PROVIDER_OPENAI,
                api_key=tenant_key,
                model=settings.openai_model,
                label="tenant",
            )
        ],
    )
    if result.get("error") or not result["content"]:
        logger.warning("Callback generation failed, using fallback text: %s", result.get("error"))
        return ComposedMessage(text=CALLBACK_FALLBACK_MESSAGE, source=SOURCE_DEFAULT)

    return ComposedMessage(
        text=result["content"],
        source=result["provider"],
        cost_usd=result.get("cost_usd", 0.0),
    )
