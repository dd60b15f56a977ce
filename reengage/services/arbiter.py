"""
Priority arbiter - a callback the agent promised beats any rule-based follow-up.
"""
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.callback import ScheduledCallback, CALLBACK_PENDING, CREATED_BY_AGENT


async def has_pending_agent_callback(db: AsyncSession, conversation_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(ScheduledCallback.id)
        .where(
            ScheduledCallback.conversation_id == conversation_id,
            ScheduledCallback.status == CALLBACK_PENDING,
            ScheduledCallback.created_by == CREATED_BY_AGENT,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None
