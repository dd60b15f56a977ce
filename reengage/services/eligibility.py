"""
Eligibility scanner - conversations a rule may follow up on right now.

Eligible when all hold:
- same tenant as the rule
- status active or awaiting_reply
- silent since at least trigger_minutes (last_message_at <= now - threshold)
- ownership matches the rule's flags (agent-active and/or human-owned)

The scan also drops conversations the ledger would always refuse: the lead
spoke last, or the rule's lineage already reached max_attempts. Those would
otherwise pile up at the head of the oldest-silence order.

Pure read. The ledger decides whether a send actually happens.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.attempt import FollowupAttempt
from reengage.models.conversation import Conversation, DIRECTION_INBOUND, OPEN_STATUSES
from reengage.schemas.rule_config import RuleConfig

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as some drivers return them) as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _ownership_filter(rule: RuleConfig):
    if rule.apply_to_agent_active and rule.apply_to_human_owned:
        return None
    if rule.apply_to_agent_active:
        return Conversation.agent_active == True  # noqa: E712
    return Conversation.agent_active == False  # noqa: E712


def _exhausted_lineage(rule: RuleConfig):
    return exists().where(
        FollowupAttempt.rule_id == rule.id,
        FollowupAttempt.conversation_id == Conversation.id,
        FollowupAttempt.attempt_number >= rule.max_attempts,
    )


async def find_eligible_conversations(
    db: AsyncSession,
    rule: RuleConfig,
    now: datetime,
    page_size: Optional[int] = None,
) -> list[Conversation]:
    """
    Candidates for one rule, oldest silence first.

    Reads the whole set in keyset pages of page_size rows on
    (last_message_at, id), so no candidate is cut off by a batch cap.
    """
    if not rule.matches_any_ownership:
        logger.debug("Rule %s targets no ownership, nothing to scan", str(rule.id)[:8])
        return []

    page_size = page_size or DEFAULT_PAGE_SIZE
    threshold = now - timedelta(minutes=rule.trigger_minutes)
    query = (
        select(Conversation)
        .where(
            Conversation.tenant_id == rule.tenant_id,
            Conversation.status.in_(OPEN_STATUSES),
            Conversation.last_message_at.is_not(None),
            Conversation.last_message_at <= threshold,
            Conversation.last_message_direction.is_distinct_from(DIRECTION_INBOUND),
            ~_exhausted_lineage(rule),
        )
        .order_by(Conversation.last_message_at, Conversation.id)
        .limit(page_size)
    )
    ownership = _ownership_filter(rule)
    if ownership is not None:
        query = query.where(ownership)

    candidates: list[Conversation] = []
    page_query = query
    while True:
        result = await db.execute(page_query)
        page = list(result.scalars().all())
        candidates.extend(page)
        if len(page) < page_size:
            break
        last = page[-1]
        page_query = query.where(
            or_(
                Conversation.last_message_at > last.last_message_at,
                and_(
                    Conversation.last_message_at == last.last_message_at,
                    Conversation.id > last.id,
                ),
            )
        )
    return candidates


def is_still_eligible(rule: RuleConfig, conversation: Conversation, now: datetime) -> bool:
    """Same predicate as the scan, for a conversation re-read under its lock."""
    if conversation.tenant_id != rule.tenant_id:
        return False
    if conversation.status not in OPEN_STATUSES:
        return False
    last = as_utc(conversation.last_message_at)
    if last is None or last > now - timedelta(minutes=rule.trigger_minutes):
        return False
    if conversation.agent_active:
        return rule.apply_to_agent_active
    return rule.apply_to_human_owned
