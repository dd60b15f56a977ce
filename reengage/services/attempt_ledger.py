"""
Attempt ledger - decides whether a rule may send its next follow-up
to a conversation, and which ordinal that send carries.

Checks, in order:
1. lead_replied        last message came from the lead
2. stage_disabled      the contact's open deal sits in a stage with follow-ups off
3. stage_not_targeted  the rule targets stages and the deal is elsewhere
4. exhausted           latest ordinal already reached max_attempts
5. too_soon            latest attempt is younger than min_interval_minutes
Otherwise proceed with latest + 1 (or 1).
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.attempt import FollowupAttempt
from reengage.models.conversation import Conversation, DIRECTION_INBOUND
from reengage.models.pipeline import Deal, Stage, DEAL_OPEN
from reengage.schemas.rule_config import RuleConfig
from reengage.services.eligibility import as_utc

logger = logging.getLogger(__name__)

SKIP_LEAD_REPLIED = "lead_replied"
SKIP_STAGE_DISABLED = "stage_disabled"
SKIP_STAGE_NOT_TARGETED = "stage_not_targeted"
SKIP_EXHAUSTED = "exhausted"
SKIP_TOO_SOON = "too_soon"


@dataclass
class LedgerDecision:
    proceed: bool
    attempt_number: int = 0
    reason: Optional[str] = None

    @classmethod
    def skip(cls, reason: str) -> "LedgerDecision":
        return cls(proceed=False, reason=reason)


async def get_latest_attempt(
    db: AsyncSession,
    rule_id: uuid.UUID,
    conversation_id: uuid.UUID,
) -> Optional[FollowupAttempt]:
    result = await db.execute(
        select(FollowupAttempt)
        .where(
            FollowupAttempt.rule_id == rule_id,
            FollowupAttempt.conversation_id == conversation_id,
        )
        .order_by(FollowupAttempt.attempt_number.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_open_deal_stage(db: AsyncSession, contact_id: uuid.UUID) -> Optional[Stage]:
    """Stage of the contact's open deal, if any."""
    result = await db.execute(
        select(Stage)
        .join(Deal, Deal.stage_id == Stage.id)
        .where(Deal.contact_id == contact_id, Deal.status == DEAL_OPEN)
        .order_by(Deal.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def check_attempt(
    db: AsyncSession,
    rule: RuleConfig,
    conversation: Conversation,
    now: datetime,
) -> LedgerDecision:
    if conversation.last_message_direction == DIRECTION_INBOUND:
        return LedgerDecision.skip(SKIP_LEAD_REPLIED)

    stage = await get_open_deal_stage(db, conversation.contact_id)
    if stage is not None and not stage.followup_enabled:
        return LedgerDecision.skip(SKIP_STAGE_DISABLED)
    if rule.stage_ids and (stage is None or stage.id not in rule.stage_ids):
        return LedgerDecision.skip(SKIP_STAGE_NOT_TARGETED)

    latest = await get_latest_attempt(db, rule.id, conversation.id)
    if latest is None:
        return LedgerDecision(proceed=True, attempt_number=1)

    if latest.attempt_number >= rule.max_attempts:
        return LedgerDecision.skip(SKIP_EXHAUSTED)

    if now - as_utc(latest.sent_at) < timedelta(minutes=rule.min_interval_minutes):
        return LedgerDecision.skip(SKIP_TOO_SOON)

    return LedgerDecision(proceed=True, attempt_number=latest.attempt_number + 1)
