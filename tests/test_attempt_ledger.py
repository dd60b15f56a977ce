"""
Tests for reengage/services/attempt_ledger.py - skip reasons and ordinals.
"""
import uuid
from datetime import datetime, timedelta, timezone

from reengage.models.attempt import FollowupAttempt
from reengage.models.pipeline import Deal, Stage
from reengage.services.attempt_ledger import (
    SKIP_EXHAUSTED,
    SKIP_LEAD_REPLIED,
    SKIP_STAGE_DISABLED,
    SKIP_STAGE_NOT_TARGETED,
    SKIP_TOO_SOON,
    check_attempt,
    get_latest_attempt,
)
from reengage.services.rule_store import validate_rule

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
NOW = T0 + timedelta(days=3)


async def _add_attempt(db, world, number, sent_at):
    db.add(FollowupAttempt(
        rule_id=world.rule.id,
        conversation_id=world.conversation.id,
        attempt_number=number,
        sent_at=sent_at,
        message="Ainda por aí?",
    ))
    await db.commit()


async def _place_in_stage(db, world, followup_enabled=True, status="open"):
    stage = Stage(id=uuid.uuid4(), tenant_id=world.tenant.id, name="Visit", followup_enabled=followup_enabled)
    deal = Deal(
        id=uuid.uuid4(), tenant_id=world.tenant.id, contact_id=world.contact.id,
        stage_id=stage.id, status=status,
    )
    db.add_all([stage, deal])
    await db.commit()
    return stage


class TestCheckAttempt:
    async def test_first_attempt(self, db, seed):
        world = await seed(db)

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.proceed is True
        assert decision.attempt_number == 1
        assert decision.reason is None

    async def test_lead_replied(self, db, seed):
        world = await seed(db, last_message_direction="inbound")

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.proceed is False
        assert decision.reason == SKIP_LEAD_REPLIED

    async def test_next_ordinal_after_interval(self, db, seed):
        world = await seed(db)
        await _add_attempt(db, world, 1, NOW - timedelta(minutes=1440))

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.proceed is True
        assert decision.attempt_number == 2

    async def test_too_soon(self, db, seed):
        world = await seed(db)
        await _add_attempt(db, world, 1, NOW - timedelta(minutes=1439))

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.reason == SKIP_TOO_SOON

    async def test_zero_interval_never_too_soon(self, db, seed):
        world = await seed(db, min_interval_minutes=0)
        await _add_attempt(db, world, 1, NOW)

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.attempt_number == 2

    async def test_exhausted(self, db, seed):
        world = await seed(db, max_attempts=2)
        await _add_attempt(db, world, 1, NOW - timedelta(days=3))
        await _add_attempt(db, world, 2, NOW - timedelta(days=2))

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.reason == SKIP_EXHAUSTED

    async def test_lineages_are_per_rule(self, db, seed):
        world = await seed(db)
        await _add_attempt(db, world, 1, NOW - timedelta(hours=1))
        other = validate_rule(world.rule).model_copy(update={"id": uuid.uuid4()})

        decision = await check_attempt(db, other, world.conversation, NOW)

        assert decision.proceed is True
        assert decision.attempt_number == 1

    async def test_latest_attempt_is_highest_ordinal(self, db, seed):
        world = await seed(db)
        await _add_attempt(db, world, 2, NOW - timedelta(days=1))
        await _add_attempt(db, world, 1, NOW - timedelta(days=2))

        latest = await get_latest_attempt(db, world.rule.id, world.conversation.id)

        assert latest.attempt_number == 2


class TestStageChecks:
    async def test_stage_with_followups_disabled(self, db, seed):
        world = await seed(db)
        await _place_in_stage(db, world, followup_enabled=False)

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.reason == SKIP_STAGE_DISABLED

    async def test_closed_deal_is_ignored(self, db, seed):
        world = await seed(db)
        await _place_in_stage(db, world, followup_enabled=False, status="lost")

        decision = await check_attempt(db, validate_rule(world.rule), world.conversation, NOW)

        assert decision.proceed is True

    async def test_targeted_stage(self, db, seed):
        world = await seed(db)
        stage = await _place_in_stage(db, world)
        rule = validate_rule(world.rule).model_copy(update={"stage_ids": [stage.id]})

        decision = await check_attempt(db, rule, world.conversation, NOW)

        assert decision.proceed is True

    async def test_stage_not_targeted(self, db, seed):
        world = await seed(db)
        await _place_in_stage(db, world)
        rule = validate_rule(world.rule).model_copy(update={"stage_ids": [uuid.uuid4()]})

        decision = await check_attempt(db, rule, world.conversation, NOW)

        assert decision.reason == SKIP_STAGE_NOT_TARGETED

    async def test_targeting_rule_skips_contacts_without_deal(self, db, seed):
        world = await seed(db)
        rule = validate_rule(world.rule).model_copy(update={"stage_ids": [uuid.uuid4()]})

        decision = await check_attempt(db, rule, world.conversation, NOW)

        assert decision.reason == SKIP_STAGE_NOT_TARGETED
