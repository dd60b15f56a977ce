"""
Follow-up scheduler - re-engages conversations that went silent.
Runs every FOLLOWUP_POLL_INTERVAL_SECONDS (default 5 minutes) and on demand
through POST /api/v1/followups/run.

Per run: rules one at a time; each rule's candidates concurrently
(bounded by a semaphore), every conversation in its own session and
under its conversation lock. One conversation failing never stops the run.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from reengage.database import async_session_factory
from reengage.models.conversation import Conversation
from reengage.models.rule import STRATEGY_MODEL_GENERATED
from reengage.schemas.rule_config import RuleConfig
from reengage.services.arbiter import has_pending_agent_callback
from reengage.services.attempt_ledger import check_attempt
from reengage.services.composer import compose_followup, CompositionError
from reengage.services.credentials import CredentialResolver
from reengage.services.delivery import (
    resolve_route,
    deliver,
    record_followup,
    log_unrecorded,
    DeliveryError,
    BookkeepingError,
)
from reengage.services.eligibility import find_eligible_conversations, is_still_eligible
from reengage.services.rule_store import load_active_rules, validate_rule, ConfigurationError
from reengage.utils.alerting import send_alert, AlertType
from reengage.utils.locks import conversation_lock, LockTimeoutError
from reengage.utils.logging import generate_correlation_id, set_correlation_id
from reengage.utils.metrics import RunReport, Timer
from reengage.utils.redis_client import write_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "followup_scheduler"

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_UNRECORDED = "unrecorded"
SKIP_LOCKED = "locked"
SKIP_NOT_ELIGIBLE = "no_longer_eligible"
SKIP_CALLBACK_PENDING = "agent_callback_pending"
SKIP_COMPOSITION_FAILED = "composition_failed"
SKIP_DELIVERY_FAILED = "delivery_failed"


async def run_followup_scheduler():
    """Main loop - run all rules, then sleep."""
    from reengage.config import get_settings
    interval = get_settings().followup_poll_interval_seconds
    logger.info("Follow-up scheduler started (poll every %ds)", interval)

    while True:
        try:
            await run_followup_rules()
        except Exception as e:
            logger.error("Follow-up scheduler error: %s", str(e), exc_info=True)
            await send_alert(
                AlertType.FOLLOWUP_RUN_FAILED,
                f"Follow-up run aborted: {e}",
            )

        await write_heartbeat(WORKER_NAME)
        await asyncio.sleep(interval)


async def run_followup_rules(
    session_factory: Optional[Callable] = None,
    now: Optional[datetime] = None,
    resolver: Optional[CredentialResolver] = None,
) -> dict:
    """
    One full pass over every active rule.

    Returns the run report; "sent_count" is the number of follow-ups
    delivered and recorded. Raises only if the rules cannot be listed.
    """
    from reengage.config import get_settings
    settings = get_settings()

    session_factory = session_factory or async_session_factory
    now = now or datetime.now(timezone.utc)
    resolver = resolver or CredentialResolver.from_settings()
    set_correlation_id(generate_correlation_id())

    report = RunReport()
    timer = Timer().start()

    async with session_factory() as db:
        rules = await load_active_rules(db)

    for rule in rules:
        try:
            config = validate_rule(rule)
        except ConfigurationError as e:
            report.rules_skipped += 1
            logger.warning(str(e), extra={"rule_id": str(rule.id)})
            continue

        try:
            await _process_rule(config, session_factory, resolver, now, report, settings)
            report.rules_processed += 1
        except Exception as e:
            # Scan failure for one rule: the remaining rules still run
            report.rules_skipped += 1
            logger.error(
                "Rule %s failed: %s", str(config.id)[:8], str(e),
                extra={"rule_id": str(config.id)},
                exc_info=True,
            )

    report.duration_ms = timer.stop()
    logger.info(
        "Follow-up run finished: %d sent, %d rules, %d skipped conversations, %d failed, %d unrecorded (%dms)",
        report.sent_count, report.rules_processed, sum(report.skipped.values()),
        report.failed, report.unrecorded, report.duration_ms,
    )
    return report.as_dict()


async def _process_rule(
    rule: RuleConfig,
    session_factory: Callable,
    resolver: CredentialResolver,
    now: datetime,
    report: RunReport,
    settings,
) -> None:
    async with session_factory() as db:
        if rule.strategy == STRATEGY_MODEL_GENERATED:
            await resolver.load_tenant(db, rule.tenant_id)
        candidates = await find_eligible_conversations(
            db, rule, now, page_size=settings.followup_scan_page_size,
        )

    report.candidates += len(candidates)
    if not candidates:
        return

    logger.info(
        "Rule %s: %d candidate conversations", str(rule.id)[:8], len(candidates),
        extra={"rule_id": str(rule.id), "tenant_id": str(rule.tenant_id)},
    )

    semaphore = asyncio.Semaphore(settings.followup_max_concurrency)

    async def _guarded(conversation_id: uuid.UUID) -> str:
        async with semaphore:
            return await process_conversation(
                rule, conversation_id, session_factory, resolver, now,
            )

    outcomes = await asyncio.gather(*(_guarded(c.id) for c in candidates))

    for outcome in outcomes:
        if outcome == OUTCOME_SENT:
            report.sent_count += 1
        elif outcome == OUTCOME_FAILED:
            report.failed += 1
        elif outcome == OUTCOME_UNRECORDED:
            report.unrecorded += 1
        else:
            report.skip(outcome)


async def process_conversation(
    rule: RuleConfig,
    conversation_id: uuid.UUID,
    session_factory: Callable,
    resolver: CredentialResolver,
    now: datetime,
) -> str:
    """
    Check, compose, send and record one follow-up. Never raises.
    Returns "sent", "failed", "unrecorded" or a skip reason.
    """
    from reengage.config import get_settings
    settings = get_settings()
    log_extra = {"rule_id": str(rule.id), "conversation_id": str(conversation_id)}

    try:
        async with conversation_lock(
            str(conversation_id),
            ttl=settings.followup_lock_ttl_seconds,
            wait=settings.followup_lock_wait_seconds,
        ):
            async with session_factory() as db:
                conversation = await db.get(Conversation, conversation_id)
                if conversation is None or not is_still_eligible(rule, conversation, now):
                    return SKIP_NOT_ELIGIBLE

                if await has_pending_agent_callback(db, conversation_id):
                    logger.debug("Agent callback pending, rule skipped", extra=log_extra)
                    return SKIP_CALLBACK_PENDING

                decision = await check_attempt(db, rule, conversation, now)
                if not decision.proceed:
                    logger.debug("Ledger skip: %s", decision.reason, extra=log_extra)
                    return decision.reason

                try:
                    composed = await compose_followup(db, rule, conversation_id, resolver)
                except CompositionError as e:
                    logger.warning(str(e), extra=log_extra)
                    return SKIP_COMPOSITION_FAILED

                try:
                    connection, contact = await resolve_route(db, conversation)
                    channel_result = await deliver(connection, contact.phone, composed.text)
                except DeliveryError as e:
                    logger.warning(
                        "Follow-up not delivered: %s", str(e),
                        extra={**log_extra, "attempt": decision.attempt_number},
                    )
                    return SKIP_DELIVERY_FAILED

                try:
                    await record_followup(
                        db, rule, conversation, decision.attempt_number,
                        composed.text, now, channel_result,
                    )
                except BookkeepingError as e:
                    logger.critical(str(e), extra={**log_extra, "attempt": decision.attempt_number})
                    await send_alert(
                        AlertType.FOLLOWUP_UNRECORDED,
                        str(e),
                        severity="critical",
                        extra={"rule_id": str(rule.id), "conversation_id": str(conversation_id)},
                        dedup_key=str(conversation_id),
                    )
                    await log_unrecorded(
                        session_factory, rule.tenant_id, conversation_id,
                        "followup_unrecorded", str(e),
                    )
                    return OUTCOME_UNRECORDED

                logger.info(
                    "Follow-up sent (attempt %d, %s)", decision.attempt_number, composed.source,
                    extra={**log_extra, "attempt": decision.attempt_number, "provider": channel_result.get("provider")},
                )
                return OUTCOME_SENT
    except LockTimeoutError:
        logger.info("Conversation busy, retry next run", extra=log_extra)
        return SKIP_LOCKED
    except Exception as e:
        logger.error("Follow-up failed: %s", str(e), extra=log_extra, exc_info=True)
        return OUTCOME_FAILED
