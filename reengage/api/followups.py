"""
Trigger endpoints for the scheduled jobs.

- POST /api/v1/followups/run            - one follow-up scheduler run
- POST /api/v1/followups/callbacks/run  - one callback dispatch run
"""
import logging
from fastapi import APIRouter, Depends, HTTPException

from reengage.api.security import require_cron_secret
from reengage.workers.followup_scheduler import run_followup_rules
from reengage.workers.callback_dispatch import dispatch_due_callbacks

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/followups",
    tags=["followups"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post("/run")
async def trigger_followup_run():
    """Run every active rule once. Returns {"sent_count": n, ...counters}."""
    try:
        return await run_followup_rules()
    except Exception as e:
        logger.error("Follow-up run aborted: %s", str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Follow-up run failed")


@router.post("/callbacks/run")
async def trigger_callback_run():
    try:
        return await dispatch_due_callbacks()
    except Exception as e:
        logger.error("Callback run aborted: %s", str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Callback run failed")
