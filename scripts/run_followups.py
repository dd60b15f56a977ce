"""
Run the follow-up scheduler (and optionally the callback dispatcher) once.

Useful for cron setups without the in-process workers, and for checking
what a run would do against a staging database.

Usage:
    python scripts/run_followups.py
    python scripts/run_followups.py --callbacks
    python scripts/run_followups.py --json
"""
import argparse
import asyncio
import json
import logging

from reengage.config import get_settings
from reengage.database import dispose_engine
from reengage.utils.logging import configure_structured_logging
from reengage.utils.redis_client import close_redis
from reengage.workers.followup_scheduler import run_followup_rules
from reengage.workers.callback_dispatch import dispatch_due_callbacks

logger = logging.getLogger(__name__)


async def run(include_callbacks: bool = False) -> dict:
    results = {}
    try:
        if include_callbacks:
            results["callbacks"] = await dispatch_due_callbacks()
        results["followups"] = await run_followup_rules()
    finally:
        await dispose_engine()
        await close_redis()
    return results


def _print_report(results: dict) -> None:
    followups = results.get("followups", {})
    print(f"\n{'=' * 50}")
    print("FOLLOW-UP RUN")
    print(f"{'=' * 50}")
    print(f"  Sent:             {followups.get('sent_count', 0)}")
    print(f"  Rules processed:  {followups.get('rules_processed', 0)}")
    print(f"  Rules skipped:    {followups.get('rules_skipped', 0)}")
    print(f"  Candidates:       {followups.get('candidates', 0)}")
    print(f"  Failed:           {followups.get('failed', 0)}")
    print(f"  Unrecorded:       {followups.get('unrecorded', 0)}")
    for reason, count in sorted(followups.get("skipped", {}).items()):
        print(f"  Skipped ({reason}): {count}")

    if "callbacks" in results:
        callbacks = results["callbacks"]
        print("\nCALLBACKS")
        print(f"  Sent:       {callbacks.get('sent_count', 0)}")
        print(f"  Cancelled:  {callbacks.get('cancelled', 0)}")
        print(f"  Failed:     {callbacks.get('failed', 0)}")

    if followups.get("unrecorded"):
        print("\n[CRITICAL] Some follow-ups were sent but not recorded. Check event_logs.")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the follow-up scheduler once")
    parser.add_argument("--callbacks", action="store_true", help="Also dispatch due callbacks")
    parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")
    args = parser.parse_args()

    configure_structured_logging(get_settings().log_level)
    results = asyncio.run(run(include_callbacks=args.callbacks))

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        _print_report(results)

    return 1 if results.get("followups", {}).get("unrecorded") else 0


if __name__ == "__main__":
    raise SystemExit(main())
