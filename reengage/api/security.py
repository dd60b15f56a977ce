"""
Shared-secret guard for the service endpoints (cron trigger, handoff API).
Callers send the secret in the X-Cron-Secret header.
"""
import hmac
import logging
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Cron-Secret"


def verify_cron_secret(request: Request) -> bool:
    from reengage.config import get_settings
    settings = get_settings()
    expected = settings.cron_secret

    if not expected:
        if settings.app_env == "production":
            logger.error("CRON_SECRET not set in production - rejecting unauthenticated call.")
            return False
        logger.warning("CRON_SECRET not set - accepting unauthenticated call outside production.")
        return True

    token = request.headers.get(SECRET_HEADER, "")
    if not token:
        return False
    return hmac.compare_digest(token, expected)


async def require_cron_secret(request: Request) -> None:
    """FastAPI dependency."""
    if not verify_cron_secret(request):
        raise HTTPException(status_code=401, detail="Invalid or missing service secret")
