"""
reengage - conversation re-engagement scheduler and handoff service.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from reengage.config import get_settings
from reengage.api.router import api_router
from reengage.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("reengage")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("reengage starting up (env=%s)", settings.app_env)

    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY not set - tenant API keys and channel tokens are read as plain text. "
            "Generate a Fernet key for production."
        )
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not set - service endpoints are unauthenticated outside production.")
    if not settings.ai_platform_api_key:
        logger.warning("AI_PLATFORM_API_KEY not set - generated follow-ups have no fallback provider.")

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    if settings.workers_enabled:
        from reengage.workers.followup_scheduler import run_followup_scheduler
        worker_tasks.append(asyncio.create_task(run_followup_scheduler()))
        logger.info("Follow-up scheduler started")

        from reengage.workers.callback_dispatch import run_callback_dispatcher
        worker_tasks.append(asyncio.create_task(run_callback_dispatcher()))
        logger.info("Callback dispatcher started")
    else:
        logger.info("Background workers disabled (WORKERS_ENABLED=false)")

    yield

    # Graceful shutdown - give workers time to finish current work
    logger.info("reengage shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    from reengage.database import dispose_engine
    from reengage.utils.redis_client import close_redis
    await dispose_engine()
    await close_redis()
    logger.info("reengage shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="reengage",
        description="Conversation re-engagement scheduler and handoff state machine",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()
