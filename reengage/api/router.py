"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from reengage.api.followups import router as followups_router
from reengage.api.conversations import router as conversations_router
from reengage.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(followups_router)
api_router.include_router(conversations_router)
api_router.include_router(health_router)
