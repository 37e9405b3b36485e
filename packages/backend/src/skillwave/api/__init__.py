"""API route aggregation.

All routers registered here get mounted in main.py under /api.

Auth is applied per route rather than per router: request listing,
detail, categories and /ai-help are public, so the routers mix open and
protected handlers.
"""

from fastapi import APIRouter

from skillwave.api.ai import router as ai_router
from skillwave.api.auth import router as auth_router
from skillwave.api.health import router as health_router
from skillwave.api.messages import router as messages_router
from skillwave.api.requests import router as requests_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(requests_router, tags=["requests"])
api_router.include_router(messages_router, tags=["messages"])
api_router.include_router(ai_router, tags=["ai"])
