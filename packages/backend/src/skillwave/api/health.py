"""Health check endpoint.

Liveness plus database reachability. Mounted at /api/health and at /health.

Redis is optional (without it gateway fan-out stays in-process and rate
limiting is off), so its state is reported but never degrades the status.
"""

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from skillwave import __version__
from skillwave.db.engine import engine
from skillwave.realtime import pubsub

router = APIRouter()


async def _database_state() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        return f"error: {e}"
    return "ok"


async def _redis_state() -> str:
    if not pubsub.redis_available():
        return "disabled"
    try:
        await pubsub.get_redis().ping()
    except Exception as e:
        return f"error: {e}"
    return "ok"


@router.get("/health")
async def health_check():
    database = await _database_state()
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "server": "ok",
        "version": __version__,
        "database": database,
        "redis": await _redis_state(),
    }
