"""FastAPI application factory.

create_app() returns a configured FastAPI instance. The lifespan manages
startup/shutdown: Redis, the relay listener, the outbox worker and the
database engine. Middleware, CORS, routers, the gateway socket and the
uploads mount are all registered here.
"""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from skillwave import __version__
from skillwave.api import api_router
from skillwave.api.health import router as health_router
from skillwave.config import settings
from skillwave.errors import PersistenceError

logger = structlog.get_logger()


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        "skillwave.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    # Redis is optional; without it fan-out stays in this process
    from skillwave.realtime.gateway import relay
    from skillwave.realtime.pubsub import close_redis, init_redis

    listener_task = None
    try:
        await init_redis()
        logger.info("skillwave.redis_connected", url=settings.redis_url)
        listener_task = asyncio.create_task(relay.run_listener())
    except Exception as e:
        logger.warning("skillwave.redis_unavailable", error=str(e))

    # Retry loop for outbox entries that failed their first delivery
    from skillwave.db.engine import async_session_factory, engine
    from skillwave.services.outbox import OutboxWorker, get_outbox_dispatcher

    outbox_worker = OutboxWorker(
        async_session_factory,
        get_outbox_dispatcher(),
        poll_interval=settings.outbox_poll_interval,
    )
    outbox_task = asyncio.create_task(outbox_worker.run_loop())

    yield

    logger.info("skillwave.shutdown")

    outbox_worker.stop()
    await _cancel(outbox_task)
    if listener_task is not None:
        await _cancel(listener_task)

    await close_redis()
    await engine.dispose()


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("skillwave.database_error", path=request.url.path, error=str(exc))
    err = PersistenceError("Database error")
    return JSONResponse(status_code=err.status_code, content={"detail": err.message})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="SkillWave",
        description="Peer-to-peer student help requests with real-time chat",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from skillwave.middleware.rate_limit import RateLimitMiddleware
    from skillwave.middleware.request_id import RequestIdMiddleware
    from skillwave.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    # REST API under /api, plus a bare /health for load balancers
    app.include_router(api_router)
    app.include_router(health_router, tags=["health"])

    # Gateway socket
    from skillwave.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    # Chat attachments
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")

    return app


# Default app instance (used by uvicorn: skillwave.main:app)
app = create_app()
