"""Outbox — side effects recorded with the state change, delivered after it.

A request transition (accept, complete, ...) writes OutboxEntry rows in
the same transaction that commits the transition:

  pending → delivered | skipped   (handler succeeded / had nothing to do)
  pending → pending (attempts+1, backoff) → ... → failed

The handler that caused the entries drains them right after commit, so
users see emails and status events immediately. Anything that failed is
picked up again by OutboxWorker, which polls for due entries in the
background. Each entry is delivered on its own: one failing email never
blocks the status event queued next to it.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skillwave.config import settings
from skillwave.db.models import OutboxEntry

logger = structlog.get_logger()

EMAIL = "email"
REALTIME = "realtime"

# A handler returns True when it delivered, False when it skipped.
Handler = Callable[[dict[str, Any]], Awaitable[bool]]


class OutboxDispatcher:
    """Delivers outbox entries with per-kind handlers and retry bookkeeping."""

    def __init__(
        self,
        handlers: dict[str, Handler],
        *,
        max_attempts: int = 5,
        retry_base_seconds: float = 30.0,
    ):
        self.handlers = handlers
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds

    async def deliver(self, db: AsyncSession, entries: list[OutboxEntry]) -> None:
        """Attempt every entry once, then commit the bookkeeping."""
        if not entries:
            return
        for entry in entries:
            await self._deliver_one(entry)
        await db.commit()

    async def deliver_due(self, db: AsyncSession, limit: int = 50) -> int:
        """Deliver pending entries whose next attempt is due. Returns count tried."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            select(OutboxEntry)
            .where(OutboxEntry.status == "pending")
            .where(OutboxEntry.next_attempt_at <= now)
            .order_by(OutboxEntry.id)
            .limit(limit)
        )
        entries = list(result.scalars().all())
        await self.deliver(db, entries)
        return len(entries)

    async def _deliver_one(self, entry: OutboxEntry) -> None:
        handler = self.handlers.get(entry.kind)
        entry.attempts += 1
        now = datetime.now(timezone.utc)

        if handler is None:
            entry.status = "failed"
            entry.last_error = f"No handler for outbox kind '{entry.kind}'"
            logger.error("outbox.no_handler", entry_id=entry.id, kind=entry.kind)
            return

        try:
            delivered = await handler(entry.payload)
        except Exception as e:
            entry.last_error = str(e)
            if entry.attempts >= self.max_attempts:
                entry.status = "failed"
                logger.error(
                    "outbox.delivery_failed",
                    entry_id=entry.id,
                    kind=entry.kind,
                    attempts=entry.attempts,
                    error=str(e),
                )
            else:
                delay = self.retry_base_seconds * (2 ** (entry.attempts - 1))
                entry.next_attempt_at = now + timedelta(seconds=delay)
                logger.warning(
                    "outbox.delivery_retry",
                    entry_id=entry.id,
                    kind=entry.kind,
                    attempts=entry.attempts,
                    retry_in=delay,
                    error=str(e),
                )
            return

        entry.status = "delivered" if delivered else "skipped"
        entry.delivered_at = now
        entry.last_error = None


class OutboxService:
    """Collects side-effect intents for the current unit of work."""

    def __init__(self, db: AsyncSession, dispatcher: Optional[OutboxDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher
        self._pending: list[OutboxEntry] = []

    async def enqueue(self, kind: str, payload: dict[str, Any]) -> OutboxEntry:
        entry = OutboxEntry(
            kind=kind,
            payload=payload,
            status="pending",
            attempts=0,
            next_attempt_at=datetime.now(timezone.utc),
        )
        self.db.add(entry)
        self._pending.append(entry)
        return entry

    async def email(self, to: Optional[str], subject: str, text: str) -> Optional[OutboxEntry]:
        if not to:
            return None
        return await self.enqueue(EMAIL, {"to": to, "subject": subject, "text": text})

    async def realtime(self, envelope: dict[str, Any]) -> OutboxEntry:
        return await self.enqueue(REALTIME, envelope)

    async def flush(self) -> None:
        """Deliver what this unit of work enqueued. Call after commit."""
        pending, self._pending = self._pending, []
        if self.dispatcher is None or not pending:
            return
        await self.dispatcher.deliver(self.db, pending)


# ─── Wiring ─────────────────────────────────────────────


def build_dispatcher(email_sender, relay) -> OutboxDispatcher:
    """Dispatcher with the production handlers: SMTP email + relay fan-out."""

    async def send_email(payload: dict[str, Any]) -> bool:
        return await email_sender.send(payload["to"], payload["subject"], payload["text"])

    async def send_realtime(payload: dict[str, Any]) -> bool:
        await relay.dispatch(payload)
        return True

    return OutboxDispatcher(
        {EMAIL: send_email, REALTIME: send_realtime},
        max_attempts=settings.outbox_max_attempts,
        retry_base_seconds=settings.outbox_retry_base_seconds,
    )


_dispatcher: Optional[OutboxDispatcher] = None


def get_outbox_dispatcher() -> OutboxDispatcher:
    """FastAPI dependency — the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        from skillwave.realtime.gateway import relay
        from skillwave.services.email_service import EmailSender

        _dispatcher = build_dispatcher(EmailSender.from_settings(), relay)
    return _dispatcher


class OutboxWorker:
    """Background retry loop for entries that failed their first delivery.

    Runs inside the FastAPI lifespan, like any other long-lived task.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        dispatcher: OutboxDispatcher,
        poll_interval: float = 10.0,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval
        self._running = False

    async def run_once(self) -> int:
        async with self.session_factory() as db:
            return await self.dispatcher.deliver_due(db)

    async def run_loop(self) -> None:
        self._running = True
        logger.info("outbox.worker_started", poll_interval=self.poll_interval)
        while self._running:
            try:
                tried = await self.run_once()
                if tried:
                    logger.info("outbox.worker_pass", tried=tried)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("outbox.worker_error", error=str(e))
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        self._running = False
