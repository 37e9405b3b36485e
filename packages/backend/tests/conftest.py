"""Test fixtures — one throwaway SQLite database per test.

Each test gets its own database file (sqlite+aiosqlite) with every table
created, so tests are isolated without savepoint tricks and the gateway
can open its own sessions exactly as it does in production.

The app's dependencies are overridden through app.dependency_overrides:
- get_db → a session from the per-test factory
- get_current_user → whoever the test is acting as (act_as fixture)
- get_outbox_dispatcher → handlers that record emails and deliver
  real-time envelopes to an in-memory registry
- get_upload_store → a store under tmp_path
"""

import os
import tempfile

# Settings are read at import time; point them at throwaway locations
# before anything from skillwave is imported.
_TMP = tempfile.mkdtemp(prefix="skillwave-tests-")
os.environ.setdefault("SKILLWAVE_DATABASE_URL", f"sqlite+aiosqlite:///{_TMP}/app.db")
os.environ.setdefault("SKILLWAVE_UPLOAD_DIR", os.path.join(_TMP, "uploads"))
os.environ.setdefault("SKILLWAVE_REDIS_URL", "redis://127.0.0.1:1/0")

import uuid
from dataclasses import dataclass, field
from typing import Optional

import pytest
import pytest_asyncio
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from skillwave.auth.dependencies import CurrentIdentity, get_current_user
from skillwave.auth.jwt import create_access_token
from skillwave.db.engine import get_db
from skillwave.db.models import Base, Category, HelpRequest, User
from skillwave.main import app
from skillwave.realtime.presence import PresenceRegistry
from skillwave.realtime.relay import NotificationRelay
from skillwave.services.outbox import EMAIL, REALTIME, OutboxDispatcher, get_outbox_dispatcher
from skillwave.services.upload_service import UploadStore, get_upload_store


# ─── Fakes ──────────────────────────────────────────────


@dataclass(eq=False)
class FakeConnection:
    """In-memory stand-in for a WebSocket connection."""

    user_id: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    sent: list = field(default_factory=list)
    fail: bool = False

    async def send(self, event: str, data: Optional[dict] = None) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append((event, data or {}))

    def events(self, name: str) -> list[dict]:
        return [data for event, data in self.sent if event == name]


class RecordingEmail:
    def __init__(self):
        self.sent: list[dict] = []

    async def __call__(self, payload: dict) -> bool:
        self.sent.append(payload)
        return True

    def to(self, address: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == address]


# ─── Database ───────────────────────────────────────────


@pytest_asyncio.fixture()
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ─── Real-time + outbox ─────────────────────────────────


@pytest.fixture()
def registry():
    return PresenceRegistry()


@pytest.fixture()
def relay(registry):
    return NotificationRelay(registry)


@pytest.fixture()
def emails():
    return RecordingEmail()


@pytest.fixture()
def dispatcher(emails, relay):
    async def deliver_realtime(payload: dict) -> bool:
        await relay.deliver(payload)
        return True

    return OutboxDispatcher(
        {EMAIL: emails, REALTIME: deliver_realtime},
        max_attempts=3,
        retry_base_seconds=1.0,
    )


@pytest.fixture()
def make_conn():
    def _make(user, fail: bool = False) -> FakeConnection:
        user_id = str(user.id) if hasattr(user, "id") else str(user)
        return FakeConnection(user_id=user_id, fail=fail)

    return _make


# ─── Users, categories, requests ──────────────────────────────


@pytest.fixture()
def make_user(db_session):
    async def _make(name: str = "Alice", email: Optional[str] = None) -> User:
        user = User(
            email=email or f"{name.lower()}-{uuid.uuid4().hex[:6]}@example.com",
            name=name,
            google_id=f"g-{uuid.uuid4().hex[:10]}",
            bio="",
            skills=[],
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture()
def make_category(db_session):
    async def _make(name: str = "Mathematics") -> Category:
        cat = Category(name=name, description=f"{name} help", icon="help")
        db_session.add(cat)
        await db_session.commit()
        return cat

    return _make


@pytest.fixture()
def make_request(db_session):
    async def _make(
        requester: User,
        category: Category,
        *,
        title: str = "Help with recursion",
        helper: Optional[User] = None,
        status: str = "open",
    ) -> HelpRequest:
        req = HelpRequest(
            requester_id=requester.id,
            category_id=category.id,
            title=title,
            description="Stuck on a recursive tree walk",
            skills_needed=[],
            helper_id=helper.id if helper else None,
            status=status,
        )
        db_session.add(req)
        await db_session.commit()
        return req

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token(str(user.id), email=user.email, name=user.name)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ─── HTTP clients ───────────────────────────────────────


class Acting:
    """Who the overridden get_current_user returns (None → 401)."""

    def __init__(self):
        self.user: Optional[User] = None

    def __call__(self, user: Optional[User]) -> None:
        self.user = user


@pytest.fixture()
def act_as():
    return Acting()


def _install_overrides(session_factory, dispatcher, tmp_path):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_outbox_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_upload_store] = lambda: UploadStore(
        tmp_path / "uploads", max_bytes=1024 * 1024
    )


@pytest_asyncio.fixture()
async def client(session_factory, dispatcher, act_as, tmp_path):
    """HTTP client with get_db, auth, outbox and uploads overridden."""

    def override_get_current_user():
        if act_as.user is None:
            raise HTTPException(status_code=401, detail="Access token required")
        return CurrentIdentity(
            user_id=str(act_as.user.id),
            email=act_as.user.email,
            name=act_as.user.name,
        )

    _install_overrides(session_factory, dispatcher, tmp_path)
    app.dependency_overrides[get_current_user] = override_get_current_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(session_factory, dispatcher, tmp_path):
    """HTTP client WITHOUT the auth override — real JWT verification."""
    _install_overrides(session_factory, dispatcher, tmp_path)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
