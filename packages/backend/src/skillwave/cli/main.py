"""SkillWave CLI — bootstrap the database, run the server, peek at the API.

Usage:
    skillwave init-db                          # Create tables
    skillwave seed                             # Insert the default categories
    skillwave serve --reload                   # Run the API + gateway
    skillwave health                           # Ask a running server
    skillwave requests -s open                 # List help requests
    skillwave categories                       # List categories
    skillwave outbox                           # Retry due outbox entries now
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3001"


def _api_url() -> str:
    return os.environ.get("SKILLWAVE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the SkillWave backend."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Inside an already running loop (CliRunner under pytest-asyncio) the
    coroutine is run on a worker thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) or "—")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    colors = {
        "open": "green",
        "in_progress": "yellow",
        "completed": "blue",
        "cancelled": "red",
        "healthy": "green",
        "degraded": "red",
    }
    return colors.get(status, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="skillwave")
def main():
    """SkillWave — peer-to-peer student help requests."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@main.command("init-db")
def init_db():
    """Create every table that does not exist yet."""
    _run(_init_db_impl())


async def _init_db_impl():
    from skillwave.db.engine import engine
    from skillwave.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    click.secho("Tables created.", fg="green")


@main.command()
def seed():
    """Insert the default categories (existing ones are kept)."""
    _run(_seed_impl())


async def _seed_impl():
    from skillwave.db.engine import async_session_factory, engine
    from skillwave.services.request_service import RequestService

    async with async_session_factory() as db:
        added = await RequestService(db).seed_categories()
    await engine.dispose()
    click.secho(f"Seeded {added} categories.", fg="green")


@main.command()
def outbox():
    """Deliver every due outbox entry once, without waiting for the worker."""
    _run(_outbox_impl())


async def _outbox_impl():
    from skillwave.db.engine import async_session_factory, engine
    from skillwave.services.outbox import OutboxWorker, get_outbox_dispatcher

    worker = OutboxWorker(async_session_factory, get_outbox_dispatcher())
    tried = await worker.run_once()
    await engine.dispose()
    click.echo(f"Tried {tried} outbox entries.")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: settings.host)")
@click.option("--port", "-p", type=int, default=None, help="Port (default: settings.port)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and the real-time gateway with uvicorn."""
    import uvicorn

    from skillwave.config import settings

    uvicorn.run(
        "skillwave.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# API queries
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Show the health of a running server."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        r = await c.get("/api/health")
        r.raise_for_status()
        data = r.json()

    click.secho(data["status"], fg=_status_color(data["status"]), bold=True)
    for key in ("server", "database", "redis"):
        click.echo(f"  {key:10s} {data.get(key, '—')}")


@main.command()
@click.option("--status", "-s", "status_filter", help="Filter by status")
@click.option("--category", "-c", help="Filter by category name")
@click.option("--search", "-q", help="Search title and description")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def requests(
    status_filter: Optional[str],
    category: Optional[str],
    search: Optional[str],
    as_json: bool,
):
    """List help requests, newest first."""
    _run(_requests_impl(status_filter, category, search, as_json))


async def _requests_impl(
    status_filter: Optional[str],
    category: Optional[str],
    search: Optional[str],
    as_json: bool,
):
    params: dict = {}
    if status_filter:
        params["status"] = status_filter
    if category:
        params["category"] = category
    if search:
        params["search"] = search

    async with _client() as c:
        r = await c.get("/api/requests", params=params)
        r.raise_for_status()
        reqs = r.json()

    if as_json:
        click.echo(_pretty_json(reqs))
        return
    if not reqs:
        click.echo("No requests found.")
        return

    rows = [
        {
            "id": req["id"][:8],
            "status": req["status"],
            "urgency": req["urgency"],
            "category": req["category"]["name"],
            "requester": req["requester"]["name"],
            "title": req["title"],
        }
        for req in reqs
    ]
    click.secho(f"Requests ({len(rows)}):", bold=True)
    click.echo()
    _print_table(rows, [
        ("ID", "id", 8),
        ("Status", "status", 12),
        ("Urgency", "urgency", 8),
        ("Category", "category", 12),
        ("Requester", "requester", 16),
        ("Title", "title", 50),
    ])


@main.command()
def categories():
    """List request categories."""
    _run(_categories_impl())


async def _categories_impl():
    async with _client() as c:
        r = await c.get("/api/requests/categories/all")
        r.raise_for_status()
        cats = r.json()

    if not cats:
        click.echo("No categories. Run `skillwave seed`.")
        return
    _print_table(cats, [
        ("Name", "name", 14),
        ("Icon", "icon", 10),
        ("Description", "description", 60),
    ])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
