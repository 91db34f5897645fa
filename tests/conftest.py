"""
tests/conftest.py -- Shared test fixtures for RackGuard integration tests.

This module provides:
  - _make_test_stores(): fresh session store + isolated in-memory inventory DB
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - web_client: TestClient with follow_redirects=False for web route tests
  - api_client: TestClient with a valid X-API-Key header preset
  - login: helper that walks GET /login -> POST /login for a web client

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Every environment variable the app reads must be set before the first
get_settings() call -- the Settings singleton is cached for the process.
"""

from __future__ import annotations

import asyncio
import os
import re
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

import bcrypt

OPERATOR_USERNAME = "rackadmin"
OPERATOR_PASSWORD = "correct-horse-battery"
API_KEY = "rg_test_primary_key_0001"
SECOND_API_KEY = "rg_test_secondary_key_02"

# CRITICAL: Set configuration before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ["APP_KEY"] = "t" * 64
os.environ["AUTH_USERNAME"] = OPERATOR_USERNAME
os.environ["AUTH_PASSWORD_HASH"] = bcrypt.hashpw(OPERATOR_PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode()
os.environ["API_KEYS"] = f"{API_KEY}, {SECOND_API_KEY}"
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
os.environ["SESSION_BACKEND"] = "memory"

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from asgi import app
from core.config import Settings, get_settings
from inventory.store import MachineStore
from session.store import MemorySessionStore

CSRF_FIELD_RE = re.compile(r'name="_csrf_token" value="([0-9a-f]{64})"')


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(settings: Settings) -> tuple[MemorySessionStore, MachineStore]:
    """Create a session store and an isolated named shared-memory inventory DB."""
    inventory_url = f"sqlite:///file:test_inventory_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    return MemorySessionStore(ttl=settings.session_lifetime * 60), MachineStore(db_url=inventory_url)


def _patch_lifespan(session_store: MemorySessionStore, inventory: MachineStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.session_store = session_store
        app.state.inventory = inventory
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def start_client(target: FastAPI, **kwargs) -> Generator[TestClient, None, None]:
    """Run `target` under TestClient with fresh test stores."""
    session_store, inventory = _make_test_stores(target.state.settings)
    target.router.lifespan_context = _patch_lifespan(session_store, inventory)
    kwargs.setdefault("raise_server_exceptions", True)
    with TestClient(target, **kwargs) as client:
        yield client
    session_store.close()
    inventory.close()


def csrf_token_from(html: str) -> str:
    match = CSRF_FIELD_RE.search(html)
    assert match, "no CSRF hidden field in page"
    return match.group(1)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def web_client() -> Generator[TestClient, None, None]:
    """Function-scoped so every test starts with an empty cookie jar and store.

    follow_redirects=False is essential: we assert on redirect *locations*
    (e.g. 302 to /login), which are invisible once the client follows them.
    """
    yield from start_client(app, follow_redirects=False)


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """One TestClient per module for API tests, X-API-Key preset."""
    yield from start_client(app, headers={"X-API-Key": API_KEY})


@pytest.fixture
def login() -> Callable[..., object]:
    """Return login(client, remember=False, ...) -> the POST /login Response."""

    def _login(
        client: TestClient,
        remember: bool = False,
        password: str = OPERATOR_PASSWORD,
        username: str = OPERATOR_USERNAME,
    ):
        page = client.get("/login")
        form = {"_csrf_token": csrf_token_from(page.text), "username": username, "password": password}
        if remember:
            form["remember"] = "1"
        return client.post("/login", data=form)

    return _login
