"""
tests/conftest.py -- Shared test fixtures for SessionGuard tests.

This module provides:
  - auth: every auth component wired on a fresh database (unit tests)
  - alice: a registered local user on that database
  - api_client: TestClient with a patched lifespan (integration tests)

Helpers (make_settings, make_database, RecordingMailer) live in support.py.

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

The DEBUG env var must be set before api.main is imported so get_settings()
auto-generates signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver, which TrustedHostMiddleware must accept.
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_auth_state
from auth.store import AuthDatabase
from core.config import Settings
from support import VALID_PASSWORD, RecordingMailer, make_database, make_settings

# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def auth(settings: Settings) -> Generator[SimpleNamespace, None, None]:
    """Every auth component, wired exactly as the app wires them, on a fresh DB."""
    db = make_database()
    state = SimpleNamespace()
    build_auth_state(state, settings, db, RecordingMailer())
    yield state
    db.close()


@pytest.fixture
def alice(auth: SimpleNamespace):
    """A registered local user."""
    return auth.auth_service.register("alice@example.com", VALID_PASSWORD, "Alice", "Liddell")


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, db: AuthDatabase, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test database and recording mailer into app.state so TestClient
    routes never touch the configured database or log real mail.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_auth_state(app.state, settings, db, mailer)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, SimpleNamespace], None, None]:
    """Yield (client, app.state) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory database. Rate
    limiting is off; tests that exercise it switch it on locally.
    """
    db = make_database()
    app.router.lifespan_context = _patch_lifespan(make_settings(), db, RecordingMailer())
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, app.state

    db.close()
