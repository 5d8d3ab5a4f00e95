"""
tests/conftest.py -- Shared test fixtures for the campus services.

This module provides:
  - clean_env: strips every variable the resolver could read, restores the
    full environment afterwards and clears the settings cache
  - _make_test_store(): creates an isolated in-memory user store
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient for the evaluation service plus its settings

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import create_app
from auth.store import UserStore
from core.config import EvaluationSettings, ServiceSettings, clear_settings_cache
from core.env import SERVICES

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"

# Every unprefixed name a settings field or the deployment check reads.
_RESOLVED_NAMES = {
    "NODE_ENV",
    "APP_ENV",
    "LOG_LEVEL",
    "PGUSER",
    "DB_USER",
    "PGPASSWORD",
    "DB_PASSWORD",
    "PGHOST",
    "DB_HOST",
    "PGDATABASE",
    "DB_NAME",
    "PGPORT",
    "DB_PORT",
    "PGSSL",
    "DB_SSL",
    "DATABASE_URL",
    "DB_CONNECTION_STRING",
    "PG_MAX_CONNECTIONS",
    "PG_IDLE_TIMEOUT",
    "PG_CONNECTION_TIMEOUT",
    "PG_CONNECTION_RETRIES",
    "JWT_SECRET",
    "JWT_EXPIRES_IN",
    "PORT",
    "FRONTEND_URL",
}
_PREFIXES = tuple(prefix for prefix, _ in SERVICES.values())


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Run a test against an environment with no configuration variables set.

    load_sources() writes straight into os.environ, which monkeypatch cannot
    undo, so the whole mapping is snapshotted and restored instead.
    """
    saved = dict(os.environ)
    for key in list(os.environ):
        if key in _RESOLVED_NAMES or key.startswith(_PREFIXES):
            del os.environ[key]
    clear_settings_cache()
    yield
    os.environ.clear()
    os.environ.update(saved)
    clear_settings_cache()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'ratelimit').
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore):
    """Return a lifespan that installs the pre-created test store."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        yield

    return test_lifespan


def make_client(db_suffix: str) -> tuple[TestClient, ServiceSettings, UserStore]:
    settings = EvaluationSettings(
        jwt_secret=TEST_SECRET,
        jwt_expires_in="1h",
        environment="development",
        frontend_url="http://frontend.test",
    )
    user_store = _make_test_store(db_suffix)
    app = create_app(settings)
    app.router.lifespan_context = _patch_lifespan(user_store)
    limiter.reset()
    return TestClient(app, raise_server_exceptions=True), settings, user_store


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, ServiceSettings], None, None]:
    """Yield (client, settings) for API integration tests."""
    client, settings, user_store = make_client("api")
    with client:
        yield client, settings
    user_store.close()


@pytest.fixture(scope="module")
def limited_client() -> Generator[TestClient, None, None]:
    """Yield a client with its own store and a freshly reset rate limiter."""
    client, _, user_store = make_client("ratelimit")
    with client:
        yield client
    user_store.close()
