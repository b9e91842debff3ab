"""
tests/conftest.py -- Shared test fixtures for the feedback auth test suite.

This module provides:
  - FakeClock: a controllable clock injected wherever "now" matters
  - RecordingNotifier: captures issued reset tokens instead of logging them
  - store: an initialized AuthStore on a per-test SQLite file
  - _patch_lifespan(): wires a test store and services into app.state
  - api_client: TestClient for integration tests

Design: file-backed SQLite (under tmp_path), not :memory:. The store opens
several pooled connections and the concurrency tests run transactions on
them at the same time; every connection must see the same database.

The API store is created inside the patched lifespan so that it lives on
the TestClient's event loop, not on a loop owned by the fixture.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# Integration tests log in far more often than a real client would.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.main import app, install_services, settings
from auth.models import Credential, ResetToken
from auth.store import AuthStore
from auth.tokens import hash_password

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """ResetNotifier that keeps every (credential, token) pair it receives."""

    def __init__(self) -> None:
        self.sent: list[tuple[Credential, ResetToken]] = []

    async def send_reset(self, credential: Credential, reset_token: ResetToken) -> None:
        self.sent.append((credential, reset_token))

    def last_token_for(self, email: str) -> str:
        for credential, reset_token in reversed(self.sent):
            if credential.email == email:
                return reset_token.token
        raise AssertionError(f"no reset token sent to {email}")


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncIterator[AuthStore]:
    auth_store = AuthStore(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}")
    await auth_store.initialize()
    yield auth_store
    await auth_store.close()


@pytest_asyncio.fixture
async def user_id(store: AuthStore) -> str:
    """An account with email alice@example.com and password 'alicepass123'."""
    return await store.create_credential(
        Credential(email="alice@example.com", contact="+237690000001", hashed_password=hash_password("alicepass123"))
    )


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Builds the same services as the real lifespan (install_services) on an
    isolated test database and seeds one account.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        auth_store = AuthStore(db_url)
        await auth_store.initialize()
        install_services(app, auth_store, settings, notifier=notifier)
        app.state.reset_notifier = notifier
        app.state.seed_user_id = await auth_store.create_credential(
            Credential(email="testadmin@example.com", hashed_password=hash_password("testpass123"))
        )
        yield
        await auth_store.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real middleware and route handlers against an isolated
    database. The seeded account logs in with
    testadmin@example.com / testpass123.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    app.router.lifespan_context = _patch_lifespan(f"sqlite+aiosqlite:///{db_path}", RecordingNotifier())

    with TestClient(app, raise_server_exceptions=True) as client:
        uid = app.state.seed_user_id
        token = app.state.token_codec.issue(uid)
        yield client, token, uid
