"""
tests/conftest.py -- Shared test fixtures for MonoAuth.

This module provides:
  - RecordingTransport: mail transport that keeps messages in memory
  - MovableClock: injectable clock for stepping past expiries and cooldowns
  - store / outbox / clock / service: unit-level fixtures on an in-memory DB
  - api_client: TestClient against the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs sync work in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The unit-level store fixture uses the same scheme because AuthService
runs its store calls in worker threads via asyncio.to_thread.

DEBUG must be set before any auth/core import so get_settings() can
auto-generate SECRET_KEY in dev mode instead of raising ValueError.
RATE_LIMIT_ENABLED=false keeps slowapi counters from leaking between tests.
BCRYPT_ROUNDS=4 is the bcrypt minimum and keeps the suite fast.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage

# CRITICAL: environment first, imports second.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SMTP_HOST", "")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.seed import seed_roles_and_permissions
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings
from mailer.sender import AuthMailer

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingTransport:
    """Mail transport that appends every message to self.sent."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)

    @property
    def last(self) -> EmailMessage:
        assert self.sent, "no email was sent"
        return self.sent[-1]

    def last_text(self) -> str:
        return self.last.get_body(preferencelist=("plain",)).get_content()

    def last_otp(self) -> str:
        match = re.search(r"Your OTP is (\d{6})", self.last_text())
        assert match, f"no OTP in: {self.last_text()!r}"
        return match.group(1)

    def last_link_token(self) -> str:
        match = re.search(r"token=([A-Za-z0-9_\-]+)", self.last_text())
        assert match, f"no link token in: {self.last_text()!r}"
        return match.group(1)


class MovableClock:
    """Callable clock; advance() moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """Shared-memory UserStore with the default roles and permissions seeded."""
    s = UserStore(f"sqlite:///file:test_unit_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    seed_roles_and_permissions(s)
    yield s
    s.close()


@pytest.fixture
def outbox() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def clock() -> MovableClock:
    return MovableClock()


@pytest.fixture
def service(store: UserStore, outbox: RecordingTransport, clock: MovableClock) -> AuthService:
    settings = get_settings()
    mailer = AuthMailer(outbox, "no-reply@test.local", "MonoAuth Test", settings.verification_expire_minutes)
    return AuthService(store, mailer, settings, clock=clock)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, outbox: RecordingTransport):
    """Return a lifespan that wires the test store and a recording mailer into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        mailer = AuthMailer(outbox, "no-reply@test.local", "MonoAuth Test", settings.verification_expire_minutes)
        app.state.user_store = user_store
        app.state.auth_service = AuthService(user_store, mailer, settings)
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    outbox: RecordingTransport


@pytest.fixture
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around a TestClient with an isolated, seeded database.

    Each test gets its own named in-memory DB, so emails never collide
    between tests.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    seed_roles_and_permissions(user_store)
    outbox = RecordingTransport()

    app.router.lifespan_context = _patch_lifespan(user_store, outbox)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=user_store, outbox=outbox)

    user_store.close()
