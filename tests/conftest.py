"""
tests/conftest.py -- Shared test fixtures for secure-user-auth.

This module provides:
  - FakeClock: a controllable time source for expiry and freshness tests
  - store / hasher / codec / resets / service / gate: the auth components
    wired together over an isolated in-memory database
  - api: an ApiHarness around a TestClient whose app uses the same kind of
    isolated store and the fake clock, via a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture gets its own name so tests never see each other's rows.

Environment must be set before any api/ or core/ import:
  DEBUG=true             -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4        -- bcrypt's minimum cost keeps the suite fast
  RATE_LIMIT_ENABLED=false -- tests hammer login; the rate-limit test turns it back on
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_components
from auth.gates import AuthenticationGate
from auth.models import Identity, Role
from auth.passwords import CredentialHasher
from auth.resets import ResetTokenIssuer
from auth.service import AccountService
from auth.store import IdentityStore
from auth.tokens import TokenCodec
from core.config import get_settings
from main import create_admin

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
TOKEN_LIFETIME = 3600
DEFAULT_PASSWORD = "Secret@123"
START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def store(clock: FakeClock) -> Generator[IdentityStore, None, None]:
    identity_store = IdentityStore(db_url=_memory_db_url("test_store"), clock=clock)
    yield identity_store
    identity_store.close()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(secret_key=TEST_SECRET, lifetime_seconds=TOKEN_LIFETIME, clock=clock)


@pytest.fixture
def resets(clock: FakeClock) -> ResetTokenIssuer:
    return ResetTokenIssuer(clock)


@pytest.fixture
def service(store, hasher, codec, resets, clock) -> AccountService:
    return AccountService(store, hasher, codec, resets, clock)


@pytest.fixture
def gate(codec, store) -> AuthenticationGate:
    return AuthenticationGate(codec, store)


def bearer(token: str) -> str:
    return f"Bearer {token}"


# ---------------------------------------------------------------------------
# HTTP harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    """A running TestClient plus direct handles on what the app is wired to."""

    client: TestClient
    store: IdentityStore
    clock: FakeClock

    @property
    def service(self) -> AccountService:
        return self.client.app.state.account_service

    def add_user(
        self,
        email: str,
        role: Role = Role.user,
        password: str = DEFAULT_PASSWORD,
        name: str = "Test User",
    ) -> tuple[Identity, str]:
        """Create an account directly (admins through the CLI helper) and log it in."""
        if role == Role.admin:
            create_admin(self.store, self.service.hasher, name, email, password, clock=self.clock)
        else:
            self.service.register(name, email, password)
        return self.service.login(email, password)

    @staticmethod
    def headers(token: str) -> dict[str, str]:
        return {"Authorization": bearer(token)}


def _patch_lifespan(store: IdentityStore, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store and fake clock into app.state so
    TestClient routes see an isolated database and controllable time.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_components(app, get_settings(), store, clock)
        yield

    return test_lifespan


@pytest.fixture
def api(clock: FakeClock) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness with a fresh database for each test."""
    identity_store = IdentityStore(db_url=_memory_db_url("test_api"), clock=clock)
    app.router.lifespan_context = _patch_lifespan(identity_store, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, store=identity_store, clock=clock)

    identity_store.close()
