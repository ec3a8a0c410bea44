"""
tests/conftest.py -- Shared test fixtures for SessionKeeper.

This module provides:
  - settings: Settings with a fixed signing key and 4 bcrypt rounds (fast)
  - clock: FrozenClock pinned to START, advanced explicitly by tests
  - user_store / token_store: isolated in-memory SQLite stores
  - service: AuthService wired from the fixtures above
  - registered_user: alice@example.com registered through the service
  - api_client: TestClient with a patched lifespan using the same fixtures

The DEBUG env var must be set before any core import so get_settings() can
auto-generate SECRET_KEY in dev mode instead of raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

# CRITICAL: Set DEBUG before any core import.
os.environ.setdefault("DEBUG", "true")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import RegisterRequest, UserProfile
from auth.service import AuthService
from auth.store import TokenStore, UserStore
from core.clock import FrozenClock
from core.config import Settings

SECRET_KEY = "test-signing-key-for-sessionkeeper-0123456789"
START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

ALICE_EMAIL = "alice@example.com"
ALICE_PASSWORD = "Str0ng!Pass"


def make_register_request(
    email: str = ALICE_EMAIL,
    password: str = ALICE_PASSWORD,
    confirm_password: str | None = None,
    user_name: str = "alice",
) -> RegisterRequest:
    return RegisterRequest(
        email=email,
        user_name=user_name,
        password=password,
        confirm_password=password if confirm_password is None else confirm_password,
        first_name="Alice",
        last_name="Liddell",
    )


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=True, secret_key=SECRET_KEY, bcrypt_rounds=4)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def token_store() -> Generator[TokenStore, None, None]:
    store = TokenStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def service(settings: Settings, user_store: UserStore, token_store: TokenStore, clock: FrozenClock) -> AuthService:
    return AuthService.from_settings(settings, user_store, token_store, clock=clock)


@pytest_asyncio.fixture
async def registered_user(service: AuthService) -> UserProfile:
    return await service.register(make_register_request())


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService, user_store: UserStore, token_store: TokenStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test service and stores into app.state so routes use isolated
    in-memory databases. The sweep_task is a long-sleeping coroutine so
    shutdown has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.token_store = token_store
        app.state.auth_service = service
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client(
    service: AuthService, user_store: UserStore, token_store: TokenStore
) -> Generator[TestClient, None, None]:
    """Yield a TestClient bound to the fixture service.

    The limiter's counters are reset so per-IP login limits from earlier tests
    never leak into this one.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(service, user_store, token_store)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
    limiter.reset()
