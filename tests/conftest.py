"""
tests/conftest.py -- Shared test fixtures for the marketplace auth tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory DB for the auth core
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - store / service: UserStore and AuthService for unit-level tests
  - client: TestClient with follow_redirects=False for HTTP integration tests
  - make_user(): inserts a password user without paying for a fresh bcrypt hash

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Every
test gets a fresh name, so no state leaks between tests.

Environment must be set before any auth/core import: get_settings() is cached
on first call and api.limiter reads RATE_LIMIT_ENABLED at import time.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional
from unittest.mock import MagicMock

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("ENABLE_OAUTH", "true")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-google-secret")
os.environ.setdefault("KAKAO_CLIENT_ID", "test-kakao-id")
os.environ.setdefault("KAKAO_CLIENT_SECRET", "test-kakao-secret")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.cookies import CookieTransport
from auth.models import Role, User
from auth.passwords import hash_password
from auth.service import AuthService, create_auth_service
from auth.store import UserStore
from core.config import get_settings

PASSWORD = "secret1"

# One bcrypt hash for every fixture user; hashing per user would cost ~250ms each.
PASSWORD_HASH = hash_password(PASSWORD)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: Optional[str] = None) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string in the DB name. Defaults to a random one.
    """
    suffix = db_suffix or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")


def make_user(store: UserStore, email: str, role: str = Role.INFLUENCER.value, **fields) -> User:
    """Insert an ACTIVE password user (password: PASSWORD) and return it."""
    user_id = store.create_user(User(role=role, email=email, hashed_password=PASSWORD_HASH, **fields))
    return store.get_by_id(user_id)


def _patch_lifespan(user_store: UserStore, oauth=None, providers: tuple[str, ...] = ("google", "kakao")):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state so TestClient routes see an isolated
    DB. The OAuth registry defaults to a MagicMock to prevent real network
    calls; tests that drive a callback pass their own fake.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.user_store = user_store
        app.state.auth = create_auth_service(user_store, settings)
        app.state.cookies = CookieTransport.from_settings(settings)
        app.state.oauth = oauth if oauth is not None else MagicMock()
        app.state.oauth_providers = list(providers)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


def start_client(user_store: UserStore, oauth=None) -> TestClient:
    """Point the app at user_store and return an un-entered TestClient.

    follow_redirects=False is essential: OAuth tests assert on redirect
    *locations*, which are invisible once the client follows them.
    """
    app.router.lifespan_context = _patch_lifespan(user_store, oauth=oauth)
    return TestClient(app, follow_redirects=False, raise_server_exceptions=True)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = _make_test_store()
    yield user_store
    user_store.close()


@pytest.fixture
def service(store: UserStore) -> AuthService:
    return create_auth_service(store, get_settings())


@pytest.fixture
def client(store: UserStore) -> Generator[TestClient, None, None]:
    """TestClient over the real app with a fresh DB; store is the same instance."""
    with start_client(store) as test_client:
        yield test_client


def signup(client: TestClient, email: str, password: str = PASSWORD, role: str = "INFLUENCER", **extra):
    """POST /auth/signup; cookies land in the client's jar."""
    return client.post("/auth/signup", json={"email": email, "password": password, "role": role, **extra})


def login(client: TestClient, email: str, password: str = PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})
