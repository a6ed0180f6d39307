"""
tests/conftest.py -- Shared test fixtures for the DataCatalog auth tests.

This module provides:
  - _make_test_stores(): isolated in-memory UserStore + SessionStore pair
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - stores / authority: unit-level fixtures around a fresh database
  - client: TestClient against the real app with a fresh database
  - admin_client: client already holding an admin session
  - make_user: helper to seed directory entries through the authority

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections -- and across the user
and session stores, which live in the same database just as in production.
Every test gets its own name, so no state leaks between tests.

DEBUG and ALLOWED_HOSTS must be set before any app import: get_settings()
needs DEBUG to auto-generate SECRET_KEY, and TrustedHostMiddleware must
accept TestClient's "testserver" host.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.authority import Authority
from auth.models import NewUser, PublicUser, Role
from auth.sessions import SessionStore
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, SessionStore]:
    """Create a user/session store pair over one named shared-memory database.

    Args:
        db_suffix: Unique string appended to the DB name so tests don't share state.
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), SessionStore(db_url=url)


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, authority: Authority):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.authority = authority
        app.state.setup_required = not user_store.has_users()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """The limiter's memory store is process-global; start every test at zero."""
    limiter.reset()


@pytest.fixture
def stores() -> Generator[tuple[UserStore, SessionStore], None, None]:
    user_store, session_store = _make_test_stores(uuid.uuid4().hex)
    yield user_store, session_store
    session_store.close()
    user_store.close()


@pytest.fixture
def authority(stores: tuple[UserStore, SessionStore]) -> Authority:
    user_store, session_store = stores
    return Authority(user_store, session_store, self_registration_enabled=True)


@pytest.fixture
def make_user(authority: Authority) -> Callable[..., PublicUser]:
    """Seed a user through the authority; optionally deactivate it afterwards."""

    def _make(
        username: str,
        password: str = "secret1",
        role: Role = Role.USER,
        is_active: bool = True,
        email: str | None = None,
    ) -> PublicUser:
        user = authority.create_user(
            NewUser(username=username, password=password, email=email or f"{username}@example.org"),
            role=role,
        )
        if not is_active:
            authority.users.update_user(user.id, is_active=False)
        return user

    return _make


@pytest.fixture
def client(stores: tuple[UserStore, SessionStore], authority: Authority) -> Generator[TestClient, None, None]:
    """TestClient over the real app with this test's isolated stores."""
    user_store, session_store = stores
    app.router.lifespan_context = _patch_lifespan(user_store, session_store, authority)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def admin_client(client: TestClient, make_user: Callable[..., PublicUser]) -> TestClient:
    """client holding a session for admin 'root' / 'rootpass1'."""
    make_user("root", password="rootpass1", role=Role.ADMIN)
    resp = client.post("/api/login", json={"username": "root", "password": "rootpass1"})
    assert resp.status_code == 200, resp.text
    return client
