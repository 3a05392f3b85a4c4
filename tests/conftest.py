"""
tests/conftest.py -- Shared test fixtures for IOC registry tests.

This module provides:
  - memory_url(): a unique named shared-memory SQLite URL
  - _make_test_stores(): isolated in-memory DBs for users + IOCs
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus one bearer token per role

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any api/ import: api.main loads
Settings at import time and refuses to start without SECRET_KEY.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before importing api.main.
TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
os.environ["SECRET_KEY"] = TEST_SECRET
os.environ["DATABASE_URL"] = "sqlite:///file:iocregistry_unused?mode=memory&cache=shared&uri=true"
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
os.environ["REGISTER_RATE_LIMIT"] = "1000/minute"

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import TokenService
from ioc.store import IOCStore

PASSWORD = "testpass123"


def memory_url(name: str) -> str:
    """Return a named shared-memory SQLite URL that no other test uses."""
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, IOCStore]:
    """Create isolated named shared-memory SQLite stores for one test module.

    Args:
        db_suffix: Appended to the DB names so test modules never share state.
    """
    user_store = UserStore(db_url=memory_url(f"test_auth_{db_suffix}"))
    ioc_store = IOCStore(db_url=memory_url(f"test_ioc_{db_suffix}"))
    return user_store, ioc_store


def _patch_lifespan(user_store: UserStore, ioc_store: IOCStore, tokens: TokenService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.ioc_store = ioc_store
        app.state.tokens = tokens
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    tokens: TokenService
    user_store: UserStore
    ioc_store: IOCStore
    user_ids: dict[Role, int]
    role_tokens: dict[Role, str]
    password: str = PASSWORD

    def headers(self, role: Role) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.role_tokens[role]}"}


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness with one active user (and token) per role.

    The users are test{role} / test{role}@example.com with password PASSWORD.
    The TestClient uses the real FastAPI app with a patched lifespan, so
    tests hit real route handlers but use isolated in-memory stores.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, ioc_store = _make_test_stores(suffix)
    tokens = TokenService(TEST_SECRET, expire_seconds=3600)

    user_ids: dict[Role, int] = {}
    role_tokens: dict[Role, str] = {}
    for role in Role:
        uid = user_store.create_user(
            User(username=f"test{role.value}", email=f"test{role.value}@example.com", role=role),
            password=PASSWORD,
        )
        user_ids[role] = uid
        role_tokens[role] = tokens.issue(uid, role)

    app.router.lifespan_context = _patch_lifespan(user_store, ioc_store, tokens)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(
            client=client,
            tokens=tokens,
            user_store=user_store,
            ioc_store=ioc_store,
            user_ids=user_ids,
            role_tokens=role_tokens,
        )

    user_store.close()
    ioc_store.close()


@pytest.fixture()
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=memory_url("unit_auth"))
    yield store
    store.close()


@pytest.fixture()
def ioc_store() -> Generator[IOCStore, None, None]:
    store = IOCStore(db_url=memory_url("unit_ioc"))
    yield store
    store.close()
