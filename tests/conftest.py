"""
tests/conftest.py -- Shared test fixtures for Amlak integration tests.

This module provides:
  - make_stores(): creates isolated in-memory DBs for users + ads
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with admin JWT for API integration tests
  - user_store / ad_store: fresh stores for unit tests of the persistence layer

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true               get_settings() auto-generates SECRET_KEY
  RATE_LIMIT_ENABLED=false login tests would otherwise trip 5/15minute
  BCRYPT_ROUNDS=4          keeps hashing fast; production stays at 12
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import -- settings are cached on first read.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from ads.store import AdStore
from api.main import app
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores(db_suffix: str) -> tuple[UserStore, AdStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    ads_url = f"sqlite:///file:test_ads_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), AdStore(db_url=ads_url)


def _patch_lifespan(user_store: UserStore, ad_store: AdStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.ad_store = ad_store
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def stores() -> Generator[tuple[UserStore, AdStore], None, None]:
    """Fresh, empty stores per test."""
    user_store, ad_store = make_stores(uuid.uuid4().hex)
    yield user_store, ad_store
    user_store.close()
    ad_store.close()


@pytest.fixture()
def user_store(stores) -> UserStore:
    return stores[0]


@pytest.fixture()
def ad_store(stores) -> AdStore:
    return stores[1]


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The admin user is created before the client starts and the JWT is
    generated for use in Authorization headers.
    """
    user_store, ad_store = make_stores(uuid.uuid4().hex)

    admin = User(
        username=ADMIN_USERNAME,
        name="Test Admin",
        phone="09990000000",
        hashed_password=hash_password(ADMIN_PASSWORD),
        role=Role.admin,
    )
    uid = user_store.create_user(admin)

    token = create_access_token(user_id=uid, username=ADMIN_USERNAME, role=Role.admin, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, ad_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()
    ad_store.close()
