"""
tests/conftest.py -- Shared test fixtures for CropKeeper integration tests.

This module provides:
  - make_test_store(): creates an isolated in-memory identity DB
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - store / client: a fresh store and TestClient per test
  - admin: an ADMIN identity created directly in the store
  - csrf_headers() / register() / login(): request helpers for the auth flow

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any api/auth/core import:
  DEBUG=true          -> get_settings() auto-generates SECRET_KEY
  ALLOWED_HOSTS       -> TrustedHostMiddleware accepts TestClient's "testserver"
  *_RATE_LIMIT        -> high enough that the suite never trips slowapi
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_auth_services
from auth.csrf import CSRF_HEADER
from auth.models import Identity, Role
from auth.store import IdentityStore
from auth.tokens import hash_password

PASSWORD = "Tomat0Vines"
ADMIN_EMAIL = "admin@cropkeeper.test"
ADMIN_PASSWORD = "Adm1nPassword"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str) -> IdentityStore:
    """Create an isolated named shared-memory SQLite identity store.

    Args:
        db_suffix: Unique string appended to the DB name so tests never share
                   rows.
    """
    return IdentityStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: IdentityStore):
    """Return an async context manager that replaces the real lifespan.

    Runs the same init_auth_services() wiring as production, but against the
    pre-created test store instead of the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth_services(app, store)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def csrf_headers(client: TestClient) -> dict[str, str]:
    """Fetch (or re-read) the CSRF token and return it as a request header."""
    resp = client.get("/api/auth/csrf")
    assert resp.status_code == 200, f"CSRF fetch failed: {resp.status_code} {resp.text}"
    return {CSRF_HEADER: resp.json()["csrfToken"]}


def register(client: TestClient, email: str = "ana@example.com", name: str = "Ana Grower", password: str = PASSWORD):
    return client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": name},
        headers=csrf_headers(client),
    )


def login(client: TestClient, email: str, password: str):
    return client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
        headers=csrf_headers(client),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    """Yield a fresh, empty identity store."""
    s = make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture
def client(store: IdentityStore) -> Generator[TestClient, None, None]:
    """Yield a TestClient for the real app wired to the test store.

    The client keeps a cookie jar, so credentials and the CSRF cookie set by
    one request are sent on the next, exactly as a browser would.
    """
    app.router.lifespan_context = _patch_lifespan(store)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def admin(store: IdentityStore) -> Identity:
    """Create an ADMIN identity directly in the store (registration only makes GROWERs)."""
    return store.create(
        Identity(
            email=ADMIN_EMAIL,
            name="Site Admin",
            hashed_password=hash_password(ADMIN_PASSWORD),
            role=Role.ADMIN,
        )
    )
