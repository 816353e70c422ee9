"""
tests/test_health.py -- GET /health and app-wide response behaviour.

Covers:
  - 200 response with status, version, timestamp, environment
  - No authentication or CSRF token required
  - Security headers on every response
  - Unknown routes use the standard failure envelope
  - Unexpected exceptions become a 500 envelope; the exception text is
    shown only in development
"""

from __future__ import annotations

import logging

import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from api.main import __version__, app
from conftest import _patch_lifespan
from core.config import get_settings

BROKEN_PATH = "/api/_test/broken"

_broken = APIRouter()


@_broken.get(BROKEN_PATH)
def _broken_route():
    raise RuntimeError("kaboom")


if not any(getattr(r, "path", None) == BROKEN_PATH for r in app.routes):
    app.include_router(_broken)


@pytest.fixture
def lenient_client(store):
    """TestClient that returns the 500 response instead of re-raising."""
    app.router.lifespan_context = _patch_lifespan(store)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def test_health_returns_200(client):
    """Health endpoint returns 200 with status, version, and environment."""
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == __version__
    assert data["environment"] == "development"
    assert data["timestamp"]


def test_health_no_auth_required(client):
    """Health endpoint is accessible without any credentials."""
    resp = client.get("/health", headers={})
    assert resp.status_code == 200


def test_security_headers_present(client):
    resp = client.get("/health")
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-frame-options"] == "DENY"
    assert resp.headers["referrer-policy"] == "strict-origin-when-cross-origin"


def test_security_headers_on_errors(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.headers["x-content-type-options"] == "nosniff"


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found", "code": "HTTP_404", "details": None}


def test_unhandled_exception_uses_error_envelope(lenient_client, caplog):
    with caplog.at_level(logging.ERROR, logger="cropkeeper.api"):
        resp = lenient_client.get(BROKEN_PATH)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error.", "code": "INTERNAL_ERROR", "details": ["kaboom"]}
    assert any("Unhandled exception" in r.getMessage() for r in caplog.records)


def test_unhandled_exception_hides_details_outside_development(lenient_client, monkeypatch):
    production = get_settings().model_copy(update={"environment": "production"})
    monkeypatch.setattr("api.main.get_settings", lambda: production)
    resp = lenient_client.get(BROKEN_PATH)
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "INTERNAL_ERROR"
    assert body["details"] is None
    assert "kaboom" not in resp.text
