"""
tests/test_csrf.py -- Double-submit CSRF guard.

Unit tests cover evaluate_csrf() directly; integration tests drive the same
matrix through POST /api/auth/logout, the cheapest mutating route (no auth,
no body).

    cookie C, header H
      H absent              -> 403 CSRF_TOKEN_MISSING
      C absent, H present   -> 200, C := H        (header-only fallback)
      C != H                -> 403 CSRF_TOKEN_INVALID
      C == H                -> 200
"""

from __future__ import annotations

import dataclasses

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.csrf import CSRF_HEADER, CsrfOutcome, evaluate_csrf, generate_csrf_token

LOGOUT = "/api/auth/logout"


def _flip_last_char(token: str) -> str:
    return token[:-1] + ("0" if token[-1] != "0" else "1")


class TestEvaluate:
    def test_token_shape(self) -> None:
        token = generate_csrf_token()
        assert len(token) == 64
        int(token, 16)
        assert token != generate_csrf_token()

    def test_matching_tokens_accepted(self) -> None:
        assert evaluate_csrf("abc", "abc") is CsrfOutcome.ACCEPTED

    @pytest.mark.parametrize("cookie", [None, "abc"])
    def test_missing_header_rejected(self, cookie) -> None:
        assert evaluate_csrf(cookie, None) is CsrfOutcome.TOKEN_MISSING
        assert evaluate_csrf(cookie, "") is CsrfOutcome.TOKEN_MISSING

    def test_header_only_accepted_by_default(self) -> None:
        outcome = evaluate_csrf(None, "abc")
        assert outcome is CsrfOutcome.ACCEPTED_HEADER_ONLY
        assert outcome.accepted

    def test_header_only_rejected_in_strict_mode(self) -> None:
        outcome = evaluate_csrf(None, "abc", allow_header_only=False)
        assert outcome is CsrfOutcome.COOKIE_MISSING
        assert not outcome.accepted

    def test_mismatch_rejected(self) -> None:
        assert evaluate_csrf("abc", "abd") is CsrfOutcome.TOKEN_INVALID


class TestIssuance:
    def test_get_csrf_sets_cookie_and_header(self, client: TestClient) -> None:
        resp = client.get("/api/auth/csrf")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        token = resp.json()["csrfToken"]
        assert resp.headers[CSRF_HEADER] == token
        assert client.cookies.get("csrf-token") == token
        set_cookie = resp.headers["set-cookie"]
        assert "HttpOnly" not in set_cookie, "CSRF cookie must be readable by client script"

    def test_existing_cookie_is_echoed_not_reissued(self, client: TestClient) -> None:
        first = client.get("/api/auth/csrf").json()["csrfToken"]
        resp = client.get("/api/auth/csrf")
        assert resp.json()["csrfToken"] == first
        assert "set-cookie" not in resp.headers

    def test_any_safe_request_issues_a_token(self, client: TestClient) -> None:
        resp = client.get("/api/auth/session")
        assert resp.status_code == 200
        assert CSRF_HEADER in resp.headers
        assert client.cookies.get("csrf-token") == resp.headers[CSRF_HEADER]

    def test_mutating_request_does_not_issue(self, client: TestClient) -> None:
        resp = client.post(LOGOUT)
        assert CSRF_HEADER not in resp.headers


class TestValidationMatrix:
    def test_equal_cookie_and_header_pass(self, client: TestClient) -> None:
        token = client.get("/api/auth/csrf").json()["csrfToken"]
        resp = client.post(LOGOUT, headers={CSRF_HEADER: token})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"

    def test_altered_header_rejected(self, client: TestClient) -> None:
        token = client.get("/api/auth/csrf").json()["csrfToken"]
        resp = client.post(LOGOUT, headers={CSRF_HEADER: _flip_last_char(token)})
        assert resp.status_code == 403, f"Expected 403, got {resp.status_code}: {resp.text}"
        assert resp.json()["code"] == "CSRF_TOKEN_INVALID"

    def test_missing_header_rejected(self, client: TestClient) -> None:
        client.get("/api/auth/csrf")
        resp = client.post(LOGOUT)
        assert resp.status_code == 403
        assert resp.json()["code"] == "CSRF_TOKEN_MISSING"

    def test_both_absent_rejected(self, client: TestClient) -> None:
        resp = client.post(LOGOUT)
        assert resp.status_code == 403
        body = resp.json()
        assert body["code"] == "CSRF_TOKEN_MISSING"
        assert set(body) == {"error", "code", "details"}

    def test_header_only_accepted_and_cookie_set(self, client: TestClient) -> None:
        token = generate_csrf_token()
        resp = client.post(LOGOUT, headers={CSRF_HEADER: token})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert client.cookies.get("csrf-token") == token

    def test_header_only_rejected_in_strict_mode(self, client: TestClient) -> None:
        config = app.state.auth_config
        app.state.auth_config = dataclasses.replace(config, csrf_allow_header_only=False)
        try:
            resp = client.post(LOGOUT, headers={CSRF_HEADER: generate_csrf_token()})
        finally:
            app.state.auth_config = config
        assert resp.status_code == 403
        assert resp.json()["code"] == "CSRF_COOKIE_MISSING"

    def test_csrf_runs_before_auth(self, client: TestClient) -> None:
        """An anonymous mutating request without a token fails CSRF, not auth."""
        resp = client.put("/api/auth/profile", json={"name": "Nobody"})
        assert resp.status_code == 403
        assert resp.json()["code"] == "CSRF_TOKEN_MISSING"

    def test_safe_methods_skip_validation(self, client: TestClient) -> None:
        resp = client.get("/api/auth/session", headers={CSRF_HEADER: "not-the-cookie"})
        assert resp.status_code == 200
