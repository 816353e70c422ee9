"""
auth/csrf.py -- Double-submit CSRF guard.

Lifecycle per browsing session:  NoToken -> Issued -> Validated (per request).

Issuance (CsrfCookieMiddleware):
  A safe request (GET/HEAD/OPTIONS) without a csrf-token cookie gets a fresh
  256-bit hex token, set as a script-readable cookie AND returned in the
  X-CSRF-Token response header. The header lets a script capture the token
  even when the browser refuses to store the cookie.

Validation (csrf_protect dependency), mutating requests only:
  cookie C, header H
    H absent                       -> reject CSRF_TOKEN_MISSING
    C absent, H present            -> accept and set C := H (header-only)
    C present, H present, C != H   -> reject CSRF_TOKEN_INVALID
    C present, H present, C == H   -> accept

  Header-only acceptance covers private-browsing / storage-partitioned
  contexts where the earlier cookie-set was dropped. It weakens the guarantee
  to "the client could read a token we issued". Setting
  CSRF_ALLOW_HEADER_ONLY=false restores strict double-submit; the
  header-only case is then rejected with CSRF_COOKIE_MISSING.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from enum import Enum

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from auth.cookies import CookieKind, CookiePolicy
from auth.errors import CsrfError

logger = logging.getLogger("cropkeeper.auth.csrf")

CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class CsrfOutcome(str, Enum):
    ACCEPTED = "ACCEPTED"
    ACCEPTED_HEADER_ONLY = "ACCEPTED_HEADER_ONLY"
    TOKEN_MISSING = "CSRF_TOKEN_MISSING"
    COOKIE_MISSING = "CSRF_COOKIE_MISSING"
    TOKEN_INVALID = "CSRF_TOKEN_INVALID"

    @property
    def accepted(self) -> bool:
        return self in (CsrfOutcome.ACCEPTED, CsrfOutcome.ACCEPTED_HEADER_ONLY)


_REJECTION_MESSAGES = {
    CsrfOutcome.TOKEN_MISSING: f"CSRF token required in {CSRF_HEADER} header.",
    CsrfOutcome.COOKIE_MISSING: "CSRF token required in cookie.",
    CsrfOutcome.TOKEN_INVALID: "Invalid CSRF token.",
}


def generate_csrf_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def evaluate_csrf(cookie: str | None, header: str | None, allow_header_only: bool = True) -> CsrfOutcome:
    """Decide a mutating request's fate from its cookie and header tokens."""
    if not header:
        return CsrfOutcome.TOKEN_MISSING
    if not cookie:
        return CsrfOutcome.ACCEPTED_HEADER_ONLY if allow_header_only else CsrfOutcome.COOKIE_MISSING
    if not hmac.compare_digest(cookie.encode("utf-8"), header.encode("utf-8")):
        return CsrfOutcome.TOKEN_INVALID
    return CsrfOutcome.ACCEPTED


def csrf_protect(request: Request, response: Response) -> None:
    """FastAPI dependency enforcing double-submit on mutating requests.

    Attach to a router or route with dependencies=[Depends(csrf_protect)].
    Safe methods pass through untouched.
    """
    if request.method in SAFE_METHODS:
        return

    config = request.app.state.auth_config
    policy: CookiePolicy = request.app.state.cookie_policy
    cookie = request.cookies.get(CookieKind.CSRF.value)
    header = request.headers.get(CSRF_HEADER)

    outcome = evaluate_csrf(cookie, header, allow_header_only=config.csrf_allow_header_only)
    if outcome is CsrfOutcome.ACCEPTED_HEADER_ONLY:
        # Re-establish the cookie; in a partitioned context it may not stick.
        policy.set(response, CookieKind.CSRF, header)
        return
    if outcome.accepted:
        return

    if outcome is CsrfOutcome.TOKEN_INVALID:
        logger.warning("CSRF token mismatch for %s %s", request.method, request.url.path)
    raise CsrfError(_REJECTION_MESSAGES[outcome], code=outcome.value)


class CsrfCookieMiddleware(BaseHTTPMiddleware):
    """Issue a CSRF token on safe requests that arrive without one.

    The issued value is stored on request.state.csrf_token before the route
    runs, so GET /csrf can echo it in its body. Requests that already carry
    the cookie get request.state.csrf_token set to the existing value.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        existing = request.cookies.get(CookieKind.CSRF.value)
        issued: str | None = None
        if existing:
            request.state.csrf_token = existing
        elif request.method in SAFE_METHODS:
            issued = generate_csrf_token()
            request.state.csrf_token = issued

        response = await call_next(request)

        if issued is not None:
            policy: CookiePolicy = request.app.state.cookie_policy
            policy.set(response, CookieKind.CSRF, issued)
            response.headers[CSRF_HEADER] = issued
        return response
