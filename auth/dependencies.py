"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credential sources, checked in priority order:
  1. "token" cookie -- httpOnly, set by login/register/refresh.
  2. Authorization: Bearer <token> header -- clients holding the token from
     the response body.
The cookie wins when both are present.

Each gate returns an explicit AuthContext value (or raises an AuthError that
api/main.py renders as the failure envelope). Later stages receive the
context as a parameter instead of reading it back off the request, so the
order "authenticate, then authorize" is enforced by the dependency graph:

    require_auth   -> AuthContext, or 401 (UNAUTHORIZED / TOKEN_EXPIRED / INVALID_TOKEN)
    optional_auth  -> AuthContext | None, never raises
    require_role() -> AuthContext, or 401 from require_auth, or 403 FORBIDDEN

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Request

from auth.cookies import CookieKind
from auth.errors import (
    AuthError,
    Forbidden,
    InvalidToken,
    TokenExpired,
    TokenVerificationError,
    Unauthorized,
    VerifyFailure,
)
from auth.models import Claims, Role, TokenKind
from auth.tokens import CredentialCodec


@dataclass(frozen=True)
class AuthContext:
    """Verified identity attached to one request."""

    claims: Claims

    @property
    def subject_id(self) -> int:
        return self.claims.subject_id

    @property
    def role(self) -> Role | None:
        return self.claims.role


def extract_credential(request: Request) -> str | None:
    """Return the raw access credential from the cookie or Bearer header."""
    token = request.cookies.get(CookieKind.ACCESS.value)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _authenticate(request: Request) -> AuthContext:
    token = extract_credential(request)
    if token is None:
        raise Unauthorized()

    codec: CredentialCodec = request.app.state.codec
    try:
        claims = codec.verify(token)
    except TokenVerificationError as exc:
        if exc.kind is VerifyFailure.EXPIRED:
            raise TokenExpired() from exc
        raise InvalidToken() from exc

    # A refresh credential is never an access credential.
    if claims.kind is not TokenKind.ACCESS:
        raise InvalidToken()
    return AuthContext(claims=claims)


def require_auth(request: Request) -> AuthContext:
    """Require a valid access credential.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: AuthContext = Depends(require_auth)): ...
    """
    return _authenticate(request)


def optional_auth(request: Request) -> AuthContext | None:
    """Like require_auth, but anonymous or invalid callers get None instead of a 401."""
    try:
        return _authenticate(request)
    except AuthError:
        return None


def require_role(*allowed: Role | str) -> Callable[..., AuthContext]:
    """Build a dependency admitting only identities whose role is in `allowed`.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(ctx: AuthContext = Depends(require_role(Role.ADMIN))): ...
    """
    allowed_roles = tuple(Role(r) for r in allowed)

    def _require_role(ctx: AuthContext = Depends(require_auth)) -> AuthContext:
        if ctx.role not in allowed_roles:
            raise Forbidden(
                details=[
                    {
                        "requiredRoles": [r.value for r in allowed_roles],
                        "userRole": ctx.role.value if ctx.role else None,
                    }
                ]
            )
        return ctx

    return _require_role
