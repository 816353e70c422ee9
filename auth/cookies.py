"""
auth/cookies.py -- Cookie policy for the access, refresh, and CSRF cookies.

One place decides every cookie flag so that setting and clearing a cookie
always use the same attributes. Browsers silently ignore a deletion whose
path/samesite/secure flags differ from the original Set-Cookie, which would
leave a refresh token behind after logout.

Flag rules:
  production:  secure=True,  samesite="none" -- the frontend is hosted on a
               different site and must receive the cookies cross-site.
  development: secure=False, samesite="lax"  -- no TLS locally.

  ACCESS / REFRESH are always httponly (script can never read them).
  CSRF is never httponly -- client script reads it and echoes it in the
  X-CSRF-Token header. Double-submit does not rely on cookie secrecy, only on
  a cross-site attacker being unable to set cookies for this origin.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from starlette.responses import Response

from core.config import AuthConfig


class CookieKind(str, Enum):
    ACCESS = "token"
    REFRESH = "refreshToken"
    CSRF = "csrf-token"


@dataclass(frozen=True)
class CookieFlags:
    httponly: bool
    secure: bool
    samesite: Literal["lax", "strict", "none"]
    max_age: int
    path: str = "/"


class CookiePolicy:
    """Resolves CookieFlags per CookieKind for one environment."""

    def __init__(self, config: AuthConfig) -> None:
        self._config = config

    def flags(self, kind: CookieKind) -> CookieFlags:
        production = self._config.production
        max_age = {
            CookieKind.ACCESS: self._config.access_ttl_seconds,
            CookieKind.REFRESH: self._config.refresh_ttl_seconds,
            CookieKind.CSRF: self._config.csrf_ttl_seconds,
        }[kind]
        return CookieFlags(
            httponly=kind is not CookieKind.CSRF,
            secure=production,
            samesite="none" if production else "lax",
            max_age=max_age,
        )

    def set(self, response: Response, kind: CookieKind, value: str) -> None:
        flags = self.flags(kind)
        response.set_cookie(
            kind.value,
            value=value,
            max_age=flags.max_age,
            path=flags.path,
            secure=flags.secure,
            httponly=flags.httponly,
            samesite=flags.samesite,
        )

    def clear(self, response: Response, kind: CookieKind) -> None:
        flags = self.flags(kind)
        response.delete_cookie(
            kind.value,
            path=flags.path,
            secure=flags.secure,
            httponly=flags.httponly,
            samesite=flags.samesite,
        )
