"""
auth/errors.py -- Error taxonomy for the authentication layer.

Every failure the auth layer can surface to a client is an AuthError subclass
carrying an HTTP status, a stable machine-readable code, and a human message.
api/main.py renders them into the standard failure envelope:

    {"error": message, "code": code, "details": details}

Codes are part of the client contract -- the frontend switches on
TOKEN_EXPIRED to decide between calling /refresh and prompting a re-login.
Do not rename them.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class VerifyFailure(str, Enum):
    """Closed set of reasons a credential can fail verification."""

    INVALID = "invalid"
    EXPIRED = "expired"


class TokenVerificationError(Exception):
    """Raised by CredentialCodec.verify(). Callers switch on .kind."""

    def __init__(self, kind: VerifyFailure, reason: str = "") -> None:
        super().__init__(reason or kind.value)
        self.kind = kind


class AuthError(Exception):
    status_code: int = 401
    code: str = "UNAUTHORIZED"
    message: str = "Authentication required."

    def __init__(self, message: str | None = None, *, code: str | None = None, details: list[Any] | None = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    # Same message for unknown email and wrong password -- no account enumeration.
    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password."


class DuplicateIdentity(AuthError):
    status_code = 409
    code = "DUPLICATE_IDENTITY"
    message = "An account with this email already exists."


class Unauthorized(AuthError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required."


class InvalidToken(AuthError):
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Invalid token."


class TokenExpired(AuthError):
    status_code = 401
    code = "TOKEN_EXPIRED"
    message = "Token expired."


class Forbidden(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Insufficient permissions for this action."


class MissingRefreshToken(AuthError):
    status_code = 401
    code = "MISSING_REFRESH_TOKEN"
    message = "Refresh token not found."


class IdentityNotFound(AuthError):
    status_code = 401
    code = "IDENTITY_NOT_FOUND"
    message = "User not found."


class NotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    message = "User not found."


class InvalidCurrentPassword(AuthError):
    status_code = 400
    code = "INVALID_CURRENT_PASSWORD"
    message = "Current password is incorrect."


class CsrfError(AuthError):
    """Raised by the CSRF guard. code is one of the CSRF_* values."""

    status_code = 403
    code = "CSRF_TOKEN_INVALID"
    message = "Invalid CSRF token."


class InvalidIdentityChange(AuthError):
    """Admin change refused to keep the system administrable (code LAST_ADMIN / SELF_DELETION)."""

    status_code = 400
    code = "INVALID_IDENTITY_CHANGE"
    message = "This change is not allowed."
