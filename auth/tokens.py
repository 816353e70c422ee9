"""
auth/tokens.py -- Credential codec and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Access credentials carry sub, email, role, typ,
       iat, and exp; refresh credentials carry only sub, typ, iat, and exp.
       Verification is a single path for both kinds -- the caller decides
       which "typ" it accepts.

  Expiry: checked against the codec's own clock rather than inside
       jose.jwt.decode(), so verification is a pure function of secret, token,
       and clock. A credential is valid while now < exp.

  Failures: verify() raises TokenVerificationError with a VerifyFailure kind
       (INVALID or EXPIRED). No caller ever inspects exception names or
       messages to tell the two apart.

  Passwords: bcrypt directly (no passlib wrapper), cost factor 12. The
       _DUMMY_HASH constant enables timing equalization in login so response
       time does not reveal whether an email is registered.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenVerificationError, VerifyFailure
from auth.models import Claims, Role, TokenKind, TokenPair
from core.config import AuthConfig

BCRYPT_ROUNDS = 12

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash (cost 12) of the given plaintext password.

    bcrypt accepts at most 72 bytes of input. The API layer rejects longer
    passwords (measured in UTF-8 bytes) before they reach this function.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("cropkeeper_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison whose result is discarded.

    Called on the unknown-email login path so it costs the same as a
    wrong-password check.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Credential codec
# ---------------------------------------------------------------------------


class CredentialCodec:
    """Signs and verifies access and refresh credentials.

    Usage:
        codec = CredentialCodec(get_settings().auth_config())
        token = codec.issue_access(user.id, user.email, user.role)
        claims = codec.verify(token)
    """

    def __init__(self, config: AuthConfig, clock: Clock = _utc_now) -> None:
        self._config = config
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._config.access_ttl_seconds

    def _now(self) -> int:
        return int(self._clock().timestamp())

    def _encode(self, payload: dict) -> str:
        return jwt.encode(payload, self._config.secret_key, algorithm=self._config.algorithm)

    def issue_access(self, subject_id: int, email: str, role: Role | str) -> str:
        now = self._now()
        return self._encode(
            {
                "sub": str(subject_id),
                "email": email,
                "role": Role(role).value,
                "typ": TokenKind.ACCESS.value,
                "iat": now,
                "exp": now + self._config.access_ttl_seconds,
            }
        )

    def issue_refresh(self, subject_id: int) -> str:
        now = self._now()
        return self._encode(
            {
                "sub": str(subject_id),
                "typ": TokenKind.REFRESH.value,
                "iat": now,
                "exp": now + self._config.refresh_ttl_seconds,
            }
        )

    def verify(self, token: str) -> Claims:
        """Verify signature, shape, and expiry; return the decoded Claims.

        Raises:
            TokenVerificationError: kind=EXPIRED when the signature is good but
                now >= exp; kind=INVALID for every other failure (bad
                signature, wrong algorithm, malformed or missing claims).
        """
        try:
            payload = jwt.decode(
                token,
                self._config.secret_key,
                algorithms=[self._config.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenVerificationError(VerifyFailure.INVALID, str(exc)) from exc

        try:
            kind = TokenKind(payload["typ"])
            claims = Claims(
                subject_id=int(payload["sub"]),
                kind=kind,
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                email=payload.get("email") if kind is TokenKind.ACCESS else None,
                role=Role(payload["role"]) if kind is TokenKind.ACCESS else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenVerificationError(VerifyFailure.INVALID, "malformed claims") from exc

        if kind is TokenKind.ACCESS and not claims.email:
            raise TokenVerificationError(VerifyFailure.INVALID, "missing email claim")

        if self._now() >= claims.expires_at:
            raise TokenVerificationError(VerifyFailure.EXPIRED, "token expired")
        return claims

    def issue_pair(self, subject_id: int, email: str, role: Role | str) -> TokenPair:
        """Mint a fresh access + refresh pair for one identity."""
        return TokenPair(
            access_token=self.issue_access(subject_id, email, role),
            refresh_token=self.issue_refresh(subject_id),
        )
