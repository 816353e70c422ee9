"""
auth/session.py -- Session manager: register, login, logout, refresh, profile.

The session manager is the only component that mints credentials. It owns the
sequence "check identity -> issue access + refresh pair -> persist both as
cookies" and exposes the current identity to authenticated routes.

Credential transport:
  Both credentials are written as httpOnly cookies (token, refreshToken). The
  access credential is also returned to the caller so routes can put it in the
  response body for clients that hold tokens themselves and send
  Authorization: Bearer.

Rotation:
  refresh() issues a brand-new pair. The previous refresh credential is not
  revoked -- it stays valid until its own expiry. Two concurrent refreshes
  from one client both succeed.

Enumeration:
  login() raises the same InvalidCredentials for "unknown email" and "wrong
  password", and runs bcrypt in both cases so timing does not differ either.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from starlette.responses import Response

from auth.cookies import CookieKind, CookiePolicy
from auth.errors import (
    DuplicateIdentity,
    IdentityNotFound,
    InvalidCredentials,
    InvalidCurrentPassword,
    InvalidToken,
    MissingRefreshToken,
    NotFound,
    TokenExpired,
    TokenVerificationError,
    VerifyFailure,
)
from auth.models import Claims, Identity, Role, TokenKind
from auth.store import IdentityStore, normalize_email
from auth.tokens import CredentialCodec, burn_password_check, hash_password, verify_password

logger = logging.getLogger("cropkeeper.auth.session")


@dataclass(frozen=True)
class SessionResult:
    identity: Identity
    access_token: str


@dataclass(frozen=True)
class ProfileResult:
    identity: Identity
    # Set only when the update changed the email and credentials were re-minted.
    access_token: str | None = None


@dataclass(frozen=True)
class CurrentIdentity:
    identity: Identity
    plantings_count: int


class SessionManager:
    """Orchestrates the credential lifecycle on top of the identity store.

    Usage:
        sessions = SessionManager(store, codec, cookie_policy)
        result = sessions.login(response, "ana@example.com", "S3cretPass")
    """

    def __init__(self, store: IdentityStore, codec: CredentialCodec, cookies: CookiePolicy) -> None:
        self.store = store
        self.codec = codec
        self.cookies = cookies

    # ------------------------------------------------------------------
    # Credential issuance
    # ------------------------------------------------------------------

    def _issue(self, response: Response, identity: Identity) -> str:
        pair = self.codec.issue_pair(identity.id, identity.email, identity.role)
        self.cookies.set(response, CookieKind.ACCESS, pair.access_token)
        self.cookies.set(response, CookieKind.REFRESH, pair.refresh_token)
        return pair.access_token

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def register(self, response: Response, email: str, password: str, name: str) -> SessionResult:
        """Create a GROWER identity and start a session for it.

        Raises:
            DuplicateIdentity: the email is held by any identity, including a
                soft-deleted one.
        """
        if self.store.email_in_use(email):
            logger.info("Registration rejected: email already in use")
            raise DuplicateIdentity()

        candidate = Identity(email=email, name=name, hashed_password=hash_password(password), role=Role.GROWER)
        try:
            identity = self.store.create(candidate)
        except IntegrityError as exc:
            # A concurrent registration won the UNIQUE(email) race.
            raise DuplicateIdentity() from exc

        access_token = self._issue(response, identity)
        logger.info("Registered identity %s", identity.id)
        return SessionResult(identity=identity, access_token=access_token)

    def login(self, response: Response, email: str, password: str) -> SessionResult:
        """Authenticate by email and password and start a session.

        Raises:
            InvalidCredentials: unknown email or wrong password (indistinguishable).
        """
        identity = self.store.find_by_email(email)
        if identity is None:
            burn_password_check(password)
            logger.info("Login failed: unknown email")
            raise InvalidCredentials()
        if not verify_password(password, identity.hashed_password):
            logger.info("Login failed: bad password for identity %s", identity.id)
            raise InvalidCredentials()

        access_token = self._issue(response, identity)
        logger.info("Login succeeded for identity %s", identity.id)
        return SessionResult(identity=identity, access_token=access_token)

    def logout(self, response: Response) -> None:
        """Clear both credential cookies. Always succeeds."""
        self.cookies.clear(response, CookieKind.ACCESS)
        self.cookies.clear(response, CookieKind.REFRESH)

    def refresh(self, response: Response, refresh_token: str | None) -> str:
        """Exchange a refresh credential for a fresh access + refresh pair.

        The role in the new access credential is read from the store, so a
        role change since the last login takes effect here.

        Raises:
            MissingRefreshToken: no refresh cookie was sent.
            TokenExpired: the refresh credential is past its expiry.
            InvalidToken: bad signature, malformed, or not a refresh credential.
            IdentityNotFound: the identity was deleted after issuance.
        """
        if not refresh_token:
            raise MissingRefreshToken()

        try:
            claims = self.codec.verify(refresh_token)
        except TokenVerificationError as exc:
            if exc.kind is VerifyFailure.EXPIRED:
                logger.info("Refresh rejected: refresh token expired")
                raise TokenExpired() from exc
            logger.info("Refresh rejected: invalid refresh token")
            raise InvalidToken() from exc

        if claims.kind is not TokenKind.REFRESH:
            logger.info("Refresh rejected: %s token presented as refresh token", claims.kind.value)
            raise InvalidToken()

        identity = self.store.find_by_id(claims.subject_id)
        if identity is None:
            raise IdentityNotFound()

        access_token = self._issue(response, identity)
        logger.info("Refreshed session for identity %s", identity.id)
        return access_token

    def current_identity(self, claims: Claims) -> CurrentIdentity:
        """Re-read the identity behind verified access claims.

        Raises:
            NotFound: the identity was deleted after the credential was issued.
        """
        identity = self.store.find_by_id(claims.subject_id)
        if identity is None:
            raise NotFound()
        return CurrentIdentity(identity=identity, plantings_count=self.store.count_plantings(identity.id))

    def update_profile(
        self,
        response: Response,
        claims: Claims,
        name: str | None = None,
        email: str | None = None,
    ) -> ProfileResult:
        """Change name and/or email.

        The email is embedded in the access credential, so an email change
        re-mints the credential pair. This is the only place outside
        refresh() that issues credentials to an existing session.

        Raises:
            NotFound: the identity was deleted after the credential was issued.
            DuplicateIdentity: another identity already holds the new email.
        """
        current = self.store.find_by_id(claims.subject_id)
        if current is None:
            raise NotFound()

        patch: dict = {}
        if name is not None:
            patch["name"] = name
        email_changed = email is not None and normalize_email(email) != current.email
        if email_changed:
            if self.store.email_in_use(email, exclude_id=current.id):
                raise DuplicateIdentity()
            patch["email"] = email

        if not patch:
            return ProfileResult(identity=current)

        try:
            updated = self.store.update(current.id, **patch)
        except IntegrityError as exc:
            raise DuplicateIdentity() from exc
        if updated is None:
            raise NotFound()

        access_token = self._issue(response, updated) if email_changed else None
        logger.info("Updated profile for identity %s (email_changed=%s)", updated.id, email_changed)
        return ProfileResult(identity=updated, access_token=access_token)

    def change_password(self, claims: Claims, current_password: str, new_password: str) -> None:
        """Replace the password hash after checking the current password.

        Existing credentials stay valid until they expire.

        Raises:
            NotFound: the identity was deleted after the credential was issued.
            InvalidCurrentPassword: current_password does not match.
        """
        identity = self.store.find_by_id(claims.subject_id)
        if identity is None:
            raise NotFound()
        if not verify_password(current_password, identity.hashed_password):
            raise InvalidCurrentPassword()
        self.store.update(identity.id, hashed_password=hash_password(new_password))
        logger.info("Changed password for identity %s", identity.id)
