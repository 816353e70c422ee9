"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the session
manager do the work; these types only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    GROWER = "GROWER"
    ADMIN = "ADMIN"


class TokenKind(str, Enum):
    """Discriminator carried in the "typ" claim of every issued credential."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class Identity:
    """A persisted principal.

    email is stored lower-cased and stripped; the store normalizes on every
    write and lookup so comparisons are case-insensitive.

    deleted_at is the soft-delete marker. A non-None value hides the identity
    from find_by_email() / find_by_id(); rows are never hard-deleted.
    """

    email: str
    name: str
    hashed_password: str
    role: Role = Role.GROWER
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class Claims:
    """The verified content of an access or refresh credential.

    email and role are only present on access credentials. Refresh
    credentials carry identity by id alone; the role is re-read from the
    store when they are exchanged.
    """

    subject_id: int
    kind: TokenKind
    issued_at: int
    expires_at: int
    email: str | None = None
    role: Role | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
