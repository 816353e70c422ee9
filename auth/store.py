"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_identity is the mapper. The session manager and route code never
touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Soft delete:
  Identities are never hard-deleted. deleted_at is stamped instead, and
  find_by_email() / find_by_id() exclude stamped rows. The UNIQUE constraint
  on email still covers soft-deleted rows, so a deleted account keeps its
  address reserved (see email_in_use()).

Plantings:
  Only the columns the auth layer needs for the "owned records" count on
  GET /me are declared here. Planting CRUD lives with the domain handlers.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Identity, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("name", String(100), nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.GROWER.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),  # NULL = live
)

plantings = Table(
    "plantings",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("plant_name", String(100), nullable=False),
    Column("date_planted", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

# Columns a caller may change through update(). Anything else is rejected
# before it reaches SQL.
_MUTABLE_FIELDS = frozenset({"email", "name", "hashed_password", "role"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore("sqlite:///cropkeeper.db")
        identity = store.create(Identity(email="a@b.io", name="Ana", hashed_password=hash_password("...")))
        store.find_by_email("A@B.io")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups (soft-deleted rows excluded)
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Identity | None:
        """Look up a live identity by email (case-insensitive). Returns None if not found."""
        query = users.select().where((users.c.email == normalize_email(email)) & users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_id(self, identity_id: int) -> Identity | None:
        """Look up a live identity by primary key. Returns None if not found."""
        query = users.select().where((users.c.id == identity_id) & users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_identity(row) if row is not None else None

    def email_in_use(self, email: str, exclude_id: int | None = None) -> bool:
        """Return True if any row, live or soft-deleted, holds this email.

        exclude_id skips the caller's own row so a profile update that keeps
        the same address is not reported as a conflict.
        """
        query = select(func.count()).select_from(users).where(users.c.email == normalize_email(email))
        if exclude_id is not None:
            query = query.where(users.c.id != exclude_id)
        with self.engine.connect() as conn:
            count = conn.execute(query).scalar()
        return (count or 0) > 0

    def list_all(self) -> list[Identity]:
        """Return all live identities ordered by email. Admin-only operation."""
        query = users.select().where(users.c.deleted_at.is_(None)).order_by(users.c.email)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_identity(r) for r in rows]

    def count_admins(self) -> int:
        """Return the number of live ADMIN identities.

        Used to refuse demoting or deleting the last admin.
        """
        query = (
            select(func.count())
            .select_from(users)
            .where((users.c.role == Role.ADMIN.value) & users.c.deleted_at.is_(None))
        )
        with self.engine.connect() as conn:
            count = conn.execute(query).scalar()
        return count or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, identity: Identity) -> Identity:
        """Insert a new identity and return the stored record.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a concurrent registration of the same address.
        """
        now = _now_iso()
        created = Identity(
            email=normalize_email(identity.email),
            name=identity.name,
            hashed_password=identity.hashed_password,
            role=Role(identity.role),
            created_at=now,
            updated_at=now,
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                users.insert().values(
                    email=created.email,
                    hashed_password=created.hashed_password,
                    name=created.name,
                    role=created.role.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            created.id = result.inserted_primary_key[0]
        return created

    def update(self, identity_id: int, **patch) -> Identity | None:
        """Apply a partial update to a live identity and return the new record.

        Accepted fields: email, name, hashed_password, role. Unknown fields
        raise ValueError. Returns None if the identity does not exist or is
        soft-deleted.

        Raises sqlalchemy.exc.IntegrityError if a new email collides.
        """
        unknown = set(patch) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown identity fields: {sorted(unknown)!r}")
        if "email" in patch:
            patch["email"] = normalize_email(patch["email"])
        if "role" in patch:
            patch["role"] = Role(patch["role"]).value
        patch["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where((users.c.id == identity_id) & users.c.deleted_at.is_(None))
                .values(**patch)
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.find_by_id(identity_id)

    def soft_delete(self, identity_id: int) -> bool:
        """Stamp deleted_at. Returns True if a live identity was deleted."""
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where((users.c.id == identity_id) & users.c.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Owned records
    # ------------------------------------------------------------------

    def count_plantings(self, identity_id: int) -> int:
        """Return the number of non-deleted plantings owned by the identity."""
        query = (
            select(func.count())
            .select_from(plantings)
            .where((plantings.c.user_id == identity_id) & plantings.c.deleted_at.is_(None))
        )
        with self.engine.connect() as conn:
            count = conn.execute(query).scalar()
        return count or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )
