"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_identity is the mapper. The account service and routes never touch
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Invariants enforced by the schema:
  - UNIQUE(email). Emails are normalized (strip + lower) before every write
    and lookup, so uniqueness is case-insensitive. Violations surface as
    ConflictFailure, never as a raw IntegrityError.
  - reset_token_hash and reset_token_expires are both NULL or both set
    (CHECK constraint).

Atomicity: every write is one statement against one row and touches only the
columns it names. Conditions that depend on other rows (the last active
admin) or on the row's current state (a pending reset ticket) go in that
statement's WHERE clause, so a check and its write cannot be split by a
concurrent request.

Timestamps are stored as ISO 8601 strings with an explicit UTC offset and
come back as timezone-aware datetimes.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.clock import Clock, utc_now
from auth.errors import ConflictFailure
from auth.models import Identity, Role

logger = logging.getLogger("userauth.store")

_DEFAULT_DB_URL = "sqlite:///./userauth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(50), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(40)),
    Column("password_changed_at", String(40)),
    Column("reset_token_hash", String(64), index=True),  # SHA-256 hex
    Column("reset_token_expires", String(40)),
    Column("created_at", String(40), nullable=False),
    CheckConstraint(
        "(reset_token_hash IS NULL) = (reset_token_expires IS NULL)",
        name="ck_users_reset_ticket_pair",
    ),
)


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


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore("sqlite:///./userauth.db")
        user_id = store.create(Identity(email="a@b.com", name="A", hashed_password=hasher.hash("...")))
        identity = store.get_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Clock = utc_now) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self._clock = clock
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> Identity | None:
        """Look up an identity by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by email, case-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_reset_digest(self, digest: str) -> Identity | None:
        """Find the identity holding a pending reset ticket with this digest.

        Expiry is not checked here; ResetTokenIssuer.redeem() does that.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.reset_token_hash == digest)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def list_users(self, offset: int = 0, limit: int = 10) -> list[Identity]:
        """Return a page of identities, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc()).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def count_active_admins(self) -> int:
        """Return the number of active admins. Reported by the list-users command."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, identity: Identity) -> int:
        """Insert a new identity and return its assigned ID.

        Raises ConflictFailure if the email is already registered. Two
        concurrent registrations for one email both pass any read-side check;
        the UNIQUE index decides which one wins.
        """
        values = _identity_to_values(identity)
        values["created_at"] = _to_iso(identity.created_at or self._clock())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.insert().values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictFailure(f"duplicate email {values['email']}") from exc
        return result.inserted_primary_key[0]

    def update(
        self,
        user_id: int,
        *,
        only_if_reset_digest: str | None = None,
        only_if_other_active_admin: bool = False,
        **fields,
    ) -> bool:
        """Write only the given columns of one identity in a single UPDATE.

        Columns not named in fields keep whatever value the row holds at
        write time, so an edit built from an older read never reverts a
        concurrent change to another column.

        Guards, checked in the same statement as the write:
          only_if_reset_digest -- the row still holds this reset ticket digest.
          only_if_other_active_admin -- some other active admin exists.

        Returns True if a row was updated, False if the id was not found or a
        guard did not hold. Raises ConflictFailure when the new email belongs
        to another identity.
        """
        values = _to_columns(fields)
        stmt = _users.update().where(_users.c.id == user_id)
        if only_if_reset_digest is not None:
            stmt = stmt.where(_users.c.reset_token_hash == only_if_reset_digest)
        if only_if_other_active_admin:
            others = _users.alias("other_admins")
            stmt = stmt.where(
                select(func.count())
                .select_from(others)
                .where(
                    (others.c.role == Role.admin.value)
                    & (others.c.is_active == 1)
                    & (others.c.id != user_id)
                )
                .scalar_subquery()
                > 0
            )
        try:
            with self.engine.connect() as conn:
                result = conn.execute(stmt.values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictFailure(f"duplicate email {values.get('email')}") from exc
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC time as last_login. Called on every successful login."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_to_iso(self._clock())))
            conn.commit()

    def delete(self, user_id: int) -> bool:
        """Permanently delete an identity. Returns True if deleted, False if not found.

        Callers check the acting-admin and last-admin rules before calling.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _identity_to_values(identity: Identity) -> dict:
    return {
        "email": normalize_email(identity.email),
        "name": identity.name,
        "hashed_password": identity.hashed_password,
        "role": Role(identity.role).value,
        "is_active": 1 if identity.is_active else 0,
        "password_changed_at": _to_iso(identity.password_changed_at),
        "reset_token_hash": identity.reset_token_hash,
        "reset_token_expires": _to_iso(identity.reset_token_expires),
    }


_MUTABLE_COLUMNS = frozenset(
    {
        "email",
        "name",
        "hashed_password",
        "role",
        "is_active",
        "password_changed_at",
        "reset_token_hash",
        "reset_token_expires",
    }
)


def _to_columns(fields: dict) -> dict:
    """Convert Identity field values to column values for a partial update."""
    if not fields:
        raise ValueError("No fields to update.")
    unknown = set(fields) - _MUTABLE_COLUMNS
    if unknown:
        raise ValueError(f"Not updatable: {', '.join(sorted(unknown))}")
    values = {}
    for key, value in fields.items():
        if key == "email":
            value = normalize_email(value)
        elif key == "role":
            value = Role(value).value
        elif key == "is_active":
            value = 1 if value else 0
        elif isinstance(value, datetime):
            value = _to_iso(value)
        values[key] = value
    return values


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_active=bool(row.is_active),
        last_login=_from_iso(row.last_login),
        password_changed_at=_from_iso(row.password_changed_at),
        reset_token_hash=row.reset_token_hash,
        reset_token_expires=_from_iso(row.reset_token_expires),
        created_at=_from_iso(row.created_at),
    )
