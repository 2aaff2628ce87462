"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthDatabase owns the engine and schema; UserStore (here) and the token stores
(auth/token_store.py) are repositories over it; _row_to_* are the mappers.
Managers and routes never touch SQL directly.

Transactions:
  Every repository method takes an optional `conn`. Without it the method runs
  in its own short transaction (engine.begin()). With it, the method joins the
  caller's transaction -- this is how SessionManager makes "revoke then create"
  one unit and PasswordResetManager makes the five reset side effects one unit:

      with db.transaction() as conn:
          refresh_tokens.revoke(token_hash, conn=conn)
          refresh_tokens.create(..., conn=conn)

Timestamps:
  Stored as fixed-width ISO-8601 UTC strings (always with microseconds and
  "+00:00") so that SQL string comparison is chronological on every backend.
  Python code only ever sees timezone-aware datetimes.

Security:
  All queries use bound parameters. No f-strings in SQL.
  SafeUser lookups select from the users table only; the credentials table is
  joined exclusively by the *_with_credentials methods.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import LOCAL_PROVIDER, SafeUser, UserCredential, UserWithCredential, utcnow

_DEFAULT_DB_URL = "sqlite:///sessionguard_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

user_credentials = Table(
    "user_credentials",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("provider", String(50), nullable=False),  # "username-password", "github", ...
    Column("password_hash", Text),  # NULL for federated identities
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "provider", name="uq_user_credentials_user_provider"),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex, never the raw token
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("family_id", String(36), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),  # set once, never cleared
    Index("ix_refresh_tokens_user_id", "user_id"),
    Index("ix_refresh_tokens_family_id", "family_id"),
    Index("ix_refresh_tokens_cleanup", "expires_at", "revoked_at"),
)

password_reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("used_at", String(32)),  # single-use marker
    Index("ix_password_reset_tokens_user_id", "user_id"),
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


def to_db_time(value: datetime) -> str:
    """Render a datetime as a fixed-width UTC string (32 chars)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class AuthDatabase:
    """Engine owner and transaction boundary shared by every auth repository.

    Usage:
        db = AuthDatabase("sqlite:///auth.db")
        with db.transaction() as conn:
            ...
        db.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction; commit on success, roll back on error."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def connection(self, conn: Connection | None = None) -> Iterator[Connection]:
        """Join the caller's transaction if given one, else open a fresh one."""
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as fresh:
            yield fresh

    def ping(self) -> bool:
        """Return True if the database answers. Used by the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users and their credentials.

    Two result shapes, on purpose:
      get_by_email / get_by_id                      -> SafeUser (no secrets)
      get_by_email_with_credentials / ..._by_id_... -> UserWithCredential
    """

    def __init__(self, db: AuthDatabase) -> None:
        self.db = db

    def create_user(
        self,
        email: str,
        password_hash: str,
        first_name: str = "",
        last_name: str = "",
        conn: Connection | None = None,
    ) -> SafeUser:
        """Insert a user with a local username-password credential.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a conflict; the UNIQUE index is the real guard
        against two concurrent registrations of the same address.
        """
        now = to_db_time(utcnow())
        user_id = new_id()
        with self.db.connection(conn) as c:
            c.execute(
                users.insert().values(
                    id=user_id,
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    created_at=now,
                    updated_at=now,
                )
            )
            c.execute(
                user_credentials.insert().values(
                    id=new_id(),
                    user_id=user_id,
                    provider=LOCAL_PROVIDER,
                    password_hash=password_hash,
                    created_at=now,
                )
            )
            row = c.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def get_by_email(self, email: str, conn: Connection | None = None) -> SafeUser | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.db.connection(conn) as c:
            row = c.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str, conn: Connection | None = None) -> SafeUser | None:
        with self.db.connection(conn) as c:
            row = c.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def get_by_email_with_credentials(self, email: str) -> UserWithCredential | None:
        """Authentication path only: the result carries password hashes."""
        with self.db.connection() as c:
            row = c.execute(users.select().where(users.c.email == email)).fetchone()
            if row is None:
                return None
            cred_rows = c.execute(user_credentials.select().where(user_credentials.c.user_id == row.id)).fetchall()
        return _row_to_user_with_credentials(row, cred_rows)

    def update_password_hash(self, user_id: str, password_hash: str, conn: Connection | None = None) -> bool:
        """Replace the local credential's hash. Returns False if the user has none."""
        now = to_db_time(utcnow())
        with self.db.connection(conn) as c:
            result = c.execute(
                user_credentials.update()
                .where((user_credentials.c.user_id == user_id) & (user_credentials.c.provider == LOCAL_PROVIDER))
                .values(password_hash=password_hash)
            )
            if result.rowcount > 0:
                c.execute(users.update().where(users.c.id == user_id).values(updated_at=now))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> SafeUser:
    return SafeUser(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=from_db_time(row.created_at),
        updated_at=from_db_time(row.updated_at),
    )


def _row_to_user_with_credentials(row, cred_rows) -> UserWithCredential:
    return UserWithCredential(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=from_db_time(row.created_at),
        updated_at=from_db_time(row.updated_at),
        credentials=[
            UserCredential(id=cred.id, provider=cred.provider, password_hash=cred.password_hash) for cred in cred_rows
        ],
    )
