"""
auth/token_store.py -- Repositories for refresh tokens and password reset tokens.

Both tables store SHA-256 digests only. A database leak therefore exposes no
usable bearer credential.

Atomicity:
  Every state transition is a single conditional UPDATE whose WHERE clause
  restates the precondition ("revoked_at IS NULL", "used_at IS NULL AND
  expires_at > now"). The affected-row count tells the caller whether it won
  the transition. Two concurrent requests presenting the same token can both
  read the row as live, but only one UPDATE matches -- the other sees
  rowcount 0 and must treat the token as already consumed.

  revoke_all_by_family() is one bulk UPDATE, never read-then-write per row, so
  a sibling inserted concurrently cannot slip through between the read and the
  writes.

Monotonicity:
  revoked_at / used_at are only ever set, never cleared. No method here writes
  NULL to either column.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.engine import Connection

from auth.models import PasswordResetTokenRecord, RefreshTokenRecord, utcnow
from auth.store import AuthDatabase, from_db_time, new_id, password_reset_tokens, refresh_tokens, to_db_time

logger = logging.getLogger("sessionguard.auth.token_store")


class RefreshTokenStore:
    """Repository for RefreshTokenRecord rows."""

    def __init__(self, db: AuthDatabase) -> None:
        self.db = db

    def create(
        self,
        user_id: str,
        token_hash: str,
        family_id: str,
        expires_at: datetime,
        conn: Connection | None = None,
    ) -> RefreshTokenRecord:
        """Persist a new live refresh token and return the record."""
        record = RefreshTokenRecord(
            id=new_id(),
            token_hash=token_hash,
            user_id=user_id,
            family_id=family_id,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        with self.db.connection(conn) as c:
            c.execute(
                refresh_tokens.insert().values(
                    id=record.id,
                    token_hash=record.token_hash,
                    user_id=record.user_id,
                    family_id=record.family_id,
                    expires_at=to_db_time(record.expires_at),
                    created_at=to_db_time(record.created_at),
                )
            )
        logger.debug("Created refresh token user_id=%s family_id=%s", user_id, family_id)
        return record

    def find_by_hash(self, token_hash: str, conn: Connection | None = None) -> RefreshTokenRecord | None:
        """Look up a token by digest regardless of state. O(1) via UNIQUE index."""
        with self.db.connection(conn) as c:
            row = c.execute(refresh_tokens.select().where(refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke(self, token_hash: str, conn: Connection | None = None) -> bool:
        """Revoke one token if it is not revoked yet.

        Returns True only for the caller whose UPDATE performed the transition.
        Calling it on an already-revoked token is a no-op returning False.
        """
        with self.db.connection(conn) as c:
            result = c.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.token_hash == token_hash) & (refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=to_db_time(utcnow()))
            )
        return result.rowcount == 1

    def revoke_all_for_user(self, user_id: str, conn: Connection | None = None) -> int:
        """Revoke every unrevoked token the user owns (logout everywhere)."""
        with self.db.connection(conn) as c:
            result = c.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.user_id == user_id) & (refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=to_db_time(utcnow()))
            )
        logger.info("Revoked all refresh tokens user_id=%s count=%d", user_id, result.rowcount)
        return result.rowcount

    def revoke_all_by_family(self, family_id: str, conn: Connection | None = None) -> int:
        """Revoke every unrevoked token in a lineage. Single bulk UPDATE."""
        with self.db.connection(conn) as c:
            result = c.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.family_id == family_id) & (refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=to_db_time(utcnow()))
            )
        logger.warning("Revoked refresh token family family_id=%s count=%d", family_id, result.rowcount)
        return result.rowcount

    def delete_expired_or_revoked(self) -> int:
        """Maintenance sweep: hard-delete tokens that can never be valid again.

        Revoked rows are the reuse-detection evidence, so sweeping them early
        shortens the window in which a replayed token triggers family
        revocation. The sweep runs every few hours, well after rotation.
        """
        now = to_db_time(utcnow())
        with self.db.connection() as c:
            result = c.execute(
                refresh_tokens.delete().where(
                    (refresh_tokens.c.expires_at < now) | (refresh_tokens.c.revoked_at.is_not(None))
                )
            )
        logger.debug("Deleted expired/revoked refresh tokens count=%d", result.rowcount)
        return result.rowcount


class PasswordResetTokenStore:
    """Repository for PasswordResetTokenRecord rows."""

    def __init__(self, db: AuthDatabase) -> None:
        self.db = db

    def create(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        conn: Connection | None = None,
    ) -> PasswordResetTokenRecord:
        record = PasswordResetTokenRecord(
            id=new_id(),
            token_hash=token_hash,
            user_id=user_id,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        with self.db.connection(conn) as c:
            c.execute(
                password_reset_tokens.insert().values(
                    id=record.id,
                    token_hash=record.token_hash,
                    user_id=record.user_id,
                    expires_at=to_db_time(record.expires_at),
                    created_at=to_db_time(record.created_at),
                )
            )
        logger.debug("Created password reset token user_id=%s", user_id)
        return record

    def find_valid_by_hash(self, token_hash: str, conn: Connection | None = None) -> PasswordResetTokenRecord | None:
        """Return the token only if it is unexpired and unused."""
        now = to_db_time(utcnow())
        with self.db.connection(conn) as c:
            row = c.execute(
                password_reset_tokens.select().where(
                    (password_reset_tokens.c.token_hash == token_hash)
                    & (password_reset_tokens.c.used_at.is_(None))
                    & (password_reset_tokens.c.expires_at > now)
                )
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def consume(self, token_hash: str, conn: Connection | None = None) -> PasswordResetTokenRecord | None:
        """Atomically mark a valid token as used and return it.

        Returns None when the token is unknown, expired, already used, or was
        consumed by a concurrent request between the UPDATE and this call.
        """
        now = to_db_time(utcnow())
        with self.db.connection(conn) as c:
            result = c.execute(
                password_reset_tokens.update()
                .where(
                    (password_reset_tokens.c.token_hash == token_hash)
                    & (password_reset_tokens.c.used_at.is_(None))
                    & (password_reset_tokens.c.expires_at > now)
                )
                .values(used_at=now)
            )
            if result.rowcount != 1:
                return None
            row = c.execute(
                password_reset_tokens.select().where(password_reset_tokens.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_reset_token(row)

    def invalidate_all_for_user(self, user_id: str, conn: Connection | None = None) -> int:
        """Mark every still-valid token of the user as used. Returns the count."""
        now = to_db_time(utcnow())
        with self.db.connection(conn) as c:
            result = c.execute(
                password_reset_tokens.update()
                .where(
                    (password_reset_tokens.c.user_id == user_id)
                    & (password_reset_tokens.c.used_at.is_(None))
                    & (password_reset_tokens.c.expires_at > now)
                )
                .values(used_at=now)
            )
        return result.rowcount

    def delete_expired_or_used(self) -> int:
        now = to_db_time(utcnow())
        with self.db.connection() as c:
            result = c.execute(
                password_reset_tokens.delete().where(
                    (password_reset_tokens.c.expires_at < now) | (password_reset_tokens.c.used_at.is_not(None))
                )
            )
        logger.debug("Deleted expired/used password reset tokens count=%d", result.rowcount)
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        token_hash=row.token_hash,
        user_id=row.user_id,
        family_id=row.family_id,
        expires_at=from_db_time(row.expires_at),
        created_at=from_db_time(row.created_at),
        revoked_at=from_db_time(row.revoked_at),
    )


def _row_to_reset_token(row) -> PasswordResetTokenRecord:
    return PasswordResetTokenRecord(
        id=row.id,
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=from_db_time(row.expires_at),
        created_at=from_db_time(row.created_at),
        used_at=from_db_time(row.used_at),
    )
