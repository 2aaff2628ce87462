"""
auth/sessions.py -- Refresh-token sessions: creation, rotation, revocation.

SessionManager is the only component that writes refresh-token state. Routes
and AuthService go through it; TokenCodec only signs and verifies.

Rotation and reuse detection:
  Each login starts a new token family (uuid4 family_id). Every rotation
  revokes the presented token and stores a successor with the SAME family_id.
  A revoked token that comes back means one of two parties holding the
  lineage is not the legitimate client, and nobody can tell which -- so the
  whole family is revoked and both must log in again.

  rotate_session() linearizes concurrent rotations of the same token with a
  conditional revoke (RefreshTokenStore.revoke returns False for the loser).
  The loser is handled exactly like reuse. Successor creation shares the
  winner's transaction, so a crash between revoke and insert leaves the old
  token live rather than the family with no live member.

Every client-visible failure is UnauthorizedError with one message. The
reason (unknown, expired, reused, raced) goes to the log only.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from auth.errors import INVALID_REFRESH_TOKEN_MESSAGE, InvalidTokenError, UnauthorizedError
from auth.models import RotationResult, SessionResult, TokenState, utcnow
from auth.store import AuthDatabase
from auth.token_store import RefreshTokenStore
from auth.tokens import TokenCodec, hash_token
from core.logging import log_security_event

logger = logging.getLogger("sessionguard.auth.sessions")


class SessionManager:
    def __init__(self, db: AuthDatabase, refresh_tokens: RefreshTokenStore, codec: TokenCodec) -> None:
        self.db = db
        self.refresh_tokens = refresh_tokens
        self.codec = codec

    def _expires_at(self):
        return utcnow() + timedelta(seconds=self.codec.refresh_expires_in)

    def create_session(self, user_id: str, email: str) -> SessionResult:
        """Start a new token family for a fresh login."""
        refresh_token = self.codec.create_refresh_token(user_id, email)
        family_id = str(uuid.uuid4())
        self.refresh_tokens.create(user_id, hash_token(refresh_token), family_id, self._expires_at())
        log_security_event(
            logger, logging.INFO, "LOGIN", "Session created", user_id=user_id, family_id=family_id
        )
        return SessionResult(refresh_token=refresh_token, family_id=family_id)

    def rotate_session(self, refresh_token: str) -> RotationResult:
        """Exchange a live refresh token for its successor in the same family.

        Raises UnauthorizedError for invalid signatures, unknown tokens,
        expired tokens, and reused (already revoked) tokens. Reuse also
        revokes every token in the family.
        """
        try:
            payload = self.codec.verify_refresh(refresh_token)
        except InvalidTokenError as exc:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN_MESSAGE) from exc

        token_hash = hash_token(refresh_token)
        stored = self.refresh_tokens.find_by_hash(token_hash)
        if stored is None or stored.user_id != payload["sub"]:
            logger.info("Refresh rejected: token not on record")
            raise UnauthorizedError(INVALID_REFRESH_TOKEN_MESSAGE)

        state = stored.state
        if state is TokenState.REVOKED:
            self._revoke_family_on_reuse(stored.user_id, stored.family_id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN_MESSAGE)
        if state is TokenState.EXPIRED:
            logger.info("Refresh rejected: token expired family_id=%s", stored.family_id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN_MESSAGE)

        new_refresh_token = self.codec.create_refresh_token(payload["sub"], payload["email"])
        won = False
        with self.db.transaction() as conn:
            if self.refresh_tokens.revoke(token_hash, conn=conn):
                self.refresh_tokens.create(
                    stored.user_id,
                    hash_token(new_refresh_token),
                    stored.family_id,
                    self._expires_at(),
                    conn=conn,
                )
                won = True

        if not won:
            # A concurrent rotation revoked the token between our read and our
            # UPDATE. Same treatment as replaying a revoked token.
            self._revoke_family_on_reuse(stored.user_id, stored.family_id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN_MESSAGE)

        log_security_event(
            logger,
            logging.DEBUG,
            "TOKEN_ROTATED",
            "Session rotated",
            user_id=stored.user_id,
            family_id=stored.family_id,
        )
        return RotationResult(
            new_refresh_token=new_refresh_token,
            user_id=payload["sub"],
            email=payload["email"],
            family_id=stored.family_id,
        )

    def _revoke_family_on_reuse(self, user_id: str, family_id: str) -> None:
        revoked_count = self.refresh_tokens.revoke_all_by_family(family_id)
        log_security_event(
            logger,
            logging.ERROR,
            "TOKEN_REUSE_DETECTED",
            "Refresh token reuse detected - invalidating token family",
            user_id=user_id,
            family_id=family_id,
            revoked_count=revoked_count,
        )

    def revoke_session(self, user_id: str, refresh_token: str) -> None:
        """Log out one session. Silent no-op unless the token is owned and live."""
        token_hash = hash_token(refresh_token)
        stored = self.refresh_tokens.find_by_hash(token_hash)
        if stored is None or stored.user_id != user_id or stored.state is not TokenState.LIVE:
            return
        if self.refresh_tokens.revoke(token_hash):
            log_security_event(
                logger, logging.INFO, "LOGOUT", "Session revoked", user_id=user_id, family_id=stored.family_id
            )

    def revoke_all_sessions(self, user_id: str) -> int:
        """Log out everywhere. Returns the number of tokens revoked."""
        revoked_count = self.refresh_tokens.revoke_all_for_user(user_id)
        log_security_event(
            logger, logging.INFO, "LOGOUT_ALL", "All sessions revoked", user_id=user_id, revoked_count=revoked_count
        )
        return revoked_count
