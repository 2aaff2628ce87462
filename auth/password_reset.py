"""
auth/password_reset.py -- Forgot-password request and reset-token redemption.

Security design decisions:
  Enumeration: request_reset() returns RESET_REQUEST_MESSAGE for every input,
      swallows every exception (logged), and pads its duration to
      Settings.password_reset_min_response_seconds. Known and unknown
      addresses are indistinguishable by body, status, or latency.

  Event loop: the padding is asyncio.sleep on the request's own coroutine.
      The blocking store/hash/mail work runs in asyncio.to_thread, so padding
      one request never stalls the others.

  Tokens: secrets.token_hex(32) (256 bits), mailed raw, stored as SHA-256.
      Issuing a token invalidates the user's earlier unused tokens in the
      same transaction as the insert; the mail goes out after commit. Lifetime
      is Settings.password_reset_expire_seconds (15 minutes by default).

  Reset URL: built from Settings.password_reset_base_url only. Nothing from
      the request (Host, X-Forwarded-Host) can steer where the link points.

  Redemption: one transaction covering consume -> load user -> store new hash
      -> revoke every refresh token -> confirmation mail. The consume is a
      conditional UPDATE, so two concurrent redemptions of one token cannot
      both succeed. Any failure (including the mail) rolls the unit back.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from datetime import timedelta
from urllib.parse import urlencode

from auth.errors import INVALID_RESET_TOKEN_MESSAGE, UnauthorizedError
from auth.hasher import CredentialHasher
from auth.mail import MailDispatcher
from auth.models import utcnow
from auth.store import AuthDatabase, UserStore
from auth.token_store import PasswordResetTokenStore, RefreshTokenStore
from auth.tokens import hash_token
from core.config import Settings
from core.logging import log_security_event

logger = logging.getLogger("sessionguard.auth.password_reset")

RESET_REQUEST_MESSAGE = "If that email address is in our database, we will send you an email to reset your password."
RESET_SUCCESS_MESSAGE = "Password has been reset successfully"

_RESET_TOKEN_BYTES = 32


def normalize_email(email: str) -> str:
    return email.strip().lower()


class PasswordResetManager:
    def __init__(
        self,
        settings: Settings,
        db: AuthDatabase,
        users: UserStore,
        reset_tokens: PasswordResetTokenStore,
        refresh_tokens: RefreshTokenStore,
        hasher: CredentialHasher,
        mailer: MailDispatcher,
    ) -> None:
        self.db = db
        self.users = users
        self.reset_tokens = reset_tokens
        self.refresh_tokens = refresh_tokens
        self.hasher = hasher
        self.mailer = mailer
        self.base_url = settings.password_reset_base_url
        self.expire_seconds = settings.password_reset_expire_seconds
        self.min_response_seconds = settings.password_reset_min_response_seconds

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def build_reset_url(self, token: str) -> str:
        separator = "&" if "?" in self.base_url else "?"
        return f"{self.base_url}{separator}{urlencode({'token': token})}"

    async def request_reset(self, email: str) -> dict[str, str]:
        """Issue and mail a reset token if the address belongs to a user.

        Always returns {"message": RESET_REQUEST_MESSAGE} and never raises.
        """
        started = time.monotonic()
        try:
            await asyncio.to_thread(self._issue_reset_token, normalize_email(email))
        except Exception:
            logger.exception("Error processing password reset request")

        remaining = self.min_response_seconds - (time.monotonic() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)
        return {"message": RESET_REQUEST_MESSAGE}

    def _issue_reset_token(self, email: str) -> None:
        user = self.users.get_by_email(email)
        if user is None:
            logger.debug("Password reset requested for unknown email")
            return

        # At most one valid reset token per user, also under concurrent requests.
        token = secrets.token_hex(_RESET_TOKEN_BYTES)
        expires_at = utcnow() + timedelta(seconds=self.expire_seconds)
        with self.db.transaction() as conn:
            invalidated = self.reset_tokens.invalidate_all_for_user(user.id, conn=conn)
            self.reset_tokens.create(user.id, hash_token(token), expires_at, conn=conn)
        if invalidated:
            logger.debug("Invalidated earlier reset tokens user_id=%s count=%d", user.id, invalidated)

        self.mailer.send_password_reset_email(email, self.build_reset_url(token))
        log_security_event(logger, logging.INFO, "PASSWORD_RESET_REQUESTED", "Password reset requested", user_id=user.id)

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    def reset_password(self, token: str, new_password: str) -> dict[str, str]:
        """Redeem a reset token and set a new password.

        Raises UnauthorizedError("Invalid or expired reset token") for unknown,
        expired, already-used, or orphaned tokens.
        """
        with self.db.transaction() as conn:
            record = self.reset_tokens.consume(hash_token(token), conn=conn)
            if record is None:
                log_security_event(
                    logger,
                    logging.WARNING,
                    "PASSWORD_RESET_INVALID_TOKEN",
                    "Invalid or expired password reset token used",
                )
                raise UnauthorizedError(INVALID_RESET_TOKEN_MESSAGE)

            user = self.users.get_by_id(record.user_id, conn=conn)
            if user is None:
                logger.error("Password reset token references a missing user token_id=%s", record.id)
                raise UnauthorizedError(INVALID_RESET_TOKEN_MESSAGE)

            if not self.users.update_password_hash(user.id, self.hasher.hash(new_password), conn=conn):
                logger.error("User has no local credential user_id=%s", user.id)
                raise UnauthorizedError(INVALID_RESET_TOKEN_MESSAGE)
            revoked = self.refresh_tokens.revoke_all_for_user(user.id, conn=conn)
            self.mailer.send_password_reset_confirmation(user.email)

        log_security_event(
            logger,
            logging.INFO,
            "PASSWORD_RESET_SUCCESS",
            "Password successfully reset",
            user_id=user.id,
            revoked_count=revoked,
        )
        return {"message": RESET_SUCCESS_MESSAGE}

    def purge(self) -> int:
        return self.reset_tokens.delete_expired_or_used()
