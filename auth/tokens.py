"""
auth/tokens.py -- JWT encode/verify and token digests.

Security design decisions:
  JWT: python-jose with HS256 only. verify_* passes algorithms=[HS256] so a
       token declaring "none" or an asymmetric algorithm never verifies
       (no algorithm-confusion surface).

  Secrets: access and id tokens are signed with Settings.secret_key; refresh
       tokens with Settings.refresh_secret_key. An access token presented at
       the refresh endpoint therefore fails signature verification, and the
       "type" claim is checked as a second fence.

  Refresh tokens carry a fresh uuid4 "jti" so two tokens minted for the same
       user in the same second still differ. The jti is not looked up
       server-side -- the SHA-256 of the whole token string is the storage key.

  Failures: every signature, algorithm, claim, or expiry problem raises
       InvalidTokenError with the same generic message. Callers must not tell
       "expired" from "tampered" in responses.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import timedelta
from typing import Any

from jose import JWTError, jwt

from auth.errors import InvalidTokenError
from auth.models import SafeUser, TokenTriad, utcnow
from core.config import Settings

logger = logging.getLogger("sessionguard.auth.tokens")

ALGORITHM = "HS256"
TOKEN_TYPE = "Bearer"

_ACCESS = "access"
_REFRESH = "refresh"
_ID = "id"


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest of a raw token.

    Deterministic so the store can look a token up by digest. Refresh and reset
    tokens are high-entropy, so a slow hash buys nothing here.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """Signs and verifies the access / refresh / id token triad."""

    def __init__(self, settings: Settings) -> None:
        self._access_secret = settings.secret_key
        self._refresh_secret = settings.refresh_secret_key
        self.access_expires_in: int = settings.access_token_expire_seconds
        self.refresh_expires_in: int = settings.refresh_token_expire_seconds

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def _encode(self, claims: dict[str, Any], secret: str, lifetime: int, token_type: str) -> str:
        now = utcnow()
        payload = {
            **claims,
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=lifetime),
        }
        return jwt.encode(payload, secret, algorithm=ALGORITHM)

    def create_access_token(self, user_id: str, email: str) -> str:
        return self._encode({"sub": user_id, "email": email}, self._access_secret, self.access_expires_in, _ACCESS)

    def create_refresh_token(self, user_id: str, email: str) -> str:
        return self._encode(
            {"sub": user_id, "email": email, "jti": str(uuid.uuid4())},
            self._refresh_secret,
            self.refresh_expires_in,
            _REFRESH,
        )

    def create_id_token(self, user: SafeUser) -> str:
        claims = {
            "sub": user.id,
            "email": user.email,
            "given_name": user.first_name,
            "family_name": user.last_name,
        }
        return self._encode(claims, self._access_secret, self.access_expires_in, _ID)

    def generate_triad(self, user: SafeUser) -> TokenTriad:
        """Mint access, refresh, and id tokens for a user."""
        return TokenTriad(
            access_token=self.create_access_token(user.id, user.email),
            refresh_token=self.create_refresh_token(user.id, user.email),
            id_token=self.create_id_token(user),
        )

    def build_token_response(self, user: SafeUser, refresh_token: str) -> dict[str, Any]:
        """Build the OAuth token response around an already-persisted refresh token.

        Only the access and id tokens are minted here. The refresh token comes
        from SessionManager, which is the sole owner of refresh-token state.
        """
        return {
            "access_token": self.create_access_token(user.id, user.email),
            "token_type": TOKEN_TYPE,
            "expires_in": self.access_expires_in,
            "refresh_token": refresh_token,
            "id_token": self.create_id_token(user),
        }

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _decode(self, token: str, secret: str, token_type: str, required: tuple[str, ...]) -> dict[str, Any]:
        try:
            payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            logger.debug("JWT rejected: %s", type(exc).__name__)
            raise InvalidTokenError() from exc
        if payload.get("type") != token_type:
            raise InvalidTokenError()
        if any(not payload.get(claim) for claim in required):
            raise InvalidTokenError()
        return payload

    def verify_access(self, token: str) -> dict[str, Any]:
        """Return the payload of a valid access token or raise InvalidTokenError."""
        return self._decode(token, self._access_secret, _ACCESS, ("sub", "email"))

    def verify_refresh(self, token: str) -> dict[str, Any]:
        """Return the payload of a valid refresh token or raise InvalidTokenError."""
        return self._decode(token, self._refresh_secret, _REFRESH, ("sub", "email", "jti"))

    def verify_id(self, token: str) -> dict[str, Any]:
        return self._decode(token, self._access_secret, _ID, ("sub", "email"))
