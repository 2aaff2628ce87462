"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
managers do the work; the only behavior here is read-time state derivation
from timestamps.

Secret separation:
  SafeUser never carries secret material. UserWithCredential adds the
  credential list (password hashes) and is returned ONLY by the explicit
  *_with_credentials store methods used on the authentication path. General
  lookups cannot leak a hash because their return type has no field for it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

LOCAL_PROVIDER = "username-password"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@dataclass
class SafeUser:
    """A user identity that is safe to pass anywhere, including responses."""

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class UserCredential:
    """One way a user can prove identity.

    provider is "username-password" for local accounts. password_hash is the
    CredentialHasher "salt.derivedKey" string; None for federated identities.
    """

    provider: str
    password_hash: str | None = None
    id: str | None = None


@dataclass
class UserWithCredential(SafeUser):
    """A SafeUser plus its credentials. Authentication path only."""

    credentials: list[UserCredential] = field(default_factory=list)

    def credential_for(self, provider: str) -> UserCredential | None:
        for credential in self.credentials:
            if credential.provider == provider:
                return credential
        return None

    def to_safe_user(self) -> SafeUser:
        return SafeUser(
            id=self.id,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class TokenState(str, Enum):
    LIVE = "live"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class RefreshTokenRecord:
    """Server-side state of one issued refresh token.

    family_id groups every token descended from one login. It is inherited on
    rotation, which is what lets reuse of any generation revoke the whole
    lineage.

    revoked_at is set once and never cleared. It covers both normal
    rotation-out and family-wide invalidation; the two are not distinguished.
    """

    id: str
    token_hash: str
    user_id: str
    family_id: str
    expires_at: datetime
    created_at: datetime
    revoked_at: datetime | None = None

    def state_at(self, now: datetime) -> TokenState:
        # Revocation wins over expiry: a revoked token replayed after it
        # expired is still a reuse signal.
        if self.revoked_at is not None:
            return TokenState.REVOKED
        if self.expires_at <= now:
            return TokenState.EXPIRED
        return TokenState.LIVE

    @property
    def state(self) -> TokenState:
        return self.state_at(utcnow())


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


@dataclass
class PasswordResetTokenRecord:
    """A single-use password reset token. Only the SHA-256 hash is stored."""

    id: str
    token_hash: str
    user_id: str
    expires_at: datetime
    created_at: datetime
    used_at: datetime | None = None


# ---------------------------------------------------------------------------
# Manager results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenTriad:
    access_token: str
    refresh_token: str
    id_token: str


@dataclass(frozen=True)
class SessionResult:
    refresh_token: str
    family_id: str


@dataclass(frozen=True)
class RotationResult:
    new_refresh_token: str
    user_id: str
    email: str
    family_id: str


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity extracted from a verified access token at the transport boundary."""

    id: str
    email: str
