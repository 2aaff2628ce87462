"""
auth/service.py -- OAuth grant handling, registration, and userinfo.

AuthService is the facade the routes call. It composes the identity provider,
SessionManager (refresh-token state) and TokenCodec (access/id minting).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from auth.errors import INVALID_REFRESH_TOKEN_MESSAGE, ConflictError, UnauthorizedError
from auth.hasher import CredentialHasher
from auth.models import SafeUser
from auth.password_reset import normalize_email
from auth.providers import IdentityProviderRegistry, LocalCredentials
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenCodec

logger = logging.getLogger("sessionguard.auth.service")

_CONFLICT_MESSAGE = "A user with this email already exists"


class AuthService:
    def __init__(
        self,
        providers: IdentityProviderRegistry,
        sessions: SessionManager,
        codec: TokenCodec,
        users: UserStore,
        hasher: CredentialHasher,
    ) -> None:
        self.providers = providers
        self.sessions = sessions
        self.codec = codec
        self.users = users
        self.hasher = hasher

    def password_grant(self, email: str, password: str) -> dict[str, Any]:
        """grant_type=password: authenticate, start a session, return the triad."""
        user = self.providers.local.authenticate(LocalCredentials(email=normalize_email(email), password=password))
        session = self.sessions.create_session(user.id, user.email)
        return self.codec.build_token_response(user, session.refresh_token)

    def refresh_grant(self, refresh_token: str) -> dict[str, Any]:
        """grant_type=refresh_token: rotate the session, return a fresh triad."""
        rotation = self.sessions.rotate_session(refresh_token)
        user = self.users.get_by_id(rotation.user_id)
        if user is None:
            # Rotation already succeeded; kill the orphaned lineage.
            self.sessions.refresh_tokens.revoke_all_by_family(rotation.family_id)
            logger.warning("Refresh grant for missing user user_id=%s", rotation.user_id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN_MESSAGE)
        return self.codec.build_token_response(user, rotation.new_refresh_token)

    def register(self, email: str, password: str, first_name: str = "", last_name: str = "") -> SafeUser:
        """Create a local account. Raises ConflictError if the email is taken."""
        if not self.providers.local.supports_registration:
            raise NotImplementedError("Registration is disabled")
        email = normalize_email(email)
        if self.users.exists(email):
            raise ConflictError(_CONFLICT_MESSAGE)
        try:
            user = self.users.create_user(email, self.hasher.hash(password), first_name, last_name)
        except IntegrityError as exc:
            raise ConflictError(_CONFLICT_MESSAGE) from exc
        logger.info("User registered user_id=%s", user.id)
        return user

    def userinfo(self, user_id: str) -> dict[str, str]:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UnauthorizedError("Authentication required")
        return {
            "sub": user.id,
            "email": user.email,
            "given_name": user.first_name,
            "family_name": user.last_name,
        }
