"""
auth/providers.py -- Identity providers (Strategy pattern) and their registry.

Capabilities are class-level flags, not method-presence checks:
  supports_registration            -- accounts can be created through us
  supports_authorization_redirect  -- the provider has a browser redirect flow

The base-class implementations of get_authorization_url() / handle_callback()
raise NotImplementedError. The API layer maps that to HTTP 501.

Providers:
  local   -- email + password against the username-password credential.
  github  -- federated stub: builds the authorization URL with Authlib's
  google     OAuth2Client. Code exchange is not implemented yet.

Security:
  [C1] LocalIdentityProvider gives the same UnauthorizedError for unknown
       email, missing credential, and wrong password, and runs one scrypt
       comparison (against DUMMY_HASH) even when the user does not exist.

  OAuth state is generated per request by the caller (secrets.token_urlsafe)
  and passed in; providers never invent their own.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from authlib.integrations.httpx_client import OAuth2Client

from auth.errors import INVALID_CREDENTIALS_MESSAGE, ProviderNotSupportedError, UnauthorizedError
from auth.hasher import DUMMY_HASH, CredentialHasher
from auth.models import LOCAL_PROVIDER, SafeUser
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("sessionguard.auth.providers")


@dataclass(frozen=True)
class LocalCredentials:
    email: str
    password: str


class IdentityProvider(ABC):
    name: str = ""
    label: str = ""
    supports_registration: bool = False
    supports_authorization_redirect: bool = False

    @abstractmethod
    def authenticate(self, credentials: LocalCredentials) -> SafeUser:
        """Return the authenticated user or raise UnauthorizedError."""

    def get_authorization_url(self, state: str) -> str:
        raise NotImplementedError(f"Provider {self.name!r} has no authorization redirect")

    def handle_callback(self, code: str) -> SafeUser:
        raise NotImplementedError(f"Provider {self.name!r} has no callback handler")


class LocalIdentityProvider(IdentityProvider):
    name = LOCAL_PROVIDER
    label = "Email and password"
    supports_registration = True

    def __init__(self, users: UserStore, hasher: CredentialHasher) -> None:
        self.users = users
        self.hasher = hasher

    def authenticate(self, credentials: LocalCredentials) -> SafeUser:
        user = self.users.get_by_email_with_credentials(credentials.email)
        credential = user.credential_for(LOCAL_PROVIDER) if user is not None else None

        if credential is None or not credential.password_hash:
            # [C1] burn one scrypt so unknown emails cost the same as wrong passwords
            self.hasher.compare(DUMMY_HASH, credentials.password)
            raise UnauthorizedError(INVALID_CREDENTIALS_MESSAGE)

        if not self.hasher.compare(credential.password_hash, credentials.password):
            raise UnauthorizedError(INVALID_CREDENTIALS_MESSAGE)

        return user.to_safe_user()


class OAuthIdentityProvider(IdentityProvider):
    """Federated provider stub. Only the redirect leg is implemented."""

    supports_authorization_redirect = True

    def __init__(
        self,
        name: str,
        label: str,
        client_id: str,
        client_secret: str,
        authorize_url: str,
        scope: str,
        redirect_uri: str,
    ) -> None:
        self.name = name
        self.label = label
        self.authorize_url = authorize_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._redirect_uri = redirect_uri

    def get_authorization_url(self, state: str) -> str:
        with OAuth2Client(
            client_id=self._client_id,
            client_secret=self._client_secret,
            scope=self._scope,
            redirect_uri=self._redirect_uri,
        ) as client:
            url, _ = client.create_authorization_url(self.authorize_url, state=state)
        return url

    def authenticate(self, credentials: LocalCredentials) -> SafeUser:
        raise NotImplementedError(f"Provider {self.name!r} does not accept passwords")

    def handle_callback(self, code: str) -> SafeUser:
        """Code exchange and account linking are out of scope; always raises."""
        raise NotImplementedError(f"OAuth callback for {self.name!r} is not implemented")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class IdentityProviderRegistry:
    """Name -> provider map. The local provider is always present."""

    def __init__(self, local: LocalIdentityProvider) -> None:
        self.local = local
        self._providers: dict[str, IdentityProvider] = {local.name: local}

    def register(self, provider: IdentityProvider) -> None:
        self._providers[provider.name] = provider
        logger.info("Identity provider registered: %s", provider.name)

    def get(self, name: str) -> IdentityProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotSupportedError(f"Unsupported identity provider: {name}")
        return provider

    def federated(self) -> list[IdentityProvider]:
        return [p for p in self._providers.values() if p.supports_authorization_redirect]

    @classmethod
    def from_settings(cls, settings: Settings, local: LocalIdentityProvider) -> "IdentityProviderRegistry":
        """Build the registry, adding federated providers whose id and secret are set."""
        registry = cls(local)
        if settings.github_client_id and settings.github_client_secret:
            registry.register(
                OAuthIdentityProvider(
                    name="github",
                    label="GitHub",
                    client_id=settings.github_client_id,
                    client_secret=settings.github_client_secret,
                    authorize_url="https://github.com/login/oauth/authorize",
                    scope="read:user user:email",
                    redirect_uri=settings.oauth_redirect_uri,
                )
            )
        if settings.google_client_id and settings.google_client_secret:
            registry.register(
                OAuthIdentityProvider(
                    name="google",
                    label="Google",
                    client_id=settings.google_client_id,
                    client_secret=settings.google_client_secret,
                    authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
                    scope="openid email profile",
                    redirect_uri=settings.oauth_redirect_uri,
                )
            )
        return registry
