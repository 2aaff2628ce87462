"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SessionGuard happen here. No module should
call os.getenv() or os.environ.get() directly.

Injection rule:
  get_settings() is called only at the application edge (api/main.py). Every
  auth component receives the Settings instance in its constructor instead of
  reading module-level state, so tests can build components with a hand-made
  Settings(...) and never mutate the process environment.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. refresh_secret_key -> REFRESH_SECRET_KEY).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Used for the DEBUG-conditional signing-secret policy.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing secret is a
       hard startup failure.

  [M8] The access and refresh secrets must differ. With a shared secret an
       access token would verify as a refresh token signature-wise, and only
       claim checks would stand between the two.

  [M9] The session cookie holding OAuth state is signed with its own secret,
       so a leaked cookie key cannot mint access tokens. When unset it is an
       HMAC of SECRET_KEY under a fixed label.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import hashlib
import hmac
import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessionguard.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///sessionguard_auth.db"

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # either generates a dev key or raises, so callers never see "".
    secret_key: str = ""  # access + id tokens
    refresh_secret_key: str = ""  # refresh tokens only
    # OAuth-state session cookie. Derived from secret_key when unset.
    session_secret_key: str = ""

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    # Trusted base URL for reset links. Never derived from the request Host
    # header -- a poisoned Host would otherwise mail attacker-controlled links.
    password_reset_base_url: str = "http://localhost:3000/reset-password"
    password_reset_expire_seconds: int = 15 * 60
    # Floor for POST /password/forgot latency. Equalizes known and unknown
    # emails so account existence cannot be read from response time.
    password_reset_min_response_seconds: float = 0.5

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "5/15minutes"
    password_reset_rate_limit: str = "3/15minutes"
    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    token_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    oauth_redirect_uri: str = "http://localhost:9000/api/v1/oauth/callback"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_keys(self) -> "Settings":
        """Enforce the signing-secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate random secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject an
            access secret equal to the refresh secret. The session-cookie
            secret is derived when unset and must differ from both [M9].
        """
        for field_name in ("secret_key", "refresh_secret_key"):
            value = getattr(self, field_name)
            if not value:
                if self.debug:
                    setattr(self, field_name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                        field_name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field_name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, field_name)) < 32:
                raise ValueError(f"{field_name.upper()} must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must be different.")
        if not self.session_secret_key:
            self.session_secret_key = hmac.new(
                self.secret_key.encode(), b"sessionguard.session-cookie", hashlib.sha256
            ).hexdigest()
        elif len(self.session_secret_key) < 32:
            raise ValueError("SESSION_SECRET_KEY must be at least 32 characters.")
        if self.session_secret_key in (self.secret_key, self.refresh_secret_key):
            raise ValueError("SESSION_SECRET_KEY must differ from the token signing secrets.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Only the application edge (api/main.py) should call this; components take
    Settings as a constructor argument.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
