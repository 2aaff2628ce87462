"""
tests/support.py -- Helpers shared by the unit and integration tests.

Kept out of conftest.py so test modules can import them by name.
"""

from __future__ import annotations

import uuid
from urllib.parse import parse_qs, urlparse

from auth.store import AuthDatabase
from core.config import Settings

TEST_SECRET_KEY = "test-access-secret-0123456789abcdef0123456789"
TEST_REFRESH_SECRET_KEY = "test-refresh-secret-0123456789abcdef012345678"

# Small but nonzero so the padding path is exercised without slowing the suite.
RESET_FLOOR_SECONDS = 0.05

VALID_PASSWORD = "Sup3rSecret"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET_KEY,
        "refresh_secret_key": TEST_REFRESH_SECRET_KEY,
        "password_reset_min_response_seconds": RESET_FLOOR_SECONDS,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def make_database(db_suffix: str | None = None) -> AuthDatabase:
    """Create an isolated named shared-memory SQLite database."""
    suffix = db_suffix or uuid.uuid4().hex
    return AuthDatabase(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")


def reset_token_from_url(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


class RecordingMailer:
    """MailDispatcher fake. Set fail_confirmation to simulate a transport outage."""

    def __init__(self) -> None:
        self.reset_emails: list[tuple[str, str]] = []
        self.confirmations: list[str] = []
        self.fail_confirmation = False

    def send_password_reset_email(self, to: str, reset_url: str) -> None:
        self.reset_emails.append((to, reset_url))

    def send_password_reset_confirmation(self, to: str) -> None:
        if self.fail_confirmation:
            raise RuntimeError("mail transport unavailable")
        self.confirmations.append(to)

    def last_reset_token(self) -> str:
        return reset_token_from_url(self.reset_emails[-1][1])
