"""
tests/test_password_reset.py -- Unit tests for auth/password_reset.py.

Coverage:
  - request_reset: identical result for known and unknown emails, both padded
    to the configured floor; email normalization; earlier tokens invalidated,
    also under concurrent requests;
    reset URL built from configuration; failures swallowed
  - reset_password: single-use; new password works and old one stops working;
    every refresh token of the user is revoked; confirmation mail sent
  - Atomicity: a failing confirmation mail rolls the whole reset back
  - A token whose user no longer exists is rejected
"""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from types import SimpleNamespace

import pytest

from auth.errors import INVALID_CREDENTIALS_MESSAGE, INVALID_RESET_TOKEN_MESSAGE, UnauthorizedError
from auth.models import SafeUser, TokenState, utcnow
from auth.password_reset import RESET_REQUEST_MESSAGE, RESET_SUCCESS_MESSAGE
from auth.store import users
from auth.tokens import hash_token
from support import RESET_FLOOR_SECONDS, VALID_PASSWORD, reset_token_from_url

NEW_PASSWORD = "N3wPassword"


def _request(auth: SimpleNamespace, email: str) -> tuple[dict, float]:
    started = time.monotonic()
    result = asyncio.run(auth.password_reset_manager.request_reset(email))
    return result, time.monotonic() - started


class TestRequestReset:
    def test_known_and_unknown_emails_are_indistinguishable(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        known, known_elapsed = _request(auth, "alice@example.com")
        unknown, unknown_elapsed = _request(auth, "nobody@example.com")

        assert known == unknown == {"message": RESET_REQUEST_MESSAGE}
        # asyncio timer granularity can land a hair under the requested sleep.
        assert known_elapsed >= RESET_FLOOR_SECONDS * 0.95
        assert unknown_elapsed >= RESET_FLOOR_SECONDS * 0.95
        assert len(auth.mailer.reset_emails) == 1

    def test_email_is_normalized(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        _request(auth, "  Alice@Example.COM ")
        assert auth.mailer.reset_emails[0][0] == "alice@example.com"

    def test_reset_url_uses_configured_base(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        _request(auth, "alice@example.com")
        url = auth.mailer.reset_emails[0][1]
        assert url.startswith(auth.settings.password_reset_base_url + "?token=")
        assert len(auth.mailer.last_reset_token()) == 64

    def test_only_digest_is_stored(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        _request(auth, "alice@example.com")
        raw = auth.mailer.last_reset_token()
        record = auth.reset_token_store.find_valid_by_hash(hash_token(raw))
        assert record is not None
        assert record.token_hash != raw
        assert timedelta(minutes=14) < record.expires_at - utcnow() <= timedelta(minutes=15)

    def test_new_request_invalidates_earlier_token(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        _request(auth, "alice@example.com")
        first = auth.mailer.last_reset_token()
        _request(auth, "alice@example.com")
        second = auth.mailer.last_reset_token()

        with pytest.raises(UnauthorizedError):
            auth.password_reset_manager.reset_password(first, NEW_PASSWORD)
        assert auth.password_reset_manager.reset_password(second, NEW_PASSWORD) == {"message": RESET_SUCCESS_MESSAGE}

    def test_concurrent_requests_leave_one_valid_token(
        self, auth: SimpleNamespace, alice: SafeUser, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        store = auth.reset_token_store
        create = store.create

        def slow_create(*args, **kwargs):
            time.sleep(0.05)
            return create(*args, **kwargs)

        monkeypatch.setattr(store, "create", slow_create)

        async def two_requests() -> None:
            manager = auth.password_reset_manager
            await asyncio.gather(manager.request_reset("alice@example.com"), manager.request_reset("alice@example.com"))

        asyncio.run(two_requests())

        mailed = [reset_token_from_url(url) for _, url in auth.mailer.reset_emails]
        valid = [token for token in mailed if store.find_valid_by_hash(hash_token(token)) is not None]
        assert mailed
        assert len(valid) == 1

    def test_errors_are_swallowed(
        self, auth: SimpleNamespace, alice: SafeUser, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def explode(to: str, reset_url: str) -> None:
            raise RuntimeError("smtp down")

        monkeypatch.setattr(auth.mailer, "send_password_reset_email", explode)
        result, elapsed = _request(auth, "alice@example.com")
        assert result == {"message": RESET_REQUEST_MESSAGE}
        assert elapsed >= RESET_FLOOR_SECONDS * 0.95


class TestResetPassword:
    @pytest.fixture
    def reset_token(self, auth: SimpleNamespace, alice: SafeUser) -> str:
        _request(auth, "alice@example.com")
        return auth.mailer.last_reset_token()

    def test_new_password_replaces_old(self, auth: SimpleNamespace, reset_token: str) -> None:
        result = auth.password_reset_manager.reset_password(reset_token, NEW_PASSWORD)
        assert result == {"message": RESET_SUCCESS_MESSAGE}

        with pytest.raises(UnauthorizedError) as exc_info:
            auth.auth_service.password_grant("alice@example.com", VALID_PASSWORD)
        assert exc_info.value.message == INVALID_CREDENTIALS_MESSAGE
        assert auth.auth_service.password_grant("alice@example.com", NEW_PASSWORD)["access_token"]

    def test_token_is_single_use(self, auth: SimpleNamespace, reset_token: str) -> None:
        auth.password_reset_manager.reset_password(reset_token, NEW_PASSWORD)
        with pytest.raises(UnauthorizedError) as exc_info:
            auth.password_reset_manager.reset_password(reset_token, "An0therPassword")
        assert exc_info.value.message == INVALID_RESET_TOKEN_MESSAGE

    def test_reset_revokes_every_session(self, auth: SimpleNamespace, alice: SafeUser, reset_token: str) -> None:
        laptop = auth.session_manager.create_session(alice.id, alice.email)
        phone = auth.session_manager.create_session(alice.id, alice.email)

        auth.password_reset_manager.reset_password(reset_token, NEW_PASSWORD)

        for session in (laptop, phone):
            record = auth.refresh_token_store.find_by_hash(hash_token(session.refresh_token))
            assert record.state is TokenState.REVOKED
        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session(phone.refresh_token)

    def test_confirmation_mail_sent(self, auth: SimpleNamespace, reset_token: str) -> None:
        auth.password_reset_manager.reset_password(reset_token, NEW_PASSWORD)
        assert auth.mailer.confirmations == ["alice@example.com"]

    def test_unknown_token_rejected(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        with pytest.raises(UnauthorizedError) as exc_info:
            auth.password_reset_manager.reset_password("0" * 64, NEW_PASSWORD)
        assert exc_info.value.message == INVALID_RESET_TOKEN_MESSAGE

    def test_expired_token_rejected(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        auth.reset_token_store.create(alice.id, hash_token("expired-token"), utcnow() - timedelta(seconds=1))
        with pytest.raises(UnauthorizedError):
            auth.password_reset_manager.reset_password("expired-token", NEW_PASSWORD)

    def test_mail_failure_rolls_back_everything(
        self, auth: SimpleNamespace, alice: SafeUser, reset_token: str
    ) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        auth.mailer.fail_confirmation = True

        with pytest.raises(RuntimeError):
            auth.password_reset_manager.reset_password(reset_token, NEW_PASSWORD)

        assert auth.reset_token_store.find_valid_by_hash(hash_token(reset_token)) is not None
        assert auth.refresh_token_store.find_by_hash(hash_token(session.refresh_token)).state is TokenState.LIVE
        assert auth.auth_service.password_grant("alice@example.com", VALID_PASSWORD)["access_token"]

        auth.mailer.fail_confirmation = False
        assert auth.password_reset_manager.reset_password(reset_token, NEW_PASSWORD) == {
            "message": RESET_SUCCESS_MESSAGE
        }

    def test_token_of_deleted_user_rejected(self, auth: SimpleNamespace, alice: SafeUser, reset_token: str) -> None:
        with auth.db.transaction() as conn:
            conn.execute(users.delete().where(users.c.id == alice.id))

        with pytest.raises(UnauthorizedError) as exc_info:
            auth.password_reset_manager.reset_password(reset_token, NEW_PASSWORD)
        assert exc_info.value.message == INVALID_RESET_TOKEN_MESSAGE
