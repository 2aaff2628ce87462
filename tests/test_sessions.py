"""
tests/test_sessions.py -- Unit tests for auth/sessions.py (SessionManager).

Coverage:
  - Each login starts a new family; rotation keeps the family (lineage)
  - A refresh token rotates at most once (single-use)
  - Replaying a rotated-out token revokes every token in the family
    (family containment) and leaves other families alone
  - A rotation that loses a race is handled as reuse
  - Expired, unknown, and wrongly typed tokens are rejected with one message
  - revoke_session only touches live tokens owned by the caller
  - Security events are logged with their stable event names
"""

from __future__ import annotations

import logging
from datetime import timedelta
from types import SimpleNamespace

import pytest

from auth.errors import INVALID_REFRESH_TOKEN_MESSAGE, UnauthorizedError
from auth.models import SafeUser, TokenState, utcnow
from auth.tokens import hash_token


def _state(auth: SimpleNamespace, token: str) -> TokenState:
    return auth.refresh_token_store.find_by_hash(hash_token(token)).state


class TestCreateSession:
    def test_new_family_per_login(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        first = auth.session_manager.create_session(alice.id, alice.email)
        second = auth.session_manager.create_session(alice.id, alice.email)
        assert first.family_id != second.family_id
        assert _state(auth, first.refresh_token) is TokenState.LIVE

    def test_only_digest_is_stored(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        record = auth.refresh_token_store.find_by_hash(hash_token(session.refresh_token))
        assert record.token_hash != session.refresh_token
        assert len(record.token_hash) == 64


class TestRotation:
    def test_rotation_revokes_old_and_keeps_family(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        rotated = auth.session_manager.rotate_session(session.refresh_token)

        assert rotated.new_refresh_token != session.refresh_token
        assert rotated.family_id == session.family_id
        assert rotated.user_id == alice.id
        assert rotated.email == alice.email
        assert _state(auth, session.refresh_token) is TokenState.REVOKED
        assert _state(auth, rotated.new_refresh_token) is TokenState.LIVE

    def test_lineage_is_preserved_across_generations(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        token = session.refresh_token
        for _ in range(3):
            rotated = auth.session_manager.rotate_session(token)
            assert rotated.family_id == session.family_id
            token = rotated.new_refresh_token

    def test_token_rotates_at_most_once(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        auth.session_manager.rotate_session(session.refresh_token)
        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session(session.refresh_token)


class TestReuseDetection:
    def test_reuse_revokes_whole_family(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        t2 = auth.session_manager.rotate_session(session.refresh_token).new_refresh_token
        t3 = auth.session_manager.rotate_session(t2).new_refresh_token

        with pytest.raises(UnauthorizedError) as exc_info:
            auth.session_manager.rotate_session(session.refresh_token)
        assert exc_info.value.message == INVALID_REFRESH_TOKEN_MESSAGE

        assert _state(auth, t3) is TokenState.REVOKED
        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session(t3)

    def test_reuse_leaves_other_families_alone(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        laptop = auth.session_manager.create_session(alice.id, alice.email)
        phone = auth.session_manager.create_session(alice.id, alice.email)
        auth.session_manager.rotate_session(laptop.refresh_token)

        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session(laptop.refresh_token)

        assert _state(auth, phone.refresh_token) is TokenState.LIVE
        auth.session_manager.rotate_session(phone.refresh_token)

    def test_reuse_is_logged(
        self, auth: SimpleNamespace, alice: SafeUser, caplog: pytest.LogCaptureFixture
    ) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        auth.session_manager.rotate_session(session.refresh_token)
        with caplog.at_level(logging.ERROR, logger="sessionguard.auth.sessions"):
            with pytest.raises(UnauthorizedError):
                auth.session_manager.rotate_session(session.refresh_token)
        events = [r for r in caplog.records if getattr(r, "event", None) == "TOKEN_REUSE_DETECTED"]
        assert len(events) == 1
        assert events[0].family_id == session.family_id
        assert events[0].revoked_count == 1

    def test_race_loser_is_treated_as_reuse(
        self, auth: SimpleNamespace, alice: SafeUser, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Two requests read the token as live; only one conditional revoke can win."""
        store = auth.refresh_token_store
        session = auth.session_manager.create_session(alice.id, alice.email)
        stale_read = store.find_by_hash(hash_token(session.refresh_token))

        winner = auth.session_manager.rotate_session(session.refresh_token)

        monkeypatch.setattr(store, "find_by_hash", lambda token_hash, conn=None: stale_read)
        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session(session.refresh_token)
        monkeypatch.undo()

        assert _state(auth, winner.new_refresh_token) is TokenState.REVOKED


class TestRejection:
    def test_expired_token_rejected_without_family_revocation(
        self, auth: SimpleNamespace, alice: SafeUser
    ) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        stale = auth.token_codec.create_refresh_token(alice.id, alice.email)
        auth.refresh_token_store.create(
            alice.id, hash_token(stale), session.family_id, utcnow() - timedelta(seconds=1)
        )

        with pytest.raises(UnauthorizedError) as exc_info:
            auth.session_manager.rotate_session(stale)
        assert exc_info.value.message == INVALID_REFRESH_TOKEN_MESSAGE
        assert _state(auth, session.refresh_token) is TokenState.LIVE

    def test_unknown_token_rejected(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        """A validly signed token that was never persisted."""
        unpersisted = auth.token_codec.create_refresh_token(alice.id, alice.email)
        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session(unpersisted)

    def test_access_token_rejected(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        access = auth.token_codec.create_access_token(alice.id, alice.email)
        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session(access)

    def test_garbage_rejected(self, auth: SimpleNamespace) -> None:
        with pytest.raises(UnauthorizedError):
            auth.session_manager.rotate_session("garbage")


class TestRevocation:
    def test_revoke_own_live_session(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        auth.session_manager.revoke_session(alice.id, session.refresh_token)
        assert _state(auth, session.refresh_token) is TokenState.REVOKED

    def test_revoke_other_users_token_is_noop(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        session = auth.session_manager.create_session(alice.id, alice.email)
        auth.session_manager.revoke_session("someone-else", session.refresh_token)
        assert _state(auth, session.refresh_token) is TokenState.LIVE

    def test_revoke_unknown_token_is_noop(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        auth.session_manager.revoke_session(alice.id, "never-issued")

    def test_revoke_all_sessions(self, auth: SimpleNamespace, alice: SafeUser) -> None:
        first = auth.session_manager.create_session(alice.id, alice.email)
        second = auth.session_manager.create_session(alice.id, alice.email)
        assert auth.session_manager.revoke_all_sessions(alice.id) == 2
        assert _state(auth, first.refresh_token) is TokenState.REVOKED
        assert _state(auth, second.refresh_token) is TokenState.REVOKED
