"""
tests/test_hasher.py -- Unit tests for auth/hasher.py.

Coverage:
  - Stored format is "<64 hex salt>.<128 hex key>"
  - Same password hashes differently each time (fresh salt)
  - compare() accepts the right password and rejects a wrong one
  - Malformed stored values fail closed instead of raising
"""

from __future__ import annotations

import pytest

from auth.hasher import DUMMY_HASH, CredentialHasher


@pytest.fixture(scope="module")
def hasher() -> CredentialHasher:
    return CredentialHasher()


class TestHashFormat:
    def test_salt_and_key_lengths(self, hasher: CredentialHasher) -> None:
        salt, sep, key = hasher.hash("Sup3rSecret").partition(".")
        assert sep == "."
        assert len(salt) == 64
        assert len(key) == 128
        int(salt, 16)
        int(key, 16)

    def test_same_password_different_hashes(self, hasher: CredentialHasher) -> None:
        """Two hashes of one password differ because each gets a fresh salt."""
        first = hasher.hash("Sup3rSecret")
        second = hasher.hash("Sup3rSecret")
        assert first != second
        assert hasher.compare(first, "Sup3rSecret")
        assert hasher.compare(second, "Sup3rSecret")


class TestCompare:
    def test_round_trip(self, hasher: CredentialHasher) -> None:
        stored = hasher.hash("correct horse")
        assert hasher.compare(stored, "correct horse") is True
        assert hasher.compare(stored, "correct horsE") is False

    def test_empty_supplied_password_rejected(self, hasher: CredentialHasher) -> None:
        assert hasher.compare(hasher.hash("x"), "") is False

    @pytest.mark.parametrize(
        "stored",
        ["", "no-separator", ".abcd", "abcd.", "abcd.tooshort", "abcd." + "zz" * 64],
    )
    def test_malformed_stored_value_is_false(self, hasher: CredentialHasher, stored: str) -> None:
        assert hasher.compare(stored, "anything") is False

    def test_dummy_hash_is_well_formed(self, hasher: CredentialHasher) -> None:
        """The timing dummy must run a real scrypt, not short-circuit on format."""
        salt, _, key = DUMMY_HASH.partition(".")
        assert len(salt) == 64 and len(key) == 128
        assert hasher.compare(DUMMY_HASH, "not the dummy") is False
