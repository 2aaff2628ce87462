"""
auth/hasher.py -- Salted scrypt password hashing.

Stored format: "<salt hex>.<derived key hex>"
  salt:        32 random bytes from secrets.token_bytes (64 hex chars), fresh
               per hash, so two hashes of the same password never match.
  derived key: 64 bytes of scrypt(password, salt). scrypt is memory-hard,
               which makes GPU/ASIC brute force of leaked hashes expensive.

The format is self-describing: compare() needs nothing but the stored string.

Comparison uses hmac.compare_digest on the fixed-length hex digests.
Malformed stored values fail closed (False), never raise -- a corrupt row
must look exactly like a wrong password to the caller.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

SALT_BYTES = 32
KEY_BYTES = 64

# scrypt cost parameters (N=2**14, r=8, p=1): the interactive-login profile
# from the scrypt paper, ~16 MiB of memory per hash.
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
_SCRYPT_MAXMEM = 64 * 1024 * 1024


def _derive(password: str, salt: str) -> str:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        maxmem=_SCRYPT_MAXMEM,
        dklen=KEY_BYTES,
    ).hex()


class CredentialHasher:
    """One-way password hashing. Stateless; safe to share across requests."""

    def hash(self, password: str) -> str:
        """Return "salt.derivedKey" for the given plaintext password."""
        salt = secrets.token_bytes(SALT_BYTES).hex()
        return f"{salt}.{_derive(password, salt)}"

    def compare(self, stored: str, supplied: str) -> bool:
        """Return True if supplied hashes to the key embedded in stored."""
        if not stored or "." not in stored:
            return False
        salt, _, expected = stored.partition(".")
        if not salt or len(expected) != KEY_BYTES * 2:
            return False
        try:
            bytes.fromhex(expected)
        except ValueError:
            return False
        return hmac.compare_digest(_derive(supplied, salt), expected)


# Timing equalization dummy [C1].
# Computed once at module load. The local provider compares against it when
# the email is unknown so the response costs one scrypt either way and
# account existence cannot be read from latency.
DUMMY_HASH: str = CredentialHasher().hash("sessionguard_timing_dummy")
