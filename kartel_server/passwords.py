"""
Password hashing and constant-time comparisons.

Hashes are PBKDF2-HMAC-SHA512 with 10000 iterations and a 64-byte derived
key, salted with 16 random bytes. Salt and hash are stored as hex strings
so existing member records keep verifying.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass

ITERATIONS = 10000
KEY_LENGTH = 64
SALT_BYTES = 16
DIGEST = "sha512"
MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class PasswordHash:
    """A salted password hash (hex strings)."""

    salt: str
    hash: str


def _derive(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        DIGEST, password.encode("utf-8"), salt.encode("utf-8"), ITERATIONS, KEY_LENGTH
    ).hex()


def hash_password(password: str, salt: str | None = None) -> PasswordHash:
    """Hash a password with a fresh (or given) salt."""
    salt = salt or secrets.token_hex(SALT_BYTES)
    return PasswordHash(salt=salt, hash=_derive(password, salt))


def verify_password(password: str, salt: str | None, expected_hash: str | None) -> bool:
    """Recompute the hash with the stored salt and compare in constant time."""
    if not password or not salt or not expected_hash:
        return False
    return timing_safe_equal(_derive(password, salt), expected_hash)


def timing_safe_equal(a: str | None, b: str | None) -> bool:
    """Constant-time string comparison. None only equals None."""
    if a is None or b is None:
        return a is b
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def timing_safe_email_equal(a: str | None, b: str | None) -> bool:
    """Case-insensitive constant-time email comparison."""
    if a is None or b is None:
        return a is b
    return timing_safe_equal(a.strip().lower(), b.strip().lower())
