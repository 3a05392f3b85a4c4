"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt.gensalt() produces a fresh random salt on every call, so hashing the
same plaintext twice yields two different digests. bcrypt.checkpw compares in
constant time.

Layer rule: no imports from api/ or ioc/.
"""

from __future__ import annotations

import bcrypt


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt. The API
    layer caps password length (Pydantic field) well below that threshold.
    Any bcrypt failure propagates -- a password that cannot be hashed must
    never be stored.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Malformed or empty digests return False instead of raising.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Timing equalization dummy hash. Computed once at module load so the first
# login attempt is not measurably slower than subsequent ones. Login always
# runs one bcrypt check, even when the email is unknown.
DUMMY_HASH: str = hash_password("iocregistry_timing_dummy")
