"""
auth/passwords.py -- bcrypt password hashing and timing equalization.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error.

The request models cap passwords at 128 characters. bcrypt only looks at the
first 72 bytes, so hash_password() truncates explicitly -- bcrypt 4.x raises
instead of truncating, and a long passphrase must still hash deterministically.
"""

from __future__ import annotations

import bcrypt

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A corrupt stored hash is a
    failed match, not a server error.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login always runs one bcrypt check even when
# the email is unknown, so response time does not reveal which accounts exist.
DUMMY_HASH: str = hash_password("secureblog_timing_dummy")
