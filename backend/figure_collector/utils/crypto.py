"""Low-level hashing primitives.

Pure functions with no domain knowledge; reusable building blocks.
"""

from __future__ import annotations

import hashlib

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

# time_cost=3, memory_cost=64 MiB, parallelism=1 (OWASP Argon2id baseline)
_password_hasher = PasswordHasher(time_cost=3, memory_cost=65536, parallelism=1)


def sha256_hash(data: bytes) -> str:
    """Return the hex-encoded SHA-256 digest of data."""
    return hashlib.sha256(data).hexdigest()


def hash_password(password: str) -> str:
    """Hash a password with Argon2id, returning the PHC-formatted string."""
    return _password_hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Check a password against a stored Argon2id hash.

    Returns False on mismatch or on a malformed stored hash.
    """
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False
