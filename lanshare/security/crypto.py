"""
Security module: password hashing and auth-key derivation.

The password hash (PBKDF2-SHA512) is slow and salted and never leaves the
device. The auth key (SHA-256) is fast and unsalted so two devices that know
the same password derive the same bearer token for the wire.
"""

import os
import logging

from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from lanshare.config import PASSWORD_HASH_LENGTH, PBKDF2_ITERATIONS, SALT_SIZE

logger = logging.getLogger(__name__)


def generate_salt() -> bytes:
    """Generate a fresh random salt for a password-set operation."""
    return os.urandom(SALT_SIZE)


def hash_password(password: str, salt: bytes) -> bytes:
    """
    Derive the slow password hash.

    Returns:
        64 bytes of PBKDF2-HMAC-SHA512 output.
    """
    if not salt:
        raise ValueError("Salt must not be empty")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=PASSWORD_HASH_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def verify_password(password: str, salt: bytes, expected_hash: bytes) -> bool:
    """Recompute the hash for `password` and compare in constant time."""
    return constant_time.bytes_eq(hash_password(password, salt), expected_hash)


def generate_auth_key(password: str) -> str:
    """Derive the hex auth key sent over the network instead of the password."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(password.encode("utf-8"))
    return digest.finalize().hex()


def verify_auth_key(password: str, auth_key: str) -> bool:
    return auth_keys_match(generate_auth_key(password), auth_key)


def auth_keys_match(expected: str, presented: str) -> bool:
    """Constant-time comparison of two auth key strings."""
    return constant_time.bytes_eq(
        expected.encode("utf-8"),
        presented.encode("utf-8"),
    )
