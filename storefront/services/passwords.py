from __future__ import annotations

import hashlib
import hmac
import logging
import os

from passlib.context import CryptContext

PBKDF2_PREFIX = "pbkdf2$"
PBKDF2_ITERATIONS = 120_000
PBKDF2_SALT_BYTES = 16
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

logger = logging.getLogger(__name__)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _pbkdf2_digest(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def _pbkdf2_hash(password: str) -> str:
    salt = os.urandom(PBKDF2_SALT_BYTES)
    digest = _pbkdf2_digest(password, salt, PBKDF2_ITERATIONS)
    return f"{PBKDF2_PREFIX}{PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def _pbkdf2_verify(password: str, password_hash: str) -> bool:
    try:
        _, iterations, salt_hex, digest_hex = password_hash.split("$", 3)
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        computed = _pbkdf2_digest(password, salt, int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(computed, expected)


def looks_hashed(value: str) -> bool:
    return value.startswith((PBKDF2_PREFIX, *BCRYPT_PREFIXES))


def hash_password(password: str) -> str:
    try:
        return _pwd_context.hash(password)
    except (ValueError, AttributeError) as exc:
        # some passlib/bcrypt version pairs fail on hash()
        logger.warning("bcrypt unavailable, falling back to pbkdf2: %s", exc)
        return _pbkdf2_hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    if password_hash.startswith(PBKDF2_PREFIX):
        return _pbkdf2_verify(password, password_hash)
    try:
        return _pwd_context.verify(password, password_hash)
    except (ValueError, AttributeError):
        return False


def needs_rehash(password_hash: str | None) -> bool:
    """True for pbkdf2 fallback hashes and bcrypt hashes below the current cost."""
    if not password_hash:
        return False
    if password_hash.startswith(PBKDF2_PREFIX):
        return True
    if not password_hash.startswith(BCRYPT_PREFIXES):
        return False
    try:
        return _pwd_context.needs_update(password_hash)
    except (ValueError, AttributeError):
        return False
