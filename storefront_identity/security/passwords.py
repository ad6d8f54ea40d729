"""PBKDF2 password hashing compatible with the storefront account table.

Stored hashes use the format ``base64(salt);base64(key)`` with
PBKDF2-HMAC-SHA256, a 16 byte salt and a 32 byte derived key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets

logger = logging.getLogger(__name__)

SALT_SIZE = 16
KEY_SIZE = 32
DEFAULT_ITERATIONS = 100_000
ALGORITHM = "sha256"
DELIMITER = ";"
# Derivation input for malformed rows, so a bad hash costs as much as a real one.
_FALLBACK_SALT = bytes(SALT_SIZE)


class Pbkdf2PasswordVerifier:
    """Constant-time password verification against stored PBKDF2 digests."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS) -> None:
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self._iterations = iterations
        # Never matches a real password; only exists so the unknown-email path
        # pays for a full key derivation.
        self._dummy_hash = self.hash_password(secrets.token_urlsafe(32))

    @property
    def dummy_hash(self) -> str:
        return self._dummy_hash

    def hash_password(self, password: str) -> str:
        """Return the storage representation for ``password``."""
        if not password or not password.strip():
            raise ValueError("password cannot be empty")
        salt = secrets.token_bytes(SALT_SIZE)
        key = self._derive(password, salt)
        return DELIMITER.join(
            (base64.b64encode(salt).decode("ascii"), base64.b64encode(key).decode("ascii"))
        )

    def verify(self, password: str, stored_hash: str) -> bool:
        """Return ``True`` when ``password`` matches ``stored_hash``.

        Malformed hashes are reported as a mismatch rather than raised; a bad
        row is a data problem, not something the caller can act on.
        """
        try:
            salt_b64, key_b64 = stored_hash.split(DELIMITER)
            salt = base64.b64decode(salt_b64, validate=True)
            expected = base64.b64decode(key_b64, validate=True)
        except (AttributeError, ValueError, binascii.Error):
            logger.error("stored password hash is malformed; treating as mismatch")
            return self._mismatch(password)
        if not salt or len(expected) != KEY_SIZE:
            logger.error("stored password hash has unexpected sizes; treating as mismatch")
            return self._mismatch(password)
        candidate = self._derive(password or "", salt)
        return hmac.compare_digest(candidate, expected)

    def _mismatch(self, password: str) -> bool:
        self._derive(password or "", _FALLBACK_SALT)
        return False

    def _derive(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac(
            ALGORITHM,
            password.encode("utf-8", errors="surrogatepass"),
            salt,
            self._iterations,
            dklen=KEY_SIZE,
        )
