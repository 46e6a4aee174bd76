"""Credential hashing and verification.

This module hashes and verifies passwords and security-question answers with
bcrypt at a fixed cost factor. Plaintext secrets never leave this module in
any form other than a bcrypt hash.
"""

import hashlib
import hmac
import logging
from typing import Optional

import bcrypt

import config

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a secret
BCRYPT_MAX_BYTES = 72

_BCRYPT_PREFIXES = (b"$2a$", b"$2b$", b"$2y$")


def _to_bytes(secret) -> bytes:
    if isinstance(secret, bytes):
        secret_bytes = secret
    elif isinstance(secret, str):
        secret_bytes = secret.encode("utf-8")
    else:
        secret_bytes = str(secret).encode("utf-8")
    if len(secret_bytes) > BCRYPT_MAX_BYTES:
        secret_bytes = secret_bytes[:BCRYPT_MAX_BYTES]
    return secret_bytes


class CredentialCodec:
    """Hashes and verifies secrets using bcrypt."""

    def __init__(self, rounds: Optional[int] = None):
        """Initialize CredentialCodec.

        Args:
            rounds: bcrypt cost factor. Defaults to config.BCRYPT_ROUNDS.
        """
        self.rounds = rounds or config.BCRYPT_ROUNDS
        # Verified against when an email is unknown, so that path costs the
        # same as a wrong secret.
        self._dummy_hash = bcrypt.hashpw(b"dummy-secret", bcrypt.gensalt(rounds=self.rounds))

    def hash(self, secret: str) -> str:
        """Hash a secret using bcrypt.

        Args:
            secret: Plain text secret.

        Returns:
            Hashed secret (bcrypt hash string).
        """
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(_to_bytes(secret), salt).decode("utf-8")

    def verify(self, secret: str, hashed: Optional[str]) -> bool:
        """Verify a secret against a bcrypt hash.

        A malformed or legacy hash never raises; it simply does not match.
        It still costs one bcrypt verification, so a mismatch takes as long
        whatever the stored format.

        Args:
            secret: Plain text secret to verify.
            hashed: Bcrypt hash string to verify against.

        Returns:
            True if the secret matches, False otherwise.
        """
        if not self.is_recognized(hashed):
            return self.dummy_verify(secret)
        try:
            return bcrypt.checkpw(_to_bytes(secret), hashed.encode("utf-8"))
        except ValueError:
            logger.debug("Stored hash could not be parsed as bcrypt")
            return self.dummy_verify(secret)

    def dummy_verify(self, secret: str) -> bool:
        """Spend one bcrypt verification and return False."""
        bcrypt.checkpw(_to_bytes(secret), self._dummy_hash)
        return False

    def is_recognized(self, hashed: Optional[str]) -> bool:
        """Whether a stored hash is in bcrypt format."""
        if not hashed or not isinstance(hashed, str):
            return False
        return hashed.encode("utf-8").startswith(_BCRYPT_PREFIXES)

    def needs_rehash(self, hashed: Optional[str]) -> bool:
        """Whether a stored hash should be replaced by a current one."""
        if not self.is_recognized(hashed):
            return True
        try:
            cost = int(hashed.split("$")[2])
        except (IndexError, ValueError):
            return True
        return cost != self.rounds

    @staticmethod
    def verify_legacy(secret: str, hashed: Optional[str]) -> bool:
        """Verify a secret against an unsalted SHA-256 hex digest.

        Records created by the earlier in-memory storage carry this format.
        """
        if not hashed or isinstance(hashed, bytes) or len(hashed) != 64:
            return False
        candidate = hashlib.sha256(str(secret).encode("utf-8")).hexdigest()
        return hmac.compare_digest(candidate.encode("ascii"), hashed.lower().encode("utf-8"))
