"""
Password hashing and verification.

The credential validator only needs ``verify(secret, stored)``; the
hashers here also produce stored values for new accounts.
"""

import hmac
import secrets
import threading
from typing import Optional, Protocol

import bcrypt
from loguru import logger

from .errors import ConfigurationError

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


class PasswordVerifier(Protocol):
    """Compares a supplied secret with a stored value."""

    def verify(self, secret: str, stored: str) -> bool:
        ...

    @property
    def dummy_hash(self) -> str:
        """Stored value that matches no password, verified when no account exists."""
        ...


class PasswordHasher(PasswordVerifier, Protocol):
    """Verifier that can also produce stored values."""

    def hash(self, secret: str) -> str:
        ...


class BcryptPasswordHasher:
    """
    Salted bcrypt hashes.

    bcrypt.checkpw compares in constant time.
    """

    def __init__(self, rounds: int = 12):
        """
        Initialize hasher.

        Args:
            rounds: bcrypt cost factor
        """
        self.rounds = rounds
        self._dummy_hash: Optional[str] = None
        self._dummy_lock = threading.Lock()

    def hash(self, secret: str) -> str:
        """
        Hash a password.

        Raises:
            ValueError: If the password is longer than bcrypt accepts
        """
        encoded = secret.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    @property
    def dummy_hash(self) -> str:
        """
        Hash of a random throwaway password at this hasher's cost.

        Built on first use and reused, so verifying against it takes as
        long as a real mismatch.
        """
        with self._dummy_lock:
            if self._dummy_hash is None:
                self._dummy_hash = self.hash(secrets.token_urlsafe(32))
            return self._dummy_hash

    def verify(self, secret: str, stored: str) -> bool:
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), stored.encode("utf-8"))
        except ValueError as e:
            # Malformed stored hash or over-long password
            logger.warning(f"bcrypt verification failed: {e}")
            return False


class PlaintextPasswordHasher:
    """
    Stored value is the password itself.

    Only for accounts migrated from the legacy back office, which kept
    passwords unhashed. Comparison is still constant time.
    """

    # Random per process, so no supplied secret can match it
    dummy_hash = secrets.token_urlsafe(32)

    def hash(self, secret: str) -> str:
        return secret

    def verify(self, secret: str, stored: str) -> bool:
        return hmac.compare_digest(secret.encode("utf-8"), stored.encode("utf-8"))


def get_password_hasher(scheme: str = "bcrypt", bcrypt_rounds: int = 12) -> PasswordHasher:
    """
    Build a hasher by scheme name.

    Args:
        scheme: "bcrypt" or "plaintext"
        bcrypt_rounds: bcrypt cost factor

    Raises:
        ConfigurationError: For unknown schemes
    """
    if scheme == "bcrypt":
        return BcryptPasswordHasher(rounds=bcrypt_rounds)
    if scheme == "plaintext":
        logger.warning("Plaintext password scheme enabled; stored passwords are not hashed")
        return PlaintextPasswordHasher()
    raise ConfigurationError(f"Unknown password scheme: {scheme}")
