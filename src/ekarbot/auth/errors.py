"""
Authentication error taxonomy.

Exceptions raised at the store and validation seams. The public API
(CredentialValidator.validate, SessionStore.sign_in/sign_out) converts
all of them into an AuthResult, so none of these escape to callers.
"""

from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    """
    Internal reason a validation attempt failed.

    Only ever written to the security event log, never returned to callers.
    """
    INVALID_INPUT = "invalid_input"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    LINKAGE_BROKEN = "linkage_broken"
    SECRET_MISMATCH = "secret_mismatch"
    TRANSPORT = "transport"


class AuthError(Exception):
    """Base class for all auth core errors."""


class ValidationInputError(AuthError):
    """
    Missing or malformed identifier or secret.

    Raised before any rate-limit consumption or store access.

    Attributes:
        field: Name of the offending input ("identifier", "secret", "email", ...)
    """

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class RateLimited(AuthError):
    """
    Too many attempts for a rate-limit key.

    Attributes:
        key: The rate-limit key that was exhausted
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Rate limit exceeded for key: {key}")


class AccountStoreError(AuthError):
    """Account store could not be reached or failed mid-query."""


class DuplicateAccountError(AuthError):
    """An account with the same unique identifier already exists."""


class StorageError(AuthError):
    """Persisted session storage could not be read or written."""


class ConfigurationError(AuthError):
    """Invalid auth core configuration (unknown role, password scheme, ...)."""
