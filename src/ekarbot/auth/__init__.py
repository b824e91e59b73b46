"""
Authentication module for EkarBot.

Provides rate-limited, audit-logged credential validation and persisted
sessions for user managers, developers and sales agents.
"""

from .models import AccountRole, AuthResult, CredentialRecord, Identity, RateLimitWindow, SecurityEvent, Session
from .errors import (
    AccountStoreError,
    AuthError,
    ConfigurationError,
    DuplicateAccountError,
    FailureReason,
    RateLimited,
    StorageError,
    ValidationInputError,
)
from .rate_limiter import LOGIN_RATE_LIMIT, WEBHOOK_RATE_LIMIT, RateLimit, RateLimiter
from .audit import AuditSink, LogAuditSink, SecurityEventLog, SQLiteAuditSink
from .passwords import BcryptPasswordHasher, PasswordVerifier, PlaintextPasswordHasher, get_password_hasher
from .database import AccountDatabase, AccountStore
from .roles import (
    ROLE_STRATEGIES,
    DeveloperStrategy,
    RoleStrategy,
    SalesAgentStrategy,
    UserManagerStrategy,
    get_strategy,
    register_strategy,
)
from .tokens import SessionTokenHandler, TokenPayload
from .storage import FileStorage, KeyValueStorage, MemoryStorage
from .validator import CredentialValidator
from .session_store import SessionStore
from .provider import AuthProvider

__all__ = [
    # Models
    "AccountRole",
    "AuthResult",
    "CredentialRecord",
    "Identity",
    "RateLimitWindow",
    "SecurityEvent",
    "Session",
    # Errors
    "AccountStoreError",
    "AuthError",
    "ConfigurationError",
    "DuplicateAccountError",
    "FailureReason",
    "RateLimited",
    "StorageError",
    "ValidationInputError",
    # Rate limiting and audit
    "LOGIN_RATE_LIMIT",
    "WEBHOOK_RATE_LIMIT",
    "RateLimit",
    "RateLimiter",
    "AuditSink",
    "LogAuditSink",
    "SecurityEventLog",
    "SQLiteAuditSink",
    # Credentials
    "BcryptPasswordHasher",
    "PasswordVerifier",
    "PlaintextPasswordHasher",
    "get_password_hasher",
    "AccountDatabase",
    "AccountStore",
    "ROLE_STRATEGIES",
    "DeveloperStrategy",
    "RoleStrategy",
    "SalesAgentStrategy",
    "UserManagerStrategy",
    "get_strategy",
    "register_strategy",
    "CredentialValidator",
    # Sessions
    "SessionTokenHandler",
    "TokenPayload",
    "FileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "SessionStore",
    "AuthProvider",
]
