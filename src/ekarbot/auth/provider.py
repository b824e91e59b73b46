"""
Auth context provider.

Builds and owns every auth component for one running process: the
account store, rate limiter, security event log, token handler,
credential validator and one SessionStore per account role. Pass the
provider (or a single SessionStore from it) to whatever needs the
current identity.
"""

import secrets
from pathlib import Path
from typing import Callable, Dict, Optional

from loguru import logger

from ..config import Settings, get_settings
from ..logger import setup_logging
from .audit import AuditSink, LogAuditSink, SecurityEventLog, SQLiteAuditSink
from .database import AccountDatabase, AccountStore
from .models import AccountRole
from .passwords import get_password_hasher
from .rate_limiter import WEBHOOK_RATE_LIMIT, RateLimiter
from .session_store import SessionStore
from .storage import FileStorage, KeyValueStorage, MemoryStorage
from .tokens import SessionTokenHandler
from .validator import CredentialValidator


def _ensure_parent(path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)


class AuthProvider:
    """
    Owner of the auth core.

    Usage:
        with AuthProvider(settings) as auth:
            result = auth.session(AccountRole.SALES_AGENT).sign_in("S101", password)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        account_store: Optional[AccountStore] = None,
        storage: Optional[KeyValueStorage] = None,
        audit_sink: Optional[AuditSink] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize provider.

        Args:
            settings: Settings (default: get_settings())
            account_store: Account store (default: AccountDatabase at settings.db_path)
            storage: Persisted session storage (default: file at
                settings.session_storage_path, or in-memory)
            audit_sink: Security event sink (default: from settings.audit_sink)
            clock: Monotonic clock for the rate limiter
        """
        self.settings = settings or get_settings()
        s = self.settings

        self.hasher = get_password_hasher(s.password_scheme, s.bcrypt_rounds)

        if account_store is None:
            _ensure_parent(s.db_path)
            account_store = AccountDatabase(s.db_path, hasher=self.hasher, timeout=s.db_timeout)
        self.account_store = account_store

        if storage is None:
            storage = FileStorage(s.session_storage_path) if s.session_storage_path else MemoryStorage()
        self.storage = storage

        if audit_sink is None:
            if s.audit_sink == "sqlite":
                _ensure_parent(s.audit_db_path)
                audit_sink = SQLiteAuditSink(s.audit_db_path, timeout=s.db_timeout)
            else:
                audit_sink = LogAuditSink()
        self.event_log = SecurityEventLog(audit_sink)

        self.rate_limiter = RateLimiter(clock)

        secret_key = s.jwt_secret_key or secrets.token_hex(32)
        if not s.jwt_secret_key:
            logger.warning("No EKARBOT_JWT_SECRET_KEY set. Using auto-generated key (not suitable for production)")
            logger.warning("Persisted sessions will not survive a restart with verify_session_on_restore enabled")

        self.token_handler = SessionTokenHandler(
            secret_key, algorithm=s.jwt_algorithm, expire_minutes=s.session_ttl_minutes
        )

        self.validator = CredentialValidator(
            store=self.account_store,
            rate_limiter=self.rate_limiter,
            event_log=self.event_log,
            verifier=self.hasher,
            max_attempts=s.login_max_attempts,
            window_ms=s.login_window_ms,
        )

        self._stores: Dict[AccountRole, SessionStore] = {
            role: SessionStore(
                role=role,
                validator=self.validator,
                storage=self.storage,
                token_handler=self.token_handler,
                account_store=self.account_store,
                event_log=self.event_log,
                verify_on_restore=s.verify_session_on_restore,
            )
            for role in AccountRole
        }
        self._closed = False

        logger.info(f"AuthProvider initialized with {len(self._stores)} account roles")

    @classmethod
    def from_environment(cls) -> "AuthProvider":
        """Configure logging from settings and build a provider."""
        settings = get_settings()
        setup_logging(settings.log_level, audit_file=settings.audit_log_path)
        return cls(settings)

    def open(self) -> "AuthProvider":
        """Restore any persisted sessions. Call once at process start."""
        for store in self._stores.values():
            store.restore()
        return self

    def close(self) -> None:
        """Deliver pending security events and stop the event log."""
        if self._closed:
            return
        self._closed = True
        self.event_log.close()
        logger.info("AuthProvider closed")

    def __enter__(self) -> "AuthProvider":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def session(self, role) -> SessionStore:
        """
        Get the session store for a role.

        Args:
            role: AccountRole or its value

        Raises:
            LookupError: For unknown roles, or once the provider is closed
        """
        if self._closed:
            raise LookupError("AuthProvider is closed")
        try:
            return self._stores[AccountRole(role)]
        except (ValueError, KeyError):
            raise LookupError(f"No session store for role: {role}") from None

    def allow_webhook_call(self, sales_agent_id: str) -> bool:
        """
        Throttle project-recommendation webhook calls per sales agent.

        Returns:
            True if the call may go ahead
        """
        allowed = self.rate_limiter.check(f"webhook_{sales_agent_id}", WEBHOOK_RATE_LIMIT)
        if not allowed:
            self.event_log.record("webhook_rate_limit_exceeded", {"sales_agent_id": sales_agent_id})
        return allowed
