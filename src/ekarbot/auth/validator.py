"""
Credential validator.

Runs one sign-in attempt through a fixed sequence of checks:
input, rate limit, lookup, active flag, role linkage, password. Every
branch writes a security event before returning, and every failure
except deactivation, throttling, bad input and store outages returns the
same message, so callers cannot tell an unknown identifier from a wrong
password.
"""

from typing import Dict, Optional

from loguru import logger

from .audit import SecurityEventLog
from .database import AccountStore
from .errors import AccountStoreError, ConfigurationError, FailureReason, RateLimited, ValidationInputError
from .models import AccountRole, AuthResult
from .passwords import PasswordVerifier
from .rate_limiter import LOGIN_RATE_LIMIT, RateLimiter
from .roles import RoleStrategy, get_strategy
from .validation import validate_credentials_input

RATE_LIMITED_MESSAGE = "Too many login attempts. Please try again later."
DEACTIVATED_MESSAGE = "Your account has been deactivated by the administrator. Please contact support."
AUTHENTICATION_FAILED_MESSAGE = "Authentication failed. Please try again."


class CredentialValidator:
    """
    Validates identifier/password pairs for every account role.

    Combines the account store, rate limiter, security event log and a
    password verifier. Role-specific lookup and linkage rules come from
    RoleStrategy objects.
    """

    def __init__(
        self,
        store: AccountStore,
        rate_limiter: RateLimiter,
        event_log: SecurityEventLog,
        verifier: PasswordVerifier,
        max_attempts: int = LOGIN_RATE_LIMIT.max_requests,
        window_ms: int = LOGIN_RATE_LIMIT.window_ms,
        strategies: Optional[Dict[AccountRole, RoleStrategy]] = None,
    ):
        """
        Initialize validator.

        Args:
            store: Account store to look records up in
            rate_limiter: Shared rate limiter
            event_log: Security event log
            verifier: Password verifier (bcrypt, or legacy plaintext)
            max_attempts: Sign-in attempts allowed per identifier per window
            window_ms: Rate-limit window in milliseconds
            strategies: Role strategies (default: ROLE_STRATEGIES)
        """
        self.store = store
        self.rate_limiter = rate_limiter
        self.event_log = event_log
        self.verifier = verifier
        self.max_attempts = max_attempts
        self.window_ms = window_ms
        self.strategies = strategies

    def strategy_for(self, role) -> RoleStrategy:
        if self.strategies is None:
            return get_strategy(role)
        return self.strategies[AccountRole(role)]

    @staticmethod
    def rate_limit_key(role: AccountRole, identifier: str) -> str:
        return f"{role.value}_login_{identifier}"

    def validate(self, identifier: str, secret: str, role) -> AuthResult:
        """
        Validate credentials for a role.

        Args:
            identifier: Login handle (email, developer ID or sales agent ID)
            secret: Plain text password
            role: AccountRole (or its value) the caller is signing in as

        Returns:
            AuthResult with the identity on success, or a user-facing error.
            Never raises.
        """
        try:
            strategy = self.strategy_for(role)
        except (ConfigurationError, KeyError, ValueError) as e:
            logger.error(f"Sign-in attempted for unsupported role {role!r}: {e}")
            self.event_log.record("login_error", {"role": str(role), "reason": "unsupported_role"})
            return AuthResult.fail(AUTHENTICATION_FAILED_MESSAGE)

        action = f"failed_{strategy.role.value}_login"

        try:
            validate_credentials_input(identifier, secret, strategy.label, email=strategy.email_login)
        except ValidationInputError as e:
            self.event_log.record(action, {"reason": FailureReason.INVALID_INPUT.value, "field": e.field})
            return AuthResult.fail(str(e))

        identifier = strategy.normalize_identifier(identifier)
        audit = {"role": strategy.role.value, "identifier": identifier}

        try:
            return self._validate(strategy, identifier, secret, action, audit)
        except AccountStoreError as e:
            logger.error(f"{strategy.role.value} authentication error: {e}")
            self.event_log.record(
                f"{strategy.role.value}_login_error",
                {**audit, "reason": FailureReason.TRANSPORT.value, "error": str(e)},
            )
            return AuthResult.fail(AUTHENTICATION_FAILED_MESSAGE)
        except Exception as e:
            logger.opt(exception=e).error(f"Unexpected {strategy.role.value} authentication error: {e}")
            self.event_log.record(f"{strategy.role.value}_login_error", {**audit, "error": str(e)})
            return AuthResult.fail(AUTHENTICATION_FAILED_MESSAGE)

    def _verify_dummy(self, secret: str) -> None:
        # Spend the same hashing work as a real mismatch so response time
        # does not reveal whether the identifier exists
        self.verifier.verify(secret, self.verifier.dummy_hash)

    def _validate(
        self, strategy: RoleStrategy, identifier: str, secret: str, action: str, audit: dict
    ) -> AuthResult:
        # Rate check
        try:
            self.rate_limiter.enforce(
                self.rate_limit_key(strategy.role, identifier), self.max_attempts, self.window_ms
            )
        except RateLimited:
            self.event_log.record("rate_limit_exceeded", {**audit, "reason": FailureReason.RATE_LIMITED.value})
            logger.warning(f"Login rate limit exceeded for {strategy.role.value} '{identifier}'")
            return AuthResult.fail(RATE_LIMITED_MESSAGE)

        # Lookup
        record = strategy.lookup(self.store, identifier)
        if record is None:
            self.event_log.record(action, {**audit, "reason": f"{strategy.event_prefix}_not_found"})
            self._verify_dummy(secret)
            return AuthResult.fail(strategy.invalid_credentials_message)

        # Active check
        if not record.is_active:
            self.event_log.record(action, {**audit, "reason": f"{strategy.event_prefix}_deactivated"})
            return AuthResult.fail(DEACTIVATED_MESSAGE)

        # Linkage check
        reason, secret_holder = strategy.check_linkage(self.store, record)
        if reason is not None or secret_holder is None:
            self.event_log.record(action, {**audit, "reason": reason or FailureReason.LINKAGE_BROKEN.value})
            self._verify_dummy(secret)
            return AuthResult.fail(strategy.invalid_credentials_message)

        # Secret compare
        if not self.verifier.verify(secret, secret_holder.secret):
            self.event_log.record(action, {**audit, "reason": "password_mismatch"})
            return AuthResult.fail(strategy.invalid_credentials_message)

        self.event_log.record(f"successful_{strategy.role.value}_login", audit)
        logger.info(f"{strategy.role.value} authenticated: {identifier}")
        return AuthResult.ok(strategy.build_identity(record))
