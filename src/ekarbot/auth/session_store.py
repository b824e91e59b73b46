"""
Session store.

Owns the signed-in identity and session for one account role and keeps
a copy in persisted storage so it survives restarts. Combines the
credential validator, the session token handler and the account store's
session registry into sign-in, sign-up, sign-out, restore and refresh.
"""

import json
import threading
from dataclasses import replace
from typing import Callable, List, Optional

from loguru import logger

from .audit import SecurityEventLog
from .database import AccountStore
from .errors import AccountStoreError, DuplicateAccountError, StorageError, ValidationInputError
from .models import AccountRole, AuthResult, Identity, Session
from .storage import KeyValueStorage
from .tokens import SessionTokenHandler, TokenPayload
from .validation import normalize_email, validate_sign_up_input
from .validator import AUTHENTICATION_FAILED_MESSAGE, DEACTIVATED_MESSAGE, CredentialValidator

IdentityListener = Callable[[Optional[Identity]], None]

NOT_AUTHENTICATED_MESSAGE = "Not authenticated"
SIGN_UP_FAILED_MESSAGE = "Failed to create user account"
USER_EXISTS_MESSAGE = "User already exists with this email"


class SessionStore:
    """
    Current session for one account role.

    All mutations of the current session happen under one lock, so the
    store can be shared between threads.
    """

    def __init__(
        self,
        role: AccountRole,
        validator: CredentialValidator,
        storage: KeyValueStorage,
        token_handler: SessionTokenHandler,
        account_store: AccountStore,
        event_log: SecurityEventLog,
        verify_on_restore: bool = True,
    ):
        """
        Initialize session store.

        Args:
            role: Account role this store signs in
            validator: Credential validator
            storage: Persisted key/value storage
            token_handler: Session token handler
            account_store: Account store (session registry, sign-up)
            event_log: Security event log
            verify_on_restore: Check token signature and expiry in restore().
                When False, a persisted session is trusted as stored.
        """
        self.role = AccountRole(role)
        self.validator = validator
        self.storage = storage
        self.token_handler = token_handler
        self.account_store = account_store
        self.event_log = event_log
        self.verify_on_restore = verify_on_restore

        self.user_key = f"{self.role.value}_user"
        self.token_key = f"{self.role.value}_token"

        self._lock = threading.RLock()
        self._session: Optional[Session] = None
        self._listeners: List[IdentityListener] = []

    # ========================================================================
    # State
    # ========================================================================

    @property
    def session(self) -> Optional[Session]:
        with self._lock:
            return self._session

    @property
    def identity(self) -> Optional[Identity]:
        session = self.session
        return session.identity if session else None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """
        Register a callback for identity changes.

        The callback receives the new Identity, or None after sign-out.

        Returns:
            Function that removes the callback
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, identity: Optional[Identity]):
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(identity)
            except Exception as e:
                logger.opt(exception=e).error(f"Identity listener failed: {e}")

    # ========================================================================
    # Sign in / sign up
    # ========================================================================

    def sign_in(self, identifier: str, secret: str) -> AuthResult:
        """
        Validate credentials and start a session.

        On failure the current session and persisted storage are left as
        they were.

        Args:
            identifier: Login handle for this store's role
            secret: Plain text password

        Returns:
            AuthResult carrying the identity and session on success
        """
        try:
            result = self.validator.validate(identifier, secret, self.role)
            if not result.success or result.identity is None:
                return AuthResult.fail(result.error or AUTHENTICATION_FAILED_MESSAGE)

            return self._start_session(result.identity)

        except Exception as e:
            logger.opt(exception=e).error(f"{self.role.value} sign in exception: {e}")
            self.event_log.record(f"{self.role.value}_signin_exception", {"error": str(e)})
            return AuthResult.fail(AUTHENTICATION_FAILED_MESSAGE)

    def _start_session(self, identity: Identity) -> AuthResult:
        issued = self.token_handler.create_token(identity)
        session = Session(
            token=issued.token,
            identity=identity,
            issued_at=issued.issued_at,
            expires_at=issued.expires_at,
            token_id=issued.jti,
        )

        try:
            self.account_store.create_session(session)
        except AccountStoreError as e:
            logger.error(f"Failed to register session for {identity.id}: {e}")
            self.event_log.record(
                f"{self.role.value}_session_error", {"identifier": identity.identifier, "error": str(e)}
            )
            return AuthResult.fail(AUTHENTICATION_FAILED_MESSAGE)

        with self._lock:
            try:
                self._persist(session)
            except StorageError as e:
                logger.error(f"Failed to persist session for {identity.id}: {e}")
                self._delete_session_row(session.token_id)
                return AuthResult.fail(AUTHENTICATION_FAILED_MESSAGE)

            previous = self._session
            self._session = session

        if previous is not None and previous.token_id != session.token_id:
            self._delete_session_row(previous.token_id)

        logger.info(f"{self.role.value} sign in successful: {identity.identifier}")
        self._publish(identity)
        return AuthResult.ok(identity, session)

    def sign_up(self, email: str, password: str, username: str) -> AuthResult:
        """
        Create an account for this store's role and sign it in.

        Only available for roles that sign in by email.

        Args:
            email: Account email (trimmed and lowercased)
            password: Plain text password
            username: Display/user name

        Returns:
            Result of the sign-in that follows account creation
        """
        strategy = self.validator.strategy_for(self.role)
        if not strategy.email_login:
            return AuthResult.fail("Sign up is not available for this account type")

        try:
            validate_sign_up_input(email, password, username)
        except ValidationInputError as e:
            return AuthResult.fail(str(e))

        email = normalize_email(email)

        try:
            if self.account_store.email_exists(email):
                return AuthResult.fail(USER_EXISTS_MESSAGE)

            self.account_store.create_user(username, email, password, self.role.value)
        except DuplicateAccountError as e:
            logger.warning(f"Sign up rejected for {email}: {e}")
            return AuthResult.fail(SIGN_UP_FAILED_MESSAGE)
        except AccountStoreError as e:
            logger.error(f"User creation error for {email}: {e}")
            return AuthResult.fail(SIGN_UP_FAILED_MESSAGE)
        except ValueError as e:
            # Password rejected by the hasher
            return AuthResult.fail(str(e))

        self.event_log.record(f"{self.role.value}_signup", {"email": email, "username": username})
        return self.sign_in(email, password)

    # ========================================================================
    # Sign out
    # ========================================================================

    def sign_out(self) -> None:
        """
        End the current session.

        Deletes the server-side session row and the persisted copy.
        Calling it without a session is a no-op.
        """
        with self._lock:
            session = self._session
            self._session = None
            token_id = session.token_id if session else self._persisted_token_id()
            self._clear_persisted()

        if token_id:
            self._delete_session_row(token_id)

        if session is None:
            return

        self.event_log.record(
            f"{self.role.value}_signout", {"identifier": session.identity.identifier}
        )
        logger.info(f"{self.role.value} sign out successful: {session.identity.identifier}")
        self._publish(None)

    # ========================================================================
    # Restore / refresh
    # ========================================================================

    def restore(self) -> bool:
        """
        Rebuild the session from persisted storage.

        A valid session is restored without contacting the account store.
        When verify_on_restore is set the stored token must carry a valid
        signature, be unexpired and name the stored identity; otherwise only
        its structure is checked. Anything malformed or partial is cleared,
        and the session row its token names is deleted.

        Returns:
            True if a session was restored
        """
        with self._lock:
            try:
                raw_user = self.storage.get(self.user_key)
                raw_token = self.storage.get(self.token_key)
            except Exception as e:
                logger.error(f"Failed to read persisted {self.role.value} session: {e}")
                return False

            if raw_user is None and raw_token is None:
                return False

            session = self._parse_persisted(raw_user, raw_token)
            if session is None:
                stale_token_id = self._token_id_of(raw_token)
                self._clear_persisted()
            else:
                self._session = session

        if session is None:
            # Expired or rejected; its server-side row is no longer reachable
            if stale_token_id:
                self._delete_session_row(stale_token_id)
            return False

        logger.info(f"{self.role.value} session restored: {session.identity.identifier}")
        self._publish(session.identity)
        return True

    def _parse_persisted(self, raw_user: Optional[str], raw_token: Optional[str]) -> Optional[Session]:
        if not raw_user or not raw_token:
            logger.warning(f"Incomplete persisted {self.role.value} session, clearing it")
            return None

        try:
            identity = Identity.from_dict(json.loads(raw_user))
        except ValueError as e:
            logger.error(f"Error parsing stored {self.role.value} data: {e}")
            return None

        if identity.role != self.role:
            logger.warning(f"Persisted identity has role {identity.role.value}, expected {self.role.value}")
            return None

        claims: Optional[TokenPayload]
        if self.verify_on_restore:
            claims = self.token_handler.verify_token(raw_token)
        else:
            claims = self.token_handler.decode_unverified(raw_token)

        if claims is None:
            return None

        if claims.subject != identity.id or claims.role != self.role.value:
            logger.warning(f"Persisted {self.role.value} token does not match stored identity")
            return None

        return Session(
            token=raw_token,
            identity=identity,
            issued_at=claims.iat,
            expires_at=claims.exp,
            token_id=claims.jti,
        )

    def refresh_identity(self) -> AuthResult:
        """
        Re-read the signed-in account and republish its identity.

        An account that has disappeared, been deactivated or lost its
        linkage is signed out.

        Returns:
            AuthResult with the current identity, or the reason it was dropped
        """
        session = self.session
        if session is None:
            return AuthResult.fail(NOT_AUTHENTICATED_MESSAGE)

        strategy = self.validator.strategy_for(self.role)
        identity = session.identity

        try:
            record = strategy.lookup(self.account_store, identity.identifier)
            reason = None
            if record is None or record.id != identity.id:
                reason = f"{strategy.event_prefix}_not_found"
            elif not record.is_active:
                reason = f"{strategy.event_prefix}_deactivated"
            else:
                reason, _ = strategy.check_linkage(self.account_store, record)
        except AccountStoreError as e:
            logger.error(f"Error fetching updated {self.role.value} profile: {e}")
            return AuthResult.fail(AUTHENTICATION_FAILED_MESSAGE)

        if reason is not None:
            self.event_log.record(
                f"{self.role.value}_session_revoked", {"identifier": identity.identifier, "reason": reason}
            )
            self.sign_out()
            if reason.endswith("_deactivated"):
                return AuthResult.fail(DEACTIVATED_MESSAGE)
            return AuthResult.fail(strategy.invalid_credentials_message)

        refreshed = strategy.build_identity(record)
        if refreshed == identity:
            return AuthResult.ok(identity, session)

        new_session = replace(session, identity=refreshed)
        with self._lock:
            if self._session is None or self._session.token_id != session.token_id:
                # Signed out or replaced while we were reading
                return AuthResult.fail(NOT_AUTHENTICATED_MESSAGE)
            try:
                self._persist(new_session)
            except StorageError as e:
                logger.error(f"Failed to persist refreshed {self.role.value} profile: {e}")
                return AuthResult.ok(identity, session)
            self._session = new_session

        logger.info(f"{self.role.value} profile refreshed: {refreshed.identifier}")
        self._publish(refreshed)
        return AuthResult.ok(refreshed, new_session)

    # ========================================================================
    # Persistence helpers
    # ========================================================================

    def _persist(self, session: Session):
        """Write identity and token; on failure put back what was there."""
        previous_user = self.storage.get(self.user_key)
        previous_token = self.storage.get(self.token_key)
        try:
            self.storage.set(self.user_key, json.dumps(session.identity.to_dict()))
            self.storage.set(self.token_key, session.token)
        except StorageError:
            self._put_back(self.user_key, previous_user)
            self._put_back(self.token_key, previous_token)
            raise

    def _put_back(self, key: str, value: Optional[str]):
        try:
            if value is None:
                self.storage.remove(key)
            else:
                self.storage.set(key, value)
        except StorageError as e:
            logger.error(f"Failed to roll back persisted key {key}: {e}")

    def _clear_persisted(self):
        for key in (self.user_key, self.token_key):
            try:
                self.storage.remove(key)
            except StorageError as e:
                logger.error(f"Failed to remove persisted key {key}: {e}")

    def _persisted_token_id(self) -> Optional[str]:
        try:
            raw_token = self.storage.get(self.token_key)
        except StorageError as e:
            logger.error(f"Failed to read persisted token: {e}")
            return None
        return self._token_id_of(raw_token)

    def _token_id_of(self, raw_token: Optional[str]) -> Optional[str]:
        if not raw_token:
            return None
        claims = self.token_handler.decode_unverified(raw_token)
        return claims.jti if claims else None

    def _delete_session_row(self, token_id: str):
        try:
            self.account_store.delete_session(token_id)
        except AccountStoreError as e:
            logger.error(f"Failed to delete session row {token_id}: {e}")
