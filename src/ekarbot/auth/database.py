"""
SQLite account store.

Thread-safe store for app users, sales agent profiles and server-side
session rows. Lookups return CredentialRecord objects or None; any
SQLite failure is raised as AccountStoreError so callers can tell a
missing account from a broken store.
"""

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from loguru import logger

from .errors import AccountStoreError, DuplicateAccountError
from .models import CredentialRecord, Session
from .passwords import BcryptPasswordHasher, PasswordHasher


class AccountStore(Protocol):
    """Account store contract used by the validator and session store."""

    def find_user_by_email(self, email: str, user_type: Optional[str] = None) -> Optional[CredentialRecord]:
        ...

    def find_user_by_username(self, username: str, user_type: Optional[str] = None) -> Optional[CredentialRecord]:
        ...

    def find_user_by_id(self, user_id: str) -> Optional[CredentialRecord]:
        ...

    def find_sales_agent(self, sales_agent_id: str) -> Optional[CredentialRecord]:
        ...

    def email_exists(self, email: str) -> bool:
        ...

    def create_user(self, username: str, email: str, password: str, user_type: str) -> CredentialRecord:
        ...

    def create_session(self, session: Session) -> bool:
        ...

    def delete_session(self, token_id: str) -> bool:
        ...


class AccountDatabase:
    """
    Thread-safe account database.

    Manages app users, sales agents and sessions using SQLite.
    All operations are protected by threading.RLock for thread safety.
    """

    def __init__(self, db_path: Path, hasher: Optional[PasswordHasher] = None, timeout: float = 5.0):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
            hasher: Password hasher for new accounts (default: bcrypt)
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        self.hasher = hasher or BcryptPasswordHasher()
        self.timeout = timeout
        self._lock = threading.RLock()
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Cursor]:
        """Open a connection, commit on success, translate SQLite errors."""
        with self._lock:
            try:
                conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            except sqlite3.Error as e:
                raise AccountStoreError(f"Cannot open account database {self.db_path}: {e}") from e

            try:
                conn.row_factory = sqlite3.Row
                yield conn.cursor()
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise DuplicateAccountError(str(e)) from e
            except sqlite3.Error as e:
                conn.rollback()
                raise AccountStoreError(f"Account database error: {e}") from e
            finally:
                conn.close()

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._connect() as cursor:
            # Generic accounts (managers, developers, sales agents)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS app_users (
                    user_id TEXT PRIMARY KEY,
                    username TEXT UNIQUE NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    user_type TEXT NOT NULL,
                    is_active INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)

            # Sales agent profiles, linked to an app_users row
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sales_agents (
                    id TEXT PRIMARY KEY,
                    sales_agent_id TEXT UNIQUE NOT NULL,
                    sales_agent_name TEXT NOT NULL,
                    email_address TEXT NOT NULL,
                    contact_number TEXT,
                    is_active INTEGER DEFAULT 1,
                    user_id TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES app_users(user_id)
                )
            """)

            # Server-side session rows, deleted on sign-out
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    token_jti TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_account ON sessions(account_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_app_users_type ON app_users(user_type)")

        logger.info(f"Account database initialized: {self.db_path}")

    # ========================================================================
    # App User Operations
    # ========================================================================

    @staticmethod
    def _user_record(row: sqlite3.Row, identifier: str) -> CredentialRecord:
        return CredentialRecord(
            id=row["user_id"],
            identifier=row[identifier],
            secret=row["password_hash"],
            is_active=bool(row["is_active"]),
            role=row["user_type"],
            display_name=row["username"],
            email=row["email"],
        )

    def create_user(self, username: str, email: str, password: str, user_type: str) -> CredentialRecord:
        """
        Create new app user with hashed password.

        Args:
            username: Unique username (also the developer ID for developers)
            email: Unique email address (stored trimmed and lowercased)
            password: Plain text password (will be hashed)
            user_type: Account kind ("user_manager", "developer", "sales_agent")

        Returns:
            Created CredentialRecord (identifier is the email)

        Raises:
            DuplicateAccountError: If username or email already exists
            AccountStoreError: On database failure
        """
        user_id = str(uuid.uuid4())
        email = email.strip().lower()
        password_hash = self.hasher.hash(password)

        with self._connect() as cursor:
            cursor.execute("""
                INSERT INTO app_users (user_id, username, email, password_hash, user_type, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, 1, ?)
            """, (
                user_id,
                username,
                email,
                password_hash,
                user_type,
                datetime.now(timezone.utc).isoformat(),
            ))

        logger.info(f"User created: {username} ({user_id}) with type: {user_type}")
        return CredentialRecord(
            id=user_id,
            identifier=email,
            secret=password_hash,
            is_active=True,
            role=user_type,
            display_name=username,
            email=email,
        )

    def find_user_by_email(self, email: str, user_type: Optional[str] = None) -> Optional[CredentialRecord]:
        """
        Get app user by email.

        Args:
            email: Email, matched exactly (callers normalize first)
            user_type: Restrict to one account kind

        Returns:
            CredentialRecord if found, None otherwise
        """
        with self._connect() as cursor:
            if user_type is None:
                cursor.execute("SELECT * FROM app_users WHERE email = ?", (email,))
            else:
                cursor.execute(
                    "SELECT * FROM app_users WHERE email = ? AND user_type = ?", (email, user_type)
                )
            row = cursor.fetchone()

        return self._user_record(row, "email") if row else None

    def find_user_by_username(self, username: str, user_type: Optional[str] = None) -> Optional[CredentialRecord]:
        """
        Get app user by username.

        Args:
            username: Username, matched exactly (case-sensitive)
            user_type: Restrict to one account kind

        Returns:
            CredentialRecord if found, None otherwise
        """
        with self._connect() as cursor:
            if user_type is None:
                cursor.execute("SELECT * FROM app_users WHERE username = ?", (username,))
            else:
                cursor.execute(
                    "SELECT * FROM app_users WHERE username = ? AND user_type = ?", (username, user_type)
                )
            row = cursor.fetchone()

        return self._user_record(row, "username") if row else None

    def find_user_by_id(self, user_id: str) -> Optional[CredentialRecord]:
        """
        Get app user by ID.

        Args:
            user_id: User ID to search for

        Returns:
            CredentialRecord if found, None otherwise
        """
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM app_users WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()

        return self._user_record(row, "username") if row else None

    def email_exists(self, email: str) -> bool:
        with self._connect() as cursor:
            cursor.execute("SELECT 1 FROM app_users WHERE email = ?", (email,))
            return cursor.fetchone() is not None

    def set_user_active(self, user_id: str, is_active: bool) -> bool:
        """
        Activate or deactivate an app user.

        Returns:
            True if a row was updated
        """
        with self._connect() as cursor:
            cursor.execute(
                "UPDATE app_users SET is_active = ? WHERE user_id = ?", (1 if is_active else 0, user_id)
            )
            success = cursor.rowcount > 0

        if success:
            logger.info(f"User {'activated' if is_active else 'deactivated'}: {user_id}")
        return success

    def list_users(self, user_type: Optional[str] = None) -> List[CredentialRecord]:
        """
        Get all app users, optionally of one kind.

        Returns:
            List of CredentialRecord objects ordered by username
        """
        with self._connect() as cursor:
            if user_type is None:
                cursor.execute("SELECT * FROM app_users ORDER BY username")
            else:
                cursor.execute("SELECT * FROM app_users WHERE user_type = ? ORDER BY username", (user_type,))
            rows = cursor.fetchall()

        return [self._user_record(row, "username") for row in rows]

    # ========================================================================
    # Sales Agent Operations
    # ========================================================================

    @staticmethod
    def _agent_record(row: sqlite3.Row) -> CredentialRecord:
        # The password lives on the linked app_users row
        return CredentialRecord(
            id=row["id"],
            identifier=row["sales_agent_id"],
            secret="",
            is_active=bool(row["is_active"]),
            role="sales_agent",
            display_name=row["sales_agent_name"],
            email=row["email_address"],
            linked_account_id=row["user_id"],
        )

    def create_sales_agent(
        self,
        sales_agent_id: str,
        sales_agent_name: str,
        email_address: str,
        contact_number: str = "",
        user_id: Optional[str] = None,
    ) -> CredentialRecord:
        """
        Create a sales agent profile.

        Args:
            sales_agent_id: Unique agent code used to sign in (e.g. "S101")
            sales_agent_name: Agent display name
            email_address: Agent email
            contact_number: Agent phone number
            user_id: Linked app_users id holding the password

        Raises:
            DuplicateAccountError: If the agent code already exists
        """
        record_id = str(uuid.uuid4())

        with self._connect() as cursor:
            cursor.execute("""
                INSERT INTO sales_agents
                    (id, sales_agent_id, sales_agent_name, email_address, contact_number, is_active, user_id, created_at)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?)
            """, (
                record_id,
                sales_agent_id,
                sales_agent_name,
                email_address,
                contact_number,
                user_id,
                datetime.now(timezone.utc).isoformat(),
            ))

        logger.info(f"Sales agent created: {sales_agent_id} ({record_id})")
        return CredentialRecord(
            id=record_id,
            identifier=sales_agent_id,
            secret="",
            is_active=True,
            role="sales_agent",
            display_name=sales_agent_name,
            email=email_address,
            linked_account_id=user_id,
        )

    def find_sales_agent(self, sales_agent_id: str) -> Optional[CredentialRecord]:
        """
        Get sales agent by agent code.

        Args:
            sales_agent_id: Agent code, matched exactly (case-sensitive)

        Returns:
            CredentialRecord if found, None otherwise
        """
        with self._connect() as cursor:
            cursor.execute("SELECT * FROM sales_agents WHERE sales_agent_id = ?", (sales_agent_id,))
            row = cursor.fetchone()

        return self._agent_record(row) if row else None

    def set_sales_agent_active(self, sales_agent_id: str, is_active: bool) -> bool:
        """
        Activate or deactivate a sales agent profile.

        Returns:
            True if a row was updated
        """
        with self._connect() as cursor:
            cursor.execute(
                "UPDATE sales_agents SET is_active = ? WHERE sales_agent_id = ?",
                (1 if is_active else 0, sales_agent_id),
            )
            success = cursor.rowcount > 0

        if success:
            logger.info(f"Sales agent {'activated' if is_active else 'deactivated'}: {sales_agent_id}")
        return success

    def link_sales_agent(self, sales_agent_id: str, user_id: Optional[str]) -> bool:
        """
        Point a sales agent profile at an app user (None unlinks).

        Returns:
            True if a row was updated
        """
        with self._connect() as cursor:
            cursor.execute(
                "UPDATE sales_agents SET user_id = ? WHERE sales_agent_id = ?", (user_id, sales_agent_id)
            )
            return cursor.rowcount > 0

    # ========================================================================
    # Session Operations
    # ========================================================================

    def create_session(self, session: Session) -> bool:
        """
        Register a server-side session row.

        Args:
            session: Session object

        Returns:
            True if creation succeeded
        """
        with self._connect() as cursor:
            cursor.execute("""
                INSERT INTO sessions (token_jti, account_id, role, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                session.token_id,
                session.identity.id,
                session.identity.role.value,
                session.issued_at.isoformat(),
                session.expires_at.isoformat(),
            ))
            return cursor.rowcount > 0

    def session_exists(self, token_id: str) -> bool:
        with self._connect() as cursor:
            cursor.execute("SELECT 1 FROM sessions WHERE token_jti = ?", (token_id,))
            return cursor.fetchone() is not None

    def delete_session(self, token_id: str) -> bool:
        """
        Delete session (sign-out).

        Args:
            token_id: Token id (jti claim)

        Returns:
            True if a row was deleted
        """
        with self._connect() as cursor:
            cursor.execute("DELETE FROM sessions WHERE token_jti = ?", (token_id,))
            return cursor.rowcount > 0

    def cleanup_expired_sessions(self) -> int:
        """
        Remove expired sessions.

        Returns:
            Number of sessions deleted
        """
        with self._connect() as cursor:
            now = datetime.now(timezone.utc).isoformat()
            cursor.execute("DELETE FROM sessions WHERE expires_at < ?", (now,))
            deleted = cursor.rowcount

        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired sessions")

        return deleted
