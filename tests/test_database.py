"""
Unit tests for the SQLite account store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ekarbot.auth.database import AccountDatabase
from ekarbot.auth.errors import AccountStoreError, DuplicateAccountError
from ekarbot.auth.models import AccountRole, Identity, Session


def make_session(token_id: str, account_id: str = "acct-1", expires_in: timedelta = timedelta(hours=1)) -> Session:
    now = datetime.now(timezone.utc)
    identity = Identity(
        id=account_id,
        display_name="Sara Agent",
        email="s101@ekar.ae",
        role=AccountRole.SALES_AGENT,
        identifier="S101",
    )
    return Session(token="t", identity=identity, issued_at=now, expires_at=now + expires_in, token_id=token_id)


class TestAppUsers:
    """Test app user creation and lookup."""

    def test_create_user_hashes_password(self, db, hasher):
        """Test that the stored secret is a bcrypt hash of the password."""
        record = db.create_user("manager", "Manager@Ekar.ae ", "mgrpass1", "user_manager")

        assert record.secret != "mgrpass1"
        assert record.secret.startswith("$2")
        assert hasher.verify("mgrpass1", record.secret)
        assert record.email == "manager@ekar.ae"

    def test_find_by_email_filters_user_type(self, db):
        """Test that the user_type filter restricts matches."""
        db.create_user("manager", "manager@ekar.ae", "mgrpass1", "user_manager")

        assert db.find_user_by_email("manager@ekar.ae", user_type="user_manager") is not None
        assert db.find_user_by_email("manager@ekar.ae", user_type="developer") is None
        assert db.find_user_by_email("nobody@ekar.ae") is None

    def test_find_by_username_is_case_sensitive(self, db):
        """Test that developer IDs are matched exactly."""
        db.create_user("DEV001", "dev@ekar.ae", "devpass1", "developer")

        record = db.find_user_by_username("DEV001", user_type="developer")
        assert record.identifier == "DEV001"
        assert record.role == "developer"
        assert db.find_user_by_username("dev001") is None

    def test_duplicate_email_rejected(self, db):
        """Test that a second account with the same email fails."""
        db.create_user("first", "same@ekar.ae", "password1", "user_manager")

        with pytest.raises(DuplicateAccountError):
            db.create_user("second", "same@ekar.ae", "password2", "user_manager")

    def test_set_user_active(self, db):
        """Test deactivation round trip."""
        record = db.create_user("manager", "manager@ekar.ae", "mgrpass1", "user_manager")

        assert db.set_user_active(record.id, False)
        assert db.find_user_by_id(record.id).is_active is False
        assert not db.set_user_active("missing", False)

    def test_email_exists_and_list(self, db):
        """Test email_exists and list_users."""
        db.create_user("b-dev", "b@ekar.ae", "password1", "developer")
        db.create_user("a-dev", "a@ekar.ae", "password1", "developer")
        db.create_user("mgr", "m@ekar.ae", "password1", "user_manager")

        assert db.email_exists("a@ekar.ae")
        assert not db.email_exists("z@ekar.ae")
        assert [r.display_name for r in db.list_users("developer")] == ["a-dev", "b-dev"]
        assert len(db.list_users()) == 3


class TestSalesAgents:
    """Test sales agent profiles and linkage."""

    def test_agent_record_carries_link(self, db):
        """Test that the agent record points at its app user and holds no secret."""
        user = db.create_user("s101.user", "s101@ekar.ae", "correct", "sales_agent")
        db.create_sales_agent("S101", "Sara Agent", "s101@ekar.ae", user_id=user.id)

        record = db.find_sales_agent("S101")
        assert record.linked_account_id == user.id
        assert record.secret == ""
        assert record.display_name == "Sara Agent"

    def test_link_and_deactivate(self, db):
        """Test unlinking and deactivating an agent."""
        db.create_sales_agent("S102", "Omar Agent", "s102@ekar.ae")

        assert db.find_sales_agent("S102").linked_account_id is None
        assert db.link_sales_agent("S102", "user-9")
        assert db.find_sales_agent("S102").linked_account_id == "user-9"
        assert db.set_sales_agent_active("S102", False)
        assert db.find_sales_agent("S102").is_active is False

    def test_duplicate_agent_code_rejected(self, db):
        """Test that agent codes are unique."""
        db.create_sales_agent("S101", "Sara", "a@ekar.ae")

        with pytest.raises(DuplicateAccountError):
            db.create_sales_agent("S101", "Other", "b@ekar.ae")


class TestSessions:
    """Test server-side session rows."""

    def test_create_and_delete(self, db):
        """Test that a session row exists until deleted."""
        db.create_session(make_session("jti-1"))

        assert db.session_exists("jti-1")
        assert db.delete_session("jti-1")
        assert not db.session_exists("jti-1")
        assert not db.delete_session("jti-1")

    def test_cleanup_expired(self, db):
        """Test that only expired rows are removed."""
        db.create_session(make_session("live"))
        db.create_session(make_session("dead", expires_in=timedelta(hours=-1)))

        assert db.cleanup_expired_sessions() == 1
        assert db.session_exists("live")
        assert not db.session_exists("dead")


class TestFailures:
    """Test that store failures surface as AccountStoreError."""

    def test_unopenable_database(self, tmp_path):
        """Test that a path inside a missing directory raises AccountStoreError."""
        with pytest.raises(AccountStoreError):
            AccountDatabase(tmp_path / "missing" / "accounts.db")

    def test_broken_schema_raises_store_error(self, db):
        """Test that a query against a dropped table raises AccountStoreError, not None."""
        import sqlite3

        conn = sqlite3.connect(str(db.db_path))
        conn.execute("DROP TABLE sales_agents")
        conn.commit()
        conn.close()

        with pytest.raises(AccountStoreError):
            db.find_sales_agent("S101")
