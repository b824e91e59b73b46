"""
Integration tests for the auth provider, settings and logging setup.
"""

import sqlite3

import pytest
from loguru import logger

from ekarbot.auth.models import AccountRole
from ekarbot.auth.provider import AuthProvider
from ekarbot.auth.storage import FileStorage, MemoryStorage
from ekarbot.config import Settings, get_settings
from ekarbot.logger import set_log_level, setup_logging

from conftest import AGENT_ID, AGENT_PASSWORD, TEST_SECRET_KEY, ListAuditSink


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=tmp_path / "accounts.db",
        jwt_secret_key=TEST_SECRET_KEY,
        bcrypt_rounds=4,
        audit_db_path=tmp_path / "audit.db",
        _env_file=None,
    )


def seed_agent(provider):
    db = provider.account_store
    user = db.create_user("s101.user", "s101@ekar.ae", AGENT_PASSWORD, "sales_agent")
    db.create_sales_agent(AGENT_ID, "Sara Agent", "s101@ekar.ae", user_id=user.id)


class TestAuthProvider:
    """Test provider wiring."""

    def test_context_manager_signs_in(self, settings):
        """Test that a provider built from settings can sign an agent in."""
        with AuthProvider(settings) as auth:
            seed_agent(auth)
            result = auth.session(AccountRole.SALES_AGENT).sign_in(AGENT_ID, AGENT_PASSWORD)

            assert result.success
            assert isinstance(auth.storage, MemoryStorage)

    def test_session_lookup(self, settings):
        """Test session store lookup by role value and unknown roles."""
        auth = AuthProvider(settings)
        try:
            assert auth.session("developer").role is AccountRole.DEVELOPER
            with pytest.raises(LookupError):
                auth.session("landlord")
        finally:
            auth.close()

        with pytest.raises(LookupError):
            auth.session(AccountRole.DEVELOPER)
        auth.close()

    def test_login_limits_from_settings(self, settings):
        """Test that login throttling follows the configured limits."""
        settings = settings.model_copy(update={"login_max_attempts": 2})
        with AuthProvider(settings) as auth:
            seed_agent(auth)
            agents = auth.session(AccountRole.SALES_AGENT)
            agents.sign_in(AGENT_ID, "wrong")
            agents.sign_in(AGENT_ID, "wrong")

            assert agents.sign_in(AGENT_ID, AGENT_PASSWORD).error == "Too many login attempts. Please try again later."

    def test_webhook_throttle(self, settings):
        """Test that webhook calls are limited per agent."""
        sink = ListAuditSink()
        with AuthProvider(settings, audit_sink=sink) as auth:
            allowed = [auth.allow_webhook_call(AGENT_ID) for _ in range(11)]
            assert auth.allow_webhook_call("S102")

        assert allowed.count(True) == 10
        assert [e.action for e in sink.events] == ["webhook_rate_limit_exceeded"]

    def test_sqlite_audit_sink(self, settings):
        """Test that the sqlite audit sink receives sign-in events."""
        settings = settings.model_copy(update={"audit_sink": "sqlite"})
        with AuthProvider(settings) as auth:
            seed_agent(auth)
            auth.session(AccountRole.SALES_AGENT).sign_in(AGENT_ID, AGENT_PASSWORD)

        conn = sqlite3.connect(str(settings.audit_db_path))
        actions = [row[0] for row in conn.execute("SELECT action FROM security_events")]
        conn.close()
        assert "successful_sales_agent_login" in actions

    def test_session_survives_restart(self, tmp_path, settings):
        """Test that a file-backed session is restored by a new provider."""
        settings = settings.model_copy(update={"session_storage_path": tmp_path / "session.json"})

        with AuthProvider(settings) as auth:
            assert isinstance(auth.storage, FileStorage)
            seed_agent(auth)
            identity = auth.session(AccountRole.SALES_AGENT).sign_in(AGENT_ID, AGENT_PASSWORD).identity

        with AuthProvider(settings) as auth:
            assert auth.session(AccountRole.SALES_AGENT).identity == identity
            assert not auth.session(AccountRole.DEVELOPER).is_authenticated

    def test_generated_secret_does_not_restore(self, tmp_path, settings):
        """Test that without a configured key a restart drops persisted sessions."""
        settings = settings.model_copy(
            update={"session_storage_path": tmp_path / "session.json", "jwt_secret_key": ""}
        )

        with AuthProvider(settings) as auth:
            seed_agent(auth)
            assert auth.session(AccountRole.SALES_AGENT).sign_in(AGENT_ID, AGENT_PASSWORD).success

        with AuthProvider(settings) as auth:
            assert not auth.session(AccountRole.SALES_AGENT).is_authenticated

    def test_from_environment(self, tmp_path, monkeypatch):
        """Test building a provider from EKARBOT_ environment variables."""
        monkeypatch.setenv("EKARBOT_DB_PATH", str(tmp_path / "env" / "accounts.db"))
        monkeypatch.setenv("EKARBOT_JWT_SECRET_KEY", TEST_SECRET_KEY)
        monkeypatch.setenv("EKARBOT_BCRYPT_ROUNDS", "4")
        get_settings.cache_clear()
        try:
            with AuthProvider.from_environment() as auth:
                assert auth.settings.bcrypt_rounds == 4
                assert (tmp_path / "env" / "accounts.db").exists()
        finally:
            get_settings.cache_clear()
            setup_logging("INFO")

    def test_audit_log_path_from_environment(self, tmp_path, monkeypatch):
        """Test that EKARBOT_AUDIT_LOG_PATH routes security events to their own file."""
        audit_file = tmp_path / "logs" / "security.log"
        monkeypatch.setenv("EKARBOT_DB_PATH", str(tmp_path / "accounts.db"))
        monkeypatch.setenv("EKARBOT_JWT_SECRET_KEY", TEST_SECRET_KEY)
        monkeypatch.setenv("EKARBOT_BCRYPT_ROUNDS", "4")
        monkeypatch.setenv("EKARBOT_AUDIT_LOG_PATH", str(audit_file))
        get_settings.cache_clear()
        try:
            with AuthProvider.from_environment() as auth:
                assert auth.settings.audit_log_path == audit_file
                seed_agent(auth)
                auth.session(AccountRole.SALES_AGENT).sign_in(AGENT_ID, AGENT_PASSWORD)
            logger.complete()
        finally:
            get_settings.cache_clear()
            setup_logging("INFO")

        content = audit_file.read_text()
        assert "successful_sales_agent_login" in content
        assert "AuthProvider initialized" not in content


class TestSettings:
    """Test environment configuration."""

    def test_defaults(self):
        """Test default values."""
        settings = Settings(_env_file=None)

        assert settings.login_max_attempts == 5
        assert settings.login_window_ms == 300000
        assert settings.session_ttl_minutes == 720
        assert settings.verify_session_on_restore is True

    def test_environment_overrides(self, monkeypatch):
        """Test EKARBOT_ prefixed overrides."""
        monkeypatch.setenv("EKARBOT_LOGIN_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("EKARBOT_AUDIT_SINK", "sqlite")
        monkeypatch.setenv("EKARBOT_LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.login_max_attempts == 3
        assert settings.audit_sink == "sqlite"
        assert settings.log_level == "DEBUG"

    def test_invalid_values(self, monkeypatch):
        """Test that invalid values are rejected."""
        monkeypatch.setenv("EKARBOT_LOG_LEVEL", "loud")

        with pytest.raises(ValueError):
            Settings(_env_file=None)

    def test_get_settings_is_cached(self):
        """Test that get_settings returns one instance."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestLogging:
    """Test loguru handler setup."""

    def test_audit_file_receives_only_security_events(self, tmp_path):
        """Test the security event filter on the audit file."""
        audit_file = tmp_path / "security.log"
        setup_logging("DEBUG", audit_file=audit_file)
        try:
            logger.info("ordinary message")
            logger.bind(security_event=True).info("Security Event: successful_developer_login {}")
            set_log_level("WARNING")
            logger.complete()
        finally:
            setup_logging("INFO")

        content = audit_file.read_text()
        assert "successful_developer_login" in content
        assert "ordinary message" not in content
