"""
Shared fixtures for the auth core tests.
"""

import threading
from pathlib import Path
from typing import List

import pytest

from ekarbot.auth.audit import SecurityEventLog
from ekarbot.auth.database import AccountDatabase
from ekarbot.auth.models import AccountRole, SecurityEvent
from ekarbot.auth.passwords import BcryptPasswordHasher
from ekarbot.auth.rate_limiter import RateLimiter
from ekarbot.auth.session_store import SessionStore
from ekarbot.auth.storage import MemoryStorage
from ekarbot.auth.tokens import SessionTokenHandler
from ekarbot.auth.validator import CredentialValidator

TEST_SECRET_KEY = "test-secret-key-0123456789abcdef0123456789abcdef0123456789abcdef"

AGENT_ID = "S101"
AGENT_PASSWORD = "correct"
DEVELOPER_ID = "DEV001"
DEVELOPER_PASSWORD = "devpass1"
MANAGER_EMAIL = "manager@ekar.ae"
MANAGER_PASSWORD = "mgrpass1"


class ListAuditSink:
    """Collects security events in memory."""

    def __init__(self):
        self.events: List[SecurityEvent] = []
        self._lock = threading.Lock()

    def write(self, event: SecurityEvent) -> None:
        with self._lock:
            self.events.append(event)


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hasher():
    # Minimum cost keeps the suite fast
    return BcryptPasswordHasher(rounds=4)


@pytest.fixture
def db(tmp_path: Path, hasher):
    return AccountDatabase(tmp_path / "accounts.db", hasher=hasher)


@pytest.fixture
def seeded_db(db):
    """Database with one account of each role."""
    agent_user = db.create_user("s101.user", "s101@ekar.ae", AGENT_PASSWORD, "sales_agent")
    db.create_sales_agent(AGENT_ID, "Sara Agent", "s101@ekar.ae", "+971500000000", user_id=agent_user.id)
    db.create_user(DEVELOPER_ID, "dev001@ekar.ae", DEVELOPER_PASSWORD, "developer")
    db.create_user("manager", MANAGER_EMAIL, MANAGER_PASSWORD, "user_manager")
    return db


@pytest.fixture
def sink():
    return ListAuditSink()


@pytest.fixture
def event_log(sink):
    log = SecurityEventLog(sink)
    yield log
    log.close()


@pytest.fixture
def recorded(event_log, sink):
    """Flush the event log and return everything the sink received."""

    def _recorded() -> List[SecurityEvent]:
        assert event_log.flush(timeout=5)
        return list(sink.events)

    return _recorded


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


@pytest.fixture
def token_handler():
    return SessionTokenHandler(TEST_SECRET_KEY)


@pytest.fixture
def validator(seeded_db, limiter, event_log, hasher):
    return CredentialValidator(
        store=seeded_db,
        rate_limiter=limiter,
        event_log=event_log,
        verifier=hasher,
    )


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_store(validator, storage, token_handler, seeded_db, event_log):
    """Build a SessionStore for a role; keyword arguments override collaborators."""

    def _make(role: AccountRole = AccountRole.SALES_AGENT, **overrides) -> SessionStore:
        kwargs = dict(
            role=role,
            validator=validator,
            storage=storage,
            token_handler=token_handler,
            account_store=seeded_db,
            event_log=event_log,
        )
        kwargs.update(overrides)
        return SessionStore(**kwargs)

    return _make
