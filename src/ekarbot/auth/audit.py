"""
Security event log.

Fire-and-forget recording of named security events. Events are queued
and delivered to a sink by a background thread, so a slow or failing sink
never affects the outcome of a login.
"""

import json
import queue
import sqlite3
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from loguru import logger

from .models import SecurityEvent


class AuditSink(Protocol):
    """Destination for security events."""

    def write(self, event: SecurityEvent) -> None:
        ...


class LogAuditSink:
    """
    Writes security events through loguru.

    Events are bound with ``security_event=True`` so a dedicated loguru
    handler can route them to a separate file.
    """

    def write(self, event: SecurityEvent) -> None:
        logger.bind(security_event=True, action=event.action).info(
            f"Security Event: {event.action} {json.dumps(event.detail, default=str, sort_keys=True)}"
        )


class SQLiteAuditSink:
    """
    Durable append-only audit store.

    Thread-safe; each write opens its own connection.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        """
        Initialize sink.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.timeout = timeout
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Create the events table if it doesn't exist."""
        with self._lock:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS security_events (
                        event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        action TEXT NOT NULL,
                        detail TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_security_events_action ON security_events(action)")
                conn.commit()
            finally:
                conn.close()

    def write(self, event: SecurityEvent) -> None:
        with self._lock:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            try:
                conn.execute(
                    "INSERT INTO security_events (action, detail, created_at) VALUES (?, ?, ?)",
                    (event.action, json.dumps(event.detail, default=str), event.timestamp.isoformat()),
                )
                conn.commit()
            finally:
                conn.close()


_STOP = object()


class SecurityEventLog:
    """
    Append-only security event log.

    ``record()`` only enqueues; a daemon thread delivers to the sink.
    Delivery failures are reported through loguru and dropped.
    """

    def __init__(self, sink: Optional[AuditSink] = None):
        """
        Initialize log and start the delivery thread.

        Args:
            sink: Event destination (default: LogAuditSink)
        """
        self.sink = sink or LogAuditSink()
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._closed = False

        # Guards _closed and _pending; notified whenever an event is delivered
        self._cond = threading.Condition()
        self._pending = 0

        self._worker = threading.Thread(target=self._run, name="security-event-log", daemon=True)
        self._worker.start()

    def record(self, action: str, detail: Optional[Dict[str, Any]] = None) -> None:
        """
        Record a security event.

        Never raises and never waits for the sink.

        Args:
            action: Event name
            detail: Structured detail payload
        """
        try:
            event = SecurityEvent(action=action, detail=dict(detail or {}))
            with self._cond:
                if self._closed:
                    logger.warning(f"Security event dropped after close: {action}")
                    return
                self._pending += 1
                self._queue.put_nowait(event)
        except Exception as e:
            # loguru itself may be the failing piece; go straight to stderr
            print(f"Failed to record security event {action!r}: {e}", file=sys.stderr)

    @property
    def pending(self) -> int:
        """Number of recorded events not yet handed to the sink."""
        with self._cond:
            return self._pending

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued event has been handed to the sink.

        Args:
            timeout: Maximum seconds to wait (None waits indefinitely)

        Returns:
            True if the queue drained in time
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout)

    def close(self, timeout: float = 5.0) -> None:
        """Deliver pending events and stop the delivery thread."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            # Nothing can be enqueued after this
            self._queue.put(_STOP)

        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning("Security event log did not stop within timeout")

    def _run(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self._deliver(item)
            finally:
                with self._cond:
                    self._pending -= 1
                    self._cond.notify_all()

    def _deliver(self, event: SecurityEvent):
        try:
            self.sink.write(event)
        except Exception as e:
            logger.opt(exception=e).error(f"Failed to log security event {event.action}: {e}")
