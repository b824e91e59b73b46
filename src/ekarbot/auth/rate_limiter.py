"""
Rate Limiter

Fixed-window request counter keyed by an arbitrary string:
- Login attempts (per identifier)
- Webhook calls (per sales agent)

State is process-local and resets on restart, so limits only hold for a
single-instance deployment.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger

from .errors import RateLimited
from .models import RateLimitWindow


@dataclass(frozen=True)
class RateLimit:
    """A named (max_requests, window_ms) pair."""

    max_requests: int
    window_ms: int


LOGIN_RATE_LIMIT = RateLimit(max_requests=5, window_ms=300_000)  # 5 attempts per 5 minutes
WEBHOOK_RATE_LIMIT = RateLimit(max_requests=10, window_ms=60_000)  # 10 requests per minute


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class RateLimiter:
    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Initialize Rate Limiter

        Args:
            clock: Monotonic clock returning seconds (default: time.monotonic)
        """
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()

        # key -> RateLimitWindow
        self._windows: Dict[str, RateLimitWindow] = {}

    def allow(self, key: str, max_requests: int, window_ms: int) -> bool:
        """
        Count one request against a key.

        Check and increment happen in one critical section, so two
        concurrent callers cannot both slip under the limit.

        Args:
            key: Non-empty rate-limit key (e.g. "sales_agent_login_S101")
            max_requests: Requests allowed per window
            window_ms: Window length in milliseconds

        Returns:
            True if the request is allowed. Invalid arguments are rejected.
        """
        if not isinstance(key, str) or not key:
            logger.warning("Rate limit check rejected: empty key")
            return False
        if not _is_positive_int(max_requests) or not _is_positive_int(window_ms):
            logger.warning(
                f"Rate limit check rejected for '{key}': invalid limits "
                f"(max_requests={max_requests!r}, window_ms={window_ms!r})"
            )
            return False

        with self._lock:
            now = self._clock()
            window = self._windows.get(key)

            if window is None or now > window.window_start + window_ms / 1000.0:
                self._windows[key] = RateLimitWindow(key=key, count=1, window_start=now)
                return True

            if window.count >= max_requests:
                return False

            window.count += 1
            return True

    def enforce(self, key: str, max_requests: int, window_ms: int) -> None:
        """
        Like allow(), but raise when the request is rejected.

        Raises:
            RateLimited: If the key is over its limit or the limits are invalid
        """
        if not self.allow(key, max_requests, window_ms):
            raise RateLimited(key)

    def check(self, key: str, limit: RateLimit) -> bool:
        """Shorthand for allow() with a RateLimit preset."""
        return self.allow(key, limit.max_requests, limit.window_ms)

    def get_window(self, key: str) -> Optional[RateLimitWindow]:
        """Get a copy of the current window for a key, if any."""
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return None
            return RateLimitWindow(key=window.key, count=window.count, window_start=window.window_start)

    def reset(self, key: str) -> None:
        """Forget the window for a key."""
        with self._lock:
            self._windows.pop(key, None)

    def cleanup_expired(self, window_ms: int) -> int:
        """
        Remove windows that started more than window_ms ago

        Args:
            window_ms: Age in milliseconds after which a window is stale

        Returns:
            Number of windows removed
        """
        with self._lock:
            cutoff = self._clock() - window_ms / 1000.0
            stale = [key for key, window in self._windows.items() if window.window_start < cutoff]
            for key in stale:
                del self._windows[key]

        if stale:
            logger.debug(f"Rate limiter dropped {len(stale)} expired windows")
        return len(stale)

    def get_stats(self) -> dict:
        """Get rate limiter statistics"""
        with self._lock:
            return {
                "windows": len(self._windows),
                "counted_requests": sum(window.count for window in self._windows.values()),
            }
