"""
Per-user sliding-window rate limiting for message operations.
"""
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional

from community_messaging.core.config import settings
from community_messaging.core.errors import RateLimited


class RateLimiter:
    """In-memory sliding-window limiter keyed by (user, operation)."""

    # every this many checks, keys idle for longer than their window are dropped
    PRUNE_EVERY = 256

    def __init__(self):
        self._attempts: Dict[str, Deque[float]] = {}
        self._windows: Dict[str, int] = {}
        self._checks = 0
        self._lock = threading.Lock()

    def is_allowed(
        self,
        user_id: int,
        operation: str,
        max_attempts: int,
        window_seconds: int,
        now: Optional[float] = None,
    ) -> bool:
        """Record an attempt and return False when it would exceed the limit."""
        key = f"{user_id}:{operation}"
        now = time.monotonic() if now is None else now

        with self._lock:
            self._checks += 1
            if self._checks % self.PRUNE_EVERY == 0:
                self._prune_locked(now)

            attempts = self._attempts.get(key)
            if attempts is not None:
                self._expire(key, attempts, now - window_seconds)

            if len(self._attempts.get(key, ())) >= max_attempts:
                return False

            self._attempts.setdefault(key, deque()).append(now)
            self._windows[key] = window_seconds
            return True

    def _expire(self, key: str, attempts: Deque[float], window_start: float) -> None:
        while attempts and attempts[0] <= window_start:
            attempts.popleft()
        if not attempts:
            del self._attempts[key]
            self._windows.pop(key, None)

    def _prune_locked(self, now: float) -> None:
        for key in list(self._attempts):
            self._expire(key, self._attempts[key], now - self._windows.get(key, 0))

    def prune(self, now: Optional[float] = None) -> None:
        """Drop every key whose attempts have all left their window."""
        now = time.monotonic() if now is None else now
        with self._lock:
            self._prune_locked(now)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._attempts)

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()
            self._windows.clear()
            self._checks = 0


_rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


def enforce_send_limit(user_id: int) -> None:
    """Raise RateLimited when the user has sent too many messages in the window."""
    allowed = _rate_limiter.is_allowed(
        user_id,
        "send_message",
        max_attempts=settings.send_rate_limit,
        window_seconds=settings.send_rate_window_seconds,
    )
    if not allowed:
        raise RateLimited(
            "Too many messages sent. Please wait before sending again.",
            details={"retry_window_seconds": settings.send_rate_window_seconds},
        )
