"""
app/services/rate_limit_service.py

Purpose: Abuse prevention

- Sliding-window admission per user
- Rejected events are not recorded
- Periodic sweep drops users whose history aged out
- One throttle notice per user per window

The limiter is process-local and relies on a single event loop as its only
writer. Running several workers means moving the windows to a shared store.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Sliding-window rate limiter keyed by Telegram user id.

    Usage:
        limiter = RateLimiter(max_requests=20, window_seconds=60)
        if not limiter.admit(user_id):
            ...
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[int, Deque[float]] = {}
        self._notified_at: Dict[int, float] = {}

    def _prune(self, window: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def admit(self, user_id: int) -> bool:
        """
        Records one event for the user if the window has room.

        Returns:
            True if admitted, False if the user is over the ceiling
        """
        now = self._clock()
        window = self._windows.get(user_id)
        if window is None:
            window = deque()
            self._windows[user_id] = window

        self._prune(window, now)

        if len(window) >= self.max_requests:
            logger.warning(
                "Rate limit exceeded",
                extra={"user_id": user_id, "count": len(window), "max": self.max_requests}
            )
            return False

        window.append(now)
        return True

    def retry_after(self, user_id: int) -> float:
        """Seconds until the oldest recorded event leaves the window."""
        window = self._windows.get(user_id)
        if not window:
            return 0.0
        return max(0.0, window[0] + self.window_seconds - self._clock())

    def should_notify(self, user_id: int) -> bool:
        """
        True at most once per window for a throttled user, so a flood
        produces one notice instead of one per rejected event.
        """
        now = self._clock()
        last = self._notified_at.get(user_id)
        if last is not None and now - last < self.window_seconds:
            return False
        self._notified_at[user_id] = now
        return True

    def sweep(self) -> int:
        """
        Removes users whose entire history is older than the window.

        Returns:
            Number of users removed
        """
        now = self._clock()
        stale = []
        for user_id, window in self._windows.items():
            self._prune(window, now)
            if not window:
                stale.append(user_id)

        for user_id in stale:
            del self._windows[user_id]

        for user_id, last in list(self._notified_at.items()):
            if now - last >= self.window_seconds:
                del self._notified_at[user_id]

        if stale:
            logger.debug(f"Rate limiter sweep removed {len(stale)} idle users")
        return len(stale)

    def tracked_users(self) -> int:
        return len(self._windows)


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            max_requests=settings.RATE_LIMIT_MESSAGES_PER_WINDOW,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
    return _rate_limiter
