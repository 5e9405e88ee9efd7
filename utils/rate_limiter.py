from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable

from logging_utils import get_logger
from settings import SETTINGS

logger = get_logger(__name__)


class AcquireCancelled(RuntimeError):
    """Raised when a caller's cancel event fires while it waits for a slot."""


class SlidingWindowRateLimiter:
    """Thread-safe sliding-window rate limiter with an upstream cooldown.

    Grants at most `max_requests` in any `window_seconds` window and spaces
    consecutive grants at least `window_seconds / max_requests` apart, so a
    burst never hits EDGAR all at once.

    After `enter_cooldown()` (the upstream answered 429/503) every `acquire()`
    blocks until the cooldown expires. EDGAR blocks abusive clients for about
    ten minutes, hence the default.

    `clock` and `sleep` are injectable so tests can drive a fake timeline.
    """

    def __init__(
        self,
        *,
        max_requests: int = 8,
        window_seconds: float = 1.0,
        cooldown_seconds: float = 600.0,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")

        self._max_requests = int(max_requests)
        self._window_seconds = float(window_seconds)
        self._cooldown_seconds = float(cooldown_seconds)
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep

        self._lock = threading.Lock()
        self._events: deque[float] = deque()  # clock() timestamps of grants
        self._blocked_until = 0.0

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def min_interval(self) -> float:
        return self._window_seconds / self._max_requests

    def _wait_needed(self, now: float) -> float:
        """Seconds to wait before a grant is allowed; 0 means grant now.

        Caller must hold the lock.
        """

        if self._blocked_until > now:
            return self._blocked_until - now

        cutoff = now - self._window_seconds
        while self._events and self._events[0] <= cutoff:
            self._events.popleft()

        if len(self._events) >= self._max_requests:
            return (self._events[0] + self._window_seconds) - now

        if self._events:
            since_last = now - self._events[-1]
            if since_last < self.min_interval:
                return self.min_interval - since_last

        return 0.0

    def acquire(self, cancel_event: threading.Event | None = None) -> None:
        """Block until a request slot is available.

        Raises:
            AcquireCancelled: if `cancel_event` is set before a slot is granted.
        """

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise AcquireCancelled("rate limiter wait cancelled")

            with self._lock:
                now = self._clock()
                sleep_for = self._wait_needed(now)
                if sleep_for <= 0:
                    self._events.append(now)
                    return

            sleep_for = max(sleep_for, 1e-6)
            if cancel_event is not None:
                if cancel_event.wait(sleep_for):
                    raise AcquireCancelled("rate limiter wait cancelled")
            else:
                self._sleep(sleep_for)

    def enter_cooldown(self, seconds: float | None = None) -> float:
        """Block all callers for `seconds` (default: configured cooldown).

        An overlapping cooldown never shortens one already in effect.
        Returns the remaining cooldown.
        """

        duration = self._cooldown_seconds if seconds is None else max(float(seconds), 0.0)
        with self._lock:
            now = self._clock()
            self._blocked_until = max(self._blocked_until, now + duration)
            remaining = self._blocked_until - now

        logger.warning(
            "Upstream rate limit detected; cooling down | seconds=%.1f", remaining
        )
        return remaining

    def cooldown_remaining(self) -> float:
        with self._lock:
            return max(self._blocked_until - self._clock(), 0.0)

    @property
    def in_cooldown(self) -> bool:
        return self.cooldown_remaining() > 0


_shared_lock = threading.Lock()
_shared_limiter: SlidingWindowRateLimiter | None = None


def get_shared_rate_limiter() -> SlidingWindowRateLimiter:
    """Process-wide limiter built from SETTINGS.

    Every EDGAR client in the process must draw from the same window, otherwise
    two concurrent crawls would each get the full ceiling.
    """

    global _shared_limiter
    with _shared_lock:
        if _shared_limiter is None:
            _shared_limiter = SlidingWindowRateLimiter(
                max_requests=int(SETTINGS["SEC_MAX_REQUESTS"]),
                window_seconds=float(SETTINGS["SEC_WINDOW_SECONDS"]),
                cooldown_seconds=float(SETTINGS["SEC_COOLDOWN_SECONDS"]),
            )
        return _shared_limiter
