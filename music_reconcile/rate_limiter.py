from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Process-wide minimum spacing between provider requests.

    One instance is shared by every caller that talks to the same service, so
    the request rate holds regardless of how many worker threads use it.
    """

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = max(0.0, float(min_interval_seconds))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed = 0.0

    def acquire(self) -> float:
        """Block until a request may be sent; returns the time spent waiting."""
        with self._lock:
            waited = 0.0
            now = self._clock()
            if now < self._next_allowed:
                waited = self._next_allowed - now
                logger.debug("Rate limit: waiting %.2fs", waited)
                self._sleep(waited)
                now = self._clock()
            self._next_allowed = max(now, self._next_allowed) + self.min_interval_seconds
            return waited

    def __enter__(self) -> "RateLimiter":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        return None
