"""Sliding-window request counter keyed by identifier.

State lives in process memory, so limits are approximate when the service
runs as several instances; each instance counts only its own requests.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import RATE_LIMITS
from .errors import RateLimitExceeded

logger = logging.getLogger(__name__)

CLEANUP_EVERY = 100
STALE_AFTER_SECONDS = 60 * 60


@dataclass(frozen=True)
class RateLimitStatus:
    success: bool
    limit: int
    remaining: int
    reset: float


class SlidingWindowRateLimiter:
    """Allows ``limit`` hits per ``window`` seconds for each identifier."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._calls = 0

    def check(self, identifier: str, limit: int, window: float) -> RateLimitStatus:
        """Record a hit for ``identifier`` if it is under ``limit``."""
        with self._lock:
            now = self._clock()
            window_start = now - window
            hits = [t for t in self._hits.get(identifier, []) if t > window_start]

            success = len(hits) < limit
            if success:
                hits.append(now)
            self._hits[identifier] = hits

            self._calls += 1
            if self._calls % CLEANUP_EVERY == 0:
                self._cleanup(now)

            reset = (hits[0] + window) if hits else now + window
            return RateLimitStatus(
                success=success,
                limit=limit,
                remaining=max(0, limit - len(hits)),
                reset=reset,
            )

    def hit(self, action: str, identifier: str) -> RateLimitStatus:
        """Apply the configured limit for ``action``; raise when exceeded."""
        limit, window = RATE_LIMITS[action]
        status = self.check(f"{action}:{identifier}", limit, window)
        if not status.success:
            logger.warning(f"Rate limit exceeded for {action} by {identifier}")
            raise RateLimitExceeded(limit=status.limit, remaining=status.remaining, reset=status.reset)
        return status

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def _cleanup(self, now: float) -> None:
        cutoff = now - STALE_AFTER_SECONDS
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]
