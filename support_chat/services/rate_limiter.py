"""In-memory fixed-window rate limiting.

Process-local only: with several workers each one keeps its own counters.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class _Bucket:
    count: int
    reset_at_ms: int


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate-limit check."""

    allowed: bool
    retry_after_ms: Optional[int] = None


class FixedWindowRateLimiter:
    """
    Fixed-window request counter keyed by an arbitrary string.

    The first request for a key (or the first one after its window elapsed)
    opens a new window of ``window_ms`` and counts as 1. Further requests in
    the same window are allowed while the count is below ``max_requests``.
    Up to ``2 * max_requests`` requests can pass around a window boundary.

    Stale keys are only overwritten on their next access; nothing sweeps them.
    """

    def __init__(self, clock: Callable[[], int] = monotonic_ms):
        """Initialize rate limiter with a millisecond clock."""
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def allow(self, key: str, window_ms: int, max_requests: int) -> RateLimitDecision:
        """
        Check the counter for ``key`` and count this request if allowed.

        Returns:
            RateLimitDecision; when denied, ``retry_after_ms`` is the time left
            until the current window resets.
        """
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)

            if bucket is None or bucket.reset_at_ms <= now:
                self._buckets[key] = _Bucket(count=1, reset_at_ms=now + window_ms)
                return RateLimitDecision(allowed=True)

            if bucket.count >= max_requests:
                return RateLimitDecision(allowed=False, retry_after_ms=bucket.reset_at_ms - now)

            bucket.count += 1
            return RateLimitDecision(allowed=True)

    def reset(self) -> None:
        """Forget every counter."""
        with self._lock:
            self._buckets.clear()

    def __len__(self) -> int:
        return len(self._buckets)
