"""
Rate limiting for the FHE boot attestation service.

Sliding window counters keyed by client id. Device submissions and oracle
callbacks get separate limiters so a flood of one cannot starve the other.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Outcome of one admission check."""
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window rate limiter.

    At most `limit` admissions per key within any `window_seconds` span.
    Thread-safe.
    """

    def __init__(self, limit: int, window_seconds: float = 60.0):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window_seconds = window_seconds
        self._admitted: Dict[str, Deque[float]] = {}
        self._next_sweep = time.monotonic() + window_seconds
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        stamps = self._admitted.get(key)
        if stamps is None:
            return deque()
        horizon = now - self.window_seconds
        while stamps and stamps[0] <= horizon:
            stamps.popleft()
        if not stamps:
            del self._admitted[key]
        return stamps

    def check(self, key: str) -> RateLimitResult:
        """Admit one request for key if the window has room."""
        now = time.monotonic()
        with self._lock:
            # idle keys are swept once per window
            if now >= self._next_sweep:
                self._sweep(now)
            stamps = self._prune(key, now)
            if len(stamps) >= self.limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=max(0.0, stamps[0] + self.window_seconds - now),
                )
            stamps.append(now)
            self._admitted[key] = stamps
            return RateLimitResult(allowed=True, remaining=self.limit - len(stamps))

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def _sweep(self, now: float) -> int:
        before = len(self._admitted)
        for key in list(self._admitted):
            self._prune(key, now)
        self._next_sweep = now + self.window_seconds
        return before - len(self._admitted)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._admitted)

    def cleanup_expired(self) -> int:
        """
        Drop every key whose window has emptied.

        Returns:
            Number of keys removed
        """
        with self._lock:
            return self._sweep(time.monotonic())

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key's history, or everyone's."""
        with self._lock:
            if key is None:
                self._admitted.clear()
            else:
                self._admitted.pop(key, None)
