"""
In-process rate limiting for public endpoints.

Fixed-window counters keyed by "<namespace>:<client>", with optional
tracking of tokens already used inside the window (one-shot links such as
unsubscribe tokens). State lives in this process only: it is lost on
restart and not shared between workers.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

REASON_RATE_LIMIT = "rate_limit"
REASON_TOKEN_REUSE = "token_reuse"


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float
    tokens: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class RateLimitResult:
    """
    Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        limit: Maximum requests per window
        remaining: Requests left in the current window
        reset_time: Epoch seconds at which the window resets
        reason: "rate_limit" or "token_reuse" when denied
        retry_after: Whole seconds until a retry can succeed (denied only)
    """
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    reason: Optional[str] = None
    retry_after: Optional[int] = None


class RateLimiter:
    """
    Thread-safe fixed-window rate limiter.

    Route handlers run in FastAPI's thread pool, so every read-check-increment
    happens under a single lock.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def check(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
        token: Optional[str] = None,
    ) -> RateLimitResult:
        """
        Count a request against a key.

        Args:
            key: Unique identifier for this rate limit (e.g., "subscribe:203.0.113.7")
            max_requests: Maximum number of requests allowed per window
            window_seconds: Window length in seconds
            token: Optional one-shot token; a second use inside the window is denied

        Returns:
            RateLimitResult describing the decision
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or now >= entry.reset_time:
                entry = RateLimitEntry(count=0, reset_time=now + window_seconds)
                self._entries[key] = entry

            if token is not None and token in entry.tokens:
                return RateLimitResult(
                    allowed=False,
                    limit=max_requests,
                    remaining=max(0, max_requests - entry.count),
                    reset_time=entry.reset_time,
                    reason=REASON_TOKEN_REUSE,
                    retry_after=self._retry_after(entry, now),
                )

            if entry.count >= max_requests:
                return RateLimitResult(
                    allowed=False,
                    limit=max_requests,
                    remaining=0,
                    reset_time=entry.reset_time,
                    reason=REASON_RATE_LIMIT,
                    retry_after=self._retry_after(entry, now),
                )

            entry.count += 1
            if token is not None:
                entry.tokens.add(token)

            return RateLimitResult(
                allowed=True,
                limit=max_requests,
                remaining=max_requests - entry.count,
                reset_time=entry.reset_time,
            )

    @staticmethod
    def _retry_after(entry: RateLimitEntry, now: float) -> int:
        return max(1, math.ceil(entry.reset_time - now))

    def sweep(self) -> int:
        """
        Remove entries whose window has expired.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.reset_time]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Rate limiter sweep removed {len(expired)} expired entries")
        return len(expired)

    def reset(self, key: Optional[str] = None) -> None:
        """
        Reset one key, or every key when none is given.

        Useful for testing or manual intervention.
        """
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def start_sweeper(self, interval_seconds: float, extra_tasks: Optional[list] = None) -> None:
        """
        Start a daemon thread that sweeps expired entries every interval.

        Args:
            interval_seconds: Seconds between sweeps
            extra_tasks: Optional callables run after each sweep (e.g. cache purges)
        """
        if self._sweeper is not None and self._sweeper.is_alive():
            return

        self._stop_event.clear()
        tasks = list(extra_tasks or [])

        def run() -> None:
            while not self._stop_event.wait(interval_seconds):
                try:
                    self.sweep()
                    for task in tasks:
                        task()
                except Exception as e:
                    logger.error(f"Rate limiter sweep failed: {e}")

        self._sweeper = threading.Thread(target=run, name="rate-limit-sweeper", daemon=True)
        self._sweeper.start()
        logger.info(f"Rate limiter sweeper started (interval {interval_seconds}s)")

    def stop_sweeper(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None


# Singleton instance
rate_limiter = RateLimiter()
