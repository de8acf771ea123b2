"""In-process fixed-window rate limiter."""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from logging_utils import get_component_logger

logger = get_component_logger("payment-service", "rate-limiter")

CLEANUP_INTERVAL_MS = 60 * 1000


@dataclass(frozen=True)
class RateLimitConfig:
    """Limit applied at one call site.

    Attributes:
        max_requests: Maximum requests allowed in the window
        window_ms: Window length in milliseconds
        prefix: Namespace separating limiters that share identifiers
    """

    max_requests: int
    window_ms: int
    prefix: str


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        remaining: Requests left in the current window
        reset_at: Epoch milliseconds at which the window ends
        retry_after: Seconds to wait before retrying, set only when denied
    """

    allowed: bool
    remaining: int
    reset_at: int
    retry_after: Optional[int] = None


@dataclass
class _Entry:
    count: int
    window_start: int
    window_ms: int


RATE_LIMIT_PRESETS = {
    "create_payment": RateLimitConfig(max_requests=5, window_ms=60 * 1000, prefix="create-payment"),
    "check_status": RateLimitConfig(max_requests=30, window_ms=60 * 1000, prefix="check-status"),
    "send_email": RateLimitConfig(max_requests=10, window_ms=60 * 1000, prefix="send-email"),
    "webhook": RateLimitConfig(max_requests=100, window_ms=60 * 1000, prefix="webhook"),
}


class RateLimiter:
    """Fixed-window request counter keyed by ``prefix:identifier``.

    State is process-local and lost on restart, so limits are coarse abuse
    prevention only. All reads and writes of the entry map happen under a
    single lock since request handlers run on a thread pool.
    """

    def __init__(self, clock: Callable[[], float] = time.time, cleanup_interval_ms: int = CLEANUP_INTERVAL_MS):
        """Initialize an empty limiter.

        Args:
            clock: Returns the current time in seconds
            cleanup_interval_ms: Minimum time between sweeps of expired entries
        """
        self._clock = clock
        self._cleanup_interval_ms = cleanup_interval_ms
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._last_cleanup = self._now_ms()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Count a request and decide whether it is allowed.

        Args:
            identifier: Who is being limited (user id, email, source address)
            config: Limit for this call site

        Returns:
            RateLimitResult: Decision with remaining quota and reset time
        """
        key = f"{config.prefix}:{identifier}"

        with self._lock:
            now = self._now_ms()
            self._cleanup(now)

            entry = self._entries.get(key)
            if entry is None or now - entry.window_start >= config.window_ms:
                self._entries[key] = _Entry(count=1, window_start=now, window_ms=config.window_ms)
                return RateLimitResult(
                    allowed=True, remaining=config.max_requests - 1, reset_at=now + config.window_ms
                )

            reset_at = entry.window_start + config.window_ms
            if entry.count >= config.max_requests:
                retry_after = math.ceil((reset_at - now) / 1000)
                logger.warning(f"Rate limit exceeded for {key}, retry after {retry_after}s")
                return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at, retry_after=retry_after)

            entry.count += 1
            return RateLimitResult(allowed=True, remaining=config.max_requests - entry.count, reset_at=reset_at)

    def _cleanup(self, now: int) -> None:
        """Evict entries whose own window has elapsed. Caller holds the lock."""
        if now - self._last_cleanup < self._cleanup_interval_ms:
            return
        self._last_cleanup = now

        expired = [key for key, entry in self._entries.items() if now - entry.window_start >= entry.window_ms]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired rate limit entries")
