"""
rizzculator.api.rate_limit — Per-Caller AI Request Rate Limiting
=================================================================

20 AI requests per caller per 60-second sliding window (configurable in
``config.yaml``).  Returns HTTP 429 with a ``Retry-After`` header when
the limit is exceeded.

Callers are keyed by the JWT ``sub`` claim when a valid token is sent,
otherwise by ``anon:<x-user-id header or client host>``.

Buckets live in process memory.  Expired timestamps and empty buckets
are dropped by :meth:`SlidingWindowRateLimiter.compact`, which also runs
opportunistically every ``compact_interval`` seconds, so memory is
bounded by the number of callers active within one window.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from fastapi import Depends, HTTPException, Request, status

from rizzculator.api.deps import get_caller_id, get_rate_limiter

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 20
DEFAULT_WINDOW_SECONDS = 60
DEFAULT_COMPACT_INTERVAL = 300


class SlidingWindowRateLimiter:
    """Thread-safe sliding-window limiter keyed by caller id."""

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        *,
        compact_interval: float = DEFAULT_COMPACT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.compact_interval = compact_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[str, deque[float]] = {}
        self._last_compact = clock()

    def _prune(self, bucket: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while bucket and bucket[0] <= cutoff:
            bucket.popleft()

    def _maybe_compact(self, now: float) -> None:
        if now - self._last_compact >= self.compact_interval:
            self._compact_locked(now)

    def _compact_locked(self, now: float) -> int:
        removed = 0
        for key in list(self._buckets):
            bucket = self._buckets[key]
            self._prune(bucket, now)
            if not bucket:
                del self._buckets[key]
                removed += 1
        self._last_compact = now
        return removed

    def compact(self) -> int:
        """Drop expired timestamps and empty buckets.  Returns buckets removed."""
        with self._lock:
            removed = self._compact_locked(self._clock())
        if removed:
            logger.debug("Rate limiter compacted %d idle callers", removed)
        return removed

    def _check_locked(self, caller_id: str, now: float) -> tuple[bool, dict[str, Any]]:
        self._maybe_compact(now)
        bucket = self._buckets.get(caller_id)
        if bucket is not None:
            self._prune(bucket, now)
        count = len(bucket) if bucket else 0

        if count >= self.max_requests:
            reset = bucket[0] + self.window_seconds - now
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }
        return True, {
            "remaining": self.max_requests - count,
            "reset": int(self.window_seconds),
            "limit": self.max_requests,
        }

    def _record_locked(self, caller_id: str, now: float) -> dict[str, Any]:
        bucket = self._buckets.setdefault(caller_id, deque())
        self._prune(bucket, now)
        bucket.append(now)
        return {
            "remaining": max(0, self.max_requests - len(bucket)),
            "reset": int(self.window_seconds),
            "limit": self.max_requests,
        }

    def check(self, caller_id: str) -> tuple[bool, dict[str, Any]]:
        """Check if *caller_id* is within limits.

        Returns (allowed, info) where info contains:
          - remaining: requests remaining in the window
          - reset: seconds until the oldest request expires
          - limit: the max requests per window
        """
        now = self._clock()
        with self._lock:
            return self._check_locked(caller_id, now)

    def record(self, caller_id: str) -> dict[str, Any]:
        """Record one request and return the updated info dict."""
        now = self._clock()
        with self._lock:
            return self._record_locked(caller_id, now)

    def hit(self, caller_id: str) -> tuple[bool, dict[str, Any]]:
        """Check and, when allowed, record under one lock acquisition."""
        now = self._clock()
        with self._lock:
            allowed, info = self._check_locked(caller_id, now)
            if allowed:
                info = self._record_locked(caller_id, now)
        return allowed, info

    def reset(self, caller_id: str | None = None) -> None:
        """Clear state for one caller, or for everyone when None."""
        with self._lock:
            if caller_id is None:
                self._buckets.clear()
            else:
                self._buckets.pop(caller_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------
def rate_limited_caller(
    request: Request,
    caller_id: str = Depends(get_caller_id),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter),
) -> str:
    """Resolve the caller *and* enforce the per-caller AI request limit.

    Use ``Depends(rate_limited_caller)`` on any route that reaches the AI
    gateway.  Raises HTTP 429 when the limit is exceeded.
    """
    allowed, info = limiter.hit(caller_id)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for %s on %s: %d requests per %ss",
            caller_id, request.url.path, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": "Too many requests. Please wait a moment.",
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )
    return caller_id
