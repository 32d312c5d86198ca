"""
Request Gate

Rate limiter and circuit breaker in front of every ledger read and write.
The gate performs no I/O: callers ask `try_acquire` before a call and report
the outcome with `record_success` / `record_failure` afterwards.

Decision order for one acquisition:
    1. BACKOFF   - error streak reached the threshold and the backoff interval
                   since the last request before the streak has not elapsed yet
    2. COOLDOWN  - minimum spacing between requests
    3. THROTTLED - sliding 60 s window is full

POLL_PROBE acquisitions (reveal polling) use half the cooldown and half the
backoff of NORMAL ones. A probe let through early does not end the backoff:
only the full interval or a recorded success clears the error streak.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from .constants import (
    ERROR_BACKOFF_SECONDS,
    MAX_CONSECUTIVE_ERRORS,
    MAX_REQUESTS_PER_MINUTE,
    MIN_REQUEST_INTERVAL,
    POLL_PROBE_FACTOR,
    RATE_WINDOW_SECONDS,
)
from .logger import get_logger

logger = get_logger(__name__)


class RequestKind(str, Enum):
    NORMAL = "NORMAL"
    POLL_PROBE = "POLL_PROBE"


class DenyReason(str, Enum):
    THROTTLED = "THROTTLED"
    COOLDOWN = "COOLDOWN"
    BACKOFF = "BACKOFF"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[DenyReason] = None
    retry_after: float = 0.0

    def __bool__(self) -> bool:
        return self.allowed


_ALLOWED = GateDecision(allowed=True)


class RequestGate:
    """
    Thread-safe request gate. Every public method runs in a single critical
    section, so the three counters always move together.
    """

    def __init__(
        self,
        max_requests_per_minute: int = MAX_REQUESTS_PER_MINUTE,
        min_interval: float = MIN_REQUEST_INTERVAL,
        max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS,
        error_backoff: float = ERROR_BACKOFF_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests_per_minute = max_requests_per_minute
        self.min_interval = min_interval
        self.max_consecutive_errors = max_consecutive_errors
        self.error_backoff = error_backoff
        self._clock = clock

        self._lock = threading.Lock()
        self._window: Deque[float] = deque()
        self._last_request_at: Optional[float] = None
        self._consecutive_errors = 0
        self._backoff_anchor: Optional[float] = None

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = time.monotonic) -> "RequestGate":
        """Build from a `GateConfig` section."""
        return cls(
            max_requests_per_minute=config.max_requests_per_minute,
            min_interval=config.min_interval,
            max_consecutive_errors=config.max_consecutive_errors,
            error_backoff=config.error_backoff,
            clock=clock,
        )

    # ── Acquisition ───────────────────────────────────────────────────

    def try_acquire(self, kind: RequestKind = RequestKind.NORMAL) -> GateDecision:
        """Decide whether one request may go out now. Never blocks."""
        factor = POLL_PROBE_FACTOR if kind is RequestKind.POLL_PROBE else 1.0

        with self._lock:
            now = self._clock()
            self._prune(now)

            if self._consecutive_errors >= self.max_consecutive_errors:
                elapsed = self._backoff_elapsed(now)
                if elapsed >= self.error_backoff:
                    logger.info(
                        "Error backoff elapsed after %d failures, resuming requests",
                        self._consecutive_errors,
                    )
                    self._consecutive_errors = 0
                    self._backoff_anchor = None
                else:
                    backoff = self.error_backoff * factor
                    if elapsed < backoff:
                        return self._deny(kind, DenyReason.BACKOFF, backoff - elapsed)

            cooldown = self.min_interval * factor
            since = self._since_last(now)
            if since < cooldown:
                return self._deny(kind, DenyReason.COOLDOWN, cooldown - since)

            if len(self._window) >= self.max_requests_per_minute:
                retry_after = self._window[0] + RATE_WINDOW_SECONDS - now
                return self._deny(kind, DenyReason.THROTTLED, retry_after)

            self._window.append(now)
            self._last_request_at = now
            return _ALLOWED

    # ── Outcome bookkeeping ───────────────────────────────────────────

    def record_success(self) -> None:
        with self._lock:
            if self._consecutive_errors:
                logger.debug("Request succeeded, clearing %d consecutive errors", self._consecutive_errors)
            self._consecutive_errors = 0
            self._backoff_anchor = None

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_errors += 1
            if self._consecutive_errors == self.max_consecutive_errors:
                self._backoff_anchor = self._last_request_at
                logger.warning(
                    "%d consecutive request failures, entering BACKOFF for %.1fs",
                    self._consecutive_errors, self.error_backoff,
                )
            else:
                logger.debug("Request failure recorded (%d consecutive)", self._consecutive_errors)

    # ── Diagnostics ───────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            self._prune(now)
            return {
                "lastRequestAt": self._last_request_at,
                "requestCountInWindow": len(self._window),
                "consecutiveErrorCount": self._consecutive_errors,
                "inBackoff": self._consecutive_errors >= self.max_consecutive_errors,
            }

    # ── Internals (call with the lock held) ───────────────────────────

    def _prune(self, now: float) -> None:
        cutoff = now - RATE_WINDOW_SECONDS
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def _since_last(self, now: float) -> float:
        if self._last_request_at is None:
            return float("inf")
        return now - self._last_request_at

    def _backoff_elapsed(self, now: float) -> float:
        if self._backoff_anchor is None:
            return float("inf")
        return now - self._backoff_anchor

    def _deny(self, kind: RequestKind, reason: DenyReason, retry_after: float) -> GateDecision:
        retry_after = max(0.0, retry_after)
        logger.debug("%s request denied: %s (retry after %.2fs)", kind.value, reason.value, retry_after)
        return GateDecision(allowed=False, reason=reason, retry_after=retry_after)
