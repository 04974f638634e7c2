"""Advisory tracker for upstream rate-limit signals.

Every completed upstream response is fed to `RateLimitTracker.record_response`.
The tracker keeps only the latest snapshot (last writer wins) and never blocks
or delays callers; the UI polls `current_state()` to decide whether to show a
cooldown notice.
"""
from __future__ import annotations

import datetime as dt
import email.utils
import math
import threading
import time
from typing import Callable, Mapping, Optional

from app.domain import RateLimitState
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="rate_limit")

RATE_LIMITED_STATUS = 429
RETRY_AFTER_HEADER = "retry-after"
REMAINING_HEADER = "x-ratelimit-remaining"
RESET_HEADER = "x-ratelimit-reset"

# Upper bound for any retry hint; keeps reset_at representable.
MAX_RETRY_SECONDS = 24 * 60 * 60

# Headers the proxy route relays from the upstream.
FORWARDED_HEADERS = ("Retry-After", "X-RateLimit-Remaining", "X-RateLimit-Reset")


def _header(headers: Mapping[str, str] | None, name: str) -> Optional[str]:
    """Case-insensitive header lookup that works on plain dicts too."""
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def _parse_retry_after(value: Optional[str], now: float) -> Optional[int]:
    """Parse Retry-After as delta-seconds or an HTTP-date; None when unusable."""
    if value is None:
        return None
    seconds = _parse_int(value)
    if seconds is not None:
        return max(seconds, 0)
    try:
        when = email.utils.parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError, OverflowError):
        logger.debug("Ignoring malformed Retry-After header", extra={"retry_after": value})
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=dt.timezone.utc)
    return max(int(when.timestamp() - now), 0)


class RateLimitTracker:
    """Last-writer-wins record of the upstream's most recent quota signals."""

    def __init__(
        self,
        *,
        default_retry_seconds: int = 60,
        decay_on_reset: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_retry_seconds = default_retry_seconds
        self.decay_on_reset = decay_on_reset
        self._clock = clock
        self._state = RateLimitState()
        self._lock = threading.Lock()

    def record_response(self, headers: Mapping[str, str] | None, status_code: int | None = None) -> RateLimitState:
        """Inspect one completed response and overwrite the stored snapshot."""
        now = self._clock()
        remaining = _parse_int(_header(headers, REMAINING_HEADER))
        retry_after = _parse_retry_after(_header(headers, RETRY_AFTER_HEADER), now)
        reset_epoch = _parse_int(_header(headers, RESET_HEADER))

        exhausted = status_code == RATE_LIMITED_STATUS or (remaining is not None and remaining <= 0)
        if not exhausted:
            state = RateLimitState()
        else:
            if retry_after is None and reset_epoch is not None:
                retry_after = max(reset_epoch - int(now), 0)
            retry_after = min(retry_after or 0, MAX_RETRY_SECONDS)
            if not retry_after:
                # reset_at must land in the future even when the upstream says "now".
                retry_after = self.default_retry_seconds
            reset_at = dt.datetime.fromtimestamp(now + retry_after, tz=dt.timezone.utc)
            state = RateLimitState(is_limited=True, retry_after_seconds=retry_after, reset_at=reset_at)
            logger.warning(
                "Upstream rate limit reached",
                extra={"status_code": status_code, "remaining": remaining, "retry_after": retry_after},
            )

        with self._lock:
            was_limited = self._state.is_limited
            self._state = state
        if was_limited and not state.is_limited:
            logger.info("Upstream rate limit cleared")
        return state

    def current_state(self) -> RateLimitState:
        """Return the latest snapshot, decayed to not-limited once `reset_at` has passed."""
        with self._lock:
            state = self._state
        if state.is_limited and self.decay_on_reset and state.reset_at is not None:
            now = dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc)
            if now >= state.reset_at:
                return RateLimitState()
        return state
