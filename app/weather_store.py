"""Explicitly constructed holder for the pipeline's shared mutable state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from app.observation_cache import InMemoryObservationCache, ObservationCache
from app.rate_limit import RateLimitTracker


@dataclass
class WeatherStore:
    """Cache + rate-limit tracker + clock, passed into weather clients.

    Tests build their own instance with a fake clock; the API builds one at
    startup from settings.
    """
    cache: ObservationCache
    tracker: RateLimitTracker
    clock: Callable[[], float] = field(default=time.time)

    @classmethod
    def create(
        cls,
        *,
        ttl_seconds: float = 300,
        default_retry_seconds: int = 60,
        decay_on_reset: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> "WeatherStore":
        """Build an in-memory store whose cache and tracker share `clock`."""
        return cls(
            cache=InMemoryObservationCache(ttl_seconds=ttl_seconds, clock=clock),
            tracker=RateLimitTracker(
                default_retry_seconds=default_retry_seconds,
                decay_on_reset=decay_on_reset,
                clock=clock,
            ),
            clock=clock,
        )
