"""Shared protocol for observation cache backends."""

from typing import Optional, Protocol

from app.domain import WeatherObservation


class ObservationCache(Protocol):
    """Protocol for TTL caches keyed by position key."""
    def get(self, key: str) -> Optional[WeatherObservation]:
        """Return the live observation for `key`, or None if missing or expired."""

    def put(self, key: str, observation: WeatherObservation) -> None:
        """Store `observation` under `key` with a fresh TTL, replacing any prior entry."""

    def delete(self, key: str) -> None:
        """Drop `key` without raising if it is absent."""

    def clear(self) -> None:
        """Drop every entry."""
