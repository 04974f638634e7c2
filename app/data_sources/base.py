"""Interfaces and helpers for weather data sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from app.domain import FetchOutcome, FetchReason, WeatherObservation, position_key


class WeatherDataSource(Protocol):
    """Interface for anything that can resolve one position to current weather."""

    def lookup(self, latitude: float, longitude: float) -> FetchOutcome:
        """Return an explicit present/absent outcome for the position."""
        ...

    def fetch_one(self, latitude: float, longitude: float) -> Optional[WeatherObservation]:
        """Return the observation, or None when it is unavailable."""
        ...


@dataclass
class CallableWeatherDataSource(WeatherDataSource):
    """Wrap a plain `(lat, lon) -> Optional[WeatherObservation]` callable."""

    fetch: Callable[[float, float], Optional[WeatherObservation]]

    def lookup(self, latitude: float, longitude: float) -> FetchOutcome:
        """Delegate to the callable and wrap its result in a FetchOutcome."""
        key = position_key(latitude, longitude)
        observation = self.fetch(latitude, longitude)
        if observation is None:
            return FetchOutcome.absent(key, FetchReason.HTTP_ERROR)
        return FetchOutcome.present(key, observation, FetchReason.FETCHED)

    def fetch_one(self, latitude: float, longitude: float) -> Optional[WeatherObservation]:
        """Delegate to the configured callable."""
        return self.fetch(latitude, longitude)
