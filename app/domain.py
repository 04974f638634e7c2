"""Core value types for the weather-enrichment pipeline.

Positions are lookup keys only; observations are immutable snapshots of one
successful upstream call. Every cache, dedup and result map in the pipeline
is keyed by `position_key` so that near-duplicate coordinates collapse into
the same ~1.1 km grid cell.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

MIN_LATITUDE, MAX_LATITUDE = -90.0, 90.0
MIN_LONGITUDE, MAX_LONGITUDE = -180.0, 180.0
MIN_ALTITUDE_M, MAX_ALTITUDE_M = -500.0, 50000.0

KEY_PRECISION = 2


def position_key(latitude: float, longitude: float) -> str:
    """Return the rounded-coordinate key shared by dedup, cache and result maps.

    Rounding follows Python float formatting: exact binary ties go to the even
    digit, so 0.125 keys as "0.12" and 0.375 as "0.38".
    """
    return f"{latitude:.{KEY_PRECISION}f},{longitude:.{KEY_PRECISION}f}"


def parse_position_key(key: str) -> Tuple[float, float]:
    """Split a position key back into (latitude, longitude) floats."""
    lat_text, lon_text = key.split(",", 1)
    return float(lat_text), float(lon_text)


@dataclass(frozen=True)
class Position:
    """A geographic point used as a weather lookup key."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not MIN_LATITUDE <= self.latitude <= MAX_LATITUDE:
            raise ValueError(f"latitude {self.latitude} outside [-90, 90]")
        if not MIN_LONGITUDE <= self.longitude <= MAX_LONGITUDE:
            raise ValueError(f"longitude {self.longitude} outside [-180, 180]")

    @property
    def key(self) -> str:
        return position_key(self.latitude, self.longitude)


@dataclass(frozen=True)
class BalloonPosition(Position):
    """A balloon fix from the constellation feed; altitude is pass-through."""
    altitude: float = 0.0
    hours_ago: int = 0


@dataclass(frozen=True)
class WeatherObservation:
    """Current conditions at one position, as returned by a single upstream call."""
    latitude: float
    longitude: float
    temperature: float  # °C
    wind_speed: float  # km/h
    wind_direction: float  # degrees
    humidity: float  # %
    pressure: float  # hPa
    observed_at: dt.datetime  # timezone-aware UTC

    def to_dict(self) -> Dict[str, object]:
        """Return a JSON-friendly dict for API responses."""
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "temperature": self.temperature,
            "wind_speed": self.wind_speed,
            "wind_direction": self.wind_direction,
            "humidity": self.humidity,
            "pressure": self.pressure,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class CacheEntry:
    """A cached observation and the epoch second at which it stops being served."""
    observation: WeatherObservation
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class RateLimitState:
    """Latest advisory snapshot of upstream quota."""
    is_limited: bool = False
    retry_after_seconds: Optional[int] = None
    reset_at: Optional[dt.datetime] = None


class FetchReason(str, Enum):
    """Why a single-position lookup produced (or did not produce) an observation."""
    CACHE = "cache"
    FETCHED = "fetched"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    HTTP_ERROR = "http_error"
    BAD_PAYLOAD = "bad_payload"


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one lookup: an observation, or an explicit absence with a reason."""
    key: str
    observation: Optional[WeatherObservation]
    reason: FetchReason

    @property
    def ok(self) -> bool:
        return self.observation is not None

    @classmethod
    def present(cls, key: str, observation: WeatherObservation, reason: FetchReason) -> "FetchOutcome":
        return cls(key=key, observation=observation, reason=reason)

    @classmethod
    def absent(cls, key: str, reason: FetchReason) -> "FetchOutcome":
        return cls(key=key, observation=None, reason=reason)


ResultMap = Dict[str, WeatherObservation]


@dataclass
class BatchResult:
    """Outcome of one batch run.

    `observations` is keyed by position key (one entry per resolved unique
    location); `matched` re-expands those onto the caller's original
    positions, in input order, skipping positions whose key did not resolve.
    """
    observations: ResultMap = field(default_factory=dict)
    matched: List[Tuple[Position, WeatherObservation]] = field(default_factory=list)
    requested: int = 0
    unique: int = 0
    chunks: int = 0
    cancelled: bool = False

    def get(self, position: Position) -> Optional[WeatherObservation]:
        """Return the observation for `position`'s grid cell, if it resolved."""
        return self.observations.get(position.key)
