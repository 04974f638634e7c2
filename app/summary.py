"""Display helpers: nearby-key lookup, constellation stats, cooldown text."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from app.domain import BalloonPosition, Position, RateLimitState, WeatherObservation, parse_position_key

NEARBY_TOLERANCE_DEG = 0.1


def find_weather(
    position: Position,
    observations: Mapping[str, WeatherObservation],
    *,
    tolerance: float = NEARBY_TOLERANCE_DEG,
) -> Optional[WeatherObservation]:
    """
    Return the observation for `position`'s key, else the first one within `tolerance`.

    Used while a batch is still streaming in so a balloon can borrow the
    weather of a neighbouring grid cell instead of showing nothing.
    """
    exact = observations.get(position.key)
    if exact is not None:
        return exact
    for key, observation in observations.items():
        lat, lon = parse_position_key(key)
        if abs(lat - position.latitude) < tolerance and abs(lon - position.longitude) < tolerance:
            return observation
    return None


@dataclass(frozen=True)
class ConstellationStats:
    balloon_count: int
    avg_altitude: int
    min_altitude: int
    max_altitude: int
    avg_temperature: Optional[int]


def constellation_stats(
    positions: Sequence[BalloonPosition],
    observations: Mapping[str, WeatherObservation],
) -> Optional[ConstellationStats]:
    """Summarize one snapshot; None when there are no positions."""
    if not positions:
        return None
    altitudes = [p.altitude for p in positions]
    temps = [o.temperature for o in observations.values()]
    avg_temp = round(sum(temps) / len(temps)) if temps else None
    return ConstellationStats(
        balloon_count=len(positions),
        avg_altitude=round(sum(altitudes) / len(altitudes)),
        min_altitude=round(min(altitudes)),
        max_altitude=round(max(altitudes)),
        avg_temperature=avg_temp,
    )


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_wait_time(state: RateLimitState, now: dt.datetime | None = None) -> str:
    """Human-readable time until the rate limit resets, or '' when not limited."""
    if not state.is_limited or state.reset_at is None:
        return ""
    now = now or dt.datetime.now(dt.timezone.utc)
    remaining = int((state.reset_at - now).total_seconds())
    if remaining <= 0:
        return ""
    minutes, seconds = divmod(remaining, 60)
    if minutes > 0:
        return f"{_plural(minutes, 'minute')} and {_plural(seconds, 'second')}"
    return _plural(seconds, "second")
