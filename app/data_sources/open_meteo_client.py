"""Current-weather lookups against Open-Meteo (directly or through the proxy route)."""
from __future__ import annotations

import datetime as dt
import math
from typing import Any, Mapping, Optional

import requests

from app.domain import FetchOutcome, FetchReason, WeatherObservation, position_key
from app.rate_limit import RATE_LIMITED_STATUS
from app.weather_store import WeatherStore
from utils.logging_utils import get_tagged_logger, mask_url
logger = get_tagged_logger(__name__, tag='open_meteo_client')

OPEN_METEO_WEATHER_URL = "https://api.open-meteo.com/v1/forecast"

CURRENT_VARS = [
    "temperature_2m",
    "relative_humidity_2m",
    "wind_speed_10m",
    "wind_direction_10m",
    "surface_pressure",
]

# WeatherObservation attribute -> Open-Meteo `current` field
FIELD_MAP = {
    "temperature": "temperature_2m",
    "wind_speed": "wind_speed_10m",
    "wind_direction": "wind_direction_10m",
    "humidity": "relative_humidity_2m",
    "pressure": "surface_pressure",
}


def build_params(latitude: float, longitude: float) -> dict:
    """Query parameters for a current-conditions request."""
    return {
        "latitude": latitude,
        "longitude": longitude,
        "current": ",".join(CURRENT_VARS),
        "timezone": "auto",
    }


def _coerce_float(value: Any) -> float:
    """Return `value` as a finite float, or 0.0 if missing or non-numeric."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def parse_current_weather(
    payload: Any,
    latitude: float,
    longitude: float,
    observed_at: dt.datetime,
) -> Optional[WeatherObservation]:
    """
    Turn an Open-Meteo response body into a WeatherObservation.

    A missing `current` block makes the whole payload unusable and yields None.
    Individual fields that are missing, null or non-numeric default to 0.0 so a
    single bad field does not throw away the rest of the observation.
    """
    if not isinstance(payload, Mapping):
        return None
    current = payload.get("current")
    if not isinstance(current, Mapping):
        return None

    values = {}
    for attr, field in FIELD_MAP.items():
        raw = current.get(field)
        if raw is not None and not isinstance(raw, (int, float)):
            logger.debug("Non-numeric Open-Meteo field", extra={"field": field, "value": raw})
        values[attr] = _coerce_float(raw)

    return WeatherObservation(
        latitude=latitude,
        longitude=longitude,
        observed_at=observed_at,
        **values,
    )


class OpenMeteoWeatherClient:
    """Cache-or-fetch weather lookups for single positions.

    The client talks to `base_url`, which is either Open-Meteo itself or the
    service's own pass-through proxy; both return the same response contract.
    Shared state (cache, rate-limit tracker, clock) lives in the injected
    `WeatherStore`.
    """

    def __init__(
        self,
        store: WeatherStore,
        *,
        base_url: str = OPEN_METEO_WEATHER_URL,
        timeout_seconds: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        logger.debug(
            "Initialized weather client",
            extra={"base_url": mask_url(self.base_url), "timeout_seconds": timeout_seconds},
        )

    def fetch_one(self, latitude: float, longitude: float) -> Optional[WeatherObservation]:
        """Return an observation for the position, or None if it could not be had."""
        return self.lookup(latitude, longitude).observation

    def lookup(self, latitude: float, longitude: float) -> FetchOutcome:
        """Resolve one position to a FetchOutcome; never raises for upstream trouble."""
        key = position_key(latitude, longitude)

        cached = self.store.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit", extra={"key": key})
            return FetchOutcome.present(key, cached, FetchReason.CACHE)

        try:
            resp = self.session.get(
                self.base_url,
                params=build_params(latitude, longitude),
                timeout=self.timeout_seconds,
            )
        except requests.exceptions.Timeout:
            logger.debug("Weather request timed out", extra={"key": key, "timeout": self.timeout_seconds})
            return FetchOutcome.absent(key, FetchReason.TIMEOUT)
        except requests.exceptions.RequestException as exc:
            logger.warning("Weather fetch failed for %s: %s", key, exc)
            return FetchOutcome.absent(key, FetchReason.NETWORK_ERROR)

        self.store.tracker.record_response(resp.headers, resp.status_code)
        if resp.status_code == RATE_LIMITED_STATUS:
            # No negative caching: the next call for this key goes upstream again.
            return FetchOutcome.absent(key, FetchReason.RATE_LIMITED)

        if not 200 <= resp.status_code < 300:
            logger.warning("Weather upstream returned %s for %s", resp.status_code, key)
            return FetchOutcome.absent(key, FetchReason.HTTP_ERROR)

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Weather upstream returned non-JSON body for %s", key)
            return FetchOutcome.absent(key, FetchReason.BAD_PAYLOAD)

        observed_at = dt.datetime.fromtimestamp(self.store.clock(), tz=dt.timezone.utc)
        observation = parse_current_weather(data, latitude, longitude, observed_at)
        if observation is None:
            logger.warning("Weather payload missing current conditions for %s", key)
            return FetchOutcome.absent(key, FetchReason.BAD_PAYLOAD)

        self.store.cache.put(key, observation)
        return FetchOutcome.present(key, observation, FetchReason.FETCHED)
