"""HTTP API: upstream pass-through routes plus batch weather enrichment."""

from datetime import datetime
from typing import Optional

import requests
from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .batch_fetcher import fetch_weather_for_positions
from .config import settings
from .constellation import ConstellationClient, hour_url, validate_hour
from .data_sources import build_weather_client, build_weather_store
from .data_sources.open_meteo_client import build_params
from .domain import Position
from .rate_limit import FORWARDED_HEADERS
from .summary import constellation_stats, find_weather, format_wait_time
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="app/api")

router = APIRouter()

STORE = build_weather_store(settings)
WEATHER_CLIENT = build_weather_client(settings, STORE)
CONSTELLATION_CLIENT = ConstellationClient(
    base_url=settings.constellation_base_url,
    proxy_url=settings.constellation_proxy_url,
)
PROXY_SESSION = requests.Session()


class PositionIn(BaseModel):
    """A single position submitted for enrichment."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class BatchRequest(BaseModel):
    """Positions to enrich, with an optional per-request concurrency cap."""
    positions: list[PositionIn]
    max_concurrent: Optional[int] = Field(default=None, ge=1, le=100)


class ObservationOut(BaseModel):
    """Serialized weather observation."""
    latitude: float
    longitude: float
    temperature: float
    wind_speed: float
    wind_direction: float
    humidity: float
    pressure: float
    observed_at: datetime


class RateLimitOut(BaseModel):
    """Current advisory rate-limit state."""
    is_limited: bool
    retry_after_seconds: Optional[int] = None
    reset_at: Optional[datetime] = None
    wait_text: str = ""


class BatchResponse(BaseModel):
    """Observations keyed by position key, plus batch counters."""
    observations: dict[str, ObservationOut]
    requested: int
    unique: int
    resolved: int
    rate_limit: RateLimitOut


class SummaryResponse(BaseModel):
    """Stats for one constellation hour enriched with weather."""
    hour: int
    balloon_count: int
    avg_altitude: Optional[int] = None
    min_altitude: Optional[int] = None
    max_altitude: Optional[int] = None
    avg_temperature: Optional[int] = None
    weather_resolved: int = 0


class SnapshotOut(BaseModel):
    """One hour of balloon positions as `[latitude, longitude, altitude]` triples."""
    hour: int
    timestamp: Optional[datetime] = None
    balloon_count: int
    positions: list[list[float]]


def _rate_limit_out() -> RateLimitOut:
    state = STORE.tracker.current_state()
    return RateLimitOut(
        is_limited=state.is_limited,
        retry_after_seconds=state.retry_after_seconds,
        reset_at=state.reset_at,
        wait_text=format_wait_time(state),
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.get("/weather")
def proxy_weather(latitude: Optional[str] = None, longitude: Optional[str] = None):
    """Relay a current-weather request upstream, mirroring status, rate-limit headers and body."""
    if not latitude or not longitude:
        return _error(400, "Missing latitude or longitude")

    try:
        resp = PROXY_SESSION.get(
            settings.weather_base_url,
            params=build_params(latitude, longitude),
            timeout=settings.request_timeout_seconds,
        )
        data = resp.json()
    except (requests.exceptions.RequestException, ValueError) as exc:
        logger.error("Weather API error: %s", exc)
        return _error(500, "Failed to fetch weather data")

    headers = {name: resp.headers[name] for name in FORWARDED_HEADERS if resp.headers.get(name)}
    return JSONResponse(status_code=resp.status_code, content=data, headers=headers)


@router.get("/constellation")
def proxy_constellation(hour: str = "00"):
    """Relay one hourly constellation snapshot from the upstream."""
    try:
        hour_num = validate_hour(hour)
    except ValueError as exc:
        return _error(400, str(exc))

    try:
        resp = PROXY_SESSION.get(
            hour_url(settings.constellation_base_url, hour_num),
            timeout=settings.request_timeout_seconds,
        )
        if not 200 <= resp.status_code < 300:
            return _error(resp.status_code, "Failed to fetch constellation data")
        data = resp.json()
    except (requests.exceptions.RequestException, ValueError) as exc:
        logger.error("Constellation API error: %s", exc)
        return _error(500, "Internal server error")
    return JSONResponse(status_code=200, content=data)


@router.post("/weather/batch", response_model=BatchResponse)
def enrich_positions(req: BatchRequest) -> BatchResponse:
    """Resolve current weather for a batch of positions."""
    positions = [Position(latitude=p.latitude, longitude=p.longitude) for p in req.positions]
    result = fetch_weather_for_positions(
        positions,
        WEATHER_CLIENT,
        max_concurrent=req.max_concurrent or settings.max_concurrent,
        chunk_pause_seconds=settings.chunk_pause_seconds,
    )
    return BatchResponse(
        observations={key: ObservationOut(**obs.to_dict()) for key, obs in result.observations.items()},
        requested=result.requested,
        unique=result.unique,
        resolved=len(result.observations),
        rate_limit=_rate_limit_out(),
    )


@router.get("/rate-limit", response_model=RateLimitOut)
def rate_limit_status() -> RateLimitOut:
    """Poll the advisory rate-limit state."""
    return _rate_limit_out()


@router.get("/constellation/summary", response_model=SummaryResponse)
def constellation_summary(hour: int = Query(default=0, ge=0, le=23)) -> SummaryResponse:
    """Fetch one hour of balloon positions, enrich them, and summarize."""
    positions = CONSTELLATION_CLIENT.fetch_hour(hour)
    result = fetch_weather_for_positions(
        positions,
        WEATHER_CLIENT,
        max_concurrent=settings.max_concurrent,
        chunk_pause_seconds=settings.chunk_pause_seconds,
    )
    stats = constellation_stats(positions, result.observations)
    if stats is None:
        return SummaryResponse(hour=hour, balloon_count=0)
    return SummaryResponse(
        hour=hour,
        balloon_count=stats.balloon_count,
        avg_altitude=stats.avg_altitude,
        min_altitude=stats.min_altitude,
        max_altitude=stats.max_altitude,
        avg_temperature=stats.avg_temperature,
        weather_resolved=sum(1 for p in positions if find_weather(p, result.observations) is not None),
    )


@router.get("/constellation/history", response_model=list[SnapshotOut])
def constellation_history(hours: Optional[int] = Query(default=None, ge=1, le=24)) -> list[SnapshotOut]:
    """Recent hourly snapshots, newest first; hours with no valid positions are left out."""
    snapshots = CONSTELLATION_CLIENT.fetch_history(hours or settings.constellation_hours)
    return [
        SnapshotOut(
            hour=snap.hour,
            timestamp=snap.timestamp,
            balloon_count=len(snap.positions),
            positions=[[p.latitude, p.longitude, p.altitude] for p in snap.positions],
        )
        for snap in snapshots
    ]
