"""Balloon positions from the WindBorne constellation feed.

Each hourly snapshot is a JSON array of `[latitude, longitude, altitude]`
triples. Entries that are not three finite numbers inside the valid ranges
are dropped rather than failing the whole hour.
"""
from __future__ import annotations

import datetime as dt
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import requests

from app.domain import (
    MAX_ALTITUDE_M,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_ALTITUDE_M,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    BalloonPosition,
)
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="constellation")

CONSTELLATION_BASE_URL = "https://a.windbornesystems.com/treasure"
HOURS_OF_HISTORY = 24


@dataclass
class ConstellationSnapshot:
    """All valid balloon positions reported `hour` hours ago."""
    hour: int
    positions: List[BalloonPosition] = field(default_factory=list)
    timestamp: Optional[dt.datetime] = None


def validate_hour(hour: Any) -> int:
    """Return `hour` as an int in 0..23, raising ValueError otherwise."""
    try:
        value = int(str(hour).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid hour. Must be 0-23") from exc
    if not 0 <= value < HOURS_OF_HISTORY:
        raise ValueError("Invalid hour. Must be 0-23")
    return value


def hour_url(base_url: str, hour: int) -> str:
    """Direct upstream URL for one hourly snapshot (zero-padded file name)."""
    return f"{base_url.rstrip('/')}/{hour:02d}.json"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def is_valid_position(entry: Any) -> bool:
    """True for a `[lat, lon, alt]` triple with every value in range."""
    if not isinstance(entry, (list, tuple)) or len(entry) != 3:
        return False
    lat, lon, alt = entry
    if not (_is_number(lat) and _is_number(lon) and _is_number(alt)):
        return False
    return (
        MIN_LATITUDE <= lat <= MAX_LATITUDE
        and MIN_LONGITUDE <= lon <= MAX_LONGITUDE
        and MIN_ALTITUDE_M <= alt <= MAX_ALTITUDE_M
    )


def parse_constellation(data: Any, hours_ago: int) -> List[BalloonPosition]:
    """Convert a raw snapshot body into BalloonPositions, skipping bad entries."""
    if not isinstance(data, list):
        return []
    positions = [
        BalloonPosition(latitude=float(lat), longitude=float(lon), altitude=float(alt), hours_ago=hours_ago)
        for lat, lon, alt in (entry for entry in data if is_valid_position(entry))
    ]
    dropped = len(data) - len(positions)
    if dropped:
        logger.debug("Dropped invalid constellation entries", extra={"hour": hours_ago, "dropped": dropped})
    return positions


class ConstellationClient:
    """Fetch hourly balloon snapshots, trying the proxy first when one is configured."""

    def __init__(
        self,
        *,
        base_url: str = CONSTELLATION_BASE_URL,
        proxy_url: str | None = None,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.proxy_url = proxy_url.rstrip("/") if proxy_url else None
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self._clock = clock
        logger.debug(
            "Initialized constellation client",
            extra={"base_url": mask_url(self.base_url), "proxy_url": mask_url(self.proxy_url or "")},
        )

    def _now(self) -> dt.datetime:
        if self._clock is None:
            return dt.datetime.now(dt.timezone.utc)
        return dt.datetime.fromtimestamp(self._clock(), tz=dt.timezone.utc)

    def fetch_hour(self, hours_ago: int) -> List[BalloonPosition]:
        """Return the valid positions for one hour; an empty list on any failure."""
        hours_ago = validate_hour(hours_ago)
        try:
            resp = None
            if self.proxy_url:
                resp = self.session.get(self.proxy_url, params={"hour": hours_ago}, timeout=self.timeout_seconds)
            if resp is None or resp.status_code == 404:
                resp = self.session.get(hour_url(self.base_url, hours_ago), timeout=self.timeout_seconds)

            if not 200 <= resp.status_code < 300:
                logger.warning("Failed to fetch constellation hour %d: %s", hours_ago, resp.status_code)
                return []
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            logger.error("Error fetching constellation hour %d: %s", hours_ago, exc)
            return []
        return parse_constellation(data, hours_ago)

    def fetch_history(self, hours: int = HOURS_OF_HISTORY) -> List[ConstellationSnapshot]:
        """Fetch the last `hours` snapshots concurrently, newest first, skipping empty hours."""
        now = self._now()
        hour_list = list(range(min(hours, HOURS_OF_HISTORY)))
        with ThreadPoolExecutor(max_workers=max(len(hour_list), 1), thread_name_prefix="constellation") as pool:
            results = list(pool.map(self.fetch_hour, hour_list))

        snapshots = [
            ConstellationSnapshot(hour=hour, positions=positions, timestamp=now - dt.timedelta(hours=hour))
            for hour, positions in zip(hour_list, results)
            if positions
        ]
        logger.info(
            "Loaded constellation history",
            extra={"hours_requested": len(hour_list), "hours_with_data": len(snapshots)},
        )
        return snapshots
