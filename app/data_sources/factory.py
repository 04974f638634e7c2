"""Factory helpers for choosing the weather data source at startup."""

from __future__ import annotations

from app import config
from app.data_sources.open_meteo_client import OpenMeteoWeatherClient
from app.weather_store import WeatherStore
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="data_sources/factory")


DEFAULT_SOURCE_NAME = "open_meteo"


def build_weather_store(settings: config.Settings | None = None) -> WeatherStore:
    """Build the cache + tracker bundle from settings."""
    settings = settings or config.settings
    return WeatherStore.create(
        ttl_seconds=settings.cache_ttl_seconds,
        default_retry_seconds=settings.rate_limit_default_retry_seconds,
        decay_on_reset=settings.rate_limit_decay_on_reset,
    )


def build_weather_client(
    settings: config.Settings | None = None,
    store: WeatherStore | None = None,
) -> OpenMeteoWeatherClient:
    """Instantiate the configured weather client (direct Open-Meteo or the proxy route)."""
    settings = settings or config.settings
    store = store or build_weather_store(settings)
    source = (settings.weather_source or DEFAULT_SOURCE_NAME).lower()

    if source == "open_meteo":
        base_url = settings.weather_base_url
    elif source == "proxy":
        base_url = settings.weather_proxy_url
        if not base_url:
            raise ValueError("weather_proxy_url must be set for the proxy weather source")
    else:
        raise ValueError(f"Unknown weather source '{source}'")

    logger.info("Using %s weather source", source, extra={"base_url": mask_url(base_url)})
    return OpenMeteoWeatherClient(
        store,
        base_url=base_url,
        timeout_seconds=settings.request_timeout_seconds,
    )
