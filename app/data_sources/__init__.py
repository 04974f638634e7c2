"""Weather data sources and the factory that picks one at startup."""

from .base import CallableWeatherDataSource, WeatherDataSource
from .factory import build_weather_client, build_weather_store
from .open_meteo_client import (
    OPEN_METEO_WEATHER_URL,
    OpenMeteoWeatherClient,
    parse_current_weather,
)

__all__ = [
    "build_weather_client",
    "build_weather_store",
    "WeatherDataSource",
    "CallableWeatherDataSource",
    "OpenMeteoWeatherClient",
    "OPEN_METEO_WEATHER_URL",
    "parse_current_weather",
]
