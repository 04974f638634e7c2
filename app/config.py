"""Application configuration pulled from environment variables via pydantic."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the balloon weather service."""
    model_config = SettingsConfigDict(env_prefix="BALLOON_WX_", extra="ignore")

    weather_source: str = "open_meteo"  # options: open_meteo, proxy
    weather_base_url: str = "https://api.open-meteo.com/v1/forecast"
    weather_proxy_url: str = "http://localhost:8000/v1/weather"
    request_timeout_seconds: float = Field(default=5.0, gt=0)
    cache_ttl_seconds: int = Field(default=300, ge=0)
    max_concurrent: int = Field(default=10, ge=1, le=100)
    chunk_pause_seconds: float = Field(default=0.05, ge=0)
    rate_limit_default_retry_seconds: int = Field(default=60, ge=1)
    rate_limit_decay_on_reset: bool = True
    constellation_base_url: str = "https://a.windbornesystems.com/treasure"
    constellation_proxy_url: str | None = None
    constellation_hours: int = Field(default=24, ge=1, le=24)
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @field_validator("weather_base_url", "weather_proxy_url", "constellation_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("constellation_proxy_url", mode="after")
    @classmethod
    def strip_optional_trailing_slash(cls, v: str | None) -> str | None:
        """Normalize the optional proxy URL, treating blanks as unset."""
        if v is None or not str(v).strip():
            return None
        return str(v).rstrip("/")


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
