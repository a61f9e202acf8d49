"""Runtime configuration via pydantic-settings (env vars prefixed REGATTA_, or .env)."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .storage import JsonFileStorage
from .sync import HttpAuthority, LocalAuthority, SyncController
from .weather import WeatherClient


class Settings(BaseSettings):
    """Library settings from environment variables."""

    model_config = SettingsConfigDict(env_prefix="REGATTA_", env_file=".env", case_sensitive=False)

    # Persistence
    storage_path: str = "regatta_data.json"

    # Remote authority; unset means the in-process LocalAuthority
    authority_url: Optional[str] = None
    authority_timeout_seconds: float = 30.0

    # Weather (defaults: Indiaroba, SE)
    weather_base_url: str = "https://api.open-meteo.com/v1/forecast"
    weather_latitude: float = -11.52
    weather_longitude: float = -37.51
    weather_timezone: str = "America/Maceio"
    weather_timeout_seconds: float = 10.0

    # Observability
    log_level: str = "INFO"

    @field_validator("authority_url", mode="before")
    @classmethod
    def blank_url_is_none(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"log_level must be a logging level name, got {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_controller(settings: Settings | None = None) -> SyncController:
    """Wire storage and authority from settings and load the stored document."""
    settings = settings or get_settings()
    if settings.authority_url:
        authority = HttpAuthority(
            settings.authority_url, timeout=settings.authority_timeout_seconds
        )
    else:
        authority = LocalAuthority()
    controller = SyncController(authority, JsonFileStorage(settings.storage_path))
    controller.initialize()
    return controller


def build_weather_client(settings: Settings | None = None) -> WeatherClient:
    settings = settings or get_settings()
    return WeatherClient(
        settings.weather_base_url,
        settings.weather_latitude,
        settings.weather_longitude,
        settings.weather_timezone,
        timeout=settings.weather_timeout_seconds,
    )
