"""Hourly weather forecast lookup (Open-Meteo) used to pre-fill new races.

A missing forecast is a normal outcome: every failure path returns None.
"""
from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from .types import WeatherForecast

logger = logging.getLogger(__name__)

_LOCAL_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}$")
_CARDINALS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")
_HOURLY_PARAMS = "temperature_2m,relativehumidity_2m,rain,windspeed_10m,winddirection_10m"


def degree_to_cardinal(degree: float) -> str:
    """Convert a wind direction in degrees to one of 8 compass points."""
    normalized = degree % 360
    return _CARDINALS[int(normalized / 45 + 0.5) % 8]


class WeatherClient:
    def __init__(
        self,
        base_url: str = "https://api.open-meteo.com/v1/forecast",
        latitude: float = -11.52,
        longitude: float = -37.51,
        timezone: str = "America/Maceio",
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.latitude = latitude
        self.longitude = longitude
        self.timezone = timezone
        self.timeout = timeout
        self._client = client

    async def _get(self, params: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(self.base_url, params=params)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(self.base_url, params=params)

    async def forecast(self, local_datetime: str) -> WeatherForecast | None:
        """
        Forecast for a local date and hour.

        Args:
          local_datetime: "YYYY-MM-DDTHH:MM" in the venue's timezone.
        """
        if not isinstance(local_datetime, str) or not _LOCAL_DATETIME_RE.match(local_datetime):
            logger.error(f"Invalid local date/time: {local_datetime!r}")
            return None
        date_part, time_part = local_datetime.split("T")
        hour = int(time_part[:2])
        params = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "hourly": _HOURLY_PARAMS,
            "start_date": date_part,
            "end_date": date_part,
            "timezone": self.timezone,
        }
        try:
            response = await self._get(params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Weather forecast request failed: {e}")
            return None
        return _forecast_for_hour(data, hour)


def _forecast_for_hour(data: Any, hour: int) -> WeatherForecast | None:
    hourly = data.get("hourly") if isinstance(data, dict) else None
    if not isinstance(hourly, dict) or len(hourly.get("time") or []) <= hour:
        logger.warning("Weather forecast missing for the requested hour")
        return None
    try:
        return {
            "windSpeed": round(float(hourly["windspeed_10m"][hour]), 1),
            "windDirection": degree_to_cardinal(float(hourly["winddirection_10m"][hour])),
            "temperature": round(float(hourly["temperature_2m"][hour]), 1),
            "rain": round(float(hourly["rain"][hour]), 1),
            "humidity": int(round(float(hourly["relativehumidity_2m"][hour]))),
        }
    except (KeyError, IndexError, TypeError, ValueError):
        logger.warning("Weather forecast has incomplete hourly data")
        return None
