from __future__ import annotations

import datetime as dt
from typing import Any
import httpx


DAILY_FIELDS = "temperature_2m_max,temperature_2m_min,precipitation_probability_max,wind_speed_10m_max"


class OpenMeteoClient:
    def __init__(
        self,
        geocoding_base_url: str = "https://geocoding-api.open-meteo.com",
        weather_base_url: str = "https://api.open-meteo.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._geocoding = httpx.AsyncClient(timeout=timeout, base_url=geocoding_base_url, transport=transport)
        self._forecast = httpx.AsyncClient(timeout=timeout, base_url=weather_base_url, transport=transport)

    async def aclose(self) -> None:
        await self._geocoding.aclose()
        await self._forecast.aclose()

    @staticmethod
    async def _get(client: httpx.AsyncClient, path: str, params: dict[str, Any]) -> dict[str, Any]:
        resp = await client.get(path, params=params)
        resp.raise_for_status()
        return resp.json()

    async def search(self, name: str, count: int = 5, language: str = "en") -> dict[str, Any]:
        params = {"name": name, "count": count, "language": language}
        return await self._get(self._geocoding, "/v1/search", params)

    async def daily_forecast(self, latitude: float, longitude: float, day: dt.date) -> dict[str, Any]:
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "daily": DAILY_FIELDS,
            "timezone": "auto",
            "start_date": day.isoformat(),
            "end_date": day.isoformat(),
        }
        return await self._get(self._forecast, "/v1/forecast", params)
