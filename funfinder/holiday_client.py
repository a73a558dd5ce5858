from __future__ import annotations

import datetime as dt
from typing import Any
import httpx


class NagerDateClient:
    """Public holiday calendar, keyed by country and year."""

    def __init__(
        self,
        base_url: str = "https://date.nager.at",
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, base_url=base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def public_holidays(self, country_code: str, year: int) -> list[dict[str, Any]]:
        resp = await self._client.get(f"/api/v3/PublicHolidays/{year}/{country_code}")
        resp.raise_for_status()
        # 204 means the provider has no calendar for this country
        if resp.status_code == 204 or not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else []


class EnhancedHolidayClient:
    """Server-side holiday detection hosted next to the recommendation backend."""

    def __init__(
        self,
        base_url: str,
        path: str = "/api/holidays-enhanced",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.path = path
        self._client = httpx.AsyncClient(timeout=timeout, base_url=base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def detect(self, country_code: str, location: str, day: dt.date) -> list[dict[str, Any]]:
        payload = {
            "country_code": country_code,
            "year": day.year,
            "location": location,
            "date": day.isoformat(),
        }
        resp = await self._client.post(self.path, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and data.get("ok", True):
            holidays = data.get("holidays")
            return holidays if isinstance(holidays, list) else []
        return []
