from __future__ import annotations

import datetime as dt
import time
from typing import Any
import httpx

from funfinder.schemas import Context, SearchHistoryEntry, WeatherSnapshot


HISTORY_LIMIT = 20


def _history_key(location: str, date: str, duration: float | None, ages: list[int]) -> str:
    return f"{location}-{date}-{duration or ''}-{','.join(str(a) for a in ages)}"


def build_history_entry(context: Context) -> SearchHistoryEntry:
    return SearchHistoryEntry(
        id=str(time.time_ns() // 1_000_000),
        location=context.location,
        date=context.date.isoformat(),
        duration=context.duration_hours,
        kids_ages=list(context.ages),
        extra_instructions=context.extra_instructions,
        timestamp=dt.datetime.now(dt.timezone.utc).isoformat(),
    )


class InMemoryStore:
    """Process-local store used when no remote store is configured."""

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self.history_limit = history_limit
        self._weather: dict[tuple[str, str], WeatherSnapshot] = {}
        self._history: list[SearchHistoryEntry] = []

    async def aclose(self) -> None:
        return None

    async def get_weather(self, location: str, day: dt.date) -> WeatherSnapshot | None:
        return self._weather.get((location, day.isoformat()))

    async def put_weather(self, location: str, day: dt.date, snapshot: WeatherSnapshot) -> None:
        self._weather[(location, day.isoformat())] = snapshot

    async def add_history(self, context: Context) -> SearchHistoryEntry:
        entry = build_history_entry(context)
        key = _history_key(entry.location, entry.date, entry.duration, entry.kids_ages)
        self._history = [
            e for e in self._history
            if _history_key(e.location, e.date, e.duration, e.kids_ages) != key
        ]
        self._history.insert(0, entry)
        del self._history[self.history_limit:]
        return entry

    async def list_history(self) -> list[SearchHistoryEntry]:
        return list(self._history)

    async def delete_history(self, entry_id: str) -> bool:
        before = len(self._history)
        self._history = [e for e in self._history if e.id != entry_id]
        return len(self._history) < before


class HttpStore:
    """Weather cache and search history kept by the companion web service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, base_url=base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _json(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        resp = await self._client.request(method, path, json=payload)
        resp.raise_for_status()
        return resp.json()

    async def get_weather(self, location: str, day: dt.date) -> WeatherSnapshot | None:
        data = await self._json("POST", "/api/weather-cache", {"location": location, "date": day.isoformat()})
        weather = data.get("weather") if data.get("ok") else None
        if not weather:
            return None
        return WeatherSnapshot.model_validate(weather)

    async def put_weather(self, location: str, day: dt.date, snapshot: WeatherSnapshot) -> None:
        await self._json(
            "PUT",
            "/api/weather-cache",
            {"location": location, "date": day.isoformat(), "weather": snapshot.model_dump()},
        )

    async def add_history(self, context: Context) -> SearchHistoryEntry:
        entry = build_history_entry(context)
        await self._json("POST", "/api/search-history", entry.model_dump(mode="json", by_alias=True))
        return entry

    async def list_history(self) -> list[SearchHistoryEntry]:
        data = await self._json("GET", "/api/search-history")
        if not data.get("ok"):
            return []
        return [SearchHistoryEntry.model_validate(e) for e in data.get("history", [])]

    async def delete_history(self, entry_id: str) -> bool:
        data = await self._json("DELETE", f"/api/search-history/{entry_id}")
        return bool(data.get("ok"))
