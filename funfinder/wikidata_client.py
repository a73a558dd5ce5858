from __future__ import annotations

import datetime as dt
import math
from typing import Any
import httpx


FESTIVAL_QUERY = """SELECT ?item ?itemLabel ?start ?end ?coord ?article WHERE {{
  ?item wdt:P31/wdt:P279* wd:Q132241 .
  ?item wdt:P625 ?coord .
  OPTIONAL {{ ?item wdt:P580 ?start. }}
  OPTIONAL {{ ?item wdt:P582 ?end. }}
  SERVICE wikibase:around {{ ?item wdt:P625 ?coord . bd:serviceParam wikibase:center "{wkt}"^^geo:wktLiteral . bd:serviceParam wikibase:radius "{radius}". }}
  OPTIONAL {{ ?article schema:about ?item ; schema:isPartOf <https://en.wikipedia.org/> . }}
  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "en". }}
}} LIMIT 50"""

HOLIDAY_AND_FESTIVAL_QUERY = """SELECT ?item ?itemLabel ?kind ?start ?end ?coord ?article WHERE {{
  {{
    ?item wdt:P31/wdt:P279* wd:Q1197685 .
    ?item wdt:P17 ?country .
    ?country wdt:P297 "{country_code}" .
    ?item wdt:P585|wdt:P580 ?start .
    OPTIONAL {{ ?item wdt:P582 ?end. }}
    BIND("holiday" AS ?kind)
  }} UNION {{
    ?item wdt:P31/wdt:P279* wd:Q132241 .
    ?item wdt:P625 ?coord .
    OPTIONAL {{ ?item wdt:P580 ?start. }}
    OPTIONAL {{ ?item wdt:P582 ?end. }}
    SERVICE wikibase:around {{ ?item wdt:P625 ?coord . bd:serviceParam wikibase:center "{wkt}"^^geo:wktLiteral . bd:serviceParam wikibase:radius "{radius}". }}
    BIND("festival" AS ?kind)
  }}
  FILTER(!BOUND(?start) || (?start >= "{window_start}T00:00:00Z"^^xsd:dateTime && ?start <= "{window_end}T23:59:59Z"^^xsd:dateTime))
  OPTIONAL {{ ?article schema:about ?item ; schema:isPartOf <https://en.wikipedia.org/> . }}
  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "en". }}
}} LIMIT 100"""


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = math.sin(d_lat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    return 2 * r * math.asin(math.sqrt(a))


def _parse_point(value: str) -> tuple[float | None, float | None]:
    # WKT "Point(lon lat)"
    open_idx, close_idx = value.find("("), value.find(")")
    if open_idx < 0 or close_idx <= open_idx:
        return None, None
    parts = value[open_idx + 1:close_idx].split()
    if len(parts) != 2:
        return None, None
    try:
        return float(parts[1]), float(parts[0])
    except ValueError:
        return None, None


def _parse_day(value: str | None) -> dt.date | None:
    if not value:
        return None
    try:
        return dt.date.fromisoformat(value[:10])
    except ValueError:
        return None


def _in_window(start: dt.date | None, end: dt.date | None, window_start: dt.date, window_end: dt.date) -> bool:
    if start and end:
        return not (end < window_start or start > window_end)
    if start:
        return window_start <= start <= window_end
    return True


class WikidataClient:
    def __init__(
        self,
        base_url: str = "https://query.wikidata.org",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            base_url=base_url,
            transport=transport,
            headers={"Accept": "application/sparql-results+json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _sparql(self, query: str) -> list[dict[str, Any]]:
        resp = await self._client.get("/sparql", params={"format": "json", "query": query})
        resp.raise_for_status()
        data = resp.json()
        return data.get("results", {}).get("bindings", [])

    async def festivals_near(
        self,
        latitude: float,
        longitude: float,
        day: dt.date,
        radius_km: float = 60.0,
        window_days: int = 7,
    ) -> list[dict[str, Any]]:
        query = FESTIVAL_QUERY.format(wkt=f"Point({longitude} {latitude})", radius=radius_km)
        bindings = await self._sparql(query)
        return _parse_events(bindings, latitude, longitude, day, window_days, default_kind="festival")

    async def holidays_and_festivals(
        self,
        country_code: str,
        latitude: float,
        longitude: float,
        day: dt.date,
        radius_km: float = 60.0,
        window_days: int = 7,
    ) -> list[dict[str, Any]]:
        window = dt.timedelta(days=window_days)
        query = HOLIDAY_AND_FESTIVAL_QUERY.format(
            country_code=country_code.upper(),
            wkt=f"Point({longitude} {latitude})",
            radius=radius_km,
            window_start=(day - window).isoformat(),
            window_end=(day + window).isoformat(),
        )
        bindings = await self._sparql(query)
        return _parse_events(bindings, latitude, longitude, day, window_days, default_kind="festival")


def _parse_events(
    bindings: list[dict[str, Any]],
    latitude: float,
    longitude: float,
    day: dt.date,
    window_days: int,
    default_kind: str,
) -> list[dict[str, Any]]:
    window_start = day - dt.timedelta(days=window_days)
    window_end = day + dt.timedelta(days=window_days)
    events: list[dict[str, Any]] = []
    for b in bindings:
        label = b.get("itemLabel", {}).get("value")
        if not label:
            continue
        start = _parse_day(b.get("start", {}).get("value"))
        end = _parse_day(b.get("end", {}).get("value"))
        if not _in_window(start, end, window_start, window_end):
            continue
        lat2, lon2 = _parse_point(b.get("coord", {}).get("value", ""))
        distance = None
        if lat2 is not None and lon2 is not None:
            distance = float(round(haversine_km(latitude, longitude, lat2, lon2)))
        events.append({
            "kind": b.get("kind", {}).get("value", default_kind),
            "name": label,
            "url": b.get("article", {}).get("value"),
            "start_date": start.isoformat() if start else None,
            "end_date": end.isoformat() if end else None,
            "lat": lat2,
            "lon": lon2,
            "distance_km": distance,
        })
    return events
