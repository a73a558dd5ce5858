"""Best-effort context lookups: weather, holidays and nearby festivals.

Nothing in this module raises on provider failure. Each gatherer logs the
problem and returns its neutral default so a missing data source never blocks
recommendations.
"""
from __future__ import annotations

import datetime as dt
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from funfinder.discovery import HolidayDiscovery
from funfinder.holiday_client import EnhancedHolidayClient, NagerDateClient
from funfinder.open_meteo_client import OpenMeteoClient
from funfinder.schemas import FestivalFact, HolidayFact, HolidayOutcome, ResolvedLocation, WeatherSnapshot
from funfinder.wikidata_client import WikidataClient


logger = logging.getLogger("funfinder")

# Countries the primary calendar and the knowledge graph cover poorly.
POOR_COVERAGE_COUNTRIES = frozenset({
    "AE", "BH", "DZ", "EG", "IL", "IQ", "IR", "JO", "KW", "LB", "LY", "MA",
    "OM", "PS", "QA", "SA", "SD", "SY", "TN", "YE",
    "AF", "BD", "BT", "IN", "LK", "MV", "NP", "PK",
    "BN", "ID", "KH", "LA", "MM", "MY", "PH", "TH", "TL", "VN",
})

# English only; non-English event names always classify as festivals.
HOLIDAY_KEYWORDS = (
    "labor day", "labour day", "memorial day", "independence day", "veterans day",
    "presidents day", "martin luther king", "columbus day", "thanksgiving",
    "christmas", "easter", "new year", "holiday", "national day",
)


def _parse_day(value: Any) -> dt.date | None:
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return dt.date.fromisoformat(value[:10])
    except ValueError:
        return None


def _first(values: Any) -> float | None:
    if isinstance(values, list) and values and isinstance(values[0], (int, float)):
        return float(values[0])
    return None


def snapshot_from_forecast(raw: dict[str, Any]) -> WeatherSnapshot:
    daily = raw.get("daily") or {}
    return WeatherSnapshot(
        temperature_min_c=_first(daily.get("temperature_2m_min")),
        temperature_max_c=_first(daily.get("temperature_2m_max")),
        precipitation_probability_percent=_first(daily.get("precipitation_probability_max")),
        wind_speed_max_kmh=_first(daily.get("wind_speed_10m_max")),
    )


async def gather_weather(
    client: OpenMeteoClient,
    store: Any,
    location: ResolvedLocation,
    day: dt.date,
) -> WeatherSnapshot:
    label = location.label
    if store is not None:
        try:
            cached = await store.get_weather(label, day)
        except Exception as exc:  # noqa: BLE001
            logger.warning("weather:cache lookup failed for %s: %s", label, exc)
            cached = None
        if cached is not None:
            logger.info("weather:cache hit %s %s", label, day)
            return cached

    start = time.monotonic()
    try:
        raw = await client.daily_forecast(location.latitude, location.longitude, day)
        snapshot = snapshot_from_forecast(raw)
    except Exception as exc:  # noqa: BLE001
        logger.warning("weather:unavailable for %s on %s, using empty snapshot: %s", label, day, exc)
        return WeatherSnapshot.empty()
    logger.info(
        "weather:done %s..%s C rain=%s%% in %.2fs",
        snapshot.temperature_min_c,
        snapshot.temperature_max_c,
        snapshot.precipitation_probability_percent,
        time.monotonic() - start,
    )

    if store is not None:
        try:
            await store.put_weather(label, day, snapshot)
        except Exception as exc:  # noqa: BLE001
            logger.warning("weather:cache write failed for %s: %s", label, exc)
    return snapshot


def split_holidays_from_festivals(
    events: list[dict[str, Any]],
    target: dt.date,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    holidays, festivals = [], []
    for event in events:
        name = str(event.get("name") or "").lower()
        on_target = _parse_day(event.get("start_date")) == target
        if on_target and any(keyword in name for keyword in HOLIDAY_KEYWORDS):
            holidays.append(event)
        else:
            festivals.append(event)
    return holidays, festivals


def match_holidays(events: list[dict[str, Any]], target: dt.date, window_days: int = 3) -> list[HolidayFact]:
    window = dt.timedelta(days=window_days)
    matches: list[HolidayFact] = []
    for event in events:
        name = event.get("name")
        day = _parse_day(event.get("date") or event.get("start_date"))
        if not name or day is None:
            continue
        if target - window <= day <= target + window:
            matches.append(HolidayFact(name=name, local_name=event.get("localName") or name, date=day))
    return matches


def festival_fact(event: dict[str, Any]) -> FestivalFact | None:
    name = event.get("name")
    if not name:
        return None
    distance = event.get("distance_km")
    return FestivalFact(
        name=name,
        url=event.get("url") or None,
        start_date=_parse_day(event.get("start_date")),
        end_date=_parse_day(event.get("end_date")),
        distance_km=float(distance) if isinstance(distance, (int, float)) else None,
    )


@dataclass
class HolidaySources:
    nager: NagerDateClient | None
    wikidata: WikidataClient | None
    enhanced: EnhancedHolidayClient | None
    discovery: HolidayDiscovery | None
    radius_km: float = 60.0
    window_days: int = 7
    match_window_days: int = 3


def _outcome(stage: str, events: list[dict[str, Any]], day: dt.date, match_window_days: int) -> HolidayOutcome:
    if stage == "ai":
        candidates, others = split_holidays_from_festivals(events, day)
    elif stage == "wikidata":
        candidates = [e for e in events if e.get("kind") == "holiday"]
        others = [e for e in events if e.get("kind") != "holiday"]
    else:
        candidates, others = events, []

    matches = match_holidays(candidates, day, match_window_days)
    festivals = tuple(f for f in (festival_fact(e) for e in others) if f is not None)
    if matches:
        logger.info(
            "holidays:%s found %s near %s: %s",
            stage, len(matches), day, ", ".join(h.local_name for h in matches),
        )
    else:
        logger.info("holidays:%s none near %s (searched %s)", stage, day, len(candidates))
    return HolidayOutcome(
        is_public_holiday=bool(matches),
        holidays=tuple(matches),
        festivals=festivals,
        source=stage,
    )


async def gather_holidays(sources: HolidaySources, location: ResolvedLocation, day: dt.date) -> HolidayOutcome:
    code = location.country_code
    stages: list[tuple[str, Callable[[], Awaitable[list[dict[str, Any]]]]]] = []

    if code and code not in POOR_COVERAGE_COUNTRIES:
        if sources.nager is not None:
            stages.append(("nager", lambda: sources.nager.public_holidays(code, day.year)))
        if sources.wikidata is not None:
            stages.append((
                "wikidata",
                lambda: sources.wikidata.holidays_and_festivals(
                    code, location.latitude, location.longitude, day,
                    radius_km=sources.radius_km, window_days=sources.window_days,
                ),
            ))
    else:
        logger.info("holidays:poor coverage for %r, going straight to fallbacks", code)

    if sources.enhanced is not None:
        stages.append(("enhanced", lambda: sources.enhanced.detect(code, location.label, day)))
    if sources.discovery is not None:
        stages.append(("ai", lambda: sources.discovery.discover(location.label, day)))

    for stage, fetch in stages:
        logger.info("holidays:%s start %s %s", stage, code, day)
        try:
            events = await fetch()
        except Exception as exc:  # noqa: BLE001
            logger.warning("holidays:%s failed, trying next source: %s", stage, exc)
            continue
        if events:
            return _outcome(stage, events, day, sources.match_window_days)
        logger.info("holidays:%s returned nothing", stage)

    logger.info("holidays:all sources empty for %s", location.label)
    return HolidayOutcome()


async def gather_festivals(
    client: WikidataClient,
    location: ResolvedLocation,
    day: dt.date,
    radius_km: float = 60.0,
    window_days: int = 7,
    limit: int = 10,
) -> list[FestivalFact]:
    try:
        events = await client.festivals_near(
            location.latitude, location.longitude, day, radius_km=radius_km, window_days=window_days,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("festivals:unavailable near %s: %s", location.label, exc)
        return []

    events.sort(key=lambda e: e["distance_km"] if e.get("distance_km") is not None else math.inf)
    events.sort(key=lambda e: 0 if e.get("start_date") else 1)
    facts = [f for f in (festival_fact(e) for e in events) if f is not None][:limit]
    logger.info("festivals:done near %s count=%s", location.label, len(facts))
    return facts
