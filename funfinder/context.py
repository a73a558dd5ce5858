from __future__ import annotations

from typing import Iterable

from funfinder.schemas import Context, FestivalFact, HolidayOutcome, ResolvedLocation, SearchRequest, WeatherSnapshot


def merge_festivals(primary: Iterable[FestivalFact], extra: Iterable[FestivalFact]) -> tuple[FestivalFact, ...]:
    merged: list[FestivalFact] = []
    seen: set[str] = set()
    for festival in (*primary, *extra):
        key = festival.name.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        merged.append(festival)
    return tuple(merged)


def assemble_context(
    request: SearchRequest,
    location: ResolvedLocation,
    weather: WeatherSnapshot,
    holidays: HolidayOutcome,
    festivals: Iterable[FestivalFact] = (),
) -> Context:
    """Build the immutable payload for one run. Performs no I/O."""
    return Context(
        location=location.label,
        date=request.date,
        duration_hours=request.duration_hours,
        ages=tuple(request.ages),
        weather=weather,
        is_public_holiday=holidays.is_public_holiday,
        holidays=holidays.holidays,
        nearby_festivals=merge_festivals(festivals, holidays.festivals),
        extra_instructions=request.extra_instructions,
    )
