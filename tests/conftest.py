from __future__ import annotations

import datetime as dt

import pytest

from funfinder.schemas import HolidayOutcome, ResolvedLocation, SearchRequest, WeatherSnapshot


@pytest.fixture
def request_model() -> SearchRequest:
    return SearchRequest(
        location="Berlin",
        date=dt.date(2025, 12, 24),
        duration_hours=3,
        ages=[7, 4],
    )


@pytest.fixture
def berlin() -> ResolvedLocation:
    return ResolvedLocation(latitude=52.52, longitude=13.41, name="Berlin", country="Germany", country_code="de")


@pytest.fixture
def tel_aviv() -> ResolvedLocation:
    return ResolvedLocation(latitude=32.08, longitude=34.78, name="Tel Aviv", country="Israel", country_code="IL")


@pytest.fixture
def sunny() -> WeatherSnapshot:
    return WeatherSnapshot(
        temperature_min_c=2.0,
        temperature_max_c=6.5,
        precipitation_probability_percent=10,
        wind_speed_max_kmh=14.0,
    )


@pytest.fixture
def no_holidays() -> HolidayOutcome:
    return HolidayOutcome()


def activity(title: str = "Zoo visit", **overrides) -> dict:
    data = {
        "title": title,
        "category": "outdoor",
        "description": "Spend the morning with the animals at the city zoo.",
        "suitable_ages": "3-10",
        "duration_hours": 2.5,
        "weather_fit": "good",
    }
    data.update(overrides)
    return data


def recommendation(*activities: dict, **extra) -> dict:
    body = {"activities": list(activities) or [activity()], "ai_provider": "openrouter", "ai_model": "test-model"}
    body.update(extra)
    return body
