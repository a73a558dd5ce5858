from __future__ import annotations

import json

import pytest

from conftest import activity, recommendation
from funfinder.errors import ValidationError
from funfinder.validation import (
    loads_lenient,
    minimal_response,
    repair_response,
    sanitize_response,
    validate_response,
    validate_with_fallbacks,
)


def test_messy_activity_is_normalized():
    raw = recommendation(activity(
        title="**Park day**",
        category="OUTDOOR",
        description="  A   lovely   day in the park  ",
        duration_hours="3 hours",
        lat="200",
        lon="13.4",
        free="yes",
        weather_fit="Sunny",
        booking_url="not a url",
        address="null",
        evidence=["", "https://example.org/park", None],
    ), web_sources=None)

    result = validate_response(raw)
    park = result.activities[0]

    assert park.title == "Park day"
    assert park.category == "outdoor"
    assert park.description == "A lovely day in the park"
    assert park.duration_hours == 3.0
    assert park.lat is None
    assert park.lon == 13.4
    assert park.free is True
    assert park.weather_fit == "ok"
    assert park.booking_url is None
    assert park.address is None
    assert park.evidence == ["https://example.org/park"]
    assert result.web_sources == []


def test_defaults_for_unknown_values():
    raw = recommendation(activity(category="circus", duration_hours=30, free="maybe"), ai_provider=None, ai_model="  ")

    result = validate_response(raw)

    assert result.activities[0].category == "other"
    assert result.activities[0].duration_hours == 2.0
    assert result.activities[0].free is None
    assert result.ai_provider == "unknown"
    assert result.ai_model == "unknown"


def test_fenced_json_string_is_accepted():
    text = "Here is the JSON:\n```json\n" + json.dumps(recommendation()) + "\n```"

    result = validate_response(text)

    assert result.activities[0].title == "Zoo visit"


def test_trailing_commas_are_tolerated():
    assert loads_lenient('{"activities": [1, 2,],}') == {"activities": [1, 2]}


def test_sanitize_does_not_mutate_input():
    raw = recommendation(activity(category="MUSEUM"))

    sanitize_response(raw)

    assert raw["activities"][0]["category"] == "MUSEUM"


def test_non_object_is_rejected():
    with pytest.raises(ValidationError):
        sanitize_response("[1, 2, 3]")


def test_violations_are_reported_per_field():
    raw = recommendation(activity(description="short"))

    with pytest.raises(ValidationError) as info:
        validate_response(raw, "first pass")

    assert info.value.context == "first pass"
    assert info.value.issues[0].startswith("activities.0.description:")
    assert info.value.summary().startswith("Validation failed for:")


@pytest.mark.parametrize("title", ["", '""', "   "])
def test_blank_titles_are_rejected(title):
    with pytest.raises(ValidationError):
        validate_response(recommendation(activity(title=title)))


def test_repair_fills_placeholders():
    raw = recommendation(
        {"description": "Bring a ball and a picnic blanket."},
        {"title": "Park", "description": "Fun"},
        "not an activity",
    )

    result = validate_with_fallbacks(raw)

    assert [a.title for a in result.activities] == ["Activity 1", "Park"]
    assert result.activities[1].description == "Description for Park"
    assert result.activities[0].suitable_ages == "All ages"
    assert result.activities[0].duration_hours == 2.0


def test_repair_truncates_and_caps():
    raw = recommendation(*[activity(f"Stop {i}", description="x" * 1500) for i in range(40)])

    repaired = repair_response(raw)
    result = validate_response(repaired)

    assert len(result.activities) == 30
    assert len(result.activities[0].description) == 1000


def test_repair_keeps_only_valid_sources():
    raw = recommendation(
        activity(description="tiny"),
        web_sources=[
            {"title": "City guide", "url": "https://example.org/guide", "source": "example.org"},
            {"title": "Broken", "url": "ftp://example.org", "source": "example.org"},
        ],
        discovered_holidays=[
            {"name": "Christmas Eve", "date": "2025-12-24"},
            {"name": "Someday", "date": "December 24"},
        ],
    )

    result = validate_with_fallbacks(raw)

    assert [s.title for s in result.web_sources] == ["City guide"]
    assert [h.name for h in result.discovered_holidays] == ["Christmas Eve"]


@pytest.mark.parametrize("raw", ["I cannot help with that.", {"activities": []}, {"activities": ["a", "b"]}, 42])
def test_unrecoverable_payload_gets_placeholder(raw):
    result = validate_with_fallbacks(raw)

    assert result == minimal_response()
    assert result.activities[0].title == "Activity Search Failed"
    assert result.ai_provider == "unknown"


def test_every_validated_activity_has_title_and_description():
    raw = recommendation(
        {"title": "  ", "description": ""},
        {"title": "Museum", "description": None, "suitable_ages": None},
    )

    result = validate_with_fallbacks(raw)

    for item in result.activities:
        assert item.title.strip()
        assert len(item.description.strip()) >= 10


def test_unparseable_booking_url_is_dropped_not_fatal():
    raw = recommendation(activity("Zoo visit"), activity("Museum trip", booking_url="http://[broken"))

    result = validate_with_fallbacks(raw)

    assert [a.title for a in result.activities] == ["Zoo visit", "Museum trip"]
    assert result.activities[1].booking_url is None


def test_malformed_web_source_url_is_dropped():
    raw = recommendation(web_sources=[
        {"title": "Broken", "url": "https://[::1", "source": "example.org"},
        {"title": "City guide", "url": "https://example.org/guide", "source": "example.org"},
    ])

    result = validate_with_fallbacks(raw)

    assert [s.title for s in result.web_sources] == ["City guide"]


@pytest.mark.parametrize("hours", [float("nan"), float("inf"), -1.0])
def test_non_finite_duration_falls_back_to_default(hours):
    result = validate_with_fallbacks(recommendation(activity(duration_hours=hours)))

    assert result.activities[0].duration_hours == 2.0


def test_nan_duration_from_json_text():
    text = '{"activities": [{"title": "Zoo visit", "description": "Feed the goats at the petting zoo.", ' \
        '"suitable_ages": "3-10", "duration_hours": NaN}]}'

    assert validate_response(text).activities[0].duration_hours == 2.0


def test_structured_address_is_cleared_during_repair():
    raw = recommendation(
        activity("Zoo visit"),
        activity("Museum trip", address={"street": "Museumsinsel 1"}, notes=["bring snacks"]),
    )

    result = validate_with_fallbacks(raw)

    assert [a.title for a in result.activities] == ["Zoo visit", "Museum trip"]
    assert result.activities[1].address is None
    assert result.activities[1].notes is None


def test_unrepairable_activity_is_dropped_without_losing_siblings():
    # a title made only of quote characters survives repair but not validation
    raw = recommendation(activity("Zoo visit"), activity("\"'\""))

    result = validate_with_fallbacks(raw)

    assert [a.title for a in result.activities] == ["Zoo visit"]
