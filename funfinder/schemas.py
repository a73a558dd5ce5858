from __future__ import annotations

import datetime as dt
import re
import uuid
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


Category = Literal[
    "outdoor", "indoor", "museum", "park", "playground", "water",
    "hike", "creative", "festival", "show", "seasonal", "other",
]
WeatherFit = Literal["good", "ok", "bad"]

MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 1000
MAX_ACTIVITIES = 30
DEFAULT_DURATION_HOURS = 2.0

_WRAPPING_QUOTES = re.compile(r"^[\"']|[\"']$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _strip_quotes(value: str) -> str:
    return _WRAPPING_QUOTES.sub("", value)


def _optional_text(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value or value == "null":
            return None
        return _strip_quotes(value)
    return value


def is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class RunState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    GATHERING_CONTEXT = "gathering-context"
    INVOKING = "invoking"
    VALIDATING = "validating"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (
            RunState.RESOLVING,
            RunState.GATHERING_CONTEXT,
            RunState.INVOKING,
            RunState.VALIDATING,
        )


class SearchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: str = Field(..., min_length=1, description="Free-text place name")
    date: dt.date = Field(..., description="Day of the outing")
    duration_hours: float = Field(..., gt=0, description="How long the activity may last")
    ages: list[int] = Field(..., min_length=1, description="Children's ages")
    extra_instructions: str | None = Field(None, description="Optional free-text instructions")

    @field_validator("location")
    @classmethod
    def _location_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Please enter a location")
        return value

    @field_validator("ages")
    @classmethod
    def _ages_in_range(cls, value: list[int]) -> list[int]:
        for age in value:
            if age < 0 or age > 120:
                raise ValueError(f"age out of range: {age}")
        return sorted(set(value))

    @field_validator("extra_instructions")
    @classmethod
    def _blank_instructions_are_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ResolvedLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: str = Field(..., min_length=1)
    country: str = ""
    country_code: str = ""

    @field_validator("country_code")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def label(self) -> str:
        return f"{self.name}, {self.country}" if self.country else self.name


class WeatherSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature_min_c: float | None = None
    temperature_max_c: float | None = None
    precipitation_probability_percent: float | None = None
    wind_speed_max_kmh: float | None = None

    @classmethod
    def empty(cls) -> WeatherSnapshot:
        return cls()

    @property
    def has_data(self) -> bool:
        return any(v is not None for v in self.model_dump().values())


class HolidayFact(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    local_name: str = Field(..., alias="localName")
    date: dt.date


class FestivalFact(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    url: str | None = None
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    distance_km: float | None = None


class HolidayOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_public_holiday: bool = False
    holidays: tuple[HolidayFact, ...] = ()
    festivals: tuple[FestivalFact, ...] = ()
    source: str | None = None


class Context(BaseModel):
    """The request payload sent to the recommendation backend. Never mutated."""

    model_config = ConfigDict(frozen=True)

    location: str
    date: dt.date
    duration_hours: float
    ages: tuple[int, ...]
    weather: WeatherSnapshot
    is_public_holiday: bool = False
    nearby_festivals: tuple[FestivalFact, ...] = ()
    holidays: tuple[HolidayFact, ...] = ()
    extra_instructions: str | None = None

    def to_payload(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        if self.extra_instructions is None:
            data.pop("extra_instructions")
        return data


class Activity(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    category: Category = "other"
    description: str = Field(..., min_length=MIN_DESCRIPTION_LENGTH, max_length=MAX_DESCRIPTION_LENGTH)
    suitable_ages: str = Field(..., min_length=1)
    duration_hours: float = DEFAULT_DURATION_HOURS
    address: str | None = None
    lat: float | None = None
    lon: float | None = None
    booking_url: str | None = None
    free: bool | None = None
    weather_fit: WeatherFit = "ok"
    notes: str | None = None
    evidence: list[str] = Field(default_factory=list)

    @field_validator("title", "description", "suitable_ages")
    @classmethod
    def _unquote(cls, value: str) -> str:
        value = _strip_quotes(value).strip()
        if not value:
            raise ValueError("cannot be empty")
        return value

    @field_validator("category", mode="wrap")
    @classmethod
    def _unknown_category_is_other(cls, value: Any, handler) -> str:
        if isinstance(value, str):
            value = value.strip().lower()
        try:
            return handler(value)
        except ValidationError:
            return "other"

    @field_validator("weather_fit", mode="wrap")
    @classmethod
    def _unknown_fit_is_ok(cls, value: Any, handler) -> str:
        if isinstance(value, str):
            value = value.strip().lower()
        try:
            return handler(value)
        except ValidationError:
            return "ok"

    @field_validator("duration_hours", mode="wrap")
    @classmethod
    def _clamp_duration(cls, value: Any, handler) -> float:
        try:
            hours = handler(value)
        except ValidationError:
            return DEFAULT_DURATION_HOURS
        # NaN fails every comparison
        if not 0.25 <= hours <= 12:
            return DEFAULT_DURATION_HOURS
        return hours

    @field_validator("lat", "lon", mode="wrap")
    @classmethod
    def _coordinate_or_none(cls, value: Any, handler, info) -> float | None:
        try:
            coord = handler(value)
        except ValidationError:
            return None
        limit = 90 if info.field_name == "lat" else 180
        if coord is not None and not -limit <= coord <= limit:
            return None
        return coord

    @field_validator("address", "notes", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        return _optional_text(value)

    @field_validator("booking_url", mode="before")
    @classmethod
    def _valid_url_or_none(cls, value: Any) -> str | None:
        return value.strip() if is_http_url(value) else None

    @field_validator("free", mode="wrap")
    @classmethod
    def _free_or_none(cls, value: Any, handler) -> bool | None:
        try:
            return handler(value)
        except ValidationError:
            return None

    @field_validator("evidence", mode="before")
    @classmethod
    def _evidence_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        cleaned = [str(item).strip() for item in value if item is not None]
        return [item for item in cleaned if item]


class WebSource(BaseModel):
    title: str = Field(..., min_length=1)
    url: str
    source: str = Field(..., min_length=1)

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError("Invalid web source URL")
        return value.strip()


class DiscoveredHoliday(BaseModel):
    name: str = Field(..., min_length=1)
    date: str
    type: str = "holiday"

    @field_validator("date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        if not _ISO_DATE.match(value):
            raise ValueError("Date must be in YYYY-MM-DD format")
        return value


class RecommendationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: dict[str, Any] | None = None
    activities: list[Activity] = Field(..., min_length=1, max_length=MAX_ACTIVITIES)
    web_sources: list[WebSource] = Field(default_factory=list)
    ai_provider: str = "unknown"
    ai_model: str = "unknown"
    discovered_holidays: list[DiscoveredHoliday] = Field(default_factory=list)
    cache_bypass_reason: str | None = Field(None, alias="cacheBypassReason")
    cache_info: Any | None = Field(None, alias="cacheInfo")

    @field_validator("query", mode="wrap")
    @classmethod
    def _query_or_none(cls, value: Any, handler) -> dict[str, Any] | None:
        try:
            return handler(value)
        except ValidationError:
            return None

    @field_validator("web_sources", "discovered_holidays", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("ai_provider", "ai_model", mode="before")
    @classmethod
    def _unknown_identifier(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "unknown"
        return value


class SearchDurationSample(BaseModel):
    duration_ms: float
    model: str = "unknown"
    timestamp: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class SearchHistoryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    location: str
    date: str
    duration: float | None = None
    kids_ages: list[int] = Field(default_factory=list, alias="kidsAges")
    extra_instructions: str | None = Field(None, alias="extraInstructions")
    timestamp: str
    search_count: int = Field(1, alias="searchCount")


class RunSnapshot(BaseModel):
    run_id: uuid.UUID | None = None
    state: RunState = RunState.IDLE
    progress: float = 0.0
    status: str = ""
    error: str | None = None
    context: Context | None = None
    result: RecommendationResult | None = None
    started_at: dt.datetime | None = None
