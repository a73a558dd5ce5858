"""Sanitize, validate and repair generated recommendation payloads.

Model output is treated as untrusted input. ``validate_with_fallbacks`` is the
entry point used by the pipeline: it never raises, and degrades to a single
explicit placeholder activity when nothing usable can be recovered.
"""
from __future__ import annotations

import copy
import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from funfinder.errors import ValidationError
from funfinder.schemas import (
    DEFAULT_DURATION_HOURS,
    MAX_ACTIVITIES,
    MAX_DESCRIPTION_LENGTH,
    MIN_DESCRIPTION_LENGTH,
    Activity,
    DiscoveredHoliday,
    RecommendationResult,
    WebSource,
)


logger = logging.getLogger("funfinder")

TEXT_FIELDS = ("title", "description", "suitable_ages", "address", "notes")
NUMERIC_FIELDS = ("duration_hours", "lat", "lon")
OPTIONAL_TEXT_FIELDS = ("address", "notes")

_MARKDOWN_WRAP = re.compile(r"^\*\*|^\*|^\"|^'|\"$|'$|\*\*$|\*$")
_WHITESPACE = re.compile(r"\s+")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_PREAMBLE = re.compile(r"^(?:Here's|Here is|The JSON|JSON:|Response:)\s*", re.IGNORECASE)

_TRUE_WORDS = {"true", "yes"}
_FALSE_WORDS = {"false", "no"}


def _strip_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = re.sub(r"^```(?:json)?\s*", "", content)
        content = re.sub(r"\s*```$", "", content)
    return _PREAMBLE.sub("", content)


def loads_lenient(content: str, opener: str = "{", closer: str = "}") -> Any:
    """Parse model text as JSON, tolerating fences, preambles and trailing commas."""
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    cleaned = _strip_fences(content)
    first, last = cleaned.find(opener), cleaned.rfind(closer)
    if first != -1 and last > first:
        cleaned = cleaned[first:last + 1]
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return json.loads(_TRAILING_COMMA.sub(r"\1", cleaned))


def _clean_text(value: str) -> str:
    return _WHITESPACE.sub(" ", _MARKDOWN_WRAP.sub("", value)).strip()


def _coerce_number(value: Any) -> Any:
    if isinstance(value, str) and value.strip():
        match = re.match(r"^\s*[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?", value)
        if match:
            return float(match.group(0))
    return value


def _coerce_bool(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    return value


def _sanitize_activity(activity: Any) -> Any:
    if not isinstance(activity, dict):
        return activity
    cleaned = dict(activity)
    for field in TEXT_FIELDS:
        if isinstance(cleaned.get(field), str):
            cleaned[field] = _clean_text(cleaned[field])
    for field in ("category", "weather_fit"):
        if isinstance(cleaned.get(field), str):
            cleaned[field] = cleaned[field].strip().lower()
    for field in NUMERIC_FIELDS:
        if field in cleaned:
            cleaned[field] = _coerce_number(cleaned[field])
    if "free" in cleaned:
        cleaned["free"] = _coerce_bool(cleaned["free"])
    return cleaned


def sanitize_response(raw: Any) -> dict[str, Any]:
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        try:
            raw = loads_lenient(text)
        except json.JSONDecodeError as exc:
            raise ValidationError([f"response: Response is not valid JSON ({exc.msg})"]) from exc

    if not isinstance(raw, dict):
        raise ValidationError(["response: Response must be a valid object or JSON string"])

    sanitized = copy.deepcopy(raw)
    activities = sanitized.get("activities")
    if isinstance(activities, list):
        sanitized["activities"] = [_sanitize_activity(a) for a in activities]
    return sanitized


def _issues(exc: PydanticValidationError) -> list[str]:
    issues = []
    for err in exc.errors():
        path = ".".join(str(p) for p in err["loc"]) or "response"
        issues.append(f"{path}: {err['msg']}")
    return issues


def validate_response(raw: Any, context: str | None = None) -> RecommendationResult:
    sanitized = sanitize_response(raw)
    try:
        result = RecommendationResult.model_validate(sanitized)
    except PydanticValidationError as exc:
        issues = _issues(exc)
        logger.warning("validate:failed context=%s issues=%s", context, issues)
        raise ValidationError(issues, context) from exc
    logger.info("validate:ok activities=%s", len(result.activities))
    return result


def _repair_activity(activity: Any, index: int) -> dict[str, Any] | None:
    if not isinstance(activity, dict):
        return None
    fixed = dict(activity)

    title = fixed.get("title")
    if not isinstance(title, str) or not title.strip():
        title = f"Activity {index + 1}"
    fixed["title"] = title

    description = fixed.get("description")
    if not isinstance(description, str) or not description.strip():
        description = f"Description for {title}"
    elif len(description) < MIN_DESCRIPTION_LENGTH:
        description = f"{title}: {description}"
        if len(description) < MIN_DESCRIPTION_LENGTH:
            description = f"Description for {title}"
    fixed["description"] = description[:MAX_DESCRIPTION_LENGTH]

    if not isinstance(fixed.get("suitable_ages"), str) or not fixed["suitable_ages"].strip():
        fixed["suitable_ages"] = "All ages"
    duration = fixed.get("duration_hours")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
        fixed["duration_hours"] = DEFAULT_DURATION_HOURS
    if not isinstance(fixed.get("category"), str) or not fixed["category"]:
        fixed["category"] = "other"
    if not isinstance(fixed.get("weather_fit"), str) or not fixed["weather_fit"]:
        fixed["weather_fit"] = "ok"
    for field in OPTIONAL_TEXT_FIELDS:
        if fixed.get(field) is not None and not isinstance(fixed[field], str):
            fixed[field] = None

    if not fixed["title"] or not fixed["description"]:
        return None
    return fixed


def _keep_valid(items: Any, model: type) -> list[Any]:
    if not isinstance(items, list):
        return []
    kept = []
    for item in items:
        try:
            model.model_validate(item)
        except PydanticValidationError:
            continue
        kept.append(item)
    return kept


def repair_response(raw: Any) -> dict[str, Any]:
    repaired = sanitize_response(raw)
    activities = repaired.get("activities")
    if not isinstance(activities, list):
        activities = []
    fixed = [a for a in (_repair_activity(a, i) for i, a in enumerate(activities)) if a is not None]
    kept = _keep_valid(fixed, Activity)
    if len(kept) < len(fixed):
        logger.warning("validate:repair dropped %s unrepairable activities", len(fixed) - len(kept))
    repaired["activities"] = kept[:MAX_ACTIVITIES]
    repaired["web_sources"] = _keep_valid(repaired.get("web_sources"), WebSource)
    repaired["discovered_holidays"] = _keep_valid(repaired.get("discovered_holidays"), DiscoveredHoliday)
    return repaired


def minimal_response() -> RecommendationResult:
    return RecommendationResult(
        activities=[
            Activity(
                title="Activity Search Failed",
                category="other",
                description="The AI model returned an invalid response. Please try again with a different search.",
                suitable_ages="All ages",
                duration_hours=DEFAULT_DURATION_HOURS,
                weather_fit="ok",
            )
        ],
        ai_provider="unknown",
        ai_model="unknown",
    )


def validate_with_fallbacks(raw: Any) -> RecommendationResult:
    try:
        return validate_response(raw)
    except ValidationError as exc:
        logger.warning("validate:repair attempting after %s issue(s)", len(exc.issues))

    try:
        return validate_response(repair_response(raw), "After repair attempt")
    except ValidationError as exc:
        logger.error("validate:repair failed %s", exc.summary())

    logger.warning("validate:fallback returning placeholder result")
    return minimal_response()
