from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from funfinder.errors import (
    EmptyResultError,
    FunFinderError,
    MalformedResponseError,
    RetryableServiceError,
    ServiceError,
    TransportError,
)
from funfinder.progress import DurationHistory
from funfinder.schemas import Context


logger = logging.getLogger("funfinder")

RETRYABLE_STATUS = frozenset({502, 503, 504})
RETRYABLE_MARKERS = ("temporarily unavailable", "service unavailable", "timeout")

RetryCallback = Callable[[int, int, FunFinderError], None]


@dataclass(frozen=True)
class Invocation:
    payload: dict[str, Any]
    elapsed_ms: float
    attempts: int


def _error_text(content_type: str, text: str) -> str | None:
    if "text/html" in content_type:
        return None
    if "application/json" in content_type:
        try:
            body = json.loads(text)
        except json.JSONDecodeError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("detail")
            return str(message) if message else None
    text = text.strip()
    return text[:300] or None


def classify_http_error(status_code: int, content_type: str, text: str) -> ServiceError:
    lowered = text.lower()
    if status_code in RETRYABLE_STATUS or any(marker in lowered for marker in RETRYABLE_MARKERS):
        return RetryableServiceError(
            f"Server temporarily unavailable ({status_code}). "
            "The service may be starting up or experiencing high load.",
            status_code,
        )
    message = _error_text(content_type, text)
    return ServiceError(message or f"Server error ({status_code}). Please try again later.", status_code)


def parse_response(resp: httpx.Response) -> dict[str, Any]:
    content_type = resp.headers.get("content-type", "")
    if resp.is_error:
        raise classify_http_error(resp.status_code, content_type, resp.text)
    if "application/json" not in content_type:
        raise MalformedResponseError()
    try:
        body = resp.json()
    except ValueError as exc:
        raise MalformedResponseError("Server returned a malformed JSON body") from exc

    if isinstance(body, dict) and "data" in body:
        if body.get("ok") is False:
            raise EmptyResultError(str(body.get("error") or EmptyResultError.user_message))
        body = body["data"]
    elif isinstance(body, dict) and body.get("ok") is False:
        raise EmptyResultError(str(body.get("error") or EmptyResultError.user_message))
    if not isinstance(body, dict):
        raise MalformedResponseError()

    activities = body.get("activities")
    if not isinstance(activities, list) or not activities:
        raise EmptyResultError()
    return body


def build_prompt_preview(context: Context, allowed_categories: str, activity_count: int = 20) -> str:
    return "\n".join([
        f"You are a local family activities planner. Using the provided context JSON, "
        f"suggest {activity_count} kid-friendly activities.",
        "HARD RULES:",
        "- Tailor to the exact city and date.",
        "- Respect the duration window.",
        "- Activities must fit ALL provided ages.",
        "- Consider weather; set weather_fit to good/ok/bad.",
        "- Prefer options relevant to public holidays or nearby festivals when applicable.",
        "- Return ONLY a single JSON object matching the schema; NO markdown or commentary.",
        "",
        f"Allowed categories: {allowed_categories}.",
        "",
        "Context JSON:",
        json.dumps(context.to_payload(), indent=2, ensure_ascii=False),
    ])


class RecommendationInvoker:
    def __init__(
        self,
        base_url: str,
        allowed_categories: str,
        history: DurationHistory | None = None,
        timeout_sec: float = 120.0,
        max_retries: int = 2,
        retry_delay_sec: float = 2.0,
        path: str = "/api/activities",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.allowed_categories = allowed_categories
        self.history = history
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.retry_delay_sec = retry_delay_sec
        self.path = path
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_sec, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post_once(self, context: Context, bypass_cache: bool) -> dict[str, Any]:
        body: dict[str, Any] = {"ctx": context.to_payload(), "allowedCategories": self.allowed_categories}
        if bypass_cache:
            body["bypassCache"] = True
        try:
            resp = await asyncio.wait_for(self._client.post(self.path, json=body), timeout=self.timeout_sec)
        except asyncio.TimeoutError as exc:
            raise RetryableServiceError(f"Request timeout after {self.timeout_sec:.0f} seconds") from exc
        except httpx.TimeoutException as exc:
            raise RetryableServiceError(f"Request timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"Could not reach the recommendation service: {exc}") from exc
        return parse_response(resp)

    async def invoke(
        self,
        context: Context,
        bypass_cache: bool = False,
        on_retry: RetryCallback | None = None,
    ) -> Invocation:
        attempt = 0
        start = time.monotonic()
        while True:
            try:
                attempt_start = time.monotonic()
                payload = await self._post_once(context, bypass_cache)
            except RetryableServiceError as exc:
                if attempt >= self.max_retries:
                    logger.error("invoke:failed after %s attempts: %s", attempt + 1, exc)
                    raise
                attempt += 1
                logger.warning("invoke:retry %s/%s after: %s", attempt, self.max_retries, exc)
                if on_retry is not None:
                    on_retry(attempt, self.max_retries, exc)
                await asyncio.sleep(self.retry_delay_sec)
                continue

            attempt_sec = time.monotonic() - attempt_start
            elapsed_ms = (time.monotonic() - start) * 1000
            if attempt_sec > self.timeout_sec * 0.8:
                logger.warning("invoke:slow %.2fs (timeout=%ss)", attempt_sec, self.timeout_sec)
            logger.info(
                "invoke:ok activities=%s in %.2fs attempts=%s",
                len(payload["activities"]), elapsed_ms / 1000, attempt + 1,
            )
            if self.history is not None:
                model = payload.get("ai_model") or payload.get("ai_provider")
                self.history.record(elapsed_ms, str(model) if model else None)
            return Invocation(payload=payload, elapsed_ms=elapsed_ms, attempts=attempt + 1)
