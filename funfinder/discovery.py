from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from funfinder.validation import loads_lenient


logger = logging.getLogger("funfinder")

SYSTEM_PROMPT = (
    "You are a comprehensive holiday and festival expert. "
    "Return ONLY a valid JSON array, no markdown and no commentary."
)


def build_discovery_prompt(location: str, day: dt.date, window_days: int) -> str:
    window = dt.timedelta(days=window_days)
    date_range = f"{(day - window).isoformat()} to {(day + window).isoformat()}"
    city = location.split(",")[0]
    return (
        f'For the location "{location}" and the date range {date_range} (focusing on {day.isoformat()}), list:\n'
        "1. Public holidays occurring during this period\n"
        "2. Local festivals, cultural events or seasonal celebrations\n"
        "3. Religious observances and traditional celebrations\n"
        "4. Street festivals and community gatherings that might affect family activities\n\n"
        "Format:\n"
        '[{"name": "Holiday/Festival Name", "start_date": "YYYY-MM-DD or null", '
        '"end_date": "YYYY-MM-DD or null", "url": "official URL or null", "distance_km": null}]\n\n'
        f"Include multi-day events that overlap {date_range}. "
        f"Include local traditions specific to {city}. "
        "If nothing significant is happening, return []."
    )


class HolidayDiscovery:
    """Asks a chat model for holidays and festivals around a date."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str | None = None,
        model: str = "gpt-4o-mini",
        window_days: int = 3,
        timeout_sec: float = 30.0,
        enabled: bool = True,
        llm: Any = None,
    ) -> None:
        self.window_days = window_days
        self.timeout_sec = timeout_sec
        if llm is None and api_key and enabled:
            llm = ChatOpenAI(api_key=api_key, base_url=base_url, model=model, temperature=0.3)
        self._llm = llm if enabled else None

    @property
    def enabled(self) -> bool:
        return self._llm is not None

    async def discover(self, location: str, day: dt.date) -> list[dict[str, Any]]:
        if self._llm is None:
            logger.info("discover:skipped ai holidays disabled")
            return []
        prompt = build_discovery_prompt(location, day, self.window_days)
        ai = await asyncio.wait_for(
            self._llm.ainvoke([SystemMessage(SYSTEM_PROMPT), HumanMessage(prompt)]),
            timeout=self.timeout_sec,
        )
        try:
            data = loads_lenient(ai.content or "[]", opener="[", closer="]")
        except json.JSONDecodeError:
            logger.warning("discover:unparseable response length=%s", len(ai.content or ""))
            return []
        if not isinstance(data, list):
            logger.warning("discover:non-array response")
            return []
        events = [e for e in data if isinstance(e, dict) and e.get("name")]
        logger.info("discover:done location=%s events=%s", location, len(events))
        return events
