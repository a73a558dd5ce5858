from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, TypedDict

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from funfinder.context import assemble_context
from funfinder.gatherers import HolidaySources, gather_festivals, gather_holidays, gather_weather
from funfinder.invoker import Invocation, RecommendationInvoker
from funfinder.open_meteo_client import OpenMeteoClient
from funfinder.progress import LOADING_MESSAGES, DurationHistory, estimate_generation_start
from funfinder.resolver import resolve_location
from funfinder.schemas import (
    Context,
    FestivalFact,
    HolidayOutcome,
    RecommendationResult,
    ResolvedLocation,
    RunState,
    SearchRequest,
    WeatherSnapshot,
)
from funfinder.validation import validate_with_fallbacks
from funfinder.wikidata_client import WikidataClient


logger = logging.getLogger("funfinder")

Reporter = Callable[[RunState | None, float | None, str | None], None]


class SearchState(TypedDict, total=False):
    request: SearchRequest
    bypass_cache: bool
    location: ResolvedLocation
    weather: WeatherSnapshot
    holidays: HolidayOutcome
    festivals: list[FestivalFact]
    context: Context
    invocation: Invocation
    result: RecommendationResult


@dataclass
class SearchServices:
    geo: OpenMeteoClient
    invoker: RecommendationInvoker
    holiday_sources: HolidaySources
    wikidata: WikidataClient | None
    store: Any
    history: DurationHistory
    festival_radius_km: float = 60.0
    festival_window_days: int = 7
    festival_limit: int = 10

    async def aclose(self) -> None:
        closers = [
            self.geo, self.invoker, self.wikidata, self.store,
            self.holiday_sources.nager, self.holiday_sources.enhanced,
        ]
        for client in closers:
            if client is not None:
                await client.aclose()


def _noop_report(state: RunState | None, progress: float | None, status: str | None) -> None:
    return None


def _reporter(config: RunnableConfig | None) -> Reporter:
    configurable = (config or {}).get("configurable", {})
    return configurable.get("report") or _noop_report


def create_graph(services: SearchServices):
    async def resolve_node(state: SearchState, config: RunnableConfig) -> SearchState:
        report = _reporter(config)
        report(RunState.RESOLVING, 10, "Geocoding location…")
        location = await resolve_location(services.geo, state["request"].location)
        return {"location": location}

    async def weather_node(state: SearchState, config: RunnableConfig) -> SearchState:
        report = _reporter(config)
        report(RunState.GATHERING_CONTEXT, 25, "Fetching weather forecast…")
        weather = await gather_weather(services.geo, services.store, state["location"], state["request"].date)
        return {"weather": weather}

    async def holiday_node(state: SearchState, config: RunnableConfig) -> SearchState:
        report = _reporter(config)
        report(RunState.GATHERING_CONTEXT, 40, "Checking public holidays…")
        outcome = await gather_holidays(services.holiday_sources, state["location"], state["request"].date)
        return {"holidays": outcome}

    async def festival_node(state: SearchState, config: RunnableConfig) -> SearchState:
        if services.wikidata is None:
            return {"festivals": []}
        festivals = await gather_festivals(
            services.wikidata,
            state["location"],
            state["request"].date,
            radius_km=services.festival_radius_km,
            window_days=services.festival_window_days,
            limit=services.festival_limit,
        )
        return {"festivals": festivals}

    async def assemble_node(state: SearchState, config: RunnableConfig) -> SearchState:
        report = _reporter(config)
        report(RunState.GATHERING_CONTEXT, 55, "Preparing search context…")
        context = assemble_context(
            state["request"],
            state["location"],
            state.get("weather") or WeatherSnapshot.empty(),
            state.get("holidays") or HolidayOutcome(),
            state.get("festivals") or [],
        )
        logger.info(
            "node:assemble done holiday=%s festivals=%s",
            context.is_public_holiday, len(context.nearby_festivals),
        )
        report(None, 65, "Preparing AI prompt…")
        return {"context": context}

    async def invoke_node(state: SearchState, config: RunnableConfig) -> SearchState:
        report = _reporter(config)
        report(RunState.INVOKING, 75, "Searching web for current events & recommendations…")
        start_progress, expected_ms = estimate_generation_start(services.history)
        logger.info("node:invoke start progress=%.1f expected=%.0fms", start_progress, expected_ms)
        report(None, start_progress, LOADING_MESSAGES[0])

        def on_retry(attempt: int, max_retries: int, exc: Exception) -> None:
            report(None, None, f"Retry {attempt}/{max_retries}: Server temporarily unavailable...")

        invocation = await services.invoker.invoke(
            state["context"],
            bypass_cache=state.get("bypass_cache", False),
            on_retry=on_retry,
        )
        return {"invocation": invocation}

    async def validate_node(state: SearchState, config: RunnableConfig) -> SearchState:
        report = _reporter(config)
        report(RunState.VALIDATING, 90, "Validating results…")
        result = validate_with_fallbacks(state["invocation"].payload)
        report(None, 95, "Processing results…")
        return {"result": result}

    graph = StateGraph(SearchState)
    graph.add_node("resolve_node", resolve_node)
    graph.add_node("weather_node", weather_node)
    graph.add_node("holiday_node", holiday_node)
    graph.add_node("festival_node", festival_node)
    graph.add_node("assemble_node", assemble_node)
    graph.add_node("invoke_node", invoke_node)
    graph.add_node("validate_node", validate_node)

    graph.set_entry_point("resolve_node")
    graph.add_edge("resolve_node", "weather_node")
    graph.add_edge("resolve_node", "holiday_node")
    graph.add_edge("resolve_node", "festival_node")
    graph.add_edge(["weather_node", "holiday_node", "festival_node"], "assemble_node")
    graph.add_edge("assemble_node", "invoke_node")
    graph.add_edge("invoke_node", "validate_node")
    graph.add_edge("validate_node", END)

    return graph.compile()
