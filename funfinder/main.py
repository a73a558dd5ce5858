from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from funfinder.config import Settings, get_settings
from funfinder.controller import RunController
from funfinder.discovery import HolidayDiscovery
from funfinder.gatherers import HolidaySources
from funfinder.holiday_client import EnhancedHolidayClient, NagerDateClient
from funfinder.invoker import RecommendationInvoker, build_prompt_preview
from funfinder.open_meteo_client import OpenMeteoClient
from funfinder.progress import DurationHistory
from funfinder.schemas import Context, SearchRequest
from funfinder.store_client import HttpStore, InMemoryStore
from funfinder.wikidata_client import WikidataClient
from funfinder.workflow import SearchServices, create_graph


app = FastAPI(title="FunFinder Search", version="0.1.0")
logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("funfinder")


def build_services(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> SearchServices:
    history = DurationHistory(maxlen=settings.duration_history_size)
    geo = OpenMeteoClient(
        geocoding_base_url=settings.geocoding_base_url,
        weather_base_url=settings.weather_base_url,
        timeout=settings.provider_timeout_sec,
        transport=transport,
    )
    wikidata = WikidataClient(settings.wikidata_base_url, timeout=settings.provider_timeout_sec, transport=transport)
    if settings.store_base_url:
        store = HttpStore(settings.store_base_url, transport=transport)
    else:
        logger.info("startup:no store configured, using in-memory store")
        store = InMemoryStore()

    holiday_sources = HolidaySources(
        nager=NagerDateClient(settings.holidays_base_url, timeout=settings.holiday_timeout_sec, transport=transport),
        wikidata=wikidata,
        enhanced=EnhancedHolidayClient(
            settings.backend_base_url, timeout=settings.holiday_timeout_sec * 2, transport=transport,
        ),
        discovery=HolidayDiscovery(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            window_days=settings.ai_holiday_window_days,
            timeout_sec=settings.ai_holiday_timeout_sec,
            enabled=settings.enable_ai_holidays,
        ),
        radius_km=settings.festival_radius_km,
        window_days=settings.festival_window_days,
        match_window_days=settings.holiday_match_window_days,
    )
    invoker = RecommendationInvoker(
        base_url=settings.backend_base_url,
        allowed_categories=settings.allowed_categories,
        history=history,
        timeout_sec=settings.recommendation_timeout_sec,
        max_retries=settings.recommendation_max_retries,
        retry_delay_sec=settings.retry_delay_sec,
        transport=transport,
    )
    return SearchServices(
        geo=geo,
        invoker=invoker,
        holiday_sources=holiday_sources,
        wikidata=wikidata,
        store=store,
        history=history,
        festival_radius_km=settings.festival_radius_km,
        festival_window_days=settings.festival_window_days,
        festival_limit=settings.festival_limit,
    )


@app.on_event("startup")
async def on_startup() -> None:
    settings = get_settings()
    services = build_services(settings)
    controller = RunController(
        create_graph(services),
        store=services.store,
        success_display_sec=settings.success_display_sec,
        error_display_sec=settings.error_display_sec,
        abort_in_flight_on_cancel=settings.abort_in_flight_on_cancel,
    )

    app.state.settings = settings
    app.state.services = services
    app.state.controller = controller


@app.on_event("shutdown")
async def on_shutdown() -> None:
    controller: RunController | None = getattr(app.state, "controller", None)
    if controller is not None:
        await controller.shutdown()
    services: SearchServices | None = getattr(app.state, "services", None)
    if services is not None:
        await services.aclose()


def _snapshot_body(controller: RunController) -> dict:
    return controller.snapshot().model_dump(mode="json", by_alias=True)


def _start(request: SearchRequest, bypass_cache: bool) -> JSONResponse:
    controller: RunController = app.state.controller
    run_id = controller.start(request, bypass_cache=bypass_cache)
    if run_id is None:
        return JSONResponse(
            status_code=409,
            content={"error": "search_in_progress", "run_id": str(controller.active_run_id)},
        )
    return JSONResponse(status_code=202, content={"run_id": str(run_id), "state": controller.state.value})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/search")
async def search(request: SearchRequest) -> JSONResponse:
    return _start(request, bypass_cache=False)


@app.post("/search/refresh")
async def refresh(request: SearchRequest) -> JSONResponse:
    return _start(request, bypass_cache=True)


@app.post("/search/cancel")
async def cancel() -> dict:
    controller: RunController = app.state.controller
    cancelled = controller.cancel()
    return {"cancelled": cancelled, **_snapshot_body(controller)}


@app.get("/search/status")
async def status() -> dict:
    return _snapshot_body(app.state.controller)


@app.get("/search/history")
async def history() -> dict:
    store = app.state.services.store
    entries = await store.list_history()
    return {"history": [e.model_dump(mode="json", by_alias=True) for e in entries]}


@app.delete("/search/history/{entry_id}")
async def delete_history(entry_id: str) -> JSONResponse:
    store = app.state.services.store
    if not await store.delete_history(entry_id):
        return JSONResponse(status_code=404, content={"error": "not_found"})
    return JSONResponse(status_code=200, content={"ok": True})


@app.post("/prompt")
async def prompt(context: Context) -> dict:
    settings: Settings = app.state.settings
    return {"prompt": build_prompt_preview(context, settings.allowed_categories)}


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc: Exception):
    logger.exception("http:unhandled error")
    return JSONResponse(status_code=500, content={"error": str(exc)})
