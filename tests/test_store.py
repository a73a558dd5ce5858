from __future__ import annotations

import datetime as dt
import json

import httpx

from funfinder.context import assemble_context
from funfinder.store_client import HttpStore, InMemoryStore


async def test_history_deduplicates_and_keeps_newest_first(request_model, berlin, sunny, no_holidays):
    store = InMemoryStore(history_limit=2)
    context = assemble_context(request_model, berlin, sunny, no_holidays)
    other = context.model_copy(update={"location": "Potsdam, Germany"})
    third = context.model_copy(update={"location": "Leipzig, Germany"})

    await store.add_history(context)
    await store.add_history(other)
    await store.add_history(context)
    await store.add_history(third)

    assert [e.location for e in await store.list_history()] == ["Leipzig, Germany", "Berlin, Germany"]


async def test_history_entry_can_be_deleted(request_model, berlin, sunny, no_holidays):
    store = InMemoryStore()
    entry = await store.add_history(assemble_context(request_model, berlin, sunny, no_holidays))

    assert await store.delete_history(entry.id) is True
    assert await store.delete_history(entry.id) is False
    assert await store.list_history() == []


async def test_http_store_weather_round_trip(sunny):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, json={"ok": True, "weather": sunny.model_dump()})
        return httpx.Response(200, json={"ok": True})

    store = HttpStore("http://store.test", transport=httpx.MockTransport(handler))

    cached = await store.get_weather("Berlin, Germany", dt.date(2025, 12, 24))
    await store.put_weather("Berlin, Germany", dt.date(2025, 12, 24), sunny)

    assert cached == sunny
    assert [(r.method, r.url.path) for r in requests] == [
        ("POST", "/api/weather-cache"),
        ("PUT", "/api/weather-cache"),
    ]
    assert json.loads(requests[1].content)["date"] == "2025-12-24"


async def test_http_store_cache_miss():
    store = HttpStore(
        "http://store.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": False})),
    )

    assert await store.get_weather("Berlin, Germany", dt.date(2025, 12, 24)) is None


async def test_http_store_history_uses_camel_case(request_model, berlin, sunny, no_holidays):
    posted = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            posted.update(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(200, json={"ok": True, "history": [posted]})

    store = HttpStore("http://store.test", transport=httpx.MockTransport(handler))

    await store.add_history(assemble_context(request_model, berlin, sunny, no_holidays))
    history = await store.list_history()

    assert posted["kidsAges"] == [4, 7]
    assert history[0].kids_ages == [4, 7]
    assert history[0].location == "Berlin, Germany"
