from __future__ import annotations

import datetime as dt
from types import SimpleNamespace

from funfinder.discovery import HolidayDiscovery, build_discovery_prompt


class FakeChat:
    def __init__(self, content: str):
        self.content = content
        self.messages = None

    async def ainvoke(self, messages):
        self.messages = messages
        return SimpleNamespace(content=self.content)


def test_prompt_covers_three_days_each_side():
    prompt = build_discovery_prompt("Berlin, Germany", dt.date(2025, 12, 24), window_days=3)

    assert "2025-12-21 to 2025-12-27" in prompt
    assert "local traditions specific to Berlin" in prompt


async def test_fenced_array_is_parsed():
    chat = FakeChat('```json\n[{"name": "Christmas Day", "start_date": "2025-12-25"}, {"start_date": null}]\n```')
    discovery = HolidayDiscovery(api_key=None, llm=chat)

    events = await discovery.discover("Berlin, Germany", dt.date(2025, 12, 24))

    assert events == [{"name": "Christmas Day", "start_date": "2025-12-25"}]
    assert len(chat.messages) == 2


async def test_unusable_answer_is_empty():
    discovery = HolidayDiscovery(api_key=None, llm=FakeChat("Sorry, I don't know."))

    assert await discovery.discover("Berlin, Germany", dt.date(2025, 12, 24)) == []


async def test_disabled_discovery_skips_the_model():
    chat = FakeChat("[]")
    discovery = HolidayDiscovery(api_key="sk-test", llm=chat, enabled=False)

    assert not discovery.enabled
    assert await discovery.discover("Berlin, Germany", dt.date(2025, 12, 24)) == []
    assert chat.messages is None
