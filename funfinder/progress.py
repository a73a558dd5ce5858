from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Callable, Iterable

from funfinder.schemas import SearchDurationSample


logger = logging.getLogger("funfinder")

DEFAULT_GENERATION_START = 85.0
DEFAULT_GENERATION_MS = 60_000.0

LOADING_MESSAGES = (
    "Generating activity recommendations… This might take a while",
    "Free models are a bit slower… Thanks for your patience!",
    "Analyzing local attractions and family-friendly activities…",
    "Checking weather conditions and seasonal activities…",
    "Finding the perfect activities for your family…",
    "Searching for hidden gems and popular destinations…",
    "Considering age-appropriate activities and duration…",
    "Almost ready with personalized recommendations…",
)


class DurationHistory:
    """Last-N recommendation latencies, used only for the progress heuristic."""

    def __init__(self, maxlen: int = 10, samples: Iterable[SearchDurationSample] = ()) -> None:
        self._samples: deque[SearchDurationSample] = deque(samples, maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._samples)

    def record(self, duration_ms: float, model: str | None) -> SearchDurationSample:
        sample = SearchDurationSample(duration_ms=duration_ms, model=model or "unknown")
        self._samples.append(sample)
        return sample

    def samples(self) -> list[SearchDurationSample]:
        return list(self._samples)

    def average_ms(self) -> float | None:
        if not self._samples:
            return None
        return sum(s.duration_ms for s in self._samples) / len(self._samples)


def estimate_generation_start(history: DurationHistory) -> tuple[float, float]:
    """Return (progress at which AI generation starts, expected generation ms)."""
    avg = history.average_ms()
    if not avg or avg <= 0:
        return DEFAULT_GENERATION_START, DEFAULT_GENERATION_MS
    total_estimated = avg * 1.2
    start = 85 - (avg / total_estimated) * 20
    return max(75.0, min(85.0, start)), avg


class StatusTicker:
    """Rotates "still working" messages while the slow generation stage runs."""

    def __init__(
        self,
        on_message: Callable[[str], None],
        messages: tuple[str, ...] = LOADING_MESSAGES,
        first_delay_sec: float = 5.0,
        interval_sec: float = 15.0,
    ) -> None:
        self.on_message = on_message
        self.messages = messages
        self.first_delay_sec = first_delay_sec
        self.interval_sec = interval_sec
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._rotate())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _rotate(self) -> None:
        index = 0
        await asyncio.sleep(self.first_delay_sec)
        while True:
            index = (index + 1) % len(self.messages)
            logger.debug("status:ticker message=%s", self.messages[index])
            self.on_message(self.messages[index])
            await asyncio.sleep(self.interval_sec)
