"""Owns the single in-flight search and its user-visible lifecycle.

Every run gets a fresh ``run_id``. Callbacks coming back from the pipeline
carry the id they were started with and are dropped unless it is still the
active one, so a cancelled or superseded run can never overwrite state.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
import uuid
from typing import Any, Callable

from funfinder.errors import FunFinderError, describe_error
from funfinder.progress import StatusTicker
from funfinder.schemas import RecommendationResult, RunSnapshot, RunState, SearchRequest


logger = logging.getLogger("funfinder")

Listener = Callable[[RunSnapshot], None]


class RunController:
    def __init__(
        self,
        graph: Any,
        store: Any = None,
        success_display_sec: float = 1.0,
        error_display_sec: float = 8.0,
        abort_in_flight_on_cancel: bool = True,
        ticker_factory: Callable[[Callable[[str], None]], StatusTicker] = StatusTicker,
    ) -> None:
        self._graph = graph
        self._store = store
        self.success_display_sec = success_display_sec
        self.error_display_sec = error_display_sec
        self.abort_in_flight_on_cancel = abort_in_flight_on_cancel
        self._ticker_factory = ticker_factory

        self._snapshot = RunSnapshot()
        self._active_run_id: uuid.UUID | None = None
        self._task: asyncio.Task | None = None
        self._ticker: StatusTicker | None = None
        self._timers: list[asyncio.TimerHandle] = []
        self._listeners: list[Listener] = []
        self.last_result: RecommendationResult | None = None

    @property
    def state(self) -> RunState:
        return self._snapshot.state

    @property
    def is_active(self) -> bool:
        return self._snapshot.state.is_active

    @property
    def active_run_id(self) -> uuid.UUID | None:
        return self._active_run_id

    def snapshot(self) -> RunSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self, request: SearchRequest, bypass_cache: bool = False) -> uuid.UUID | None:
        # the completed result stays on screen until its display timer fires;
        # a failure message does not block a new search
        if self.is_active or self.state is RunState.COMPLETE:
            logger.info("run:start ignored, search %s still %s", self._active_run_id, self.state.value)
            return None

        self._clear_timers()
        run_id = uuid.uuid4()
        self._active_run_id = run_id
        logger.info("run:%s start location=%s date=%s bypass_cache=%s", run_id, request.location, request.date, bypass_cache)
        self._publish(
            run_id=run_id,
            state=RunState.RESOLVING,
            progress=0.0,
            status="Starting search...",
            error=None,
            context=None,
            result=None,
            started_at=dt.datetime.now(dt.timezone.utc),
        )
        self._task = asyncio.get_running_loop().create_task(self._run(run_id, request, bypass_cache))
        return run_id

    def refresh(self, request: SearchRequest) -> uuid.UUID | None:
        return self.start(request, bypass_cache=True)

    def cancel(self) -> bool:
        if not self.is_active:
            return False
        run_id = self._active_run_id
        self._active_run_id = None
        self._stop_ticker()
        self._clear_timers()
        if self.abort_in_flight_on_cancel and self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("run:%s cancelled by user", run_id)
        self._publish(state=RunState.CANCELLED, status="Search cancelled by user")
        self._publish(state=RunState.IDLE, progress=0.0)
        return True

    async def wait(self) -> RunSnapshot:
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._snapshot

    async def shutdown(self) -> None:
        self.cancel()
        self._clear_timers()
        await self.wait()

    def _is_current(self, run_id: uuid.UUID) -> bool:
        return run_id is not None and self._active_run_id == run_id

    def _publish(self, **changes: Any) -> None:
        self._snapshot = self._snapshot.model_copy(update=changes)
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("run:listener failed")

    def _report(self, run_id: uuid.UUID, state: RunState | None, progress: float | None, status: str | None) -> None:
        if not self._is_current(run_id):
            logger.debug("run:%s stale update dropped", run_id)
            return
        changes: dict[str, Any] = {}
        if state is not None and state is not self._snapshot.state:
            changes["state"] = state
            if state is RunState.INVOKING:
                self._start_ticker(run_id)
            else:
                self._stop_ticker()
        if progress is not None:
            changes["progress"] = max(self._snapshot.progress, float(progress))
        if status is not None:
            changes["status"] = status
        if changes:
            self._publish(**changes)

    def _start_ticker(self, run_id: uuid.UUID) -> None:
        self._stop_ticker()
        self._ticker = self._ticker_factory(lambda message: self._report(run_id, None, None, message))
        self._ticker.start()

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None

    def _schedule(self, delay: float, callback: Callable[[uuid.UUID], None], run_id: uuid.UUID) -> None:
        handle = asyncio.get_running_loop().call_later(delay, callback, run_id)
        self._timers.append(handle)

    def _clear_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    def _to_idle(self, run_id: uuid.UUID) -> None:
        if not self._is_current(run_id):
            return
        self._active_run_id = None
        self._publish(state=RunState.IDLE, progress=0.0, status="", error=None)

    async def _run(self, run_id: uuid.UUID, request: SearchRequest, bypass_cache: bool) -> None:
        def report(state: RunState | None, progress: float | None, status: str | None) -> None:
            self._report(run_id, state, progress, status)

        try:
            final = await self._graph.ainvoke(
                {"request": request, "bypass_cache": bypass_cache},
                config={"configurable": {"report": report}},
            )
        except asyncio.CancelledError:
            logger.info("run:%s pipeline task cancelled", run_id)
            raise
        except Exception as exc:  # noqa: BLE001
            self._fail(run_id, exc)
            return
        finally:
            if self._is_current(run_id):
                self._stop_ticker()

        await self._complete(run_id, final)

    def _fail(self, run_id: uuid.UUID, exc: Exception) -> None:
        if not self._is_current(run_id):
            logger.info("run:%s stale failure ignored: %s", run_id, exc)
            return
        message = describe_error(exc)
        if isinstance(exc, FunFinderError):
            logger.warning("run:%s failed %s: %s", run_id, type(exc).__name__, exc)
        else:
            logger.exception("run:%s failed unexpectedly", run_id)
        self._publish(state=RunState.FAILED, status=f"Error: {message}", error=message)
        self._schedule(self.error_display_sec, self._to_idle, run_id)

    async def _complete(self, run_id: uuid.UUID, final: dict[str, Any]) -> None:
        if not self._is_current(run_id):
            logger.info("run:%s stale result ignored", run_id)
            return
        result: RecommendationResult = final["result"]
        context = final.get("context")
        self.last_result = result
        self._publish(state=RunState.COMPLETE, progress=100.0, status="Complete!", result=result, context=context)
        self._schedule(self.success_display_sec, self._to_idle, run_id)
        logger.info("run:%s complete activities=%s", run_id, len(result.activities))

        if self._store is not None and context is not None:
            try:
                await self._store.add_history(context)
            except Exception as exc:  # noqa: BLE001
                logger.warning("run:%s failed to save search history: %s", run_id, exc)
