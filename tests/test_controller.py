from __future__ import annotations

import asyncio

import pytest

from conftest import recommendation
from funfinder.context import assemble_context
from funfinder.controller import RunController
from funfinder.errors import NotFoundError, RetryableServiceError
from funfinder.schemas import RunState
from funfinder.store_client import InMemoryStore
from funfinder.validation import validate_with_fallbacks


class FakeGraph:
    """Reports the same checkpoints as the real pipeline without any I/O."""

    def __init__(self, context, error: Exception | None = None, gate: asyncio.Event | None = None):
        self.context = context
        self.error = error
        self.gate = gate
        self.calls: list[dict] = []
        self.reached_gate = asyncio.Event()

    async def ainvoke(self, state, config):
        self.calls.append(state)
        report = config["configurable"]["report"]
        report(RunState.RESOLVING, 10, "Geocoding location…")
        if isinstance(self.error, NotFoundError):
            raise self.error
        report(RunState.GATHERING_CONTEXT, 25, "Fetching weather forecast…")
        report(RunState.GATHERING_CONTEXT, 40, "Checking public holidays…")
        report(RunState.INVOKING, 75, "Searching web…")
        self.reached_gate.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        report(RunState.VALIDATING, 90, "Validating results…")
        return {"context": self.context, "result": validate_with_fallbacks(recommendation())}


@pytest.fixture
def context(request_model, berlin, sunny, no_holidays):
    return assemble_context(request_model, berlin, sunny, no_holidays)


def _controller(graph, store=None, **kwargs) -> RunController:
    kwargs.setdefault("success_display_sec", 0.01)
    kwargs.setdefault("error_display_sec", 0.01)
    return RunController(graph, store=store, **kwargs)


async def test_successful_run_completes_then_returns_to_idle(request_model, context):
    store = InMemoryStore()
    controller = _controller(FakeGraph(context), store=store)
    snapshots = []
    controller.subscribe(snapshots.append)

    run_id = controller.start(request_model)
    final = await controller.wait()

    assert run_id is not None
    assert final.state is RunState.COMPLETE
    assert final.progress == 100.0
    assert final.status == "Complete!"
    assert final.result.activities[0].title == "Zoo visit"
    assert controller.last_result is final.result
    assert len(await store.list_history()) == 1

    progress = [s.progress for s in snapshots if s.state is not RunState.IDLE]
    assert progress == sorted(progress)
    assert [s.state for s in snapshots][:2] == [RunState.RESOLVING, RunState.RESOLVING]

    await asyncio.sleep(0.05)
    assert controller.state is RunState.IDLE
    assert controller.last_result is not None


async def test_start_while_active_is_a_no_op(request_model, context):
    gate = asyncio.Event()
    graph = FakeGraph(context, gate=gate)
    controller = _controller(graph)

    first = controller.start(request_model)
    await graph.reached_gate.wait()
    second = controller.start(request_model)
    third = controller.refresh(request_model)

    assert first is not None
    assert second is None
    assert third is None
    assert len(graph.calls) == 1
    assert controller.active_run_id == first

    gate.set()
    await controller.wait()


async def test_cancel_is_idempotent_and_aborts_the_run(request_model, context):
    graph = FakeGraph(context, gate=asyncio.Event())
    store = InMemoryStore()
    controller = _controller(graph, store=store)

    controller.start(request_model)
    await graph.reached_gate.wait()

    assert controller.cancel() is True
    assert controller.state is RunState.IDLE
    assert controller.snapshot().status == "Search cancelled by user"
    assert controller.cancel() is False

    await controller.wait()
    assert controller.state is RunState.IDLE
    assert controller.last_result is None
    assert await store.list_history() == []


async def test_late_result_after_cancel_is_discarded(request_model, context):
    gate = asyncio.Event()
    graph = FakeGraph(context, gate=gate)
    store = InMemoryStore()
    controller = _controller(graph, store=store, abort_in_flight_on_cancel=False)
    states = []
    controller.subscribe(lambda s: states.append(s.state))

    controller.start(request_model)
    await graph.reached_gate.wait()
    controller.cancel()
    gate.set()
    await controller.wait()

    assert controller.state is RunState.IDLE
    assert controller.last_result is None
    assert RunState.COMPLETE not in states
    assert RunState.VALIDATING not in states
    assert await store.list_history() == []


async def test_cancel_when_idle_returns_false(context):
    controller = _controller(FakeGraph(context))

    assert controller.cancel() is False
    assert controller.state is RunState.IDLE


async def test_unresolvable_location_fails_with_message(request_model, context):
    graph = FakeGraph(context, error=NotFoundError("No matching location found for 'Xyzzyville'"))
    controller = _controller(graph)

    controller.start(request_model)
    final = await controller.wait()

    assert final.state is RunState.FAILED
    assert final.error == "No matching location found for 'Xyzzyville'"
    assert final.status == "Error: No matching location found for 'Xyzzyville'"
    assert final.result is None

    await asyncio.sleep(0.05)
    assert controller.state is RunState.IDLE
    assert controller.snapshot().error is None


async def test_exhausted_retries_show_friendly_message(request_model, context):
    controller = _controller(FakeGraph(context, error=RetryableServiceError("503 from upstream", 503)))

    controller.start(request_model)
    final = await controller.wait()

    assert final.state is RunState.FAILED
    assert final.error == RetryableServiceError.user_message


async def test_refresh_bypasses_backend_cache(request_model, context):
    graph = FakeGraph(context)
    controller = _controller(graph)

    controller.refresh(request_model)
    await controller.wait()

    assert graph.calls[0]["bypass_cache"] is True


async def test_start_ignored_while_completed_result_is_displayed(request_model, context):
    graph = FakeGraph(context)
    controller = _controller(graph, success_display_sec=0.02)

    first = controller.start(request_model)
    await controller.wait()
    assert controller.state is RunState.COMPLETE

    assert controller.start(request_model) is None
    assert controller.refresh(request_model) is None
    assert len(graph.calls) == 1

    await asyncio.sleep(0.05)
    assert controller.state is RunState.IDLE

    second = controller.start(request_model)
    await controller.wait()

    assert second is not None and second != first
    assert controller.snapshot().run_id == second
    assert len(graph.calls) == 2


async def test_new_search_allowed_while_error_is_displayed(request_model, context):
    graph = FakeGraph(context, error=NotFoundError("No matching location found for 'Xyzzyville'"))
    controller = _controller(graph, error_display_sec=10)

    controller.start(request_model)
    await controller.wait()
    assert controller.state is RunState.FAILED

    graph.error = None
    second = controller.start(request_model)
    final = await controller.wait()

    assert second is not None
    assert final.state is RunState.COMPLETE
    assert final.error is None
    await controller.shutdown()


async def test_failing_listener_does_not_break_the_run(request_model, context):
    controller = _controller(FakeGraph(context))

    def broken(snapshot):
        raise RuntimeError("listener bug")

    controller.subscribe(broken)
    controller.start(request_model)
    final = await controller.wait()

    assert final.state is RunState.COMPLETE


async def test_unsubscribe_stops_notifications(request_model, context):
    controller = _controller(FakeGraph(context))
    seen = []
    unsubscribe = controller.subscribe(seen.append)
    unsubscribe()

    controller.start(request_model)
    await controller.wait()

    assert seen == []
