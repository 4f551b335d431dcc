"""Tests for AsyncEventBus and EventStore."""

from __future__ import annotations

import pytest

from product_research.domain.enums import RunStatus
from product_research.domain.events import (
    PhaseCompleted,
    PhaseStarted,
    RunCompleted,
    RunEvent,
)
from product_research.infrastructure.event_bus import AsyncEventBus, EventStore


class TestAsyncEventBus:

    @pytest.mark.asyncio
    async def test_typed_subscription_filters(self) -> None:
        bus = AsyncEventBus()
        received: list[RunEvent] = []
        bus.subscribe(PhaseCompleted, received.append)

        await bus.publish(PhaseStarted(run_id="r1", phase="load_context"))
        await bus.publish(PhaseCompleted(run_id="r1", phase="load_context"))

        assert [type(e) for e in received] == [PhaseCompleted]

    @pytest.mark.asyncio
    async def test_async_handler_awaited(self) -> None:
        bus = AsyncEventBus()
        received: list[RunEvent] = []

        async def handler(event: RunEvent) -> None:
            received.append(event)

        bus.subscribe(RunCompleted, handler)
        await bus.publish(RunCompleted(run_id="r1", status=RunStatus.SUCCESS))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_global_handlers_first(self) -> None:
        bus = AsyncEventBus()
        order: list[str] = []
        bus.subscribe(PhaseStarted, lambda e: order.append("typed"))
        bus.subscribe_all(lambda e: order.append("global"))
        await bus.publish(PhaseStarted(run_id="r1"))
        assert order == ["global", "typed"]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self) -> None:
        bus = AsyncEventBus()
        received: list[RunEvent] = []

        def broken(event: RunEvent) -> None:
            raise RuntimeError("observer bug")

        bus.subscribe(PhaseStarted, broken)
        bus.subscribe(PhaseStarted, received.append)
        await bus.publish(PhaseStarted(run_id="r1"))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        bus = AsyncEventBus()
        received: list[RunEvent] = []
        bus.subscribe(PhaseStarted, received.append)
        assert bus.unsubscribe(PhaseStarted, received.append)
        assert not bus.unsubscribe(PhaseStarted, received.append)
        await bus.publish(PhaseStarted(run_id="r1"))
        assert received == []

    def test_handler_count(self) -> None:
        bus = AsyncEventBus()
        bus.subscribe(PhaseStarted, lambda e: None)
        bus.subscribe_all(lambda e: None)
        assert bus.handler_count(PhaseStarted) == 1
        assert bus.handler_count() == 2


class TestEventStore:

    def test_append_and_query(self) -> None:
        store = EventStore()
        store.append(PhaseStarted(run_id="r1"))
        store.append(PhaseCompleted(run_id="r1"))
        store.append(PhaseCompleted(run_id="r2"))
        assert len(store) == 3
        assert len(store.query(event_type=PhaseCompleted)) == 2
        assert len(store.query(run_id="r1")) == 2
        assert store.latest.run_id == "r2"

    def test_clear(self) -> None:
        store = EventStore()
        store.append(PhaseStarted(run_id="r1"))
        store.clear()
        assert len(store) == 0
        assert store.latest is None

    def test_max_size_evicts_oldest(self) -> None:
        store = EventStore(max_size=2)
        for run_id in ("r1", "r2", "r3"):
            store.append(PhaseStarted(run_id=run_id))
        assert [e.run_id for e in store.query()] == ["r2", "r3"]
