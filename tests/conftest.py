"""Shared fixtures for the product research test suite."""

from __future__ import annotations

import pytest

from product_research.infrastructure.config import ResearchConfig
from product_research.infrastructure.event_bus import AsyncEventBus
from product_research.infrastructure.job_queue import InMemoryJobQueue
from product_research.infrastructure.run_store import InMemoryRunStore
from product_research.services.control import RunControl
from product_research.services.orchestrator import ResearchOrchestrator
from product_research.services.worker import ResearchWorker
from product_research.testing.fake_tools import ScriptedResearchTools, demo_tools


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Infrastructure fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def bus() -> AsyncEventBus:
    return AsyncEventBus()


@pytest.fixture
def config() -> ResearchConfig:
    return ResearchConfig()


@pytest.fixture
def tools() -> ScriptedResearchTools:
    """The scripted sneaker scenario."""
    return demo_tools()


@pytest.fixture
def orchestrator(
    store: InMemoryRunStore,
    tools: ScriptedResearchTools,
    config: ResearchConfig,
    bus: AsyncEventBus,
) -> ResearchOrchestrator:
    return ResearchOrchestrator(store, tools, config=config, bus=bus)


@pytest.fixture
def control(
    store: InMemoryRunStore, queue: InMemoryJobQueue, config: ResearchConfig
) -> RunControl:
    return RunControl(store, queue, config.orchestrator)


@pytest.fixture
def worker(
    queue: InMemoryJobQueue, orchestrator: ResearchOrchestrator
) -> ResearchWorker:
    return ResearchWorker(queue, orchestrator)


