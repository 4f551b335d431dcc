"""Scripted in-memory tool implementation for tests and demos.

``ScriptedResearchTools`` answers every capability call from scripts set up
in advance, records each call, and can be told to fail an operation a
number of times.  Stored evidence and conclusions are kept in dicts so
salvage can read them back.

Usage::

    tools = ScriptedResearchTools(services={"upc_database"})
    tools.add_subject(SubjectRecord(subject_id="s1", owner_id="o1", title="Shoe"))
    tools.script("lookup_upc", [Observation(field="brand", value="Nike", confidence=0.9)])
    tools.fail("web_search", ToolError("boom", ToolFailureKind.NETWORK), times=2)
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from collections.abc import Iterable
from typing import Any

from product_research.domain.enums import ToolFailureKind
from product_research.domain.exceptions import ToolError
from product_research.infrastructure.tools import (
    Comparable,
    CompQuery,
    LookupQuery,
    Observation,
    ResearchRecord,
    ResearchTools,
    SubjectRecord,
)


class ScriptedResearchTools(ResearchTools):
    """Deterministic :class:`ResearchTools` driven by scripts.

    Parameters
    ----------
    services:
        Optional services reported by :attr:`configured_services`.
    delay_s:
        Artificial latency added to every call.
    """

    def __init__(self, services: Iterable[str] = (), delay_s: float = 0.0) -> None:
        self._services = frozenset(services)
        self._delay_s = delay_s
        self._subjects: dict[str, SubjectRecord] = {}
        self._scripts: dict[str, deque[list[Observation]]] = {}
        self._comps: list[Comparable] = []
        self._failures: dict[str, deque[BaseException]] = defaultdict(deque)
        self.calls: list[tuple[str, Any]] = []
        self.evidence: dict[str, list[Comparable]] = {}
        self.research: dict[str, ResearchRecord] = {}

    # -- scripting --------------------------------------------------------------

    @property
    def configured_services(self) -> frozenset[str]:
        return self._services

    def add_subject(self, subject: SubjectRecord) -> None:
        self._subjects[subject.subject_id] = subject

    def script(self, operation: str, *batches: list[Observation]) -> None:
        """Answer successive calls of *operation* with *batches* in order;
        the last batch repeats."""
        self._scripts[operation] = deque(list(b) for b in batches)

    def set_comps(self, comps: Iterable[Comparable]) -> None:
        self._comps = list(comps)

    def fail(self, operation: str, error: BaseException, times: int = 1) -> None:
        """Raise *error* on the next *times* calls of *operation*."""
        for _ in range(times):
            self._failures[operation].append(error)

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    # -- plumbing -------------------------------------------------------------

    async def _step(self, operation: str, argument: Any) -> None:
        self.calls.append((operation, argument))
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    def _next_batch(self, operation: str) -> list[Observation]:
        batches = self._scripts.get(operation)
        if not batches:
            return []
        if len(batches) > 1:
            return batches.popleft()
        return list(batches[0])

    async def _observe(self, operation: str, query: LookupQuery) -> list[Observation]:
        await self._step(operation, query)
        return self._next_batch(operation)

    # -- capability methods ---------------------------------------------------

    async def load_subject(self, subject_id: str) -> SubjectRecord:
        await self._step("load_subject", subject_id)
        try:
            return self._subjects[subject_id]
        except KeyError:
            raise ToolError(
                f"Unknown subject {subject_id}",
                ToolFailureKind.VALIDATION,
                "load_subject",
            ) from None

    async def analyze_media(self, query: LookupQuery) -> list[Observation]:
        return await self._observe("analyze_media", query)

    async def extract_text(self, query: LookupQuery) -> list[Observation]:
        return await self._observe("extract_text", query)

    async def lookup_upc(self, query: LookupQuery) -> list[Observation]:
        return await self._observe("lookup_upc", query)

    async def lookup_keepa(self, query: LookupQuery) -> list[Observation]:
        return await self._observe("lookup_keepa", query)

    async def search_catalog(self, query: LookupQuery) -> list[Observation]:
        return await self._observe("search_catalog", query)

    async def web_search(self, query: LookupQuery) -> list[Observation]:
        return await self._observe("web_search", query)

    async def search_comps(self, query: CompQuery) -> list[Comparable]:
        await self._step("search_comps", query)
        return list(self._comps[: query.limit])

    async def save_evidence(self, run_id: str, comps: list[Comparable]) -> None:
        await self._step("save_evidence", run_id)
        self.evidence[run_id] = list(comps)

    async def save_research(self, record: ResearchRecord) -> None:
        await self._step("save_research", record.run_id)
        self.research[record.run_id] = record

    async def load_evidence(self, run_id: str) -> list[Comparable]:
        await self._step("load_evidence", run_id)
        return list(self.evidence.get(run_id, []))

    async def load_research(self, run_id: str) -> ResearchRecord | None:
        await self._step("load_research", run_id)
        return self.research.get(run_id)


def demo_tools(subject_id: str = "sneaker-001", owner_id: str = "owner-1") -> ScriptedResearchTools:
    """Scripted scenario: photos reveal a barcode, the barcode resolves the
    product, and sold listings price it."""
    tools = ScriptedResearchTools(services={"upc_database", "keepa"})
    tools.add_subject(SubjectRecord(
        subject_id=subject_id,
        owner_id=owner_id,
        title="nike running shoes",
        description="Worn twice, original box",
        image_urls=["https://img.example/1.jpg", "https://img.example/2.jpg"],
        hints={"condition": "used - like new"},
    ))
    tools.script("analyze_media", [
        Observation(field="brand", value="Nike", confidence=0.80),
        Observation(field="category", value="Athletic Shoes", confidence=0.75),
        Observation(field="color", value="White", confidence=0.85),
        Observation(field="model", value="Air Max", confidence=0.55),
    ])
    tools.script("extract_text", [
        Observation(field="upc", value="0194501234567", confidence=0.90),
        Observation(field="model", value="Air Max 90", confidence=0.70),
    ])
    tools.script("lookup_upc", [
        Observation(field="brand", value="Nike", confidence=0.95),
        Observation(field="model", value="Air Max 90", confidence=0.95),
        Observation(field="title", value="Nike Air Max 90", confidence=0.92),
        Observation(field="category", value="Athletic Shoes", confidence=0.90),
    ])
    tools.script("lookup_keepa", [
        Observation(field="price", value=112.0, confidence=0.80),
        Observation(field="title", value="Nike Air Max 90 Men's", confidence=0.85),
    ])
    tools.script("web_search", [
        Observation(field="price", value=109.99, confidence=0.70),
        Observation(field="model", value="Air Max 90", confidence=0.65),
    ])
    tools.set_comps([
        Comparable(title="Nike Air Max 90 White", price=105.0),
        Comparable(title="Nike Air Max 90 size 10", price=115.0),
        Comparable(title="Air Max 90 used", price=98.0),
        Comparable(title="Nike Air Max 90 NIB", price=140.0, sold=False),
    ])
    return tools
