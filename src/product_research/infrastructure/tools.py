"""Research tool interface for the product research engine.

External research capabilities (vision, OCR, barcode and catalog lookups,
web and marketplace search, evidence storage) are reached through the
:class:`ResearchTools` capability interface: one async method per
operation, each taking and returning typed pydantic models.

:class:`RetryingTools` wraps any implementation with the failure policy:
classified failures, exponential backoff with jitter, capped attempts, and
a per-operation :class:`CircuitBreaker`.  ``validation`` failures are never
retried.

Usage::

    tools = RetryingTools(HttpResearchTools(...), RetryConfig(), CircuitBreakerConfig())
    observations = await tools.lookup_upc(LookupQuery(subject_id="s1", upc="0123"))
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError

from product_research.domain.enums import CircuitState, ToolFailureKind
from product_research.domain.exceptions import CircuitOpenError, ToolError
from product_research.infrastructure.config import CircuitBreakerConfig, RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ===================================================================== #
#  Typed payloads                                                        #
# ===================================================================== #

class SubjectRecord(BaseModel):
    """The item being researched, as stored by its owner."""

    subject_id: str = Field(description="Subject identity")
    owner_id: str = Field(description="Owning account")
    title: str = Field(default="", description="Owner-supplied title")
    description: str = Field(default="", description="Owner-supplied description")
    image_urls: list[str] = Field(default_factory=list, description="Photos of the item")
    hints: dict[str, Any] = Field(
        default_factory=dict, description="Field values the owner already provided"
    )


class LookupQuery(BaseModel):
    """Arguments for every field-producing research operation."""

    subject_id: str = Field(description="Subject identity")
    upc: str | None = Field(default=None, description="Barcode, when known")
    brand: str | None = Field(default=None, description="Brand, when known")
    model: str | None = Field(default=None, description="Model, when known")
    title: str | None = Field(default=None, description="Best current title")
    image_urls: list[str] = Field(default_factory=list, description="Photos to analyze")
    target_fields: list[str] = Field(default_factory=list, description="Fields wanted")
    targeted: bool = Field(
        default=False, description="Search on brand and model rather than free text"
    )


class Observation(BaseModel):
    """One field value reported by a research operation."""

    field: str = Field(description="Field name")
    value: Any = Field(description="Reported value")
    confidence: float = Field(ge=0, le=1, description="Tool's confidence [0, 1]")
    source_type: str | None = Field(
        default=None, description="Overrides the operation's default source type"
    )


class CompQuery(BaseModel):
    """Arguments for a comparable-listing search."""

    subject_id: str
    title: str = ""
    brand: str | None = None
    model: str | None = None
    condition: str | None = None
    limit: int = Field(default=20, ge=1, le=200)


class Comparable(BaseModel):
    """A comparable marketplace listing (a unit of pricing evidence)."""

    title: str
    price: float = Field(gt=0, description="Listing or sold price")
    currency: str = "USD"
    sold: bool = True
    marketplace: str = "ebay"
    url: str = ""
    similarity: float = Field(default=1.0, ge=0, le=1)


class ResearchRecord(BaseModel):
    """Durable research conclusions written at the end of a run."""

    run_id: str
    subject_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0, le=1)
    price: float | None = None
    comps_count: int = 0
    warnings: list[str] = Field(default_factory=list)


# ===================================================================== #
#  Capability interface                                                  #
# ===================================================================== #

class ResearchTools(ABC):
    """Typed capability interface implemented by external collaborators.

    Implementations raise :class:`ToolError` with a classified ``kind`` on
    failure.  Any other exception is treated as ``unknown``.
    """

    @property
    def configured_services(self) -> frozenset[str]:
        """Names of optional services (``upc_database``, ``keepa``,
        ``amazon``) this implementation can reach."""
        return frozenset()

    @abstractmethod
    async def load_subject(self, subject_id: str) -> SubjectRecord:
        """Fetch the subject row (used for the ownership check)."""

    @abstractmethod
    async def analyze_media(self, query: LookupQuery) -> list[Observation]:
        """Vision analysis of the subject's photos."""

    @abstractmethod
    async def extract_text(self, query: LookupQuery) -> list[Observation]:
        """OCR over the subject's photos (labels, barcodes, model numbers)."""

    @abstractmethod
    async def lookup_upc(self, query: LookupQuery) -> list[Observation]:
        """Exact barcode lookup."""

    @abstractmethod
    async def lookup_keepa(self, query: LookupQuery) -> list[Observation]:
        """Price-history catalog lookup by barcode."""

    @abstractmethod
    async def search_catalog(self, query: LookupQuery) -> list[Observation]:
        """Marketplace catalog search by identifier or brand/model."""

    @abstractmethod
    async def web_search(self, query: LookupQuery) -> list[Observation]:
        """Keyword web search; targeted when brand and model are set."""

    @abstractmethod
    async def search_comps(self, query: CompQuery) -> list[Comparable]:
        """Find comparable listings for pricing."""

    @abstractmethod
    async def save_evidence(self, run_id: str, comps: list[Comparable]) -> None:
        """Durably store the run's pricing evidence."""

    @abstractmethod
    async def save_research(self, record: ResearchRecord) -> None:
        """Durably store the run's research conclusions."""

    @abstractmethod
    async def load_evidence(self, run_id: str) -> list[Comparable]:
        """Read back evidence stored by :meth:`save_evidence`."""

    @abstractmethod
    async def load_research(self, run_id: str) -> ResearchRecord | None:
        """Read back conclusions stored by :meth:`save_research`."""


# ===================================================================== #
#  Circuit breaker                                                       #
# ===================================================================== #

class CircuitBreaker:
    """Failure gate for a single tool operation.

    CLOSED lets calls through and counts failures in a sliding window;
    reaching the threshold opens the circuit.  OPEN rejects calls until the
    recovery timeout has passed, then moves to HALF_OPEN, which lets calls
    through and closes again after enough consecutive successes.  Any
    HALF_OPEN failure reopens the circuit.
    """

    __slots__ = (
        "name",
        "_config",
        "_clock",
        "_state",
        "_failures",
        "_opened_at",
        "_successes",
    )

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at = 0.0
        self._successes = 0

    @property
    def state(self) -> CircuitState:
        if (
            self._state is CircuitState.OPEN
            and self._clock() - self._opened_at >= self._config.recovery_timeout_s
        ):
            logger.info("Circuit %s: OPEN -> HALF_OPEN", self.name)
            self._state = CircuitState.HALF_OPEN
            self._successes = 0
        return self._state

    def allow(self) -> bool:
        """``True`` if a call may go through right now."""
        if not self._config.enabled:
            return True
        return self.state is not CircuitState.OPEN

    def retry_after(self) -> float:
        """Seconds until an open circuit will let a trial call through."""
        if self.state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self._config.recovery_timeout_s - (self._clock() - self._opened_at))

    def record_success(self) -> None:
        if self.state is CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self._config.success_threshold:
                logger.info("Circuit %s: HALF_OPEN -> CLOSED", self.name)
                self._state = CircuitState.CLOSED
                self._failures.clear()
                self._successes = 0

    def record_failure(self) -> None:
        now = self._clock()
        state = self.state
        if state is CircuitState.HALF_OPEN:
            logger.warning("Circuit %s: HALF_OPEN -> OPEN (trial call failed)", self.name)
            self._open(now)
            return
        self._failures.append(now)
        cutoff = now - self._config.failure_window_s
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()
        if state is CircuitState.CLOSED and len(self._failures) >= self._config.failure_threshold:
            logger.warning(
                "Circuit %s: CLOSED -> OPEN (%d failures in %.0fs)",
                self.name, len(self._failures), self._config.failure_window_s,
            )
            self._open(now)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._successes = 0

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self.name!r}, state={self._state.value}, "
            f"failures={len(self._failures)})"
        )


# ===================================================================== #
#  Retry policy                                                          #
# ===================================================================== #

class RetryPolicy:
    """Exponential backoff with optional full jitter."""

    def __init__(self, config: RetryConfig | None = None, rng: random.Random | None = None) -> None:
        self._config = config or RetryConfig()
        self._rng = rng or random.Random()

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def delay(self, attempt: int) -> float:
        """Delay after failed *attempt* (1-based) before the next one."""
        raw = min(self._config.max_delay_s, self._config.base_delay_s * 2 ** (attempt - 1))
        if self._config.jitter:
            return self._rng.uniform(0.0, raw)
        return raw


def classify_failure(exc: BaseException, operation: str) -> ToolError:
    """Map an arbitrary exception raised by a tool onto :class:`ToolError`."""
    if isinstance(exc, ToolError):
        return exc
    if isinstance(exc, ValidationError):
        kind = ToolFailureKind.VALIDATION
    elif isinstance(exc, OSError):
        # ConnectionError and TimeoutError are OSError subclasses
        kind = ToolFailureKind.NETWORK
    else:
        kind = ToolFailureKind.UNKNOWN
    return ToolError(str(exc) or type(exc).__name__, kind, operation)


# ===================================================================== #
#  Retrying wrapper                                                      #
# ===================================================================== #

class RetryingTools(ResearchTools):
    """Applies retry, backoff and circuit breaking to another implementation.

    Parameters
    ----------
    inner:
        The implementation doing the actual calls.
    retry:
        Retry policy configuration.
    breaker:
        Circuit breaker configuration, applied per operation name.
    sleep:
        Awaitable sleep, replaceable in tests.
    rng:
        Random source for jitter.
    """

    def __init__(
        self,
        inner: ResearchTools,
        retry: RetryConfig | None = None,
        breaker: CircuitBreakerConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner = inner
        self._policy = RetryPolicy(retry, rng)
        self._breaker_config = breaker or CircuitBreakerConfig()
        self._sleep = sleep
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    @property
    def inner(self) -> ResearchTools:
        return self._inner

    @property
    def configured_services(self) -> frozenset[str]:
        return self._inner.configured_services

    def breaker(self, operation: str) -> CircuitBreaker:
        """Return (creating on first use) the breaker for *operation*."""
        if operation not in self._breakers:
            self._breakers[operation] = CircuitBreaker(operation, self._breaker_config, self._clock)
        return self._breakers[operation]

    async def _call(self, operation: str, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        breaker = self.breaker(operation)
        for attempt in range(1, self._policy.max_attempts + 1):
            if not breaker.allow():
                raise CircuitOpenError(
                    f"Circuit open for {operation}",
                    operation=operation,
                    retry_after=breaker.retry_after(),
                )
            try:
                result = await fn(*args)
            except Exception as exc:
                error = classify_failure(exc, operation)
                if not error.retryable:
                    logger.warning("%s failed (%s), not retrying: %s", operation, error.kind.value, error)
                    if error is exc:
                        raise
                    raise error from exc
                breaker.record_failure()
                if attempt == self._policy.max_attempts:
                    if error is exc:
                        raise
                    raise error from exc
                delay = self._policy.delay(attempt)
                logger.warning(
                    "%s failed (%s), attempt %d/%d; retrying in %.2fs",
                    operation, error.kind.value, attempt, self._policy.max_attempts, delay,
                )
                await self._sleep(delay)
                continue
            breaker.record_success()
            return result

        raise ToolError(f"{operation} made no attempts", operation=operation)

    # -- capability methods -------------------------------------------------

    async def load_subject(self, subject_id: str) -> SubjectRecord:
        return await self._call("load_subject", self._inner.load_subject, subject_id)

    async def analyze_media(self, query: LookupQuery) -> list[Observation]:
        return await self._call("analyze_media", self._inner.analyze_media, query)

    async def extract_text(self, query: LookupQuery) -> list[Observation]:
        return await self._call("extract_text", self._inner.extract_text, query)

    async def lookup_upc(self, query: LookupQuery) -> list[Observation]:
        return await self._call("lookup_upc", self._inner.lookup_upc, query)

    async def lookup_keepa(self, query: LookupQuery) -> list[Observation]:
        return await self._call("lookup_keepa", self._inner.lookup_keepa, query)

    async def search_catalog(self, query: LookupQuery) -> list[Observation]:
        return await self._call("search_catalog", self._inner.search_catalog, query)

    async def web_search(self, query: LookupQuery) -> list[Observation]:
        return await self._call("web_search", self._inner.web_search, query)

    async def search_comps(self, query: CompQuery) -> list[Comparable]:
        return await self._call("search_comps", self._inner.search_comps, query)

    async def save_evidence(self, run_id: str, comps: list[Comparable]) -> None:
        await self._call("save_evidence", self._inner.save_evidence, run_id, comps)

    async def save_research(self, record: ResearchRecord) -> None:
        await self._call("save_research", self._inner.save_research, record)

    async def load_evidence(self, run_id: str) -> list[Comparable]:
        return await self._call("load_evidence", self._inner.load_evidence, run_id)

    async def load_research(self, run_id: str) -> ResearchRecord | None:
        return await self._call("load_research", self._inner.load_research, run_id)
