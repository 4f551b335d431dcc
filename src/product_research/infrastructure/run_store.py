"""Run row storage for the product research engine.

``RunStore`` is the persistence contract for :class:`ResearchRun` rows.
Updates are row-level: :meth:`RunStore.update` changes only the named
columns, so a control request setting ``pause_requested`` is never
clobbered by the orchestrator writing a checkpoint.

:class:`InMemoryRunStore` is a thread-safe implementation for tests, the
CLI demo, and single-process deployments.
"""

from __future__ import annotations

import copy
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import fields
from typing import Any

from product_research.domain.entities import ResearchRun
from product_research.domain.enums import RunStatus
from product_research.domain.exceptions import RunNotFoundError

_COLUMNS = frozenset(f.name for f in fields(ResearchRun)) - {"run_id"}


class RunStore(ABC):
    """Persistence contract for research run rows."""

    @abstractmethod
    def create(self, run: ResearchRun) -> ResearchRun:
        """Insert a new row; raises ``ValueError`` if the id exists."""

    @abstractmethod
    def get(self, run_id: str) -> ResearchRun | None:
        """Return a detached copy of the row, or ``None``."""

    @abstractmethod
    def update(self, run_id: str, **changes: Any) -> ResearchRun:
        """Apply column *changes* atomically and return the new row.

        ``updated_at`` is refreshed on every update.  Raises
        :class:`RunNotFoundError` for unknown ids and ``ValueError`` for
        unknown columns.
        """

    @abstractmethod
    def list_by_status(self, *statuses: RunStatus) -> list[ResearchRun]:
        """Return copies of every row whose status is in *statuses*."""

    @abstractmethod
    def delete(self, run_id: str) -> bool:
        """Remove a row. Returns ``True`` if it existed."""

    def require(self, run_id: str) -> ResearchRun:
        """Like :meth:`get` but raises :class:`RunNotFoundError`."""
        run = self.get(run_id)
        if run is None:
            raise RunNotFoundError(f"Research run {run_id} not found", run_id=run_id)
        return run


class InMemoryRunStore(RunStore):
    """Thread-safe dict-backed run store.

    Parameters
    ----------
    clock:
        Time source for ``updated_at``; replaceable in tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._rows: dict[str, ResearchRun] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def create(self, run: ResearchRun) -> ResearchRun:
        with self._lock:
            if run.run_id in self._rows:
                raise ValueError(f"Run {run.run_id} already exists")
            self._rows[run.run_id] = copy.deepcopy(run)
            return copy.deepcopy(run)

    def get(self, run_id: str) -> ResearchRun | None:
        with self._lock:
            row = self._rows.get(run_id)
            return copy.deepcopy(row) if row is not None else None

    def update(self, run_id: str, **changes: Any) -> ResearchRun:
        unknown = set(changes) - _COLUMNS
        if unknown:
            raise ValueError(f"Unknown run columns: {sorted(unknown)}")
        with self._lock:
            row = self._rows.get(run_id)
            if row is None:
                raise RunNotFoundError(f"Research run {run_id} not found", run_id=run_id)
            for column, value in changes.items():
                setattr(row, column, copy.deepcopy(value))
            row.updated_at = changes.get("updated_at", self._clock())
            return copy.deepcopy(row)

    def list_by_status(self, *statuses: RunStatus) -> list[ResearchRun]:
        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._rows.values()
                if not statuses or row.status in statuses
            ]

    def delete(self, run_id: str) -> bool:
        with self._lock:
            return self._rows.pop(run_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
