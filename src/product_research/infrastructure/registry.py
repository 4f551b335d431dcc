"""Phase registry for the product research engine.

Maps phase names (as they appear in ``PhasesConfig.order``) to the async
functions that implement them, plus an optional *router* per phase that
decides whether the research loop continues after it.

Usage -- decorator style::

    registry = PhaseRegistry()

    @registry.register("evaluate_fields", router=route_after_evaluation)
    async def evaluate_fields(state, tools):
        ...

Usage -- imperative style::

    registry.register_phase("persist_results", persist_results)

Each ``PhaseRegistry`` is an independent instance; there is no global
singleton, so tests can build registries with stub phases freely.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

PhaseFn = Callable[[Any, Any], Awaitable[Any]]
Router = Callable[[Any], str]


class PhaseRegistry:
    """Name -> (phase function, router) lookup."""

    def __init__(self) -> None:
        self._phases: dict[str, PhaseFn] = {}
        self._routers: dict[str, Router] = {}

    # ------------------------------------------------------------------ #
    #  Registration                                                       #
    # ------------------------------------------------------------------ #

    def register(
        self,
        name: str,
        *,
        router: Router | None = None,
        overwrite: bool = False,
    ) -> Callable[[PhaseFn], PhaseFn]:
        """Decorator that registers the decorated coroutine function under
        *name*."""

        def decorator(fn: PhaseFn) -> PhaseFn:
            self.register_phase(name, fn, router=router, overwrite=overwrite)
            return fn

        return decorator

    def register_phase(
        self,
        name: str,
        fn: PhaseFn,
        *,
        router: Router | None = None,
        overwrite: bool = False,
    ) -> None:
        """Register *fn* under *name*.

        Raises
        ------
        ValueError
            If *name* is taken and *overwrite* is ``False``.
        """
        if name in self._phases and not overwrite:
            raise ValueError(
                f"Phase '{name}' is already registered. Use overwrite=True to replace it."
            )
        self._phases[name] = fn
        if router is not None:
            self._routers[name] = router
        else:
            self._routers.pop(name, None)
        logger.debug("Registered phase %s", name)

    # ------------------------------------------------------------------ #
    #  Lookup                                                              #
    # ------------------------------------------------------------------ #

    def get(self, name: str) -> PhaseFn:
        """Return the phase function for *name*; ``KeyError`` if missing."""
        try:
            return self._phases[name]
        except KeyError:
            raise KeyError(
                f"Phase '{name}' not registered. Available: {self.names()}"
            ) from None

    def router(self, name: str) -> Router | None:
        return self._routers.get(name)

    def has(self, name: str) -> bool:
        return name in self._phases

    def names(self) -> list[str]:
        return list(self._phases)

    def __len__(self) -> int:
        return len(self._phases)

    def __repr__(self) -> str:
        return f"PhaseRegistry(phases={self.names()})"
