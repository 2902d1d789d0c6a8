"""Route: a middleware stack sharing one pattern, tagged by phase."""

import logging
from collections.abc import Callable
from typing import Any

from file_middleware_routing.core.layer import Handler, Layer, Params
from file_middleware_routing.core.middleware import (
    CONTINUE,
    SKIP_ROUTE,
    Next,
    Outcome,
    normalize_middleware,
)
from file_middleware_routing.core.pattern import PathPattern
from file_middleware_routing.exceptions import RouteValidationError

logger = logging.getLogger(__name__)

# Phase tag for layers that run in every phase
ALL_PHASES = "all"


class Route:
    """An ordered stack of phase-tagged layers for one pattern.

    Example:
        route = Route("/posts/:slug")
        route.add("load", read_front_matter).add("render", render_markdown)
        await route.dispatch("render", file, {"slug": "hello"})
    """

    def __init__(
        self,
        pattern: PathPattern,
        *,
        declare_phase: Callable[[str], Any] | None = None,
    ) -> None:
        self.pattern = pattern
        self.methods: set[str] = set()
        self.stack: list[Layer] = []
        # Set by Router.route so layers added here stay dispatchable
        self._declare_phase = declare_phase

    def __repr__(self) -> str:
        return f"Route(pattern={self.pattern!r}, methods={sorted(self.methods)!r})"

    def layer(self, phase: str, fn: Handler) -> "Route":
        """Append a layer running ``fn`` in ``phase``.

        Raises:
            RouteValidationError: If phase is not a string or fn is not callable.
        """
        if not isinstance(phase, str) or not phase:
            raise RouteValidationError(
                f"Route phase must be a non-empty string, got {phase!r}"
            )
        if not callable(fn):
            raise RouteValidationError(
                f"Route.layer({phase!r}) expected a callable, got {type(fn).__name__}"
            )

        if self._declare_phase is not None and phase != ALL_PHASES:
            self._declare_phase(phase)

        layer = Layer("/", fn, phase=phase)
        self.methods.add(phase)
        self.stack.append(layer)

        logger.debug(
            "Added route layer",
            extra={"phase": phase, "pattern": str(self.pattern)},
        )
        return self

    def add(self, phase: str, *fns: Any) -> "Route":
        """Append one layer per handler (lists are flattened)."""
        for fn in normalize_middleware(fns, source=f"Route.add({phase!r})"):
            self.layer(phase, fn)
        return self

    def all(self, *fns: Any) -> "Route":
        """Append handlers that run in every phase."""
        return self.add(ALL_PHASES, *fns)

    def handles_phase(self, phase: str) -> bool:
        return ALL_PHASES in self.methods or phase in self.methods

    async def run(self, phase: str, file: Any, params: Params | None = None) -> Outcome:
        """Run the layers for ``phase`` and report how dispatch should continue.

        Layers run strictly in registration order. A handler returning
        SKIP_ROUTE ends this route early; a raised exception ends it with
        an error outcome.
        """
        params = params if params is not None else {}

        for layer in self.stack:
            if layer.phase != ALL_PHASES and layer.phase != phase:
                continue
            try:
                result = await layer.invoke(file, params)
            except Exception as exc:
                return Outcome(Next.ERROR, exc)
            if result is SKIP_ROUTE:
                return Outcome(Next.SKIP_ROUTE)

        return CONTINUE

    async def dispatch(self, phase: str, file: Any, params: Params | None = None) -> Any:
        """Run the layers for ``phase`` over file, raising the first error."""
        outcome = await self.run(phase, file, params)
        if outcome.error is not None:
            raise outcome.error
        return file
