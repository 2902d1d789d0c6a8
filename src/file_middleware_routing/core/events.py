"""Router events: advisory notifications for logging and metrics.

A ``RouterEvent`` is emitted when a phase starts or finishes and whenever a
matched layer is about to run. Listeners are plain callables. They are
called synchronously in registration order; a listener that raises is
logged and skipped, and never changes the outcome of a dispatch.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from file_middleware_routing.exceptions import RouteValidationError

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """What a RouterEvent reports."""

    PHASE_START = "phase_start"
    PHASE_END = "phase_end"
    LAYER = "layer"


@dataclass(frozen=True, slots=True)
class RouterEvent:
    """A single dispatch notification.

    Attributes:
        kind: The kind of event.
        phase: The phase being dispatched.
        file: The file being dispatched.
        pattern: Pattern of the matched layer (LAYER events only).
        params: Params of the matched layer (LAYER events only).
        error: The error a phase ended with (PHASE_END events only).
    """

    kind: EventKind
    phase: str
    file: Any
    pattern: Any = None
    params: Mapping[str | int, Any] | None = None
    error: BaseException | None = None


Listener = Callable[[RouterEvent], Any]


class RouterEvents:
    """Listener registry for RouterEvent notifications.

    Usage::

        router.events.add_listener(lambda event: print(event.kind, event.phase))
    """

    __slots__ = ("_listeners",)

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A function that removes the listener again.

        Raises:
            RouteValidationError: If listener is not callable.
        """
        if not callable(listener):
            raise RouteValidationError(
                f"Event listener must be a callable, got {type(listener).__name__}"
            )
        self._listeners.append(listener)

        def remove() -> None:
            self.remove_listener(listener)

        return remove

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: RouterEvent) -> None:
        """Deliver an event to every listener."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning(
                    "Router event listener failed",
                    extra={
                        "listener": getattr(listener, "__name__", repr(listener)),
                        "kind": event.kind.value,
                        "phase": event.phase,
                    },
                    exc_info=True,
                )
