"""Middleware primitives for file middleware routing.

Provides the dispatch outcome type, middleware normalization, and the
parameter callback chain. Middleware may be sync or async; parameter
callbacks are always async and receive a ``call_next`` continuation.
"""

import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from file_middleware_routing.exceptions import RouteValidationError


class Next(Enum):
    """How dispatch proceeds after a layer has run."""

    CONTINUE = "continue"
    SKIP_ROUTE = "skip_route"
    ERROR = "error"


@dataclass(frozen=True)
class Outcome:
    """Result of running one layer or route, threaded through dispatch.

    Attributes:
        kind: What dispatch should do next.
        error: The raised exception when kind is Next.ERROR.
    """

    kind: Next
    error: Exception | None = None


CONTINUE = Outcome(Next.CONTINUE)

# Returned by route middleware to bypass the rest of that route's stack.
SKIP_ROUTE = Next.SKIP_ROUTE

ParamStep = Callable[[Any, Any], Awaitable[Any]]

_UNSET: Any = object()


async def invoke_handler(handler: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async handler and return its result."""
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def normalize_middleware(
    middleware_attr: Any,
    *,
    source: str = "",
    accepts: Callable[[Any], bool] = callable,
) -> tuple[Any, ...]:
    """Normalize middleware arguments to a flat tuple.

    Accepts: None, a single handler, or arbitrarily nested lists/tuples.
    Returns: tuple of handlers in order (empty if None).

    Args:
        middleware_attr: The middleware value to normalize.
        source: Context for error messages (e.g., "Router.mount('/docs')").
        accepts: Predicate every handler must satisfy. Defaults to callable.

    Raises:
        RouteValidationError: If any handler is rejected by ``accepts``.
    """
    if middleware_attr is None:
        return ()
    if isinstance(middleware_attr, (list, tuple)):
        flattened: list[Any] = []
        for item in middleware_attr:
            flattened.extend(normalize_middleware(item, source=source, accepts=accepts))
        return tuple(flattened)
    if accepts(middleware_attr):
        return (middleware_attr,)
    raise RouteValidationError(
        f"{source + ': ' if source else ''}middleware must be a callable or list of callables, "
        f"got {type(middleware_attr).__name__}"
    )


def build_param_chain(
    callbacks: Sequence[Callable[..., Awaitable[Any]]],
    name: str,
) -> ParamStep:
    """Compose parameter callbacks into a single async step.

    Each callback receives ``(file, call_next, value, name)``. Awaiting
    ``call_next()`` runs the next callback; ``call_next(new_value)`` passes
    a replacement value along. A callback that returns without calling
    ``call_next`` ends the chain for this parameter.

    Args:
        callbacks: Registered callbacks for the parameter, in order.
        name: Parameter name passed to every callback.

    Returns:
        An async function ``(file, value) -> final_value``.
    """

    async def terminal(file: Any, value: Any) -> Any:
        return value

    chain: ParamStep = terminal
    for callback in reversed(callbacks):
        chain = _wrap_with_param_callback(chain, callback, name)
    return chain


def _wrap_with_param_callback(
    next_step: ParamStep,
    callback: Callable[..., Awaitable[Any]],
    name: str,
) -> ParamStep:
    """Wrap the next step of a parameter chain with one callback.

    Args:
        next_step: The rest of the chain.
        callback: Parameter callback with signature (file, call_next, value, name).
        name: Parameter name.

    Returns:
        A new async step that runs the callback first.
    """

    async def wrapped(file: Any, value: Any) -> Any:
        result = value

        async def call_next(new_value: Any = _UNSET) -> Any:
            nonlocal result
            result = await next_step(file, value if new_value is _UNSET else new_value)
            return result

        await callback(file, call_next, value, name)
        return result

    # Preserve metadata for debugging
    wrapped.__name__ = f"{getattr(callback, '__name__', 'callback')}_param_{name}"
    wrapped.__qualname__ = wrapped.__name__

    return wrapped
