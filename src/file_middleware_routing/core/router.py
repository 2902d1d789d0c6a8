"""Router: phase-aware middleware stack and dispatch engine.

A router holds an ordered stack of layers. Each layer is a terminal route
(registered per phase), a mounted sub-router, plain mounted middleware, or
an error handler. Dispatching a file for a phase walks the stack in
registration order:

1. Match the layer against the path visible at this level.
2. Skip routes and sub-routers that do not handle the phase.
3. While an error is pending only error handlers run; otherwise only
   regular layers run.
4. Run named parameter callbacks, memoized per dispatch.
5. Run the route, or strip the matched prefix and run the mounted
   router or middleware.

The dispatch resolves with the file, or raises the first error no error
handler recovered from.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from file_middleware_routing.core.context import PathScope, bind_scope
from file_middleware_routing.core.events import EventKind, RouterEvent, RouterEvents
from file_middleware_routing.core.layer import Layer, LayerMatch, Params
from file_middleware_routing.core.middleware import (
    CONTINUE,
    Next,
    Outcome,
    build_param_chain,
    invoke_handler,
    normalize_middleware,
)
from file_middleware_routing.core.pattern import PathPattern, PatternOptions
from file_middleware_routing.core.route import ALL_PHASES, Route
from file_middleware_routing.exceptions import (
    MiddlewareValidationError,
    ParamDecodeError,
    RouteValidationError,
    UnknownPhaseError,
)

logger = logging.getLogger(__name__)

ParamCallback = Callable[..., Awaitable[Any]]
Registrar = Callable[..., "Router"]


@dataclass
class ParamCall:
    """Memo of one parameter's callback chain within a dispatch.

    Attributes:
        match: The captured value the chain ran for.
        value: The value the chain produced.
        error: The error the chain raised, if any.
    """

    match: Any
    value: Any
    error: Exception | None = None


@dataclass
class DispatchState:
    """Mutable state owned by exactly one dispatch of one router level."""

    phase: str
    paramcalled: dict[str, ParamCall] = field(default_factory=dict)
    error: Exception | None = None


class Router:
    """Routes files through phase-tagged middleware selected by path.

    Example:
        router = Router(["load", "render"])
        router.register("load", "/posts/:slug.md", read_front_matter)
        router.register("render", "/posts/:slug.md", render_markdown)
        router.mount("/assets", assets_router)

        await router.dispatch("load", file)
        await router.dispatch_all(file)
    """

    def __init__(
        self,
        phases: Iterable[str] = (),
        *,
        case_sensitive: bool = False,
        strict: bool = False,
        merge_params: bool = False,
        parallel: bool = False,
        delimiters: str = "./",
        ends_with: Iterable[str] = (),
    ) -> None:
        self.pattern_options = PatternOptions(
            sensitive=case_sensitive,
            strict=strict,
            delimiters=delimiters,
            ends_with=tuple(ends_with),
        )
        self.merge_params = merge_params
        self.parallel = parallel
        self.stack: list[Layer] = []
        self.params: dict[str, list[ParamCallback]] = {}
        self.events = RouterEvents()
        self._registrars: dict[str, Registrar] = {}

        self.add_phases([phases] if isinstance(phases, str) else phases)

    def __repr__(self) -> str:
        return f"Router(phases={list(self._registrars)!r}, layers={len(self.stack)})"

    # -- Phases --

    @property
    def phases(self) -> tuple[str, ...]:
        """Declared phases, in declaration order."""
        return tuple(self._registrars)

    @property
    def registrars(self) -> Mapping[str, Registrar]:
        """Read-only mapping of phase name to its registration function."""
        return MappingProxyType(self._registrars)

    def add_phase(self, name: str) -> Registrar:
        """Declare a phase and return its registration function.

        The registration function has the signature
        ``(pattern, *middleware) -> Router``. Declaring an existing phase
        returns the existing function.

        Raises:
            RouteValidationError: If name is empty, not a string, or "all".
        """
        if not isinstance(name, str) or not name:
            raise RouteValidationError(f"Phase name must be a non-empty string, got {name!r}")
        if name == ALL_PHASES:
            raise RouteValidationError(f"Phase name '{ALL_PHASES}' is reserved")

        if name in self._registrars:
            return self._registrars[name]

        def registrar(pattern: PathPattern, *middleware: Any) -> "Router":
            return self.register(name, pattern, *middleware)

        registrar.__name__ = name
        registrar.__qualname__ = f"Router.{name}"
        self._registrars[name] = registrar

        logger.debug("Declared router phase", extra={"phase": name})
        return registrar

    def add_phases(self, names: Iterable[str]) -> "Router":
        for name in names:
            self.add_phase(name)
        return self

    def handler(self, phase: str) -> Registrar:
        """Get the registration function of a declared phase.

        Raises:
            UnknownPhaseError: If the phase was never declared.
        """
        try:
            return self._registrars[phase]
        except KeyError:
            raise UnknownPhaseError(
                f"Router phase '{phase}' does not exist", phase=phase
            ) from None

    def handles_phase(self, phase: str) -> bool:
        """Check if dispatching ``phase`` can reach any layer of this router."""
        if phase in self._registrars:
            return True
        return any(_layer_handles(layer, phase) for layer in self.stack)

    # -- Registration --

    def register(self, phase: str, pattern: PathPattern, *middleware: Any) -> "Router":
        """Register middleware for ``phase`` on files matching ``pattern``.

        Unknown phases are declared on first use. The phase "all" registers
        middleware that runs in every phase.

        Raises:
            RouteValidationError: If no middleware is given or any is not callable.
            PatternCompileError: If the pattern is malformed.
        """
        if phase != ALL_PHASES:
            self.add_phase(phase)

        handlers = normalize_middleware(
            middleware, source=f"Router.register({phase!r}, {pattern!r})"
        )
        if not handlers:
            raise RouteValidationError(
                f"Router.register({phase!r}, {pattern!r}) requires middleware functions"
            )

        self.route(pattern).add(phase, *handlers)
        return self

    def all(self, pattern: PathPattern, *middleware: Any) -> "Router":
        """Register middleware that runs in every phase."""
        return self.register(ALL_PHASES, pattern, *middleware)

    def route(self, pattern: PathPattern) -> Route:
        """Create a route for ``pattern`` and append it to the stack.

        The route must match the whole path (trailing delimiter allowed
        unless the router is strict).
        """
        route = Route(pattern, declare_phase=self.add_phase)
        layer = Layer(pattern, route.dispatch, self.pattern_options.with_changes(end=True))
        layer.route = route
        self._push(layer)
        return route

    def mount(self, prefix: PathPattern, *handlers: Any) -> "Router":
        """Mount routers or middleware under a path prefix.

        The matched prefix is stripped from the path the mounted handlers
        see, so a sub-router can be written as if it owned the whole path
        space. Middleware is called with ``(file, params)`` in every phase.

        Raises:
            RouteValidationError: If no handlers are given or any is neither
                a Router nor callable.
            PatternCompileError: If the prefix pattern is malformed.
        """
        mounted = normalize_middleware(
            handlers, source=f"Router.mount({prefix!r})", accepts=_is_mountable
        )
        if not mounted:
            raise RouteValidationError(
                f"Router.mount({prefix!r}) requires middleware functions or routers"
            )

        options = self.pattern_options.with_changes(strict=False, end=False)
        for handler in mounted:
            if isinstance(handler, Router):
                layer = Layer(prefix, handler.dispatch, options)
                layer.router = handler
            else:
                layer = Layer(prefix, handler, options)
            self._push(layer)

            logger.debug(
                "Mounted handler",
                extra={"prefix": str(prefix), "handler": _describe(handler)},
            )

        return self

    def use(self, *handlers: Any) -> "Router":
        """Mount routers or middleware at "/" (every path)."""
        return self.mount("/", *handlers)

    def on_error(self, *handlers: Any, prefix: PathPattern = "/") -> "Router":
        """Register error handlers called as ``(error, file, params)``.

        Error handlers only run while an error is pending. One that returns
        normally recovers from the error; one that raises replaces it.
        """
        mounted = normalize_middleware(handlers, source="Router.on_error()")
        if not mounted:
            raise RouteValidationError("Router.on_error() requires handler functions")

        options = self.pattern_options.with_changes(strict=False, end=False)
        for handler in mounted:
            layer = Layer(prefix, handler, options)
            layer.error_handler = True
            self._push(layer)

        return self

    def param(self, name: str, callback: ParamCallback) -> "Router":
        """Register a callback for a named parameter.

        Callbacks run before the matched layer, in registration order, as
        ``await callback(file, call_next, value, name)``. They run once per
        distinct value of the parameter within one dispatch.

        Raises:
            RouteValidationError: If the name is empty or callback not callable.
            MiddlewareValidationError: If the callback is not async.
        """
        if not isinstance(name, str) or not name.lstrip(":"):
            raise RouteValidationError(f"Param name must be a non-empty string, got {name!r}")
        if name.startswith(":"):
            name = name[1:]

        if not callable(callback):
            raise RouteValidationError(
                f"Param callback for '{name}' must be a callable, got {type(callback).__name__}"
            )
        if not _is_async_callable(callback):
            raise MiddlewareValidationError(
                f"Param callback for '{name}' must be async, "
                f"got sync function {getattr(callback, '__name__', repr(callback))}"
            )

        self.params.setdefault(name, []).append(callback)
        logger.debug(
            "Registered param callback",
            extra={"param": name, "count": len(self.params[name])},
        )
        return self

    def add_listener(self, listener: Callable[[RouterEvent], Any]) -> Callable[[], None]:
        """Subscribe to this router's dispatch events."""
        return self.events.add_listener(listener)

    def bind(self, host: Any, phases: Iterable[str] | None = None) -> Any:
        """Expose this router's registration and dispatch functions on ``host``.

        Sets one attribute per phase (its registration function) plus
        ``dispatch`` and ``dispatch_all``. Phases not yet declared are
        declared.

        Returns:
            The host, for chaining.
        """
        names = self.phases if phases is None else tuple(phases)
        for name in names:
            setattr(host, name, self.add_phase(name))
        host.dispatch = self.dispatch
        host.dispatch_all = self.dispatch_all
        return host

    def _push(self, layer: Layer) -> None:
        # Compile now so malformed patterns fail at registration
        layer.compile()
        self.stack.append(layer)

    # -- Dispatch --

    async def dispatch(self, phase: str, file: Any) -> Any:
        """Route ``file`` through every layer that applies to ``phase``.

        Returns:
            The file, after all middleware has run.

        Raises:
            UnknownPhaseError: If the phase was never declared.
            Exception: The first error raised by middleware and not
                recovered by an error handler, unchanged.
        """
        if phase not in self._registrars:
            raise UnknownPhaseError(f"Router phase '{phase}' does not exist", phase=phase)

        self.events.emit(RouterEvent(EventKind.PHASE_START, phase, file))
        try:
            await self._handle(phase, file, PathScope.root(file.path))
        except Exception as exc:
            self.events.emit(RouterEvent(EventKind.PHASE_END, phase, file, error=exc))
            raise
        self.events.emit(RouterEvent(EventKind.PHASE_END, phase, file))
        return file

    async def dispatch_all(self, file: Any) -> Any:
        """Dispatch ``file`` for every declared phase.

        Phases run in declaration order, or concurrently when the router
        was created with ``parallel=True`` (ordering is then only kept
        within each phase).
        """
        if self.parallel:
            await asyncio.gather(*(self.dispatch(phase, file) for phase in self.phases))
        else:
            for phase in self.phases:
                await self.dispatch(phase, file)
        return file

    async def _handle(self, phase: str, file: Any, scope: PathScope) -> None:
        """Walk the stack for one dispatch at this router level."""
        state = DispatchState(phase=phase)

        logger.debug(
            "Dispatching file",
            extra={"phase": phase, "path": scope.path, "base_path": scope.base_path},
        )

        for layer in list(self.stack):
            try:
                matched = layer.exec(scope.path)
            except ParamDecodeError as exc:
                if state.error is None:
                    state.error = exc
                continue

            if matched is None:
                continue
            if layer.error_handler != (state.error is not None):
                continue
            if not _layer_handles(layer, phase):
                continue

            params = matched.params
            if self.merge_params:
                params = merge_params(params, scope.params)

            try:
                await self._process_params(layer, params, state, file)
            except Exception as exc:
                if state.error is None:
                    state.error = exc
                continue

            self.events.emit(
                RouterEvent(EventKind.LAYER, phase, file, pattern=layer.pattern, params=params)
            )

            outcome = await self._invoke(layer, phase, file, params, scope, matched, state)
            if outcome.kind is Next.ERROR:
                state.error = outcome.error
            elif layer.error_handler:
                state.error = None

        if state.error is not None:
            raise state.error

    async def _invoke(
        self,
        layer: Layer,
        phase: str,
        file: Any,
        params: Params,
        scope: PathScope,
        matched: LayerMatch,
        state: DispatchState,
    ) -> Outcome:
        """Run one matched layer and report the outcome."""
        if layer.route is not None:
            with bind_scope(scope):
                return await layer.route.run(phase, file, params)

        child = scope.descend(matched.path, params, end=matched.end)
        if matched.end:
            logger.debug(
                "Trimmed mount prefix",
                extra={"prefix": matched.path, "path": child.path, "base_path": child.base_path},
            )

        try:
            with bind_scope(child):
                if layer.router is not None:
                    await layer.router._handle(phase, file, child)
                elif layer.error_handler:
                    await invoke_handler(layer.handler, state.error, file, params)
                else:
                    await layer.invoke(file, params)
        except Exception as exc:
            return Outcome(Next.ERROR, exc)

        return CONTINUE

    async def _process_params(
        self,
        layer: Layer,
        params: Params,
        state: DispatchState,
        file: Any,
    ) -> None:
        """Run param callbacks for the named keys of a matched layer."""
        if not self.params:
            return

        for key in layer.keys:
            if not key.is_named:
                continue

            name = str(key.name)
            value = params.get(name)
            callbacks = self.params.get(name)
            if value is None or not callbacks:
                continue

            called = state.paramcalled.get(name)
            if called is not None and (called.error is not None or called.match == value):
                params[name] = called.value
                logger.debug("Reusing param callback result", extra={"param": name})
                if called.error is not None:
                    raise called.error
                continue

            called = ParamCall(match=value, value=value)
            state.paramcalled[name] = called

            logger.debug(
                "Running param callbacks",
                extra={"param": name, "count": len(callbacks)},
            )
            chain = build_param_chain(callbacks, name)
            try:
                called.value = await chain(file, value)
            except Exception as exc:
                called.error = exc
                raise

            params[name] = called.value


def merge_params(params: Params, parent: Mapping[str | int, Any]) -> Params:
    """Merge a layer's params over the params of the layer that mounted it.

    Named params of the child win. When both sides have positional
    params, the child's ordinals are shifted past the parent's.
    """
    if not parent:
        return params

    merged: Params = dict(parent)
    if 0 not in params or 0 not in parent:
        merged.update(params)
        return merged

    offset = 0
    while offset in parent:
        offset += 1

    for prop, value in params.items():
        if isinstance(prop, int):
            merged[prop + offset] = value
        else:
            merged[prop] = value
    return merged


def _layer_handles(layer: Layer, phase: str) -> bool:
    if layer.route is not None:
        return bool(layer.route.handles_phase(phase))
    if layer.router is not None:
        return bool(layer.router.handles_phase(phase))
    return True


def _is_mountable(handler: Any) -> bool:
    return isinstance(handler, Router) or callable(handler)


def _is_async_callable(fn: Any) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    )


def _describe(handler: Any) -> str:
    if isinstance(handler, Router):
        return repr(handler)
    return getattr(handler, "__qualname__", type(handler).__name__)
