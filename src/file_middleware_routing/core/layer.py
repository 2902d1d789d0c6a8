"""Layer: one route pattern paired with one handler.

A layer compiles its pattern on first use, matches file paths against it,
and calls its handler with ``(file, params)`` when the path matches.
"""

import inspect
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

from file_middleware_routing.core.middleware import invoke_handler
from file_middleware_routing.core.pattern import (
    CompiledPattern,
    Key,
    PathPattern,
    PatternOptions,
    compile_pattern,
)
from file_middleware_routing.exceptions import (
    MiddlewareValidationError,
    ParamDecodeError,
    RouteValidationError,
)

Params = dict[str | int, str | None]
Handler = Callable[..., Any]

_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def decode_param(value: str) -> str:
    """Percent-decode a captured path segment.

    Raises:
        ParamDecodeError: If the segment has a malformed escape or does not
            decode to valid UTF-8.
    """
    if "%" not in value:
        return value
    if _MALFORMED_ESCAPE.search(value):
        raise ParamDecodeError(f"Failed to decode param {value!r}", value=value)
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError as exc:
        raise ParamDecodeError(f"Failed to decode param {value!r}", value=value) from exc


@dataclass(frozen=True)
class LayerMatch:
    """A successful layer match.

    Attributes:
        params: Decoded captures keyed by key name or ordinal.
        path: The text the pattern matched.
        end: Index in the input path just past the match. A raw regex
            without "^" can match mid-path, so this can exceed len(path).
    """

    params: Params
    path: str
    end: int = 0


class Layer:
    """A compiled pattern and the handler it guards.

    Routers also use layers for their stack entries: ``route`` is set for
    terminal routes, ``router`` for mounted sub-routers, and
    ``error_handler`` for handlers registered with ``Router.on_error``.

    Example:
        layer = Layer("/:name", lambda file, params: print(params))
        layer.match("/foo")  # {"name": "foo"}
    """

    def __init__(
        self,
        pattern: PathPattern,
        handler: Handler,
        options: PatternOptions | None = None,
        *,
        phase: str | None = None,
    ) -> None:
        if not callable(handler):
            raise RouteValidationError(
                f"Layer handler must be a callable, got {type(handler).__name__}"
            )
        self.pattern = pattern
        self.handler = handler
        self.options = options or PatternOptions(end=False)
        self.phase = phase
        self.route: Any = None
        self.router: Any = None
        self.error_handler = False
        self._compiled: CompiledPattern | None = None

    def __repr__(self) -> str:
        name = getattr(self.handler, "__qualname__", type(self.handler).__name__)
        return f"Layer(pattern={self.pattern!r}, handler={name}, phase={self.phase!r})"

    @property
    def is_fast_slash(self) -> bool:
        """A non-terminal "/" layer matches every path without compiling."""
        return self.pattern == "/" and not self.options.end

    @property
    def keys(self) -> tuple[Key, ...]:
        return self.compile().keys

    def compile(self) -> CompiledPattern:
        """Return the compiled pattern, compiling it on first call."""
        if self._compiled is None:
            self._compiled = compile_pattern(self.pattern, self.options)
        return self._compiled

    def exec(self, path: str | None) -> LayerMatch | None:
        """Match a path and return its params and consumed prefix.

        Raises:
            ParamDecodeError: If a captured segment cannot be decoded.
        """
        if not path:
            return None
        if self.is_fast_slash:
            return LayerMatch(params={}, path="", end=0)

        compiled = self.compile()
        match = compiled.regex.search(path)
        if match is None:
            return None

        params: Params = {}
        ordinal = 0
        for i, value in enumerate(match.groups()):
            key = compiled.keys[i] if i < len(compiled.keys) else None
            if key is not None and key.is_named:
                prop: str | int = key.name
            else:
                prop = ordinal
                ordinal += 1

            # An unmatched group never clobbers a value set by another branch
            if value is not None or prop not in params:
                params[prop] = decode_param(value) if value is not None else None

        return LayerMatch(params=params, path=match.group(0), end=match.end())

    def match(self, path: str | None) -> Params | None:
        """Match a path, returning its params or None."""
        matched = self.exec(path)
        return matched.params if matched is not None else None

    async def invoke(self, file: Any, params: Params) -> Any:
        """Call the handler with (file, params) and return its result."""
        return await invoke_handler(self.handler, file, params)

    async def handle(self, file: Any, path: str | None = None) -> Any:
        """Run the handler on file if ``path`` (default ``file.path``) matches.

        Returns:
            The file, after the handler (if any) has finished.
        """
        matched = self.exec(file.path if path is None else path)
        if matched is not None:
            await self.invoke(file, matched.params)
        return file

    def handle_sync(self, file: Any, path: str | None = None) -> Any:
        """Synchronous variant of handle() for fully synchronous pipelines.

        Raises:
            MiddlewareValidationError: If the handler returns an awaitable.
        """
        matched = self.exec(file.path if path is None else path)
        if matched is None:
            return file

        result = self.handler(file, matched.params)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise MiddlewareValidationError(
                f"Handler {getattr(self.handler, '__name__', 'handler')} returned an "
                f"awaitable in a synchronous pipeline; use handle() instead"
            )
        return file
