"""Path scope of the dispatch currently running middleware.

Mounting strips the matched prefix for the nested router, but the file's
own ``path`` is never rewritten. Instead each dispatch passes an immutable
``PathScope`` down the stack and publishes it in a ContextVar, so middleware
can read the remainder it was mounted on via ``current_scope()``.
Concurrent dispatches each run in their own task context and never see
each other's scope.
"""

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PathScope:
    """Where a dispatch is within the mount hierarchy.

    Attributes:
        original_path: The file path when dispatch started.
        path: The remainder visible at this level (always starts with "/"
            below the top level).
        base_path: Concatenated mount prefixes consumed so far, without a
            trailing slash.
        params: Params of the layer that mounted this level.
    """

    original_path: str
    path: str
    base_path: str = ""
    params: Mapping[str | int, Any] = field(default_factory=dict)

    @classmethod
    def root(cls, path: str) -> "PathScope":
        return cls(original_path=path, path=path)

    def descend(
        self,
        matched: str,
        params: Mapping[str | int, Any],
        *,
        end: int | None = None,
    ) -> "PathScope":
        """Return the scope for a mount that matched ``matched``.

        ``end`` is where the match stopped in ``path``; everything before it
        is consumed. It defaults to ``len(matched)`` for a prefix match.
        """
        if end is None:
            end = len(matched)
        if end == 0:
            return PathScope(
                original_path=self.original_path,
                path=self.path,
                base_path=self.base_path,
                params=params,
            )

        matched = self.path[:end]
        remainder = self.path[end:]
        if not remainder.startswith("/"):
            remainder = "/" + remainder

        consumed = matched[:-1] if matched.endswith("/") else matched
        return PathScope(
            original_path=self.original_path,
            path=remainder,
            base_path=self.base_path + consumed,
            params=params,
        )


_scope_var: ContextVar[PathScope | None] = ContextVar("file_routing_scope", default=None)


def current_scope() -> PathScope | None:
    """Get the scope of the dispatch running the current middleware.

    Returns None outside of a dispatch.
    """
    return _scope_var.get()


@contextmanager
def bind_scope(scope: PathScope) -> Iterator[PathScope]:
    """Publish ``scope`` for the duration of the block."""
    token = _scope_var.set(scope)
    try:
        yield scope
    finally:
        _scope_var.reset(token)
