"""Shared pytest fixtures for file-middleware-routing tests."""

from types import SimpleNamespace
from typing import Any

import pytest


@pytest.fixture
def make_file():
    """Create a file record for dispatch.

    Returns a callable that accepts:
    - path: The file path
    - **attrs: Extra attributes to set on the record

    The record always has a ``trace`` list that test middleware can append to.

    Example:
        file = make_file("/posts/hello.md", content="# Hello")
    """

    def _create(path: str, **attrs: Any) -> SimpleNamespace:
        attrs.setdefault("trace", [])
        return SimpleNamespace(path=path, **attrs)

    return _create


@pytest.fixture
def tracer():
    """Create middleware that appends a label to ``file.trace``.

    Returns a callable ``(label) -> async middleware``.
    """

    def _create(label: str):
        async def middleware(file: Any, params: dict) -> None:
            file.trace.append(label)

        middleware.__name__ = f"trace_{label}"
        return middleware

    return _create
