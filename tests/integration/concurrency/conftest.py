"""Shared fixtures for concurrency integration tests.

Provides a router whose middleware sleeps between reading and writing
dispatch state, so concurrent dispatches interleave at every await.

Router structure:
    mount("/foo/:ms/", delay)      # sleeps :ms milliseconds, records scope
      child "/:name.md" (before)   # records its own params and scope
    param("ms")                    # converts :ms to int after a random delay
    register("before", "(.*)")     # records the top-level scope at the end
"""

import asyncio
import random
from typing import Any

import pytest

from file_middleware_routing import Router, current_scope


@pytest.fixture
def router() -> Router:
    """Build a fresh router for each test."""
    router = Router(["before", "after"])

    async def parse_ms(file: Any, call_next: Any, value: str, name: str) -> None:
        file.param_calls += 1
        await asyncio.sleep(random.uniform(0, 0.01))
        await call_next(int(value))

    async def delay(file: Any, params: dict) -> None:
        scope = current_scope()
        await asyncio.sleep(params["ms"] / 1000)
        file.trace.append(("mount", params["ms"], scope.original_path, scope.base_path))

    async def page(file: Any, params: dict) -> None:
        scope = current_scope()
        await asyncio.sleep(random.uniform(0, 0.01))
        file.trace.append(("page", params["name"], scope.path, scope.base_path))

    async def done(file: Any, params: dict) -> None:
        scope = current_scope()
        file.trace.append(("done", scope.original_path, scope.base_path))

    child = Router(["before"])
    child.register("before", "/:name.md", page)

    router.param("ms", parse_ms)
    router.mount("/foo/:ms/", delay, child)
    router.register("before", "(.*)", done)
    return router
