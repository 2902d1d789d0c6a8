"""Tests for Router registration and single-level dispatch."""

from types import SimpleNamespace
from typing import Any

import pytest

from file_middleware_routing.core.middleware import SKIP_ROUTE
from file_middleware_routing.core.route import Route
from file_middleware_routing.core.router import Router, merge_params
from file_middleware_routing.exceptions import (
    MiddlewareValidationError,
    PatternCompileError,
    RouteValidationError,
    UnknownPhaseError,
)


class TestPhases:
    """Tests for declaring phases and their registration functions."""

    def test_phases_in_declaration_order(self) -> None:
        router = Router(["onLoad", "preRender", "postRender"])
        assert router.phases == ("onLoad", "preRender", "postRender")

    def test_single_phase_string(self) -> None:
        assert Router("onLoad").phases == ("onLoad",)

    def test_add_phase_is_idempotent(self) -> None:
        router = Router()
        first = router.add_phase("load")

        assert router.add_phase("load") is first
        assert router.phases == ("load",)

    def test_all_is_reserved(self) -> None:
        with pytest.raises(RouteValidationError, match="reserved"):
            Router(["all"])

    def test_empty_phase_rejected(self) -> None:
        with pytest.raises(RouteValidationError, match="non-empty"):
            Router().add_phase("")

    def test_handler_returns_registrar(self, tracer) -> None:
        router = Router(["load"])
        register_load = router.handler("load")

        assert register_load("/x", tracer("a")) is router
        assert register_load.__name__ == "load"
        assert len(router.stack) == 1

    def test_handler_unknown_phase(self) -> None:
        with pytest.raises(UnknownPhaseError) as exc_info:
            Router(["load"]).handler("render")
        assert exc_info.value.phase == "render"

    def test_registrars_is_read_only(self) -> None:
        router = Router(["load"])

        assert list(router.registrars) == ["load"]
        with pytest.raises(TypeError):
            router.registrars["x"] = lambda *a: router  # type: ignore[index]

    def test_register_declares_unknown_phase(self, tracer) -> None:
        router = Router()
        router.register("render", "/x", tracer("a"))
        assert router.phases == ("render",)

    def test_all_does_not_declare_a_phase(self, tracer) -> None:
        router = Router(["load"])
        router.all("/x", tracer("a"))
        assert router.phases == ("load",)


class TestRegistration:
    """Tests for routes, mounts, params and validation."""

    def test_register_requires_middleware(self) -> None:
        with pytest.raises(RouteValidationError, match="requires middleware"):
            Router(["load"]).register("load", "/x")

    def test_register_rejects_non_callable(self) -> None:
        with pytest.raises(RouteValidationError, match="must be a callable"):
            Router(["load"]).register("load", "/x", "nope")

    def test_bad_pattern_fails_at_registration(self, tracer) -> None:
        with pytest.raises(PatternCompileError):
            Router(["load"]).register("load", "/posts/(\\d+", tracer("a"))

    def test_route_returns_route(self, tracer) -> None:
        router = Router(["load"])
        route = router.route("/x")
        route.add("load", tracer("a"))

        assert router.stack[0].route is route
        assert router.handles_phase("load")

    async def test_route_declares_its_phases(self, make_file, tracer) -> None:
        """Phases added through Router.route are dispatchable."""
        router = Router(["load"])
        router.route("/x").add("render", tracer("render")).all(tracer("all"))

        assert router.phases == ("load", "render")

        file = make_file("/x")
        await router.dispatch("render", file)
        assert file.trace == ["render", "all"]

    def test_standalone_route_declares_nothing(self, tracer) -> None:
        route = Route("/x").add("render", tracer("render"))
        assert route.methods == {"render"}

    def test_mount_requires_handlers(self) -> None:
        with pytest.raises(RouteValidationError, match="requires middleware"):
            Router().mount("/x")

    def test_mount_rejects_non_callable(self) -> None:
        with pytest.raises(RouteValidationError, match="Router.mount"):
            Router().mount("/x", 42)

    def test_mount_router_and_middleware(self, tracer) -> None:
        child = Router(["load"])
        router = Router(["load"]).mount("/x", child, [tracer("a")])

        assert router.stack[0].router is child
        assert router.stack[1].router is None

    def test_param_strips_colon(self) -> None:
        async def load_user(file: Any, call_next: Any, value: str, name: str) -> None:
            await call_next()

        router = Router().param(":user", load_user)
        assert router.params == {"user": [load_user]}

    def test_param_requires_async(self) -> None:
        def load_user(file: Any, call_next: Any, value: str, name: str) -> None:
            return None

        with pytest.raises(MiddlewareValidationError, match="must be async"):
            Router().param("user", load_user)

    def test_param_requires_callable(self) -> None:
        with pytest.raises(RouteValidationError, match="must be a callable"):
            Router().param("user", "nope")  # type: ignore[arg-type]

    def test_param_requires_name(self) -> None:
        async def cb(file: Any, call_next: Any, value: str, name: str) -> None: ...

        with pytest.raises(RouteValidationError, match="Param name"):
            Router().param(":", cb)

    def test_on_error_requires_handlers(self) -> None:
        with pytest.raises(RouteValidationError):
            Router().on_error()


class TestHandlesPhase:
    """Tests for phase reachability."""

    def test_declared_phase(self) -> None:
        assert Router(["load"]).handles_phase("load")

    def test_nested_router_phase(self, tracer) -> None:
        child = Router()
        child.register("render", "/x", tracer("a"))
        parent = Router().mount("/docs", child)

        assert parent.handles_phase("render")

    def test_unknown_phase(self) -> None:
        assert not Router(["load"]).handles_phase("render")


class TestBind:
    """Tests for exposing a router on a host object."""

    async def test_bind_sets_registrars_and_dispatch(self, make_file, tracer) -> None:
        router = Router(["onLoad", "preRender"])
        host = SimpleNamespace()

        assert router.bind(host) is host
        host.onLoad("/x", tracer("load"))
        host.preRender("/x", tracer("render"))

        file = make_file("/x")
        await host.dispatch_all(file)

        assert file.trace == ["load", "render"]
        await host.dispatch("onLoad", file)
        assert file.trace == ["load", "render", "load"]

    def test_bind_declares_requested_phases(self) -> None:
        router = Router()
        host = SimpleNamespace()
        router.bind(host, ["postWrite"])

        assert router.phases == ("postWrite",)
        assert callable(host.postWrite)


class TestDispatch:
    """Tests for dispatching through one router level."""

    async def test_unknown_phase_rejected_without_touching_file(self, make_file) -> None:
        router = Router(["load"])
        file = make_file("/x")

        with pytest.raises(UnknownPhaseError, match="does not exist"):
            await router.dispatch("render", file)
        assert file.path == "/x"
        assert file.trace == []

    async def test_returns_file(self, make_file) -> None:
        file = make_file("/x")
        assert await Router(["load"]).dispatch("load", file) is file

    async def test_ordering_invariant(self, make_file) -> None:
        """Overlapping layers run in registration order."""
        router = Router(["load"])
        counter = SimpleNamespace(value=0, seen=[])

        def step(n: int):
            async def middleware(file: Any, params: dict) -> None:
                counter.value += 1
                counter.seen.append((n, counter.value))

            return middleware

        router.register("load", "/posts/:slug", step(1))
        router.use(step(2))
        router.register("load", "(.*)", step(3))
        router.mount("/posts", step(4))

        await router.dispatch("load", make_file("/posts/hello"))

        assert counter.seen == [(1, 1), (2, 2), (3, 3), (4, 4)]

    async def test_only_matching_phase_runs(self, make_file, tracer) -> None:
        router = Router(["load", "render"])
        router.register("load", "/x", tracer("load"))
        router.register("render", "/x", tracer("render"))
        router.all("/x", tracer("all"))

        file = make_file("/x")
        await router.dispatch("render", file)

        assert file.trace == ["render", "all"]

    async def test_non_matching_path_skipped(self, make_file, tracer) -> None:
        router = Router(["load"])
        router.register("load", "/a", tracer("a"))
        router.register("load", "/b", tracer("b"))

        file = make_file("/b")
        await router.dispatch("load", file)

        assert file.trace == ["b"]

    async def test_error_short_circuit(self, make_file, tracer) -> None:
        """A raising middleware stops later layers and is re-raised."""
        router = Router(["load"])

        async def fail(file: Any, params: dict) -> None:
            raise KeyError("missing")

        router.register("load", "/x", tracer("first"), fail, tracer("same-route"))
        router.register("load", "/x", tracer("next-route"))

        file = make_file("/x")
        with pytest.raises(KeyError, match="missing"):
            await router.dispatch("load", file)
        assert file.trace == ["first"]

    async def test_skip_route_continues_with_next_route(self, make_file, tracer) -> None:
        router = Router(["load"])

        async def skip(file: Any, params: dict) -> Any:
            return SKIP_ROUTE

        router.register("load", "/x", tracer("first"), skip, tracer("skipped"))
        router.register("load", "/x", tracer("next-route"))

        file = make_file("/x")
        await router.dispatch("load", file)

        assert file.trace == ["first", "next-route"]

    async def test_strict_router(self, make_file, tracer) -> None:
        router = Router(["load"], strict=True)
        router.register("load", "/x", tracer("x"))

        file = make_file("/x/")
        await router.dispatch("load", file)

        assert file.trace == []

    async def test_trailing_newline_is_not_a_match(self, make_file, tracer) -> None:
        router = Router(["load"])
        router.register("load", "/posts/hello", tracer("hit"))

        file = make_file("/posts/hello\n")
        await router.dispatch("load", file)

        assert file.trace == []

    async def test_case_sensitive_router(self, make_file, tracer) -> None:
        router = Router(["load"], case_sensitive=True)
        router.register("load", "/Readme.md", tracer("readme"))

        file = make_file("/readme.md")
        await router.dispatch("load", file)

        assert file.trace == []

    async def test_sync_middleware_supported(self, make_file) -> None:
        router = Router(["load"])
        router.register("load", "/x", lambda file, params: file.trace.append("sync"))

        file = make_file("/x")
        await router.dispatch("load", file)

        assert file.trace == ["sync"]


class TestMergeParams:
    """Tests for merging child params over parent params."""

    def test_no_parent(self) -> None:
        params = {"a": "1"}
        assert merge_params(params, {}) is params

    def test_named_child_wins(self) -> None:
        assert merge_params({"a": "child"}, {"a": "parent", "b": "p"}) == {
            "a": "child",
            "b": "p",
        }

    def test_ordinals_shifted(self) -> None:
        merged = merge_params({0: "c0", 1: "c1"}, {0: "p0", 1: "p1"})
        assert merged == {0: "p0", 1: "p1", 2: "c0", 3: "c1"}

    def test_ordinals_not_shifted_without_parent_ordinals(self) -> None:
        assert merge_params({0: "c0"}, {"name": "p"}) == {"name": "p", 0: "c0"}
