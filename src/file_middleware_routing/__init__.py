"""Phase-aware middleware routing for files in build pipelines."""

# Primary API: the main entry point
from file_middleware_routing.core.context import PathScope, current_scope
from file_middleware_routing.core.events import EventKind, RouterEvent, RouterEvents
from file_middleware_routing.core.layer import Layer, LayerMatch, decode_param

# Middleware API
from file_middleware_routing.core.middleware import CONTINUE, SKIP_ROUTE, Next, Outcome

# Core types: for advanced users and type checking
from file_middleware_routing.core.pattern import (
    CompiledPattern,
    Key,
    PatternOptions,
    compile_pattern,
    parse_pattern,
)
from file_middleware_routing.core.route import ALL_PHASES, Route
from file_middleware_routing.core.router import Router, merge_params

# Exceptions: for error handling
from file_middleware_routing.exceptions import (
    FileRoutingError,
    MiddlewareValidationError,
    ParamDecodeError,
    PatternCompileError,
    RouteValidationError,
    UnknownPhaseError,
)

__all__ = [
    # Primary API
    "Router",
    "current_scope",
    # Middleware API
    "SKIP_ROUTE",
    "CONTINUE",
    "Next",
    "Outcome",
    # Core types
    "ALL_PHASES",
    "CompiledPattern",
    "EventKind",
    "Key",
    "Layer",
    "LayerMatch",
    "PathScope",
    "PatternOptions",
    "Route",
    "RouterEvent",
    "RouterEvents",
    "compile_pattern",
    "decode_param",
    "merge_params",
    "parse_pattern",
    # Exceptions
    "FileRoutingError",
    "MiddlewareValidationError",
    "ParamDecodeError",
    "PatternCompileError",
    "RouteValidationError",
    "UnknownPhaseError",
]

__version__ = "0.1.0"
