"""Exception hierarchy for file middleware routing errors.

Errors raised by user middleware or parameter callbacks are never wrapped
in these types; they propagate to the caller of ``Router.dispatch`` as-is.
"""


class FileRoutingError(Exception):
    """Base exception for all file middleware routing errors.

    This is the parent class for all exceptions raised by the
    file-middleware-routing package. Catching this exception
    will catch all routing-related errors.

    Example:
        try:
            await router.dispatch("render", file)
        except FileRoutingError as e:
            logger.error(f"Failed to route {file.path}: {e}")
    """


class PatternCompileError(FileRoutingError):
    """Raised when a route pattern has invalid syntax.

    Routers compile patterns when they are registered, so this error
    surfaces during setup rather than while a file is being dispatched.

    Examples of invalid syntax:
        - Unbalanced capture group: /posts/(\\d+
        - Doubled modifier: /:slug??
        - Custom pattern rejected by the regex engine: /:id([a-)

    Example:
        PatternCompileError("Unbalanced '(' in pattern '/posts/(\\d+'")
    """


class ParamDecodeError(FileRoutingError):
    """Raised when a captured path segment is not valid percent-encoding.

    Fatal to the current dispatch only; the router and its other files
    are unaffected.

    Example:
        ParamDecodeError("Failed to decode param '%E0%A4%A'")
    """

    def __init__(self, message: str, *, value: str | None = None) -> None:
        super().__init__(message)
        self.value = value


class UnknownPhaseError(FileRoutingError):
    """Raised when a file is dispatched for a phase that was never declared.

    The file is not touched when this error is raised.

    Example:
        UnknownPhaseError("Router phase 'preWrite' does not exist")
    """

    def __init__(self, message: str, *, phase: str | None = None) -> None:
        super().__init__(message)
        self.phase = phase


class RouteValidationError(FileRoutingError):
    """Raised for invalid route, mount or parameter registrations.

    This exception is raised when:
        - A middleware handler is not callable
        - mount() or use() is called without any handlers
        - A parameter name is empty or not a string

    Example:
        RouteValidationError(
            "Route.layer('render') expected a callable, got str"
        )
    """


class MiddlewareValidationError(FileRoutingError):
    """Raised when middleware is incompatible with how it is invoked.

    This exception is raised when:
        - A parameter callback is not async
        - A handler returns an awaitable inside a synchronous pipeline

    Example:
        MiddlewareValidationError(
            "Param callback for 'user' must be async, got sync function load_user"
        )
    """
