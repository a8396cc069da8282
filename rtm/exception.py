"""Common RTM exceptions."""

from typing import Any

# isort: unique-list
__all__ = [
    'DecodeError',
    'NoRouteError',
    'RTMBaseException',
    'RequestTimeoutError',
    'RouteConflictError',
    'RoutingError',
    'TransportError',
]


class RTMBaseException(Exception):
    """Base exception for the RTM socket.

    Parameters:
        message: A human-readable description of the exception.
        context: Machine-readable data.
    """

    def __init__(self, message: str, /, **context: Any) -> None:
        super().__init__(message)
        self.context = context

    def __repr__(self, /) -> str:
        cls_name, args = self.__class__.__name__, [repr(self.args[0])]
        args.extend(f'{name}={value!r}' for name, value in self.context.items())
        return f'{cls_name}({", ".join(args)})'


class RoutingError(RTMBaseException):
    """A message or callback has no route.

    This error indicates a wiring bug (for example, sending a schema that declares no
    route) and is raised synchronously.
    """


class RouteConflictError(RoutingError):
    """Two schemas declare the same route."""


class DecodeError(RTMBaseException):
    """A frame is not valid JSON or does not fit the expected schema."""


class NoRouteError(RTMBaseException):
    """An inbound frame matches neither a pending request nor a bound route."""


class RequestTimeoutError(RTMBaseException):
    """A request did not receive a reply before its deadline."""


class TransportError(RTMBaseException):
    """The transport could not be opened or used."""
