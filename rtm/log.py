"""Logging configuration.

This module largely wraps the :mod:`structlog` framework to provide flexible structured
logging for the RTM socket. A chain of "processors" (callables) filters or transforms
events produced by log statements.

To the greatest extent possible, this module favors native :mod:`structlog`
functionality over integration with the standard :mod:`logging` module for `performance
reasons <https://www.structlog.org/en/stable/performance.html>`_.

Note:
    The socket's send pipeline and dispatcher run on worker threads, so this module
    hands out the synchronous :class:`structlog.stdlib.BoundLogger`. The renderers
    below serialize writes to standard output and are safe to share across threads.

    An *unbound* logger is a proxy that borrows its configuration from the global
    configuration set by :func:`rtm.log.configure`. Once a logger is bound by calling
    :meth:`structlog.BoundLoggerBase.bind`, the global configuration is copied into the
    logger's local state and frozen.
"""

import functools
import logging
import typing
from typing import Any, Callable, Literal, MutableMapping, NoReturn, Union

import orjson as json
import structlog
import structlog.processors
from structlog.stdlib import BoundLogger as Logger

from .exception import RTMBaseException

__all__ = [
    'LEVELS',
    'Logger',
    'configure',
    'get_level_num',
    'get_logger',
    'get_null_logger',
]


Event = MutableMapping[str, Any]
ProcessorReturnType = Union[Event, str, bytes]
Processor = Callable[[Any, str, Event], ProcessorReturnType]
LEVELS: list[str] = ['debug', 'info', 'warning', 'error', 'critical']
"""Log severity levels, in ascending order of severity.

============ ================================= =========================================
Level        Description                       Example
============ ================================= =========================================
``debug``    Frequent, low-level tracing.      A frame is written to the wire.
``info``     Normal operation (default level). The socket connects.
``warning``  Unusual or anomalous events.      A frame is dropped while disconnected.
``error``    Failure mode.                     A handler raises an exception.
``critical`` Cannot continue running.          The route registry cannot be built.
============ ================================= =========================================
"""


def drop(_logger: Logger, _method: str, _event: Event, /) -> NoReturn:
    """A simple :mod:`structlog` processor to drop all events."""
    raise structlog.DropEvent


def get_logger(*factory_args: Any, **context: Any) -> Logger:
    """Get an unbound logger.

    Parameters:
        factory_args: Positional arguments passed to the logger factory.
        context: Contextual variables added to every event produced by this logger.
    """
    logger = structlog.get_logger(*factory_args, **context, wrapper_class=Logger)
    return typing.cast(Logger, logger)


def get_null_logger() -> Logger:
    """Get a logger that drops all events unconditionally.

    Useful for tests and for objects that emit unimportant or noisy log events.
    """
    return get_logger(processors=[drop])


@functools.lru_cache(maxsize=16)
def get_level_num(level_name: str, /, *, default: int = logging.DEBUG) -> int:
    """Translate a :mod:`logging` level name into its numeric value.

    Parameters:
        level_name: A case-insensitive name, such as ``'DEBUG'``.
        default: The numeric level to return if the name is invalid.

    Example:
        >>> get_level_num('INFO')
        20
        >>> assert get_level_num('DNE') == logging.DEBUG == 10
    """
    level = getattr(logging, level_name.upper(), None)
    return level if isinstance(level, int) else default


def _filter_by_level(level: str, /) -> Processor:
    """Build a :mod:`structlog` processor to filter events by log level (severity)."""
    min_level = get_level_num(level)

    def processor(
        _logger: Logger,
        method: str,
        event: ProcessorReturnType,
        /,
    ) -> ProcessorReturnType:
        if get_level_num(method) < min_level:
            raise structlog.DropEvent
        return event

    return processor


def _add_exc_context(_logger: Logger, _method: str, event: Event, /) -> Event:
    """A processor to add the context of a :class:`RTMBaseException` to the event.

    When the keys of the exception context clash with those of the event, the event's
    entries take priority.
    """
    exception = event.get('exc_info')
    if isinstance(exception, RTMBaseException):
        event = exception.context | event
    return event


def configure(
    *,
    fmt: Literal['json', 'pretty'] = 'json',
    level: str = 'INFO',
) -> None:
    """Configure :mod:`structlog` with the desired log format and filtering.

    Parameters:
        fmt: The format of events written to standard output.
        level: The minimum log level (inclusive) that should be processed. Severities
            are compared using :func:`rtm.log.get_level_num`.

    For development, we recommend the ``'pretty'`` log format, which is human-readable
    and renders exception tracebacks but cannot be parsed. In production, we recommend
    the ``'json'`` format, which produces events in `jsonlines
    <https://jsonlines.org/>`_ format:

    .. code-block:: json

        {"event":"Socket connected","level":"info","timestamp":"2021-06-29T21:04:15Z"}
    """
    logging.captureWarnings(True)
    renderers: list[Processor] = []
    logger_factory: Callable[..., Union[structlog.PrintLogger, structlog.BytesLogger]]
    if fmt == 'pretty':
        renderers.append(structlog.processors.ExceptionPrettyPrinter())
        renderers.append(structlog.dev.ConsoleRenderer(pad_event=40))
        logger_factory = structlog.PrintLoggerFactory()
    else:
        renderers.append(structlog.processors.JSONRenderer(serializer=json.dumps))
        logger_factory = structlog.BytesLoggerFactory()

    structlog.configure(
        cache_logger_on_first_use=True,
        wrapper_class=Logger,
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _filter_by_level(level),
            _add_exc_context,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt='iso'),
            *renderers,
        ],
        logger_factory=logger_factory,
    )
