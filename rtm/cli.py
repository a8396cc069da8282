"""Command-line interface and configuration."""

import contextlib
import functools
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

import click
import orjson as json
import yaml

import rtm

from . import log
from .socket import SocketConfig
from .tools import listener, sender
from .transport import ConnectionDescriptor

__all__ = [
    'cli',
    'load_yaml',
    'make_converter',
    'make_multipart_parser',
]


ParameterCallback = Callable[[click.Context, click.Parameter, Any], Any]


@functools.lru_cache(maxsize=64)
def make_converter(convert: Callable[[Any], Any]) -> ParameterCallback:
    """Make a :mod:`click` callback that applies a conversion to each option value.

    Works with options provided multiple times (where ``multiple=True``).

    Arguments:
        convert: A unary conversion callable. The argument/return types are arbitrary
            and need not be the same.

    Returns:
        A :mod:`click`-compatible callback.
    """

    def callback(_ctx: click.Context, _param: click.Parameter, value: Any, /) -> Any:
        try:
            if isinstance(value, (tuple, list)):
                return tuple(convert(element) for element in value)
            return convert(value)
        except Exception as exc:
            raise click.BadParameter(str(exc)) from exc

    return callback


def make_multipart_parser(
    *converters: Callable[[str], Any],
    delimeter: str = ':',
    match_exact: bool = True,
) -> ParameterCallback:
    """Make a :mod:`click` callback that parses a tuple-like multipart option.

    Examples:
        >>> make_multipart_parser()
        Traceback (most recent call last):
          ...
        ValueError: not enough converters
        >>> convert = make_multipart_parser(str, json.loads, delimeter='=')
        >>> convert(None, None, 'channel')
        Traceback (most recent call last):
          ...
        click.exceptions.BadParameter: not enough or too many parts provided
        >>> convert(None, None, ('channel="C1"', 'count=2'))
        (('channel', 'C1'), ('count', 2))
    """
    if not converters:
        raise ValueError('not enough converters')

    def convert(element: str) -> Iterator[Any]:
        components = element.split(delimeter, maxsplit=len(converters) - 1)
        if match_exact and len(components) != len(converters):
            raise click.BadParameter('not enough or too many parts provided')
        for i, (converter, component) in enumerate(zip(converters, components)):
            try:
                yield converter(component)
            except Exception as exc:
                raise click.BadParameter(f'failed to parse part {i+1}: {exc}') from exc

    return make_converter(lambda value: tuple(convert(value)))


def check_positive(value: float) -> float:
    """Check whether the provided value is strictly positive.

    Examples:
        >>> check_positive(0.01)
        0.01
        >>> check_positive(0)
        Traceback (most recent call last):
          ...
        ValueError: '0' should be a positive number
    """
    if value <= 0:
        raise ValueError(f"'{value}' should be a positive number")
    return value


def check_timeout(value: float) -> Optional[float]:
    """Check a request timeout, where zero disables expiry.

    Examples:
        >>> check_timeout(1.5)
        1.5
        >>> check_timeout(0) is None
        True
        >>> check_timeout(-1)
        Traceback (most recent call last):
          ...
        ValueError: '-1' should be a nonnegative number
    """
    if value < 0:
        raise ValueError(f"'{value}' should be a nonnegative number")
    return value or None


def load_yaml(path: Union[str, Path]) -> Any:
    """Read and parse a YAML file.

    Arguments:
        path: A path to a valid regular text file.

    Examples:
        >>> import tempfile
        >>> with tempfile.NamedTemporaryFile(mode='w') as tmp:
        ...     print('log_level: debug', file=tmp)
        ...     _ = tmp.seek(0)
        ...     load_yaml(tmp.name)
        {'log_level': 'debug'}
        >>> with tempfile.NamedTemporaryFile(mode='w') as tmp:
        ...     print(':', file=tmp)
        ...     _ = tmp.seek(0)
        ...     load_yaml(tmp.name)
        Traceback (most recent call last):
          ...
        ValueError: Unable to parse YAML (...): line 1, column 1
    """
    try:
        with Path(path).open() as stream:
            return yaml.load(stream, Loader=yaml.SafeLoader)
    except yaml.YAMLError as exc:
        message = f'Unable to parse YAML ({path})'
        mark = getattr(exc, 'problem_mark', None)
        if mark:  # pragma: no cover
            message += f': line {mark.line + 1}, column {mark.column + 1}'
        raise ValueError(message) from exc


def load_config(ctx: click.Context, _param: click.Parameter, value: Optional[str]) -> None:
    """Use a YAML file's mapping as the default value of every option."""
    if not value:
        return
    try:
        config = load_yaml(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    if not isinstance(config, dict):
        raise click.BadParameter('configuration file must contain a mapping')
    ctx.default_map = {**(ctx.default_map or {}), **config}


def make_descriptor(options: dict[str, Any]) -> ConnectionDescriptor:
    return ConnectionDescriptor(
        options['url'],
        svn_rev=options['svn_rev'],
        params=dict(options['param']),
    )


def make_config(options: dict[str, Any]) -> SocketConfig:
    return SocketConfig(
        dispatch_workers=options['dispatch_workers'],
        request_timeout=options['request_timeout'],
        sweep_interval=options['sweep_interval'],
        open_timeout=options['open_timeout'],
    )


def connection_options(command: Callable[..., Any]) -> Callable[..., Any]:
    """Add the options describing where to connect."""
    decorators = [
        click.argument('url'),
        click.option('--svn-rev', help='Server revision handed out by the login step.'),
        click.option(
            '--param',
            callback=make_multipart_parser(str, str, delimeter='='),
            metavar='KEY=VALUE',
            multiple=True,
            help='Extra query parameter for the connect URL.',
        ),
    ]
    for decorator in reversed(decorators):
        command = decorator(command)
    return command


@click.group(
    context_settings=dict(
        auto_envvar_prefix='RTM',
        max_content_width=100,
        show_default=True,
    ),
)
@click.option(
    '--config',
    type=click.Path(dir_okay=False, exists=True),
    callback=load_config,
    is_eager=True,
    expose_value=False,
    help='YAML file with default option values.',
)
@click.option(
    '--log-level',
    type=click.Choice(log.LEVELS, case_sensitive=False),
    default='info',
    help='Minimum severity of log records displayed.',
)
@click.option(
    '--log-format',
    type=click.Choice(['json', 'pretty'], case_sensitive=False),
    default='json',
    help='Format of records printed to standard output.',
)
@click.option(
    '--dispatch-workers',
    callback=make_converter(check_positive),
    type=int,
    default=8,
    help='Number of threads for sending frames and running handlers.',
)
@click.option(
    '--request-timeout',
    callback=make_converter(check_timeout),
    type=float,
    default=30,
    help='Seconds to wait for a reply before discarding a request (0 to wait forever).',
)
@click.option(
    '--sweep-interval',
    callback=make_converter(check_positive),
    type=float,
    default=1,
    help='Seconds between scans for expired requests.',
)
@click.option(
    '--open-timeout',
    callback=make_converter(check_positive),
    type=float,
    default=10,
    help='Seconds to wait for the connection to open.',
)
@click.version_option(version=rtm.__version__, message='%(version)s')
@click.pass_context
def cli(ctx: click.Context, **options: Any) -> None:
    """Client for JSON message-envelope protocols over a persistent websocket.

    Outbound requests are correlated with their replies by ID. Unsolicited events are
    routed to handlers by their type and subtype.
    """
    ctx.ensure_object(dict).update(options)
    log.configure(fmt=options['log_format'], level=options['log_level'])


@cli.command()
@connection_options
@click.pass_context
def listen(ctx: click.Context, **options: Any) -> None:
    """Connect and log every inbound event until interrupted.

    \b
        $ rtm --log-format pretty listen wss://example.com/websocket
    """
    ctx.obj.update(options)
    with contextlib.suppress(KeyboardInterrupt):
        listener.main(make_descriptor(ctx.obj), make_config(ctx.obj))


@cli.command()
@connection_options
@click.argument('msg_type', metavar='TYPE')
@click.option('--subtype', help='Message subtype.')
@click.option(
    '--field',
    callback=make_multipart_parser(str, json.loads, delimeter='='),
    metavar='KEY=JSON',
    multiple=True,
    help='Payload field, with the value in JSON format.',
)
@click.option(
    '--wait',
    callback=make_converter(check_positive),
    type=float,
    default=5,
    help='Seconds to wait for a reply.',
)
@click.pass_context
def send(ctx: click.Context, **options: Any) -> None:
    """Send one message and log the reply.

    \b
        $ rtm send wss://example.com/websocket typing --field 'channel="C1"'
    """
    ctx.obj.update(options)
    replied = sender.main(
        make_descriptor(ctx.obj),
        make_config(ctx.obj),
        options['msg_type'],
        subtype=options['subtype'],
        fields=dict(options['field']),
        wait=options['wait'],
    )
    if not replied:
        ctx.exit(1)
