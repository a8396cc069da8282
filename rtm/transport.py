"""Duplex text-frame transports.

A :class:`Transport` carries discrete text frames over one persistent connection. The
socket only needs a handful of operations from it: open, close, send a frame, and
deliver inbound frames (in arrival order) to a callback. :class:`WebSocketTransport`
implements these with :mod:`websockets`' threaded client.

State Diagram::

    start -> open [-> start_receiving] [-> send]* -> close -> end
"""

import abc
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets.exceptions
from websockets.protocol import State as ProtocolState
from websockets.sync.client import ClientConnection, connect

from .exception import TransportError

# isort: unique-list
__all__ = ['ConnectionDescriptor', 'Transport', 'TransportFactory', 'WebSocketTransport']


@dataclass
class ConnectionDescriptor:
    """Where to connect and the session parameters to connect with.

    Parameters:
        url: The address handed out by the login step.
        svn_rev: The server revision from the login step. When present, the boot-data
            login markers are appended as well.
        params: Extra query parameters.

    Example:
        >>> ConnectionDescriptor('wss://example.com/ws', params={'a': '1'}).connect_url()
        'wss://example.com/ws?a=1'
        >>> ConnectionDescriptor('wss://example.com/ws', svn_rev='abc').connect_url(now=10)
        'wss://example.com/ws?svn_rev=abc&login_with_boot_data-0-10&on_login-0-10&connect-1-10'
    """

    url: str
    svn_rev: Optional[str] = None
    params: Mapping[str, str] = field(default_factory=dict)

    def connect_url(self, /, *, now: Optional[float] = None) -> str:
        components = urlsplit(self.url)
        parts = [components.query] if components.query else []
        if self.svn_rev is not None:
            timestamp = str(time.time() if now is None else now)
            parts.append(urlencode({'svn_rev': self.svn_rev}))
            parts.extend(
                f'{marker}-{timestamp}'
                for marker in ('login_with_boot_data-0', 'on_login-0', 'connect-1')
            )
        if self.params:
            parts.append(urlencode(self.params))
        return urlunsplit(components._replace(query='&'.join(parts)))


def _ignore(*_args: Any) -> None:
    pass


@dataclass  # type: ignore[misc]
class Transport(abc.ABC):  # https://github.com/python/mypy/issues/5374
    """A transceiver of text frames over one connection.

    Parameters:
        url: The address to connect to.
        open_timeout: Maximum duration (in seconds) to wait for :meth:`open`.
        on_error: Called with a :class:`TransportError` when the connection fails after
            opening.
        on_close: Called once the connection is closed, by either side.
    """

    url: str
    open_timeout: float = 10
    on_error: Callable[[Exception], None] = field(default=_ignore, repr=False)
    on_close: Callable[[], None] = field(default=_ignore, repr=False)

    @abc.abstractmethod
    def open(self, /) -> None:
        """Open the connection. Blocks until open.

        Raises:
            TransportError: If the connection cannot be opened.
        """

    @abc.abstractmethod
    def close(self, /) -> None:
        """Close the connection. Idempotent."""

    @abc.abstractmethod
    def send(self, frame: str, /) -> None:
        """Write one frame.

        Raises:
            TransportError: If the connection is not open.
        """

    @abc.abstractmethod
    def start_receiving(self, on_message: Callable[[str], None], /) -> None:
        """Deliver every inbound frame to ``on_message``, one at a time, in arrival order."""

    @property
    @abc.abstractmethod
    def closed(self, /) -> bool:
        """Whether the connection is not open."""


TransportFactory = Callable[..., Transport]


@dataclass
class WebSocketTransport(Transport):
    """A transport over a websocket, using a dedicated reader thread."""

    connection: Optional[ClientConnection] = field(default=None, init=False, repr=False)
    reader: Optional[threading.Thread] = field(default=None, init=False, repr=False)

    def open(self, /) -> None:
        try:
            self.connection = connect(self.url, open_timeout=self.open_timeout)
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as exc:
            raise TransportError('transport failed to open', url=self.url) from exc

    def close(self, /) -> None:
        if self.connection:
            self.connection.close()
        if self.reader and self.reader is not threading.current_thread():
            self.reader.join(self.open_timeout)

    def send(self, frame: str, /) -> None:
        if not self.connection:
            raise TransportError('transport is not yet open')
        try:
            self.connection.send(frame)
        except websockets.exceptions.ConnectionClosed as exc:
            raise TransportError('transport is closed') from exc

    def start_receiving(self, on_message: Callable[[str], None], /) -> None:
        if not self.connection:
            raise TransportError('transport is not yet open')
        self.reader = threading.Thread(
            target=self._recv_forever,
            args=(self.connection, on_message),
            name='rtm-recv',
            daemon=True,
        )
        self.reader.start()

    def _recv_forever(
        self,
        connection: ClientConnection,
        on_message: Callable[[str], None],
    ) -> None:
        """Receive frames until the connection closes."""
        try:
            for frame in connection:
                if isinstance(frame, bytes):
                    frame = frame.decode(errors='replace')
                on_message(frame)
        except websockets.exceptions.ConnectionClosedError as exc:
            self.on_error(TransportError('transport connection lost', reason=str(exc)))
        finally:
            self.on_close()

    @property
    def closed(self, /) -> bool:
        if not self.connection:
            return True
        return self.connection.protocol.state is not ProtocolState.OPEN
