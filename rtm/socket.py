"""The RTM socket: request correlation and message routing over one connection.

An :class:`RTMSocket` owns a transport, a :class:`rtm.routing.HandlerTable`, a
:class:`RequestTracker`, and a send pipeline:

* **Sending.** :meth:`RTMSocket.send` assigns the message an ID, resolves its route,
  encodes it, and pushes the frame onto an unbounded queue. At most one drain worker
  is active per socket at any time, so frames reach the wire in the order they were
  sent and are never interleaved.
* **Receiving.** The transport hands each inbound frame to the socket in arrival
  order. The socket decodes the envelope immediately, then classifies and dispatches
  the frame on a worker thread: a frame whose ``reply_to`` matches a pending request
  goes to that request's callback (once), and any other frame goes to every callback
  bound to its ``(type, subtype)`` route.

Failures after construction are reported only through :class:`SocketEvents`. Nothing
raised by a handler propagates into the transport.

Example::

    class Bot:
        def on_message(self, message: NewMessage) -> None:
            ...

    with RTMSocket(ConnectionDescriptor(url), Bot()) as socket:
        socket.send(Ping(), lambda reply: print(reply.ok))
"""

import enum
import functools
import itertools
import math
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from . import codec, log
from .envelope import Message
from .exception import (
    DecodeError,
    NoRouteError,
    RequestTimeoutError,
    RoutingError,
    TransportError,
)
from .messages import REGISTRY
from .routing import (
    HandlerTable,
    MessageCallback,
    Multicast,
    RouteKey,
    RouteRegistry,
    SchemaType,
    get_routes,
    get_schema,
)
from .transport import ConnectionDescriptor, TransportFactory, WebSocketTransport

# isort: unique-list
__all__ = [
    'PendingRequest',
    'RTMSocket',
    'RequestTracker',
    'SocketConfig',
    'SocketEvents',
    'State',
]


class State(enum.Enum):
    """Socket lifecycle states. A socket only moves forward through these."""

    CONNECTING = enum.auto()
    OPEN = enum.auto()
    CLOSED = enum.auto()


@dataclass
class SocketConfig:
    """Tunable socket parameters.

    Parameters:
        dispatch_workers: Number of threads running the drain worker and handlers.
        request_timeout: Default seconds to wait for a reply before the pending request
            is discarded. ``None`` disables the default, so requests only expire if
            sent with an explicit ``timeout``.
        sweep_interval: Seconds between scans for expired requests.
        open_timeout: Seconds to wait for the transport to open.
    """

    dispatch_workers: int = 8
    request_timeout: Optional[float] = 30
    sweep_interval: float = 1
    open_timeout: float = 10

    def __post_init__(self, /) -> None:
        if self.dispatch_workers < 1:
            raise ValueError('dispatch_workers must be a positive integer')
        for name in ('request_timeout', 'sweep_interval', 'open_timeout'):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f'{name} must be a positive number')


@dataclass
class SocketEvents:
    """Listeners for asynchronous failures and closure.

    Attributes:
        error_receiving: Transport failures, including connect failures. Called with a
            :class:`rtm.exception.TransportError`.
        error_deserializing: Inbound frames that could not be decoded. Called with a
            :class:`rtm.exception.DecodeError`.
        error_handling: Handler failures, frames without a route, and expired requests.
        connection_closed: Called without arguments, exactly once per socket.
    """

    error_receiving: Multicast[Callable[[Exception], Any]] = field(default_factory=Multicast)
    error_deserializing: Multicast[Callable[[Exception], Any]] = field(
        default_factory=Multicast,
    )
    error_handling: Multicast[Callable[[Exception], Any]] = field(default_factory=Multicast)
    connection_closed: Multicast[Callable[[], Any]] = field(default_factory=Multicast)


@dataclass
class PendingRequest:
    """A one-shot continuation awaiting a reply.

    Attributes:
        callback: Called with the raw reply frame.
        deadline: A :func:`time.monotonic` timestamp after which the request expires.
    """

    callback: Callable[[str], Any]
    deadline: float = math.inf


@dataclass
class RequestTracker:
    """Correlation IDs and the requests awaiting replies.

    IDs start at 1, increase monotonically, and are never reused. All methods are
    thread-safe.
    """

    requests: dict[int, PendingRequest] = field(default_factory=dict)
    counter: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def generate_id(self, /) -> int:
        # ``next`` on ``itertools.count`` does not release the GIL.
        return next(self.counter)

    def register(self, request_id: int, request: PendingRequest) -> None:
        """Install a pending request.

        Raises:
            ValueError: If the ID is already pending.
        """
        with self.lock:
            if request_id in self.requests:
                raise ValueError('request ID already exists')
            self.requests[request_id] = request

    def pop(self, request_id: int) -> Optional[PendingRequest]:
        """Remove and return a pending request, so that it is consumed at most once."""
        with self.lock:
            return self.requests.pop(request_id, None)

    def expire(self, /, now: Optional[float] = None) -> list[int]:
        """Remove every request whose deadline has passed and return their IDs."""
        now = time.monotonic() if now is None else now
        with self.lock:
            expired = [
                request_id
                for request_id, request in self.requests.items()
                if request.deadline <= now
            ]
            for request_id in expired:
                del self.requests[request_id]
        return expired

    def clear(self, /) -> int:
        with self.lock:
            count = len(self.requests)
            self.requests.clear()
        return count

    def __contains__(self, request_id: object) -> bool:
        with self.lock:
            return request_id in self.requests

    def __len__(self, /) -> int:
        with self.lock:
            return len(self.requests)


class RTMSocket:
    """A client endpoint for one persistent connection.

    Construction opens the transport and blocks until it is open. A connect failure is
    reported on :attr:`SocketEvents.error_receiving` rather than raised; the socket is
    then closed for sending, and frames sent to it are dropped. Pass ``events`` with
    listeners already added to observe such failures.

    Parameters:
        descriptor: Where to connect.
        target: An object whose methods are bound as handlers (see
            :meth:`rtm.routing.HandlerTable.from_target`).
        events: Failure and closure listeners.
        transport_factory: Builds the transport from the connect URL and
            ``open_timeout``.
        on_connected: Called after the transport opens, before frames are received.
        registry: Schemas used to decode inbound frames.
        config: Tunable parameters.
        logger: A logger instance.
    """

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        target: Optional[Any] = None,
        /,
        *,
        events: Optional[SocketEvents] = None,
        transport_factory: TransportFactory = WebSocketTransport,
        on_connected: Optional[Callable[[], Any]] = None,
        registry: RouteRegistry = REGISTRY,
        config: Optional[SocketConfig] = None,
        logger: Optional[log.Logger] = None,
    ) -> None:
        self.config = config or SocketConfig()
        self.events = events or SocketEvents()
        self.registry = registry
        self.handlers = HandlerTable.from_target(target) if target is not None else HandlerTable()
        self.requests = RequestTracker()
        self.logger = (logger or log.get_logger()).bind(url=descriptor.url)
        self._state = State.CONNECTING
        self._send_queue: queue.SimpleQueue[str] = queue.SimpleQueue()
        # Both flags are only ever acquired without blocking, so each has one winner.
        self._sending = threading.Lock()
        self._closed = threading.Lock()
        self._stopped = threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.dispatch_workers,
            thread_name_prefix='rtm-worker',
        )
        self.transport = transport_factory(
            descriptor.connect_url(),
            open_timeout=self.config.open_timeout,
        )
        self.transport.on_error = self._handle_transport_error
        self.transport.on_close = self.close
        try:
            self.transport.open()
        except TransportError as exc:
            self._state = State.CLOSED
            self.logger.error('Socket failed to connect', exc_info=exc)
            self._emit(self.events.error_receiving, exc)
            return
        self._state = State.OPEN
        self.logger.info('Socket connected', routes=len(self.handlers))
        if on_connected:
            on_connected()
        self.transport.start_receiving(self._receive)
        # Requests can carry their own deadline even when the default is disabled.
        reaper = threading.Thread(target=self._sweep_forever, name='rtm-reaper', daemon=True)
        reaper.start()

    def __enter__(self, /) -> 'RTMSocket':
        return self

    def __exit__(self, *_exc_info: Any) -> None:
        self.close()

    @property
    def state(self, /) -> State:
        return self._state

    @property
    def connected(self, /) -> bool:
        """Whether frames can currently be written."""
        return self._state is State.OPEN and not self.transport.closed

    def _emit(self, event: Multicast[Callable[..., Any]], /, *args: Any) -> None:
        """Call every listener. A failing listener does not prevent the others."""
        for listener in event:
            try:
                listener(*args)
            except Exception as exc:  # pylint: disable=broad-except; listeners are external
                self.logger.error('Socket event listener failed', exc_info=exc)

    def send(
        self,
        message: Message,
        callback: Optional[Callable[[Any], Any]] = None,
        /,
        *,
        reply_type: Optional[SchemaType] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Queue a message for sending.

        Parameters:
            message: The message. Its ``id``, ``type``, and ``subtype`` are filled in if
                unset. A schema declaring several routes (such as
                :class:`rtm.messages.MessageEdit`) is sent under the first one declared,
                that is, the topmost :func:`rtm.routing.route` decorator.
            callback: Called at most once, on a worker thread, with the decoded reply.
            reply_type: The schema to decode the reply into. Defaults to the callback's
                annotated parameter type, then :class:`rtm.envelope.Message`.
            timeout: Seconds to wait for the reply. Defaults to
                :attr:`SocketConfig.request_timeout`. Pass :data:`math.inf` to wait
                indefinitely.

        Returns:
            The message ID.

        Raises:
            RoutingError: If the message has no type and its schema declares no route.
            TypeError: If a field value cannot be encoded. Nothing is queued or registered.
        """
        if not message.type:
            routes = get_routes(type(message))
            if not routes:
                raise RoutingError(
                    'Cannot send without a proper route',
                    schema=type(message).__qualname__,
                )
            message.type, message.subtype = routes[0].type, routes[0].wire_subtype
        if callback is not None or message.id == 0:
            message.id = self.requests.generate_id()
        frame = codec.encode(message)
        if callback is not None:
            reply_type = reply_type or get_schema(callback) or Message
            if timeout is None:
                timeout = self.config.request_timeout
            deadline = math.inf if timeout is None else time.monotonic() + timeout
            continuation = functools.partial(self._reply, callback, reply_type)
            self.requests.register(message.id, PendingRequest(continuation, deadline))
        self._send_queue.put(frame)
        self._start_draining()
        return message.id

    @staticmethod
    def _reply(callback: Callable[[Any], Any], reply_type: SchemaType, data: str) -> None:
        callback(codec.decode(data, reply_type))

    def bind_callback(
        self,
        callback: MessageCallback,
        schema: Optional[SchemaType] = None,
    ) -> tuple[RouteKey, ...]:
        """Bind a callback to every route of its schema. See :meth:`HandlerTable.bind`."""
        return self.handlers.bind(callback, schema)

    def unbind_callback(self, callback: MessageCallback, schema: Optional[SchemaType] = None) -> int:
        """Remove one binding of a callback. See :meth:`HandlerTable.unbind`."""
        return self.handlers.unbind(callback, schema)

    def _start_draining(self, /) -> None:
        if not self._sending.acquire(blocking=False):
            return
        try:
            self._executor.submit(self._drain)
        except RuntimeError:
            # The executor is shut down once the socket closes.
            self._sending.release()
            self._discard_queue()

    def _drain(self, /) -> None:
        """Write queued frames until the queue is empty.

        After clearing the active flag, the worker checks the queue once more: a frame
        pushed after the last pop but before the flag cleared would otherwise wait for
        the next :meth:`send`.
        """
        while True:
            try:
                self._write_queued()
            finally:
                self._sending.release()
            if self._send_queue.empty() or not self._sending.acquire(blocking=False):
                return

    def _write_queued(self, /) -> None:
        while True:
            try:
                frame = self._send_queue.get_nowait()
            except queue.Empty:
                return
            if not self.connected:
                self.logger.warning('Socket dropped frame while not open')
                continue
            try:
                self.transport.send(frame)
            except Exception as exc:  # pylint: disable=broad-except; reported as an event
                self.logger.warning('Socket failed to send frame', exc_info=exc)
                self._emit(self.events.error_receiving, exc)
            else:
                self.logger.debug('Socket sent frame', size=len(frame))

    def _discard_queue(self, /) -> None:
        discarded = 0
        while True:
            try:
                self._send_queue.get_nowait()
            except queue.Empty:
                break
            discarded += 1
        if discarded:
            self.logger.warning('Socket dropped frames after close', count=discarded)

    def _handle_transport_error(self, exc: Exception) -> None:
        self.logger.error('Socket transport failed', exc_info=exc)
        self._emit(self.events.error_receiving, exc)

    def _receive(self, data: str) -> None:
        """Decode an inbound frame's envelope and schedule its dispatch.

        Called by the transport for each frame, in arrival order.
        """
        self.logger.debug('Socket received frame', size=len(data))
        try:
            obj = codec.loads(data)
            envelope = codec.from_dict(Message, obj)
        except DecodeError as exc:
            self.logger.warning('Socket received undecodable frame', exc_info=exc)
            self._emit(self.events.error_deserializing, exc)
            return
        try:
            future = self._executor.submit(self._handle_message, envelope, data, obj)
        except RuntimeError:
            self.logger.debug('Socket dropped inbound frame after close')
            return
        future.add_done_callback(functools.partial(self._log_failure, envelope))

    def _handle_message(self, envelope: Message, data: str, obj: Any) -> None:
        """Classify a frame as a reply or an event and invoke its callbacks.

        Raises:
            Exception: Whatever a callback or the decoding raised, after it is emitted
                on :attr:`SocketEvents.error_handling`.
        """
        pending = self.requests.pop(envelope.reply_to) if envelope.reply_to else None
        if pending:
            try:
                pending.callback(data)
            except Exception as exc:
                self._emit(self.events.error_handling, exc)
                raise
            return
        try:
            key = RouteKey.of(envelope.type, envelope.subtype)
            entries = self.handlers.lookup(key)
            if not entries:
                error = NoRouteError(
                    f'No valid route for {key}',
                    type=key.type,
                    subtype=str(key.subtype),
                )
                self.logger.warning('Socket has no route for frame', exc_info=error)
                self._emit(self.events.error_handling, error)
                return
            schema = self.registry.lookup(key) or entries[0].schema
            message = codec.decode(data, schema, obj)
            for entry in entries:
                entry.callback(message)
        except Exception as exc:
            self._emit(self.events.error_handling, exc)
            raise

    def _log_failure(self, envelope: Message, future: 'Future[None]') -> None:
        exc = None if future.cancelled() else future.exception()
        if exc is not None:
            self.logger.error(
                'Socket failed to handle message',
                message_id=envelope.id,
                reply_to=envelope.reply_to,
                type=envelope.type,
                subtype=envelope.subtype,
                exc_info=exc,
            )

    def _sweep_forever(self, /) -> None:
        while not self._stopped.wait(self.config.sweep_interval):
            self.expire_requests()

    def expire_requests(self, /, now: Optional[float] = None) -> list[int]:
        """Discard pending requests past their deadline.

        Each expired request is reported on :attr:`SocketEvents.error_handling` with a
        :class:`rtm.exception.RequestTimeoutError`. The reaper thread calls this
        periodically.

        Returns:
            The expired request IDs.
        """
        expired = self.requests.expire(now)
        for request_id in expired:
            error = RequestTimeoutError('Request timed out', request_id=request_id)
            self.logger.warning('Socket request expired', request_id=request_id)
            self._emit(self.events.error_handling, error)
        return expired

    def close(self, /) -> None:
        """Close the transport.

        Safe to call any number of times, from any thread. Only the first call emits
        :attr:`SocketEvents.connection_closed`.
        """
        try:
            self.transport.close()
        except TransportError as exc:
            self.logger.debug('Socket transport failed to close', exc_info=exc)
        if not self._closed.acquire(blocking=False):
            return
        self._state = State.CLOSED
        self._stopped.set()
        self._executor.shutdown(wait=False)
        discarded = self.requests.clear()
        self.logger.info('Socket closed', discarded_requests=discarded)
        self._emit(self.events.connection_closed)
