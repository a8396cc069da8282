"""Route keys, the process-wide route registry, and per-socket handler tables.

A *route* is a ``(type, subtype)`` pair. Message schemas declare the routes they
describe with the :func:`route` class decorator:

>>> from dataclasses import dataclass
>>> @route('message', 'bot_message')
... @dataclass
... class BotMessage(Message):
...     bot_id: str = ''
>>> get_routes(BotMessage)
(RouteKey(type='message', subtype='bot_message'),)

A :class:`RouteRegistry` maps each route to exactly one schema and is used to decode
inbound frames. A :class:`HandlerTable` maps each route to an ordered list of callbacks
(multicast): every callback bound to a route runs, in registration order, for every
matching frame.
"""

import collections.abc
import enum
import inspect
import threading
import typing
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Iterator, NamedTuple, Optional, TypeVar, Union

from .envelope import Message
from .exception import RouteConflictError, RoutingError

__all__ = [
    'HandlerEntry',
    'HandlerTable',
    'Multicast',
    'NULL_SUBTYPE',
    'RouteKey',
    'RouteRegistry',
    'get_routes',
    'get_schema',
    'route',
]


class _NullSubtype(enum.Enum):
    NULL = 'null'

    def __repr__(self, /) -> str:
        return 'NULL_SUBTYPE'

    def __str__(self, /) -> str:
        return 'null'


NULL_SUBTYPE = _NullSubtype.NULL
"""Stands in for "no subtype". Never equal to any subtype string, including ``'null'``."""

Subtype = Union[str, _NullSubtype]
SchemaType = type[Message]
MessageCallback = Callable[[Any], Any]
SchemaVar = TypeVar('SchemaVar', bound=SchemaType)


class RouteKey(NamedTuple):
    """A ``(type, subtype)`` pair identifying a route."""

    type: Optional[str]
    subtype: Subtype = NULL_SUBTYPE

    @classmethod
    def of(cls, msg_type: Optional[str], subtype: Optional[str] = None) -> 'RouteKey':
        """Build a key, translating a missing subtype into :data:`NULL_SUBTYPE`.

        Example:
            >>> RouteKey.of('hello') == RouteKey('hello', NULL_SUBTYPE)
            True
            >>> RouteKey.of('message', 'null') == RouteKey.of('message')
            False
        """
        return cls(msg_type, NULL_SUBTYPE if subtype is None else subtype)

    @property
    def wire_subtype(self, /) -> Optional[str]:
        """The subtype as it appears on the wire (``None`` for no subtype)."""
        return None if self.subtype is NULL_SUBTYPE else typing.cast(str, self.subtype)

    def __str__(self, /) -> str:
        return f'{self.type} - {self.subtype}'


def route(msg_type: str, subtype: Optional[str] = None) -> Callable[[SchemaVar], SchemaVar]:
    """Class decorator declaring a route a message schema describes.

    The decorator may be stacked to declare several routes (for example, to match
    multiple subtypes with one schema). Routes are listed in declaration order (top to
    bottom) and are not inherited by subclasses.

    Parameters:
        msg_type: The route type.
        subtype: The route subtype, or ``None`` for frames without a subtype.
    """
    key = RouteKey.of(msg_type, subtype)

    def decorator(schema: SchemaVar) -> SchemaVar:
        # Decorators apply bottom-up, so prepend to keep declaration order.
        setattr(schema, '__routes__', (key, *get_routes(schema)))
        return schema

    return decorator


def get_routes(schema: type) -> tuple[RouteKey, ...]:
    """The routes a schema declares itself (not those of its base classes)."""
    return tuple(vars(schema).get('__routes__', ()))


def get_schema(callback: Callable[..., Any]) -> Optional[SchemaType]:
    """Infer the message schema a callback accepts.

    A callback qualifies if it takes exactly one parameter annotated with a
    :class:`Message` subclass.

    Returns:
        The annotated schema, or ``None`` if the callback does not qualify.
    """
    try:
        parameters = list(inspect.signature(callback).parameters.values())
    except (TypeError, ValueError):
        return None
    if len(parameters) != 1:
        return None
    try:
        annotation = typing.get_type_hints(callback).get(parameters[0].name)
    except (NameError, TypeError):
        annotation = parameters[0].annotation
    if inspect.isclass(annotation) and issubclass(annotation, Message):
        return typing.cast(SchemaType, annotation)
    return None


class RouteRegistry(collections.abc.Mapping):  # type: ignore[type-arg]
    """A read-only mapping from routes to the schemas used to decode them.

    Build one with :meth:`RouteRegistry.build` from a fixed list of schemas. The
    registry is frozen afterwards and can be shared between sockets.
    """

    def __init__(self, /) -> None:
        self._schemas: dict[RouteKey, SchemaType] = {}
        self._frozen = False

    def register(self, key: RouteKey, schema: SchemaType) -> None:
        """Map a route to a schema.

        Raises:
            RouteConflictError: If the route is already mapped.
            RoutingError: If the registry is frozen.
        """
        if self._frozen:
            raise RoutingError('route registry is frozen', type=key.type, subtype=str(key.subtype))
        existing = self._schemas.get(key)
        if existing is not None:
            raise RouteConflictError(
                'Cannot have two message schemas with the same type and subtype',
                type=key.type,
                subtype=str(key.subtype),
                schemas=[existing.__qualname__, schema.__qualname__],
            )
        self._schemas[key] = schema

    def freeze(self, /) -> 'RouteRegistry':
        self._frozen = True
        return self

    @classmethod
    def build(cls, schemas: Iterable[SchemaType]) -> 'RouteRegistry':
        """Build a frozen registry from every route the given schemas declare.

        Raises:
            RouteConflictError: If two schemas (or one schema twice) declare the same route.
        """
        registry = cls()
        for schema in schemas:
            for key in get_routes(schema):
                registry.register(key, schema)
        return registry.freeze()

    def lookup(self, key: RouteKey) -> Optional[SchemaType]:
        return self._schemas.get(key)

    def __getitem__(self, key: RouteKey) -> SchemaType:
        return self._schemas[key]

    def __iter__(self, /) -> Iterator[RouteKey]:
        return iter(self._schemas)

    def __len__(self, /) -> int:
        return len(self._schemas)


CallbackType = TypeVar('CallbackType', bound=Callable[..., Any])


class Multicast(Generic[CallbackType]):
    """An ordered, thread-safe list of callbacks.

    Adding appends; removing drops the first equal callback only, so a callback added
    twice must be removed twice. Calling the multicast invokes every callback in order
    and stops at the first exception.
    """

    def __init__(self, /) -> None:
        self._callbacks: list[CallbackType] = []
        self._lock = threading.Lock()

    def add(self, callback: CallbackType) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def remove(self, callback: CallbackType) -> bool:
        """Remove the first matching callback. Returns whether one was removed."""
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return False
            return True

    def __iadd__(self, callback: CallbackType) -> 'Multicast[CallbackType]':
        self.add(callback)
        return self

    def __isub__(self, callback: CallbackType) -> 'Multicast[CallbackType]':
        self.remove(callback)
        return self

    def __iter__(self, /) -> Iterator[CallbackType]:
        with self._lock:
            return iter(list(self._callbacks))

    def __len__(self, /) -> int:
        with self._lock:
            return len(self._callbacks)

    def __call__(self, /, *args: Any) -> None:
        for callback in self:
            callback(*args)


@dataclass(frozen=True)
class HandlerEntry:
    """A callback bound to a route, with the schema it expects."""

    callback: MessageCallback
    schema: SchemaType


class HandlerTable:
    """A per-socket mapping from routes to ordered callback lists.

    All methods are thread-safe. :meth:`lookup` returns a snapshot, so callbacks bound
    or unbound during dispatch take effect on the next frame.
    """

    def __init__(self, /) -> None:
        self._routes: dict[RouteKey, list[HandlerEntry]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_target(cls, target: Any) -> 'HandlerTable':
        """Build a table from a routing target's methods.

        Every method taking exactly one parameter annotated with a :class:`Message`
        subclass is bound under each route that schema declares. Methods are visited in
        name order, which determines their order within a route.
        """
        table = cls()
        # Use the class to avoid evaluating properties on the target.
        funcs = inspect.getmembers(type(target), inspect.isfunction)
        for attr, _func in funcs:
            if attr.startswith('__'):
                continue
            method = getattr(target, attr)
            schema = get_schema(method)
            if schema is not None:
                for key in get_routes(schema):
                    table.add(key, method, schema)
        return table

    def add(self, key: RouteKey, callback: MessageCallback, schema: SchemaType) -> None:
        """Bind one callback to one route."""
        with self._lock:
            self._routes.setdefault(key, []).append(HandlerEntry(callback, schema))

    def _resolve(
        self,
        callback: MessageCallback,
        schema: Optional[SchemaType],
    ) -> tuple[SchemaType, tuple[RouteKey, ...]]:
        schema = schema or get_schema(callback)
        if schema is None:
            raise RoutingError(
                'callback must take one parameter annotated with a message schema',
                callback=getattr(callback, '__qualname__', repr(callback)),
            )
        keys = get_routes(schema)
        if not keys:
            raise RoutingError('message schema declares no route', schema=schema.__qualname__)
        return schema, keys

    def bind(
        self,
        callback: MessageCallback,
        schema: Optional[SchemaType] = None,
    ) -> tuple[RouteKey, ...]:
        """Bind a callback to every route its schema declares.

        Parameters:
            callback: A unary callable accepting a decoded message.
            schema: The message schema. Inferred from the callback's annotation if absent.

        Returns:
            The routes the callback was bound to.

        Raises:
            RoutingError: If the schema cannot be inferred or declares no route.
        """
        schema, keys = self._resolve(callback, schema)
        for key in keys:
            self.add(key, callback, schema)
        return keys

    def unbind(self, callback: MessageCallback, schema: Optional[SchemaType] = None) -> int:
        """Remove one matching binding of a callback from every route its schema declares.

        Other callbacks on the same routes are left intact.

        Returns:
            The number of bindings removed.
        """
        _, keys = self._resolve(callback, schema)
        removed = 0
        with self._lock:
            for key in keys:
                entries = self._routes.get(key, [])
                for i, entry in enumerate(entries):
                    if entry.callback == callback:
                        del entries[i]
                        removed += 1
                        break
                if key in self._routes and not entries:
                    del self._routes[key]
        return removed

    def lookup(self, key: RouteKey) -> list[HandlerEntry]:
        with self._lock:
            return list(self._routes.get(key, []))

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return bool(self._routes.get(key))  # type: ignore[call-overload]

    def __len__(self, /) -> int:
        with self._lock:
            return len(self._routes)
