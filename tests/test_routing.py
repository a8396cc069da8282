from dataclasses import dataclass

import pytest

from rtm import log
from rtm.exception import RouteConflictError, RoutingError
from rtm.messages import REGISTRY, SCHEMAS, BotMessage, Hello, Message, MessageEdit, NewMessage
from rtm.routing import (
    NULL_SUBTYPE,
    HandlerTable,
    Multicast,
    RouteKey,
    RouteRegistry,
    get_routes,
    get_schema,
    route,
)


@route('reaction_added')
@dataclass
class ReactionAdded(Message):
    reaction: str = ''


@route('reaction_added')
@dataclass
class DuplicateReaction(Message):
    pass


@dataclass
class Unrouted(Message):
    pass


class Target:
    def __init__(self):
        self.calls = []

    def on_hello(self, message: Hello):
        self.calls.append(('hello', message))

    def on_edit(self, message: MessageEdit):
        self.calls.append(('edit', message))

    def on_message_a(self, message: NewMessage):
        self.calls.append(('a', message))

    def on_message_b(self, message: NewMessage):
        self.calls.append(('b', message))

    def two_params(self, message: NewMessage, other: int):
        pass

    def unannotated(self, message):
        pass

    def unrouted(self, message: Unrouted):
        pass

    @property
    def explode(self):
        raise AssertionError('properties must not be evaluated')


@pytest.fixture(autouse=True)
def logger():
    log.configure()


def test_null_subtype():
    assert RouteKey.of('message') == RouteKey('message', NULL_SUBTYPE)
    assert RouteKey.of('message', 'null') != RouteKey.of('message')
    assert NULL_SUBTYPE != 'null'
    assert RouteKey.of('message').wire_subtype is None
    assert RouteKey.of('message', 'bot_message').wire_subtype == 'bot_message'
    assert str(RouteKey.of('message')) == 'message - null'


def test_routes_declared():
    assert get_routes(NewMessage) == (RouteKey.of('message'),)
    assert get_routes(BotMessage) == (RouteKey.of('message', 'bot_message'),)
    assert get_routes(MessageEdit) == (
        RouteKey.of('message', 'message_changed'),
        RouteKey.of('message', 'message_replied'),
    )
    assert get_routes(Message) == ()
    assert get_routes(Unrouted) == ()


def test_registry():
    assert REGISTRY.lookup(RouteKey.of('message')) is NewMessage
    assert REGISTRY[RouteKey.of('message', 'message_replied')] is MessageEdit
    assert REGISTRY.lookup(RouteKey.of('message', 'unknown')) is None
    assert len(REGISTRY) == sum(len(get_routes(schema)) for schema in SCHEMAS)


def test_registry_conflict():
    with pytest.raises(RouteConflictError) as excinfo:
        RouteRegistry.build([ReactionAdded, DuplicateReaction])
    assert excinfo.value.context['type'] == 'reaction_added'
    with pytest.raises(RouteConflictError):
        RouteRegistry.build([Hello, Hello])


def test_registry_frozen():
    registry = RouteRegistry.build([ReactionAdded])
    with pytest.raises(RoutingError):
        registry.register(RouteKey.of('other'), Hello)


def test_get_schema():
    target = Target()
    assert get_schema(target.on_hello) is Hello
    assert get_schema(target.two_params) is None
    assert get_schema(target.unannotated) is None
    assert get_schema(lambda message: None) is None
    assert get_schema(print) is None


def test_from_target():
    table = HandlerTable.from_target(Target())
    assert RouteKey.of('hello') in table
    assert RouteKey.of('message', 'message_changed') in table
    assert RouteKey.of('message', 'message_replied') in table
    entries = table.lookup(RouteKey.of('message'))
    assert [entry.callback.__name__ for entry in entries] == ['on_message_a', 'on_message_b']
    assert all(entry.schema is NewMessage for entry in entries)
    assert RouteKey.of('message', 'bot_message') not in table
    assert len(table) == 4


def test_bind_unbind():
    table = HandlerTable()
    calls = []
    first = lambda message: calls.append(1)
    second = lambda message: calls.append(2)
    assert table.bind(first, NewMessage) == (RouteKey.of('message'),)
    table.bind(second, NewMessage)
    table.bind(first, NewMessage)
    for entry in table.lookup(RouteKey.of('message')):
        entry.callback(NewMessage())
    assert calls == [1, 2, 1]
    assert table.unbind(first, NewMessage) == 1
    calls.clear()
    for entry in table.lookup(RouteKey.of('message')):
        entry.callback(NewMessage())
    assert calls == [2, 1]
    assert table.unbind(second, NewMessage) == 1
    assert table.unbind(second, NewMessage) == 0
    assert table.unbind(first, NewMessage) == 1
    assert RouteKey.of('message') not in table


def test_bind_inferred_schema():
    table = HandlerTable()
    target = Target()
    assert table.bind(target.on_edit) == get_routes(MessageEdit)
    assert table.unbind(target.on_edit) == 2
    assert len(table) == 0


def test_bind_errors():
    table = HandlerTable()
    with pytest.raises(RoutingError):
        table.bind(lambda message: None)
    with pytest.raises(RoutingError):
        table.bind(Target().unrouted)
    with pytest.raises(RoutingError):
        table.unbind(lambda message: None, Unrouted)


def test_lookup_snapshot():
    table = HandlerTable()
    callback = lambda message: None
    table.bind(callback, Hello)
    entries = table.lookup(RouteKey.of('hello'))
    table.unbind(callback, Hello)
    assert len(entries) == 1
    assert table.lookup(RouteKey.of('hello')) == []


def test_multicast():
    calls = []
    multicast = Multicast()
    first = lambda value: calls.append(('first', value))
    second = lambda value: calls.append(('second', value))
    multicast += first
    multicast += second
    multicast += first
    assert len(multicast) == 3
    multicast(1)
    assert calls == [('first', 1), ('second', 1), ('first', 1)]
    multicast -= first
    calls.clear()
    multicast(2)
    assert calls == [('second', 2), ('first', 2)]
    assert not multicast.remove(print)
