"""The message schemas this package ships with and the process-wide route registry.

Every schema subclasses :class:`rtm.envelope.Message` and declares its routes with
:func:`rtm.routing.route`. :data:`REGISTRY` is built once, at import, from
:data:`SCHEMAS`; a duplicate route fails the import with
:class:`rtm.exception.RouteConflictError`.
"""

from dataclasses import dataclass
from typing import Any, Optional

from .envelope import Error, Message
from .routing import RouteRegistry, route

__all__ = [
    'BotMessage',
    'ChannelJoined',
    'Error',
    'Hello',
    'Message',
    'MessageDeleted',
    'MessageEdit',
    'NewMessage',
    'Ping',
    'Pong',
    'PresenceChange',
    'REGISTRY',
    'ReconnectUrl',
    'SCHEMAS',
    'Typing',
    'UserTyping',
]


@route('hello')
@dataclass
class Hello(Message):
    """Sent by the server once the connection is established."""


@route('ping')
@dataclass
class Ping(Message):
    time: Optional[int] = None


@route('pong')
@dataclass
class Pong(Message):
    time: Optional[int] = None


@route('typing')
@dataclass
class Typing(Message):
    """Tells the server the user is typing in a channel."""

    channel: Optional[str] = None


@route('user_typing')
@dataclass
class UserTyping(Message):
    channel: Optional[str] = None
    user: Optional[str] = None


@route('presence_change')
@dataclass
class PresenceChange(Message):
    user: Optional[str] = None
    presence: Optional[str] = None


@route('reconnect_url')
@dataclass
class ReconnectUrl(Message):
    url: Optional[str] = None


@route('message')
@dataclass
class NewMessage(Message):
    """A message posted to a channel.

    Attributes:
        channel: The channel ID.
        user: The author's user ID.
        text: The message body.
        ts: The message timestamp, which doubles as its ID within the channel.
        thread_ts: The timestamp of the thread's parent message, if threaded.
        team: The team ID.
    """

    channel: Optional[str] = None
    user: Optional[str] = None
    text: Optional[str] = None
    ts: Optional[str] = None
    thread_ts: Optional[str] = None
    team: Optional[str] = None


@route('message', 'bot_message')
@dataclass
class BotMessage(NewMessage):
    bot_id: Optional[str] = None
    username: Optional[str] = None


@route('message', 'message_changed')
@route('message', 'message_replied')
@dataclass
class MessageEdit(Message):
    """A message was edited or received a threaded reply.

    The server describes both with the same shape: the updated message is nested
    under ``message``.
    """

    channel: Optional[str] = None
    ts: Optional[str] = None
    hidden: Optional[bool] = None
    message: Optional[NewMessage] = None


@route('message', 'message_deleted')
@dataclass
class MessageDeleted(Message):
    channel: Optional[str] = None
    ts: Optional[str] = None
    deleted_ts: Optional[str] = None
    hidden: Optional[bool] = None


@route('channel_joined')
@dataclass
class ChannelJoined(Message):
    channel: Optional[dict[str, Any]] = None


SCHEMAS: tuple[type[Message], ...] = (
    Hello,
    Ping,
    Pong,
    Typing,
    UserTyping,
    PresenceChange,
    ReconnectUrl,
    NewMessage,
    BotMessage,
    MessageEdit,
    MessageDeleted,
    ChannelJoined,
)

REGISTRY: RouteRegistry = RouteRegistry.build(SCHEMAS)
