"""Log every inbound event."""

import threading
from dataclasses import dataclass, field

from .. import codec, log
from ..messages import (
    BotMessage,
    ChannelJoined,
    Hello,
    Message,
    MessageDeleted,
    MessageEdit,
    NewMessage,
    Pong,
    PresenceChange,
    ReconnectUrl,
    UserTyping,
)
from ..socket import RTMSocket, SocketConfig, SocketEvents
from ..transport import ConnectionDescriptor

__all__ = ['Listener', 'main']


@dataclass
class Listener:
    """A routing target with one handler per event schema."""

    logger: log.Logger = field(default_factory=log.get_logger)
    received: int = 0

    def _log(self, message: Message) -> None:
        self.received += 1
        self.logger.info('Received event', **codec.to_dict(message))

    def on_hello(self, message: Hello) -> None:
        self.logger.info('Server said hello')
        self._log(message)

    def on_message(self, message: NewMessage) -> None:
        self._log(message)

    def on_bot_message(self, message: BotMessage) -> None:
        self._log(message)

    def on_message_edit(self, message: MessageEdit) -> None:
        self._log(message)

    def on_message_deleted(self, message: MessageDeleted) -> None:
        self._log(message)

    def on_user_typing(self, message: UserTyping) -> None:
        self._log(message)

    def on_presence_change(self, message: PresenceChange) -> None:
        self._log(message)

    def on_channel_joined(self, message: ChannelJoined) -> None:
        self._log(message)

    def on_pong(self, message: Pong) -> None:
        self._log(message)

    def on_reconnect_url(self, message: ReconnectUrl) -> None:
        self.logger.info('Server offered a reconnect URL', reconnect_url=message.url)


def make_events(logger: log.Logger) -> SocketEvents:
    """Build listeners that log every failure."""
    events = SocketEvents()
    events.error_receiving += lambda exc: logger.error('Transport error', exc_info=exc)
    events.error_deserializing += lambda exc: logger.warning('Undecodable frame', exc_info=exc)
    events.error_handling += lambda exc: logger.warning('Unhandled frame', exc_info=exc)
    return events


def main(descriptor: ConnectionDescriptor, config: SocketConfig) -> None:
    """Listen until the connection closes."""
    logger = log.get_logger()
    closed = threading.Event()
    events = make_events(logger)
    events.connection_closed += closed.set
    with RTMSocket(descriptor, Listener(logger), events=events, config=config):
        closed.wait()
