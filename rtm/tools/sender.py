"""Send one message and wait for its reply."""

import threading
from typing import Any, Optional

from .. import codec, log
from ..envelope import Message
from ..messages import REGISTRY
from ..routing import RouteKey
from ..socket import RTMSocket, SocketConfig
from ..transport import ConnectionDescriptor
from .listener import make_events

__all__ = ['build_message', 'main']


def build_message(
    msg_type: str,
    subtype: Optional[str] = None,
    fields: Optional[dict[str, Any]] = None,
) -> Message:
    """Build a message of the registered schema for a route.

    Fields the schema does not define are dropped. Routes without a registered schema
    produce a bare :class:`Message`.

    Example:
        >>> build_message('typing', fields={'channel': 'C1', 'unknown': 1})
        Typing(id=0, reply_to=0, type='typing', subtype=None, ok=True, error=None, channel='C1')
    """
    schema = REGISTRY.lookup(RouteKey.of(msg_type, subtype)) or Message
    obj = {**(fields or {}), 'type': msg_type, 'subtype': subtype}
    return codec.from_dict(schema, obj)


def main(
    descriptor: ConnectionDescriptor,
    config: SocketConfig,
    msg_type: str,
    *,
    subtype: Optional[str] = None,
    fields: Optional[dict[str, Any]] = None,
    wait: float = 5,
) -> bool:
    """Send a message.

    Returns:
        Whether a reply arrived within ``wait`` seconds.
    """
    logger = log.get_logger().bind(type=msg_type, subtype=subtype)
    message = build_message(msg_type, subtype, fields)
    replied = threading.Event()

    def on_reply(reply: Message) -> None:
        logger.info('Received reply', ok=reply.ok, reply=codec.to_dict(reply))
        replied.set()

    with RTMSocket(descriptor, events=make_events(logger), config=config) as socket:
        if not socket.connected:
            return False
        request_id = socket.send(message, on_reply, timeout=wait)
        logger.info('Sent message', request_id=request_id)
        if not replied.wait(wait):
            logger.warning('No reply received', request_id=request_id, wait=wait)
    return replied.is_set()
