"""The generic message envelope shared by every frame on the wire."""

from dataclasses import dataclass, field
from typing import Optional

# isort: unique-list
__all__ = ['Error', 'Message', 'OMIT_EMPTY']

OMIT_EMPTY = 'omit_empty'
"""Field metadata key. Fields carrying it are not encoded when they hold a falsy value."""


@dataclass
class Error:
    """An error reported by the remote side in a reply."""

    code: int = 0
    msg: str = ''


@dataclass
class Message:
    """The outer object wrapping every frame.

    Concrete schemas subclass :class:`Message`, add their payload fields (all with
    defaults), and declare their routes with :func:`rtm.routing.route`.

    Attributes:
        id: The correlation ID of an outbound request. Zero means unset; the socket
            assigns one when the message is sent.
        reply_to: Echoes the ID of the request a reply answers. Zero for events.
        type: The route type. Resolved from the schema's declared routes when unset.
        subtype: The route subtype, if any.
        ok: Whether the remote side considers the request successful.
        error: Details on a failed request.
    """

    id: int = 0
    reply_to: int = field(default=0, metadata={OMIT_EMPTY: True})
    type: Optional[str] = None
    subtype: Optional[str] = None
    ok: bool = True
    error: Optional[Error] = None
