"""Wire protocol between the embedded application and the Valu host.

Key concepts:
- Envelope: every message, tagged with a target and a kind name
- Requests: outbound messages carrying a locally generated requestId
- Replies: inbound messages echoing that requestId, decided once into a Reply
- Notifications: host-initiated messages with no requestId (ready, new intent, route)
"""

from .messages import (
    TARGET,
    TRIGGER_ON_ROUTE,
    Envelope,
    MessageKind,
    Reply,
    RouteCommand,
)

__all__ = [
    "TARGET",
    "TRIGGER_ON_ROUTE",
    "Envelope",
    "MessageKind",
    "Reply",
    "RouteCommand",
]
