"""Channels carrying Valu messages between an embedded application and its host.

- MockHostChannel: in-memory host, for tests and in-process embedding
- StdioChannel: JSON lines over stdin/stdout, for subprocess applications
"""

from .base import HostEndpoint, MessageChannel, MessageEvent, MessageListener
from .memory import MockHostChannel
from .stdio import StdioChannel

__all__ = [
    "HostEndpoint",
    "MessageChannel",
    "MessageEvent",
    "MessageListener",
    "MockHostChannel",
    "StdioChannel",
]
