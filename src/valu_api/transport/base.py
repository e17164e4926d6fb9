"""Channel abstraction between the embedded application and its host.

The channel is a single ordered, message-based link. It offers no
correlation of its own: listeners receive every inbound message and the
client decides what belongs to it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class HostEndpoint(Protocol):
    """Something the embedded application can post messages to."""

    def post_message(self, data: Any, origin: str) -> None:
        """Post a message to the host.

        Args:
            data: JSON-compatible payload
            origin: Origin the host was announced from
        """
        ...


@dataclass
class MessageEvent:
    """One inbound message together with where it came from."""

    data: Any
    source: HostEndpoint | None = None
    origin: str | None = None


# Type for channel listeners
MessageListener = Callable[[MessageEvent], None]


class MessageChannel(ABC):
    """Base class for channels.

    Provides listener registration and in-order dispatch. Subclasses only
    decide where inbound messages come from.
    """

    def __init__(self) -> None:
        self._listeners: list[MessageListener] = []

    def add_listener(self, listener: MessageListener) -> None:
        """Register a listener for every inbound message."""
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        """Remove a listener; unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, event: MessageEvent) -> None:
        """Deliver an inbound message to every listener, in order."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in channel listener")

    @abstractmethod
    async def start(self) -> None:
        """Start receiving messages."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving messages."""
