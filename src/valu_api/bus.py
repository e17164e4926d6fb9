"""Event Bus - named-event pub/sub used by the client and every API pointer.

Publishing is synchronous. Every publish is wrapped by the two reserved
meta-events so observers can watch all traffic without knowing event names:

    bus.subscribe(EventBus.BEFORE, lambda name, *args: print("->", name))
    bus.publish("api:ready")    # prints "-> api:ready", then runs listeners
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Type for event callbacks
EventCallback = Callable[..., Any]


@dataclass
class Listener:
    """One registration of a callback for an event name."""

    callback: EventCallback | None
    once: bool = False


class EventBus:
    """Simple event bus with one-shot listeners and before/after meta-events.

    The same callback may be registered more than once and then fires once
    per registration.
    """

    BEFORE = "__before__"
    AFTER = "__after__"

    def __init__(self) -> None:
        self._events: dict[str, list[Listener]] = {}

    @property
    def events(self) -> Mapping[str, list[Listener]]:
        """Registered listeners keyed by event name."""
        return self._events

    def listener_count(self, event_name: str) -> int:
        """Number of listeners currently registered for an event."""
        return len(self._events.get(event_name, []))

    def subscribe(
        self, event_name: str, callback: EventCallback, once: bool = False
    ) -> EventBus:
        """Register a callback for an event.

        Args:
            event_name: Event to listen for
            callback: Called with the published arguments
            once: Remove the listener after its first invocation

        Returns:
            The bus itself, for chaining
        """
        self._events.setdefault(event_name, []).append(Listener(callback, once))
        return self

    def unsubscribe(
        self, event_name: str | None = None, callback: EventCallback | None = None
    ) -> EventBus:
        """Remove listeners.

        With no arguments every listener is removed. With only an event name
        every listener of that event is removed. With both, only the
        registrations of that exact callback are removed.
        """
        if not event_name:
            self._events = {}
        elif callback is None:
            self._events[event_name] = []
        else:
            listeners = self._events.get(event_name, [])
            for i in range(len(listeners) - 1, -1, -1):
                entry = listeners[i]
                if isinstance(entry, Listener) and entry.callback is callback:
                    del listeners[i]
        return self

    def publish(self, event_name: str, *args: Any) -> Any:
        """Invoke every listener of an event in registration order.

        Returns:
            The last non-None value returned by a listener, or None
        """
        meta_event = event_name in (self.BEFORE, self.AFTER)

        if not meta_event:
            self.publish(self.BEFORE, event_name, *args)

        listeners = self._events.get(event_name, [])
        spent: list[Listener] = []
        return_value = None

        # Snapshot so subscribe/unsubscribe inside a listener cannot perturb this pass
        for listener in list(listeners):
            if not isinstance(listener, Listener):
                logger.error(f"Corrupt listener slot for {event_name!r}: {listener!r}")
                return None

            last_value = None
            if listener.callback is not None:
                try:
                    last_value = listener.callback(*args)
                except Exception:
                    logger.exception(f"Error in listener for {event_name}")
            else:
                listener.once = True

            if listener.once:
                spent.append(listener)
            if last_value is not None:
                return_value = last_value

        for listener in spent:
            for i, entry in enumerate(listeners):
                if entry is listener:
                    del listeners[i]
                    break

        if not meta_event:
            self.publish(self.AFTER, event_name, *args)

        return return_value

    # Aliases matching the host-side naming
    add_event_listener = subscribe
    remove_event_listener = unsubscribe
    emit = publish

    def reset(self) -> None:
        """Reset bus state (for testing)."""
        self._events = {}
