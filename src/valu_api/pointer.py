"""API Pointer - a bound host API module.

A pointer is created by ValuApi.get_api() once the host has accepted the
binding. It runs functions of that module and carries the module's events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .bus import EventBus, EventCallback
from .errors import InvocationError, RequestTimeoutError
from .ids import next_id
from .pending import PendingRequestTable, settle
from .protocol.messages import Reply

logger = logging.getLogger(__name__)

# (function_name, params, request_id, pointer) -> None; posts the api:run message
RunRequest = Callable[[str, Any, int, "APIPointer"], None]

# Called with a request id the pointer stopped waiting for
AbandonRequest = Callable[[int], None]


class APIPointer:
    """Access point to one version of a host API module.

    Usage:
        users = await api.get_api("users", 1)
        me = await users.run("get-current-user")
        users.add_event_listener("user-changed", on_user_changed)

    Events are private to the pointer: two pointers bound to the same module
    each receive only the events the host addresses to their guid.
    """

    def __init__(
        self,
        api_name: str,
        version: Any,
        guid: str,
        run_request: RunRequest,
        timeout: float | None = None,
        on_abandon: AbandonRequest | None = None,
    ) -> None:
        self._api_name = api_name
        self._version = version
        self._guid = guid
        self._run_request = run_request
        self._timeout = timeout
        self._on_abandon = on_abandon
        self._event_bus = EventBus()
        self._api_calls: PendingRequestTable[Any] = PendingRequestTable("api calls")

    @property
    def guid(self) -> str:
        """Unique identifier the host uses to route replies and events to this pointer."""
        return self._guid

    @property
    def api_name(self) -> str:
        return self._api_name

    @property
    def version(self) -> Any:
        """Version assigned by the host, which may differ from the one requested."""
        return self._version

    @property
    def pending_count(self) -> int:
        """Number of function calls still awaiting a reply."""
        return len(self._api_calls)

    def add_event_listener(
        self, event_name: str, callback: EventCallback, once: bool = False
    ) -> EventBus:
        """Subscribe to an event of this API module."""
        return self._event_bus.subscribe(event_name, callback, once)

    def remove_event_listener(
        self, event_name: str | None = None, callback: EventCallback | None = None
    ) -> EventBus:
        """Remove an event subscription of this API module."""
        return self._event_bus.unsubscribe(event_name, callback)

    def publish_event(self, event_name: str, *args: Any) -> Any:
        """Deliver a module event to this pointer's listeners."""
        return self._event_bus.publish(event_name, *args)

    async def run(self, function_name: str, params: Any = None) -> Any:
        """Run a function of the API module.

        Args:
            function_name: Name of the function to execute
            params: Parameters for the function

        Returns:
            The reply payload sent by the host

        Raises:
            InvocationError: If the host replied with an error
            DisconnectedError: If the host is not connected
            RequestTimeoutError: If a timeout is configured and elapses
        """
        request_id = next_id()
        future = self._api_calls.create_future(request_id)
        try:
            self._run_request(function_name, params, request_id, self)
        except Exception:
            self._api_calls.discard(request_id)
            raise

        try:
            return await self._api_calls.wait(request_id, future, self._timeout)
        except (RequestTimeoutError, asyncio.CancelledError):
            if self._on_abandon:
                self._on_abandon(request_id)
            raise

    invoke = run

    def complete_invocation(self, request_id: Any, result: Reply | Any) -> None:
        """Settle a function call with the host's reply.

        Unknown request identifiers are logged and dropped.
        """
        future = self._api_calls.pop(request_id)
        if future is None:
            logger.warning(f"{self._api_name}: no pending call for request {request_id!r}")
            return

        reply = result if isinstance(result, Reply) else Reply.from_payload(result)
        settle(future, reply, InvocationError)

    post_run_result = complete_invocation

    def fail_pending(self, exc: BaseException) -> int:
        """Reject every call still awaiting a reply."""
        return self._api_calls.fail_all(exc)

    def __repr__(self) -> str:
        return f"APIPointer(api_name={self._api_name!r}, version={self._version!r}, guid={self._guid!r})"
