"""ValuApi - the embedded application's client for the Valu host.

Owns the channel, assigns request identifiers, tracks pending requests and
routes every inbound message back to whoever is waiting for it.

Usage:
    channel = StdioChannel()
    api = ValuApi(channel)
    api.set_application(MyApp())
    asyncio.create_task(channel.run())

    await api.ready()
    users = await api.get_api("users")
    me = await users.run("get-current-user")
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .bus import EventBus, EventCallback
from .config import ValuApiConfig
from .errors import DisconnectedError, IntentError, ModuleRegistrationError
from .ids import guid4, next_id
from .intent import Intent
from .pending import PendingRequestTable
from .pointer import APIPointer
from .protocol.messages import (
    TRIGGER_ON_ROUTE,
    Envelope,
    MessageKind,
    Reply,
    RouteCommand,
)
from .transport.base import HostEndpoint, MessageChannel, MessageEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostConnection:
    """Host endpoint captured from the readiness handshake."""

    application_id: Any
    source: HostEndpoint
    origin: str | None


class ValuApi:
    """Invokes host API modules, intents and console commands over one channel.

    Request families each keep their own pending table:
    - console commands, pointer creation, UI intents, service intents
      (settled directly)
    - function calls (settled through the APIPointer that issued them)

    Host notifications (ready, route trigger, new intent) bypass the tables
    and go to the event bus and the bound ValuApplication.
    """

    API_READY = "api:ready"
    ON_ROUTE = "on_route"

    def __init__(self, channel: MessageChannel, config: ValuApiConfig | None = None) -> None:
        self.config = config or ValuApiConfig()
        self._channel = channel
        self._event_bus = EventBus()
        self._host: HostConnection | None = None
        self._application: Any = None
        self._last_intent: Intent | None = None

        self._console_requests: PendingRequestTable[asyncio.Future[Any]] = PendingRequestTable(
            "console requests"
        )
        self._pointer_requests: PendingRequestTable[asyncio.Future[Any]] = PendingRequestTable(
            "pointer requests"
        )
        self._intent_requests: PendingRequestTable[asyncio.Future[Any]] = PendingRequestTable(
            "intent requests"
        )
        self._service_requests: PendingRequestTable[asyncio.Future[Any]] = PendingRequestTable(
            "service requests"
        )
        self._api_calls: PendingRequestTable[APIPointer] = PendingRequestTable("api calls")

        self._pointers: dict[str, APIPointer] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

        channel.add_listener(self._handle_parent_message)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def connected(self) -> bool:
        """True once the host's origin has been captured from api:ready, until close()."""
        return not self._closed and self._host is not None and self._host.origin is not None

    @property
    def application_id(self) -> Any:
        """Identifier the host announced itself with, if connected."""
        return self._host.application_id if self._host else None

    @property
    def last_intent(self) -> Intent | None:
        """Launch intent delivered with the readiness signal."""
        return self._last_intent

    @property
    def application(self) -> Any:
        return self._application

    @property
    def pointers(self) -> list[APIPointer]:
        """Every API pointer created by this client."""
        return list(self._pointers.values())

    @property
    def pending_count(self) -> int:
        """Number of requests still awaiting a reply, across all families."""
        return sum(
            len(table)
            for table in (
                self._console_requests,
                self._pointer_requests,
                self._intent_requests,
                self._service_requests,
                self._api_calls,
            )
        )

    # =========================================================================
    # Events
    # =========================================================================

    def add_event_listener(
        self, event_name: str, callback: EventCallback, once: bool = False
    ) -> EventBus:
        """Subscribe to client events (ValuApi.API_READY, ValuApi.ON_ROUTE)."""
        return self._event_bus.subscribe(event_name, callback, once)

    def remove_event_listener(
        self, event_name: str | None = None, callback: EventCallback | None = None
    ) -> EventBus:
        """Remove client event subscriptions."""
        return self._event_bus.unsubscribe(event_name, callback)

    async def ready(self) -> None:
        """Wait until the host has announced readiness.

        Raises:
            DisconnectedError: If the client has been closed
        """
        if self._closed:
            raise DisconnectedError("ValuApi closed")
        if self.connected:
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def on_ready(*_: Any) -> None:
            if not future.done():
                future.set_result(None)

        self._event_bus.subscribe(self.API_READY, on_ready, once=True)
        try:
            await future
        finally:
            self._event_bus.unsubscribe(self.API_READY, on_ready)

    # =========================================================================
    # Application binding
    # =========================================================================

    def set_application(self, application: Any) -> None:
        """Bind the application whose lifecycle hooks receive host notifications.

        If the host already announced readiness, the launch intent is
        delivered to the new application's on_create right away.
        """
        self._application = application
        if self._last_intent is not None:
            self._invoke_application("on_create", self._last_intent)

    # =========================================================================
    # Requests
    # =========================================================================

    async def get_api(self, api_name: str, version: Any = None) -> APIPointer:
        """Bind an API module and return a pointer to it.

        Args:
            api_name: Name of the API module
            version: Requested version; None binds the latest available

        Returns:
            APIPointer bound to the version the host assigned

        Raises:
            ModuleRegistrationError: If the host refused the binding
            DisconnectedError: If the host is not connected
        """
        guid = guid4()
        request_id = next_id()
        reply: Reply = await self._request(
            self._pointer_requests,
            Envelope.create_pointer(guid, api_name, version, request_id, target=self.config.target),
            request_id,
        )
        if not reply.ok:
            raise ModuleRegistrationError(reply.error)

        assigned = reply.value.get("version") if isinstance(reply.value, Mapping) else None
        pointer = APIPointer(
            api_name,
            assigned,
            guid,
            self._on_api_run_request,
            timeout=self.config.request_timeout,
            on_abandon=self._api_calls.discard,
        )
        self._pointers[guid] = pointer
        logger.debug(f"Bound API pointer {api_name} v{assigned} ({guid})")
        return pointer

    get_module = get_api

    async def send_intent(self, intent: Intent) -> Any:
        """Send an intent to another application and return its answer.

        Raises:
            TypeError: If intent is not a valid Intent
            IntentError: If the host or target application replied with an error
        """
        return await self._send_intent(intent, self._intent_requests, Envelope.run_intent)

    async def call_service(self, intent: Intent) -> Any:
        """Invoke a background service with an intent and return its answer.

        Same as send_intent, but the host does not bring any UI forward.
        """
        return await self._send_intent(intent, self._service_requests, Envelope.service_intent)

    async def run_console_command(self, command: str) -> Any:
        """Run a console command on the host.

        Resolves with whatever the host returns, including error text such
        as "ERROR: unknown command"; command failures never raise.

        Args:
            command: Command line, e.g. "/chat -h"
        """
        request_id = next_id()
        return await self._request(
            self._console_requests,
            Envelope.run_console(command, request_id, target=self.config.target),
            request_id,
        )

    def push_route(self, path: str) -> None:
        """Tell the host the app navigated to path (new history entry)."""
        self._post_to_valu_app(
            Envelope.run_command(RouteCommand.PUSH, path, target=self.config.target)
        )

    def replace_route(self, path: str) -> None:
        """Tell the host the app replaced its current route with path."""
        self._post_to_valu_app(
            Envelope.run_command(RouteCommand.REPLACE, path, target=self.config.target)
        )

    def close(self) -> None:
        """Detach from the channel and fail every pending request."""
        if self._closed:
            return
        self._closed = True
        self._channel.remove_listener(self._handle_parent_message)

        error = DisconnectedError("ValuApi closed")
        for table in (
            self._console_requests,
            self._pointer_requests,
            self._intent_requests,
            self._service_requests,
        ):
            table.fail_all(error)
        self._api_calls.clear()
        for pointer in self._pointers.values():
            pointer.fail_pending(error)

    async def _send_intent(
        self,
        intent: Intent,
        table: PendingRequestTable[asyncio.Future[Any]],
        build: Any,
    ) -> Any:
        if not Intent.is_valid(intent):
            raise TypeError(f"Expected a valid Intent, got {intent!r}")

        request_id = next_id()
        reply: Reply = await self._request(
            table,
            build(intent.to_message(), request_id, target=self.config.target),
            request_id,
        )
        if not reply.ok:
            raise IntentError(reply.error)
        return reply.value

    async def _request(
        self,
        table: PendingRequestTable[asyncio.Future[Any]],
        envelope: Envelope,
        request_id: int,
    ) -> Any:
        """Register a waiter, post the request and wait for its reply."""
        if not self.connected:
            raise DisconnectedError()

        future = table.create_future(request_id)
        try:
            self._post_to_valu_app(envelope)
        except Exception:
            table.discard(request_id)
            raise
        return await table.wait(request_id, future, self.config.request_timeout)

    def _on_api_run_request(
        self, function_name: str, params: Any, request_id: int, pointer: APIPointer
    ) -> None:
        if not self.connected:
            raise DisconnectedError()

        self._api_calls.add(request_id, pointer)
        try:
            self._post_to_valu_app(
                Envelope.run(
                    pointer.guid, request_id, function_name, params, target=self.config.target
                )
            )
        except Exception:
            self._api_calls.discard(request_id)
            raise

    def _post_to_valu_app(self, envelope: Envelope) -> None:
        if self._host is None or not self.connected:
            raise DisconnectedError()
        logger.debug(f"Posting to Valu: {envelope.name} {envelope.message}")
        self._host.source.post_message(envelope.to_wire(), self._host.origin)

    # =========================================================================
    # Inbound messages
    # =========================================================================

    def _handle_parent_message(self, event: MessageEvent) -> None:
        envelope = Envelope.parse(event.data, target=self.config.target)
        if envelope is None:
            return

        logger.debug(f"Message from Valu: {envelope.name} {envelope.message}")
        message = envelope.message

        match envelope.name:
            case MessageKind.READY.value:
                self._on_ready(event, message)

            case MessageKind.TRIGGER.value:
                self._on_trigger(message)

            case MessageKind.NEW_INTENT.value:
                self._on_new_intent(envelope)

            case MessageKind.EVENT.value:
                self._on_api_event(message)

            case MessageKind.RUN_CONSOLE_COMPLETED.value:
                # Console results are passed through untouched, errors included
                future = self._console_requests.pop(envelope.reply_id)
                if future is None:
                    logger.warning(f"Failed to locate console request with id {envelope.reply_id!r}")
                elif not future.done():
                    future.set_result(message)

            case MessageKind.POINTER_CREATED.value:
                self._settle(self._pointer_requests, envelope, "pointer create")

            case MessageKind.RUN_INTENT_COMPLETED.value:
                self._settle(self._intent_requests, envelope, "intent")

            case MessageKind.SERVICE_INTENT_COMPLETED.value:
                self._settle(self._service_requests, envelope, "service")

            case MessageKind.RUN_COMPLETED.value:
                request_id = envelope.reply_id
                pointer = self._api_calls.pop(request_id)
                if pointer is None:
                    logger.warning(f"Failed to find API pointer for request {request_id!r}")
                    return
                pointer.complete_invocation(request_id, Reply.from_payload(message))

            case _:
                logger.debug(f"Ignoring unknown message kind: {envelope.name}")

    def _settle(
        self,
        table: PendingRequestTable[asyncio.Future[Any]],
        envelope: Envelope,
        family: str,
    ) -> None:
        future = table.pop(envelope.reply_id)
        if future is None:
            logger.warning(f"Failed to locate {family} request with id {envelope.reply_id!r}")
            return
        if not future.done():
            future.set_result(Reply.from_payload(envelope.message))

    def _on_ready(self, event: MessageEvent, message: Any) -> None:
        if self.connected:
            logger.warning("Ignoring repeated api:ready, host endpoint already captured")
            return
        if event.source is None:
            logger.warning("api:ready arrived without a source endpoint")
            return

        message = message if isinstance(message, Mapping) else {}
        self._host = HostConnection(
            application_id=message.get("applicationId"),
            source=event.source,
            origin=event.origin,
        )
        logger.info(f"Connected to Valu host (origin={event.origin})")

        self._event_bus.publish(self.API_READY)

        try:
            intent = Intent.from_message(message)
        except ValidationError as e:
            logger.warning(f"Invalid launch intent in api:ready: {e}")
            return
        self._last_intent = intent
        self._invoke_application("on_create", intent)

    def _on_trigger(self, message: Any) -> None:
        if not isinstance(message, Mapping) or message.get("action") != TRIGGER_ON_ROUTE:
            logger.debug(f"Ignoring trigger: {message!r}")
            return

        route = message.get("data")
        self._event_bus.publish(self.ON_ROUTE, route)
        self._invoke_application("on_route", route)

    def _on_new_intent(self, envelope: Envelope) -> None:
        request_id = envelope.reply_id
        message = envelope.message if isinstance(envelope.message, Mapping) else {}
        try:
            intent = Intent.from_message(message)
        except ValidationError as e:
            logger.warning(f"Invalid intent in api:new-intent: {e}")
            self._reply_new_intent(request_id, Reply.failure("Invalid intent"))
            return
        self._invoke_application("on_new_intent", intent, request_id=request_id)

    def _on_api_event(self, message: Any) -> None:
        if not isinstance(message, Mapping):
            return
        pointer = self._pointers.get(message.get("apiPointerId"))
        if pointer is None:
            logger.debug(f"No API pointer for event {message.get('event')!r}")
            return
        pointer.publish_event(message.get("event"), message.get("data"))

    # =========================================================================
    # Application hooks
    # =========================================================================

    def _invoke_application(self, hook_name: str, *args: Any, request_id: Any = None) -> None:
        """Call a hook of the bound application without blocking message handling.

        With a request_id, the hook's outcome is reported to the host as
        api:new-intent-completed.
        """
        hook = getattr(self._application, hook_name, None)
        if hook is None:
            if request_id is not None:
                self._reply_new_intent(request_id, Reply.failure("No application bound"))
            return

        try:
            result = hook(*args)
        except Exception as e:
            logger.exception(f"Application {hook_name} failed")
            self._reply_new_intent(request_id, Reply.failure(str(e)))
            return

        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"Application {hook_name} returned an awaitable outside an event loop, dropped"
                )
                if inspect.iscoroutine(result):
                    result.close()
                self._reply_new_intent(request_id, Reply.failure("No running event loop"))
                return
            task = loop.create_task(self._await_hook(hook_name, result, request_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            self._reply_new_intent(request_id, Reply.success(result))

    async def _await_hook(self, hook_name: str, result: Awaitable[Any], request_id: Any) -> None:
        try:
            value = await result
        except Exception as e:
            logger.exception(f"Application {hook_name} failed")
            self._reply_new_intent(request_id, Reply.failure(str(e)))
            return
        self._reply_new_intent(request_id, Reply.success(value))

    def _reply_new_intent(self, request_id: Any, reply: Reply) -> None:
        if request_id is None or not self.connected:
            return
        try:
            self._post_to_valu_app(
                Envelope.new_intent_completed(request_id, reply, target=self.config.target)
            )
        except Exception:
            logger.exception(f"Failed to reply to intent {request_id!r}")
