"""In-memory host channel.

Plays the host side of the channel without any I/O. Records everything the
embedded application posts and lets callers push host messages back.

Usage:
    channel = MockHostChannel()
    api = ValuApi(channel)
    channel.send_ready(application_id="my-app")

    channel.set_response(MessageKind.RUN_CONSOLE, "pong")
    assert await api.run_console_command("ping") == "pong"

    assert channel.last_message(MessageKind.RUN_CONSOLE)["message"]["command"] == "ping"
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..protocol.messages import TARGET, Envelope, MessageKind
from .base import MessageChannel, MessageEvent

logger = logging.getLogger(__name__)

# Request kind -> reply kind used for canned responses
REPLY_KINDS: dict[str, str] = {
    MessageKind.CREATE_POINTER.value: MessageKind.POINTER_CREATED.value,
    MessageKind.RUN.value: MessageKind.RUN_COMPLETED.value,
    MessageKind.RUN_CONSOLE.value: MessageKind.RUN_CONSOLE_COMPLETED.value,
    MessageKind.RUN_INTENT.value: MessageKind.RUN_INTENT_COMPLETED.value,
    MessageKind.SERVICE_INTENT.value: MessageKind.SERVICE_INTENT_COMPLETED.value,
}

# Reply payload, or callable(request message) -> reply payload
CannedResponse = Any


class MockHostEndpoint:
    """The host's receiving end; records posted messages."""

    def __init__(self, channel: MockHostChannel) -> None:
        self._channel = channel

    def post_message(self, data: Any, origin: str) -> None:
        self._channel._record(data, origin)


class MockHostChannel(MessageChannel):
    """Channel whose host side is driven by the caller."""

    def __init__(self, origin: str = "https://valu.test", target: str = TARGET) -> None:
        super().__init__()
        self.origin = origin
        self.target = target
        self.endpoint = MockHostEndpoint(self)
        self._recorded: list[dict[str, Any]] = []
        self._responses: dict[str, CannedResponse] = {}

    @property
    def recorded_messages(self) -> list[dict[str, Any]]:
        """Every message posted to the host, oldest first."""
        return self._recorded.copy()

    def messages(self, kind: str | MessageKind) -> list[dict[str, Any]]:
        """Posted messages of one kind."""
        name = kind.value if isinstance(kind, MessageKind) else kind
        return [m for m in self._recorded if m.get("name") == name]

    def last_message(self, kind: str | MessageKind | None = None) -> dict[str, Any] | None:
        """Most recent posted message, optionally of one kind."""
        candidates = self._recorded if kind is None else self.messages(kind)
        return candidates[-1] if candidates else None

    def set_response(self, kind: str | MessageKind, response: CannedResponse) -> None:
        """Answer every future request of a kind automatically.

        Args:
            kind: Request kind (e.g. MessageKind.RUN_CONSOLE)
            response: Reply payload, or a callable building it from the
                request's message payload
        """
        name = kind.value if isinstance(kind, MessageKind) else kind
        if name not in REPLY_KINDS:
            raise ValueError(f"{name} does not expect a reply")
        self._responses[name] = response

    def send(
        self,
        kind: str | MessageKind,
        message: Any = None,
        request_id: Any = None,
        target: str | None = None,
    ) -> None:
        """Deliver a host message to the embedded application."""
        envelope = Envelope.create(kind, message, target=target or self.target)
        data = envelope.to_wire()
        if request_id is not None:
            data["requestId"] = request_id
        self.send_raw(data)

    def send_raw(self, data: Any) -> None:
        """Deliver arbitrary data, bypassing envelope construction."""
        self.dispatch(MessageEvent(data=data, source=self.endpoint, origin=self.origin))

    def send_ready(
        self,
        application_id: str | None = None,
        action: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> None:
        """Announce readiness, optionally with a launch intent."""
        message: dict[str, Any] = {}
        if application_id is not None:
            message["applicationId"] = application_id
        if action is not None:
            message["action"] = action
        if params is not None:
            message["params"] = params
        self.send(MessageKind.READY, message)

    def reply(self, kind: str | MessageKind, request_id: Any, payload: Any = None) -> None:
        """Deliver a correlated reply."""
        self.send(kind, payload, request_id=request_id)

    def clear(self) -> None:
        """Clear recorded messages and canned responses."""
        self._recorded.clear()
        self._responses.clear()

    async def start(self) -> None:
        """No-op for mock."""
        pass

    async def stop(self) -> None:
        """No-op for mock."""
        pass

    def _record(self, data: Any, origin: str) -> None:
        if origin != self.origin:
            logger.warning(f"Message posted to origin {origin!r}, expected {self.origin!r}")
        self._recorded.append(data)

        name = data.get("name") if isinstance(data, dict) else None
        if name not in self._responses:
            return

        message = data.get("message") or {}
        response = self._responses[name]
        payload = response(message) if callable(response) else response

        # Reply on a later loop iteration, like a real host would
        asyncio.get_running_loop().call_soon(
            self.reply, REPLY_KINDS[name], message.get("requestId"), payload
        )
