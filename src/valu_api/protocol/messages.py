"""Wire messages exchanged with the Valu host.

Every message travels inside an envelope:

    {"target": "valuApi", "name": "api:run", "message": {...}}

Replies carry the request identifier either on the envelope
(`"requestId"` next to `"name"`) or inside the message payload; both are
accepted on the way in.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import DEFAULT_TARGET

TARGET = DEFAULT_TARGET


class MessageKind(str, Enum):
    """All message kinds on the channel."""

    # Outbound (embedded app -> host)
    CREATE_POINTER = "api:create-pointer"
    RUN = "api:run"
    RUN_INTENT = "api:run-intent"
    SERVICE_INTENT = "api:service-intent"
    RUN_CONSOLE = "api:run-console"
    RUN_COMMAND = "api:run-command"
    NEW_INTENT_COMPLETED = "api:new-intent-completed"

    # Inbound, uncorrelated (host -> embedded app)
    READY = "api:ready"
    TRIGGER = "api:trigger"
    NEW_INTENT = "api:new-intent"
    EVENT = "api:event"

    # Inbound, correlated replies
    RUN_CONSOLE_COMPLETED = "api:run-console-completed"
    RUN_COMPLETED = "api:run-completed"
    POINTER_CREATED = "api:pointer-created"
    RUN_INTENT_COMPLETED = "api:run-intent-completed"
    SERVICE_INTENT_COMPLETED = "api:service-intent-completed"


class RouteCommand(str, Enum):
    """Navigation commands carried by api:run-command."""

    PUSH = "push-route"
    REPLACE = "replace-route"


# Only trigger action the client understands
TRIGGER_ON_ROUTE = "on_route"


class Envelope(BaseModel):
    """A message on the channel."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    target: str = TARGET
    name: str
    message: Any = None
    request_id: Any = Field(default=None, alias="requestId")

    @classmethod
    def create(
        cls,
        kind: str | MessageKind,
        message: Any = None,
        target: str = TARGET,
    ) -> Envelope:
        """Factory method for creating envelopes."""
        return cls(
            target=target,
            name=kind.value if isinstance(kind, MessageKind) else kind,
            message=message,
        )

    @classmethod
    def parse(cls, data: Any, target: str = TARGET) -> Envelope | None:
        """Parse inbound data, returning None for anything not addressed to us."""
        if isinstance(data, Envelope):
            return data if data.target == target else None
        if not isinstance(data, Mapping) or data.get("target") != target:
            return None
        if not isinstance(data.get("name"), str):
            return None
        try:
            return cls.model_validate(dict(data))
        except ValidationError:
            return None

    @property
    def reply_id(self) -> Any:
        """Request identifier of a reply, from the envelope or the payload."""
        if self.request_id is not None:
            return self.request_id
        if isinstance(self.message, Mapping):
            return self.message.get("requestId")
        return None

    def to_wire(self) -> dict[str, Any]:
        """Plain dict ready to post on the channel."""
        data: dict[str, Any] = {
            "target": self.target,
            "name": self.name,
            "message": self.message,
        }
        if self.request_id is not None:
            data["requestId"] = self.request_id
        return data

    # =========================================================================
    # Factory methods for outbound messages
    # =========================================================================

    @classmethod
    def create_pointer(
        cls, guid: str, api: str, version: Any, request_id: Any, target: str = TARGET
    ) -> Envelope:
        """Ask the host to bind an API pointer."""
        return cls.create(
            MessageKind.CREATE_POINTER,
            {"guid": guid, "api": api, "version": version, "requestId": request_id},
            target=target,
        )

    @classmethod
    def run(
        cls,
        api_pointer_id: str,
        request_id: Any,
        function_name: str,
        params: Any,
        target: str = TARGET,
    ) -> Envelope:
        """Call a function on a bound API pointer."""
        return cls.create(
            MessageKind.RUN,
            {
                "apiPointerId": api_pointer_id,
                "requestId": request_id,
                "functionName": function_name,
                "params": params,
            },
            target=target,
        )

    @classmethod
    def run_intent(
        cls, intent_message: Mapping[str, Any], request_id: Any, target: str = TARGET
    ) -> Envelope:
        """Send a UI intent to another application."""
        return cls.create(
            MessageKind.RUN_INTENT, {**intent_message, "requestId": request_id}, target=target
        )

    @classmethod
    def service_intent(
        cls, intent_message: Mapping[str, Any], request_id: Any, target: str = TARGET
    ) -> Envelope:
        """Send a background service intent."""
        return cls.create(
            MessageKind.SERVICE_INTENT,
            {**intent_message, "requestId": request_id},
            target=target,
        )

    @classmethod
    def run_console(cls, command: str, request_id: Any, target: str = TARGET) -> Envelope:
        """Run a textual console command on the host."""
        return cls.create(
            MessageKind.RUN_CONSOLE,
            {"requestId": request_id, "command": command},
            target=target,
        )

    @classmethod
    def run_command(
        cls, command: str | RouteCommand, data: Any, target: str = TARGET
    ) -> Envelope:
        """Fire-and-forget host command (no request identifier)."""
        return cls.create(
            MessageKind.RUN_COMMAND,
            {
                "command": command.value if isinstance(command, RouteCommand) else command,
                "data": data,
            },
            target=target,
        )

    @classmethod
    def new_intent_completed(
        cls, request_id: Any, reply: Reply, target: str = TARGET
    ) -> Envelope:
        """Report the application's answer to an incoming intent."""
        return cls.create(
            MessageKind.NEW_INTENT_COMPLETED,
            {"requestId": request_id, **reply.to_payload()},
            target=target,
        )


@dataclass(frozen=True)
class Reply:
    """Outcome of a correlated request: Ok(value) or Err(error)."""

    ok: bool
    value: Any = None
    error: Any = None

    @classmethod
    def success(cls, value: Any) -> Reply:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Any) -> Reply:
        return cls(ok=False, error=error)

    @classmethod
    def from_payload(cls, payload: Any) -> Reply:
        """Decide once whether a reply payload is an error."""
        if isinstance(payload, Mapping) and payload.get("error"):
            return cls.failure(payload["error"])
        return cls.success(payload)

    def to_payload(self) -> dict[str, Any]:
        if self.ok:
            return {"result": self.value}
        return {"error": self.error}
