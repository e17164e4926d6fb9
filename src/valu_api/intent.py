"""Intent value object.

An Intent names a target application, the action to perform on it and the
parameters for that action. It is immutable once created.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class Intent(BaseModel):
    """A cross-application invocation target.

    Example:
        intent = Intent("text-chat", Intent.ACTION_VIEW, {"userId": "u_42"})
        str(intent)
        # [Intent] applicationId="text-chat", action="view", params={"userId":"u_42"}
    """

    model_config = ConfigDict(frozen=True)

    # Predefined actions
    ACTION_VIEW: ClassVar[str] = "view"
    ACTION_OPEN: ClassVar[str] = "open"

    application_id: str | None
    action: str = "open"
    params: dict[str, Any] = Field(default_factory=dict)

    def __init__(
        self,
        application_id: str | None = None,
        action: str | None = None,
        params: dict[str, Any] | None = None,
        **data: Any,
    ) -> None:
        super().__init__(
            application_id=application_id,
            action=action or Intent.ACTION_OPEN,
            params=params or {},
            **data,
        )

    @classmethod
    def is_valid(cls, obj: Any) -> bool:
        """Check that obj is an Intent with a string application id and action."""
        return (
            isinstance(obj, Intent)
            and isinstance(obj.application_id, str)
            and isinstance(obj.action, str)
        )

    @classmethod
    def from_message(cls, message: Mapping[str, Any] | None) -> Intent:
        """Build an Intent from a camelCase wire payload."""
        message = message or {}
        return cls(
            message.get("applicationId"),
            message.get("action"),
            message.get("params"),
        )

    def to_message(self) -> dict[str, Any]:
        """Wire payload for this intent."""
        return {
            "applicationId": self.application_id,
            "action": self.action,
            "params": dict(self.params),
        }

    def __str__(self) -> str:
        params = json.dumps(self.params, separators=(",", ":"), ensure_ascii=False, default=str)
        return f'[Intent] applicationId="{self.application_id}", action="{self.action}", params={params}'
