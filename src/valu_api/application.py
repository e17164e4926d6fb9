"""Base class for embedded Valu applications.

Subclass ValuApplication and bind it with ValuApi.set_application(). The
client calls these hooks when the host sends the matching messages; hooks
may return plain values or awaitables.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import ValuApi
    from .intent import Intent


class ValuApplication:
    """Lifecycle hooks of an embedded application.

    Example:
        class ChatApp(ValuApplication):
            async def on_create(self, intent):
                self.room = intent.params.get("roomId")

            async def on_new_intent(self, intent):
                return {"opened": intent.params.get("roomId")}
    """

    def __init__(self, api: ValuApi | None = None) -> None:
        self.api = api

    async def on_create(self, intent: Intent) -> Any:
        """Called when the app is first launched with an Intent."""

    async def on_new_intent(self, intent: Intent) -> Any:
        """Called when the app receives an Intent while already running.

        The return value is sent back to whoever sent the intent.
        """

    async def on_destroy(self) -> None:
        """Called when the app is about to be destroyed."""

    def on_route(self, route: Any) -> None:
        """Called when the host changes the app's route."""
