"""Exceptions raised by the Valu API client."""

from __future__ import annotations

from typing import Any


class ValuApiError(Exception):
    """Base class for all Valu API errors."""

    def __init__(self, message: Any) -> None:
        super().__init__(message)
        self.message = message


class ModuleRegistrationError(ValuApiError):
    """The host refused to create an API pointer."""


class InvocationError(ValuApiError):
    """A function call on an API pointer came back with an error."""


class IntentError(ValuApiError):
    """An intent or service call came back with an error."""


class DisconnectedError(ValuApiError, ConnectionError):
    """A request was issued before the host announced readiness."""

    def __init__(self, message: str = "Valu host is not connected") -> None:
        super().__init__(message)


class RequestTimeoutError(ValuApiError, TimeoutError):
    """No reply arrived within the configured request timeout."""
