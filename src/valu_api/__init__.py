"""Valu API - client for applications embedded in a Valu host.

Lets an embedded application:
- bind host API modules and run their functions (get_api / APIPointer.run)
- listen to module and host events
- send intents to other applications and call background services
- run console commands
- react to lifecycle notifications through a ValuApplication

Everything travels over one ordered message channel (see valu_api.transport).
"""

from .application import ValuApplication
from .bus import EventBus
from .client import ValuApi
from .config import ValuApiConfig
from .errors import (
    DisconnectedError,
    IntentError,
    InvocationError,
    ModuleRegistrationError,
    RequestTimeoutError,
    ValuApiError,
)
from .intent import Intent
from .pending import PendingRequestTable
from .pointer import APIPointer
from .transport import MessageChannel, MessageEvent, MockHostChannel, StdioChannel

__version__ = "0.1.0"

__all__ = [
    # Client
    "ValuApi",
    "ValuApiConfig",
    "APIPointer",
    "Intent",
    "ValuApplication",
    # Building blocks
    "EventBus",
    "PendingRequestTable",
    # Channels
    "MessageChannel",
    "MessageEvent",
    "MockHostChannel",
    "StdioChannel",
    # Errors
    "ValuApiError",
    "ModuleRegistrationError",
    "InvocationError",
    "IntentError",
    "DisconnectedError",
    "RequestTimeoutError",
]
