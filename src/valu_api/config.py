"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TARGET = "valuApi"


@dataclass
class ValuApiConfig:
    """Configuration for a ValuApi client.

    Environment variables (see from_env):
        VALU_API_TARGET: envelope target tag (default "valuApi")
        VALU_API_REQUEST_TIMEOUT: seconds to wait for a reply (default: forever)
        VALU_API_STDIO_ORIGIN: origin reported by the stdio channel
        VALU_API_LOG_LEVEL: log level used by the CLI
    """

    # Envelopes whose target differs are ignored
    target: str = DEFAULT_TARGET

    # None waits forever, the host is trusted to reply
    request_timeout: float | None = None

    stdio_origin: str = "stdio"
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> ValuApiConfig:
        """Build a config from VALU_API_* environment variables."""
        config = cls()
        if target := os.getenv("VALU_API_TARGET"):
            config.target = target
        if timeout := os.getenv("VALU_API_REQUEST_TIMEOUT"):
            try:
                config.request_timeout = float(timeout)
            except ValueError as e:
                raise ValueError(f"Invalid VALU_API_REQUEST_TIMEOUT: {timeout!r}") from e
            if config.request_timeout <= 0:
                config.request_timeout = None
        if origin := os.getenv("VALU_API_STDIO_ORIGIN"):
            config.stdio_origin = origin
        if level := os.getenv("VALU_API_LOG_LEVEL"):
            config.log_level = level.upper()
        return config
