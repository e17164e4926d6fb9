"""stdio channel.

Runs the Valu channel over stdin/stdout using JSON lines, for embedded
applications launched as a subprocess of the host.

Wire format (newline-delimited JSON, UTF-8 encoded):
    stdin:  {"target": "valuApi", "name": "api:ready", "message": {...}}\\n
    stdout: {"target": "valuApi", "name": "api:run-console", "message": {...}}\\n

Logs must never go to stdout; the CLI routes them to stderr.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from typing import Any, BinaryIO

from .base import MessageChannel, MessageEvent

logger = logging.getLogger(__name__)

# Wire encoding of both pipes
ENCODING = "utf-8"

# Message terminator; CR before it is stripped on read
NEWLINE = "\n"


class StdioChannel(MessageChannel):
    """Channel over the process's stdin/stdout.

    The channel is its own host endpoint: posting a message writes one JSON
    line to stdout.

    Usage:
        channel = StdioChannel()
        api = ValuApi(channel)
        await channel.run()  # Blocks until stdin closes
    """

    def __init__(
        self,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
        origin: str = "stdio",
    ) -> None:
        """Initialize stdio channel.

        Args:
            stdin: Binary input stream (default: sys.stdin.buffer)
            stdout: Binary output stream (default: sys.stdout.buffer)
            origin: Origin reported for every inbound message
        """
        super().__init__()
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self.origin = origin
        self._running = False
        self._read_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def post_message(self, data: Any, origin: str) -> None:
        """Write one message to stdout as a JSON line."""
        line = json.dumps(data, separators=(",", ":"), default=str) + NEWLINE
        self._stdout.write(line.encode(ENCODING))
        self._stdout.flush()

    async def start(self) -> None:
        """Start reading stdin in a background task."""
        if self._read_task is None:
            self._read_task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop reading stdin."""
        self._running = False
        if self._read_task:
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task
            self._read_task = None

    async def run(self, reader: asyncio.StreamReader | None = None) -> None:
        """Read messages until EOF.

        Args:
            reader: Stream to read from (default: a pipe reader on stdin)
        """
        if reader is None:
            loop = asyncio.get_running_loop()
            reader = asyncio.StreamReader()
            protocol = asyncio.StreamReaderProtocol(reader)
            await loop.connect_read_pipe(lambda: protocol, self._stdin)

        self._running = True
        logger.debug("stdio channel reading")
        try:
            while self._running:
                line = await reader.readline()
                if not line:
                    logger.debug("stdin closed")
                    break
                self.handle_line(line.decode(ENCODING, errors="replace"))
        finally:
            self._running = False

    def handle_line(self, line: str) -> None:
        """Parse one inbound line and dispatch it to listeners."""
        line = line.strip()
        if not line:
            return

        # Skip non-JSON lines (unrelated output sharing the pipe)
        if not line.startswith("{"):
            logger.debug(f"Skipping non-JSON line: {line[:50]}")
            return

        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug(f"Failed to parse message: {e} (line: {line[:50]})")
            return

        self.dispatch(MessageEvent(data=data, source=self, origin=self.origin))
