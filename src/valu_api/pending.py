"""Pending request bookkeeping.

Maps request identifiers to whoever is waiting for the reply. Settlement
always happens after the entry is popped, so code re-entered from a
resolved future never observes a half-updated table.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Hashable
from typing import Any, Generic, TypeVar

from .errors import RequestTimeoutError
from .protocol.messages import Reply

logger = logging.getLogger(__name__)

T = TypeVar("T")

RequestId = Hashable


class PendingRequestTable(Generic[T]):
    """Request identifier -> waiter, at most one entry per identifier."""

    def __init__(self, name: str = "requests") -> None:
        self.name = name
        self._entries: dict[RequestId, T] = {}

    def add(self, request_id: RequestId, waiter: T) -> None:
        """Register a waiter for a request identifier.

        Raises:
            ValueError: If the identifier is already pending
        """
        if request_id in self._entries:
            raise ValueError(f"Request {request_id!r} is already pending in {self.name}")
        self._entries[request_id] = waiter

    def create_future(self, request_id: RequestId) -> asyncio.Future[Any]:
        """Create a future on the running loop and register it."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self.add(request_id, future)
        return future

    def pop(self, request_id: RequestId) -> T | None:
        """Remove and return the waiter, or None if the identifier is unknown."""
        return self._entries.pop(request_id, None)

    def discard(self, request_id: RequestId) -> None:
        self._entries.pop(request_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def fail_all(self, exc: BaseException) -> int:
        """Reject every pending future with exc and empty the table.

        Entries that are not futures are dropped without being signalled.

        Returns:
            Number of futures that were rejected
        """
        entries = list(self._entries.values())
        self._entries.clear()

        failed = 0
        for waiter in entries:
            if isinstance(waiter, asyncio.Future) and not waiter.done():
                waiter.set_exception(exc)
                failed += 1
        if failed:
            logger.debug(f"Failed {failed} pending {self.name}: {exc}")
        return failed

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def wait(
        self,
        request_id: RequestId,
        future: asyncio.Future[Any],
        timeout: float | None = None,
    ) -> Any:
        """Await a registered future, optionally bounded by timeout.

        The entry is removed if the wait is abandoned (timeout or
        cancellation) so a late reply is treated as unroutable.

        Raises:
            RequestTimeoutError: If timeout elapses first
        """
        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            self.discard(request_id)
            raise RequestTimeoutError(
                f"No reply to request {request_id!r} within {timeout}s"
            ) from None
        except asyncio.CancelledError:
            self.discard(request_id)
            raise


def settle(future: asyncio.Future[Any], reply: Reply, error_type: type[Exception]) -> None:
    """Resolve or reject a future from a decided reply."""
    if future.done():
        return
    if reply.ok:
        future.set_result(reply.value)
    else:
        future.set_exception(error_type(reply.error))
