"""Identifier helpers.

Request identifiers come from a single process-wide counter so they never
collide across the client's and the pointers' pending tables.
"""

from __future__ import annotations

import itertools
import uuid

_counter = itertools.count(1)


def next_id() -> int:
    """Return the next process-wide request identifier."""
    return next(_counter)


def guid4() -> str:
    """Return a random UUID4 string."""
    return str(uuid.uuid4())
