# src/ffxi_ai/dispatch/poller.py

"""
Readiness pollers.

The dispatcher only needs "which of these can read / write right now, waiting at most
`timeout` seconds". Anything with a `fileno()` works as an entry.
"""

from __future__ import annotations

import select
from collections.abc import Sequence
from typing import Any, Protocol


class Poller(Protocol):
    def poll(
        self,
        readers: Sequence[Any],
        writers: Sequence[Any],
        timeout: float | None,
    ) -> tuple[list[Any], list[Any]]: ...


class SelectPoller:
    """select(2)-based poller. Raises OSError/ValueError from select verbatim."""

    def poll(
        self,
        readers: Sequence[Any],
        writers: Sequence[Any],
        timeout: float | None,
    ) -> tuple[list[Any], list[Any]]:
        if timeout is not None:
            timeout = max(0.0, float(timeout))
        readable, writable, _ = select.select(readers, writers, [], timeout)
        return list(readable), list(writable)
