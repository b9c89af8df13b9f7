"""Host runtime notification interface.

Bridges never talk to a global emitter: the host hands an object satisfying
`RuntimeEvents` to each bridge at construction and the bridge calls it
synchronously.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)


class PeripheralEvent(str, Enum):
    PERIPHERAL_LIST_UPDATE = "PERIPHERAL_LIST_UPDATE"
    PERIPHERAL_CONNECTED = "PERIPHERAL_CONNECTED"
    PERIPHERAL_DISCONNECTED = "PERIPHERAL_DISCONNECTED"
    PERIPHERAL_CONNECTION_LOST_ERROR = "PERIPHERAL_CONNECTION_LOST_ERROR"
    PERIPHERAL_REQUEST_ERROR = "PERIPHERAL_REQUEST_ERROR"
    PERIPHERAL_SCAN_TIMEOUT = "PERIPHERAL_SCAN_TIMEOUT"


class RuntimeEvents(Protocol):
    def emit(self, event: PeripheralEvent, payload: Any = None) -> None:
        """Deliver one lifecycle event to the host."""


class RecordingEvents:
    """Event sink for one-shot sessions and tests.

    Keeps the full history. With `queued` (the default) every event is also
    put on a queue that `next_event` drains; hosts that only read `history`
    should pass `queued=False` so undrained events do not pile up. Neither
    is bounded, so long-running hosts should implement `RuntimeEvents`
    themselves.
    """

    def __init__(self, *, queued: bool = True) -> None:
        self.history: list[tuple[PeripheralEvent, Any]] = []
        self._queue: asyncio.Queue[tuple[PeripheralEvent, Any]] | None = asyncio.Queue() if queued else None

    def emit(self, event: PeripheralEvent, payload: Any = None) -> None:
        LOGGER.debug("event %s payload=%r", event.value, payload)
        self.history.append((event, payload))
        if self._queue is not None:
            self._queue.put_nowait((event, payload))

    def count(self, event: PeripheralEvent, *, since: int = 0) -> int:
        """Count `event` in the history, ignoring the first `since` entries."""
        return sum(1 for name, _ in self.history[since:] if name is event)

    async def next_event(self, timeout_s: float | None = None) -> tuple[PeripheralEvent, Any] | None:
        if self._queue is None:
            raise RuntimeError("RecordingEvents was created with queued=False")
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return None
