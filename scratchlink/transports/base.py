"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol


class TransportSocket(Protocol):
    """Duplex JSON message channel to a local bridge process.

    Handlers are invoked synchronously from the transport's own reader task.
    A locally initiated `close()` does not invoke the close handler.
    """

    async def open(self) -> None:
        """Connect; raise TransportConnectError on failure."""

    async def close(self) -> None:
        """Flush queued messages and close the channel."""

    def is_open(self) -> bool:
        """Return whether messages can currently be sent."""

    def send_message(self, message: dict[str, Any]) -> None:
        """Queue one JSON object; raise TransportClosedError when not open."""

    def set_on_close(self, callback: Callable[[BaseException | None], None]) -> None: ...

    def set_on_error(self, callback: Callable[[BaseException], None]) -> None: ...

    def set_handle_message(self, callback: Callable[[dict[str, Any]], None]) -> None: ...
