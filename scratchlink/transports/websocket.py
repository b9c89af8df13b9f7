"""WebSocket transport to a local bridge process, built on aiohttp."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from scratchlink.core.errors import TransportClosedError, TransportConnectError

LOGGER = logging.getLogger(__name__)


class WebSocketTransport:
    """Single-use JSON-over-WebSocket channel.

    One reader task decodes text frames and hands each JSON object to the
    message handler; one writer task drains the outbound queue so that
    `send_message` never blocks. The close or error handler fires at most
    once, and never for a close initiated through `close()`.
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        open_timeout_s: float = 5.0,
        flush_timeout_s: float = 1.0,
    ) -> None:
        self.url = url
        self._session = session
        self._owns_session = session is None
        self._open_timeout_s = open_timeout_s
        self._flush_timeout_s = flush_timeout_s
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._outbox: asyncio.Queue[dict[str, Any]] | None = None
        self._reader: asyncio.Task[None] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._shutdown_task: asyncio.Task[None] | None = None
        self._closing = False
        self._finished = False
        self._on_close: Callable[[BaseException | None], None] | None = None
        self._on_error: Callable[[BaseException], None] | None = None
        self._handle_message: Callable[[dict[str, Any]], None] | None = None

    def set_on_close(self, callback: Callable[[BaseException | None], None]) -> None:
        self._on_close = callback

    def set_on_error(self, callback: Callable[[BaseException], None]) -> None:
        self._on_error = callback

    def set_handle_message(self, callback: Callable[[dict[str, Any]], None]) -> None:
        self._handle_message = callback

    async def open(self) -> None:
        if self._ws is not None:
            raise TransportConnectError(f"Socket to {self.url} was already opened")

        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(
                self._session.ws_connect(self.url),
                timeout=self._open_timeout_s,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            await self._close_session()
            raise TransportConnectError(f"Could not open bridge socket {self.url}: {exc}") from exc

        LOGGER.debug("Opened bridge socket %s", self.url)
        outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._ws, self._outbox = ws, outbox
        self._reader = asyncio.create_task(self._read_loop(ws), name=f"ws-read {self.url}")
        self._writer = asyncio.create_task(self._write_loop(ws, outbox), name=f"ws-write {self.url}")

    def is_open(self) -> bool:
        return (
            self._ws is not None
            and not self._ws.closed
            and not self._closing
            and not self._finished
        )

    def send_message(self, message: dict[str, Any]) -> None:
        if not self.is_open() or self._outbox is None:
            raise TransportClosedError(f"Socket to {self.url} is not open")
        self._outbox.put_nowait(message)

    async def close(self) -> None:
        if self._ws is None or self._closing:
            return
        self._closing = True

        if self._outbox is not None and self._writer is not None and not self._writer.done():
            try:
                await asyncio.wait_for(self._outbox.join(), timeout=self._flush_timeout_s)
            except asyncio.TimeoutError:
                LOGGER.debug("Dropping %d unsent messages to %s", self._outbox.qsize(), self.url)
        await self._shutdown()

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        error: BaseException | None = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        payload = json.loads(msg.data)
                    except ValueError:
                        LOGGER.warning("Dropping undecodable frame from %s", self.url)
                        continue
                    if not isinstance(payload, dict):
                        LOGGER.warning("Dropping non-object frame from %s", self.url)
                        continue
                    if self._handle_message is not None:
                        self._handle_message(payload)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception() or TransportClosedError(f"Socket error on {self.url}")
                    break
        except (aiohttp.ClientError, ConnectionError) as exc:
            error = exc
        finally:
            self._finish(error)

    async def _write_loop(self, ws: aiohttp.ClientWebSocketResponse, outbox: asyncio.Queue[dict[str, Any]]) -> None:
        while True:
            message = await outbox.get()
            try:
                await ws.send_str(json.dumps(message))
            except (aiohttp.ClientError, ConnectionError) as exc:
                self._finish(exc)
                return
            finally:
                outbox.task_done()

    def _finish(self, error: BaseException | None) -> None:
        if self._finished or self._closing:
            return
        self._finished = True
        LOGGER.debug("Bridge socket %s closed by peer (error=%r)", self.url, error)
        self._shutdown_task = asyncio.get_running_loop().create_task(self._shutdown())
        if error is not None and self._on_error is not None:
            self._on_error(error)
        elif self._on_close is not None:
            self._on_close(error)

    async def _shutdown(self) -> None:
        current = asyncio.current_task()
        for task in (self._writer, self._reader):
            if task is not None and task is not current and not task.done():
                task.cancel()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        await self._close_session()

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
