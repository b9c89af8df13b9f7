"""Peripheral bridge lifecycle shared by the BLE and Firmata variants.

A bridge owns at most one transport socket and one JSON-RPC correlator. It
drives discovery, connection, and teardown, and reports every outcome to the
host through the `RuntimeEvents` it was built with. Nothing here raises into
the caller: failures become events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from functools import partial
from typing import Any

from scratchlink.core.errors import (
    PeripheralSelectionError,
    ScratchLinkError,
    TransportClosedError,
    TransportError,
)
from scratchlink.core.events import PeripheralEvent, RuntimeEvents
from scratchlink.core.jsonrpc import JSONRPC
from scratchlink.core.model import ConnectionState, PeripheralRecord
from scratchlink.transports.base import TransportSocket

LOGGER = logging.getLogger(__name__)

DISCOVER_TIMEOUT_S = 15.0
RELEASE_TIMEOUT_S = 1.0
PING_RESPONSE = 42
LOST_CONNECTION_MESSAGE = "Scratch lost connection to"


class PeripheralBridge:
    DISCOVER_METHOD = "discover"

    def __init__(
        self,
        events: RuntimeEvents,
        extension_id: str,
        socket_factory: Callable[[], TransportSocket],
        *,
        peripheral_options: dict[str, Any] | None = None,
        connect_callback: Callable[[Any], None] | None = None,
        reset_callback: Callable[[], None] | None = None,
        scan_timeout_s: float = DISCOVER_TIMEOUT_S,
        release_timeout_s: float = RELEASE_TIMEOUT_S,
    ) -> None:
        self._events = events
        self._extension_id = extension_id
        self._socket_factory = socket_factory
        self._peripheral_options = peripheral_options or {}
        self._connect_callback = connect_callback
        self._reset_callback = reset_callback
        self._scan_timeout_s = scan_timeout_s
        self._release_timeout_s = release_timeout_s

        self._rpc = JSONRPC(self._send_message, self.did_receive_call)
        self._socket: TransportSocket | None = None
        self._state = ConnectionState.DISCONNECTED
        self._available_peripherals: dict[str, PeripheralRecord] = {}
        self._peripheral_id: str | None = None
        self._discover_timer: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def extension_id(self) -> str:
        return self._extension_id

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def peripheral_id(self) -> str | None:
        return self._peripheral_id

    @property
    def available_peripherals(self) -> dict[str, PeripheralRecord]:
        return dict(self._available_peripherals)

    @property
    def pending_requests(self) -> int:
        return self._rpc.pending_count

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def scan(self) -> None:
        """Quietly replace any held socket with a fresh one and start discovery."""
        await self._teardown(emit=False)

        socket = self._socket_factory()
        socket.set_handle_message(partial(self._handle_socket_message, socket))
        socket.set_on_close(partial(self._handle_socket_closed, socket))
        socket.set_on_error(partial(self._handle_socket_closed, socket))
        self._socket = socket
        self._set_state(ConnectionState.DISCOVERING)

        try:
            await socket.open()
        except TransportError as exc:
            if self._socket is socket:
                self._socket = None
                self._set_state(ConnectionState.DISCONNECTED)
            self._handle_request_error(exc)
            return

        if self._socket is socket:
            self.request_peripheral()

    def request_peripheral(self) -> None:
        self._available_peripherals = {}
        self._cancel_discover_timer()
        loop = asyncio.get_running_loop()
        self._discover_timer = loop.call_later(self._scan_timeout_s, self._handle_discover_timeout)

        future = self._rpc.send_remote_request(self.DISCOVER_METHOD, self._peripheral_options)
        future.add_done_callback(partial(self._handle_discover_done, self._socket))

    async def connect_peripheral(self, peripheral_id: str | None = None) -> bool:
        """Connect to `peripheral_id`, or to any discovered peripheral when omitted."""
        socket = self._socket
        if socket is None or not socket.is_open():
            self._handle_request_error(TransportClosedError("No open bridge socket; scan first"))
            return False
        if peripheral_id is None:
            # Any cached peripheral will do; callers wanting a specific one pass its id.
            peripheral_id = next(iter(self._available_peripherals), None)
            if peripheral_id is None:
                self._handle_request_error(PeripheralSelectionError("No peripheral has been discovered"))
                return False

        previous = self._state
        self._set_state(ConnectionState.CONNECTING)
        try:
            result = await self._rpc.send_remote_request("connect", self._connect_params(peripheral_id))
        except ScratchLinkError as exc:
            if self._socket is socket and self._state is ConnectionState.CONNECTING:
                self._set_state(previous)
            self._handle_request_error(exc)
            return False

        if self._socket is not socket or self._state is not ConnectionState.CONNECTING:
            LOGGER.debug("Bridge %s was torn down while connecting", self._extension_id)
            return False

        self._cancel_discover_timer()
        self._peripheral_id = peripheral_id
        self._set_state(ConnectionState.CONNECTED)
        metadata = self._did_connect(peripheral_id, result)
        if self._connect_callback is not None:
            try:
                self._connect_callback(metadata)
            except Exception:
                LOGGER.exception("Connect callback for %s failed", self._extension_id)
        self._events.emit(PeripheralEvent.PERIPHERAL_CONNECTED)
        return True

    async def disconnect(self) -> None:
        """Release the peripheral and close the socket. Safe to call at any time."""
        await self._teardown(emit=True)

    async def _teardown(self, *, emit: bool) -> None:
        """Drop the socket and connection.

        With `emit`, a connected peripheral is released first and the host is
        told about the disconnect. Without it nothing reaches the bridge or
        the host beyond the socket closing.
        """
        self._cancel_timers()
        socket = self._socket
        was_connected = self._state is ConnectionState.CONNECTED
        had_session = socket is not None or self._state is not ConnectionState.DISCONNECTED

        self._set_state(ConnectionState.DISCONNECTED)
        if emit and was_connected and socket is not None and socket.is_open():
            await self._release_peripheral()

        if self._socket is socket:
            self._socket = None
        self._clear_connection()
        if socket is not None:
            await socket.close()
        self._rpc.reject_all(TransportClosedError("Bridge socket closed"))

        if emit and had_session:
            self._events.emit(PeripheralEvent.PERIPHERAL_DISCONNECTED)

    def handle_disconnect_error(self, error: BaseException | None = None) -> None:
        """Handle losing the socket or the peripheral without the user asking.

        This could be due to battery depletion, going out of range, the board
        being unplugged, or the bridge process exiting. Events are only emitted
        when the bridge believed itself connected.
        """
        was_connected = self._state is ConnectionState.CONNECTED
        had_socket = self._socket is not None
        self._drop_socket()

        if not was_connected:
            if had_socket:
                LOGGER.warning("Bridge socket for %s closed before connecting: %s", self._extension_id, error)
            return

        LOGGER.warning("Lost connection for %s: %s", self._extension_id, error)
        self._events.emit(PeripheralEvent.PERIPHERAL_DISCONNECTED)
        if self._reset_callback is not None:
            self._reset_callback()
        self._events.emit(
            PeripheralEvent.PERIPHERAL_CONNECTION_LOST_ERROR,
            {"message": LOST_CONNECTION_MESSAGE, "extensionId": self._extension_id},
        )

    def did_receive_call(self, method: str, params: Any) -> Any:
        if method == "didDiscoverPeripheral":
            self._add_peripherals([PeripheralRecord.from_params(params or {})])
            return None
        if method == "ping":
            return PING_RESPONSE
        LOGGER.debug("Ignoring inbound call %r for %s", method, self._extension_id)
        return None

    # Variant hooks.

    def _connect_params(self, peripheral_id: str) -> dict[str, Any]:
        return {"peripheralId": peripheral_id}

    def _disconnect_params(self) -> dict[str, Any]:
        return {"peripheralId": self._peripheral_id}

    def _did_discover_result(self, result: Any) -> None:
        """Discovery response; peripherals arrive as inbound calls by default."""

    def _did_connect(self, peripheral_id: str, result: Any) -> Any:
        return result

    def _clear_connection(self) -> None:
        self._peripheral_id = None

    def _cancel_timers(self) -> None:
        self._cancel_discover_timer()

    # Helpers shared with the variants.

    def _add_peripherals(self, records: Iterable[PeripheralRecord]) -> None:
        for record in records:
            self._available_peripherals[record.peripheral_id] = record
        self._events.emit(PeripheralEvent.PERIPHERAL_LIST_UPDATE, self.available_peripherals)

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        try:
            return await self._rpc.send_remote_request(method, params)
        except ScratchLinkError as exc:
            self._handle_failure(exc)
            return None

    def _send_and_forget(self, method: str, params: dict[str, Any]) -> None:
        future = self._rpc.send_remote_request(method, params)
        future.add_done_callback(self._handle_request_done)

    def _spawn(self, coroutine: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coroutine, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _handle_failure(self, error: BaseException) -> None:
        if isinstance(error, TransportError):
            # The socket's close handler owns transport loss.
            LOGGER.debug("Request on %s ended with transport error: %s", self._extension_id, error)
            return
        self._handle_request_error(error)

    def _handle_request_error(self, error: BaseException) -> None:
        LOGGER.warning("Request error for %s: %s", self._extension_id, error)
        self._events.emit(
            PeripheralEvent.PERIPHERAL_REQUEST_ERROR,
            {"message": LOST_CONNECTION_MESSAGE, "extensionId": self._extension_id},
        )

    # Internals.

    def _send_message(self, message: dict[str, Any]) -> None:
        if self._socket is None:
            raise TransportClosedError("No bridge socket")
        self._socket.send_message(message)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            LOGGER.debug("%s: %s -> %s", self._extension_id, self._state.value, state.value)
            self._state = state

    def _drop_socket(self) -> None:
        self._cancel_timers()
        socket, self._socket = self._socket, None
        if socket is not None and socket.is_open():
            self._spawn(socket.close(), name=f"close {self._extension_id}")
        self._rpc.reject_all(TransportClosedError("Bridge socket closed"))
        self._set_state(ConnectionState.DISCONNECTED)
        self._clear_connection()

    async def _release_peripheral(self) -> None:
        future = self._rpc.send_remote_request("disconnect", self._disconnect_params())
        try:
            await asyncio.wait_for(future, timeout=self._release_timeout_s)
        except (ScratchLinkError, asyncio.TimeoutError) as exc:
            LOGGER.debug("Ignoring failed release for %s: %s", self._extension_id, exc)

    def _cancel_discover_timer(self) -> None:
        if self._discover_timer is not None:
            self._discover_timer.cancel()
            self._discover_timer = None

    def _handle_discover_timeout(self) -> None:
        self._discover_timer = None
        if self._available_peripherals:
            LOGGER.debug("Discovery window for %s ended with %d peripherals", self._extension_id, len(self._available_peripherals))
            return
        if self._state is not ConnectionState.DISCOVERING:
            LOGGER.debug("Discovery window for %s ended while %s", self._extension_id, self._state.value)
            return
        self._set_state(ConnectionState.DISCONNECTED)
        self._events.emit(PeripheralEvent.PERIPHERAL_SCAN_TIMEOUT)

    def _handle_discover_done(self, socket: TransportSocket | None, future: asyncio.Future[Any]) -> None:
        if future.cancelled() or socket is not self._socket:
            return
        error = future.exception()
        if error is not None:
            self._handle_failure(error)
            return
        self._did_discover_result(future.result())

    def _handle_request_done(self, future: asyncio.Future[Any]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self._handle_failure(error)

    def _handle_socket_message(self, socket: TransportSocket, message: dict[str, Any]) -> None:
        if socket is not self._socket:
            LOGGER.debug("Dropping message from stale socket for %s", self._extension_id)
            return
        self._rpc.handle_message(message)

    def _handle_socket_closed(self, socket: TransportSocket, error: BaseException | None = None) -> None:
        if socket is not self._socket:
            return
        self.handle_disconnect_error(error)
