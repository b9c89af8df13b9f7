"""Generic BLE device extension: characteristic read/write/watch."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from scratchlink.core.bridge import DISCOVER_TIMEOUT_S
from scratchlink.core.events import RuntimeEvents
from scratchlink.peripherals.ble import BLEBridge, canonical_service_id
from scratchlink.transports.base import TransportSocket

LOGGER = logging.getLogger(__name__)


class BLEDevice:
    def __init__(
        self,
        events: RuntimeEvents,
        extension_id: str,
        socket_factory: Callable[[], TransportSocket],
        *,
        peripheral_options: dict[str, Any] | None = None,
        write_with_response: bool | None = None,
        encoding: str | None = "base64",
        scan_timeout_s: float = DISCOVER_TIMEOUT_S,
    ) -> None:
        self._events = events
        self._extension_id = extension_id
        self._socket_factory = socket_factory
        self._peripheral_options = peripheral_options or {}
        self.write_with_response = write_with_response
        self.encoding = encoding
        self.scan_timeout_s = scan_timeout_s
        self._ble: BLEBridge | None = None
        self._last_values: dict[tuple[str, Any], Any] = {}

    @property
    def bridge(self) -> BLEBridge | None:
        return self._ble

    async def scan(self) -> None:
        if self._ble is None:
            self._ble = BLEBridge(
                self._events,
                self._extension_id,
                self._socket_factory,
                peripheral_options=self._peripheral_options,
                connect_callback=self._on_connect,
                reset_callback=self.reset,
                scan_timeout_s=self.scan_timeout_s,
            )
        await self._ble.scan()

    async def connect(self, peripheral_id: str | None = None) -> bool:
        if self._ble is None:
            return False
        return await self._ble.connect_peripheral(peripheral_id)

    async def disconnect(self) -> None:
        self.reset()
        if self._ble is not None:
            await self._ble.disconnect()

    def is_connected(self) -> bool:
        return self._connected_bridge() is not None

    def _connected_bridge(self) -> BLEBridge | None:
        if self._ble is None or not self._ble.is_connected():
            return None
        return self._ble

    def reset(self) -> None:
        self._last_values.clear()

    async def read_characteristic(self, service_id: int | str, characteristic_id: Any) -> Any:
        ble = self._connected_bridge()
        if ble is None:
            return None
        result = await ble.read(service_id, characteristic_id)
        if isinstance(result, dict) and "message" in result:
            self._remember(result["message"], characteristic_id, service_id)
            return result["message"]
        return result

    async def write_characteristic(self, service_id: int | str, characteristic_id: Any, message: str) -> Any:
        ble = self._connected_bridge()
        if ble is None:
            return None
        return await ble.write(
            service_id,
            characteristic_id,
            message,
            encoding=self.encoding,
            with_response=self.write_with_response,
        )

    async def watch(self, service_id: int | str, characteristic_id: Any) -> None:
        ble = self._connected_bridge()
        if ble is None:
            return
        await ble.start_notifications(service_id, characteristic_id, self._remember)

    def last_value(self, service_id: int | str, characteristic_id: Any) -> Any:
        return self._last_values.get((canonical_service_id(service_id), characteristic_id))

    def _remember(self, message: Any, characteristic_id: Any, service_id: Any) -> None:
        self._last_values[(canonical_service_id(service_id), characteristic_id)] = message

    def _on_connect(self, _: Any) -> None:
        LOGGER.info("Connected to BLE peripheral %s", self._ble.peripheral_id if self._ble else None)
