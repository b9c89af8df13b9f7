"""Stable public API for building tooling on top of scratchlink.

This module is the supported integration surface for third-party callers.
Hosts embedding the bridges directly (a block runtime, a GUI) use the facades
and `RuntimeEvents`; one-shot tools use `Client`.
"""

from __future__ import annotations

from typing import Any

from scratchlink.core.bridge import PeripheralBridge
from scratchlink.core.errors import (
    PeripheralConnectError,
    PeripheralRequestError,
    PeripheralSelectionError,
    ProfileLoadError,
    ProfileValidationError,
    RemoteRequestError,
    RPCError,
    ScratchLinkError,
    TransportClosedError,
    TransportConnectError,
    TransportError,
)
from scratchlink.core.events import PeripheralEvent, RecordingEvents, RuntimeEvents
from scratchlink.core.model import ConnectionState, ExtensionProfile, PeripheralRecord, PinReading
from scratchlink.core.service import LinkService, SocketFactory
from scratchlink.extensions.ble_device import BLEDevice
from scratchlink.extensions.scrattino import Scrattino, ScrattinoBlocks
from scratchlink.peripherals.ble import BLEBridge, canonical_service_id
from scratchlink.peripherals.firmata import BoardState, DigitalValue, FirmataBridge, PinMode
from scratchlink.transports.base import TransportSocket
from scratchlink.transports.websocket import WebSocketTransport

__all__ = [
    "ScratchLinkError",
    "PeripheralConnectError",
    "PeripheralRequestError",
    "PeripheralSelectionError",
    "ProfileLoadError",
    "ProfileValidationError",
    "RPCError",
    "RemoteRequestError",
    "TransportError",
    "TransportClosedError",
    "TransportConnectError",
    "ConnectionState",
    "ExtensionProfile",
    "PeripheralRecord",
    "PinReading",
    "PeripheralEvent",
    "RecordingEvents",
    "RuntimeEvents",
    "PeripheralBridge",
    "BLEBridge",
    "FirmataBridge",
    "BoardState",
    "DigitalValue",
    "PinMode",
    "canonical_service_id",
    "BLEDevice",
    "Scrattino",
    "ScrattinoBlocks",
    "TransportSocket",
    "WebSocketTransport",
    "Client",
]


class Client:
    """Public client for one-shot peripheral operations.

    A `Client` instance wraps profile loading, discovery, connection, and the
    pin / characteristic operations behind a stable API intended for
    third-party tools (GUI/TUI/services/scripts). Each call opens its own
    bridge session and tears it down before returning.
    """

    def __init__(self, *, socket_factory: SocketFactory | None = None) -> None:
        self._service = LinkService(socket_factory=socket_factory)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_profiles(self) -> list[ExtensionProfile]:
        return self._service.list_profiles()

    def discover(self, profile_id: str, *, timeout_s: float | None = None) -> list[PeripheralRecord]:
        return self._service.discover(profile_id, timeout_s=timeout_s)

    def read_pins(
        self,
        profile_id: str = "scrattino",
        *,
        device_hint: str | None = None,
    ) -> tuple[PeripheralRecord, list[PinReading]]:
        return self._service.read_pins(profile_id, device_hint=device_hint)

    def write_pin(
        self,
        pin: int,
        value: float,
        *,
        profile_id: str = "scrattino",
        mode: str = "digital",
        device_hint: str | None = None,
    ) -> PeripheralRecord:
        return self._service.write_pin(profile_id, pin, value, mode=mode, device_hint=device_hint)

    def read_characteristic(
        self,
        service_id: int | str,
        characteristic_id: int | str,
        *,
        profile_id: str = "ble_device",
        device_hint: str | None = None,
    ) -> tuple[PeripheralRecord, Any]:
        return self._service.read_characteristic(
            profile_id,
            service_id,
            characteristic_id,
            device_hint=device_hint,
        )

    def write_characteristic(
        self,
        service_id: int | str,
        characteristic_id: int | str,
        message: str,
        *,
        profile_id: str = "ble_device",
        device_hint: str | None = None,
    ) -> tuple[PeripheralRecord, Any]:
        return self._service.write_characteristic(
            profile_id,
            service_id,
            characteristic_id,
            message,
            device_hint=device_hint,
        )
