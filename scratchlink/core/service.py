"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from functools import partial
from typing import Any

from scratchlink.core.errors import (
    PeripheralConnectError,
    PeripheralRequestError,
    PeripheralSelectionError,
)
from scratchlink.core.events import PeripheralEvent, RecordingEvents
from scratchlink.core.model import ExtensionProfile, PeripheralRecord, PinReading
from scratchlink.core.peripheral_match import match_score, resolve_peripheral
from scratchlink.core.profile_loader import load_profiles
from scratchlink.extensions.ble_device import BLEDevice
from scratchlink.extensions.scrattino import Scrattino
from scratchlink.peripherals.firmata import PinMode
from scratchlink.transports.base import TransportSocket
from scratchlink.transports.websocket import WebSocketTransport

_SHORT_UUID_RE = re.compile(r"^(0x)?[0-9a-f]{1,4}$", re.IGNORECASE)
_SETTLE_TIMEOUT_S = 1.0

SocketFactory = Callable[[ExtensionProfile], TransportSocket]
Facade = Scrattino | BLEDevice

PIN_WRITE_MODES = ("digital", "pwm", "servo", "input")


def websocket_factory(profile: ExtensionProfile) -> TransportSocket:
    return WebSocketTransport(profile.url, open_timeout_s=profile.open_timeout_s)


def parse_gatt_id(value: str) -> int | str:
    """Turn CLI text into a GATT id: short hex ids become ints, UUIDs stay strings."""
    text = value.strip()
    if _SHORT_UUID_RE.match(text):
        return int(text, 16)
    return text.lower()


class LinkService:
    def __init__(self, *, socket_factory: SocketFactory | None = None) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.socket_factory = socket_factory or websocket_factory

    def list_profiles(self) -> list[ExtensionProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def profile(self, profile_id: str, *, kind: str | None = None) -> ExtensionProfile:
        profile = self.profiles.get(profile_id)
        if profile is None:
            raise PeripheralSelectionError(
                f"Unknown profile '{profile_id}'. Use 'scratchlink profiles' to inspect available profiles."
            )
        if kind is not None and profile.kind != kind:
            raise PeripheralSelectionError(f"Profile '{profile_id}' is a {profile.kind} profile, not {kind}.")
        return profile

    def discover(self, profile_id: str, timeout_s: float | None = None) -> list[PeripheralRecord]:
        profile = self.profile(profile_id)
        return asyncio.run(self._discover(profile, timeout_s))

    def read_pins(
        self,
        profile_id: str,
        device_hint: str | None = None,
    ) -> tuple[PeripheralRecord, list[PinReading]]:
        profile = self.profile(profile_id, kind="firmata")
        return asyncio.run(self._read_pins(profile, device_hint))

    def write_pin(
        self,
        profile_id: str,
        pin: int,
        value: float,
        *,
        mode: str = "digital",
        device_hint: str | None = None,
    ) -> PeripheralRecord:
        if mode not in PIN_WRITE_MODES:
            raise PeripheralSelectionError(
                f"Unsupported pin mode '{mode}'. Allowed: {', '.join(PIN_WRITE_MODES)}"
            )
        profile = self.profile(profile_id, kind="firmata")
        return asyncio.run(self._write_pin(profile, pin, value, mode, device_hint))

    def read_characteristic(
        self,
        profile_id: str,
        service_id: int | str,
        characteristic_id: int | str,
        device_hint: str | None = None,
    ) -> tuple[PeripheralRecord, Any]:
        profile = self.profile(profile_id, kind="ble")
        return asyncio.run(self._read_characteristic(profile, service_id, characteristic_id, device_hint))

    def write_characteristic(
        self,
        profile_id: str,
        service_id: int | str,
        characteristic_id: int | str,
        message: str,
        device_hint: str | None = None,
    ) -> tuple[PeripheralRecord, Any]:
        profile = self.profile(profile_id, kind="ble")
        return asyncio.run(
            self._write_characteristic(profile, service_id, characteristic_id, message, device_hint)
        )

    def build_facade(self, profile: ExtensionProfile, events: RecordingEvents) -> Facade:
        if profile.kind == "firmata":
            return self.build_scrattino(profile, events)
        return self.build_ble_device(profile, events)

    def build_scrattino(self, profile: ExtensionProfile, events: RecordingEvents) -> Scrattino:
        return Scrattino(
            events,
            profile.id,
            partial(self.socket_factory, profile),
            peripheral_options=profile.peripheral_options,
            poll_interval_s=profile.poll_interval_s,
            scan_timeout_s=profile.scan_timeout_s,
        )

    def build_ble_device(self, profile: ExtensionProfile, events: RecordingEvents) -> BLEDevice:
        return BLEDevice(
            events,
            profile.id,
            partial(self.socket_factory, profile),
            peripheral_options=profile.peripheral_options,
            write_with_response=profile.write_with_response,
            encoding=profile.encoding,
            scan_timeout_s=profile.scan_timeout_s,
        )

    async def _discover(self, profile: ExtensionProfile, timeout_s: float | None) -> list[PeripheralRecord]:
        events = RecordingEvents()
        facade = self.build_facade(profile, events)
        try:
            found = await self._wait_for_peripherals(
                facade,
                events,
                profile,
                timeout_s=timeout_s if timeout_s is not None else profile.scan_timeout_s,
                stop_early=False,
            )
        finally:
            await facade.disconnect()
        return sorted(found.values(), key=lambda r: r.peripheral_id)

    async def _read_pins(
        self,
        profile: ExtensionProfile,
        device_hint: str | None,
    ) -> tuple[PeripheralRecord, list[PinReading]]:
        events = RecordingEvents()
        board = self.build_scrattino(profile, events)
        async with self._session(board, events, profile, device_hint) as (record, connected_at):
            await board.update_board_state()
            _raise_on_request_error(events, profile, since=connected_at)
            readings = [
                PinReading(pin=index, mode=board.get_pin_mode(index), value=board.get_pin_value(index))
                for index in board.get_all_pin_index()
            ]
        return record, readings

    async def _write_pin(
        self,
        profile: ExtensionProfile,
        pin: int,
        value: float,
        mode: str,
        device_hint: str | None,
    ) -> PeripheralRecord:
        events = RecordingEvents()
        board = self.build_scrattino(profile, events)
        async with self._session(board, events, profile, device_hint) as (record, connected_at):
            if mode == "digital":
                board.set_pin_value_digital(pin, 1 if value else 0)
            elif mode == "pwm":
                board.set_pin_value_pwm(pin, value)
            elif mode == "servo":
                board.set_pin_value_servo(pin, max(int(value), 0))
            else:
                board.set_pin_mode_input(pin, int(PinMode.PULLUP) if value else int(PinMode.INPUT))
            await _settle(board)
            _raise_on_request_error(events, profile, since=connected_at)
        return record

    async def _read_characteristic(
        self,
        profile: ExtensionProfile,
        service_id: int | str,
        characteristic_id: int | str,
        device_hint: str | None,
    ) -> tuple[PeripheralRecord, Any]:
        events = RecordingEvents()
        device = self.build_ble_device(profile, events)
        async with self._session(device, events, profile, device_hint) as (record, connected_at):
            value = await device.read_characteristic(service_id, characteristic_id)
            _raise_on_request_error(events, profile, since=connected_at)
        return record, value

    async def _write_characteristic(
        self,
        profile: ExtensionProfile,
        service_id: int | str,
        characteristic_id: int | str,
        message: str,
        device_hint: str | None,
    ) -> tuple[PeripheralRecord, Any]:
        events = RecordingEvents()
        device = self.build_ble_device(profile, events)
        async with self._session(device, events, profile, device_hint) as (record, connected_at):
            result = await device.write_characteristic(service_id, characteristic_id, message)
            _raise_on_request_error(events, profile, since=connected_at)
        return record, result

    @asynccontextmanager
    async def _session(
        self,
        facade: Facade,
        events: RecordingEvents,
        profile: ExtensionProfile,
        device_hint: str | None,
    ) -> AsyncIterator[tuple[PeripheralRecord, int]]:
        """Discover, resolve and connect; yield the record and the history length at connect."""
        try:
            found = await self._wait_for_peripherals(
                facade,
                events,
                profile,
                timeout_s=profile.scan_timeout_s,
                stop_early=True,
                device_hint=device_hint,
            )
            record = resolve_peripheral(found, device_hint)
            if not await facade.connect(record.peripheral_id):
                raise PeripheralConnectError(
                    f"Could not connect to {record.peripheral_id} via profile '{profile.id}'."
                )
            yield record, len(events.history)
        finally:
            await facade.disconnect()

    async def _wait_for_peripherals(
        self,
        facade: Facade,
        events: RecordingEvents,
        profile: ExtensionProfile,
        *,
        timeout_s: float,
        stop_early: bool,
        device_hint: str | None = None,
    ) -> dict[str, PeripheralRecord]:
        await facade.scan()
        bridge = facade.bridge
        if bridge is None:
            return {}

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            item = await events.next_event(remaining)
            if item is None:
                break
            event, payload = item
            if event is PeripheralEvent.PERIPHERAL_SCAN_TIMEOUT:
                break
            if event is PeripheralEvent.PERIPHERAL_REQUEST_ERROR and not bridge.available_peripherals:
                raise PeripheralConnectError(
                    f"Discovery failed for profile '{profile.id}'. Is the bridge running at {profile.url}?"
                )
            if event is PeripheralEvent.PERIPHERAL_LIST_UPDATE and stop_early and _has_candidate(payload, device_hint):
                break
        return bridge.available_peripherals


def _has_candidate(peripherals: dict[str, PeripheralRecord], device_hint: str | None) -> bool:
    if device_hint is None:
        return bool(peripherals)
    return any(match_score(record, device_hint) for record in peripherals.values())


async def _settle(facade: Facade) -> None:
    """Give fire-and-forget requests a chance to be answered before teardown."""
    bridge = facade.bridge
    if bridge is None:
        return
    loop = asyncio.get_running_loop()
    deadline = loop.time() + _SETTLE_TIMEOUT_S
    while bridge.pending_requests and loop.time() < deadline:
        await asyncio.sleep(0.01)


def _raise_on_request_error(events: RecordingEvents, profile: ExtensionProfile, *, since: int = 0) -> None:
    if events.count(PeripheralEvent.PERIPHERAL_REQUEST_ERROR, since=since):
        raise PeripheralRequestError(f"The bridge reported a failed request for profile '{profile.id}'.")
    if events.count(PeripheralEvent.PERIPHERAL_CONNECTION_LOST_ERROR, since=since):
        raise PeripheralRequestError(f"Lost connection to the peripheral for profile '{profile.id}'.")
