from __future__ import annotations

import pytest

from fakes import FakeSocketFactory, discover_with, settle
from scratchlink.core.events import PeripheralEvent, RecordingEvents
from scratchlink.extensions.ble_device import BLEDevice

BATTERY = "0000180f-0000-1000-8000-00805f9b34fb"
RESPONSES = {
    "discover": discover_with({"peripheralId": "AA:BB", "name": "Sensor"}),
    "connect": {"result": None},
    "disconnect": {"result": None},
    "read": {"result": {"message": "ZA=="}},
    "write": {"result": 4},
    "startNotifications": {"result": None},
}


async def _connected(factory, events=None, **kwargs) -> BLEDevice:
    device = BLEDevice(events or RecordingEvents(), "ble_device", factory, **kwargs)
    await device.scan()
    await settle()
    assert await device.connect()
    return device


@pytest.mark.asyncio
async def test_operations_are_noops_before_connecting() -> None:
    factory = FakeSocketFactory(RESPONSES)
    device = BLEDevice(RecordingEvents(), "ble_device", factory)

    assert await device.connect() is False
    assert await device.read_characteristic(0x180F, 0x2A19) is None
    assert await device.write_characteristic(0x180F, 0x2A19, "AA==") is None
    await device.watch(0x180F, 0x2A19)
    await device.disconnect()
    assert factory.sockets == []


@pytest.mark.asyncio
async def test_read_unwraps_message_and_remembers_it() -> None:
    factory = FakeSocketFactory(RESPONSES)
    device = await _connected(factory)

    assert await device.read_characteristic(0x180F, 0x2A19) == "ZA=="
    assert device.last_value(BATTERY, 0x2A19) == "ZA=="
    await device.disconnect()
    assert device.last_value(0x180F, 0x2A19) is None


@pytest.mark.asyncio
async def test_write_uses_configured_encoding_and_response_mode() -> None:
    factory = FakeSocketFactory(RESPONSES)
    device = await _connected(factory, encoding="utf8", write_with_response=True)

    assert await device.write_characteristic(0x180F, 0x2A19, "hi") == 4
    assert factory.last.requests("write")[0]["params"] == {
        "serviceId": 0x180F,
        "characteristicId": 0x2A19,
        "message": "hi",
        "encoding": "utf8",
        "withResponse": True,
    }
    await device.disconnect()


@pytest.mark.asyncio
async def test_watch_tracks_notifications_until_connection_is_lost() -> None:
    factory = FakeSocketFactory(RESPONSES)
    events = RecordingEvents()
    device = await _connected(factory, events)

    await device.watch(0x180F, 0x2A19)
    factory.last.call("characteristicDidChange", {"serviceId": BATTERY, "characteristicId": 0x2A19, "message": "Yw=="})
    assert device.last_value(0x180F, 0x2A19) == "Yw=="

    factory.last.drop()

    assert events.count(PeripheralEvent.PERIPHERAL_CONNECTION_LOST_ERROR) == 1
    assert device.last_value(0x180F, 0x2A19) is None
    assert not device.is_connected()


@pytest.mark.asyncio
async def test_operations_are_noops_after_disconnect() -> None:
    factory = FakeSocketFactory(RESPONSES)
    device = await _connected(factory)
    socket = factory.last
    await device.disconnect()
    sent_before = len(socket.sent)

    assert await device.read_characteristic(0x180F, 0x2A19) is None
    assert await device.write_characteristic(0x180F, 0x2A19, "AA==") is None
    await device.watch(0x180F, 0x2A19)

    assert not device.is_connected()
    assert len(socket.sent) == sent_before
