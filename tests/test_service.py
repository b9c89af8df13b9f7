from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeSocketFactory, discover_with
from scratchlink.core.errors import (
    PeripheralConnectError,
    PeripheralRequestError,
    PeripheralSelectionError,
)
from scratchlink.core.service import LinkService, parse_gatt_id
from scratchlink.peripherals.firmata import PinMode

PORT = "/dev/ttyACM0"
BOARD = {
    "name": "Arduino Uno",
    "pins": [{"mode": 1, "value": 1}, {"mode": 0, "value": 0}, {"mode": 2, "value": 700}],
    "analogPins": [2],
    "RESOLUTION": {"PWM": 255},
    "transport": {"path": PORT, "isOpen": True},
}
FIRMATA = {
    "scan": {"result": {PORT: {"manufacturer": "Arduino"}}},
    "connect": {"result": BOARD},
    "disconnect": {"result": None},
    "getBoardState": {"result": {"pins": BOARD["pins"]}},
    "pinMode": {"result": None},
    "digitalWrite": {"result": None},
    "pwmWrite": {"result": None},
    "servoWrite": {"result": None},
}
BLE = {
    "discover": discover_with({"peripheralId": "AA:BB", "name": "Sensor", "rssi": -50}),
    "connect": {"result": None},
    "disconnect": {"result": None},
    "read": {"result": {"message": "ZA=="}},
    "write": {"result": 4},
}


@pytest.fixture(autouse=True)
def isolated_profiles(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


def test_list_profiles_is_sorted() -> None:
    service = LinkService(socket_factory=FakeSocketFactory())
    assert [p.id for p in service.list_profiles()] == ["ble_device", "scrattino"]


def test_unknown_profile_and_wrong_kind_rejected() -> None:
    service = LinkService(socket_factory=FakeSocketFactory())
    with pytest.raises(PeripheralSelectionError, match="Unknown profile"):
        service.discover("nope")
    with pytest.raises(PeripheralSelectionError, match="not firmata"):
        service.read_pins("ble_device")


def test_discover_lists_scan_results() -> None:
    factory = FakeSocketFactory({**FIRMATA, "scan": {"result": {PORT: {"manufacturer": "Arduino"}, "/dev/ttyUSB0": {}}}})
    service = LinkService(socket_factory=factory)

    found = service.discover("scrattino", timeout_s=0.2)

    assert [record.peripheral_id for record in found] == [PORT, "/dev/ttyUSB0"]
    assert found[0].name == "Arduino"
    assert factory.last.close_calls == 1


def test_discover_without_results_is_empty() -> None:
    service = LinkService(socket_factory=FakeSocketFactory({"discover": {"result": None}}))
    assert service.discover("ble_device", timeout_s=0.1) == []


def test_discover_reports_unreachable_bridge() -> None:
    service = LinkService(socket_factory=FakeSocketFactory(fail_open=True))
    with pytest.raises(PeripheralConnectError, match="Is the bridge running"):
        service.discover("scrattino", timeout_s=0.5)


def test_read_pins_reports_every_pin() -> None:
    factory = FakeSocketFactory(FIRMATA)
    service = LinkService(socket_factory=factory)

    record, readings = service.read_pins("scrattino")

    assert record.peripheral_id == PORT
    assert [(r.pin, r.mode, r.value) for r in readings] == [(0, 1, 1), (1, 0, 0), (2, 2, 700)]
    socket = factory.last
    assert socket.requests("getBoardState")[0]["params"] == {"portPath": PORT}
    assert socket.requests("disconnect")[0]["params"] == {"portPath": PORT}


def test_write_pin_modes() -> None:
    factory = FakeSocketFactory(FIRMATA)
    service = LinkService(socket_factory=factory)

    service.write_pin("scrattino", 1, 1.0)
    assert factory.last.requests("digitalWrite")[0]["params"] == {"portPath": PORT, "pin": 1, "value": 1}

    service.write_pin("scrattino", 1, 400, mode="pwm", device_hint="acm0")
    assert factory.last.requests("pwmWrite")[0]["params"]["value"] == 255

    service.write_pin("scrattino", 0, 1, mode="input")
    assert factory.last.requests("pinMode")[0]["params"]["mode"] == int(PinMode.PULLUP)


def test_write_pin_rejects_unknown_mode() -> None:
    factory = FakeSocketFactory(FIRMATA)
    service = LinkService(socket_factory=factory)
    with pytest.raises(PeripheralSelectionError, match="Unsupported pin mode"):
        service.write_pin("scrattino", 1, 1, mode="analog")
    assert factory.sockets == []


def test_write_pin_surfaces_bridge_errors() -> None:
    factory = FakeSocketFactory({**FIRMATA, "digitalWrite": {"error": {"code": -32000, "message": "busy"}}})
    service = LinkService(socket_factory=factory)
    with pytest.raises(PeripheralRequestError):
        service.write_pin("scrattino", 1, 1)
    assert factory.last.close_calls == 1


def test_device_hint_must_match(tmp_path: Path) -> None:
    override = tmp_path / "cfg" / "scratchlink" / "profiles" / "scrattino.yaml"
    override.parent.mkdir(parents=True)
    override.write_text(
        "id: scrattino\nname: Quick\nkind: firmata\nurl: ws://localhost:2020\nscan_timeout_s: 0.2\n",
        encoding="utf-8",
    )
    service = LinkService(socket_factory=FakeSocketFactory({**FIRMATA, "scan": {"result": {PORT: {}}}}))
    with pytest.raises(PeripheralSelectionError, match="No peripheral found matching"):
        service.read_pins("scrattino", device_hint="usb")


def test_connect_refusal_raises() -> None:
    factory = FakeSocketFactory({**BLE, "connect": {"error": {"code": -32000, "message": "refused"}}})
    service = LinkService(socket_factory=factory)
    with pytest.raises(PeripheralConnectError, match="Could not connect to AA:BB"):
        service.read_characteristic("ble_device", 0x180F, 0x2A19)


def test_read_and_write_characteristic() -> None:
    factory = FakeSocketFactory(BLE)
    service = LinkService(socket_factory=factory)

    record, value = service.read_characteristic("ble_device", 0x180F, 0x2A19, device_hint="sensor")
    assert record.peripheral_id == "AA:BB"
    assert value == "ZA=="
    assert factory.last.requests("discover")[0]["params"] == {"filters": [{"services": [0x180A]}]}

    record, result = service.write_characteristic("ble_device", 0x180F, 0x2A19, "AQ==")
    assert result == 4
    assert factory.last.requests("write")[0]["params"] == {
        "serviceId": 0x180F,
        "characteristicId": 0x2A19,
        "message": "AQ==",
        "encoding": "base64",
        "withResponse": False,
    }


def test_discovery_errors_before_connect_do_not_fail_the_read() -> None:
    def discover_then_fail(socket, _):
        socket.call_soon("didDiscoverPeripheral", {"peripheralId": "AA:BB", "name": "Sensor", "rssi": -50})
        return {"error": {"code": -32000, "message": "adapter busy"}}

    factory = FakeSocketFactory({**BLE, "discover": discover_then_fail})
    service = LinkService(socket_factory=factory)

    record, value = service.read_characteristic("ble_device", 0x180F, 0x2A19)

    assert record.peripheral_id == "AA:BB"
    assert value == "ZA=="


def test_request_errors_after_connect_fail_the_read() -> None:
    factory = FakeSocketFactory({**BLE, "read": {"error": {"code": -32000, "message": "gatt failure"}}})
    service = LinkService(socket_factory=factory)

    with pytest.raises(PeripheralRequestError, match="failed request"):
        service.read_characteristic("ble_device", 0x180F, 0x2A19)

def test_parse_gatt_id() -> None:
    assert parse_gatt_id("180f") == 0x180F
    assert parse_gatt_id("0x2A19") == 0x2A19
    assert parse_gatt_id("0000180F-0000-1000-8000-00805F9B34FB") == "0000180f-0000-1000-8000-00805f9b34fb"
