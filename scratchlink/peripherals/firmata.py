"""Firmata board bridge.

The bridge process owns the serial port and the Firmata driver; this side
mirrors the board object it reports and relays pin commands.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from scratchlink.core.bridge import PeripheralBridge
from scratchlink.core.errors import TransportClosedError
from scratchlink.core.model import PeripheralRecord

LOGGER = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.1
DEFAULT_PWM_RESOLUTION = 255


class PinMode(IntEnum):
    INPUT = 0x00
    OUTPUT = 0x01
    ANALOG = 0x02
    PWM = 0x03
    SERVO = 0x04
    SHIFT = 0x05
    I2C = 0x06
    ONEWIRE = 0x07
    STEPPER = 0x08
    SERIAL = 0x0A
    PULLUP = 0x0B
    IGNORE = 0x7F
    PING_READ = 0x75
    UNKNOWN = 0x10


class DigitalValue(IntEnum):
    LOW = 0
    HIGH = 1


@dataclass
class PinState:
    mode: int | None = None
    value: int | float = 0
    supported_modes: tuple[int, ...] = ()
    analog_channel: int | None = None

    @classmethod
    def from_wire(cls, pin: Mapping[str, Any]) -> PinState:
        return cls(
            mode=pin.get("mode"),
            value=pin.get("value", 0),
            supported_modes=tuple(pin.get("supportedModes", ())),
            analog_channel=pin.get("analogChannel"),
        )


@dataclass
class BoardState:
    """Local mirror of the board object reported by the bridge."""

    port_path: str
    name: str | None = None
    pins: list[PinState] = field(default_factory=list)
    analog_pins: list[int] = field(default_factory=list)
    resolution: dict[str, int] = field(default_factory=dict)
    transport_open: bool = True

    @classmethod
    def from_wire(cls, board: Mapping[str, Any], *, port_path: str) -> BoardState:
        state = cls(port_path=port_path)
        state.merge(board)
        return state

    def merge(self, fields: Mapping[str, Any]) -> None:
        """Apply a partial board update; top-level keys replace, absent keys stay."""
        if "name" in fields:
            self.name = fields["name"]
        if "pins" in fields:
            self.pins = [PinState.from_wire(pin) for pin in _ordered_pins(fields["pins"])]
        if "analogPins" in fields:
            self.analog_pins = [int(index) for index in fields["analogPins"] or ()]
        if "RESOLUTION" in fields:
            self.resolution = dict(fields["RESOLUTION"] or {})
        transport = fields.get("transport")
        if isinstance(transport, Mapping):
            if transport.get("path"):
                self.port_path = str(transport["path"])
            if "isOpen" in transport:
                self.transport_open = bool(transport["isOpen"])

    @property
    def pwm_resolution(self) -> int:
        return int(self.resolution.get("PWM", DEFAULT_PWM_RESOLUTION))

    def pin(self, index: int) -> PinState | None:
        if 0 <= index < len(self.pins):
            return self.pins[index]
        return None


class FirmataBridge(PeripheralBridge):
    DISCOVER_METHOD = "scan"

    def __init__(self, *args: Any, poll_interval_s: float = POLL_INTERVAL_S, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._poll_interval_s = poll_interval_s
        self._poll_task: asyncio.Task[None] | None = None
        self.board: BoardState | None = None

    def is_connected(self) -> bool:
        return super().is_connected() and self.board is not None and self.board.transport_open

    async def update_board_state(self) -> None:
        if self.board is None:
            return
        fields = await self._request("getBoardState", {"portPath": self.board.port_path})
        if isinstance(fields, Mapping) and self.board is not None:
            self.apply_board_state(fields)

    def apply_board_state(self, fields: Mapping[str, Any]) -> None:
        if self.board is None:
            return
        self.board.merge(fields)
        if not self.board.transport_open:
            self.handle_disconnect_error(TransportClosedError(f"Board port {self.board.port_path} closed"))

    def get_all_pin_index(self) -> list[int]:
        if self.board is None:
            return [0]
        return list(range(len(self.board.pins)))

    def get_pin_value(self, pin: int) -> int | float:
        if self.board is None:
            return 0
        state = self.board.pin(pin)
        return state.value if state is not None else 0

    def get_analog_pin_value(self, analog_index: int) -> int | float:
        if self.board is None or not 0 <= analog_index < len(self.board.analog_pins):
            return 0
        return self.get_pin_value(self.board.analog_pins[analog_index])

    def get_pin_mode(self, pin: int) -> int | None:
        if self.board is None:
            return None
        state = self.board.pin(pin)
        return state.mode if state is not None else None

    def set_pin_mode(self, pin: int, mode: int) -> None:
        if self.board is None:
            return
        state = self.board.pin(pin)
        if state is not None:
            state.mode = int(mode)
        self._send_and_forget("pinMode", {"portPath": self.board.port_path, "pin": pin, "mode": int(mode)})

    def digital_write(self, pin: int, value: int) -> None:
        if self.board is None:
            return
        self._send_and_forget("digitalWrite", {"portPath": self.board.port_path, "pin": pin, "value": value})

    def pwm_write(self, pin: int, value: float) -> None:
        if self.board is None:
            return
        value = math.floor(min(max(value, 0), self.board.pwm_resolution))
        self._send_and_forget("pwmWrite", {"portPath": self.board.port_path, "pin": pin, "value": value})

    def servo_write(self, pin: int, value: int) -> None:
        if self.board is None:
            return
        self._send_and_forget("servoWrite", {"portPath": self.board.port_path, "pin": pin, "value": value})

    def _connect_params(self, peripheral_id: str) -> dict[str, Any]:
        return {"portPath": peripheral_id}

    def _disconnect_params(self) -> dict[str, Any]:
        port_path = self.board.port_path if self.board is not None else self._peripheral_id
        return {"portPath": port_path}

    def _did_discover_result(self, result: Any) -> None:
        if result is None:
            return
        self._add_peripherals(_records_from_scan(result))

    def _did_connect(self, peripheral_id: str, result: Any) -> BoardState:
        board = result if isinstance(result, Mapping) else {}
        self.board = BoardState.from_wire(board, port_path=peripheral_id)
        self._poll_task = self._spawn(self._poll_board_state(), name=f"poll {self._extension_id}")
        return self.board

    def _clear_connection(self) -> None:
        super()._clear_connection()
        self.board = None

    def _cancel_timers(self) -> None:
        super()._cancel_timers()
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _poll_board_state(self) -> None:
        while self.is_connected():
            await asyncio.sleep(self._poll_interval_s)
            if not self.is_connected():
                return
            await self.update_board_state()


def _ordered_pins(pins: Any) -> list[Mapping[str, Any]]:
    if isinstance(pins, Mapping):
        return [pins[key] for key in sorted(pins, key=int)]
    return list(pins or ())


def _records_from_scan(result: Any) -> Iterator[PeripheralRecord]:
    if isinstance(result, Mapping):
        for port_path, info in result.items():
            yield PeripheralRecord.from_params(info if isinstance(info, Mapping) else {}, peripheral_id=str(port_path))
        return
    if not isinstance(result, list):
        LOGGER.debug("Ignoring scan result of type %s", type(result).__name__)
        return
    for info in result:
        if not isinstance(info, Mapping):
            continue
        port_path = info.get("portPath") or info.get("path") or info.get("peripheralId")
        if port_path:
            yield PeripheralRecord.from_params(info, peripheral_id=str(port_path))
