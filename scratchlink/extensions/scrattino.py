"""Scrattino: Firmata board blocks driven through the bridge process."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from scratchlink.core.bridge import DISCOVER_TIMEOUT_S
from scratchlink.core.cast import to_int, to_number
from scratchlink.core.events import RuntimeEvents
from scratchlink.peripherals.firmata import POLL_INTERVAL_S, BoardState, DigitalValue, FirmataBridge, PinMode
from scratchlink.transports.base import TransportSocket

LOGGER = logging.getLogger(__name__)

DOCS_URI = "https://github.com/yokobond/scrattino3"


class Scrattino:
    """Pin-level API over a single Firmata bridge.

    Every operation is a no-op returning a default when no board is
    connected; bridge failures surface as host events, never as exceptions.
    """

    def __init__(
        self,
        events: RuntimeEvents,
        extension_id: str,
        socket_factory: Callable[[], TransportSocket],
        *,
        peripheral_options: dict[str, Any] | None = None,
        poll_interval_s: float = POLL_INTERVAL_S,
        scan_timeout_s: float = DISCOVER_TIMEOUT_S,
    ) -> None:
        self._events = events
        self._extension_id = extension_id
        self._socket_factory = socket_factory
        self._peripheral_options = peripheral_options or {}
        self.poll_interval_s = poll_interval_s
        self.scan_timeout_s = scan_timeout_s
        self._firmata: FirmataBridge | None = None

    @property
    def bridge(self) -> FirmataBridge | None:
        return self._firmata

    async def scan(self) -> None:
        if self._firmata is None:
            self._firmata = FirmataBridge(
                self._events,
                self._extension_id,
                self._socket_factory,
                peripheral_options=self._peripheral_options,
                connect_callback=self._on_connect,
                scan_timeout_s=self.scan_timeout_s,
                poll_interval_s=self.poll_interval_s,
            )
        await self._firmata.scan()

    async def connect(self, peripheral_id: str | None = None) -> bool:
        if self._firmata is None:
            return False
        return await self._firmata.connect_peripheral(peripheral_id)

    async def disconnect(self) -> None:
        if self._firmata is not None:
            await self._firmata.disconnect()

    def is_connected(self) -> bool:
        return self._connected_bridge() is not None

    def _connected_bridge(self) -> FirmataBridge | None:
        if self._firmata is None or not self._firmata.is_connected():
            return None
        return self._firmata

    async def update_board_state(self) -> None:
        firmata = self._connected_bridge()
        if firmata is not None:
            await firmata.update_board_state()

    def get_all_pin_index(self) -> list[int]:
        if self._firmata is None:
            return [0]
        return self._firmata.get_all_pin_index()

    def get_pin_value(self, pin: int) -> int | float:
        if self._firmata is None:
            return 0
        return self._firmata.get_pin_value(pin)

    def get_analog_pin_value(self, analog_index: int) -> int | float:
        if self._firmata is None:
            return 0
        return self._firmata.get_analog_pin_value(analog_index)

    def get_pin_mode(self, pin: int) -> int | None:
        if self._firmata is None:
            return None
        return self._firmata.get_pin_mode(pin)

    def set_pin_mode_input(self, pin: int, mode: int) -> None:
        firmata = self._connected_bridge()
        if firmata is None:
            return
        firmata.set_pin_mode(pin, mode)

    def set_pin_value_digital(self, pin: int, value: int) -> None:
        firmata = self._connected_bridge()
        if firmata is None:
            return
        firmata.digital_write(pin, value)

    def set_pin_value_pwm(self, pin: int, value: float) -> None:
        firmata = self._connected_bridge()
        if firmata is None:
            return
        if firmata.get_pin_mode(pin) != PinMode.PWM:
            firmata.set_pin_mode(pin, PinMode.PWM)
        firmata.pwm_write(pin, value)

    def set_pin_value_servo(self, pin: int, value: int) -> None:
        firmata = self._connected_bridge()
        if firmata is None:
            return
        if firmata.get_pin_mode(pin) != PinMode.SERVO:
            firmata.set_pin_mode(pin, PinMode.SERVO)
        firmata.servo_write(pin, value)

    def _on_connect(self, board: BoardState) -> None:
        LOGGER.info("Connected to %s", board.name or board.port_path)


def _block(opcode: str, block_type: str, text: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    block: dict[str, Any] = {
        "opcode": opcode,
        "blockType": block_type,
        "text": text,
        "func": opcode,
        "filter": ["sprite", "stage"],
    }
    if arguments:
        block["arguments"] = arguments
    return block


_PINS_ARGUMENT = {"type": "string", "menu": "pins", "defaultValue": "0"}


class ScrattinoBlocks:
    """Block handlers: coerce Scratch arguments, then call the facade."""

    EXTENSION_ID = "scrattino"
    EXTENSION_NAME = "scrattino"

    def __init__(self, scrattino: Scrattino) -> None:
        self.scrattino = scrattino

    def get_info(self) -> dict[str, Any]:
        return {
            "id": self.EXTENSION_ID,
            "name": self.EXTENSION_NAME,
            "docsURI": DOCS_URI,
            "showStatusButton": True,
            "blocks": [
                _block("a0", "reporter", "A0"),
                _block("a1", "reporter", "A1"),
                "---",
                _block("getPinValue", "reporter", "D[PINS]", {"PINS": _PINS_ARGUMENT}),
                _block(
                    "setPinModeInput",
                    "command",
                    "Set D[PINS] Input [MODE] ",
                    {
                        "PINS": _PINS_ARGUMENT,
                        "MODE": {"type": "string", "menu": "inputModes", "defaultValue": int(PinMode.PULLUP)},
                    },
                ),
                _block(
                    "setPinValueDigital",
                    "command",
                    "Set D[PINS] Digital [VALUE] ",
                    {
                        "PINS": _PINS_ARGUMENT,
                        "VALUE": {"type": "string", "menu": "digitalValue", "defaultValue": int(DigitalValue.LOW)},
                    },
                ),
                _block(
                    "setPinValuePwm",
                    "command",
                    "Set D[PINS] PWM [VALUE] ",
                    {"PINS": _PINS_ARGUMENT, "VALUE": {"type": "number", "defaultValue": 0}},
                ),
                _block(
                    "setPinValueServo",
                    "command",
                    "Set D[PINS] Servo [VALUE] ",
                    {"PINS": _PINS_ARGUMENT, "VALUE": {"type": "number", "defaultValue": 0}},
                ),
            ],
            "menus": {
                "pins": "get_all_pin_index_menu",
                "digitalValue": self.digital_value_menu,
                "inputModes": self.input_modes_menu,
            },
        }

    @property
    def digital_value_menu(self) -> list[dict[str, Any]]:
        return [
            {"text": "LOW", "value": int(DigitalValue.LOW)},
            {"text": "HIGH", "value": int(DigitalValue.HIGH)},
        ]

    @property
    def input_modes_menu(self) -> list[dict[str, Any]]:
        return [
            {"text": "PULLUP", "value": int(PinMode.PULLUP)},
            {"text": "PULLDOWN", "value": int(PinMode.INPUT)},
        ]

    def get_all_pin_index_menu(self) -> list[dict[str, Any]]:
        return [{"value": index, "text": str(index)} for index in self.scrattino.get_all_pin_index()]

    def a0(self, args: dict[str, Any] | None = None) -> int | float:
        return self.scrattino.get_analog_pin_value(0)

    def a1(self, args: dict[str, Any] | None = None) -> int | float:
        return self.scrattino.get_analog_pin_value(1)

    def a2(self, args: dict[str, Any] | None = None) -> int | float:
        return self.scrattino.get_analog_pin_value(2)

    def a3(self, args: dict[str, Any] | None = None) -> int | float:
        return self.scrattino.get_analog_pin_value(3)

    def a4(self, args: dict[str, Any] | None = None) -> int | float:
        return self.scrattino.get_analog_pin_value(4)

    def a5(self, args: dict[str, Any] | None = None) -> int | float:
        return self.scrattino.get_analog_pin_value(5)

    def get_pin_value(self, args: dict[str, Any]) -> int | float:
        return self.scrattino.get_pin_value(to_int(args.get("PINS")))

    def set_pin_value_digital(self, args: dict[str, Any]) -> None:
        pin = to_int(args.get("PINS"))
        value = 1 if to_number(args.get("VALUE")) else 0
        LOGGER.debug("setPinValueDigital(PINS=%r, VALUE=%r) => (%d, %d)", args.get("PINS"), args.get("VALUE"), pin, value)
        self.scrattino.set_pin_value_digital(pin, value)

    def set_pin_value_pwm(self, args: dict[str, Any]) -> None:
        pin = to_int(args.get("PINS"))
        value = to_number(args.get("VALUE"))
        LOGGER.debug("setPinValuePwm(PINS=%r, VALUE=%r) => (%d, %s)", args.get("PINS"), args.get("VALUE"), pin, value)
        self.scrattino.set_pin_value_pwm(pin, value)

    def set_pin_mode_input(self, args: dict[str, Any]) -> None:
        pin = to_int(args.get("PINS"))
        mode = to_int(args.get("MODE"))
        LOGGER.debug("setPinModeInput(PINS=%r, MODE=%r) => (%d, %d)", args.get("PINS"), args.get("MODE"), pin, mode)
        self.scrattino.set_pin_mode_input(pin, mode)

    def set_pin_value_servo(self, args: dict[str, Any]) -> None:
        pin = to_int(args.get("PINS"))
        value = max(to_int(args.get("VALUE")), 0)
        LOGGER.debug("setPinValueServo(PINS=%r, VALUE=%r) => (%d, %d)", args.get("PINS"), args.get("VALUE"), pin, value)
        self.scrattino.set_pin_value_servo(pin, value)

    async def scan(self) -> None:
        await self.scrattino.scan()

    async def connect(self) -> bool:
        return await self.scrattino.connect(None)
