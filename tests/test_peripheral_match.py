from __future__ import annotations

import pytest

from scratchlink.core.errors import PeripheralSelectionError
from scratchlink.core.model import PeripheralRecord
from scratchlink.core.peripheral_match import match_score, resolve_peripheral


def _peripherals(*records: PeripheralRecord) -> dict[str, PeripheralRecord]:
    return {record.peripheral_id: record for record in records}


UNO = PeripheralRecord(peripheral_id="/dev/ttyACM0", name="Arduino Uno")
NANO = PeripheralRecord(peripheral_id="/dev/ttyUSB0", name="Arduino Nano")


def test_match_score_prefers_exact_id() -> None:
    assert match_score(UNO, "/dev/ttyACM0") == 3
    assert match_score(UNO, "ACM") == 2
    assert match_score(UNO, "uno") == 1
    assert match_score(UNO, "micro:bit") == 0


def test_single_peripheral_is_chosen_without_hint() -> None:
    assert resolve_peripheral(_peripherals(UNO), None) is UNO


def test_multiple_peripherals_need_a_hint() -> None:
    with pytest.raises(PeripheralSelectionError, match="Multiple peripherals found"):
        resolve_peripheral(_peripherals(UNO, NANO), None)


def test_hint_selects_best_match() -> None:
    assert resolve_peripheral(_peripherals(UNO, NANO), "nano") is NANO
    assert resolve_peripheral(_peripherals(UNO, NANO), "/dev/ttyACM0") is UNO


def test_ambiguous_hint_is_rejected() -> None:
    with pytest.raises(PeripheralSelectionError, match="Multiple peripherals match"):
        resolve_peripheral(_peripherals(UNO, NANO), "arduino")


def test_no_match_and_empty_cache_are_rejected() -> None:
    with pytest.raises(PeripheralSelectionError, match="No peripheral found matching"):
        resolve_peripheral(_peripherals(UNO), "micro:bit")
    with pytest.raises(PeripheralSelectionError, match="No peripherals found"):
        resolve_peripheral({}, None)
