"""Peripheral-hint matching logic."""

from __future__ import annotations

from collections.abc import Mapping

from scratchlink.core.errors import PeripheralSelectionError
from scratchlink.core.model import PeripheralRecord


def _id_match(record: PeripheralRecord, hint: str) -> int:
    lower_id = record.peripheral_id.lower()
    if lower_id == hint:
        return 3
    if hint in lower_id:
        return 2
    return 0


def _name_match(record: PeripheralRecord, hint: str) -> bool:
    return record.name is not None and hint in record.name.lower()


def match_score(record: PeripheralRecord, hint: str) -> int:
    lowered = hint.strip().lower()
    id_score = _id_match(record, lowered)
    if id_score:
        return id_score
    if _name_match(record, lowered):
        return 1
    return 0


def resolve_peripheral(peripherals: Mapping[str, PeripheralRecord], hint: str | None) -> PeripheralRecord:
    if not peripherals:
        raise PeripheralSelectionError("No peripherals found. Ensure the device is powered and the bridge is running.")

    if hint is None:
        if len(peripherals) > 1:
            candidate_desc = ", ".join(_describe(r) for r in peripherals.values())
            raise PeripheralSelectionError(
                f"Multiple peripherals found: {candidate_desc}. Use --device to choose one."
            )
        return next(iter(peripherals.values()))

    best: list[PeripheralRecord] = []
    best_score = 0
    for record in peripherals.values():
        score = match_score(record, hint)
        if score > best_score:
            best, best_score = [record], score
        elif score and score == best_score:
            best.append(record)

    if not best:
        raise PeripheralSelectionError(f"No peripheral found matching '{hint}'")
    if len(best) > 1:
        candidate_desc = ", ".join(_describe(r) for r in best)
        raise PeripheralSelectionError(
            f"Multiple peripherals match '{hint}': {candidate_desc}. Use a more specific --device."
        )
    return best[0]


def _describe(record: PeripheralRecord) -> str:
    return f"{record.peripheral_id} ({record.name or '<unnamed>'})"
