"""Scratch-style coercion of block arguments."""

from __future__ import annotations

import math
from typing import Any


def to_number(value: Any) -> int | float:
    """Coerce a block argument to a number; anything unparseable becomes 0."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return 0 if isinstance(value, float) and math.isnan(value) else value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return 0
        if math.isnan(number):
            return 0
        return int(number) if number.is_integer() and "." not in text and "e" not in text.lower() else number
    return 0


def to_int(value: Any) -> int:
    number = to_number(value)
    if isinstance(number, float) and math.isinf(number):
        return 0
    return int(number)
