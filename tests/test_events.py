from __future__ import annotations

import pytest

from scratchlink.core.events import PeripheralEvent, RecordingEvents


def test_count_since_skips_earlier_history() -> None:
    events = RecordingEvents()
    events.emit(PeripheralEvent.PERIPHERAL_REQUEST_ERROR)
    mark = len(events.history)
    events.emit(PeripheralEvent.PERIPHERAL_CONNECTED)

    assert events.count(PeripheralEvent.PERIPHERAL_REQUEST_ERROR) == 1
    assert events.count(PeripheralEvent.PERIPHERAL_REQUEST_ERROR, since=mark) == 0
    assert events.count(PeripheralEvent.PERIPHERAL_CONNECTED, since=mark) == 1


@pytest.mark.asyncio
async def test_queued_events_are_drained_in_order() -> None:
    events = RecordingEvents()
    events.emit(PeripheralEvent.PERIPHERAL_LIST_UPDATE, {"X": None})
    events.emit(PeripheralEvent.PERIPHERAL_SCAN_TIMEOUT)

    assert await events.next_event(0.1) == (PeripheralEvent.PERIPHERAL_LIST_UPDATE, {"X": None})
    assert await events.next_event(0.1) == (PeripheralEvent.PERIPHERAL_SCAN_TIMEOUT, None)
    assert await events.next_event(0.01) is None


@pytest.mark.asyncio
async def test_unqueued_events_keep_history_only() -> None:
    events = RecordingEvents(queued=False)
    events.emit(PeripheralEvent.PERIPHERAL_CONNECTED)

    assert events.history == [(PeripheralEvent.PERIPHERAL_CONNECTED, None)]
    with pytest.raises(RuntimeError, match="queued=False"):
        await events.next_event(0.01)
