from __future__ import annotations

import pytest

from scratchlink.core.errors import RemoteRequestError, TransportClosedError
from scratchlink.core.jsonrpc import JSONRPC


class Wire:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail

    def __call__(self, message: dict) -> None:
        if self.fail:
            raise TransportClosedError("closed")
        self.sent.append(message)


def _no_calls(method, params):
    raise AssertionError(f"unexpected call {method}")


@pytest.mark.asyncio
async def test_request_envelope_and_response_resolution() -> None:
    wire = Wire()
    rpc = JSONRPC(wire, _no_calls)

    future = rpc.send_remote_request("discover", {"filters": []})
    assert wire.sent == [{"jsonrpc": "2.0", "method": "discover", "params": {"filters": []}, "id": 1}]
    assert rpc.pending_count == 1

    rpc.handle_message({"jsonrpc": "2.0", "id": 1, "result": {"ok": True}})
    assert await future == {"ok": True}
    assert rpc.pending_count == 0


@pytest.mark.asyncio
async def test_out_of_order_responses_pair_by_id() -> None:
    wire = Wire()
    rpc = JSONRPC(wire, _no_calls)

    first = rpc.send_remote_request("read")
    second = rpc.send_remote_request("read")
    assert [m["id"] for m in wire.sent] == [1, 2]
    assert "params" not in wire.sent[0]

    rpc.handle_message({"id": 2, "result": "b"})
    rpc.handle_message({"id": 1, "result": "a"})
    assert await first == "a"
    assert await second == "b"


@pytest.mark.asyncio
async def test_error_response_rejects_with_remote_error() -> None:
    rpc = JSONRPC(Wire(), _no_calls)
    future = rpc.send_remote_request("connect", {"peripheralId": "X"})

    rpc.handle_message({"id": 1, "error": {"code": -32000, "message": "busy", "data": {"retry": True}}})

    with pytest.raises(RemoteRequestError) as excinfo:
        await future
    assert excinfo.value.code == -32000
    assert excinfo.value.message == "busy"
    assert excinfo.value.data == {"retry": True}


@pytest.mark.asyncio
async def test_unknown_and_duplicate_ids_are_ignored() -> None:
    rpc = JSONRPC(Wire(), _no_calls)
    future = rpc.send_remote_request("read")

    rpc.handle_message({"id": 99, "result": "stray"})
    rpc.handle_message({"id": "1", "result": "wrong type"})
    rpc.handle_message({"id": True, "result": "bool id"})
    assert not future.done()

    rpc.handle_message({"id": 1, "result": "first"})
    rpc.handle_message({"id": 1, "result": "second"})
    assert await future == "first"


@pytest.mark.asyncio
async def test_reject_all_settles_every_pending_request_once() -> None:
    rpc = JSONRPC(Wire(), _no_calls)
    futures = [rpc.send_remote_request("read") for _ in range(3)]

    rpc.reject_all(TransportClosedError("gone"))
    rpc.handle_message({"id": 2, "result": "late"})

    assert rpc.pending_count == 0
    for future in futures:
        with pytest.raises(TransportClosedError):
            await future


@pytest.mark.asyncio
async def test_send_failure_rejects_immediately() -> None:
    rpc = JSONRPC(Wire(fail=True), _no_calls)
    future = rpc.send_remote_request("write")

    assert future.done()
    assert rpc.pending_count == 0
    with pytest.raises(TransportClosedError):
        await future


@pytest.mark.asyncio
async def test_ids_skip_values_still_in_flight() -> None:
    wire = Wire()
    rpc = JSONRPC(wire, _no_calls)
    rpc.send_remote_request("a")
    rpc._request_id = 0
    rpc.send_remote_request("b")

    assert [m["id"] for m in wire.sent] == [1, 2]


@pytest.mark.asyncio
async def test_inbound_call_with_id_is_answered() -> None:
    wire = Wire()
    calls: list[tuple[str, object]] = []

    def handler(method, params):
        calls.append((method, params))
        return 42

    rpc = JSONRPC(wire, handler)
    rpc.handle_message({"jsonrpc": "2.0", "id": 7, "method": "ping"})
    rpc.handle_message({"jsonrpc": "2.0", "method": "didDiscoverPeripheral", "params": {"peripheralId": "X"}})

    assert calls == [("ping", None), ("didDiscoverPeripheral", {"peripheralId": "X"})]
    assert wire.sent == [{"jsonrpc": "2.0", "id": 7, "result": 42}]


@pytest.mark.asyncio
async def test_failing_inbound_call_answers_with_error() -> None:
    wire = Wire()

    def handler(method, params):
        raise ValueError("bad params")

    rpc = JSONRPC(wire, handler)
    rpc.handle_message({"id": 3, "method": "characteristicDidChange"})

    assert wire.sent == [{"jsonrpc": "2.0", "id": 3, "error": {"code": -32603, "message": "bad params"}}]


@pytest.mark.asyncio
async def test_notification_has_no_id() -> None:
    wire = Wire()
    rpc = JSONRPC(wire, _no_calls)
    rpc.send_remote_notification("stopNotifications", {"serviceId": 1})

    assert wire.sent == [{"jsonrpc": "2.0", "method": "stopNotifications", "params": {"serviceId": 1}}]
