"""JSON-RPC 2.0 request/response correlation over a message transport."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from scratchlink.core.errors import RemoteRequestError, ScratchLinkError

LOGGER = logging.getLogger(__name__)

_INTERNAL_ERROR = -32603


class JSONRPC:
    """Correlates outbound requests with inbound responses by id.

    Inbound messages carrying a `method` are peer-initiated calls and go to
    `did_receive_call`; when such a call has an id, its return value (or
    raised error) is sent back as the response.
    """

    def __init__(
        self,
        send_message: Callable[[dict[str, Any]], None],
        did_receive_call: Callable[[str, Any], Any],
    ) -> None:
        self._send_message = send_message
        self._did_receive_call = did_receive_call
        self._request_id = 0
        self._open_requests: dict[int, asyncio.Future[Any]] = {}

    @property
    def pending_count(self) -> int:
        return len(self._open_requests)

    def send_remote_request(self, method: str, params: Any = None) -> asyncio.Future[Any]:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        request_id = self._next_request_id()
        self._open_requests[request_id] = future

        try:
            self._send_message(_envelope(method, params, request_id))
        except ScratchLinkError as exc:
            del self._open_requests[request_id]
            future.set_exception(exc)
        return future

    def send_remote_notification(self, method: str, params: Any = None) -> None:
        self._send_message(_envelope(method, params, None))

    def handle_message(self, message: dict[str, Any]) -> None:
        if "method" in message:
            self._handle_call(message)
        else:
            self._handle_response(message)

    def reject_all(self, error: BaseException) -> None:
        pending, self._open_requests = self._open_requests, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    def _next_request_id(self) -> int:
        self._request_id += 1
        while self._request_id in self._open_requests:
            self._request_id += 1
        return self._request_id

    def _handle_call(self, message: dict[str, Any]) -> None:
        method = message["method"]
        request_id = message.get("id")
        try:
            result = self._did_receive_call(method, message.get("params"))
        except Exception as exc:
            LOGGER.exception("Inbound call %r failed", method)
            if request_id is not None:
                self._reply(request_id, error={"code": _INTERNAL_ERROR, "message": str(exc)})
            return

        if request_id is not None:
            self._reply(request_id, result=result)

    def _handle_response(self, message: dict[str, Any]) -> None:
        request_id = message.get("id")
        future = None
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            future = self._open_requests.pop(request_id, None)
        if future is None:
            LOGGER.debug("Dropping response with unknown id %r", request_id)
            return
        if future.done():
            return

        if message.get("error") is not None:
            future.set_exception(RemoteRequestError.from_wire(message["error"]))
        else:
            future.set_result(message.get("result"))

    def _reply(self, request_id: Any, *, result: Any = None, error: dict[str, Any] | None = None) -> None:
        response: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
        if error is not None:
            response["error"] = error
        else:
            response["result"] = result
        try:
            self._send_message(response)
        except ScratchLinkError as exc:
            LOGGER.debug("Could not answer inbound call %r: %s", request_id, exc)


def _envelope(method: str, params: Any, request_id: int | None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    if request_id is not None:
        message["id"] = request_id
    return message
