"""BLE peripheral bridge."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from scratchlink.core.bridge import PeripheralBridge
from scratchlink.core.model import NotificationSubscription

LOGGER = logging.getLogger(__name__)

CharacteristicCallback = Callable[[Any, Any, Any], None]


def canonical_service_id(service_id: int | str) -> str:
    """Return the 128-bit UUID string for a short BLE service id."""
    if isinstance(service_id, int) and not isinstance(service_id, bool):
        return f"0000{service_id:04x}-0000-1000-8000-00805f9b34fb"
    return str(service_id).lower()


class BLEBridge(PeripheralBridge):
    """Reads, writes, and subscribes to GATT characteristics through the bridge."""

    DISCOVER_METHOD = "discover"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._subscriptions: list[NotificationSubscription] = []

    def get_characteristic_did_change_callbacks(
        self,
        service_id: int | str,
        characteristic_id: Any,
        callback: CharacteristicCallback | None = None,
    ) -> list[NotificationSubscription]:
        canonical = canonical_service_id(service_id)
        return [
            entry
            for entry in self._subscriptions
            if entry.service_id == canonical
            and entry.characteristic_id == characteristic_id
            and (callback is None or entry.callback == callback)
        ]

    def register_characteristic_did_change_callback(
        self,
        service_id: int | str,
        characteristic_id: Any,
        callback: CharacteristicCallback,
    ) -> None:
        if self.get_characteristic_did_change_callbacks(service_id, characteristic_id, callback):
            return
        self._subscriptions.append(
            NotificationSubscription(
                service_id=canonical_service_id(service_id),
                characteristic_id=characteristic_id,
                callback=callback,
            )
        )

    async def start_notifications(
        self,
        service_id: int | str,
        characteristic_id: Any,
        on_characteristic_changed: CharacteristicCallback | None = None,
    ) -> Any:
        if on_characteristic_changed is not None:
            self.register_characteristic_did_change_callback(service_id, characteristic_id, on_characteristic_changed)
        params = {"serviceId": service_id, "characteristicId": characteristic_id}
        if not self.is_connected():
            return None
        return await self._request("startNotifications", params)

    subscribe = start_notifications

    async def read(
        self,
        service_id: int | str,
        characteristic_id: Any,
        start_notifications: bool = False,
        on_characteristic_changed: CharacteristicCallback | None = None,
    ) -> Any:
        params: dict[str, Any] = {"serviceId": service_id, "characteristicId": characteristic_id}
        if start_notifications:
            params["startNotifications"] = True
        if on_characteristic_changed is not None:
            self.register_characteristic_did_change_callback(service_id, characteristic_id, on_characteristic_changed)
        if not self.is_connected():
            return None
        return await self._request("read", params)

    async def write(
        self,
        service_id: int | str,
        characteristic_id: Any,
        message: str,
        encoding: str | None = None,
        with_response: bool | None = None,
    ) -> Any:
        params: dict[str, Any] = {
            "serviceId": service_id,
            "characteristicId": characteristic_id,
            "message": message,
        }
        if encoding:
            params["encoding"] = encoding
        if with_response is not None:
            params["withResponse"] = with_response
        if not self.is_connected():
            return None
        return await self._request("write", params)

    def did_receive_call(self, method: str, params: Any) -> Any:
        if method == "characteristicDidChange":
            params = params or {}
            matching = self.get_characteristic_did_change_callbacks(
                params.get("serviceId", ""),
                params.get("characteristicId"),
            )
            if not matching:
                LOGGER.debug(
                    "No subscriber for %s/%s on %s",
                    params.get("serviceId"),
                    params.get("characteristicId"),
                    self._extension_id,
                )
            for entry in matching:
                entry.callback(params.get("message"), params.get("characteristicId"), params.get("serviceId"))
            return None
        return super().did_receive_call(method, params)
