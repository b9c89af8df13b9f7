"""Core data models used across bridges, facades, service, and CLI."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class PeripheralRecord:
    peripheral_id: str
    name: str | None = None
    rssi: int | None = None
    services: tuple[str, ...] = ()
    info: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_params(cls, params: Mapping[str, Any], *, peripheral_id: str | None = None) -> PeripheralRecord:
        pid = peripheral_id if peripheral_id is not None else params.get("peripheralId")
        name = params.get("name") or params.get("manufacturer")
        services = params.get("services") or params.get("serviceUuids") or ()
        return cls(
            peripheral_id=str(pid),
            name=str(name) if name is not None else None,
            rssi=params.get("rssi"),
            services=tuple(str(s) for s in services),
            info=dict(params),
        )


@dataclass(frozen=True)
class NotificationSubscription:
    service_id: str
    characteristic_id: Any
    callback: Callable[[Any, Any, Any], None]


@dataclass(frozen=True)
class ExtensionProfile:
    id: str
    name: str
    kind: str
    url: str
    scan_timeout_s: float = 15.0
    poll_interval_s: float = 0.1
    open_timeout_s: float = 5.0
    peripheral_options: dict[str, Any] = field(default_factory=dict)
    write_with_response: bool | None = None
    encoding: str = "base64"


@dataclass(frozen=True)
class PinReading:
    pin: int
    mode: int | None
    value: int | float | None
