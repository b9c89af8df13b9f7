"""Domain-specific errors for scratchlink."""

from __future__ import annotations

from typing import Any


class ScratchLinkError(Exception):
    """Base error for scratchlink."""


class ProfileValidationError(ScratchLinkError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(ScratchLinkError):
    """Raised when loading profile sources fails."""


class PeripheralSelectionError(ScratchLinkError):
    """Raised when a peripheral cannot be resolved to a single target."""


class PeripheralConnectError(ScratchLinkError):
    """Raised when the bridge refuses or fails a connect request."""


class TransportError(ScratchLinkError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the bridge socket cannot be opened."""


class TransportClosedError(TransportError):
    """Raised when sending on, or waiting for, a closed socket."""


class RPCError(ScratchLinkError):
    """Base JSON-RPC error."""


class RemoteRequestError(RPCError):
    """Raised when the bridge answers a request with an error object."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(f"{message} (code {code})" if code is not None else message)
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_wire(cls, error: Any) -> RemoteRequestError:
        if isinstance(error, dict):
            return cls(error.get("code"), str(error.get("message", "remote error")), error.get("data"))
        return cls(None, str(error))


class PeripheralRequestError(ScratchLinkError):
    """Raised when the bridge reports a failed request during a session."""
