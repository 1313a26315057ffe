"""
Error taxonomy for nvbridge.

Configuration errors are raised before any process or socket activity,
connection errors are terminal for a single attempt, protocol errors are
logged and dropped by the receiver, and validation errors are returned to
the command caller without touching the connection.
"""

from __future__ import annotations

__all__ = [
    "BridgeError",
    "ConfigurationError",
    "AmbiguousConnectionMode",
    "InvalidArguments",
    "BridgeConnectionError",
    "SpawnFailure",
    "TransportUnavailable",
    "ConnectFailure",
    "ProtocolError",
    "RpcError",
    "ValidationError",
    "FontSpecError",
]


class BridgeError(Exception):
    """Base class for every error raised by nvbridge."""


class ConfigurationError(BridgeError):
    """Startup configuration cannot produce a connection."""


class AmbiguousConnectionMode(ConfigurationError):
    """More than one of embed, server and spawn was requested."""

    def __init__(self, modes: list[str]) -> None:
        self.modes: list[str] = modes
        super().__init__(f"Options {', '.join(modes)} are mutually exclusive")


class InvalidArguments(ConfigurationError):
    """Arguments do not fit the selected connection mode."""


class BridgeConnectionError(BridgeError, ConnectionError):
    """Connection could not be established or was lost."""


class SpawnFailure(BridgeConnectionError):
    """Core executable could not be located or started."""


class TransportUnavailable(BridgeConnectionError):
    """Inherited standard streams cannot carry the RPC channel."""


class ConnectFailure(BridgeConnectionError):
    """Server address is malformed, unreachable or refused the connection."""


class ProtocolError(BridgeError):
    """Inbound payload does not have the expected shape."""


class RpcError(BridgeError):
    """Peer answered a request with an error."""

    def __init__(self, method: str, error: object) -> None:
        self.method: str = method
        self.error: object = error
        super().__init__(f"{method} failed: {error}")


class ValidationError(BridgeError, ValueError):
    """Command argument rejected before any network I/O."""


class FontSpecError(ValidationError):
    """Font descriptor does not follow the font grammar."""
