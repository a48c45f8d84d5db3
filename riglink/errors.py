"""Exception hierarchy for the rigctld link.

Service-layer code raises these; ``RigSession`` converts them into
``ActionResult`` objects at the administrative boundary.
"""

from __future__ import annotations

from enum import Enum


class RigctldError(Exception):
    """Base class for every error raised by riglink."""


# ---- transport ----


class TransportError(RigctldError):
    """TCP-level failure: refused, reset, closed by peer."""


class ConnectTimeoutError(TransportError):
    """No socket event within the connect timeout."""


class NotConnectedError(TransportError):
    """A command was issued without an open connection."""

    def __init__(self, message: str = "Not connected to rigctld") -> None:
        super().__init__(message)


class CommandTimeoutError(TransportError):
    """The daemon did not terminate a response with RPRT in time."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(f"Command timeout after {timeout:.1f}s: {command}")
        self.command = command
        self.timeout = timeout


# ---- protocol ----


class ProtocolError(RigctldError):
    """Malformed or unterminated response."""


class DaemonRejectedError(ProtocolError):
    """The daemon answered with a non-zero RPRT code."""

    def __init__(self, code: int, command: str | None = None) -> None:
        super().__init__(f"Rigctld error code: {code}")
        self.code = code
        self.command = command


# ---- capability ----


class CapabilityError(RigctldError):
    """The attached radio does not support the requested feature."""


# ---- process ----


class ProcessStartError(RigctldError):
    """Spawning rigctld failed."""


# ---- environment ----


class FirewallFailure(str, Enum):
    DECLINED = "declined"
    INSUFFICIENT_RIGHTS = "insufficient_rights"
    OS_ERROR = "os_error"


class FirewallError(RigctldError):
    def __init__(self, kind: FirewallFailure, message: str) -> None:
        super().__init__(message)
        self.kind = kind


__all__ = [
    "CapabilityError",
    "CommandTimeoutError",
    "ConnectTimeoutError",
    "DaemonRejectedError",
    "FirewallError",
    "FirewallFailure",
    "NotConnectedError",
    "ProcessStartError",
    "ProtocolError",
    "RigctldError",
    "TransportError",
]
