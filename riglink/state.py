from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from nicegui import binding

from riglink.constants import DEFAULT_HOST, DEFAULT_PORT, SMETER_ERROR_THRESHOLD
from riglink.errors import CapabilityError


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CHECKING = "checking"


class ProcessOwnership(str, Enum):
    """Who owns the daemon currently serving the configured port."""

    UNMANAGED = "unmanaged"  # nothing running, never started by us
    MANAGED_RUNNING = "managed_running"
    MANAGED_STOPPED = "managed_stopped"  # we started one; it is gone now
    EXTERNAL_RUNNING = "external_running"


class SmeterSupport(str, Enum):
    UNKNOWN = "unknown"
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


@dataclass
class RigConnection:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    connected: bool = False
    model: int | None = None
    device: str | None = None

    def snapshot(self) -> RigConnection:
        return replace(self)


@binding.bindable_dataclass
class RigState:
    frequency_hz: int = 7_093_000
    mode: str = "LSB"
    passband_hz: int = 2400
    vfo: str = "VFOA"
    ptt: bool = False
    split: bool = False
    split_frequency_hz: int | None = None
    split_mode: str | None = None
    rit_hz: int = 0
    xit_hz: int = 0
    signal_strength: int | None = None  # Hamlib STRENGTH, dB relative to S9
    last_update_ts: float = 0.0


@binding.bindable_dataclass
class SmeterStatus:
    support: SmeterSupport = SmeterSupport.UNKNOWN
    last_error: str | None = None
    last_successful_read: float | None = None
    consecutive_errors: int = 0

    @property
    def supported(self) -> bool | None:
        if self.support is SmeterSupport.UNKNOWN:
            return None
        return self.support is SmeterSupport.SUPPORTED

    @property
    def status_text(self) -> str:
        if self.support is SmeterSupport.UNKNOWN:
            return "Checking..."
        if self.support is SmeterSupport.UNSUPPORTED:
            return "Not supported"
        if self.consecutive_errors > SMETER_ERROR_THRESHOLD:
            return "Error"
        return "OK"

    def reset(self) -> None:
        self.support = SmeterSupport.UNKNOWN
        self.last_error = None
        self.last_successful_read = None
        self.consecutive_errors = 0


@dataclass
class TxRange:
    min_freq: int
    max_freq: int
    modes: list[str] = field(default_factory=list)
    low_power: int = 0
    high_power: int = 0


@dataclass
class RxRange:
    min_freq: int
    max_freq: int
    modes: list[str] = field(default_factory=list)


@dataclass
class TuningStep:
    step: int
    modes: list[str] = field(default_factory=list)


@dataclass
class Filter:
    width: int
    modes: list[str] = field(default_factory=list)


@dataclass
class RigCapabilities:
    model_name: str = ""
    mfg_name: str = ""
    backend_version: str = ""
    rig_type: str = ""
    ptt_type: str = ""
    dcd_type: str = ""
    port_type: str = ""
    serial_speed: str = ""
    modes: list[str] = field(default_factory=list)
    vfos: list[str] = field(default_factory=list)
    functions: list[str] = field(default_factory=list)
    levels: list[str] = field(default_factory=list)
    tx_ranges: list[TxRange] = field(default_factory=list)
    rx_ranges: list[RxRange] = field(default_factory=list)
    tuning_steps: list[TuningStep] = field(default_factory=list)
    filters: list[Filter] = field(default_factory=list)

    def has_level(self, name: str) -> bool:
        return name in self.levels

    def require_level(self, name: str) -> None:
        if not self.has_level(name):
            raise CapabilityError(f"{name} level not supported by this rig")


@dataclass
class ProcessProbe:
    running: bool = False
    pid: int | None = None
    path: str | None = None


@dataclass
class RunningCheck:
    running: bool
    external: bool
    pid: int | None = None
    port: int | None = None


@dataclass
class DiagnosticsReport:
    process_running: bool = False
    process_path: str | None = None
    process_pid: int | None = None
    port_listening: bool = False
    port_in_use_by_other: bool = False
    tcp_connectable: bool = False
    firewall_ok: bool = True
    firewall_error: str | None = None
    is_external_rigctld: bool = False
    suggestions: list[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def flags(self) -> dict[str, bool]:
        """Boolean findings only, for comparing two runs."""
        return {
            "process_running": self.process_running,
            "port_listening": self.port_listening,
            "port_in_use_by_other": self.port_in_use_by_other,
            "tcp_connectable": self.tcp_connectable,
            "firewall_ok": self.firewall_ok,
            "is_external_rigctld": self.is_external_rigctld,
        }


@dataclass
class ActionResult:
    """Shape returned by every administrative operation of ``RigSession``."""

    success: bool
    data: Any = None
    error: str | None = None
    suggestions: list[str] = field(default_factory=list)
    # Connect-flow details
    is_external: bool = False
    timed_out: bool = False
    firewall_configured: bool = False
    should_retry: bool = False
    user_cancelled: bool = False
    firewall_error: str | None = None

    @classmethod
    def ok(cls, data: Any = None, **kwargs: Any) -> ActionResult:
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs: Any) -> ActionResult:
        return cls(success=False, error=error, **kwargs)
