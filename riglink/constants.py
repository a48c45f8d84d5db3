from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

APP_NAME = "RigLink"

# rigctld defaults
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 4532
DUMMY_RIG_MODEL = 1
DEFAULT_RIG_MODEL = 1025  # Yaesu FT-1000MP
RIGCTLD_PROCESS_NAMES = ("rigctld", "rigctld.exe")

# Timeouts (seconds)
COMMAND_TIMEOUT_S = 5.0
CAPABILITIES_TIMEOUT_S = 10.0
CONNECT_TIMEOUT_S = 5.0
PORT_PROBE_TIMEOUT_S = 1.0
TCP_PROBE_TIMEOUT_S = 3.0
SHELL_TIMEOUT_S = 5.0
ELEVATION_TIMEOUT_S = 10.0
FIREWALL_GRANT_TIMEOUT_S = 30.0

# Supervisor delays (seconds)
RESTART_SETTLE_S = 1.0
STARTUP_SETTLE_S = 2.0
STOP_TIMEOUT_S = 5.0

# Polling intervals (seconds)
MAIN_POLL_INTERVAL_S = 1.0
SMETER_POLL_INTERVAL_S = 0.25
SMETER_ERROR_THRESHOLD = 3

# Per-user data directory (holds a bundled hamlib on Windows)
if sys.platform == "win32":
    DATA_DIR = Path(os.getenv("APPDATA", Path.home())) / APP_NAME
else:
    DATA_DIR = Path.home() / f".{APP_NAME.lower()}"


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default) in ("1", "true", "True", "yes", "YES")


# Daemon target (what the client connects to)
RIG_HOST: str = os.getenv("RIGLINK_HOST", DEFAULT_HOST)
RIG_PORT: int = int(os.getenv("RIGLINK_PORT", str(DEFAULT_PORT)))
RIG_MODEL: int = int(os.getenv("RIGLINK_RIG_MODEL", str(DEFAULT_RIG_MODEL)))
RIG_DEVICE: str | None = os.getenv("RIGLINK_DEVICE") or None
RIGCTLD_PATH: str | None = os.getenv("RIGLINK_RIGCTLD_PATH") or None
AUTO_START: bool = _env_flag("RIGLINK_AUTO_START", "1")


def _resolve_log_level() -> int:
    s = os.getenv("RIGLINK_LOG_LEVEL")
    if s:
        name = s.strip().upper()
        mapping = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return mapping.get(name, logging.WARNING)
    else:
        return logging.WARNING


LOG_LEVEL: int = _resolve_log_level()
