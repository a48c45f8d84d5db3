from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from riglink import constants


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class Config:
    """Runtime configuration for the rigctld target, supervisor and pollers."""

    HOST: str = constants.DEFAULT_HOST
    PORT: int = constants.DEFAULT_PORT
    RIG_MODEL: int = constants.DEFAULT_RIG_MODEL
    DEVICE: Optional[str] = None
    RIGCTLD_PATH: Optional[str] = None
    AUTO_START: bool = True
    ATTEMPT_FIREWALL_FIX: bool = True
    MAIN_POLL_INTERVAL_S: float = constants.MAIN_POLL_INTERVAL_S
    SMETER_POLL_INTERVAL_S: float = constants.SMETER_POLL_INTERVAL_S
    RESET_ON_TIMEOUT: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            HOST=constants.RIG_HOST,
            PORT=constants.RIG_PORT,
            RIG_MODEL=constants.RIG_MODEL,
            DEVICE=constants.RIG_DEVICE,
            RIGCTLD_PATH=constants.RIGCTLD_PATH,
            AUTO_START=constants.AUTO_START,
            ATTEMPT_FIREWALL_FIX=os.getenv("RIGLINK_FIREWALL_FIX", "1")
            in ("1", "true", "True", "yes", "YES"),
            MAIN_POLL_INTERVAL_S=_env_float(
                "RIGLINK_POLL_INTERVAL", constants.MAIN_POLL_INTERVAL_S
            ),
            SMETER_POLL_INTERVAL_S=_env_float(
                "RIGLINK_SMETER_INTERVAL", constants.SMETER_POLL_INTERVAL_S
            ),
            RESET_ON_TIMEOUT=os.getenv("RIGLINK_RESET_ON_TIMEOUT", "0")
            in ("1", "true", "True", "yes", "YES"),
        )
