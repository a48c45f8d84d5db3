from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Iterable

from riglink.constants import SHELL_TIMEOUT_S
from riglink.errors import ProcessStartError
from riglink.services.shell import run_command
from riglink.services.supervisor import locate_rigctld

# " 1025  Yaesu   FT-1000MP   20210101.0   Stable   RIG_MODEL_FT1000MP"
_MODEL_LINE = re.compile(
    r"^\s*(\d+)\s+(\S+)\s+(.+?)\s+\d{8}\.\d+\s+(Alpha|Beta|Stable|Untested)\s+"
)


@dataclass(frozen=True)
class RigModel:
    id: int
    manufacturer: str
    model: str
    status: str

    @property
    def label(self) -> str:
        return f"{self.manufacturer} {self.model}"


def parse_rig_models(text: str) -> list[RigModel]:
    """Parse the table printed by ``rigctld -l``; header and ruler lines are skipped."""
    models: list[RigModel] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("Rig #") or stripped.startswith("---"):
            continue
        m = _MODEL_LINE.match(line)
        if not m:
            continue
        models.append(
            RigModel(
                id=int(m.group(1)),
                manufacturer=m.group(2),
                model=m.group(3).strip(),
                status=m.group(4),
            )
        )
    return models


def group_models(models: Iterable[RigModel]) -> dict[str, list[RigModel]]:
    """Manufacturer -> models, both sorted alphabetically."""
    grouped: dict[str, list[RigModel]] = {}
    for model in sorted(models, key=lambda r: (r.manufacturer.lower(), r.model.lower())):
        grouped.setdefault(model.manufacturer, []).append(model)
    return grouped


async def list_rig_models(
    executable: str | None = None, timeout: float = SHELL_TIMEOUT_S
) -> list[RigModel]:
    """Ask the installed rigctld for its supported models."""
    path = locate_rigctld(executable)
    if path is None:
        raise ProcessStartError("rigctld executable not found")
    try:
        result = await run_command([path, "-l"], timeout=timeout)
    except (OSError, asyncio.TimeoutError) as e:
        raise ProcessStartError(f"Failed to list rig models: {str(e) or 'timed out'}") from e
    models = parse_rig_models(result.stdout)
    logging.debug("rigctld -l returned %d models", len(models))
    return models
