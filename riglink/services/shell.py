from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Sequence

from riglink.constants import SHELL_TIMEOUT_S


@dataclass
class ShellResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()


async def run_command(
    args: Sequence[str], timeout: float = SHELL_TIMEOUT_S
) -> ShellResult:
    """
    Run a short-lived helper process and collect its output.

    Raises:
        FileNotFoundError: executable not found
        asyncio.TimeoutError: process did not finish within timeout (it is killed)
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        logging.warning("Command timed out after %.1fs: %s", timeout, args[0])
        raise
    return ShellResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="ignore"),
        stderr=stderr.decode("utf-8", errors="ignore"),
    )


async def run_powershell(script: str, timeout: float = SHELL_TIMEOUT_S) -> ShellResult:
    return await run_command(
        ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
        timeout=timeout,
    )
