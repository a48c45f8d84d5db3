"""Platform firewall capability.

Only Windows needs application allow rules for rigctld to be reachable; every
other platform gets ``NoopFirewall`` which always reports ``ok``. All shell-outs
live here so the protocol core never touches OS tooling directly.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from riglink.constants import APP_NAME, FIREWALL_GRANT_TIMEOUT_S, SHELL_TIMEOUT_S
from riglink.errors import FirewallError, FirewallFailure
from riglink.services.shell import ShellResult, run_powershell

PowerShellRunner = Callable[[str, float], Awaitable[ShellResult]]

_DECLINED_MARKERS = ("cancelled", "canceled", "1223")
_RIGHTS_MARKERS = ("access is denied", "0x80070005", "administrator", "permissiondenied")


@dataclass
class FirewallProbe:
    ok: bool
    error: str | None = None


@dataclass
class FirewallGrant:
    success: bool
    rules_exist: bool = False


class FirewallManager(Protocol):
    def is_supported_on_this_platform(self) -> bool: ...

    async def probe(self) -> FirewallProbe: ...

    async def grant_exceptions(self, check_only: bool = False) -> FirewallGrant: ...


def classify_failure(message: str) -> FirewallFailure:
    """Map elevation/firewall error text to one of the three failure kinds."""
    lowered = message.lower()
    if any(marker in lowered for marker in _DECLINED_MARKERS):
        return FirewallFailure.DECLINED
    if any(marker in lowered for marker in _RIGHTS_MARKERS):
        return FirewallFailure.INSUFFICIENT_RIGHTS
    return FirewallFailure.OS_ERROR


def _ps_quote(value: str) -> str:
    return value.replace("'", "''")


class NoopFirewall:
    """Platforms without per-application firewall rules."""

    def is_supported_on_this_platform(self) -> bool:
        return False

    async def probe(self) -> FirewallProbe:
        return FirewallProbe(ok=True)

    async def grant_exceptions(self, check_only: bool = False) -> FirewallGrant:
        return FirewallGrant(success=True, rules_exist=True)


class WindowsFirewall:
    """Windows Defender Firewall rules for the host application and rigctld."""

    def __init__(
        self,
        rigctld_path: str | None,
        app_path: str | None = None,
        app_name: str = APP_NAME,
        runner: PowerShellRunner | None = None,
    ) -> None:
        self.rigctld_path = rigctld_path
        self.app_path = app_path or sys.executable
        self.app_name = app_name
        self._run = runner or run_powershell

    def is_supported_on_this_platform(self) -> bool:
        return True

    def _rule_query(self) -> str:
        return (
            f"Get-NetFirewallRule -DisplayName '*{_ps_quote(self.app_name)}*' "
            "-ErrorAction SilentlyContinue | Select-Object -First 1"
        )

    async def _rules_exist(self) -> bool:
        result = await self._run(self._rule_query(), SHELL_TIMEOUT_S)
        if not result.ok:
            raise FirewallError(classify_failure(result.output), result.output)
        return bool(result.stdout.strip())

    async def probe(self) -> FirewallProbe:
        try:
            exists = await self._rules_exist()
        except (FirewallError, OSError, asyncio.TimeoutError) as e:
            logging.debug("Firewall probe failed: %s", e)
            return FirewallProbe(
                ok=False,
                error="Unable to check firewall rules. May require administrator privileges.",
            )
        if exists:
            return FirewallProbe(ok=True)
        return FirewallProbe(
            ok=False, error=f"No firewall rules found for {self.app_name} or rigctld."
        )

    def _grant_script(self) -> str:
        app = _ps_quote(self.app_name)
        lines = [
            "try {",
            f"  $appPath = '{_ps_quote(self.app_path)}'",
            f"  if (-not (Get-NetFirewallRule -DisplayName '{app}*' -ErrorAction SilentlyContinue)) {{",
            f"    New-NetFirewallRule -DisplayName '{app} - Inbound' -Direction Inbound -Program $appPath -Action Allow -Profile Any",
            f"    New-NetFirewallRule -DisplayName '{app} - Outbound' -Direction Outbound -Program $appPath -Action Allow -Profile Any",
            "  }",
            "  if (-not (Get-NetFirewallRule -DisplayName 'rigctld*' -ErrorAction SilentlyContinue)) {",
        ]
        if self.rigctld_path:
            lines += [
                f"    $rigctldPath = '{_ps_quote(self.rigctld_path)}'",
                "    New-NetFirewallRule -DisplayName 'rigctld - Inbound' -Direction Inbound -Program $rigctldPath -Action Allow -Profile Any",
                "    New-NetFirewallRule -DisplayName 'rigctld - Outbound' -Direction Outbound -Program $rigctldPath -Action Allow -Profile Any",
            ]
        lines += [
            "    New-NetFirewallRule -DisplayName 'rigctld (any) - Inbound' -Direction Inbound -Program '*rigctld.exe' -Action Allow -Profile Any",
            "    New-NetFirewallRule -DisplayName 'rigctld (any) - Outbound' -Direction Outbound -Program '*rigctld.exe' -Action Allow -Profile Any",
            "  }",
            "} catch {",
            "  Write-Error \"Failed to configure firewall: $($_.Exception.Message)\"",
            "  exit 1",
            "}",
        ]
        return "\n".join(lines)

    async def grant_exceptions(self, check_only: bool = False) -> FirewallGrant:
        """
        Create allow rules for the application and rigctld behind a UAC prompt.

        Args:
            check_only: only report whether rules exist; never prompt

        Raises:
            FirewallError: with kind DECLINED, INSUFFICIENT_RIGHTS or OS_ERROR
        """
        try:
            exists = await self._rules_exist()
        except (FirewallError, OSError, asyncio.TimeoutError) as e:
            logging.debug("Firewall pre-check failed: %s", e)
            exists = False

        if exists:
            logging.info("Firewall rules already exist, skipping configuration")
            return FirewallGrant(success=True, rules_exist=True)
        if check_only:
            return FirewallGrant(success=True, rules_exist=False)

        elevated = (
            "Start-Process powershell -Verb RunAs -Wait "
            f"-ArgumentList '-NoProfile','-Command','{_ps_quote(self._grant_script())}'"
        )
        try:
            result = await self._run(elevated, FIREWALL_GRANT_TIMEOUT_S)
        except asyncio.TimeoutError as e:
            raise FirewallError(
                FirewallFailure.OS_ERROR, "Firewall configuration timed out"
            ) from e
        except OSError as e:
            raise FirewallError(FirewallFailure.OS_ERROR, str(e)) from e

        if not result.ok:
            kind = classify_failure(result.output)
            if kind is FirewallFailure.DECLINED:
                logging.warning("User cancelled firewall configuration")
            else:
                logging.error("Firewall configuration failed: %s", result.output)
            raise FirewallError(kind, result.output or "Firewall configuration failed")

        if result.stderr.strip():
            logging.warning("Firewall configuration stderr: %s", result.stderr.strip())
        logging.info("Firewall exceptions added for %s and rigctld", self.app_name)
        return FirewallGrant(success=True, rules_exist=False)


def default_firewall(rigctld_path: str | None) -> FirewallManager:
    if sys.platform == "win32":
        return WindowsFirewall(rigctld_path=rigctld_path)
    return NoopFirewall()
