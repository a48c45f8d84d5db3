from __future__ import annotations

import asyncio
import logging
import os
import sys

from riglink.constants import APP_NAME, PORT_PROBE_TIMEOUT_S, TCP_PROBE_TIMEOUT_S
from riglink.services.firewall import FirewallManager, FirewallProbe
from riglink.services.probes import check_tcp_connection, is_port_in_use
from riglink.services.supervisor import RigctldSupervisor, locate_rigctld
from riglink.state import DiagnosticsReport, ProcessProbe

HEALTHY_MESSAGE = "Everything looks good! rigctld is running and accessible."
NOT_RUNNING_MESSAGE = (
    'rigctld is not running. Click "Connect" to start it, or start it manually.'
)


def synthesize_suggestions(
    report: DiagnosticsReport,
    port: int,
    *,
    firewall_supported: bool = False,
    rigctld_missing: bool = False,
) -> list[str]:
    """Rule-based remediation hints; every matching rule contributes its lines."""
    suggestions: list[str] = []

    if not report.process_running and not report.port_listening:
        suggestions.append(NOT_RUNNING_MESSAGE)
        if rigctld_missing:
            suggestions.append(
                "rigctld executable not found. You may need to install Hamlib or configure the path."
            )

    if report.port_in_use_by_other:
        suggestions.append(
            f"Port {port} is in use by another application. "
            "Check if another ham radio program is using rigctld."
        )

    if report.is_external_rigctld:
        suggestions.append(
            f"An external rigctld instance is running. {APP_NAME} will connect to it "
            "instead of starting its own."
        )

    if report.port_listening and not report.tcp_connectable:
        suggestions.append(
            "Port is listening but TCP connection failed. This may be a firewall issue."
        )
        if firewall_supported:
            suggestions.append(
                f"Try running {APP_NAME} as Administrator or check Windows Firewall settings."
            )

    if not report.firewall_ok:
        suggestions.append(
            'Firewall may be blocking the connection. Click "Add Firewall Exception" in settings.'
        )
        if report.firewall_error:
            suggestions.append(f"Firewall error: {report.firewall_error}")

    if report.process_running and report.port_listening and report.tcp_connectable:
        suggestions.append(HEALTHY_MESSAGE)

    return suggestions


class DiagnosticsEngine:
    """Read-only fan-out of independent connectivity probes."""

    def __init__(
        self,
        supervisor: RigctldSupervisor,
        firewall: FirewallManager,
        host: str,
        port: int,
        *,
        port_probe_timeout: float = PORT_PROBE_TIMEOUT_S,
        tcp_probe_timeout: float = TCP_PROBE_TIMEOUT_S,
    ) -> None:
        self.supervisor = supervisor
        self.firewall = firewall
        self.host = host
        self.port = port
        self.port_probe_timeout = port_probe_timeout
        self.tcp_probe_timeout = tcp_probe_timeout

    async def _probe_process(self) -> ProcessProbe:
        try:
            return await asyncio.to_thread(self.supervisor.find_external_process)
        except Exception as e:
            logging.warning("Process probe failed: %s", e)
            return ProcessProbe(running=False)

    async def _probe_firewall(self) -> FirewallProbe:
        if not self.firewall.is_supported_on_this_platform():
            return FirewallProbe(ok=True)
        return await self.firewall.probe()

    def _rigctld_missing(self) -> bool:
        path = locate_rigctld(self.supervisor.options.executable)
        if path is None:
            return True
        return sys.platform == "win32" and os.path.isabs(path) and not os.path.exists(path)

    async def run(self) -> DiagnosticsReport:
        process, listening, reachable, firewall = await asyncio.gather(
            self._probe_process(),
            is_port_in_use(self.port, self.host, self.port_probe_timeout),
            check_tcp_connection(self.host, self.port, self.tcp_probe_timeout),
            self._probe_firewall(),
        )

        report = DiagnosticsReport(
            process_running=process.running,
            process_path=process.path,
            process_pid=process.pid,
            port_listening=listening,
            tcp_connectable=reachable,
            firewall_ok=firewall.ok,
            firewall_error=firewall.error,
        )
        if listening and not self.supervisor.is_managed():
            report.is_external_rigctld = True
        if listening and not process.running:
            report.port_in_use_by_other = True

        report.suggestions = synthesize_suggestions(
            report,
            self.port,
            firewall_supported=self.firewall.is_supported_on_this_platform(),
            rigctld_missing=not process.running and not listening and self._rigctld_missing(),
        )
        logging.info(
            "Diagnostics: process=%s listening=%s reachable=%s firewall_ok=%s external=%s",
            report.process_running,
            report.port_listening,
            report.tcp_connectable,
            report.firewall_ok,
            report.is_external_rigctld,
        )
        return report
