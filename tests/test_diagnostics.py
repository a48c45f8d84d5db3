from __future__ import annotations

import itertools

import pytest

from riglink.services.diagnostics import (
    HEALTHY_MESSAGE,
    NOT_RUNNING_MESSAGE,
    DiagnosticsEngine,
    synthesize_suggestions,
)
from riglink.services.firewall import FirewallGrant, FirewallProbe, NoopFirewall
from riglink.services.supervisor import RigctldOptions, RigctldSupervisor
from riglink.state import DiagnosticsReport, ProcessProbe

RIGCTLD = ProcessProbe(running=True, pid=321, path="/usr/bin/rigctld")
NO_PROCESS = ProcessProbe(running=False)


class BlockedFirewall:
    def is_supported_on_this_platform(self) -> bool:
        return True

    async def probe(self) -> FirewallProbe:
        return FirewallProbe(ok=False, error="No firewall rules found for RigLink or rigctld.")

    async def grant_exceptions(self, check_only: bool = False) -> FirewallGrant:
        return FirewallGrant(success=True)


@pytest.mark.unit
def test_healthy_only_when_all_three_hold():
    for running, listening, reachable in itertools.product([False, True], repeat=3):
        report = DiagnosticsReport(
            process_running=running, port_listening=listening, tcp_connectable=reachable
        )
        healthy = HEALTHY_MESSAGE in synthesize_suggestions(report, 4532)
        assert healthy is (running and listening and reachable)


@pytest.mark.unit
def test_not_running_message():
    report = DiagnosticsReport()
    suggestions = synthesize_suggestions(report, 4532, rigctld_missing=True)
    assert suggestions[0] == NOT_RUNNING_MESSAGE
    assert any("install Hamlib" in s for s in suggestions)


@pytest.mark.unit
def test_port_in_use_by_other():
    report = DiagnosticsReport(port_listening=True, port_in_use_by_other=True, tcp_connectable=True)
    suggestions = synthesize_suggestions(report, 4533)
    assert any("Port 4533 is in use by another application" in s for s in suggestions)
    assert NOT_RUNNING_MESSAGE not in suggestions


@pytest.mark.unit
def test_listening_but_unreachable_points_at_firewall():
    report = DiagnosticsReport(process_running=True, port_listening=True, tcp_connectable=False)
    plain = synthesize_suggestions(report, 4532)
    windows = synthesize_suggestions(report, 4532, firewall_supported=True)
    assert any("firewall issue" in s for s in plain)
    assert not any("Administrator" in s for s in plain)
    assert any("Administrator" in s for s in windows)


@pytest.mark.unit
def test_firewall_not_ok_adds_error_detail():
    report = DiagnosticsReport(firewall_ok=False, firewall_error="boom")
    suggestions = synthesize_suggestions(report, 4532)
    assert any("Add Firewall Exception" in s for s in suggestions)
    assert "Firewall error: boom" in suggestions


@pytest.mark.unit
def test_synthesis_is_pure():
    report = DiagnosticsReport(
        process_running=True,
        port_listening=True,
        tcp_connectable=True,
        is_external_rigctld=True,
    )
    assert synthesize_suggestions(report, 4532) == synthesize_suggestions(report, 4532)
    assert report.suggestions == []


@pytest.mark.integration
async def test_external_daemon_report(supervisor, fake_rigctld, monkeypatch):
    monkeypatch.setattr(supervisor, "find_external_process", lambda: RIGCTLD)
    engine = DiagnosticsEngine(supervisor, NoopFirewall(), "127.0.0.1", fake_rigctld.port)
    report = await engine.run()
    assert report.process_running
    assert report.process_pid == 321
    assert report.port_listening
    assert report.tcp_connectable
    assert report.firewall_ok
    assert report.is_external_rigctld
    assert not report.port_in_use_by_other
    assert HEALTHY_MESSAGE in report.suggestions
    # Probes never speak the protocol
    assert fake_rigctld.received == []


@pytest.mark.integration
async def test_diagnostics_are_idempotent(supervisor, fake_rigctld, monkeypatch):
    monkeypatch.setattr(supervisor, "find_external_process", lambda: RIGCTLD)
    engine = DiagnosticsEngine(supervisor, NoopFirewall(), "127.0.0.1", fake_rigctld.port)
    first = await engine.run()
    second = await engine.run()
    assert first.flags() == second.flags()
    assert first.suggestions == second.suggestions


@pytest.mark.integration
async def test_listener_without_rigctld_process(supervisor, fake_rigctld, monkeypatch):
    monkeypatch.setattr(supervisor, "find_external_process", lambda: NO_PROCESS)
    engine = DiagnosticsEngine(supervisor, NoopFirewall(), "127.0.0.1", fake_rigctld.port)
    report = await engine.run()
    assert report.port_in_use_by_other
    assert HEALTHY_MESSAGE not in report.suggestions


@pytest.mark.integration
async def test_nothing_running(free_port, monkeypatch):
    sup = RigctldSupervisor(RigctldOptions(host="127.0.0.1", port=free_port))
    monkeypatch.setattr(sup, "find_external_process", lambda: NO_PROCESS)
    engine = DiagnosticsEngine(sup, BlockedFirewall(), "127.0.0.1", free_port)
    report = await engine.run()
    assert report.flags() == {
        "process_running": False,
        "port_listening": False,
        "port_in_use_by_other": False,
        "tcp_connectable": False,
        "firewall_ok": False,
        "is_external_rigctld": False,
    }
    assert report.suggestions[0] == NOT_RUNNING_MESSAGE
    assert "Firewall error: No firewall rules found for RigLink or rigctld." in report.suggestions
