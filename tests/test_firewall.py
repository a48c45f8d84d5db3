from __future__ import annotations

import asyncio

import pytest

from riglink.errors import FirewallError, FirewallFailure
from riglink.services.firewall import NoopFirewall, WindowsFirewall, classify_failure
from riglink.services.shell import ShellResult


class ScriptedRunner:
    """Stands in for PowerShell: pops one canned result per invocation."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.scripts: list[str] = []

    async def __call__(self, script: str, timeout: float) -> ShellResult:
        self.scripts.append(script)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


NO_RULES = ShellResult(0, "", "")
RULES = ShellResult(0, "Name: RigLink - Inbound\n", "")
GRANTED = ShellResult(0, "", "")


@pytest.mark.unit
@pytest.mark.parametrize(
    "message, kind",
    [
        ("The operation was canceled by the user.", FirewallFailure.DECLINED),
        ("Start-Process : This command cannot be run due to the error: 1223", FirewallFailure.DECLINED),
        ("Access is denied.", FirewallFailure.INSUFFICIENT_RIGHTS),
        ("HRESULT 0x80070005", FirewallFailure.INSUFFICIENT_RIGHTS),
        ("New-NetFirewallRule : Invalid program path", FirewallFailure.OS_ERROR),
    ],
)
def test_classify_failure(message, kind):
    assert classify_failure(message) is kind


@pytest.mark.unit
async def test_noop_firewall():
    fw = NoopFirewall()
    assert not fw.is_supported_on_this_platform()
    assert (await fw.probe()).ok
    assert (await fw.grant_exceptions()).success


@pytest.mark.unit
async def test_probe_reports_missing_rules():
    fw = WindowsFirewall("C:/hamlib/bin/rigctld.exe", runner=ScriptedRunner(NO_RULES))
    probe = await fw.probe()
    assert not probe.ok
    assert "No firewall rules found" in probe.error


@pytest.mark.unit
async def test_probe_failure_is_not_ok():
    fw = WindowsFirewall(None, runner=ScriptedRunner(ShellResult(1, "", "Access is denied.")))
    probe = await fw.probe()
    assert not probe.ok
    assert "administrator" in probe.error


@pytest.mark.unit
async def test_grant_skips_when_rules_exist():
    runner = ScriptedRunner(RULES)
    fw = WindowsFirewall("C:/hamlib/bin/rigctld.exe", runner=runner)
    grant = await fw.grant_exceptions()
    assert grant.success and grant.rules_exist
    assert len(runner.scripts) == 1


@pytest.mark.unit
async def test_check_only_never_prompts():
    runner = ScriptedRunner(NO_RULES)
    fw = WindowsFirewall("C:/hamlib/bin/rigctld.exe", runner=runner)
    grant = await fw.grant_exceptions(check_only=True)
    assert grant.success and not grant.rules_exist
    assert len(runner.scripts) == 1


@pytest.mark.unit
async def test_grant_runs_elevated_script():
    runner = ScriptedRunner(NO_RULES, GRANTED)
    fw = WindowsFirewall("C:/Program Files/O'Hamlib/rigctld.exe", app_path="C:/RigLink/riglink.exe", runner=runner)
    grant = await fw.grant_exceptions()
    assert grant.success
    elevated = runner.scripts[1]
    assert "-Verb RunAs" in elevated
    assert "New-NetFirewallRule" in elevated
    # Quoted once for the inner script, once more for -ArgumentList
    assert "O''''Hamlib" in elevated


@pytest.mark.unit
@pytest.mark.parametrize(
    "stderr, kind",
    [
        ("The operation was canceled by the user", FirewallFailure.DECLINED),
        ("Access is denied", FirewallFailure.INSUFFICIENT_RIGHTS),
        ("Something else broke", FirewallFailure.OS_ERROR),
    ],
)
async def test_grant_failure_kinds(stderr, kind):
    fw = WindowsFirewall(None, runner=ScriptedRunner(NO_RULES, ShellResult(1, "", stderr)))
    with pytest.raises(FirewallError) as exc:
        await fw.grant_exceptions()
    assert exc.value.kind is kind


@pytest.mark.unit
async def test_grant_timeout_is_os_error():
    fw = WindowsFirewall(None, runner=ScriptedRunner(NO_RULES, asyncio.TimeoutError()))
    with pytest.raises(FirewallError) as exc:
        await fw.grant_exceptions()
    assert exc.value.kind is FirewallFailure.OS_ERROR
