from __future__ import annotations

import asyncio
import logging
import sys

import psutil
import pytest

from riglink.errors import ProcessStartError
from riglink.services import supervisor as supervisor_mod
from riglink.services.supervisor import (
    RigctldOptions,
    RigctldSupervisor,
    build_rigctld_args,
    find_external_process,
    locate_rigctld,
)
from riglink.state import ProcessOwnership


class FakeProcess:
    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdout = None
        self.stderr = None
        self.terminated = False
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode  # type: ignore[return-value]

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    def terminate(self) -> None:
        self.terminated = True
        self.exit(0)

    def kill(self) -> None:
        self.exit(-9)


class PortScript:
    """Answers port probes from a list, repeating the last answer."""

    def __init__(self, *answers: bool) -> None:
        self.answers = list(answers)

    async def __call__(self, *args, **kwargs) -> bool:
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]


@pytest.fixture
def spawned(monkeypatch):
    calls: list[tuple] = []
    procs: list[FakeProcess] = []

    async def fake_exec(*args, **kwargs):
        calls.append(args)
        proc = FakeProcess()
        procs.append(proc)
        return proc

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    return calls, procs


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.unit
@pytest.mark.parametrize(
    "options, expected",
    [
        (RigctldOptions(model=1, device="/dev/ttyUSB0"), ["-m", "1"]),
        (RigctldOptions(model=1025), ["-m", "1025"]),
        (
            RigctldOptions(model=1025, device="COM3", port=4533),
            ["-m", "1025", "-r", "COM3", "-t", "4533"],
        ),
        (RigctldOptions(model=1, extra_args=["-vvv"]), ["-m", "1", "-vvv"]),
    ],
)
def test_build_args(options, expected):
    assert build_rigctld_args(options) == expected


@pytest.mark.unit
def test_locate_prefers_configured_path(monkeypatch):
    monkeypatch.setattr(supervisor_mod.shutil, "which", lambda name: "/usr/bin/rigctld")
    assert locate_rigctld("/opt/hamlib/bin/rigctld") == "/opt/hamlib/bin/rigctld"
    if sys.platform != "win32":
        assert locate_rigctld() == "/usr/bin/rigctld"
        monkeypatch.setattr(supervisor_mod.shutil, "which", lambda name: None)
        assert locate_rigctld() is None


@pytest.mark.integration
async def test_start_refuses_duplicate_when_port_served(supervisor, spawned):
    calls, _ = spawned
    result = await supervisor.start()
    assert result.already_running is True
    assert result.started is False
    assert calls == []
    assert not supervisor.is_managed()
    assert await supervisor.ownership() is ProcessOwnership.EXTERNAL_RUNNING


@pytest.mark.unit
async def test_start_spawns_and_stop_terminates(monkeypatch, spawned):
    calls, procs = spawned
    monkeypatch.setattr(supervisor_mod, "is_port_in_use", PortScript(False, True))
    sup = RigctldSupervisor(
        RigctldOptions(model=1025, device="/dev/ttyUSB0", executable="/opt/rigctld"),
        startup_delay=0.0,
    )
    assert await sup.ownership(port_listening=False) is ProcessOwnership.UNMANAGED

    result = await sup.start()
    assert result.started and result.listening
    assert result.pid == 4242
    assert calls == [("/opt/rigctld", "-m", "1025", "-r", "/dev/ttyUSB0")]
    assert sup.is_managed()
    assert sup.pid == 4242
    assert await sup.ownership() is ProcessOwnership.MANAGED_RUNNING

    # A second start does not spawn again
    again = await sup.start()
    assert again.already_running
    assert len(calls) == 1

    await sup.stop()
    assert procs[0].terminated
    assert not sup.is_managed()
    assert sup.pid is None
    assert await sup.ownership(port_listening=False) is ProcessOwnership.MANAGED_STOPPED


@pytest.mark.unit
async def test_unexpected_exit_clears_handle_without_restart(monkeypatch, spawned, caplog):
    calls, procs = spawned
    monkeypatch.setattr(supervisor_mod, "is_port_in_use", PortScript(False))
    sup = RigctldSupervisor(RigctldOptions(executable="/opt/rigctld"), startup_delay=0.0)
    await sup.start()
    assert sup.is_managed()

    with caplog.at_level(logging.WARNING):
        procs[0].exit(3)
        await _settle()
    assert not sup.is_managed()
    assert "exited with code 3" in caplog.text
    assert len(calls) == 1
    await sup.stop()


@pytest.mark.unit
async def test_spawn_failure_is_reported(monkeypatch):
    async def missing(*args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", args[0])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", missing)
    monkeypatch.setattr(supervisor_mod, "is_port_in_use", PortScript(False))
    sup = RigctldSupervisor(RigctldOptions(executable="/nope/rigctld"), startup_delay=0.0)
    with pytest.raises(ProcessStartError):
        await sup.start()
    assert not sup.is_managed()


@pytest.mark.integration
async def test_real_child_output_is_logged_and_exit_detected(free_port, caplog):
    # "python -m 1" fails immediately with a message on stderr
    sup = RigctldSupervisor(
        RigctldOptions(model=1, port=free_port, host="127.0.0.1", executable=sys.executable),
        startup_delay=0.0,
    )
    with caplog.at_level(logging.INFO):
        await sup.start()
        for _ in range(100):
            if not sup.is_managed():
                break
            await asyncio.sleep(0.05)
        await asyncio.sleep(0.1)
    assert not sup.is_managed()
    assert "rigctld stderr:" in caplog.text
    await sup.stop()


@pytest.mark.unit
async def test_concurrent_starts_spawn_one_child(monkeypatch, spawned):
    calls, procs = spawned
    monkeypatch.setattr(supervisor_mod, "is_port_in_use", PortScript(False))
    sup = RigctldSupervisor(RigctldOptions(executable="/opt/rigctld"), startup_delay=0.05)

    first, second = await asyncio.gather(sup.start(), sup.start())
    assert len(calls) == 1
    assert first.started
    assert second.already_running and not second.started

    await sup.stop()
    assert all(p.returncode is not None for p in procs)


@pytest.mark.unit
async def test_stop_waits_for_start_in_progress(monkeypatch, spawned):
    calls, procs = spawned
    monkeypatch.setattr(supervisor_mod, "is_port_in_use", PortScript(False))
    sup = RigctldSupervisor(RigctldOptions(executable="/opt/rigctld"), startup_delay=0.05)

    start = asyncio.create_task(sup.start())
    await _settle()
    await sup.stop()
    await start
    assert len(calls) == 1
    assert procs[0].terminated
    assert not sup.is_managed()


@pytest.mark.unit
async def test_restart_stops_then_starts(monkeypatch, spawned):
    calls, procs = spawned
    monkeypatch.setattr(supervisor_mod, "is_port_in_use", PortScript(False))
    sup = RigctldSupervisor(
        RigctldOptions(executable="/opt/rigctld"), startup_delay=0.0, settle_delay=0.0
    )
    await sup.start()
    await sup.restart()
    assert procs[0].terminated
    assert len(calls) == 2
    assert sup.pid == procs[1].pid
    await sup.stop()


@pytest.mark.unit
def test_find_external_process(monkeypatch):
    class P:
        def __init__(self, info):
            self.info = info

    procs = [
        P({"pid": 10, "name": "bash", "exe": "/bin/bash"}),
        P({"pid": 77, "name": "rigctld", "exe": "/usr/bin/rigctld"}),
    ]
    monkeypatch.setattr(psutil, "process_iter", lambda attrs=None: iter(procs))
    probe = find_external_process()
    assert probe.running is True
    assert probe.pid == 77
    assert probe.path == "/usr/bin/rigctld"

    monkeypatch.setattr(psutil, "process_iter", lambda attrs=None: iter(procs[:1]))
    assert find_external_process().running is False


@pytest.mark.unit
@pytest.mark.skipif(sys.platform == "win32", reason="elevation is Windows-only")
async def test_elevated_start_unsupported_elsewhere():
    sup = RigctldSupervisor()
    result = await sup.start_elevated()
    assert not result.success
    assert not result.user_cancelled
    assert not sup.elevated


@pytest.mark.integration
async def test_check_running_against_external(supervisor, fake_rigctld):
    check = await supervisor.check_running()
    assert check.running and check.external
    assert check.pid is None
    assert check.port == fake_rigctld.port


@pytest.mark.integration
async def test_check_running_nothing_there(free_port):
    sup = RigctldSupervisor(RigctldOptions(port=free_port, host="127.0.0.1"))
    check = await sup.check_running()
    assert not check.running and not check.external
