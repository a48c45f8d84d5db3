from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass, field

import psutil

from riglink.constants import (
    DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_RIG_MODEL,
    DUMMY_RIG_MODEL,
    ELEVATION_TIMEOUT_S,
    RESTART_SETTLE_S,
    RIGCTLD_PROCESS_NAMES,
    STARTUP_SETTLE_S,
    STOP_TIMEOUT_S,
)
from riglink.errors import FirewallFailure, ProcessStartError
from riglink.services.firewall import classify_failure
from riglink.services.probes import is_port_in_use
from riglink.services.shell import run_powershell
from riglink.state import ProcessOwnership, ProcessProbe, RunningCheck


@dataclass
class RigctldOptions:
    """Options for launching rigctld."""

    model: int = DEFAULT_RIG_MODEL
    device: str | None = None
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    executable: str | None = None  # None -> locate_rigctld()
    extra_args: list[str] = field(default_factory=list)


@dataclass
class StartResult:
    started: bool
    already_running: bool = False
    listening: bool = False
    pid: int | None = None


@dataclass
class ElevationResult:
    success: bool
    user_cancelled: bool = False
    error: str | None = None


def build_rigctld_args(options: RigctldOptions) -> list[str]:
    args = ["-m", str(options.model)]
    # The dummy rig has no device
    if options.model != DUMMY_RIG_MODEL and options.device:
        args += ["-r", options.device]
    if options.port != DEFAULT_PORT:
        args += ["-t", str(options.port)]
    args += options.extra_args
    return args


def rigctld_in_path() -> str | None:
    return shutil.which("rigctld")


def locate_rigctld(configured: str | None = None) -> str | None:
    """
    Resolve the rigctld executable: explicit path, then the Hamlib bundled in
    the data directory (Windows), then PATH.
    """
    if configured:
        return configured
    if sys.platform == "win32":
        bundled = DATA_DIR / "hamlib" / "bin" / "rigctld.exe"
        if bundled.exists():
            return str(bundled)
        return shutil.which("rigctld.exe") or "rigctld.exe"
    return rigctld_in_path()


def find_external_process() -> ProcessProbe:
    """Enumerate OS processes for a running rigctld, whoever started it."""
    for proc in psutil.process_iter(["pid", "name", "exe"]):
        try:
            name = (proc.info.get("name") or "").lower()
            if name not in RIGCTLD_PROCESS_NAMES:
                continue
            return ProcessProbe(
                running=True,
                pid=proc.info.get("pid"),
                path=proc.info.get("exe") or proc.info.get("name"),
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return ProcessProbe(running=False)


async def _stream_output(stream: asyncio.StreamReader, prefix: str) -> None:
    """Forward child output to the log line by line."""
    try:
        while True:
            line_bytes = await stream.readline()
            if not line_bytes:
                break
            line = line_bytes.decode("utf-8", errors="ignore").rstrip()
            if line:
                logging.info("%s %s", prefix, line)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logging.error("rigctld output reader error: %s", e)


class RigctldSupervisor:
    """
    Owns at most one rigctld child process.

    - Refuses to spawn a duplicate when the port is already served.
    - start, stop and restart run one at a time.
    - Streams child output into the log and clears its handle on exit.
    - Never restarts a crashed daemon on its own.
    - Elevated starts are fire-and-forget: the process is not our child.
    """

    def __init__(
        self,
        options: RigctldOptions | None = None,
        *,
        startup_delay: float = STARTUP_SETTLE_S,
        settle_delay: float = RESTART_SETTLE_S,
    ) -> None:
        self.options = options or RigctldOptions()
        self.startup_delay = startup_delay
        self.settle_delay = settle_delay
        self._proc: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._ever_started = False
        self._elevated = False
        self._lifecycle_lock = asyncio.Lock()

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self.is_managed() and self._proc else None

    @property
    def elevated(self) -> bool:
        return self._elevated

    def is_managed(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def find_external_process(self) -> ProcessProbe:
        return find_external_process()

    async def start(self) -> StartResult:
        """Start rigctld unless something already listens on the configured port."""
        async with self._lifecycle_lock:
            return await self._start()

    async def _start(self) -> StartResult:
        if self.is_managed():
            return StartResult(started=False, already_running=True, listening=True, pid=self.pid)

        opts = self.options
        if await is_port_in_use(opts.port, opts.host):
            logging.info("rigctld already running on port %s", opts.port)
            return StartResult(started=False, already_running=True, listening=True)

        executable = locate_rigctld(opts.executable) or "rigctld"
        args = build_rigctld_args(opts)
        logging.info("Starting rigctld: %s %s", executable, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._proc = None
            logging.error("Failed to start rigctld: %s", e)
            raise ProcessStartError(f"Failed to start rigctld: {e}") from e

        self._proc = proc
        self._ever_started = True
        self._elevated = False
        self._tasks = [
            asyncio.create_task(self._watch_exit(proc)),
        ]
        if proc.stdout:
            self._tasks.append(asyncio.create_task(_stream_output(proc.stdout, "rigctld stdout:")))
        if proc.stderr:
            self._tasks.append(asyncio.create_task(_stream_output(proc.stderr, "rigctld stderr:")))

        # Give it a moment to bind the port
        await asyncio.sleep(self.startup_delay)
        listening = await is_port_in_use(opts.port, opts.host)
        if listening:
            logging.info("rigctld started successfully on port %s", opts.port)
        else:
            logging.warning("rigctld may not have started properly")
        return StartResult(started=self._proc is proc, listening=listening, pid=proc.pid)

    async def _watch_exit(self, proc: asyncio.subprocess.Process) -> None:
        code = await proc.wait()
        if self._proc is proc:
            # Exit we did not ask for; leave it stopped so a bad config cannot loop
            logging.warning("rigctld process exited with code %s", code)
            self._proc = None

    async def stop(self, timeout: float = STOP_TIMEOUT_S) -> None:
        """Stop the managed rigctld, if any. Elevated instances are not ours to stop."""
        async with self._lifecycle_lock:
            await self._stop(timeout)

    async def _stop(self, timeout: float = STOP_TIMEOUT_S) -> None:
        proc = self._proc
        self._proc = None
        if proc is not None and proc.returncode is None:
            logging.info("Stopping rigctld process...")
            try:
                proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    proc.kill()
                    await proc.wait()
                    logging.warning("rigctld force-killed after timeout")
            except ProcessLookupError:
                pass

        for task in self._tasks:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._tasks = []

    async def restart(self) -> StartResult:
        async with self._lifecycle_lock:
            logging.info("Restarting rigctld...")
            await self._stop()
            await asyncio.sleep(self.settle_delay)
            return await self._start()

    async def start_elevated(self) -> ElevationResult:
        """One-shot administrator start (Windows only); the result is not a managed child."""
        if sys.platform != "win32":
            return ElevationResult(success=False, error="Elevated start only supported on Windows")

        executable = locate_rigctld(self.options.executable) or "rigctld.exe"
        args = " ".join(build_rigctld_args(self.options))
        logging.info("Starting rigctld with elevated privileges: %s %s", executable, args)
        script = (
            "try { "
            f"Start-Process -FilePath '{executable.replace(chr(39), chr(39) * 2)}' "
            f"-ArgumentList '{args}' -Verb RunAs; "
            "Write-Output 'Started rigctld with elevated privileges' "
            "} catch { "
            "Write-Error \"Failed to start rigctld: $($_.Exception.Message)\"; exit 1 }"
        )
        try:
            result = await run_powershell(script, timeout=ELEVATION_TIMEOUT_S)
        except (OSError, asyncio.TimeoutError) as e:
            logging.error("Error starting elevated rigctld: %s", e)
            return ElevationResult(success=False, error=str(e) or "Elevated start timed out")

        if not result.ok:
            if classify_failure(result.output) is FirewallFailure.DECLINED:
                logging.warning("User cancelled elevated rigctld start")
                return ElevationResult(success=False, user_cancelled=True)
            logging.error("Error starting elevated rigctld: %s", result.output)
            return ElevationResult(success=False, error=result.output or "Elevated start failed")

        self._elevated = True
        return ElevationResult(success=True)

    async def ownership(self, port_listening: bool | None = None) -> ProcessOwnership:
        if self.is_managed():
            return ProcessOwnership.MANAGED_RUNNING
        if port_listening is None:
            port_listening = await is_port_in_use(self.options.port, self.options.host)
        if port_listening:
            return ProcessOwnership.EXTERNAL_RUNNING
        if self._ever_started:
            return ProcessOwnership.MANAGED_STOPPED
        return ProcessOwnership.UNMANAGED

    async def check_running(self) -> RunningCheck:
        port = self.options.port
        listening = await is_port_in_use(port, self.options.host)
        if not listening:
            return RunningCheck(running=False, external=False, port=port)
        managed = self.is_managed()
        return RunningCheck(
            running=True, external=not managed, pid=self.pid if managed else None, port=port
        )
