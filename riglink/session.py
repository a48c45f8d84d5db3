from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from riglink.config import Config
from riglink.errors import (
    CommandTimeoutError,
    FirewallError,
    FirewallFailure,
    ProcessStartError,
    RigctldError,
)
from riglink.services.connection import ConnectionManager
from riglink.services.diagnostics import DiagnosticsEngine
from riglink.services.dispatcher import CommandDispatcher
from riglink.services.firewall import FirewallManager, default_firewall
from riglink.services.poller import PollingScheduler
from riglink.services.probes import is_port_in_use
from riglink.services.rig_models import list_rig_models
from riglink.services.supervisor import RigctldOptions, RigctldSupervisor, locate_rigctld
from riglink.state import (
    ActionResult,
    ConnectionStatus,
    DiagnosticsReport,
    RigCapabilities,
    RigState,
    SmeterStatus,
)

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class RigSession:
    """
    Administrative boundary for one rig: owns the supervisor, connection,
    dispatcher, poller and the observable state they feed.

    Every public action returns an ``ActionResult``; service errors stop here.
    Lifecycle: create -> connect -> disconnect -> ``dispose()``, or use
    ``async with RigSession(...)``.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        supervisor: RigctldSupervisor | None = None,
        firewall: FirewallManager | None = None,
    ) -> None:
        self.config = config or Config.from_env()
        cfg = self.config
        self.supervisor = supervisor or RigctldSupervisor(
            RigctldOptions(
                model=cfg.RIG_MODEL,
                device=cfg.DEVICE,
                port=cfg.PORT,
                host=cfg.HOST,
                executable=cfg.RIGCTLD_PATH,
            )
        )
        self.firewall = firewall or default_firewall(locate_rigctld(cfg.RIGCTLD_PATH))
        self.connection = ConnectionManager(
            cfg.HOST, cfg.PORT, supervisor=self.supervisor, firewall=self.firewall
        )
        self.dispatcher = CommandDispatcher(
            self.connection, reset_on_timeout=cfg.RESET_ON_TIMEOUT
        )
        self.diagnostics = DiagnosticsEngine(
            self.supervisor, self.firewall, cfg.HOST, cfg.PORT
        )

        self.state = RigState()
        self.smeter = SmeterStatus()
        self.capabilities: RigCapabilities | None = None
        self.is_loading = False
        self.error: str | None = None
        self.connection_suggestions: list[str] = []
        self.last_diagnostics: DiagnosticsReport | None = None

        self.poller = PollingScheduler(
            self.dispatcher,
            self.state,
            self.smeter,
            lambda: self.capabilities,
            is_busy=lambda: self.is_loading,
            main_interval=cfg.MAIN_POLL_INTERVAL_S,
            smeter_interval=cfg.SMETER_POLL_INTERVAL_S,
        )

    async def __aenter__(self) -> RigSession:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.dispose()

    @property
    def connected(self) -> bool:
        return self.connection.connected

    @property
    def status(self) -> ConnectionStatus:
        return self.connection.status

    @property
    def using_external_rigctld(self) -> bool:
        return self.connection.is_external

    # --------------- startup ---------------

    async def prepare(self) -> None:
        """Silent firewall check and daemon auto-start, run once at application start."""
        if self.firewall.is_supported_on_this_platform():
            logging.info("Checking firewall rules on startup...")
            try:
                grant = await self.firewall.grant_exceptions(check_only=True)
                if not grant.rules_exist:
                    logging.info("Firewall rules do not exist, will prompt when needed")
            except FirewallError as e:
                logging.warning("Startup firewall check failed: %s", e)
        await self._auto_start(self.config.HOST, self.config.PORT)

    async def _auto_start(self, host: str, port: int) -> None:
        if not self.config.AUTO_START or host not in _LOCAL_HOSTS:
            return
        if await is_port_in_use(port, host):
            return
        try:
            await self.supervisor.start()
        except ProcessStartError as e:
            # The connect attempt that follows reports it with suggestions
            logging.warning("%s", e)

    # --------------- connection ---------------

    async def connect(
        self,
        host: str | None = None,
        port: int | None = None,
        model: int | None = None,
        device: str | None = None,
    ) -> ActionResult:
        current = self.connection.connection
        host = host or current.host
        port = port or current.port
        model = model if model is not None else (current.model or self.config.RIG_MODEL)
        device = device if device is not None else (current.device or self.config.DEVICE)

        self.is_loading = True
        self.error = None
        self.connection_suggestions = []
        try:
            opts = self.supervisor.options
            opts.host, opts.port, opts.model, opts.device = host, port, model, device
            self.diagnostics.host, self.diagnostics.port = host, port
            await self._auto_start(host, port)

            result = await self.connection.connect(
                host, port, model, device, attempt_firewall_fix=self.config.ATTEMPT_FIREWALL_FIX
            )
            if not result.success and result.should_retry:
                logging.info("Firewall configured, retrying connection...")
                result = await self.connection.connect(
                    host, port, model, device, attempt_firewall_fix=False
                )

            if not result.success:
                self.error = result.error or "Connection failed"
                self.connection_suggestions = list(result.suggestions)
                logging.error("Failed to connect to rigctld: %s", self.error)
                return result

            # New connection: nothing learned from the previous one carries over
            self.capabilities = None
            self.smeter.reset()
            self.state.signal_strength = None
            if result.is_external:
                logging.info("Connected to external rigctld instance")
            await self._load_capabilities()
            await self.poller.poll_state()
            logging.info("Successfully connected to rigctld")
            return result
        finally:
            self.is_loading = False

    async def disconnect(self) -> ActionResult:
        self.is_loading = True
        self.error = None
        try:
            await self.connection.disconnect()
            self.capabilities = None
            self.connection_suggestions = []
            return ActionResult.ok()
        finally:
            self.is_loading = False

    async def reconnect(self) -> ActionResult:
        logging.info("Reconnecting to rigctld...")
        snap = self.connection.snapshot()
        await self.disconnect()
        return await self.connect(snap.host, snap.port, snap.model, snap.device)

    # --------------- commands ---------------

    def _failed(self, action: str, e: RigctldError) -> ActionResult:
        self.error = str(e)
        logging.warning("Failed to %s: %s", action, e)
        return ActionResult.fail(str(e), timed_out=isinstance(e, CommandTimeoutError))

    async def send_command(self, command: str) -> ActionResult:
        if not self.connected:
            return ActionResult.fail("Not connected")
        try:
            values = await self.dispatcher.execute(command)
        except RigctldError as e:
            return self._failed(f"send '{command}'", e)
        return ActionResult.ok(values)

    async def _load_capabilities(self) -> None:
        try:
            self.capabilities = await self.dispatcher.get_capabilities()
        except RigctldError as e:
            logging.warning("Failed to load capabilities: %s", e)
            return
        logging.info(
            "Loaded rig capabilities: %s %s (%d modes, %d levels)",
            self.capabilities.mfg_name,
            self.capabilities.model_name,
            len(self.capabilities.modes),
            len(self.capabilities.levels),
        )

    async def get_capabilities(self) -> ActionResult:
        """Capabilities of the current connection, fetched on first use."""
        if self.capabilities is not None:
            return ActionResult.ok(self.capabilities)
        if not self.connected:
            return ActionResult.fail("Not connected")
        try:
            self.capabilities = await self.dispatcher.get_capabilities()
        except RigctldError as e:
            return self._failed("load capabilities", e)
        return ActionResult.ok(self.capabilities)

    async def _control(self, action: str, call: Callable[[], Awaitable[None]]) -> ActionResult:
        if not self.connected:
            return ActionResult.fail("Not connected")
        try:
            await call()
        except RigctldError as e:
            return self._failed(action, e)
        return ActionResult.ok()

    async def set_frequency(self, frequency_hz: int) -> ActionResult:
        # Local state follows the request even while disconnected
        self.state.frequency_hz = int(frequency_hz)
        if not self.connected:
            logging.debug("Not connected, only updating local state")
            return ActionResult.ok()
        return await self._control(
            "set frequency", lambda: self.dispatcher.set_frequency(frequency_hz)
        )

    async def set_mode(self, mode: str, passband_hz: int = 0) -> ActionResult:
        result = await self._control("set mode", lambda: self.dispatcher.set_mode(mode, passband_hz))
        if result.success:
            self.state.mode = mode
            self.state.passband_hz = passband_hz
        return result

    async def set_vfo(self, vfo: str) -> ActionResult:
        result = await self._control("set VFO", lambda: self.dispatcher.set_vfo(vfo))
        if result.success:
            self.state.vfo = vfo
        return result

    async def set_ptt(self, enabled: bool) -> ActionResult:
        result = await self._control("set PTT", lambda: self.dispatcher.set_ptt(enabled))
        if result.success:
            self.state.ptt = enabled
        return result

    async def toggle_split(self) -> ActionResult:
        enabled = not self.state.split
        logging.debug("Toggling split from %s to %s", self.state.split, enabled)
        self.state.split = enabled
        if not enabled:
            self.state.split_frequency_hz = None
            self.state.split_mode = None
        if not self.connected:
            return ActionResult.ok()
        return await self._control("toggle split", lambda: self.dispatcher.set_split(enabled))

    async def set_split_frequency(self, frequency_hz: int) -> ActionResult:
        result = await self._control(
            "set split frequency", lambda: self.dispatcher.set_split_frequency(frequency_hz)
        )
        if result.success:
            self.state.split_frequency_hz = int(frequency_hz)
        return result

    async def set_rit(self, offset_hz: int) -> ActionResult:
        result = await self._control("set RIT", lambda: self.dispatcher.set_rit(offset_hz))
        if result.success:
            self.state.rit_hz = int(offset_hz)
        return result

    async def set_xit(self, offset_hz: int) -> ActionResult:
        result = await self._control("set XIT", lambda: self.dispatcher.set_xit(offset_hz))
        if result.success:
            self.state.xit_hz = int(offset_hz)
        return result

    # --------------- daemon administration ---------------

    async def restart_rigctld(self) -> ActionResult:
        try:
            started = await self.supervisor.restart()
        except ProcessStartError as e:
            logging.error("Error restarting rigctld: %s", e)
            return ActionResult.fail(str(e))
        return ActionResult.ok(started)

    async def start_rigctld_elevated(self) -> ActionResult:
        """Stop our child, start rigctld as administrator, then connect to it."""
        self.is_loading = True
        self.error = None
        try:
            await self.supervisor.stop()
            await asyncio.sleep(self.supervisor.settle_delay)
            elevated = await self.supervisor.start_elevated()
            if elevated.user_cancelled:
                self.error = "User cancelled elevated start"
                return ActionResult.fail(self.error, user_cancelled=True)
            if not elevated.success:
                self.error = elevated.error or "Failed to start elevated rigctld"
                return ActionResult.fail(self.error)
            logging.info("Rigctld started with elevated privileges")
            await asyncio.sleep(self.supervisor.startup_delay)
        finally:
            self.is_loading = False

        snap = self.connection.snapshot()
        return await self.connect(snap.host, snap.port, snap.model, snap.device)

    async def run_diagnostics(self) -> ActionResult:
        self.connection.set_status(ConnectionStatus.CHECKING)
        try:
            report = await self.diagnostics.run()
        except (RigctldError, OSError) as e:
            logging.error("Error running diagnostics: %s", e)
            self.connection.set_status(
                ConnectionStatus.CONNECTED if self.connected else ConnectionStatus.ERROR
            )
            return ActionResult.fail(str(e))

        self.last_diagnostics = report
        self.connection_suggestions = list(report.suggestions)
        if report.tcp_connectable and report.process_running:
            self.connection.set_status(
                ConnectionStatus.CONNECTED if self.connected else ConnectionStatus.DISCONNECTED
            )
        else:
            self.connection.set_status(ConnectionStatus.ERROR)
        return ActionResult.ok(report, suggestions=list(report.suggestions))

    def clear_diagnostics(self) -> None:
        self.last_diagnostics = None
        self.connection_suggestions = []

    async def check_if_running(self) -> ActionResult:
        check = await self.supervisor.check_running()
        self.connection.is_external = check.external
        return ActionResult.ok(check, is_external=check.external)

    async def add_firewall_exceptions(self) -> ActionResult:
        if not self.firewall.is_supported_on_this_platform():
            return ActionResult.fail("Firewall configuration is not supported on this platform")
        try:
            grant = await self.firewall.grant_exceptions()
        except FirewallError as e:
            logging.error("Error adding firewall exceptions: %s", e)
            return ActionResult.fail(
                str(e),
                user_cancelled=e.kind is FirewallFailure.DECLINED,
                firewall_error=str(e),
            )
        return ActionResult.ok(grant, firewall_configured=True)

    async def list_rig_models(self) -> ActionResult:
        try:
            models = await list_rig_models(self.supervisor.options.executable)
        except ProcessStartError as e:
            logging.error("%s", e)
            return ActionResult.fail(
                str(e),
                suggestions=["You may need to install Hamlib or configure the rigctld path."],
            )
        return ActionResult.ok(models)

    # --------------- polling ---------------

    def start_polling(
        self, main_interval: float | None = None, smeter_interval: float | None = None
    ) -> None:
        self.poller.start_main(main_interval)
        self.poller.start_smeter(smeter_interval)

    async def stop_polling(self) -> None:
        await self.poller.stop()

    async def dispose(self) -> None:
        await self.poller.stop()
        await self.connection.disconnect()
        await self.supervisor.stop()
