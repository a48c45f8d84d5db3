from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from riglink.common.logging_config import trace_wire
from riglink.constants import (
    APP_NAME,
    CONNECT_TIMEOUT_S,
    DEFAULT_HOST,
    DEFAULT_PORT,
    PORT_PROBE_TIMEOUT_S,
)
from riglink.errors import (
    ConnectTimeoutError,
    FirewallError,
    FirewallFailure,
    NotConnectedError,
    TransportError,
)
from riglink.protocol.codec import ResponseDecoder, RigResponse, encode_command
from riglink.services.probes import is_port_in_use
from riglink.state import ActionResult, ConnectionStatus, RigConnection

if TYPE_CHECKING:
    from riglink.services.firewall import FirewallManager
    from riglink.services.supervisor import RigctldSupervisor

READ_CHUNK = 4096

TIMEOUT_SUGGESTIONS = (
    "Check if rigctld is running",
    "Verify the host and port are correct",
    "Check firewall settings",
)


class ConnectionManager:
    """
    Owns the single TCP connection to rigctld.

    Status moves disconnected -> connecting -> connected | error. A socket
    failure on a live connection is reported once (status error, socket torn
    down) and never retried here.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        supervisor: RigctldSupervisor | None = None,
        firewall: FirewallManager | None = None,
        connect_timeout: float = CONNECT_TIMEOUT_S,
        probe_timeout: float = PORT_PROBE_TIMEOUT_S,
    ) -> None:
        self.connection = RigConnection(host=host, port=port)
        self.status = ConnectionStatus.DISCONNECTED
        self.last_error: str | None = None
        self.is_external = False
        # Bumped on every successful connect; connection-scoped caches key off it
        self.generation = 0
        self.supervisor = supervisor
        self.firewall = firewall
        self.connect_timeout = connect_timeout
        self.probe_timeout = probe_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def connected(self) -> bool:
        return self._writer is not None

    def snapshot(self) -> RigConnection:
        return self.connection.snapshot()

    def set_status(self, status: ConnectionStatus) -> None:
        if status is not self.status:
            logging.debug("Connection status %s -> %s", self.status.value, status.value)
        self.status = status

    # --------------- lifecycle ---------------

    async def _teardown(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        self.connection.connected = False
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(Exception):
            await writer.wait_closed()

    async def _fail(self, message: str) -> None:
        logging.error("Rigctld connection error: %s", message)
        self.last_error = message
        await self._teardown()
        self.set_status(ConnectionStatus.ERROR)

    async def connect(
        self,
        host: str | None = None,
        port: int | None = None,
        model: int | None = None,
        device: str | None = None,
        attempt_firewall_fix: bool = True,
    ) -> ActionResult:
        host = host or self.connection.host
        port = port or self.connection.port
        self.set_status(ConnectionStatus.CONNECTING)
        self.last_error = None

        # At most one socket: drop the previous one before dialing
        await self._teardown()

        port_in_use = await is_port_in_use(port, host, self.probe_timeout)
        managed = self.supervisor is not None and self.supervisor.is_managed()
        is_external = port_in_use and not managed
        if is_external:
            logging.info("Detected external rigctld running on %s:%s, will connect to it", host, port)
        elif not port_in_use:
            logging.info("No rigctld detected on %s:%s", host, port)

        try:
            reader, writer = await self._dial(host, port)
        except ConnectTimeoutError as e:
            self.last_error = str(e)
            self.set_status(ConnectionStatus.ERROR)
            logging.error("Rigctld connection timeout (%s:%s)", host, port)
            return ActionResult.fail(
                self.last_error, suggestions=list(TIMEOUT_SUGGESTIONS), timed_out=True
            )
        except OSError as e:
            result = await self._connect_failed(host, port, e, attempt_firewall_fix)
            self.last_error = result.error
            self.set_status(ConnectionStatus.ERROR)
            return result

        self._reader, self._writer = reader, writer
        self.connection.host = host
        self.connection.port = port
        self.connection.model = model
        self.connection.device = device
        self.connection.connected = True
        self.is_external = is_external
        self.generation += 1
        self.set_status(ConnectionStatus.CONNECTED)
        logging.info(
            "Connected to rigctld at %s:%s%s", host, port, " (external)" if is_external else ""
        )
        return ActionResult.ok({"connected": True, "isExternal": is_external}, is_external=is_external)

    async def _dial(
        self, host: str, port: int
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.connect_timeout
            )
        except asyncio.TimeoutError as e:
            raise ConnectTimeoutError("Connection timeout - rigctld may not be responding") from e

    async def _connect_failed(
        self, host: str, port: int, error: OSError, attempt_firewall_fix: bool
    ) -> ActionResult:
        logging.error("Rigctld connection error: %s", error)
        detailed = str(error) or error.__class__.__name__
        suggestions: list[str] = []

        if not await is_port_in_use(port, host, self.probe_timeout):
            detailed = "rigctld is not running or not listening on the configured port"
            suggestions += ["Make sure rigctld is started", "Check that the port number is correct"]

        firewall = self.firewall
        if firewall is None or not firewall.is_supported_on_this_platform() or not attempt_firewall_fix:
            return ActionResult.fail(detailed, suggestions=suggestions)

        logging.info("Connection failed, attempting to configure the firewall...")
        try:
            await firewall.grant_exceptions()
        except FirewallError as e:
            if e.kind is FirewallFailure.DECLINED:
                suggestions.append("Firewall configuration was cancelled")
                return ActionResult.fail(detailed, suggestions=suggestions, user_cancelled=True)
            if e.kind is FirewallFailure.INSUFFICIENT_RIGHTS:
                suggestions.append(f"Try running {APP_NAME} as Administrator")
            else:
                suggestions.append("Firewall configuration failed")
            return ActionResult.fail(detailed, suggestions=suggestions, firewall_error=str(e))

        return ActionResult.fail(
            detailed, suggestions=suggestions, firewall_configured=True, should_retry=True
        )

    async def disconnect(self) -> None:
        """Close the socket. Safe to call at any time, including mid-command."""
        had_socket = self._writer is not None
        await self._teardown()
        self.is_external = False
        self.last_error = None
        self.set_status(ConnectionStatus.DISCONNECTED)
        if had_socket:
            logging.info("Disconnected from rigctld")

    async def close_on_error(self, message: str) -> None:
        if self._writer is not None:
            await self._fail(message)

    # --------------- I/O ---------------

    async def exchange(self, command: str) -> ResponseDecoder:
        """Write one command and read until its RPRT line. No timeout here."""
        reader, writer = self._reader, self._writer
        if reader is None or writer is None:
            raise NotConnectedError()

        payload = encode_command(command)
        decoder = ResponseDecoder()
        try:
            trace_wire(">>", payload)
            writer.write(payload)
            await writer.drain()
            while not decoder.complete:
                chunk = await reader.read(READ_CHUNK)
                if not chunk:
                    raise ConnectionResetError("Connection closed by rigctld")
                trace_wire("<<", chunk)
                decoder.feed(chunk)
        except (ConnectionError, OSError) as e:
            # Only the socket we started on may flip status; a concurrent
            # disconnect() already settled it
            if self._writer is writer:
                await self._fail(str(e) or e.__class__.__name__)
            raise TransportError(str(e) or "Connection lost") from e
        return decoder

    async def send_raw(self, command: str, capabilities: bool = False) -> RigResponse | list[str]:
        """One round trip; ``capabilities`` returns the raw dump_caps body lines instead."""
        decoder = await self.exchange(command)
        if capabilities:
            return decoder.decode_capabilities()
        return decoder.decode()
