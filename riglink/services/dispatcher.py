from __future__ import annotations

import asyncio
import logging

from riglink.constants import CAPABILITIES_TIMEOUT_S, COMMAND_TIMEOUT_S
from riglink.errors import CommandTimeoutError, NotConnectedError, ProtocolError
from riglink.protocol.capabilities import parse_capabilities
from riglink.services.connection import ConnectionManager
from riglink.state import RigCapabilities

STRENGTH_LEVEL = "STRENGTH"


def to_int(value: str | None, default: int = 0) -> int:
    """Lenient integer parse for daemon values such as '14074000.000000'."""
    if value is None:
        return default
    try:
        return int(float(value.strip()))
    except ValueError:
        return default


def _first(values: list[str] | None, command: str) -> str:
    if not values:
        raise ProtocolError(f"No data returned for '{command}'")
    return values[0]


class CommandDispatcher:
    """
    Command semantics on top of the single connection.

    rigctld responses carry no request id, so correlation is purely by order:
    one command is on the wire at a time (the lane) and the next waits until
    the previous one saw its RPRT line or timed out. After a timeout the late
    answer may still arrive and be read as the next command's response unless
    ``reset_on_timeout`` drops the connection.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        *,
        command_timeout: float = COMMAND_TIMEOUT_S,
        capabilities_timeout: float = CAPABILITIES_TIMEOUT_S,
        reset_on_timeout: bool = False,
    ) -> None:
        self.connection = connection
        self.command_timeout = command_timeout
        self.capabilities_timeout = capabilities_timeout
        self.reset_on_timeout = reset_on_timeout
        self._lane = asyncio.Lock()

    @property
    def busy(self) -> bool:
        """A command is on the wire or queued for the lane."""
        return self._lane.locked()

    async def _timed_out(self, command: str, timeout: float) -> CommandTimeoutError:
        logging.warning("Command '%s' timed out after %.1fs", command, timeout)
        if self.reset_on_timeout:
            await self.connection.close_on_error(f"Command '{command}' timed out")
        return CommandTimeoutError(command, timeout)

    async def execute(self, command: str, timeout: float | None = None) -> list[str] | None:
        """
        Send one command and wait for its response.

        Returns:
            Values of the data lines, or None for set-commands (RPRT 0 only).

        Raises:
            NotConnectedError, CommandTimeoutError, DaemonRejectedError,
            ProtocolError, TransportError
        """
        timeout = self.command_timeout if timeout is None else timeout
        async with self._lane:
            if not self.connection.connected:
                raise NotConnectedError()
            try:
                response = await asyncio.wait_for(
                    self.connection.send_raw(command), timeout=timeout
                )
            except asyncio.TimeoutError:
                raise await self._timed_out(command, timeout) from None
        response.raise_for_code(command)
        return response.values

    async def dump_caps(self) -> list[str]:
        async with self._lane:
            if not self.connection.connected:
                raise NotConnectedError()
            try:
                lines = await asyncio.wait_for(
                    self.connection.send_raw("dump_caps", capabilities=True),
                    timeout=self.capabilities_timeout,
                )
            except asyncio.TimeoutError:
                raise await self._timed_out("dump_caps", self.capabilities_timeout) from None
        return lines  # type: ignore[return-value]

    async def get_capabilities(self) -> RigCapabilities:
        return parse_capabilities(await self.dump_caps())

    # --------------- queries ---------------

    async def get_frequency(self) -> int:
        return to_int(_first(await self.execute("f"), "f"))

    async def get_mode(self) -> tuple[str, int]:
        values = await self.execute("m")
        mode = _first(values, "m")
        passband = to_int(values[1]) if values and len(values) > 1 else 0
        return mode, passband

    async def get_vfo(self) -> str:
        return _first(await self.execute("v"), "v")

    async def get_ptt(self) -> bool:
        return _first(await self.execute("t"), "t").strip() == "1"

    async def get_split(self) -> bool:
        return _first(await self.execute("s"), "s").strip() == "1"

    async def get_split_frequency(self) -> int:
        return to_int(_first(await self.execute("i"), "i"))

    async def get_rit(self) -> int:
        return to_int(_first(await self.execute("j"), "j"))

    async def get_xit(self) -> int:
        return to_int(_first(await self.execute("z"), "z"))

    async def get_strength(self) -> int:
        values = await self.execute(f"l {STRENGTH_LEVEL}")
        _first(values, "l")
        # Extended mode echoes "get_level: STRENGTH" ahead of the value line
        return to_int(values[-1])

    # --------------- setters ---------------

    async def set_frequency(self, frequency_hz: int) -> None:
        await self.execute(f"F {int(frequency_hz)}")

    async def set_mode(self, mode: str, passband_hz: int = 0) -> None:
        await self.execute(f"M {mode} {int(passband_hz)}")

    async def set_vfo(self, vfo: str) -> None:
        await self.execute(f"V {vfo}")

    async def set_ptt(self, enabled: bool) -> None:
        await self.execute(f"T {'1' if enabled else '0'}")

    async def set_split(self, enabled: bool, tx_vfo: str = "VFOB") -> None:
        await self.execute(f"S {'1' if enabled else '0'} {tx_vfo}")

    async def set_split_frequency(self, frequency_hz: int) -> None:
        await self.execute(f"I {int(frequency_hz)}")

    async def set_rit(self, offset_hz: int) -> None:
        await self.execute(f"J {int(offset_hz)}")

    async def set_xit(self, offset_hz: int) -> None:
        await self.execute(f"Z {int(offset_hz)}")
