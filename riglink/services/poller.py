from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from riglink.constants import MAIN_POLL_INTERVAL_S, SMETER_ERROR_THRESHOLD, SMETER_POLL_INTERVAL_S
from riglink.errors import CapabilityError, RigctldError
from riglink.services.dispatcher import STRENGTH_LEVEL, CommandDispatcher
from riglink.state import RigCapabilities, RigState, SmeterStatus, SmeterSupport

T = TypeVar("T")

_FAILED = object()


class PollingScheduler:
    """
    Two independent repeating timers against the dispatcher.

    - main: frequency, mode, VFO, PTT, split (+ TX frequency), RIT, XIT, S-meter
    - smeter: STRENGTH only, gated once per connection on the capability list

    A tick is skipped outright while a connect/disconnect is running, while the
    dispatcher lane is occupied, or while the previous tick of the same timer
    is still outstanding. Failed sub-queries keep the previous state.
    """

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        state: RigState,
        smeter: SmeterStatus,
        capabilities: Callable[[], RigCapabilities | None],
        *,
        is_busy: Callable[[], bool] = lambda: False,
        main_interval: float = MAIN_POLL_INTERVAL_S,
        smeter_interval: float = SMETER_POLL_INTERVAL_S,
    ) -> None:
        self.dispatcher = dispatcher
        self.state = state
        self.smeter = smeter
        self._capabilities = capabilities
        self._is_busy = is_busy
        self.main_interval = main_interval
        self.smeter_interval = smeter_interval
        self._main_task: asyncio.Task | None = None
        self._smeter_task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()
        self.skipped_ticks = 0

    @property
    def main_active(self) -> bool:
        return self._main_task is not None and not self._main_task.done()

    @property
    def smeter_active(self) -> bool:
        return self._smeter_task is not None and not self._smeter_task.done()

    def _can_tick(self) -> bool:
        return (
            self.dispatcher.connection.connected
            and not self._is_busy()
            and not self.dispatcher.busy
        )

    # --------------- timers ---------------

    async def _run_every(self, interval: float, tick: Callable[[], Awaitable[None]]) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        pending: asyncio.Task | None = None
        while True:
            if self._can_tick() and (pending is None or pending.done()):
                pending = asyncio.create_task(tick())
                self._ticks.add(pending)
                pending.add_done_callback(self._ticks.discard)
            else:
                self.skipped_ticks += 1
            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind; realign instead of bursting
                next_tick = loop.time()
                delay = 0.0
            await asyncio.sleep(delay)

    def start_main(self, interval: float | None = None) -> None:
        if interval is not None:
            self.main_interval = interval
        if self.main_active:
            self._main_task.cancel()  # type: ignore[union-attr]
        self._main_task = asyncio.create_task(self._run_every(self.main_interval, self.poll_state))

    def start_smeter(self, interval: float | None = None) -> None:
        if interval is not None:
            self.smeter_interval = interval
        if self.smeter_active:
            self._smeter_task.cancel()  # type: ignore[union-attr]
        logging.info("[S-meter] Starting dedicated polling at %dms interval", self.smeter_interval * 1000)
        self._smeter_task = asyncio.create_task(self._run_every(self.smeter_interval, self._smeter_tick))

    def start(self) -> None:
        self.start_main()
        self.start_smeter()

    async def _cancel(self, task: asyncio.Task | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def stop_main(self) -> None:
        await self._cancel(self._main_task)
        self._main_task = None

    async def stop_smeter(self) -> None:
        await self._cancel(self._smeter_task)
        self._smeter_task = None
        logging.debug("[S-meter] Stopped dedicated polling")

    async def stop(self) -> None:
        await self.stop_main()
        await self.stop_smeter()
        # In-flight ticks finish on their own, bounded by the command timeout
        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    # --------------- ticks ---------------

    async def _query(self, label: str, fn: Callable[[], Awaitable[T]]) -> T | object:
        try:
            return await fn()
        except RigctldError as e:
            logging.debug("Poll %s failed: %s", label, e)
            return _FAILED

    async def poll_state(self) -> None:
        """One full-state refresh; each sub-query stands alone."""
        if not self.dispatcher.connection.connected:
            return
        d = self.dispatcher
        s = self.state

        freq = await self._query("frequency", d.get_frequency)
        if freq is not _FAILED:
            s.frequency_hz = freq  # type: ignore[assignment]

        mode = await self._query("mode", d.get_mode)
        if mode is not _FAILED:
            s.mode, s.passband_hz = mode  # type: ignore[misc]

        vfo = await self._query("vfo", d.get_vfo)
        if vfo is not _FAILED:
            s.vfo = vfo  # type: ignore[assignment]

        ptt = await self._query("ptt", d.get_ptt)
        if ptt is not _FAILED:
            s.ptt = ptt  # type: ignore[assignment]

        split = await self._query("split", d.get_split)
        if split is not _FAILED:
            s.split = split  # type: ignore[assignment]
            if split:
                tx_freq = await self._query("split frequency", d.get_split_frequency)
                if tx_freq is not _FAILED:
                    s.split_frequency_hz = tx_freq  # type: ignore[assignment]

        rit = await self._query("rit", d.get_rit)
        if rit is not _FAILED:
            s.rit_hz = rit  # type: ignore[assignment]

        xit = await self._query("xit", d.get_xit)
        if xit is not _FAILED:
            s.xit_hz = xit  # type: ignore[assignment]

        await self.poll_smeter()
        s.last_update_ts = time.time()

    def _gate_smeter(self) -> bool:
        """
        Decide S-meter support once per connection from the capability list.

        When capabilities failed to load (e.g. a ``dump_caps`` timeout) the
        rig is treated as lacking STRENGTH, and S-meter polling stays off
        until the next connect.
        """
        sm = self.smeter
        if sm.support is SmeterSupport.UNKNOWN:
            caps = self._capabilities()
            try:
                if caps is None:
                    raise CapabilityError(
                        "Capabilities unavailable, S-meter disabled for this connection"
                    )
                caps.require_level(STRENGTH_LEVEL)
            except CapabilityError as e:
                sm.support = SmeterSupport.UNSUPPORTED
                sm.last_error = str(e)
                logging.warning("[S-meter] Not supported - %s", e)
                return False
            logging.debug("[S-meter] Capability check - STRENGTH in levels")
            sm.support = SmeterSupport.SUPPORTED
        return sm.support is SmeterSupport.SUPPORTED

    async def poll_smeter(self) -> None:
        if not self.dispatcher.connection.connected:
            return
        if not self._gate_smeter():
            return

        sm = self.smeter
        try:
            value = await self.dispatcher.get_strength()
        except RigctldError as e:
            sm.consecutive_errors += 1
            sm.last_error = str(e)
            if sm.consecutive_errors == SMETER_ERROR_THRESHOLD + 1:
                logging.warning("[S-meter] %d consecutive read errors: %s", sm.consecutive_errors, e)
            else:
                logging.debug("[S-meter] Failed to read: %s", e)
            return

        self.state.signal_strength = value
        sm.last_successful_read = time.time()
        sm.consecutive_errors = 0
        sm.last_error = None

    async def _smeter_tick(self) -> None:
        if self.smeter.support is SmeterSupport.UNSUPPORTED:
            return
        await self.poll_smeter()
