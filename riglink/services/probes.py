from __future__ import annotations

import asyncio
import contextlib
import logging

from riglink.constants import PORT_PROBE_TIMEOUT_S, TCP_PROBE_TIMEOUT_S


async def _try_connect(host: str, port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(Exception):
        await writer.wait_closed()
    return True


async def is_port_in_use(
    port: int, host: str = "localhost", timeout: float = PORT_PROBE_TIMEOUT_S
) -> bool:
    """True when something accepts TCP connections on host:port."""
    listening = await _try_connect(host, port, timeout)
    logging.debug("Port probe %s:%s -> %s", host, port, listening)
    return listening


async def check_tcp_connection(
    host: str, port: int, timeout: float = TCP_PROBE_TIMEOUT_S
) -> bool:
    """Reachability check used by diagnostics; separate from the listen probe."""
    reachable = await _try_connect(host, port, timeout)
    logging.debug("TCP connect probe %s:%s -> %s", host, port, reachable)
    return reachable


