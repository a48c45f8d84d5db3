from __future__ import annotations

import os
import socket
from typing import TYPE_CHECKING

import pytest

from riglink.config import Config
from riglink.services.connection import ConnectionManager
from riglink.services.dispatcher import CommandDispatcher
from riglink.services.firewall import NoopFirewall
from riglink.services.supervisor import RigctldOptions, RigctldSupervisor
from riglink.session import RigSession

from tests.utils.fake_rigctld import FakeRigctld

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@pytest.fixture(scope="session", autouse=True)
def riglink_env_session() -> None:
    """
    Global test defaults (set at session start via os.environ):
      - never touch the OS firewall from Config.from_env()
    These can still be overridden per-test with monkeypatch.setenv if needed.
    """
    os.environ["RIGLINK_FIREWALL_FIX"] = "0"


@pytest.fixture
async def fake_rigctld() -> AsyncIterator[FakeRigctld]:
    """An in-process rigctld on an ephemeral 127.0.0.1 port."""
    server = await FakeRigctld().start()
    try:
        yield server
    finally:
        await server.stop()


@pytest.fixture
def free_port() -> int:
    """A port nothing listens on (bound once, then released)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def supervisor(fake_rigctld: FakeRigctld) -> RigctldSupervisor:
    return RigctldSupervisor(
        RigctldOptions(host="127.0.0.1", port=fake_rigctld.port, model=1),
        startup_delay=0.0,
        settle_delay=0.0,
    )


@pytest.fixture
async def connection(
    fake_rigctld: FakeRigctld, supervisor: RigctldSupervisor
) -> AsyncIterator[ConnectionManager]:
    """A ConnectionManager already connected to the fake daemon."""
    conn = ConnectionManager(
        "127.0.0.1", fake_rigctld.port, supervisor=supervisor, firewall=NoopFirewall()
    )
    result = await conn.connect()
    assert result.success, result.error
    try:
        yield conn
    finally:
        await conn.disconnect()


@pytest.fixture
def dispatcher(connection: ConnectionManager) -> CommandDispatcher:
    return CommandDispatcher(connection, command_timeout=1.0, capabilities_timeout=1.0)


@pytest.fixture
def session_config(fake_rigctld: FakeRigctld) -> Config:
    return Config(
        HOST="127.0.0.1",
        PORT=fake_rigctld.port,
        RIG_MODEL=1,
        AUTO_START=False,
        ATTEMPT_FIREWALL_FIX=False,
        MAIN_POLL_INTERVAL_S=0.05,
        SMETER_POLL_INTERVAL_S=0.02,
    )


@pytest.fixture
async def session(
    session_config: Config, supervisor: RigctldSupervisor
) -> AsyncIterator[RigSession]:
    s = RigSession(session_config, supervisor=supervisor, firewall=NoopFirewall())
    try:
        yield s
    finally:
        await s.dispose()
