"""Shared fixtures: fast bridge config, mock controller, connected bridge."""

import pytest
import pytest_asyncio

from erbridge.config import BridgeConfig
from erbridge.server.bridge import Bridge
from erbridge.server.correlator import CommandIdGenerator
from erbridge.server.transports import MockController


def make_config(**overrides) -> BridgeConfig:
    """Loopback config with short timers so tests finish quickly."""
    values = dict(
        robot_ip="127.0.0.1",
        robot_port=1,
        protocol="string",
        gateway_host="127.0.0.1",
        gateway_port=0,
        command_timeout=1.0,
        poll_interval=0.02,
        heartbeat_interval=0.1,
        reconnect_interval=0.05,
        reconnect_backoff=1.0,
        reconnect_max_interval=0.05,
        connect_timeout=1.0,
        autoconnect=False,
    )
    values.update(overrides)
    return BridgeConfig(**values)


@pytest.fixture
def config_factory():
    return make_config


@pytest_asyncio.fixture
async def mock_controller():
    mock = MockController(motion_delay=0.05)
    await mock.start()
    try:
        yield mock
    finally:
        await mock.stop()


@pytest_asyncio.fixture
async def bridge(mock_controller):
    """Bridge connected over the string protocol to the mock controller."""
    b = Bridge(make_config(robot_port=mock_controller.port), ids=CommandIdGenerator())
    await b.connect()
    assert await b.transport.wait_connected(2.0), "bridge failed to reach mock controller"
    # Server side has accepted the stream as well
    assert await mock_controller.wait_client(2.0)
    try:
        yield b
    finally:
        await b.stop()
