"""
End-to-end tests of the string protocol: bridge <-> mock controller over
loopback TCP.
"""

import asyncio

import pytest

from erbridge.client.robot_client import RobotClient
from erbridge.errors import (
    CommandBusyError,
    CommandFailedError,
    CommandTimeoutError,
    ConnectionClosedError,
    RobotStoppedError,
)
from erbridge.protocol.messages import RobotResponseMsg, StatusMsg
from erbridge.protocol.types import ConnectionState, JointPosition
from erbridge.server.bridge import Bridge
from erbridge.server.correlator import CommandIdGenerator
from erbridge.server.transports import MockController

pytestmark = pytest.mark.integration


async def _eventually(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


@pytest.mark.asyncio
async def test_probe_sent_on_connect(bridge, mock_controller):
    assert await _eventually(lambda: "getCurSysMode_IFace()" in mock_controller.received)


@pytest.mark.asyncio
async def test_joint_position_round_trip(bridge, mock_controller):
    mock_controller.state.joints[:] = [10.0, 20.0, 30.0, 40.0, 50.0, 60.0]
    result = await bridge.submit_wire("[GetCurJPos();id=7]")
    assert result.id == 7
    assert result.data == [10.0, 20.0, 30.0, 40.0, 50.0, 60.0]
    assert not bridge.correlator.busy


@pytest.mark.asyncio
async def test_bare_payload_gets_next_id(bridge):
    before = bridge.correlator.ids.last
    result = await bridge.submit_wire("GetCurJPos()")
    assert result.id == before + 1


@pytest.mark.asyncio
async def test_facade_over_bridge(bridge, mock_controller):
    client = RobotClient(bridge)
    jp = await client.get_current_joint_position()
    assert jp == JointPosition(0.0, -30.0, 60.0, 0.0, 45.0, 0.0)
    pose = await client.get_current_world_position()
    assert (pose.x, pose.y, pose.z) == pytest.approx((501.0, 173.32, 176.79))
    await client.set_global_speed(25)
    assert await client.get_global_speed() == 25
    assert mock_controller.state.speed == 25


@pytest.mark.asyncio
async def test_move_acknowledged_then_motion_finish_forwarded(bridge, mock_controller):
    events = []
    bridge.add_sink(events.append)
    client = RobotClient(bridge)
    result = await client.move_to_joint_position([0, 0, 0, 0, 90, 0])
    assert await _eventually(
        lambda: any(
            isinstance(e, RobotResponseMsg) and e.response == f"[FeedMovFinish: {result.id}]"
            for e in events
        )
    )
    assert mock_controller.state.joints.tolist() == [0, 0, 0, 0, 90, 0]


@pytest.mark.asyncio
async def test_fail_frame(bridge, mock_controller):
    mock_controller.fail.add("StopDestPosMotion_IFace")
    with pytest.raises(CommandFailedError):
        await bridge.execute("StopDestPosMotion_IFace()")


@pytest.mark.asyncio
async def test_robot_stop_scenario(bridge, mock_controller):
    mock_controller.silent.add("GetCurJPos")
    task = asyncio.create_task(bridge.submit_wire("[GetCurJPos();id=7]"))
    assert await _eventually(lambda: bridge.correlator.busy)
    await mock_controller.push("[RobotStop: 7]")
    with pytest.raises(RobotStoppedError):
        await task


@pytest.mark.asyncio
async def test_timeout_then_late_frame_is_unsolicited(bridge, mock_controller):
    mock_controller.silent.add("GetCurJPos")
    with pytest.raises(CommandTimeoutError):
        await bridge.submit_wire("[GetCurJPos();id=21]", timeout=0.1)
    unsolicited = bridge.unsolicited_frames
    await mock_controller.push("[id = 21; Ok; 1 2 3 4 5 6]")
    assert await _eventually(lambda: bridge.unsolicited_frames > unsolicited)
    assert not bridge.correlator.busy


@pytest.mark.asyncio
async def test_concurrent_raw_submission_is_busy(bridge, mock_controller):
    mock_controller.silent.add("GetCurJPos")
    first = asyncio.create_task(bridge.execute("GetCurJPos()", timeout=0.3))
    assert await _eventually(lambda: bridge.correlator.busy)
    with pytest.raises(CommandBusyError):
        await bridge.execute("GetCurWPos()")
    with pytest.raises(CommandTimeoutError):
        await first


@pytest.mark.asyncio
async def test_disconnect_rejects_pending_and_reconnects(bridge, mock_controller):
    mock_controller.silent.add("GetCurJPos")
    states = []
    bridge.add_sink(lambda msg: isinstance(msg, StatusMsg) and states.append(msg.state))

    task = asyncio.create_task(bridge.execute("GetCurJPos()", timeout=5.0))
    assert await _eventually(lambda: bridge.correlator.busy)
    await mock_controller.drop_clients()

    with pytest.raises(ConnectionClosedError):
        await task
    assert ConnectionState.DISCONNECTED.value in states
    # Supervisor retries after the backoff interval
    assert await bridge.transport.wait_connected(2.0)
    mock_controller.silent.clear()
    assert (await bridge.execute("GetCurJPos()")).data is not None


@pytest.mark.asyncio
async def test_heartbeat_byte_is_echoed(bridge, mock_controller):
    # Let the probe reply land first so the heartbeat arrives as its own chunk
    assert await _eventually(lambda: bridge.transport.frames_received >= 1)
    await mock_controller.send_raw(b"\x00")
    assert await _eventually(lambda: mock_controller.heartbeats_received == 1)
    assert bridge.transport.heartbeats_echoed == 1


@pytest.mark.asyncio
async def test_utf16_controller(config_factory):
    """Replies in UTF-16-LE pin the codec; later requests go out in it too."""
    async with MockController(encoding="utf-16-le") as mock:
        bridge = Bridge(config_factory(robot_port=mock.port), ids=CommandIdGenerator())
        try:
            await bridge.connect()
            assert await bridge.transport.wait_connected(2.0)
            # The probe reply pins the encoding
            assert await _eventually(lambda: bridge.transport.encoding == "utf-16-le")
            result = await bridge.execute("GetCurJPos()")
            assert len(result.data) == 6
        finally:
            await bridge.stop()


@pytest.mark.asyncio
async def test_connect_same_target_is_noop(bridge, mock_controller):
    transport = bridge.transport
    assert await bridge.connect("127.0.0.1", mock_controller.port) is False
    assert bridge.transport is transport
    assert any("Already connected" in e.message for e in bridge.log.entries())


@pytest.mark.asyncio
async def test_connect_new_target_replaces_transport(bridge, mock_controller):
    async with MockController() as other:
        old = bridge.transport
        assert await bridge.connect("127.0.0.1", other.port) is True
        assert bridge.transport is not old
        assert not old.running
        assert await bridge.transport.wait_connected(2.0)
        assert bridge.target.port == other.port
        await bridge.disconnect()


@pytest.mark.asyncio
async def test_unreachable_controller_reports_error(config_factory):
    # Bind and release a port so nothing listens on it
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    bridge = Bridge(config_factory(robot_port=port), ids=CommandIdGenerator())
    errors = []
    bridge.add_sink(lambda msg: isinstance(msg, StatusMsg) and msg.error and errors.append(msg))
    try:
        await bridge.connect()
        assert await _eventually(lambda: errors)
        assert errors[0].connected is False
        assert errors[0].state == ConnectionState.DISCONNECTED.value
        assert any(e.kind == "error" for e in bridge.log.entries())
    finally:
        await bridge.stop()
