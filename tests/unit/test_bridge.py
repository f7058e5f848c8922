"""Unit tests for bridge event routing without live sockets."""

import pytest

from erbridge.errors import (
    ConnectionClosedError,
    EncodingError,
    RegisterReadError,
    RegisterWriteError,
)
from erbridge.protocol.messages import (
    ErrorMsg,
    LogMsg,
    RegisterDataMsg,
    RobotResponseMsg,
    StatusMsg,
    TelemetryMsg,
)
from erbridge.protocol.registers import RegisterFrame, encode_fixed_point
from erbridge.protocol.wire import parse_frame
from erbridge.server.bridge import Bridge
from erbridge.server.correlator import CommandIdGenerator
from erbridge.server.transports import RegisterPollingTransport

pytestmark = pytest.mark.unit


@pytest.fixture
def bridge_and_events(config_factory):
    bridge = Bridge(config_factory(robot_port=8080), ids=CommandIdGenerator())
    events = []
    bridge.add_sink(events.append)
    return bridge, events


def test_status_reflects_target_and_protocol(config_factory):
    bridge = Bridge(config_factory(robot_ip="10.0.0.9", robot_port=502, protocol="auto"))
    status = bridge.status()
    assert status == StatusMsg(
        connected=False,
        robot_ip="10.0.0.9",
        robot_port=502,
        protocol="modbus",
        state="DISCONNECTED",
    )


def test_every_frame_is_forwarded(bridge_and_events):
    bridge, events = bridge_and_events
    bridge._on_frame(parse_frame("[FeedMovFinish: 3]"))
    responses = [e for e in events if isinstance(e, RobotResponseMsg)]
    assert responses == [RobotResponseMsg(response="[FeedMovFinish: 3]")]
    assert bridge.unsolicited_frames == 1


def test_unrecognized_frame_is_logged(bridge_and_events):
    bridge, events = bridge_and_events
    bridge._on_frame(parse_frame("[what]"))
    logs = [e.entry for e in events if isinstance(e, LogMsg)]
    assert logs and logs[-1].kind == "warn"
    assert any(isinstance(e, RobotResponseMsg) for e in events)


def test_protocol_error_becomes_error_message(bridge_and_events):
    bridge, events = bridge_and_events
    bridge._on_protocol_error(EncodingError("FF FE"))
    assert ErrorMsg(message="Undecodable controller data: FF FE") in events


def test_register_frame_produces_data_and_telemetry(bridge_and_events):
    bridge, events = bridge_and_events
    transport = RegisterPollingTransport("127.0.0.1", 502)
    regs = encode_fixed_point([501.0, 173.32, 176.79, 180.0, 0.0, 90.0]) + [0] * 12
    bridge._on_register_frame(transport, RegisterFrame(start_address=100, values=tuple(regs)))

    data = [e for e in events if isinstance(e, RegisterDataMsg)]
    assert data[0].addr == 100
    assert data[0].values[:2] == [50100, 0]
    telemetry = [e for e in events if isinstance(e, TelemetryMsg)]
    assert telemetry[0].coords.x == pytest.approx(501.0)
    assert telemetry[0].joints == [0.0] * 6


def test_coordinate_scenario_frame_produces_telemetry(bridge_and_events):
    bridge, events = bridge_and_events
    transport = RegisterPollingTransport("127.0.0.1", 502)
    frame = RegisterFrame(start_address=100, values=(50100, 0, 17332, 0, 17679, 0))
    bridge._on_register_frame(transport, frame)

    telemetry = [e for e in events if isinstance(e, TelemetryMsg)]
    assert len(telemetry) == 1
    coords = telemetry[0].coords
    assert (coords.x, coords.y, coords.z) == pytest.approx((501.00, 173.32, 176.79))
    assert coords.a is None


def test_register_frame_outside_coordinate_block(bridge_and_events):
    bridge, events = bridge_and_events
    transport = RegisterPollingTransport("127.0.0.1", 502)
    bridge._on_register_frame(transport, RegisterFrame(start_address=300, values=(1, 2)))
    assert not any(isinstance(e, TelemetryMsg) for e in events)
    assert any(isinstance(e, RegisterDataMsg) for e in events)


def test_failing_sink_does_not_stop_others(bridge_and_events):
    bridge, events = bridge_and_events

    def broken(msg):
        raise RuntimeError("sink bug")

    bridge.add_sink(broken)
    bridge.emit(ErrorMsg(message="x"))
    assert ErrorMsg(message="x") in events


def test_remove_sink(config_factory):
    bridge = Bridge(config_factory())
    events = []
    remove = bridge.add_sink(events.append)
    remove()
    bridge.emit(ErrorMsg(message="x"))
    assert events == []


@pytest.mark.asyncio
async def test_submit_requires_connection(bridge_and_events):
    bridge, _ = bridge_and_events
    with pytest.raises(ConnectionClosedError):
        await bridge.execute("GetCurJPos()")


@pytest.mark.asyncio
async def test_register_access_requires_register_mode(bridge_and_events):
    bridge, _ = bridge_and_events
    with pytest.raises(RegisterReadError):
        await bridge.read_registers(100, 2)
    with pytest.raises(RegisterWriteError):
        await bridge.write_register(200, 1)
    with pytest.raises(RegisterWriteError):
        await bridge.pulse_flag(0)
