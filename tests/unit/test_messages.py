"""
Unit tests for the browser message schema.
"""

import json

import pytest

from erbridge.errors import ProtocolError
from erbridge.protocol.messages import (
    CommandErrorMsg,
    ConnectMsg,
    DisconnectMsg,
    GetLogsMsg,
    HeartbeatMsg,
    LogEntry,
    LogMsg,
    ReadRegisterMsg,
    RegisterDataMsg,
    RobotCommandMsg,
    RobotResponseMsg,
    StatusMsg,
    Target,
    TelemetryMsg,
    WriteRegisterMsg,
    decode_inbound,
    decode_outbound,
    encode_inbound,
    encode_outbound,
)
from erbridge.protocol.registers import Coords

pytestmark = pytest.mark.unit


class TestInbound:
    def test_connect_uses_cmd_key(self):
        msg = decode_inbound('{"cmd": "CONNECT", "target": {"ip": "10.0.0.5", "port": 8080}}')
        assert msg == ConnectMsg(target=Target("10.0.0.5", 8080))

    def test_connect_with_type_key_and_no_target(self):
        assert decode_inbound('{"type": "CONNECT"}') == ConnectMsg()

    def test_robot_command(self):
        msg = decode_inbound('{"type": "ROBOT_COMMAND", "command": "[GetCurJPos();id=7]"}')
        assert msg == RobotCommandMsg(command="[GetCurJPos();id=7]")

    def test_register_messages(self):
        assert decode_inbound('{"type": "READ_REGISTER", "addr": 100, "count": 12}') == (
            ReadRegisterMsg(addr=100, count=12)
        )
        assert decode_inbound('{"type": "READ_REGISTER", "addr": 5}').count == 1
        assert decode_inbound('{"type": "WRITE_REGISTER", "addr": 200, "val": 1}') == (
            WriteRegisterMsg(addr=200, val=1)
        )

    def test_added_messages(self):
        assert decode_inbound(b'{"type": "DISCONNECT"}') == DisconnectMsg()
        assert decode_inbound('{"type": "GET_LOGS"}') == GetLogsMsg()

    def test_type_is_case_insensitive(self):
        assert isinstance(decode_inbound('{"type": "get_logs"}'), GetLogsMsg)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '{"command": "x"}',
            '{"type": "LAUNCH_ROCKET"}',
            '{"type": "ROBOT_COMMAND"}',
            '{"type": "WRITE_REGISTER", "addr": "high", "val": 1}',
        ],
    )
    def test_malformed_is_protocol_error(self, raw):
        with pytest.raises(ProtocolError):
            decode_inbound(raw)

    def test_encode_inbound_connect(self):
        text = encode_inbound("CONNECT", target={"ip": "1.2.3.4", "port": 502})
        assert json.loads(text) == {"cmd": "CONNECT", "target": {"ip": "1.2.3.4", "port": 502}}
        assert decode_inbound(text) == ConnectMsg(target=Target("1.2.3.4", 502))


class TestOutbound:
    def test_status_uses_camel_case(self):
        msg = StatusMsg(
            connected=True,
            robot_ip="192.168.1.100",
            robot_port=502,
            protocol="modbus",
            state="CONNECTED",
        )
        data = json.loads(encode_outbound(msg))
        assert data == {
            "type": "STATUS",
            "connected": True,
            "robotIp": "192.168.1.100",
            "robotPort": 502,
            "protocol": "modbus",
            "state": "CONNECTED",
        }

    def test_status_error_included_when_set(self):
        msg = StatusMsg(False, "h", 1, "string", "DISCONNECTED", error="connection refused")
        assert json.loads(encode_outbound(msg))["error"] == "connection refused"

    def test_robot_response(self):
        data = json.loads(encode_outbound(RobotResponseMsg(response="[id = 1; Ok]")))
        assert data == {"type": "ROBOT_RESPONSE", "response": "[id = 1; Ok]"}

    def test_command_error_id_optional(self):
        assert json.loads(encode_outbound(CommandErrorMsg(error="busy"))) == {
            "type": "COMMAND_ERROR",
            "error": "busy",
        }
        assert json.loads(encode_outbound(CommandErrorMsg(error="t", id=4)))["id"] == 4

    def test_register_data(self):
        data = json.loads(encode_outbound(RegisterDataMsg(values=[1, 2], addr=100)))
        assert data == {"type": "REGISTER_DATA", "values": [1, 2], "addr": 100}

    def test_decode_outbound_round_trip(self):
        for msg in (
            HeartbeatMsg(connected=False, timestamp=1700000000000.0),
            TelemetryMsg(coords=Coords(1, 2, 3, 4, 5, 6), joints=[0.0] * 6),
            LogMsg(entry=LogEntry(id=1, timestamp=1.5, kind="warn", message="m")),
        ):
            assert decode_outbound(encode_outbound(msg)) == msg

    def test_decode_outbound_rejects_unknown(self):
        with pytest.raises(ProtocolError):
            decode_outbound('{"type": "NOPE"}')
