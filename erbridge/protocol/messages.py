"""
Browser-facing message schema (JSON over WebSocket).

Inbound messages are selected by their ``type`` key; the connect handshake
historically uses ``cmd`` instead, so both keys are accepted. Decoding happens
once at the boundary into a closed set of structs.

Outbound messages are tagged structs; ``type`` is written first.
"""

import logging
from typing import Any, TypeAlias

import msgspec

from erbridge.errors import ProtocolError
from erbridge.protocol.registers import Coords
from erbridge.protocol.types import LogKind

logger = logging.getLogger(__name__)


# =============================================================================
# Shared records
# =============================================================================


class Target(msgspec.Struct, frozen=True):
    ip: str
    port: int


class LogEntry(msgspec.Struct, frozen=True):
    """One entry of the bounded event log."""

    id: int
    timestamp: float
    kind: LogKind
    message: str


# =============================================================================
# Inbound (browser -> bridge)
# =============================================================================


class ConnectMsg(msgspec.Struct, frozen=True):
    """{cmd: "CONNECT", target: {ip, port}}; target defaults to the configured one."""

    target: Target | None = None


class RobotCommandMsg(msgspec.Struct, frozen=True):
    """{type: "ROBOT_COMMAND", command: "[Payload();id=N]"} or a bare payload."""

    command: str
    timeout: float | None = None


class ReadRegisterMsg(msgspec.Struct, frozen=True):
    addr: int
    count: int = 1


class WriteRegisterMsg(msgspec.Struct, frozen=True):
    addr: int
    val: int


class DisconnectMsg(msgspec.Struct, frozen=True):
    pass


class GetLogsMsg(msgspec.Struct, frozen=True):
    pass


InboundMessage: TypeAlias = (
    ConnectMsg
    | RobotCommandMsg
    | ReadRegisterMsg
    | WriteRegisterMsg
    | DisconnectMsg
    | GetLogsMsg
)

INBOUND_TYPES: dict[str, type] = {
    "CONNECT": ConnectMsg,
    "ROBOT_COMMAND": RobotCommandMsg,
    "READ_REGISTER": ReadRegisterMsg,
    "WRITE_REGISTER": WriteRegisterMsg,
    "DISCONNECT": DisconnectMsg,
    "GET_LOGS": GetLogsMsg,
}


class _Envelope(msgspec.Struct):
    type: str | None = None
    cmd: str | None = None


_envelope_decoder = msgspec.json.Decoder(_Envelope)
_inbound_decoders = {
    name: msgspec.json.Decoder(cls) for name, cls in INBOUND_TYPES.items()
}


def decode_inbound(data: bytes | str) -> InboundMessage:
    """Decode one browser message.

    Raises:
        ProtocolError: malformed JSON, unknown type, or invalid fields
    """
    try:
        env = _envelope_decoder.decode(data)
    except msgspec.DecodeError as e:
        raise ProtocolError(f"Malformed message: {e}") from e

    kind = env.type or env.cmd
    if not kind:
        raise ProtocolError("Message has no 'type' or 'cmd' field")
    decoder = _inbound_decoders.get(kind.upper())
    if decoder is None:
        raise ProtocolError(f"Unknown message type: {kind}")
    try:
        return decoder.decode(data)
    except msgspec.DecodeError as e:
        raise ProtocolError(f"Invalid {kind} message: {e}") from e


# =============================================================================
# Outbound (bridge -> browser)
# =============================================================================


class StatusMsg(
    msgspec.Struct, tag="STATUS", tag_field="type", rename="camel", omit_defaults=True
):
    connected: bool
    robot_ip: str
    robot_port: int
    protocol: str
    state: str
    error: str | None = None


class RobotResponseMsg(msgspec.Struct, tag="ROBOT_RESPONSE", tag_field="type"):
    response: str


class RegisterDataMsg(msgspec.Struct, tag="REGISTER_DATA", tag_field="type"):
    values: list[int]
    addr: int


class RegisterWrittenMsg(msgspec.Struct, tag="REGISTER_WRITTEN", tag_field="type"):
    addr: int
    val: int


class HeartbeatMsg(msgspec.Struct, tag="HEARTBEAT", tag_field="type"):
    connected: bool
    timestamp: float


class ErrorMsg(msgspec.Struct, tag="ERROR", tag_field="type"):
    message: str


class CommandErrorMsg(
    msgspec.Struct, tag="COMMAND_ERROR", tag_field="type", omit_defaults=True
):
    error: str
    id: int | None = None


class TelemetryMsg(msgspec.Struct, tag="TELEMETRY", tag_field="type"):
    coords: Coords
    joints: list[float]


class LogMsg(msgspec.Struct, tag="LOG", tag_field="type"):
    entry: LogEntry


class LogsMsg(msgspec.Struct, tag="LOGS", tag_field="type"):
    entries: list[LogEntry]


OutboundMessage: TypeAlias = (
    StatusMsg
    | RobotResponseMsg
    | RegisterDataMsg
    | RegisterWrittenMsg
    | HeartbeatMsg
    | ErrorMsg
    | CommandErrorMsg
    | TelemetryMsg
    | LogMsg
    | LogsMsg
)

_encoder = msgspec.json.Encoder()
_outbound_decoder = msgspec.json.Decoder(OutboundMessage)


def encode_outbound(msg: OutboundMessage) -> str:
    """Encode an outbound message as JSON text (WebSocket text frame)."""
    return _encoder.encode(msg).decode("utf-8")


def decode_outbound(data: bytes | str) -> OutboundMessage:
    """Decode a bridge message (used by the Python gateway client)."""
    try:
        return _outbound_decoder.decode(data)
    except msgspec.DecodeError as e:
        raise ProtocolError(f"Malformed bridge message: {e}") from e


def encode_inbound(kind: str, **fields: Any) -> str:
    """Build an inbound message as JSON text; CONNECT uses the ``cmd`` key."""
    key = "cmd" if kind == "CONNECT" else "type"
    return _encoder.encode({key: kind, **fields}).decode("utf-8")
