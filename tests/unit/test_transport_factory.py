"""Unit tests for protocol selection, transport construction and backoff."""

import pytest

from erbridge.server.transports import (
    ReconnectBackoff,
    RegisterPollingTransport,
    StringProtocolTransport,
    create_transport,
    resolve_protocol,
)
pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "port, mode, expected",
    [
        (502, "auto", "modbus"),
        (8080, "auto", "string"),
        (502, "string", "string"),
        (8080, "modbus", "modbus"),
        (8080, "MODBUS-TCP", "modbus"),
        (502, None, "modbus"),
    ],
)
def test_resolve_protocol(port, mode, expected):
    assert resolve_protocol(port, mode) == expected


def test_resolve_protocol_rejects_unknown():
    with pytest.raises(ValueError):
        resolve_protocol(502, "serial")


def test_create_string_transport(config_factory):
    config = config_factory(probe_on_connect=False, heartbeat_byte=0x00, legacy_encoding="big5")
    transport = create_transport("10.0.0.2", 8080, "auto", config)
    assert isinstance(transport, StringProtocolTransport)
    assert transport.probe_command is None
    assert transport.heartbeat == b"\x00"
    assert transport.encoding == "utf-8"


def test_create_register_transport(config_factory):
    config = config_factory(poll_interval=0.25, poll_start=90, poll_count=30)
    transport = create_transport("10.0.0.2", 502, "auto", config)
    assert isinstance(transport, RegisterPollingTransport)
    assert transport.poll_interval == 0.25
    assert (transport.poll_start, transport.poll_count) == (90, 30)


def test_fixed_backoff():
    backoff = ReconnectBackoff(5.0, 1.0, 30.0)
    assert [backoff.next_delay() for _ in range(3)] == [5.0, 5.0, 5.0]


def test_exponential_backoff_is_capped_and_resets():
    backoff = ReconnectBackoff(1.0, 2.0, 5.0)
    assert [backoff.next_delay() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    backoff.reset()
    assert backoff.next_delay() == 1.0
