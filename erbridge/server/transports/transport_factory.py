"""
Transport factory for the controller link.

Port 502 (the Modbus-TCP default) selects register mode unless a protocol is
given explicitly; everything else speaks the string protocol.
"""

import logging

from erbridge.config import MODBUS_PORT, BridgeConfig
from erbridge.server.transports.base import ControllerTransport, ReconnectBackoff
from erbridge.server.transports.register_transport import RegisterPollingTransport
from erbridge.server.transports.string_transport import StringProtocolTransport

logger = logging.getLogger(__name__)

REGISTER_PROTOCOLS = ("modbus", "register", "modbus-tcp")


def resolve_protocol(port: int, protocol: str = "auto") -> str:
    """Return ``"modbus"`` or ``"string"`` for a target port and mode."""
    mode = (protocol or "auto").lower()
    if mode in REGISTER_PROTOCOLS:
        return "modbus"
    if mode == "string":
        return "string"
    if mode != "auto":
        raise ValueError(f"Unknown protocol mode: {protocol!r}")
    return "modbus" if port == MODBUS_PORT else "string"


def create_transport(
    host: str,
    port: int,
    protocol: str = "auto",
    config: BridgeConfig | None = None,
) -> ControllerTransport:
    """Create (but do not start) the transport for ``host:port``."""
    cfg = config if config is not None else BridgeConfig()
    backoff = ReconnectBackoff(
        cfg.reconnect_interval, cfg.reconnect_backoff, cfg.reconnect_max_interval
    )
    kind = resolve_protocol(port, protocol)
    logger.info(f"Creating {kind} transport for {host}:{port}")
    if kind == "modbus":
        return RegisterPollingTransport(
            host,
            port,
            connect_timeout=cfg.connect_timeout,
            backoff=backoff,
            poll_interval=cfg.poll_interval,
            poll_start=cfg.poll_start,
            poll_count=cfg.poll_count,
        )
    return StringProtocolTransport(
        host,
        port,
        connect_timeout=cfg.connect_timeout,
        backoff=backoff,
        probe_command=cfg.probe_command if cfg.probe_on_connect else None,
        heartbeat_byte=cfg.heartbeat_byte,
        legacy_encoding=cfg.legacy_encoding,
    )
