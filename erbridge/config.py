"""
Central configuration for the ER-series controller bridge.

Module-level values are defaults read from the environment at import time.
``BridgeConfig.from_env()`` re-reads the environment at call time so a CLI can
load a ``.env`` file first.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

TRACE: int = 5
logging.addLevelName(TRACE, "TRACE")
# Add Logger.trace if missing
if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]
    logging.TRACE = TRACE  # type: ignore[attr-defined]

TRACE_ENABLED = str(os.getenv("ERBRIDGE_TRACE", "0")).lower() in ("1", "true", "yes", "on")

logger = logging.getLogger(__name__)


def _env(*names: str, default: str) -> str:
    """Return the first non-empty environment variable among ``names``."""
    for name in names:
        raw = os.getenv(name)
        if raw is not None and raw.strip():
            return raw.strip()
    return default


def _env_float(*names: str, default: float) -> float:
    raw = _env(*names, default=str(default))
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric value {raw!r} for {names[0]}")
        return default


def _env_int(*names: str, default: int) -> int:
    raw = _env(*names, default=str(default))
    try:
        return int(raw, 0)
    except ValueError:
        logger.warning(f"Ignoring non-integer value {raw!r} for {names[0]}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    s = raw.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


# Controller endpoint (the VITE_* names are the dashboard's .env keys)
ROBOT_IP: str = _env("ERBRIDGE_ROBOT_IP", "VITE_ROBOT_IP", default="192.168.1.100")
ROBOT_PORT: int = _env_int("ERBRIDGE_ROBOT_PORT", "VITE_ROBOT_PORT", default=502)
MODBUS_PORT: int = 502
# "auto" selects register mode on MODBUS_PORT, string mode otherwise
PROTOCOL_MODE: str = _env("ERBRIDGE_PROTOCOL", default="auto").lower()

# Gateway (browser-facing WebSocket) listen address
GATEWAY_HOST: str = _env("ERBRIDGE_GATEWAY_HOST", default="0.0.0.0")
GATEWAY_PORT: int = _env_int("ERBRIDGE_GATEWAY_PORT", "VITE_PROXY_PORT", default=3000)

# Timing (seconds)
COMMAND_TIMEOUT_S: float = _env_float("ERBRIDGE_COMMAND_TIMEOUT_S", default=5.0)
POLL_INTERVAL_S: float = _env_float("ERBRIDGE_POLL_INTERVAL_S", default=0.1)
HEARTBEAT_INTERVAL_S: float = _env_float("ERBRIDGE_HEARTBEAT_INTERVAL_S", default=2.0)
RECONNECT_INTERVAL_S: float = _env_float("ERBRIDGE_RECONNECT_INTERVAL_S", default=5.0)
RECONNECT_BACKOFF_FACTOR: float = _env_float("ERBRIDGE_RECONNECT_BACKOFF", default=1.0)
RECONNECT_MAX_INTERVAL_S: float = _env_float("ERBRIDGE_RECONNECT_MAX_S", default=30.0)
CONNECT_TIMEOUT_S: float = _env_float("ERBRIDGE_CONNECT_TIMEOUT_S", default=3.0)
POLL_FAILURE_LOG_INTERVAL_S: float = 10.0

# Command ids wrap at this modulus (ids are 0..9999)
COMMAND_ID_MODULUS: int = 10_000

# String protocol
PROBE_ON_CONNECT: bool = _env_bool("ERBRIDGE_PROBE_ON_CONNECT", True)
PROBE_COMMAND: str = _env("ERBRIDGE_PROBE_COMMAND", default="getCurSysMode_IFace()")
# A chunk consisting only of this byte is a keep-alive probe and is echoed back
HEARTBEAT_BYTE: int = _env_int("ERBRIDGE_HEARTBEAT_BYTE", default=0x00)
LEGACY_ENCODING: str = _env("ERBRIDGE_LEGACY_ENCODING", default="gb18030")
MAX_FRAME_CHARS: int = 4096
READ_CHUNK_BYTES: int = 4096

# Register map (provisional; reverse-engineered, see DESIGN.md)
REG_COORDS_START: int = _env_int("ERBRIDGE_REG_COORDS", default=100)
REG_JOINTS_START: int = _env_int("ERBRIDGE_REG_JOINTS", default=112)
REG_COMMAND_FLAGS: int = _env_int("ERBRIDGE_REG_FLAGS", default=200)
REG_POLL_START: int = _env_int("ERBRIDGE_REG_POLL_START", default=REG_COORDS_START)
REG_POLL_COUNT: int = _env_int("ERBRIDGE_REG_POLL_COUNT", default=24)
REG_FIXED_POINT_SCALE: float = 100.0

# Event log ring capacity
LOG_CAPACITY: int = 100

LOG_LEVEL_DEFAULT: str = "INFO"


@dataclass
class BridgeConfig:
    """Runtime configuration consumed by the bridge."""

    robot_ip: str = ROBOT_IP
    robot_port: int = ROBOT_PORT
    protocol: str = PROTOCOL_MODE
    gateway_host: str = GATEWAY_HOST
    gateway_port: int = GATEWAY_PORT
    command_timeout: float = COMMAND_TIMEOUT_S
    poll_interval: float = POLL_INTERVAL_S
    heartbeat_interval: float = HEARTBEAT_INTERVAL_S
    reconnect_interval: float = RECONNECT_INTERVAL_S
    reconnect_backoff: float = RECONNECT_BACKOFF_FACTOR
    reconnect_max_interval: float = RECONNECT_MAX_INTERVAL_S
    connect_timeout: float = CONNECT_TIMEOUT_S
    probe_on_connect: bool = PROBE_ON_CONNECT
    probe_command: str = PROBE_COMMAND
    heartbeat_byte: int = HEARTBEAT_BYTE
    legacy_encoding: str = LEGACY_ENCODING
    poll_start: int = REG_POLL_START
    poll_count: int = REG_POLL_COUNT
    log_capacity: int = LOG_CAPACITY
    autoconnect: bool = True

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Build a config from the current environment."""
        return cls(
            robot_ip=_env("ERBRIDGE_ROBOT_IP", "VITE_ROBOT_IP", default=ROBOT_IP),
            robot_port=_env_int("ERBRIDGE_ROBOT_PORT", "VITE_ROBOT_PORT", default=ROBOT_PORT),
            protocol=_env("ERBRIDGE_PROTOCOL", default=PROTOCOL_MODE).lower(),
            gateway_host=_env("ERBRIDGE_GATEWAY_HOST", default=GATEWAY_HOST),
            gateway_port=_env_int(
                "ERBRIDGE_GATEWAY_PORT", "VITE_PROXY_PORT", default=GATEWAY_PORT
            ),
            command_timeout=_env_float("ERBRIDGE_COMMAND_TIMEOUT_S", default=COMMAND_TIMEOUT_S),
            poll_interval=_env_float("ERBRIDGE_POLL_INTERVAL_S", default=POLL_INTERVAL_S),
            heartbeat_interval=_env_float(
                "ERBRIDGE_HEARTBEAT_INTERVAL_S", default=HEARTBEAT_INTERVAL_S
            ),
            reconnect_interval=_env_float(
                "ERBRIDGE_RECONNECT_INTERVAL_S", default=RECONNECT_INTERVAL_S
            ),
            reconnect_backoff=_env_float(
                "ERBRIDGE_RECONNECT_BACKOFF", default=RECONNECT_BACKOFF_FACTOR
            ),
            reconnect_max_interval=_env_float(
                "ERBRIDGE_RECONNECT_MAX_S", default=RECONNECT_MAX_INTERVAL_S
            ),
            connect_timeout=_env_float("ERBRIDGE_CONNECT_TIMEOUT_S", default=CONNECT_TIMEOUT_S),
            probe_on_connect=_env_bool("ERBRIDGE_PROBE_ON_CONNECT", PROBE_ON_CONNECT),
            probe_command=_env("ERBRIDGE_PROBE_COMMAND", default=PROBE_COMMAND),
            heartbeat_byte=_env_int("ERBRIDGE_HEARTBEAT_BYTE", default=HEARTBEAT_BYTE),
            legacy_encoding=_env("ERBRIDGE_LEGACY_ENCODING", default=LEGACY_ENCODING),
            poll_start=_env_int("ERBRIDGE_REG_POLL_START", default=REG_POLL_START),
            poll_count=_env_int("ERBRIDGE_REG_POLL_COUNT", default=REG_POLL_COUNT),
            autoconnect=_env_bool("ERBRIDGE_AUTOCONNECT", True),
        )
