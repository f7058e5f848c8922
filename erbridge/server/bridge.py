"""
Bridge context: owns the controller transport, the command correlator, the
event log and the browser session, and routes events between them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from erbridge.config import BridgeConfig
from erbridge.errors import (
    ConnectionClosedError,
    ProtocolError,
    RegisterError,
    RegisterReadError,
    RegisterWriteError,
)
from erbridge.protocol.messages import (
    ErrorMsg,
    LogEntry,
    LogMsg,
    OutboundMessage,
    RegisterDataMsg,
    RobotResponseMsg,
    StatusMsg,
    Target,
    TelemetryMsg,
)
from erbridge.protocol.registers import RegisterFrame, decode_telemetry
from erbridge.protocol.types import ConnectionState
from erbridge.protocol.wire import Command, Frame, Unrecognized, parse_command
from erbridge.server.correlator import (
    CommandCorrelator,
    CommandIdGenerator,
    CommandResult,
)
from erbridge.server.event_log import EventLog
from erbridge.server.transports import (
    ControllerTransport,
    RegisterPollingTransport,
    StringProtocolTransport,
    create_transport,
    resolve_protocol,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[OutboundMessage], None]


class Bridge:
    """
    One bridge instance per process.

    Implements ``execute(payload, timeout)`` so the high-level client can
    run in-process on top of it.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        ids: CommandIdGenerator | None = None,
    ):
        self.config = config if config is not None else BridgeConfig()
        self.log = EventLog(self.config.log_capacity)
        self.correlator = CommandCorrelator(self.config.command_timeout, ids)
        self.transport: ControllerTransport | None = None
        self.target = Target(self.config.robot_ip, self.config.robot_port)
        self.session = None  # GatewaySession, created by start()

        self._sinks: list[EventSink] = []
        self._connect_lock = asyncio.Lock()
        self.unsolicited_frames = 0
        # Last reported link error; repeats are not logged again
        self._last_error: str | None = None
        self.log.subscribe(self._on_log)

    # --------------- Event fan-out ---------------

    def add_sink(self, sink: EventSink) -> Callable[[], None]:
        """Receive every outbound event; returns a remover."""
        self._sinks.append(sink)

        def _remove() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return _remove

    def emit(self, msg: OutboundMessage) -> None:
        for sink in list(self._sinks):
            try:
                sink(msg)
            except Exception:
                logger.exception("Event sink failed")

    def _on_log(self, entry: LogEntry) -> None:
        self.emit(LogMsg(entry=entry))

    # --------------- Status ---------------

    @property
    def protocol(self) -> str:
        return resolve_protocol(self.target.port, self.config.protocol)

    @property
    def connected(self) -> bool:
        return self.transport is not None and self.transport.is_connected()

    @property
    def state(self) -> ConnectionState:
        if self.transport is None:
            return ConnectionState.DISCONNECTED
        return self.transport.state

    def status(self) -> StatusMsg:
        error = self.transport.last_error if self.transport is not None else None
        return StatusMsg(
            connected=self.connected,
            robot_ip=self.target.ip,
            robot_port=self.target.port,
            protocol=self.protocol,
            state=self.state.value,
            error=error,
        )

    # --------------- Lifecycle ---------------

    async def start(self) -> None:
        """Start the browser gateway and, if configured, the controller link."""
        from erbridge.server.session import GatewaySession

        if self.session is None:
            self.session = GatewaySession(
                self,
                host=self.config.gateway_host,
                port=self.config.gateway_port,
                heartbeat_interval=self.config.heartbeat_interval,
            )
        await self.session.start()
        if self.config.autoconnect:
            await self.connect()

    async def stop(self) -> None:
        await self.disconnect()
        if self.session is not None:
            await self.session.stop()

    async def __aenter__(self) -> Bridge:
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def connect(self, ip: str | None = None, port: int | None = None) -> bool:
        """Connect to ``ip:port`` (default: current target).

        Returns False when already connected or connecting to that target.
        """
        target = Target(ip or self.target.ip, port if port is not None else self.target.port)
        async with self._connect_lock:
            if (
                self.transport is not None
                and self.transport.running
                and target == self.target
            ):
                self.log.warn(f"Already connected to {target.ip}:{target.port}, skipping")
                return False

            if self.transport is not None:
                await self._drop_transport()

            self.target = target
            self.transport = self._build_transport(target)
            self.log.info(
                f"Connecting to robot at {target.ip}:{target.port} ({self.protocol})"
            )
            self.transport.start()
            return True

    async def disconnect(self) -> None:
        async with self._connect_lock:
            if self.transport is None:
                return
            await self._drop_transport()
            self.log.warn("Disconnected from robot")
            self.emit(self.status())

    async def _drop_transport(self) -> None:
        transport, self.transport = self.transport, None
        if transport is None:
            return
        await transport.stop()
        self.correlator.fail_pending(ConnectionClosedError("Connection closed"))

    def _build_transport(self, target: Target) -> ControllerTransport:
        transport = create_transport(
            target.ip, target.port, self.config.protocol, self.config
        )
        transport.on_state(lambda state, error: self._on_state(transport, state, error))
        if isinstance(transport, StringProtocolTransport):
            transport.on_frame(self._on_frame)
            transport.on_protocol_error(self._on_protocol_error)
        elif isinstance(transport, RegisterPollingTransport):
            transport.on_register_frame(
                lambda frame: self._on_register_frame(transport, frame)
            )
        return transport

    # --------------- Transport events ---------------

    def _on_state(
        self, transport: ControllerTransport, state: ConnectionState, error: str | None
    ) -> None:
        if transport is not self.transport:
            return
        if state == ConnectionState.CONNECTED:
            self.log.success(f"Robot connected at {self.target.ip}:{self.target.port}")
        elif state == ConnectionState.DISCONNECTED:
            if self.correlator.fail_pending(ConnectionClosedError("Connection closed")):
                self.log.error("Pending command rejected: connection closed")
            if error and error != self._last_error:
                self.log.error(f"Robot connection failed: {error}")
        if state != ConnectionState.CONNECTING:
            self._last_error = error
        self.emit(self.status())

    def _on_frame(self, frame: Frame) -> None:
        if not self.correlator.handle_frame(frame):
            self.unsolicited_frames += 1
            if isinstance(frame, Unrecognized):
                self.log.warn(f"Unrecognized controller data: {frame.raw}")
            else:
                logger.debug(f"Unsolicited frame: {frame.raw}")
        self.emit(RobotResponseMsg(response=frame.raw))

    def _on_protocol_error(self, exc: ProtocolError) -> None:
        self.log.error(str(exc))
        self.emit(ErrorMsg(message=str(exc)))

    def _on_register_frame(
        self, transport: RegisterPollingTransport, frame: RegisterFrame
    ) -> None:
        self.emit(RegisterDataMsg(values=list(frame.values), addr=frame.start_address))
        telemetry = decode_telemetry(frame, transport.register_map)
        if telemetry is not None:
            self.emit(TelemetryMsg(coords=telemetry.coords, joints=telemetry.joints))

    # --------------- Commands ---------------

    def _string_transport(self) -> StringProtocolTransport:
        transport = self.transport
        if not isinstance(transport, StringProtocolTransport) or not transport.is_connected():
            raise ConnectionClosedError("Robot not connected")
        return transport

    async def submit(self, command: Command, timeout: float | None = None) -> CommandResult:
        """Send a correlated command over the string transport."""
        transport = self._string_transport()
        self.correlator.encoding = transport.encoding
        self.log.cmd(f"SEND: {command.payload} (id={command.id})")
        return await self.correlator.submit(command, transport.write, timeout)

    async def execute(self, payload: str, timeout: float | None = None) -> CommandResult:
        """Send a bare payload with the next command id."""
        return await self.submit(Command(self.correlator.next_id(), payload), timeout)

    async def submit_wire(self, text: str, timeout: float | None = None) -> CommandResult:
        """Send a browser-supplied request, keeping its id when it carries one."""
        command = parse_command(text)
        if command is None:
            command = Command(self.correlator.next_id(), text.strip())
        return await self.submit(command, timeout)

    # --------------- Registers ---------------

    def _register_transport(self) -> RegisterPollingTransport:
        transport = self.transport
        if not isinstance(transport, RegisterPollingTransport):
            raise RegisterError("Register access requires register (Modbus) mode")
        return transport

    async def read_registers(self, address: int, count: int = 1) -> list[int]:
        try:
            transport = self._register_transport()
        except RegisterError as e:
            raise RegisterReadError(str(e)) from None
        return await transport.read(address, count)

    async def write_register(self, address: int, value: int) -> None:
        try:
            transport = self._register_transport()
        except RegisterError as e:
            raise RegisterWriteError(str(e)) from None
        await transport.write(address, value)
        self.log.cmd(f"Write register {address} -> {value}")

    async def pulse_flag(self, bit: int, address: int | None = None) -> None:
        try:
            transport = self._register_transport()
        except RegisterError as e:
            raise RegisterWriteError(str(e)) from None
        await transport.pulse_flag(address, bit)
        self.log.cmd(f"Pulse flag bit {bit}")
