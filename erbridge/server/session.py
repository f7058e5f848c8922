"""
Browser-facing WebSocket session.

At most one browser is the outbound target; a newer connection replaces it.
Inbound messages from any open connection are still processed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING

import websockets
from websockets.exceptions import ConnectionClosed

from erbridge.config import GATEWAY_HOST, GATEWAY_PORT, HEARTBEAT_INTERVAL_S
from erbridge.errors import (
    CommandError,
    CommandFailedError,
    ProtocolError,
    RegisterError,
    RobotStoppedError,
    SafeDoorOpenError,
)
from erbridge.protocol.messages import (
    CommandErrorMsg,
    ConnectMsg,
    DisconnectMsg,
    ErrorMsg,
    GetLogsMsg,
    HeartbeatMsg,
    InboundMessage,
    LogsMsg,
    OutboundMessage,
    ReadRegisterMsg,
    RegisterDataMsg,
    RegisterWrittenMsg,
    RobotCommandMsg,
    WriteRegisterMsg,
    decode_inbound,
    encode_outbound,
)

if TYPE_CHECKING:
    from erbridge.server.bridge import Bridge

logger = logging.getLogger(__name__)

# Failures the controller reported with a frame; that frame already went out
# as ROBOT_RESPONSE
_FRAME_FAILURES = (CommandFailedError, RobotStoppedError, SafeDoorOpenError)

_OUTBOX_MAX = 1024


class GatewaySession:
    """WebSocket server relaying between one browser and the bridge."""

    def __init__(
        self,
        bridge: Bridge,
        host: str = GATEWAY_HOST,
        port: int = GATEWAY_PORT,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_S,
    ):
        self.bridge = bridge
        self.host = host
        self.port = port
        self.heartbeat_interval = heartbeat_interval

        self._server = None
        self._client = None  # current outbound websocket
        self._outbox: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=_OUTBOX_MAX)
        self._writer_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._command_tasks: set[asyncio.Task] = set()
        self._remove_sink = None
        self.dropped_messages = 0

    # --------------- Lifecycle ---------------

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await websockets.serve(self._handler, self.host, self.port)
        # Resolve port 0 to the bound port
        self.port = self._server.sockets[0].getsockname()[1]
        self._remove_sink = self.bridge.add_sink(self.send)
        self._writer_task = asyncio.create_task(self._writer(), name="gateway-writer")
        logger.info(f"Gateway listening on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._remove_sink is not None:
            self._remove_sink()
            self._remove_sink = None
        tasks = [self._writer_task, self._heartbeat_task, *self._command_tasks]
        for task in tasks:
            if task is not None:
                task.cancel()
        for task in tasks:
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._writer_task = None
        self._heartbeat_task = None
        self._command_tasks.clear()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._client = None
        logger.info("Gateway stopped")

    @property
    def has_client(self) -> bool:
        return self._client is not None

    # --------------- Outbound ---------------

    def send(self, msg: OutboundMessage) -> None:
        """Queue ``msg`` for the current browser; dropped when none is attached."""
        if self._client is None:
            return
        try:
            self._outbox.put_nowait(msg)
        except asyncio.QueueFull:
            self.dropped_messages += 1
            if self.dropped_messages == 1 or self.dropped_messages % 100 == 0:
                logger.warning(f"Browser outbox full; dropped {self.dropped_messages} messages")

    async def _writer(self) -> None:
        while True:
            msg = await self._outbox.get()
            ws = self._client
            if ws is None:
                continue
            try:
                await ws.send(encode_outbound(msg))
            except ConnectionClosed:
                logger.debug("Browser closed while sending")
            except Exception:
                # One bad message must not stop the outbound stream
                logger.exception(f"Failed to send {type(msg).__name__} to browser")

    # --------------- Inbound ---------------

    async def _handler(self, ws) -> None:
        previous = self._client
        self._client = ws
        if previous is not None:
            logger.info("New browser connection replaces the previous one")
        self.bridge.log.success(f"Browser connected from {_peer(ws)}")
        self.send(self.bridge.status())
        self._ensure_heartbeat()
        try:
            async for raw in ws:
                await self.dispatch(raw)
        except ConnectionClosed as e:
            logger.debug(f"Browser connection closed: {e}")
        finally:
            if self._client is ws:
                self._client = None
                self._stop_heartbeat()
                self.bridge.log.warn("Browser disconnected")

    async def dispatch(self, raw: str | bytes) -> None:
        """Handle one inbound message."""
        try:
            msg = decode_inbound(raw)
        except ProtocolError as e:
            self.bridge.log.warn(f"Rejected browser message: {e}")
            self.send(ErrorMsg(message=str(e)))
            return
        await self._handle(msg)

    async def _handle(self, msg: InboundMessage) -> None:
        bridge = self.bridge
        match msg:
            case ConnectMsg(target=target):
                bridge.log.cmd(
                    f"CONNECT {target.ip}:{target.port}" if target else "CONNECT (default target)"
                )
                if target is None:
                    await bridge.connect()
                else:
                    await bridge.connect(target.ip, target.port)
                self.send(bridge.status())

            case RobotCommandMsg():
                task = asyncio.create_task(self._run_command(msg))
                self._command_tasks.add(task)
                task.add_done_callback(self._command_tasks.discard)

            case ReadRegisterMsg(addr=addr, count=count):
                try:
                    values = await bridge.read_registers(addr, count)
                except RegisterError as e:
                    bridge.log.error(f"Read register {addr} failed: {e}")
                    self.send(ErrorMsg(message=str(e)))
                    return
                self.send(RegisterDataMsg(values=values, addr=addr))

            case WriteRegisterMsg(addr=addr, val=val):
                try:
                    await bridge.write_register(addr, val)
                except RegisterError as e:
                    bridge.log.error(f"Write register {addr} failed: {e}")
                    self.send(ErrorMsg(message=str(e)))
                    return
                self.send(RegisterWrittenMsg(addr=addr, val=val))

            case DisconnectMsg():
                await bridge.disconnect()

            case GetLogsMsg():
                self.send(LogsMsg(entries=bridge.log.entries()))

    async def _run_command(self, msg: RobotCommandMsg) -> None:
        try:
            await self.bridge.submit_wire(msg.command, msg.timeout)
        except _FRAME_FAILURES as e:
            self.bridge.log.error(f"{e} (id={e.command_id})")
        except CommandError as e:
            self.bridge.log.error(f"Command error: {e}")
            self.send(CommandErrorMsg(error=str(e), id=e.command_id))

    # --------------- Heartbeat ---------------

    def _ensure_heartbeat(self) -> None:
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat(), name="gateway-heartbeat"
            )

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.send(
                HeartbeatMsg(
                    connected=self.bridge.connected, timestamp=int(time.time() * 1000)
                )
            )


def _peer(ws) -> str:
    addr = getattr(ws, "remote_address", None)
    if not addr:
        return "unknown"
    return f"{addr[0]}:{addr[1]}"
