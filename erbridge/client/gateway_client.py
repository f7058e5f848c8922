"""
WebSocket client for a running bridge.

Speaks the same JSON messages as the browser dashboard, so scripts and tests
can drive the robot through the gateway. Implements the command channel used
by ``RobotClient``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

import websockets
from websockets.exceptions import ConnectionClosed

from erbridge.config import COMMAND_TIMEOUT_S
from erbridge.errors import (
    CommandBusyError,
    CommandError,
    CommandTimeoutError,
    ConnectionClosedError,
    ProtocolError,
)
from erbridge.protocol.messages import (
    CommandErrorMsg,
    LogEntry,
    LogsMsg,
    OutboundMessage,
    RobotResponseMsg,
    StatusMsg,
    Target,
    decode_outbound,
    encode_inbound,
)
from erbridge.protocol.wire import Unrecognized, format_command, parse_frame
from erbridge.server.correlator import CommandIdGenerator, CommandResult, frame_outcome

logger = logging.getLogger(__name__)

MessageCallback = Callable[[OutboundMessage], None]

# Extra wait on top of the bridge-side timeout before giving up locally
_TIMEOUT_MARGIN_S = 1.0


class GatewayClient:
    """Async client for the bridge's WebSocket gateway."""

    def __init__(
        self,
        url: str = "ws://127.0.0.1:3000",
        target: Target | None = None,
        timeout: float = COMMAND_TIMEOUT_S,
        ids: CommandIdGenerator | None = None,
    ):
        self.url = url
        self.target = target
        self.timeout = timeout
        self.ids = ids if ids is not None else CommandIdGenerator()
        self.status: StatusMsg | None = None

        self._ws = None
        self._reader_task: asyncio.Task | None = None
        self._status_changed = asyncio.Event()
        self._pending: tuple[int, asyncio.Future] | None = None
        self._logs_waiters: list[asyncio.Future] = []
        self._callbacks: list[MessageCallback] = []

    @property
    def connected(self) -> bool:
        """True when the bridge reports the robot link as up."""
        return self.status is not None and self.status.connected

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    # --------------- Lifecycle ---------------

    async def connect(self) -> None:
        """Open the WebSocket and send the CONNECT handshake."""
        if self._ws is not None:
            return
        self._ws = await websockets.connect(self.url)
        self._reader_task = asyncio.create_task(self._reader(), name="gateway-client-reader")
        if self.target is not None:
            await self._send("CONNECT", target={"ip": self.target.ip, "port": self.target.port})
        else:
            await self._send("CONNECT")
        logger.info(f"Connected to gateway {self.url}")

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        self._reject_pending(ConnectionClosedError("Gateway connection closed"))

    async def __aenter__(self) -> GatewayClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def wait_connected(self, timeout: float = 5.0) -> bool:
        """Wait until the bridge reports the robot link as up."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            self._status_changed.clear()
            if self.connected:
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            try:
                await asyncio.wait_for(self._status_changed.wait(), remaining)
            except (asyncio.TimeoutError, TimeoutError):
                return self.connected

    # --------------- Requests ---------------

    async def _send(self, kind: str, **fields) -> None:
        ws = self._ws
        if ws is None:
            raise ConnectionClosedError("Not connected to gateway")
        try:
            await ws.send(encode_inbound(kind, **fields))
        except ConnectionClosed as e:
            raise ConnectionClosedError(f"Gateway connection closed: {e}") from e

    async def execute(self, payload: str, timeout: float | None = None) -> CommandResult:
        """Send one command through the bridge and wait for its outcome.

        Raises:
            CommandBusyError: a command from this client is still outstanding
            CommandError: the bridge or controller rejected the command
        """
        if self._pending is not None:
            raise CommandBusyError(
                f"Command {self._pending[0]} still pending on this client"
            )
        wait_s = self.timeout if timeout is None else timeout
        cmd_id = self.ids.next()
        future = asyncio.get_running_loop().create_future()
        self._pending = (cmd_id, future)
        try:
            await self._send(
                "ROBOT_COMMAND", command=format_command(payload, cmd_id), timeout=wait_s
            )
            return await asyncio.wait_for(future, wait_s + _TIMEOUT_MARGIN_S)
        except (asyncio.TimeoutError, TimeoutError) as e:
            if isinstance(e, CommandError):
                raise
            raise CommandTimeoutError(f"Command timeout: {payload}", cmd_id) from None
        finally:
            if self._pending is not None and self._pending[1] is future:
                self._pending = None

    async def disconnect_robot(self) -> None:
        await self._send("DISCONNECT")

    async def get_logs(self, timeout: float = 2.0) -> list[LogEntry]:
        future = asyncio.get_running_loop().create_future()
        self._logs_waiters.append(future)
        try:
            await self._send("GET_LOGS")
            return await asyncio.wait_for(future, timeout)
        finally:
            if future in self._logs_waiters:
                self._logs_waiters.remove(future)

    # --------------- Inbound ---------------

    async def _reader(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    msg = decode_outbound(raw)
                except ProtocolError as e:
                    logger.warning(f"Ignoring gateway message: {e}")
                    continue
                self._handle(msg)
        except ConnectionClosed as e:
            logger.info(f"Gateway connection closed: {e}")
        finally:
            self._reject_pending(ConnectionClosedError("Gateway connection closed"))

    def _handle(self, msg: OutboundMessage) -> None:
        match msg:
            case StatusMsg():
                self.status = msg
                self._status_changed.set()
                if not msg.connected:
                    self._reject_pending(
                        ConnectionClosedError(msg.error or "Robot disconnected")
                    )
            case RobotResponseMsg(response=response):
                self._resolve_frame(response)
            case CommandErrorMsg(error=error, id=cmd_id):
                pending = self._pending
                if pending is not None and cmd_id in (None, pending[0]):
                    self._reject_pending(_command_error(error, pending[0]))
            case LogsMsg(entries=entries):
                for waiter in self._logs_waiters:
                    if not waiter.done():
                        waiter.set_result(list(entries))
                self._logs_waiters.clear()
        for cb in list(self._callbacks):
            try:
                cb(msg)
            except Exception:
                logger.exception("Gateway message callback failed")

    def _resolve_frame(self, response: str) -> None:
        pending = self._pending
        if pending is None:
            return
        frame = parse_frame(response)
        if isinstance(frame, Unrecognized) or frame.id != pending[0]:
            return
        cmd_id, future = pending
        if future.done():
            return
        self._pending = None
        outcome = frame_outcome(frame)
        if isinstance(outcome, CommandError):
            future.set_exception(outcome)
        else:
            future.set_result(outcome)

    def _reject_pending(self, exc: CommandError) -> None:
        pending, self._pending = self._pending, None
        if pending is None:
            return
        cmd_id, future = pending
        if exc.command_id is None:
            exc.command_id = cmd_id
        if not future.done():
            future.set_exception(exc)


def _command_error(error: str, cmd_id: int) -> CommandError:
    """Rebuild the bridge-side error type from a COMMAND_ERROR message."""
    text = error.lower()
    if "timeout" in text:
        return CommandTimeoutError(error, cmd_id)
    if "pending" in text:
        return CommandBusyError(error, cmd_id)
    if "not connected" in text or "closed" in text:
        return ConnectionClosedError(error, cmd_id)
    return CommandError(error, cmd_id)
