"""
Mock ER-series controller for simulation and testing.

Serves the string protocol on a TCP port and answers requests with
plausible data, so the bridge can run end to end without hardware. The
simulation works at the wire level, which keeps it transparent to the
transport and correlator.
"""

import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass, field

import numpy as np

from erbridge.protocol.wire import parse_command

logger = logging.getLogger(__name__)

_CALL_RE = re.compile(r"^\s*(?P<name>\w+)\s*\((?P<args>.*)\)\s*$", re.S)


def _fmt(values) -> str:
    return " ".join(f"{float(v):.3f}" for v in values)


def _decode_request(chunk: bytes) -> str:
    # Bridges write requests in the codec they detected; UTF-16-LE carries NULs
    if b"\x00" in chunk:
        return chunk.decode("utf-16-le", errors="replace")
    return chunk.decode("utf-8", errors="replace")


@dataclass
class MockRobotState:
    """Simulated controller state."""

    joints: np.ndarray = field(
        default_factory=lambda: np.array([0.0, -30.0, 60.0, 0.0, 45.0, 0.0])
    )
    pose: np.ndarray = field(
        default_factory=lambda: np.array([501.0, 173.32, 176.79, 180.0, 0.0, 90.0])
    )
    mode: int = 2
    speed: int = 50
    run_status: int = 0
    error_id: int = 0
    servo: int = 0
    moving: int = 0
    digital_in: dict[int, int] = field(default_factory=dict)
    digital_out: dict[int, int] = field(default_factory=dict)
    variables: dict[str, str] = field(default_factory=dict)


class MockController:
    """
    asyncio TCP server emulating the RCS2 remote-command interface.

    Behaviour switches used by tests:
    - ``fail``: payload names answered with ``[id = N; FAIL]``
    - ``silent``: payload names never answered (drives timeouts)
    - ``encoding``: codec for replies (``utf-8`` or ``utf-16-le``)
    - ``motion_delay``: seconds before ``FeedMovFinish`` follows a move ack
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        encoding: str = "utf-8",
        motion_delay: float = 0.05,
    ):
        self.host = host
        self.port = port
        self.encoding = encoding
        self.motion_delay = motion_delay
        self.state = MockRobotState()
        self.fail: set[str] = set()
        self.silent: set[str] = set()
        self.received: list[str] = []
        self.heartbeats_received = 0

        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._tasks: set[asyncio.Task] = set()
        self._connected = asyncio.Event()

    # --------------- Server lifecycle ---------------

    async def start(self) -> int:
        """Start listening; returns the bound port."""
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info(f"Mock controller listening on {self.host}:{self.port}")
        return self.port

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
        for w in list(self._writers):
            w.close()
        for t in list(self._tasks):
            t.cancel()
        if self._server is not None:
            with contextlib.suppress(Exception):
                await self._server.wait_closed()
            self._server = None
        logger.info("Mock controller stopped")

    async def __aenter__(self) -> "MockController":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    @property
    def client_count(self) -> int:
        return len(self._writers)

    async def wait_client(self, timeout: float = 2.0) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except (asyncio.TimeoutError, TimeoutError):
            return False
        return True

    # --------------- Wire helpers ---------------

    async def send_raw(self, data: bytes) -> None:
        """Push raw bytes to every connected bridge."""
        for w in list(self._writers):
            w.write(data)
            with contextlib.suppress(ConnectionError):
                await w.drain()

    async def push(self, text: str) -> None:
        """Push a frame (or any text) in the configured encoding."""
        await self.send_raw(text.encode(self.encoding))

    async def drop_clients(self) -> None:
        """Close every bridge connection (simulates a controller reset)."""
        for w in list(self._writers):
            w.close()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._writers.add(writer)
        self._connected.set()
        peer = writer.get_extra_info("peername")
        logger.info(f"Mock controller: bridge connected from {peer}")
        buf = ""
        try:
            while True:
                chunk = await reader.read(4096)
                if not chunk:
                    break
                if chunk == b"\x00":
                    self.heartbeats_received += 1
                    continue
                buf += _decode_request(chunk)
                while "]" in buf:
                    end = buf.index("]") + 1
                    request, buf = buf[:end], buf[end:]
                    await self._handle_request(request.strip(), writer)
        except ConnectionError as e:
            logger.debug(f"Mock controller: client error {e}")
        finally:
            self._writers.discard(writer)
            if not self._writers:
                self._connected.clear()
            writer.close()

    async def _reply(self, writer: asyncio.StreamWriter, text: str) -> None:
        if writer.is_closing():
            return
        writer.write(text.encode(self.encoding))
        with contextlib.suppress(ConnectionError):
            await writer.drain()

    # --------------- Request handling ---------------

    async def _handle_request(self, request: str, writer: asyncio.StreamWriter) -> None:
        cmd = parse_command(request)
        if cmd is None:
            logger.debug(f"Mock controller: ignoring {request!r}")
            return
        self.received.append(cmd.payload)
        m = _CALL_RE.match(cmd.payload)
        name = m.group("name") if m else cmd.payload
        args = m.group("args") if m else ""

        if name in self.silent:
            return
        if name in self.fail:
            await self._reply(writer, f"[id = {cmd.id}; FAIL]")
            return

        data, motion = self._execute(name, args)
        if data is None:
            await self._reply(writer, f"[id = {cmd.id}; Ok]")
        else:
            await self._reply(writer, f"[id = {cmd.id}; Ok; {data}]")
        if motion:
            task = asyncio.create_task(self._finish_motion(writer, cmd.id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _finish_motion(self, writer: asyncio.StreamWriter, cmd_id: int) -> None:
        self.state.moving = 1
        await asyncio.sleep(self.motion_delay)
        self.state.moving = 0
        await self._reply(writer, f"[FeedMovFinish: {cmd_id}]")

    def _execute(self, name: str, args: str) -> tuple[str | None, bool]:
        """Apply a request to the state; returns (reply data, starts motion)."""
        s = self.state
        parts = [a.strip().strip('"') for a in args.split(",")] if args.strip() else []
        lname = name.lower()

        if lname == "getcurjpos":
            return _fmt(s.joints), False
        if lname == "getcurwpos":
            return _fmt(s.pose), False
        if lname == "getcurwposv3":
            return f"0 0 0 0 0 0 0 {_fmt(s.pose)}", False
        if lname == "getcursysmode_iface":
            return str(s.mode), False
        if lname == "changemode_iface" and parts:
            s.mode = int(parts[0])
            return None, False
        if lname == "setgoablespeed_iface" and parts:
            s.speed = int(parts[0])
            return None, False
        if lname == "getgoablespeed_iface":
            return str(s.speed), False
        if lname == "getrobotrunstatus_iface":
            return str(s.run_status), False
        if lname == "geterrorid_iface":
            return str(s.error_id), False
        if lname == "reseterrorid_iface":
            s.error_id = 0
            return None, False
        if lname == "setmotservostatus_iface" and parts:
            s.servo = int(parts[0])
            return None, False
        if lname == "getservosts_iface":
            return str(s.servo), False
        if lname == "isrobotmoving_iface":
            return str(s.moving), False
        if lname == "startrun_iface":
            s.run_status = 1
            return None, False
        if lname == "stoprun_iface":
            s.run_status = 3
            return None, False
        if lname == "loaduserprjprog_iface":
            return None, False
        if lname == "iogetdin" and parts:
            return str(s.digital_in.get(int(parts[0]), 0)), False
        if lname == "setiovalue" and len(parts) >= 3:
            s.digital_out[int(parts[0])] = int(float(parts[2]))
            return None, False
        if lname == "setvarv3" and len(parts) >= 3:
            s.variables[parts[1]] = parts[2]
            return None, False
        if lname == "getvarv3" and len(parts) >= 2:
            return s.variables.get(parts[1], "0"), False
        if lname == "gettoolv3":
            return "1 0.000 0.000 120.000 0.000 0.000 0.000", False
        if lname == "getusercoordv3":
            return "1 300.000 0.000 0.000 0.000 0.000 0.000", False
        if lname == "movepointv3" and len(parts) >= 2:
            target = [float(v) for v in parts[1].split("_") if v]
            if len(target) == 6:
                if parts[0] == "1":
                    s.joints = np.array(target)
                else:
                    s.pose = np.array(target)
            return None, True
        if lname in ("jogmotion_iface", "jogmotionstop_iface", "stopdestposmotion_iface"):
            return None, False
        # Unknown requests are acknowledged without data
        return None, False
