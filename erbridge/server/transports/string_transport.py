"""
TCP transport for the bracket-framed string protocol.

Bytes from the controller go through the encoding detector and the frame
assembler; complete frames are delivered in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from erbridge.config import (
    CONNECT_TIMEOUT_S,
    HEARTBEAT_BYTE,
    LEGACY_ENCODING,
    PROBE_COMMAND,
    READ_CHUNK_BYTES,
    TRACE,
)
from erbridge.errors import (
    ConnectionClosedError,
    EncodingError,
    ProtocolError,
    TransportError,
)
from erbridge.protocol.wire import Frame, FrameAssembler, encode
from erbridge.server.encoding import EncodingDetector
from erbridge.server.transports.base import ControllerTransport, ReconnectBackoff

logger = logging.getLogger(__name__)

FrameCallback = Callable[[Frame], None]
ProtocolErrorCallback = Callable[[ProtocolError], None]

# Id carried by the connect probe; its reply arrives as an unsolicited frame
PROBE_ID = 0


class StringProtocolTransport(ControllerTransport):
    """Stream transport speaking ``[Command();id=N]`` / ``[id = N; Ok; ...]``."""

    protocol_name = "string"

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = CONNECT_TIMEOUT_S,
        backoff: ReconnectBackoff | None = None,
        probe_command: str | None = PROBE_COMMAND,
        heartbeat_byte: int | None = HEARTBEAT_BYTE,
        legacy_encoding: str = LEGACY_ENCODING,
    ):
        super().__init__(host, port, connect_timeout, backoff)
        self.probe_command = probe_command
        self.heartbeat = bytes([heartbeat_byte]) if heartbeat_byte is not None else None
        self.detector = EncodingDetector(legacy_encoding)
        self.assembler = FrameAssembler()

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._write_lock = asyncio.Lock()
        self._frame_callbacks: list[FrameCallback] = []
        self._error_callbacks: list[ProtocolErrorCallback] = []

        self.frames_received = 0
        self.heartbeats_echoed = 0

    def on_frame(self, callback: FrameCallback) -> None:
        self._frame_callbacks.append(callback)

    def on_protocol_error(self, callback: ProtocolErrorCallback) -> None:
        self._error_callbacks.append(callback)

    @property
    def encoding(self) -> str:
        """Codec for outbound requests: the detected one, else UTF-8."""
        return self.detector.encoding or "utf-8"

    # --------------- Lifecycle hooks ---------------

    async def _open(self) -> None:
        self.detector.reset()
        self.assembler.reset()
        self._reader, self._writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port), self.connect_timeout
        )
        if self.probe_command:
            # Benign read-only request; some controllers stay silent until addressed
            self._writer.write(encode(self.probe_command, PROBE_ID))
            await self._writer.drain()
            logger.debug(f"Sent probe: {self.probe_command}")

    async def _run_session(self) -> None:
        if self._reader is None:
            raise TransportError("Controller stream is not open")
        while True:
            chunk = await self._reader.read(READ_CHUNK_BYTES)
            if not chunk:
                logger.info("Controller closed the connection")
                return
            await self._handle_chunk(chunk)

    async def _close(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        self.detector.reset()
        self.assembler.reset()
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ConnectionError) as e:
            logger.debug(f"Error closing controller stream: {e}")

    # --------------- Read path ---------------

    async def _handle_chunk(self, chunk: bytes) -> None:
        if self.heartbeat is not None and chunk == self.heartbeat:
            # Keep-alive probe: echo, never parse
            self.heartbeats_echoed += 1
            await self._write_raw(chunk)
            return

        if logger.isEnabledFor(TRACE):
            logger.trace(f"RX {len(chunk)} bytes: {chunk!r}")  # type: ignore[attr-defined]

        try:
            text = self.detector.decode(chunk)
        except EncodingError as e:
            logger.warning(f"Undecodable controller data: {e.hex_dump}")
            self._report_error(e)
            return

        for frame in self.assembler.feed(text):
            self.frames_received += 1
            for cb in list(self._frame_callbacks):
                try:
                    cb(frame)
                except Exception:
                    logger.exception("Frame callback failed")

    def _report_error(self, exc: ProtocolError) -> None:
        for cb in list(self._error_callbacks):
            try:
                cb(exc)
            except Exception:
                logger.exception("Protocol error callback failed")

    # --------------- Write path ---------------

    async def _write_raw(self, data: bytes) -> None:
        writer = self._writer
        if writer is None or writer.is_closing():
            raise ConnectionClosedError("Not connected to controller")
        async with self._write_lock:
            writer.write(data)
            await writer.drain()

    async def write(self, data: bytes) -> None:
        """Write a request to the controller.

        Raises:
            ConnectionClosedError: not connected, or the stream broke
        """
        if not self.is_connected():
            raise ConnectionClosedError("Not connected to controller")
        try:
            await self._write_raw(data)
        except (OSError, ConnectionError) as e:
            if isinstance(e, ConnectionClosedError):
                raise
            raise ConnectionClosedError(f"Write failed: {e}") from e
        if logger.isEnabledFor(TRACE):
            logger.trace(f"TX {data!r}")  # type: ignore[attr-defined]

    def get_info(self) -> dict:
        info = super().get_info()
        info.update(
            encoding=self.detector.encoding,
            hex_mode=self.detector.hex_mode,
            frames_received=self.frames_received,
            heartbeats_echoed=self.heartbeats_echoed,
        )
        return info
