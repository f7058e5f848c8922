"""
Modbus-TCP transport polling a block of holding registers.

The poll loop emits one RegisterFrame per tick. Per-tick read failures are
counted and logged at a limited rate; only a lost link ends the session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from erbridge.config import (
    CONNECT_TIMEOUT_S,
    POLL_FAILURE_LOG_INTERVAL_S,
    POLL_INTERVAL_S,
    REG_POLL_COUNT,
    REG_POLL_START,
)
from erbridge.errors import RegisterReadError, RegisterWriteError, TransportError
from erbridge.protocol.registers import (
    DEFAULT_MAP,
    RegisterFrame,
    RegisterMap,
    clear_bit,
    set_bit,
)
from erbridge.server.transports.base import ControllerTransport, ReconnectBackoff

logger = logging.getLogger(__name__)

RegisterFrameCallback = Callable[[RegisterFrame], None]
ClientFactory = Callable[..., Any]


class RegisterPollingTransport(ControllerTransport):
    """Holding-register reads on a fixed interval plus explicit read/write."""

    protocol_name = "modbus"

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = CONNECT_TIMEOUT_S,
        backoff: ReconnectBackoff | None = None,
        poll_interval: float = POLL_INTERVAL_S,
        poll_start: int = REG_POLL_START,
        poll_count: int = REG_POLL_COUNT,
        register_map: RegisterMap = DEFAULT_MAP,
        client_factory: ClientFactory = AsyncModbusTcpClient,
    ):
        super().__init__(host, port, connect_timeout, backoff)
        self.poll_interval = poll_interval
        self.poll_start = poll_start
        self.poll_count = poll_count
        self.register_map = register_map
        self._client_factory = client_factory
        self._client: Any = None
        self._frame_callbacks: list[RegisterFrameCallback] = []

        self.polls_ok = 0
        self.poll_failures = 0
        self._failures_since_log = 0
        self._last_failure_log = 0.0

    def on_register_frame(self, callback: RegisterFrameCallback) -> None:
        self._frame_callbacks.append(callback)

    # --------------- Lifecycle hooks ---------------

    async def _open(self) -> None:
        # The supervisor owns reconnects; disable the client's own
        client = self._client_factory(
            self.host, port=self.port, timeout=self.connect_timeout, reconnect_delay=0
        )
        self._client = client
        await client.connect()
        if not client.connected:
            client.close()
            self._client = None
            raise TransportError("Modbus connection refused or unreachable")

    async def _run_session(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            client = self._client
            if client is None or not client.connected:
                raise TransportError("Modbus link lost")
            await self._poll_once()
            next_tick += self.poll_interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Overran; resync instead of bursting
                next_tick = loop.time()
                delay = 0.0
            await asyncio.sleep(delay)

    async def _close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            client.close()

    # --------------- Polling ---------------

    async def _poll_once(self) -> None:
        try:
            values = await self.read(self.poll_start, self.poll_count)
        except RegisterReadError as e:
            self._record_poll_failure(e)
            return
        self.polls_ok += 1
        frame = RegisterFrame(start_address=self.poll_start, values=tuple(values))
        for cb in list(self._frame_callbacks):
            try:
                cb(frame)
            except Exception:
                logger.exception("Register frame callback failed")

    def _record_poll_failure(self, exc: Exception) -> None:
        self.poll_failures += 1
        self._failures_since_log += 1
        now = time.monotonic()
        if now - self._last_failure_log >= POLL_FAILURE_LOG_INTERVAL_S:
            logger.warning(
                f"Register poll failing ({self._failures_since_log} failures since last report): {exc}"
            )
            self._last_failure_log = now
            self._failures_since_log = 0

    # --------------- Register access ---------------

    def _require_client(self, error: type[Exception]) -> Any:
        client = self._client
        if client is None or not client.connected:
            raise error("Not connected to controller")
        return client

    async def read(self, address: int, count: int = 1) -> list[int]:
        """Read ``count`` holding registers starting at ``address``.

        Raises:
            RegisterReadError: not connected, exception response, or I/O failure
        """
        client = self._require_client(RegisterReadError)
        try:
            rr = await client.read_holding_registers(address, count=count)
        except (ModbusException, OSError, asyncio.TimeoutError) as e:
            raise RegisterReadError(f"Read {address}+{count} failed: {e}") from e
        if rr.isError():
            raise RegisterReadError(f"Read {address}+{count} rejected: {rr}")
        return list(rr.registers)

    async def write(self, address: int, value: int) -> None:
        """Write one holding register.

        Raises:
            RegisterWriteError: not connected, rejected (e.g. read-only), or I/O failure
        """
        if not 0 <= value <= 0xFFFF:
            raise RegisterWriteError(f"Value {value} out of range for register {address}")
        client = self._require_client(RegisterWriteError)
        try:
            rr = await client.write_register(address, value)
        except (ModbusException, OSError, asyncio.TimeoutError) as e:
            raise RegisterWriteError(f"Write {address}={value} failed: {e}") from e
        if rr.isError():
            raise RegisterWriteError(f"Write {address}={value} rejected: {rr}")
        logger.debug(f"Wrote register {address} = {value}")

    async def pulse_flag(self, address: int | None, bit: int) -> None:
        """Trigger a rising edge (clear, then set) on ``bit`` of a flag register.

        ``address`` None selects the command flag register of the map.
        """
        addr = self.register_map.command_flags if address is None else address
        try:
            (current,) = await self.read(addr, 1)
        except RegisterReadError as e:
            raise RegisterWriteError(f"Cannot read flag register {addr}: {e}") from e
        await self.write(addr, clear_bit(current, bit))
        await self.write(addr, set_bit(current, bit))

    def get_info(self) -> dict:
        info = super().get_info()
        info.update(
            poll_start=self.poll_start,
            poll_count=self.poll_count,
            polls_ok=self.polls_ok,
            poll_failures=self.poll_failures,
        )
        return info
