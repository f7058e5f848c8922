"""
Common lifecycle for controller transports.

A transport owns one stream to the controller and a supervisor task that
keeps it alive: connect, run the session until the link drops, report the
drop, sleep for the backoff interval, then retry without limit.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from erbridge.config import (
    CONNECT_TIMEOUT_S,
    RECONNECT_BACKOFF_FACTOR,
    RECONNECT_INTERVAL_S,
    RECONNECT_MAX_INTERVAL_S,
)
from erbridge.errors import TransportError
from erbridge.protocol.types import ConnectionState

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConnectionState, "str | None"], None]


class ReconnectBackoff:
    """Fixed interval by default; ``factor > 1`` grows it up to ``max_interval``."""

    __slots__ = ("interval", "factor", "max_interval", "_current")

    def __init__(
        self,
        interval: float = RECONNECT_INTERVAL_S,
        factor: float = RECONNECT_BACKOFF_FACTOR,
        max_interval: float = RECONNECT_MAX_INTERVAL_S,
    ):
        self.interval = interval
        self.factor = max(1.0, factor)
        self.max_interval = max(interval, max_interval)
        self._current = interval

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * self.factor, self.max_interval)
        return delay

    def reset(self) -> None:
        self._current = self.interval


class ControllerTransport:
    """
    Base class for controller links.

    Subclasses implement ``_open()``, ``_run_session()`` and ``_close()``.
    ``_run_session()`` returns (or raises) when the link is gone.
    """

    protocol_name = "base"

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = CONNECT_TIMEOUT_S,
        backoff: ReconnectBackoff | None = None,
    ):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.backoff = backoff if backoff is not None else ReconnectBackoff()

        self.state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self._state_callbacks: list[StateCallback] = []
        self._supervisor: asyncio.Task | None = None
        self._connected_event = asyncio.Event()
        self._connect_failures = 0

    # --------------- State reporting ---------------

    def on_state(self, callback: StateCallback) -> None:
        """Register ``callback(state, error)`` for every state transition."""
        self._state_callbacks.append(callback)

    def _set_state(self, state: ConnectionState, error: str | None = None) -> None:
        if state == self.state and error == self.last_error:
            return
        self.state = state
        self.last_error = error
        if state == ConnectionState.CONNECTED:
            self._connected_event.set()
        else:
            self._connected_event.clear()
        for cb in list(self._state_callbacks):
            try:
                cb(state, error)
            except Exception:
                logger.exception("State callback failed")

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    # --------------- Lifecycle ---------------

    def start(self) -> None:
        """Launch the supervisor; no-op while one is already running."""
        if self.running:
            logger.debug(f"{self.protocol_name} transport already running")
            return
        self.backoff.reset()
        self._connect_failures = 0
        self._supervisor = asyncio.create_task(
            self._supervise(), name=f"{self.protocol_name}-transport"
        )

    async def stop(self) -> None:
        """Cancel the supervisor, close the stream and report DISCONNECTED."""
        task, self._supervisor = self._supervisor, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._close()
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until CONNECTED; False on timeout."""
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except (asyncio.TimeoutError, TimeoutError):
            return False
        return True

    async def _supervise(self) -> None:
        while True:
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._open()
            except (OSError, TransportError, asyncio.TimeoutError) as e:
                self._connect_failures += 1
                # First failure at WARNING, repeats at DEBUG
                level = logging.WARNING if self._connect_failures == 1 else logging.DEBUG
                reason = _describe(e)
                logger.log(
                    level,
                    f"Connect to {self.host}:{self.port} failed ({reason}); "
                    f"attempt {self._connect_failures}",
                )
                self._set_state(ConnectionState.DISCONNECTED, reason)
                await asyncio.sleep(self.backoff.next_delay())
                continue

            if self._connect_failures > 0:
                logger.info(
                    f"Connected to {self.host}:{self.port} after "
                    f"{self._connect_failures} failed attempts"
                )
            else:
                logger.info(f"Connected to {self.host}:{self.port} ({self.protocol_name})")
            self._connect_failures = 0
            self.backoff.reset()
            self._set_state(ConnectionState.CONNECTED)

            reason: str | None = "Connection closed"
            try:
                await self._run_session()
            except (OSError, TransportError) as e:
                reason = _describe(e)
                logger.warning(f"Controller link lost: {reason}")
            finally:
                await self._close()

            self._set_state(ConnectionState.DISCONNECTED, reason)
            await asyncio.sleep(self.backoff.next_delay())

    # --------------- Subclass hooks ---------------

    async def _open(self) -> None:
        raise NotImplementedError

    async def _run_session(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError

    def get_info(self) -> dict:
        return {
            "protocol": self.protocol_name,
            "host": self.host,
            "port": self.port,
            "state": self.state.value,
            "error": self.last_error,
        }


def _describe(exc: BaseException) -> str:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return "timed out"
    if isinstance(exc, ConnectionRefusedError):
        return "connection refused"
    return str(exc) or exc.__class__.__name__
