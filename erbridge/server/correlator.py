"""
Command correlation: one outstanding request at a time, matched by id.

A submission moves the correlator from Idle to Awaiting. Exactly one of the
following then completes it: a frame carrying the pending id, the deadline
timer, the connection closing, or the caller cancelling.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from erbridge.config import COMMAND_ID_MODULUS, COMMAND_TIMEOUT_S
from erbridge.errors import (
    CommandBusyError,
    CommandError,
    CommandFailedError,
    CommandTimeoutError,
    RobotStoppedError,
    SafeDoorOpenError,
)
from erbridge.protocol.wire import (
    Ack,
    Command,
    Data,
    Fail,
    Frame,
    MotionFinish,
    RobotStop,
    SafeDoorOpen,
    Unrecognized,
    encode,
)

logger = logging.getLogger(__name__)

SendFn = Callable[[bytes], Awaitable[None]]


class CommandIdGenerator:
    """Monotonic command ids wrapping at ``modulus``; survives reconnects."""

    __slots__ = ("_modulus", "_last")

    def __init__(self, modulus: int = COMMAND_ID_MODULUS, start: int = 0):
        self._modulus = modulus
        self._last = start % modulus

    def next(self) -> int:
        self._last = (self._last + 1) % self._modulus
        return self._last

    @property
    def last(self) -> int:
        return self._last


# Process-wide default so ids keep advancing across bridge restarts in-process
DEFAULT_IDS = CommandIdGenerator()


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Successful outcome of a command."""

    id: int
    data: Data
    frame: Ack | MotionFinish

    @property
    def raw(self) -> str:
        return self.frame.raw


@dataclass(slots=True)
class PendingCommand:
    id: int
    sent_payload: str
    created_at: float
    deadline: float
    future: asyncio.Future = field(repr=False)


def frame_outcome(frame: Frame, payload: str = "") -> CommandResult | CommandError:
    """Map a matching frame to the result or error of the command it answers."""
    match frame:
        case Ack(data=data):
            return CommandResult(frame.id, data, frame)
        case MotionFinish():
            return CommandResult(frame.id, None, frame)
        case Fail():
            return CommandFailedError(f"Command failed: {payload}", frame.id, frame.raw)
        case RobotStop():
            return RobotStoppedError("Robot stopped", frame.id, frame.raw)
        case SafeDoorOpen():
            return SafeDoorOpenError("Safety door is open", frame.id, frame.raw)
    raise ValueError(f"Frame carries no command outcome: {frame.raw}")


class CommandCorrelator:
    """Holds the single pending command and resolves it from frames."""

    def __init__(
        self,
        timeout: float = COMMAND_TIMEOUT_S,
        ids: CommandIdGenerator | None = None,
        encoding: str = "utf-8",
    ):
        self.timeout = timeout
        self.ids = ids if ids is not None else DEFAULT_IDS
        self.encoding = encoding
        self._pending: PendingCommand | None = None

    def next_id(self) -> int:
        return self.ids.next()

    @property
    def pending(self) -> PendingCommand | None:
        return self._pending

    @property
    def busy(self) -> bool:
        return self._pending is not None

    async def submit(
        self,
        command: Command,
        send: SendFn,
        timeout: float | None = None,
    ) -> CommandResult:
        """Send ``command`` and wait for its outcome.

        Raises:
            CommandBusyError: another command is pending (it is left untouched)
            CommandTimeoutError: no matching frame before the deadline
            CommandFailedError, RobotStoppedError, SafeDoorOpenError: controller said so
            ConnectionClosedError: the connection dropped while waiting
        """
        if self._pending is not None:
            raise CommandBusyError(
                f"Command {self._pending.id} still pending; rejected {command.id}",
                command.id,
            )

        loop = asyncio.get_running_loop()
        wait_s = self.timeout if timeout is None else timeout
        now = time.monotonic()
        pending = PendingCommand(
            id=command.id,
            sent_payload=command.payload,
            created_at=now,
            deadline=now + wait_s,
            future=loop.create_future(),
        )
        self._pending = pending
        timer = loop.call_later(wait_s, self._expire, pending)

        try:
            # A failed send clears the slot and propagates
            await send(encode(command.payload, command.id, self.encoding))
            logger.debug(f"Sent command {command.id}: {command.payload}")
            return await pending.future
        finally:
            timer.cancel()
            self._clear(pending)

    def _clear(self, pending: PendingCommand) -> None:
        if self._pending is pending:
            self._pending = None

    def _expire(self, pending: PendingCommand) -> None:
        if pending.future.done():
            return
        logger.warning(f"Command {pending.id} timed out: {pending.sent_payload}")
        self._clear(pending)
        pending.future.set_exception(
            CommandTimeoutError(f"Command timeout: {pending.sent_payload}", pending.id)
        )

    def handle_frame(self, frame: Frame) -> bool:
        """Resolve the pending command from ``frame``.

        Returns True when the frame completed the pending command; False for
        unsolicited frames (no pending command, other id, or Unrecognized).
        """
        pending = self._pending
        if pending is None or isinstance(frame, Unrecognized):
            return False
        if frame.id != pending.id or pending.future.done():
            return False

        self._clear(pending)
        outcome = frame_outcome(frame, pending.sent_payload)
        if isinstance(outcome, CommandError):
            pending.future.set_exception(outcome)
        else:
            pending.future.set_result(outcome)
        return True

    def fail_pending(self, exc: CommandError) -> bool:
        """Reject the pending command with ``exc`` (for example on disconnect)."""
        pending = self._pending
        if pending is None:
            return False
        self._clear(pending)
        if pending.future.done():
            return False
        if exc.command_id is None:
            exc.command_id = pending.id
        logger.info(f"Rejecting pending command {pending.id}: {exc}")
        pending.future.set_exception(exc)
        return True
