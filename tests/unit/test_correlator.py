"""
Unit tests for the command correlator: one pending command, matched by id,
completed by exactly one of frame, timeout, disconnect or cancellation.
"""

import asyncio

import pytest

from erbridge.errors import (
    CommandBusyError,
    CommandFailedError,
    CommandTimeoutError,
    ConnectionClosedError,
    RobotStoppedError,
    SafeDoorOpenError,
)
from erbridge.protocol.wire import Command, parse_frame
from erbridge.server.correlator import (
    CommandCorrelator,
    CommandIdGenerator,
    frame_outcome,
)

pytestmark = pytest.mark.unit


class Recorder:
    """Captures what the correlator sends."""

    def __init__(self):
        self.sent: list[bytes] = []

    async def __call__(self, data: bytes) -> None:
        self.sent.append(data)


async def _submit(corr: CommandCorrelator, send, cid: int, payload: str = "GetCurJPos()", **kw):
    task = asyncio.create_task(corr.submit(Command(cid, payload), send, **kw))
    # Let the task register the pending command and send
    for _ in range(3):
        await asyncio.sleep(0)
    return task


class TestIdGenerator:
    def test_monotonic(self):
        ids = CommandIdGenerator()
        assert [ids.next() for _ in range(3)] == [1, 2, 3]
        assert ids.last == 3

    def test_wraps_at_modulus(self):
        ids = CommandIdGenerator(start=9998)
        assert [ids.next() for _ in range(3)] == [9999, 0, 1]


@pytest.mark.asyncio
async def test_ack_resolves_and_clears_slot():
    corr = CommandCorrelator(timeout=1.0)
    send = Recorder()
    task = await _submit(corr, send, 7, "getCurJPos()")
    assert send.sent == [b"[getCurJPos();id=7]"]
    assert corr.busy

    assert corr.handle_frame(parse_frame("[id = 7; Ok; 10.0 20.0 30.0 40.0 50.0 60.0]"))
    result = await task
    assert result.id == 7
    assert result.data == [10.0, 20.0, 30.0, 40.0, 50.0, 60.0]
    assert result.raw.startswith("[id = 7; Ok")
    assert not corr.busy
    # A duplicate frame no longer matches anything
    assert not corr.handle_frame(parse_frame("[id = 7; Ok]"))


@pytest.mark.asyncio
async def test_second_submit_is_rejected_without_touching_first():
    corr = CommandCorrelator(timeout=1.0)
    send = Recorder()
    first = await _submit(corr, send, 1)

    with pytest.raises(CommandBusyError):
        await corr.submit(Command(2, "Other()"), send)

    assert corr.pending.id == 1
    assert len(send.sent) == 1
    corr.handle_frame(parse_frame("[id = 1; Ok]"))
    assert (await first).id == 1


@pytest.mark.asyncio
async def test_mismatched_id_is_unsolicited():
    corr = CommandCorrelator(timeout=1.0)
    task = await _submit(corr, Recorder(), 3)
    assert not corr.handle_frame(parse_frame("[id = 4; Ok]"))
    assert not corr.handle_frame(parse_frame("[garbage]"))
    assert corr.busy
    corr.handle_frame(parse_frame("[id = 3; Ok]"))
    await task


@pytest.mark.asyncio
async def test_timeout_rejects_and_late_frame_is_unsolicited():
    corr = CommandCorrelator(timeout=0.05)
    task = await _submit(corr, Recorder(), 5)
    with pytest.raises(CommandTimeoutError) as exc:
        await task
    assert exc.value.command_id == 5
    assert isinstance(exc.value, TimeoutError)
    assert not corr.busy
    assert not corr.handle_frame(parse_frame("[id = 5; Ok]"))


@pytest.mark.asyncio
async def test_per_call_timeout_overrides_default():
    corr = CommandCorrelator(timeout=10.0)
    task = await _submit(corr, Recorder(), 5, timeout=0.05)
    with pytest.raises(CommandTimeoutError):
        await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw, error",
    [
        ("[id = 7; FAIL]", CommandFailedError),
        ("[RobotStop: 7]", RobotStoppedError),
        ("[SafeDoorIsOpen: 7]", SafeDoorOpenError),
    ],
)
async def test_failure_frames_reject_with_specific_error(raw, error):
    corr = CommandCorrelator(timeout=1.0)
    task = await _submit(corr, Recorder(), 7)
    assert corr.handle_frame(parse_frame(raw))
    with pytest.raises(error) as exc:
        await task
    assert exc.value.command_id == 7
    assert exc.value.raw == raw
    assert not corr.busy


@pytest.mark.asyncio
async def test_robot_stop_is_not_a_generic_failure():
    corr = CommandCorrelator(timeout=1.0)
    task = await _submit(corr, Recorder(), 7)
    corr.handle_frame(parse_frame("[RobotStop: 7]"))
    with pytest.raises(RobotStoppedError) as exc:
        await task
    assert not isinstance(exc.value, CommandFailedError)


@pytest.mark.asyncio
async def test_motion_finish_with_matching_id_succeeds():
    corr = CommandCorrelator(timeout=1.0)
    task = await _submit(corr, Recorder(), 8)
    corr.handle_frame(parse_frame("[FeedMovFinish: 8]"))
    result = await task
    assert result.data is None


@pytest.mark.asyncio
async def test_fail_pending_on_disconnect():
    corr = CommandCorrelator(timeout=1.0)
    task = await _submit(corr, Recorder(), 9)
    assert corr.fail_pending(ConnectionClosedError("Connection closed"))
    with pytest.raises(ConnectionClosedError) as exc:
        await task
    assert exc.value.command_id == 9
    assert not corr.busy
    assert not corr.fail_pending(ConnectionClosedError("again"))


@pytest.mark.asyncio
async def test_caller_cancellation_clears_slot():
    corr = CommandCorrelator(timeout=1.0)
    task = await _submit(corr, Recorder(), 10)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not corr.busy


@pytest.mark.asyncio
async def test_send_failure_clears_slot():
    corr = CommandCorrelator(timeout=1.0)

    async def broken(data: bytes) -> None:
        raise ConnectionClosedError("Not connected to controller")

    with pytest.raises(ConnectionClosedError):
        await corr.submit(Command(11, "X()"), broken)
    assert not corr.busy


@pytest.mark.asyncio
async def test_encoding_applies_to_sent_bytes():
    corr = CommandCorrelator(timeout=1.0, encoding="utf-16-le")
    send = Recorder()
    task = await _submit(corr, send, 1, "A()")
    assert send.sent == ["[A();id=1]".encode("utf-16-le")]
    corr.handle_frame(parse_frame("[id = 1; Ok]"))
    await task


def test_frame_outcome_rejects_unrecognized():
    with pytest.raises(ValueError):
        frame_outcome(parse_frame("[nope]"))
