"""
Wire protocol for the ER-series remote command interface (RCS2).

This module contains the string protocol definitions:
- Request formatting: ``[Command(args);id=N]``
- Incremental frame extraction from a decoded text stream
- Frame classification into a closed set of msgspec structs

Response shapes sent by the controller:
- ACK:          [id = N; Ok]  or  [id = N; Ok; DATA]
- FAIL:         [id = N; FAIL]
- MOTION DONE:  [FeedMovFinish: N]  or  [ActMovFinish: N]
- ROBOT STOP:   [RobotStop: N]
- SAFE DOOR:    [SafeDoorIsOpen: N]
"""

import logging
import re
from typing import NamedTuple, TypeAlias

import msgspec

from erbridge.config import MAX_FRAME_CHARS
from erbridge.protocol.types import MotionFinishKind

logger = logging.getLogger(__name__)

FRAME_OPEN = "["
FRAME_CLOSE = "]"

# Scalar or list payload of an Ok response
Data: TypeAlias = float | str | list[float | str] | None


# =============================================================================
# Frame Structs - closed set of controller responses
# =============================================================================


class Ack(msgspec.Struct, tag="ack", frozen=True):
    """[id = N; Ok(; DATA)?]"""

    id: int
    data: Data
    raw: str


class Fail(msgspec.Struct, tag="fail", frozen=True):
    """[id = N; FAIL]"""

    id: int
    raw: str


class MotionFinish(msgspec.Struct, tag="motion_finish", frozen=True):
    """[FeedMovFinish: N] / [ActMovFinish: N]"""

    id: int
    kind: MotionFinishKind
    raw: str


class RobotStop(msgspec.Struct, tag="robot_stop", frozen=True):
    """[RobotStop: N]"""

    id: int
    raw: str


class SafeDoorOpen(msgspec.Struct, tag="safe_door_open", frozen=True):
    """[SafeDoorIsOpen: N]"""

    id: int
    raw: str


class Unrecognized(msgspec.Struct, tag="unrecognized", frozen=True):
    """Anything the classifier could not match (kept verbatim)."""

    raw: str


Frame = Ack | Fail | MotionFinish | RobotStop | SafeDoorOpen | Unrecognized


class Command(NamedTuple):
    """A correlatable request: the payload and its command id."""

    id: int
    payload: str


# =============================================================================
# Request formatting
# =============================================================================


def format_command(payload: str, command_id: int) -> str:
    """Wrap a payload into the wire request form ``[payload;id=N]``."""
    return f"{FRAME_OPEN}{payload};id={command_id}{FRAME_CLOSE}"


def encode(payload: str, command_id: int, encoding: str = "utf-8") -> bytes:
    """Format and encode a request for the stream."""
    return format_command(payload, command_id).encode(encoding)


_REQUEST_RE = re.compile(r"^\s*\[(?P<payload>.*);\s*id\s*=\s*(?P<id>\d+)\s*\]\s*$", re.S)


def parse_command(text: str) -> Command | None:
    """Split a preformatted request into payload and id.

    Returns None when the text carries no ``;id=N]`` suffix.
    """
    m = _REQUEST_RE.match(text)
    if m is None:
        return None
    return Command(int(m.group("id")), m.group("payload"))


# =============================================================================
# Frame classification
# =============================================================================

# Priority order matters: FAIL is checked before Ok.
_FAIL_RE = re.compile(r"^\[\s*id\s*=\s*(\d+)\s*;\s*fail\s*\]$", re.I)
_OK_RE = re.compile(r"^\[\s*id\s*=\s*(\d+)\s*;\s*ok\s*(?:;(.*))?\]$", re.I | re.S)
_MOVE_FINISH_RE = re.compile(r"^\[\s*(FeedMovFinish|ActMovFinish)\s*:\s*(\d+)\s*\]$", re.I)
_ROBOT_STOP_RE = re.compile(r"^\[\s*RobotStop\s*:\s*(\d+)\s*\]$", re.I)
_SAFE_DOOR_RE = re.compile(r"^\[\s*SafeDoorIsOpen\s*:\s*(\d+)\s*\]$", re.I)

# Canonical spelling of motion-finish kinds, keyed by lowercase
_MOTION_KINDS: dict[str, MotionFinishKind] = {
    "feedmovfinish": "FeedMovFinish",
    "actmovfinish": "ActMovFinish",
}


def _to_number(token: str) -> float | None:
    try:
        value = float(token)
    except ValueError:
        return None
    # nan/inf spellings are not numbers on this wire
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


def parse_data(text: str | None) -> Data:
    """Parse the DATA part of an Ok response.

    Whitespace-separated tokens become floats where possible, otherwise stay
    strings. No tokens (or the lone token ``Ok``) yields None, one token yields
    a scalar, several yield a list.
    """
    if not text:
        return None
    tokens = text.split()
    if not tokens:
        return None
    values: list[float | str] = []
    for tok in tokens:
        num = _to_number(tok)
        values.append(tok if num is None else num)
    if len(values) > 1:
        return values
    value = values[0]
    if isinstance(value, str) and value.lower() == "ok":
        return None
    return value


def parse_frame(raw: str) -> Frame:
    """Classify one complete frame (brackets included)."""
    text = raw.strip()

    m = _FAIL_RE.match(text)
    if m:
        return Fail(id=int(m.group(1)), raw=raw)

    m = _OK_RE.match(text)
    if m:
        return Ack(id=int(m.group(1)), data=parse_data(m.group(2)), raw=raw)

    m = _MOVE_FINISH_RE.match(text)
    if m:
        kind = _MOTION_KINDS[m.group(1).lower()]
        return MotionFinish(id=int(m.group(2)), kind=kind, raw=raw)

    m = _ROBOT_STOP_RE.match(text)
    if m:
        return RobotStop(id=int(m.group(1)), raw=raw)

    m = _SAFE_DOOR_RE.match(text)
    if m:
        return SafeDoorOpen(id=int(m.group(1)), raw=raw)

    return Unrecognized(raw=raw)


def frame_id(frame: Frame) -> int | None:
    """Return the command id a frame refers to, or None for Unrecognized."""
    if isinstance(frame, Unrecognized):
        return None
    return frame.id


# =============================================================================
# Incremental frame extraction
# =============================================================================


def decode(buffer: str, max_frame_chars: int = MAX_FRAME_CHARS) -> tuple[list[Frame], str]:
    """Extract every complete frame from ``buffer``.

    Returns ``(frames, remaining)`` where ``remaining`` is the text after the
    last consumed ``]``. Feed the remainder
    back in front of the next chunk.

    - A ``[`` inside an open frame closes the partial text as Unrecognized and
      restarts at the new ``[``.
    - Non-whitespace text outside brackets is emitted as Unrecognized once the
      next ``[`` arrives (trailing text stays in the remainder).
    - An open frame longer than ``max_frame_chars`` is emitted as Unrecognized
      and dropped.
    """
    frames: list[Frame] = []
    n = len(buffer)
    i = 0
    noise_start = 0  # start of text outside any frame
    start = -1  # index of the open '[' or -1

    while i < n:
        ch = buffer[i]
        if start < 0:
            if ch == FRAME_OPEN:
                _flush_noise(buffer[noise_start:i], frames)
                start = i
            i += 1
            continue

        if ch == FRAME_OPEN:
            # Unterminated frame followed by a new one
            frames.append(Unrecognized(raw=buffer[start:i]))
            start = i
        elif ch == FRAME_CLOSE:
            frames.append(parse_frame(buffer[start : i + 1]))
            start = -1
            noise_start = i + 1
        elif i - start + 1 > max_frame_chars:
            logger.warning(f"Dropping oversized frame ({i - start + 1} chars without ']')")
            frames.append(Unrecognized(raw=buffer[start : i + 1]))
            start = -1
            noise_start = i + 1
        i += 1

    if start >= 0:
        return frames, buffer[start:]
    remaining = buffer[noise_start:]
    if len(remaining) > max_frame_chars:
        # Unframed text that never grew into a frame
        _flush_noise(remaining, frames)
        return frames, ""
    return frames, remaining


def _flush_noise(text: str, frames: list[Frame]) -> None:
    if not text or text.isspace():
        return
    logger.debug(f"Unframed controller text: {text!r}")
    frames.append(Unrecognized(raw=text.strip()))


class FrameAssembler:
    """Carries the unconsumed remainder of :func:`decode` across chunks."""

    __slots__ = ("_buffer", "_max_frame_chars")

    def __init__(self, max_frame_chars: int = MAX_FRAME_CHARS):
        self._buffer = ""
        self._max_frame_chars = max_frame_chars

    def feed(self, text: str) -> list[Frame]:
        frames, self._buffer = decode(self._buffer + text, self._max_frame_chars)
        return frames

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""
