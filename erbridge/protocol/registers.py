"""
Holding-register map and fixed-point decoding for register (Modbus-TCP) mode.

Logical quantities span two consecutive 16-bit registers, low word first,
forming a signed 32-bit integer scaled by 100 (0.01 mm / 0.01 deg).

The map below was reverse-engineered from a live controller and is not
guaranteed by the vendor; every address is configurable.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import msgspec
import numpy as np

from erbridge.config import (
    REG_COMMAND_FLAGS,
    REG_COORDS_START,
    REG_FIXED_POINT_SCALE,
    REG_JOINTS_START,
)

REGS_PER_VALUE = 2
AXES = 6
BLOCK_REGS = AXES * REGS_PER_VALUE
# x, y, z
MIN_POSE_REGS = 3 * REGS_PER_VALUE


@dataclass(frozen=True, slots=True)
class RegisterMap:
    """Start addresses of the coordinate, joint and flag blocks."""

    coords_start: int = REG_COORDS_START
    joints_start: int = REG_JOINTS_START
    command_flags: int = REG_COMMAND_FLAGS
    scale: float = REG_FIXED_POINT_SCALE


DEFAULT_MAP = RegisterMap()


class RegisterFrame(msgspec.Struct, frozen=True):
    """One poll tick: a contiguous block of holding registers."""

    start_address: int
    values: tuple[int, ...]

    def slice(self, address: int, count: int) -> tuple[int, ...] | None:
        """Return ``count`` registers from ``address`` if the frame covers them."""
        offset = address - self.start_address
        if offset < 0 or offset + count > len(self.values):
            return None
        return self.values[offset : offset + count]


class Coords(msgspec.Struct, frozen=True):
    """Tool pose; orientation is None when the frame stops short of it."""

    x: float
    y: float
    z: float
    a: float | None = None
    b: float | None = None
    c: float | None = None


class Telemetry(msgspec.Struct, frozen=True):
    """Pose and joint angles decoded from a register frame."""

    coords: Coords
    joints: list[float]


def decode_fixed_point(
    values: Sequence[int], scale: float = REG_FIXED_POINT_SCALE
) -> np.ndarray:
    """Decode register pairs (low word first) into signed scaled floats.

    An odd trailing register is ignored.
    """
    n = len(values) - (len(values) % REGS_PER_VALUE)
    words = np.asarray(values[:n], dtype=np.int64) & 0xFFFF
    pairs = words.astype("<u2").view("<i4")
    return pairs.astype(np.float64) / scale


def encode_fixed_point(
    values: Sequence[float], scale: float = REG_FIXED_POINT_SCALE
) -> list[int]:
    """Inverse of :func:`decode_fixed_point`, used by the simulator."""
    scaled = np.rint(np.asarray(values, dtype=np.float64) * scale).astype("<i4")
    return scaled.view("<u2").astype(int).tolist()


def decode_coords(
    frame: RegisterFrame, reg_map: RegisterMap = DEFAULT_MAP
) -> Coords | None:
    """Decode every complete pair of the coordinate block the frame covers.

    x, y and z are required; a, b and c are None when the frame ends before them.
    """
    covered = frame.start_address + len(frame.values) - reg_map.coords_start
    count = min(BLOCK_REGS, covered - covered % REGS_PER_VALUE)
    if count < MIN_POSE_REGS:
        return None
    regs = frame.slice(reg_map.coords_start, count)
    if regs is None:
        return None
    values: list[float | None] = [float(v) for v in decode_fixed_point(regs, reg_map.scale)]
    values += [None] * (AXES - len(values))
    x, y, z, a, b, c = values
    return Coords(x=x, y=y, z=z, a=a, b=b, c=c)


def decode_joints(
    frame: RegisterFrame, reg_map: RegisterMap = DEFAULT_MAP
) -> list[float] | None:
    regs = frame.slice(reg_map.joints_start, BLOCK_REGS)
    if regs is None:
        return None
    return [float(v) for v in decode_fixed_point(regs, reg_map.scale)]


def decode_telemetry(
    frame: RegisterFrame, reg_map: RegisterMap = DEFAULT_MAP
) -> Telemetry | None:
    """Decode telemetry when the frame covers at least x, y and z.

    Joint angles default to zeros when the joint block is outside the frame.
    """
    coords = decode_coords(frame, reg_map)
    if coords is None:
        return None
    joints = decode_joints(frame, reg_map)
    return Telemetry(coords=coords, joints=joints if joints is not None else [0.0] * AXES)


def set_bit(value: int, bit: int) -> int:
    return (value | (1 << bit)) & 0xFFFF


def clear_bit(value: int, bit: int) -> int:
    return value & ~(1 << bit) & 0xFFFF
