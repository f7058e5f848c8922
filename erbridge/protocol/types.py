"""
Type definitions for the ER-series remote command protocol.

Defines enums and the fixed-arity records decoded from numeric payloads.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Literal


class ConnectionState(Enum):
    """Link state of the controller transport or the browser session."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


class CommandKind(IntEnum):
    """Command categories of the remote interface."""

    STATUS_IO_VAR_READ = 1
    STATUS_IO_VAR_SET = 2
    MOTION = 3


class CoordType(IntEnum):
    JOINT = 0
    WORLD = 1
    TOOL = 2
    USER = 3


class RobotMode(IntEnum):
    MANUAL = 0
    AUTO = 1
    REMOTE = 2


class RunMode(IntEnum):
    SINGLE_STEP = 1
    CONTINUOUS = 2


class RunStatus(IntEnum):
    PROG_INIT = 0
    PROG_RUNNING = 1
    PROG_PAUSED = 2
    PROG_STOPPED = 3
    PROG_ERROR = 4


class IOType(IntEnum):
    """IO channel types accepted by SetIOValue."""

    DOUT = 1  # Digital output
    AOUT = 2  # Analog output
    SIM_DI = 11  # Virtual digital input
    SIM_DOUT = 12  # Virtual digital output
    SIM_AIN = 13  # Virtual analog input
    SIM_AOUT = 14  # Virtual analog output


class VarType(IntEnum):
    """Variable types for GetVarV3/SetVarV3."""

    INT = 1
    REAL = 2
    APOS = 3
    CPOS = 4
    STRING = 5
    ARRAY = 6
    CPOS_WITH_CFG = 7
    TOOL = 8
    USERCOORD = 9
    TOOL_WITH_PAYLOAD = 10


class Scope(IntEnum):
    """Variable scope."""

    SYSTEM = 0
    GLOBAL = 1
    PROJECT = 2
    PROGRAM = 3


# Motion finish notification literals
MotionFinishKind = Literal["FeedMovFinish", "ActMovFinish"]

# Log entry kinds
LogKind = Literal["info", "warn", "error", "success", "cmd"]


@dataclass(slots=True, frozen=True)
class JointPosition:
    """Joint angles in degrees (GetCurJPos)."""

    j1: float
    j2: float
    j3: float
    j4: float
    j5: float
    j6: float

    def as_list(self) -> list[float]:
        return [self.j1, self.j2, self.j3, self.j4, self.j5, self.j6]


@dataclass(slots=True, frozen=True)
class WorldPosition:
    """Cartesian TCP pose in mm / degrees (GetCurWPos)."""

    x: float
    y: float
    z: float
    a: float
    b: float
    c: float


@dataclass(slots=True, frozen=True)
class CPOSData:
    """Cartesian pose with configuration flags (GetCurWPosV3)."""

    mod: float
    cf1: float
    cf2: float
    cf3: float
    cf4: float
    cf5: float
    cf6: float
    x: float
    y: float
    z: float
    a: float
    b: float
    c: float


@dataclass(slots=True, frozen=True)
class APOSData:
    """Axis position: six robot axes plus up to ten external axes."""

    axes: tuple[float, ...]

    def __getitem__(self, index: int) -> float:
        return self.axes[index]


@dataclass(slots=True, frozen=True)
class ToolData:
    """TOOL variable, optionally with payload dynamics."""

    id: int
    x: float
    y: float
    z: float
    a: float
    b: float
    c: float
    M: float | None = None
    Mx: float | None = None
    My: float | None = None
    Mz: float | None = None
    Ixx: float | None = None
    Iyy: float | None = None
    Izz: float | None = None
    Ixy: float | None = None
    Ixz: float | None = None
    Iyz: float | None = None


@dataclass(slots=True, frozen=True)
class UserCoordData:
    """USERCOORD variable."""

    id: int
    x: float
    y: float
    z: float
    a: float
    b: float
    c: float


# -----------------------------------------------------------------------------
# Positional unpackers
# -----------------------------------------------------------------------------
# Each returns None when the payload is shorter than the record's arity or
# holds a non-numeric value where a number is required. Callers must treat
# None as a protocol error.


def _numeric_prefix(values: object, arity: int) -> list[float] | None:
    if isinstance(values, (int, float)) and not isinstance(values, bool):
        values = [values]
    if not isinstance(values, Sequence) or isinstance(values, str):
        return None
    if len(values) < arity:
        return None
    out: list[float] = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            if len(out) < arity:
                return None
            break
        out.append(float(v))
    return out


def parse_joint_position(values: object) -> JointPosition | None:
    """Format: J1 J2 J3 J4 J5 J6"""
    v = _numeric_prefix(values, 6)
    if v is None:
        return None
    return JointPosition(*v[:6])


def parse_world_position(values: object) -> WorldPosition | None:
    """Format: x y z a b c"""
    v = _numeric_prefix(values, 6)
    if v is None:
        return None
    return WorldPosition(*v[:6])


def parse_world_position_v3(values: object) -> CPOSData | None:
    """Format: mod cf1 cf2 cf3 cf4 cf5 cf6 x y z a b c"""
    v = _numeric_prefix(values, 13)
    if v is None:
        return None
    return CPOSData(*v[:13])


def parse_apos(values: object) -> APOSData | None:
    """Format: a1 .. a6 [a7 .. a16]"""
    v = _numeric_prefix(values, 6)
    if v is None:
        return None
    return APOSData(axes=tuple(v[:16]))


def parse_tool(values: object) -> ToolData | None:
    """Format: id x y z a b c [M Mx My Mz Ixx Iyy Izz Ixy Ixz Iyz]"""
    v = _numeric_prefix(values, 7)
    if v is None:
        return None
    return ToolData(int(v[0]), *v[1:17])


def parse_user_coord(values: object) -> UserCoordData | None:
    """Format: id x y z a b c"""
    v = _numeric_prefix(values, 7)
    if v is None:
        return None
    return UserCoordData(int(v[0]), *v[1:7])
