"""
High-level robot operations on top of a command channel.

A channel is anything with ``async execute(payload, timeout) -> CommandResult``:
the in-process ``Bridge`` or a ``GatewayClient`` talking to a running bridge.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from typing import Protocol, TypeVar

from erbridge.errors import DataArityError, ProtocolError
from erbridge.protocol import commands
from erbridge.protocol.types import (
    CPOSData,
    IOType,
    JointPosition,
    RobotMode,
    RunStatus,
    Scope,
    ToolData,
    UserCoordData,
    VarType,
    WorldPosition,
    parse_joint_position,
    parse_tool,
    parse_user_coord,
    parse_world_position,
    parse_world_position_v3,
)
from erbridge.protocol.wire import Data
from erbridge.server.correlator import CommandResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandChannel(Protocol):
    async def execute(self, payload: str, timeout: float | None = None) -> CommandResult: ...


def _count(data: Data) -> int:
    if data is None:
        return 0
    if isinstance(data, list):
        return len(data)
    return 1


class RobotClient:
    """
    Typed robot operations.

    Calls are queued: concurrent callers wait their turn instead of hitting
    the one-command-in-flight rejection.
    """

    def __init__(self, channel: CommandChannel, timeout: float | None = None):
        self.channel = channel
        self.timeout = timeout
        self._lock = asyncio.Lock()

    async def execute(self, payload: str, timeout: float | None = None) -> CommandResult:
        """Send a raw payload (no ``;id=N`` suffix) and return its result."""
        async with self._lock:
            return await self.channel.execute(
                payload, self.timeout if timeout is None else timeout
            )

    async def _query(self, payload: str) -> Data:
        return (await self.execute(payload)).data

    async def _record(
        self, payload: str, parse: Callable[[Data], T | None], record: str, arity: int
    ) -> T:
        data = await self._query(payload)
        value = parse(data)
        if value is None:
            raise DataArityError(record, arity, _count(data))
        return value

    async def _number(self, payload: str) -> float:
        data = await self._query(payload)
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, bool) or not isinstance(data, (int, float)):
            raise ProtocolError(f"Expected a number from {payload}, got {data!r}")
        return data

    # --------------- Positions ---------------

    async def get_current_joint_position(self) -> JointPosition:
        """Joint angles J1..J6 in degrees."""
        return await self._record(
            commands.get_cur_jpos(), parse_joint_position, "JointPosition", 6
        )

    async def get_current_world_position(self) -> CPOSData:
        """TCP pose with configuration flags (GetCurWPosV3)."""
        return await self._record(
            commands.get_cur_wpos_v3(), parse_world_position_v3, "CPOSData", 13
        )

    async def get_current_world_position_legacy(self) -> WorldPosition:
        return await self._record(
            commands.get_cur_wpos(), parse_world_position, "WorldPosition", 6
        )

    # --------------- Motion ---------------

    async def move_to_joint_position(
        self, joints: Sequence[float], speed: int = 50, blend: int = 100
    ) -> CommandResult:
        """Start a joint move; resolves when the controller accepts it."""
        if len(joints) != 6:
            raise ValueError(f"Joint move requires 6 values, got {len(joints)}")
        return await self.execute(commands.move_joint(joints, speed, blend))

    async def move_to_world_position(
        self,
        x: float,
        y: float,
        z: float,
        a: float,
        b: float,
        c: float,
        speed: int = 50,
        blend: int = 100,
    ) -> CommandResult:
        """Start a linear move to a world pose in mm / degrees."""
        return await self.execute(commands.move_world([x, y, z, a, b, c], speed, blend))

    async def jog(self, axis: int, direction: int) -> None:
        """Jog ``axis`` (1-based) in ``direction`` (1 or -1) until ``jog_stop``."""
        if direction not in (1, -1):
            raise ValueError(f"Jog direction must be 1 or -1, got {direction}")
        await self.execute(commands.jog_motion(axis, direction))

    async def jog_stop(self) -> None:
        await self.execute(commands.jog_motion_stop())

    async def stop_motion(self) -> None:
        """Stop the running program and any motion it drives."""
        await self.execute(commands.stop_run())

    async def is_robot_moving(self) -> bool:
        return bool(await self._number(commands.is_robot_moving()))

    async def wait_motion_complete(
        self, timeout: float = 30.0, poll_interval: float = 0.1
    ) -> bool:
        """Poll until the robot reports it is not moving.

        Returns False if still moving after ``timeout`` seconds.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not await self.is_robot_moving():
                return True
            await asyncio.sleep(poll_interval)
        logger.warning(f"Motion still in progress after {timeout:.1f}s")
        return False

    # --------------- IO ---------------

    async def set_digital_output(self, index: int, value: int) -> None:
        await self.set_io_value(index, IOType.DOUT, value)

    async def get_digital_input(self, index: int) -> int:
        return int(await self._number(commands.io_get_din(index)))

    async def set_io_value(self, index: int, io_type: IOType, value: float) -> None:
        await self.execute(commands.set_io_value(index, io_type, value))

    # --------------- Variables ---------------

    async def set_variable(
        self, var_type: VarType, name: str, value: str, scope: Scope = Scope.GLOBAL
    ) -> None:
        await self.execute(commands.set_var_v3(var_type, name, value, scope))

    async def get_variable(
        self, var_type: VarType, name: str, scope: Scope = Scope.GLOBAL
    ) -> Data:
        """Raw variable value; numeric tokens come back as floats."""
        return await self._query(commands.get_var_v3(var_type, name, scope))

    # --------------- Mode, speed, status ---------------

    async def change_mode(self, mode: RobotMode) -> None:
        await self.execute(commands.change_mode(mode))

    async def get_system_mode(self) -> RobotMode:
        return RobotMode(int(await self._number(commands.get_cur_sys_mode())))

    async def set_global_speed(self, speed: int) -> None:
        """Global speed override in percent (1..100)."""
        if not 1 <= speed <= 100:
            raise ValueError(f"Speed must be 1..100, got {speed}")
        await self.execute(commands.set_global_speed(speed))

    async def get_global_speed(self) -> int:
        return int(await self._number(commands.get_global_speed()))

    async def get_run_status(self) -> RunStatus:
        return RunStatus(int(await self._number(commands.get_robot_run_status())))

    async def get_error_id(self) -> int:
        return int(await self._number(commands.get_error_id()))

    async def reset_error(self) -> None:
        await self.execute(commands.reset_error_id())

    # --------------- Servo and programs ---------------

    async def set_servo_enabled(self, enabled: bool) -> None:
        await self.execute(commands.set_mot_servo_status(enabled))

    async def get_servo_status(self) -> bool:
        return bool(await self._number(commands.get_servo_sts()))

    async def start_program(self) -> None:
        await self.execute(commands.start_run())

    async def load_program(self, project: str, program: str) -> None:
        await self.execute(commands.load_user_prj_prog(project, program))

    # --------------- Tool and user frames ---------------

    async def get_tool(self) -> ToolData:
        return await self._record(commands.get_tool_v3(), parse_tool, "ToolData", 7)

    async def get_user_coord(self) -> UserCoordData:
        return await self._record(
            commands.get_user_coord_v3(), parse_user_coord, "UserCoordData", 7
        )
