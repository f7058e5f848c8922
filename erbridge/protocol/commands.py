"""
Payload builders for the RCS2 remote interface.

Each function returns the bare payload (for example ``GetCurJPos()``); the
correlator adds the ``;id=N`` suffix when the command is sent.
"""

from collections.abc import Sequence

from erbridge.protocol.types import (
    CoordType,
    IOType,
    RobotMode,
    RunMode,
    Scope,
    VarType,
)


def _q(value: str) -> str:
    return f'"{value}"'


def _point(values: Sequence[float]) -> str:
    """Point strings join fixed-point values with underscores."""
    return "_".join(f"{float(v):.3f}" for v in values)


# ----- Position reads -----


def get_cur_jpos() -> str:
    return "GetCurJPos()"


def get_cur_wpos() -> str:
    return "GetCurWPos()"


def get_cur_wpos_v3() -> str:
    return "GetCurWPosV3()"


# ----- Variables and points -----


def get_var_v3(var_type: VarType, name: str, scope: Scope) -> str:
    return f"GetVarV3({int(var_type)},{_q(name)},{int(scope)})"


def set_var_v3(var_type: VarType, name: str, value: str, scope: Scope) -> str:
    return f"SetVarV3({int(var_type)},{_q(name)},{_q(value)},{int(scope)})"


def get_var_legacy(name: str, var_type: int, scope: Scope) -> str:
    return f"CamReadVar_s({_q(name)},{var_type},{int(scope)})"


def set_var_legacy(name: str, value: str, var_type: int, scope: Scope) -> str:
    return f"CamSetVar_1_s({_q(name)},{_q(value)},{var_type},{int(scope)})"


def set_point_pos(name: str, value: str, point_type: int, scope: Scope) -> str:
    return f"SetPointPos_1({_q(name)},{_q(value)},{point_type},{int(scope)})"


def get_point_pos(name: str, scope: Scope) -> str:
    return f"CamGetPoint_s({_q(name)},{int(scope)})"


# ----- IO -----


def set_io_value(index: int, io_type: IOType, value: float) -> str:
    return f"SetIOValue({index},{int(io_type)},{_num(value)})"


_IO_GETTERS = {
    "dout": "IOGetDout",
    "din": "IOGetDin",
    "aout": "IOGetAout",
    "ain": "IOGetAin",
    "sim_dout": "IOGetSimDout",
    "sim_din": "IOGetSimDin",
    "sim_aout": "IOGetSimAout",
    "sim_ain": "IOGetSimAin",
}


def io_get(kind: str, index: int) -> str:
    """Read one IO channel; ``kind`` is one of dout/din/aout/ain or sim_*."""
    try:
        name = _IO_GETTERS[kind]
    except KeyError:
        raise ValueError(f"Unknown IO kind: {kind!r}") from None
    return f"{name}({index})"


def io_get_din(index: int) -> str:
    return io_get("din", index)


def set_multi_io_value(params: str) -> str:
    return f"setMultiIOValue({params})"


def get_multi_io_value(params: str) -> str:
    return f"GetMultiIOValue({params})"


# ----- Mode, speed, status -----


def change_mode(mode: RobotMode) -> str:
    return f"changemode_IFace({int(mode)})"


def get_cur_sys_mode() -> str:
    return "getCurSysMode_IFace()"


def set_global_speed(speed: int) -> str:
    # Controller spelling ("Goable") is part of the interface
    return f"setGoableSpeed_IFace({int(speed)})"


def get_global_speed() -> str:
    return "getGoableSpeed_IFace()"


def set_run_mode(mode: RunMode) -> str:
    return f"setRunMode_IFace({int(mode)})"


def get_robot_run_status() -> str:
    return "getRobotRunStatus_IFace()"


def reset_error_id() -> str:
    return "resetErrorId_IFace()"


def get_error_id() -> str:
    return "getErrorId_IFace()"


# ----- Program control -----


def start_run() -> str:
    return "startRun_IFace()"


def stop_run() -> str:
    return "stopRun_IFace()"


def load_user_prj_prog(project: str, program: str) -> str:
    return f"loadUserPrjProg_IFace({_q(project)},{_q(program)})"


def unload_user_prj(project: str) -> str:
    return f"UnloadUserPrj_IFace({_q(project)})"


def unload_user_prog(project: str, program: str) -> str:
    return f"UnloadUserProg_IFace({_q(project)},{_q(program)})"


def is_robot_moving() -> str:
    return "IsRobotMoving_IFace()"


def is_program_loaded() -> str:
    return "IsProgramLoaded_IFace()"


def set_pc(index: int) -> str:
    return f"SetPc_IFace({index})"


# ----- Servo, coordinates, tools -----


def set_mot_servo_status(enabled: bool) -> str:
    return f"SetMotServoStatus_IFace({1 if enabled else 0})"


def get_servo_sts() -> str:
    return "GetServoSts_IFace()"


def set_coord_type(coord: CoordType) -> str:
    return f"SetCoordType_IFace({int(coord)})"


def get_cur_coord_type() -> str:
    # Controller spelling ("Ger") is part of the interface
    return "GerCurCoordType_IFace()"


def set_tool(scope: Scope, name: str) -> str:
    return f"SetTool_IFace({int(scope)},{_q(name)})"


def set_coord(scope: Scope, name: str) -> str:
    return f"SetCoord_IFace({int(scope)},{_q(name)})"


def get_tool_v3() -> str:
    return "GetToolV3()"


def get_user_coord_v3() -> str:
    return "GetUserCoordV3()"


def set_payload(scope: Scope, name: str) -> str:
    return f"SetPayload_IFace({int(scope)},{_q(name)})"


# ----- Motion -----


def jog_motion(axis: int, direction: int) -> str:
    return f"JogMotion_IFace({axis},{direction})"


def jog_motion_stop() -> str:
    return "JogMotionStop_IFace()"


def move_to_select_point(move_type: int, point: str, param: str) -> str:
    return f"MoveToSelectPoint_IFace({move_type},{_q(point)},{_q(param)})"


def stop_dest_pos_motion() -> str:
    return "StopDestPosMotion_IFace()"


def teach_select_point(name: str, scope: Scope) -> str:
    return f"TeachSelectPoint_IFace({_q(name)},{int(scope)})"


def move_point_v3(move_type: int, point: str, cfg: str, param: str) -> str:
    return f"MovePointV3({move_type},{_q(point)},{_q(cfg)},{_q(param)})"


def move_joint(joints: Sequence[float], speed: int = 50, blend: int = 100) -> str:
    """MovePointV3 with joint targets (move type 1)."""
    return move_point_v3(1, _point(joints), "", f"0_{speed}_{blend}")


def move_world(pose: Sequence[float], speed: int = 50, blend: int = 100) -> str:
    """MovePointV3 with a world pose x y z a b c (move type 2)."""
    if len(pose) != 6:
        raise ValueError(f"World pose requires 6 values, got {len(pose)}")
    return move_point_v3(2, _point(pose), "", f"0_{speed}_{blend}")


def move_finish() -> str:
    # Controller spelling ("Finsih") is part of the interface
    return "MoveFinsih()"


def set_rt_to_err(text: str, err_num: int) -> str:
    return f"SetRTtoErr_IFace({_q(text)},{err_num})"


def get_soft_limits() -> str:
    return "GetSoftLimits()"


def set_soft_limits(params: str) -> str:
    return f"SetSoftLimits({params})"


def clear_3d_cmds() -> str:
    return "Clear3dCmds()"


def _num(value: float) -> str:
    f = float(value)
    return str(int(f)) if f.is_integer() else repr(f)
