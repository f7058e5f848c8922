"""Unit tests for fixed-arity positional unpackers."""

import pytest

from erbridge.protocol.types import (
    JointPosition,
    parse_apos,
    parse_joint_position,
    parse_tool,
    parse_user_coord,
    parse_world_position,
    parse_world_position_v3,
)
from erbridge.protocol.wire import parse_data

pytestmark = pytest.mark.unit


def test_joint_position_from_ack_data():
    data = parse_data("10.0 20.0 30.0 40.0 50.0 60.0")
    assert parse_joint_position(data) == JointPosition(10.0, 20.0, 30.0, 40.0, 50.0, 60.0)


def test_joint_position_as_list():
    jp = parse_joint_position([1, 2, 3, 4, 5, 6])
    assert jp.as_list() == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]


def test_short_payload_is_rejected():
    assert parse_joint_position([1.0, 2.0, 3.0, 4.0, 5.0]) is None
    assert parse_world_position_v3([0.0] * 12) is None
    assert parse_tool([1.0] * 6) is None


def test_non_numeric_is_rejected():
    assert parse_joint_position([1.0, 2.0, "x", 4.0, 5.0, 6.0]) is None


def test_scalar_and_none_are_rejected():
    assert parse_joint_position(None) is None
    assert parse_joint_position(3.0) is None
    assert parse_joint_position("1 2 3 4 5 6") is None


def test_extra_values_are_ignored():
    wp = parse_world_position([1, 2, 3, 4, 5, 6, 7, 8])
    assert (wp.x, wp.c) == (1.0, 6.0)


def test_world_position_v3():
    pose = parse_world_position_v3([0, 0, 0, 0, 0, 0, 0, 501.0, 173.32, 176.79, 180, 0, 90])
    assert pose.mod == 0.0
    assert (pose.x, pose.y, pose.z) == (501.0, 173.32, 176.79)
    assert pose.c == 90.0


def test_apos_keeps_external_axes():
    apos = parse_apos(list(range(10)))
    assert len(apos.axes) == 10
    assert apos[7] == 7.0


def test_apos_caps_at_sixteen():
    assert len(parse_apos(list(range(20))).axes) == 16


def test_tool_without_payload():
    tool = parse_tool([1, 0, 0, 120, 0, 0, 0])
    assert tool.id == 1
    assert tool.z == 120.0
    assert tool.M is None


def test_tool_with_payload():
    tool = parse_tool([2, 0, 0, 100, 0, 0, 0, 1.5, 0, 0, 10])
    assert tool.id == 2
    assert tool.M == 1.5
    assert tool.Mz == 10.0
    assert tool.Ixx is None


def test_user_coord():
    uc = parse_user_coord([3, 300, 0, 0, 0, 0, 0])
    assert uc.id == 3
    assert uc.x == 300.0
