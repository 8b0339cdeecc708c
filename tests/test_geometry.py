"""
Tests for planar and spatial geometry primitives.
"""

import math

import numpy as np
import pytest

from swerve_nav.geometry import (
    Pose2d,
    Pose3d,
    Quaternion,
    Rotation2d,
    Transform2d,
    Transform3d,
    Translation2d,
    Twist2d,
    angle_modulus,
    inches_to_meters,
)


def test_angle_modulus_wraps_into_half_open_range():
    assert angle_modulus(3 * math.pi / 2) == pytest.approx(-math.pi / 2)
    assert angle_modulus(-math.pi) == pytest.approx(math.pi)
    assert angle_modulus(0.25) == pytest.approx(0.25)


def test_inches_to_meters():
    assert inches_to_meters(100.0) == pytest.approx(2.54)


def test_rotation_arithmetic_wraps():
    a = Rotation2d.from_degrees(170.0)
    b = Rotation2d.from_degrees(20.0)
    assert (a + b).degrees == pytest.approx(-170.0)
    assert (b - a).degrees == pytest.approx(-150.0)


def test_translation_rotate_and_distance():
    t = Translation2d(1.0, 0.0).rotate_by(Rotation2d.from_degrees(90.0))
    assert t.x == pytest.approx(0.0, abs=1e-12)
    assert t.y == pytest.approx(1.0)
    assert Translation2d(0.0, 0.0).distance(Translation2d(3.0, 4.0)) == pytest.approx(5.0)


def test_exp_straight_line():
    pose = Pose2d().exp(Twist2d(1.0, 0.0, 0.0))
    assert pose.x == pytest.approx(1.0)
    assert pose.y == pytest.approx(0.0)
    assert pose.theta == pytest.approx(0.0)


def test_exp_quarter_circle():
    # Arc of radius 1 through a quarter turn
    pose = Pose2d().exp(Twist2d(math.pi / 2, 0.0, math.pi / 2))
    assert pose.x == pytest.approx(1.0)
    assert pose.y == pytest.approx(1.0)
    assert pose.theta == pytest.approx(math.pi / 2)


@pytest.mark.parametrize(
    "start,end",
    [
        (Pose2d.from_xy_theta(0.0, 0.0, 0.0), Pose2d.from_xy_theta(1.0, 2.0, 0.5)),
        (Pose2d.from_xy_theta(3.0, -1.0, 2.5), Pose2d.from_xy_theta(2.0, 1.0, -2.9)),
        (Pose2d.from_xy_theta(1.0, 1.0, 0.1), Pose2d.from_xy_theta(1.5, 1.0, 0.1)),
    ],
)
def test_log_inverts_exp(start, end):
    twist = start.log(end)
    result = start.exp(twist)
    assert result.x == pytest.approx(end.x, abs=1e-9)
    assert result.y == pytest.approx(end.y, abs=1e-9)
    assert angle_modulus(result.theta - end.theta) == pytest.approx(0.0, abs=1e-9)


def test_log_takes_short_rotation_across_seam():
    start = Pose2d.from_xy_theta(0.0, 0.0, math.radians(179.0))
    end = Pose2d.from_xy_theta(0.0, 0.0, math.radians(-179.0))
    assert start.log(end).dtheta == pytest.approx(math.radians(2.0))


def test_relative_to_and_transform_by():
    origin = Pose2d.from_xy_theta(1.0, 1.0, math.pi / 2)
    moved = origin.transform_by(Transform2d.from_translation(1.0, 0.0))
    assert moved.x == pytest.approx(1.0)
    assert moved.y == pytest.approx(2.0)
    rel = moved.relative_to(origin)
    assert rel.x == pytest.approx(1.0)
    assert rel.y == pytest.approx(0.0, abs=1e-12)


def test_transform2d_inverse():
    transform = Transform2d(Translation2d(1.0, 2.0), Rotation2d(0.7))
    pose = Pose2d.from_xy_theta(3.0, 4.0, 0.2)
    back = pose.transform_by(transform).transform_by(transform.inverse())
    assert back.x == pytest.approx(pose.x)
    assert back.y == pytest.approx(pose.y)
    assert back.theta == pytest.approx(pose.theta)


def test_quaternion_rotation_matrix_round_trip():
    q = Quaternion.from_euler(0.1, -0.4, 2.0)
    q2 = Quaternion.from_rotation_matrix(q.to_rotation_matrix())
    assert np.allclose(q.to_rotation_matrix(), q2.to_rotation_matrix())


def test_quaternion_from_euler_yaw():
    q = Quaternion.from_euler(0.0, 0.0, math.pi / 2)
    m = q.to_rotation_matrix()
    assert np.allclose(m @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


def test_quaternion_components_are_scalar_first():
    q = Quaternion.from_euler(0.0, 0.0, math.pi / 2)
    assert q.w == pytest.approx(math.cos(math.pi / 4))
    assert q.z == pytest.approx(math.sin(math.pi / 4))
    assert q.x == pytest.approx(0.0) and q.y == pytest.approx(0.0)


def test_quaternion_matrix_normalizes_input():
    assert np.allclose(Quaternion(2.0, 0.0, 0.0, 0.0).to_rotation_matrix(), np.eye(3))
    assert np.allclose(Quaternion(0.0, 0.0, 0.0, 0.0).to_rotation_matrix(), np.eye(3))


def test_pose3d_transform_and_inverse():
    pose = Pose3d(1.0, 2.0, 0.5, Quaternion.from_euler(0.0, 0.2, 1.0))
    transform = Transform3d(0.3, -0.2, 0.1, Quaternion.from_euler(0.0, -0.3, 0.5))
    back = pose.transform_by(transform).transform_by(transform.inverse())
    assert back.distance(pose) == pytest.approx(0.0, abs=1e-9)
    assert np.allclose(back.rotation.to_rotation_matrix(), pose.rotation.to_rotation_matrix())


def test_pose3d_to_pose2d_keeps_yaw():
    pose2d = Pose2d.from_xy_theta(4.0, 3.0, -1.2)
    projected = Pose3d.from_pose2d(pose2d, z=0.7).to_pose2d()
    assert projected.x == pytest.approx(4.0)
    assert projected.y == pytest.approx(3.0)
    assert projected.theta == pytest.approx(-1.2)


def test_pose_interpolate_follows_twist():
    start = Pose2d.from_xy_theta(0.0, 0.0, 0.0)
    end = Pose2d().exp(Twist2d(math.pi / 2, 0.0, math.pi / 2))
    halfway = start.interpolate(end, 0.5)
    # Midpoint of the quarter circle of radius 1
    assert halfway.x == pytest.approx(math.sin(math.pi / 4))
    assert halfway.y == pytest.approx(1.0 - math.cos(math.pi / 4))
    assert halfway.theta == pytest.approx(math.pi / 4)
    assert start.interpolate(end, 2.0) == end
