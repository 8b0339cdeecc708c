"""
Tests for the motion behaviors and the motion scheduler, run against the simulator.
"""

import math

import pytest
from conftest import run_cycles

from swerve_nav.config import DriveToPoseConfig, TrajectoryFollowerConfig
from swerve_nav.follower import (
    DriveToPose,
    HolonomicDriveController,
    MotionBehavior,
    MotionScheduler,
    TrajectoryFollower,
    behavior_for_plan,
)
from swerve_nav.geometry import Pose2d, Rotation2d, Translation2d
from swerve_nav.motor_controller import PIDController
from swerve_nav.path import (
    RotationSequence,
    RotationState,
    Trajectory,
    TrajectoryState,
    Waypoint,
    generate_path,
)


def pose_error(pose, goal):
    return pose.translation.distance(goal.translation), abs((pose.rotation - goal.rotation).radians)


class RecordingBehavior(MotionBehavior):
    def __init__(self, finish_after=None):
        self.calls = []
        self.finish_after = finish_after
        self.steps = 0

    def start(self):
        self.calls.append("start")

    def step(self):
        self.steps += 1
        self.calls.append("step")

    def is_done(self):
        return self.finish_after is not None and self.steps >= self.finish_after

    def stop(self):
        self.calls.append("stop")


def test_drive_to_pose_converges(sim, sim_drive):
    goal = Pose2d.from_xy_theta(2.4, 2.2, math.radians(30.0))
    behavior = DriveToPose(sim_drive, goal)

    assert run_cycles(sim, sim_drive, behavior, max_time=5.0)
    distance, theta = pose_error(sim.pose, goal)
    assert distance < 0.1
    assert theta < 0.03
    # stop() zeroes the command
    assert sim_drive.setpoint.vx == 0.0
    assert sim_drive.setpoint.omega == 0.0


def test_drive_to_pose_not_done_before_first_step(sim_drive):
    behavior = DriveToPose(sim_drive, sim_drive.get_pose())
    behavior.start()
    assert not behavior.is_done()


def test_drive_to_pose_follows_moving_goal(sim, sim_drive):
    goal = {"pose": Pose2d.from_xy_theta(3.0, 2.0, 0.0)}
    behavior = DriveToPose(sim_drive, lambda: goal["pose"])
    behavior.start()
    for _ in range(25):
        sim_drive.periodic(sim.time)
        behavior.step()
        sim.step(0.02)
    goal["pose"] = Pose2d.from_xy_theta(2.0, 3.0, 0.0)

    assert run_cycles(sim, sim_drive, behavior=_Resume(behavior), max_time=8.0)
    distance, _ = pose_error(sim.pose, goal["pose"])
    assert distance < 0.1


class _Resume(MotionBehavior):
    """Wraps a started behavior so run_cycles does not restart it."""

    def __init__(self, behavior):
        self.behavior = behavior

    def start(self):
        pass

    def step(self):
        self.behavior.step()

    def is_done(self):
        return self.behavior.is_done()

    def stop(self):
        self.behavior.stop()


def test_turn_in_place(sim, sim_drive):
    start = sim.pose
    goal = Pose2d(start.translation, Rotation2d.from_degrees(90.0))
    behavior = DriveToPose.without_driving(sim_drive, goal)

    assert run_cycles(sim, sim_drive, behavior, max_time=5.0)
    assert sim.pose.translation.distance(start.translation) < 1e-6
    assert sim.pose.rotation.degrees == pytest.approx(90.0, abs=1.0)


def test_ignore_heading_keeps_start_heading(sim, sim_drive):
    goal = Pose2d.from_xy_theta(2.4, 2.0, math.radians(90.0))
    behavior = DriveToPose.ignore_heading(sim_drive, goal)

    assert run_cycles(sim, sim_drive, behavior, max_time=5.0)
    assert sim.pose.translation.distance(goal.translation) < 0.1
    assert abs(sim.pose.theta) < math.radians(1.0)


def test_drive_to_pose_diagnostics(sim, sim_drive):
    behavior = DriveToPose(sim_drive, Pose2d.from_xy_theta(3.0, 2.0, 0.0))
    behavior.start()
    sim_drive.periodic(sim.time)
    behavior.step()
    diagnostics = behavior.get_diagnostics()
    assert diagnostics["drive_error"] == pytest.approx(1.0)
    assert 2.0 <= diagnostics["setpoint_x"] <= 3.0


def test_holonomic_controller_feedforward_only_on_setpoint():
    controller = HolonomicDriveController(PIDController(1.0), PIDController(1.0), PIDController(1.0))
    state = TrajectoryState(0.5, Pose2d.from_xy_theta(1.0, 1.0, math.pi / 2), 2.0, 0.0, 0.0)
    rotation = RotationState(0.5, Rotation2d(0.2), 0.3)

    speeds = controller.calculate(Pose2d.from_xy_theta(1.0, 1.0, 0.2), state, rotation)
    assert speeds.vx == pytest.approx(0.0, abs=1e-12)
    assert speeds.vy == pytest.approx(2.0)
    assert speeds.omega == pytest.approx(0.3)


def test_holonomic_controller_feedback_corrects_error():
    controller = HolonomicDriveController(PIDController(2.0), PIDController(2.0), PIDController(1.0))
    state = TrajectoryState(0.0, Pose2d.from_xy_theta(1.0, 1.0, 0.0), 0.0, 0.0, 0.0)
    rotation = RotationState(0.0, Rotation2d(0.0), 0.0)

    speeds = controller.calculate(Pose2d.from_xy_theta(0.9, 1.2, 0.1), state, rotation)
    assert speeds.vx == pytest.approx(0.2)
    assert speeds.vy == pytest.approx(-0.4)
    assert speeds.omega == pytest.approx(-0.1)
    x_err, y_err, theta_err = controller.get_errors()
    assert x_err == pytest.approx(0.1)
    assert y_err == pytest.approx(-0.2)
    assert theta_err == pytest.approx(-0.1)


def test_trajectory_follower_tracks_path(sim, sim_drive):
    plan = generate_path(
        [
            Waypoint(Translation2d(2.0, 2.0), Rotation2d()),
            Waypoint(Translation2d(4.0, 3.0)),
            Waypoint(Translation2d(5.0, 2.0), Rotation2d.from_degrees(90.0)),
        ]
    )
    follower = TrajectoryFollower(
        sim_drive, plan.trajectory, plan.rotation_sequence, clock=sim.clock
    )

    max_time = plan.trajectory.total_time + 3.0
    assert run_cycles(sim, sim_drive, follower, max_time=max_time)
    assert follower.elapsed() >= plan.trajectory.total_time
    distance, theta = pose_error(sim.pose, Pose2d.from_xy_theta(5.0, 2.0, math.radians(90.0)))
    assert distance < TrajectoryFollowerConfig().finish_position_tolerance
    assert theta < TrajectoryFollowerConfig().finish_theta_tolerance


def test_trajectory_follower_holds_heading_without_rotation_sequence(sim, sim_drive):
    plan = generate_path([Waypoint(Translation2d(2.0, 2.0)), Waypoint(Translation2d(3.5, 2.5))])
    follower = TrajectoryFollower(sim_drive, plan.trajectory, RotationSequence(), clock=sim.clock)

    assert run_cycles(sim, sim_drive, follower, max_time=plan.trajectory.total_time + 3.0)
    assert abs(sim.pose.theta) < math.radians(2.0)


def test_trajectory_follower_waits_for_convergence_after_time_runs_out(sim_drive, clock):
    plan = generate_path(
        [
            Waypoint(Translation2d(2.0, 2.0), Rotation2d()),
            Waypoint(Translation2d(4.0, 2.5), Rotation2d.from_degrees(45.0)),
        ]
    )
    follower = TrajectoryFollower(
        sim_drive, plan.trajectory, plan.rotation_sequence, clock=clock
    )
    follower.start()
    clock.advance(plan.trajectory.total_time + 1.0)

    sim_drive.set_pose(Pose2d.from_xy_theta(3.0, 2.0, 0.0))
    assert not follower.is_done()

    # Position converged but heading still off
    sim_drive.set_pose(Pose2d.from_xy_theta(4.0, 2.5, 0.0))
    assert not follower.is_done()

    sim_drive.set_pose(Pose2d.from_xy_theta(4.01, 2.5, math.radians(45.5)))
    assert follower.is_done()


def test_trajectory_follower_not_done_before_total_time(sim_drive, clock):
    plan = generate_path([Waypoint(Translation2d(2.0, 2.0)), Waypoint(Translation2d(3.5, 2.0))])
    follower = TrajectoryFollower(sim_drive, plan.trajectory, clock=clock)
    follower.start()
    sim_drive.set_pose(Pose2d.from_xy_theta(3.5, 2.0, 0.0))
    clock.advance(plan.trajectory.total_time / 2)
    assert not follower.is_done()


def test_invalid_trajectory_finishes_without_moving(sim, sim_drive, caplog):
    trajectory = Trajectory([TrajectoryState(0.0, Pose2d.from_xy_theta(2.0, 2.0, 0.0), 0.0, 0.0, 0.0)])
    follower = TrajectoryFollower(sim_drive, trajectory, clock=sim.clock)

    follower.start()
    follower.step()
    assert follower.is_done()
    assert sim_drive.setpoint.vx == 0.0
    assert sim_drive.setpoint.vy == 0.0
    assert "invalid" in caplog.text


def test_follower_diagnostics_before_start(sim_drive):
    trajectory = Trajectory([TrajectoryState(0.0, Pose2d(), 0.0, 0.0, 0.0)])
    diagnostics = TrajectoryFollower(sim_drive, trajectory).get_diagnostics()
    assert diagnostics["elapsed"] == 0.0
    assert diagnostics["setpoint_x"] == 0.0


def test_behavior_for_plan_picks_behavior(sim, sim_drive):
    start = Translation2d(2.0, 2.0)
    direct = generate_path([Waypoint(start, Rotation2d()), Waypoint(Translation2d(2.2, 2.0), Rotation2d())])
    loose = generate_path([Waypoint(start), Waypoint(Translation2d(2.2, 2.0))])
    long = generate_path([Waypoint(start), Waypoint(Translation2d(4.0, 2.0))])

    held = behavior_for_plan(direct, sim_drive, DriveToPoseConfig.slow())
    assert isinstance(held, DriveToPose)
    assert held.check_theta
    assert held.config == DriveToPoseConfig.slow()

    ignored = behavior_for_plan(loose, sim_drive)
    assert isinstance(ignored, DriveToPose)
    assert not ignored.check_theta

    follower = behavior_for_plan(long, sim_drive, clock=sim.clock)
    assert isinstance(follower, TrajectoryFollower)
    assert follower.trajectory is long.trajectory


def test_scheduler_switch_stops_previous():
    scheduler = MotionScheduler()
    first, second = RecordingBehavior(), RecordingBehavior()

    assert scheduler.is_idle
    scheduler.switch_to(first)
    scheduler.switch_to(second)
    assert first.calls == ["start", "stop"]
    assert second.calls == ["start"]
    assert scheduler.active is second


def test_scheduler_step_finishes_behavior():
    scheduler = MotionScheduler()
    behavior = RecordingBehavior(finish_after=2)
    scheduler.switch_to(behavior)

    assert scheduler.step() is False
    assert scheduler.step() is True
    assert behavior.calls == ["start", "step", "step", "stop"]
    assert scheduler.is_idle
    assert scheduler.step() is False


def test_scheduler_cancel():
    scheduler = MotionScheduler()
    behavior = RecordingBehavior()
    scheduler.switch_to(behavior)
    scheduler.cancel()
    assert behavior.calls == ["start", "stop"]
    assert scheduler.is_idle
