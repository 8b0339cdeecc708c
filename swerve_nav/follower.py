"""Motion behaviors for the swerve drive.

This module implements the closed-loop behaviors that consume the pose
estimate and command field-relative chassis velocities:
- DriveToPose: point stabilization with profiled PID on distance and heading
- TrajectoryFollower: trajectory tracking with feedforward from the path plus
  independent PID feedback on x, y and heading
- MotionScheduler: owns the single active behavior

Every behavior implements the same small lifecycle: start() once, step()
every control period, is_done() to poll for completion, and stop() on
completion or interruption, which always commands the chassis to stop.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple, Union

from .config import (
    DRIVE_TO_POSE_DRIVE_TOLERANCE,
    DRIVE_TO_POSE_THETA_TOLERANCE,
    DriveToPoseConfig,
    TrajectoryFollowerConfig,
)
from .drive import Drive
from .geometry import Pose2d, Rotation2d, Transform2d, Translation2d
from .model import ChassisSpeeds
from .motor_controller import PIDController, ProfileConstraints, ProfiledPIDController
from .path import PathPlan, RotationSequence, RotationState, Trajectory, TrajectoryState

logger = logging.getLogger(__name__)

PoseSource = Union[Pose2d, Callable[[], Pose2d]]


class MotionBehavior(ABC):
    """A unit of closed-loop motion owned by the MotionScheduler."""

    @abstractmethod
    def start(self) -> None:
        """Prepare to run; called once before the first step()."""

    @abstractmethod
    def step(self) -> None:
        """Run one control period."""

    @abstractmethod
    def is_done(self) -> bool:
        """Whether the behavior has finished."""

    @abstractmethod
    def stop(self) -> None:
        """Finish or abort; commands the chassis to stop."""


class DriveToPose(MotionBehavior):
    """Drive to a fixed or moving goal pose with profiled PID control.

    The distance controller works on the scalar distance to the goal and is
    re-anchored every cycle to the distance from its last setpoint, so a goal
    that moves mid-flight does not cause a profile discontinuity. The
    heading controller uses continuous input over (-pi, pi].
    """

    def __init__(
        self,
        drive: Drive,
        goal: PoseSource,
        config: Optional[DriveToPoseConfig] = None,
        enable_driving: bool = True,
        check_theta: bool = True,
    ):
        """Initialize the behavior.

        Args:
            drive: Drive to read the pose from and command.
            goal: Goal pose, or a callable returning the current goal.
            config: Gains, limits and tolerances. Defaults to DriveToPoseConfig().
            enable_driving: If False, only the heading is controlled.
            check_theta: If False, the heading is held where it was at start
                and does not gate completion.
        """
        self.drive = drive
        self.goal_source: Callable[[], Pose2d] = goal if callable(goal) else (lambda: goal)
        self.config = config if config is not None else DriveToPoseConfig()
        self.enable_driving = enable_driving
        self.check_theta = check_theta

        cfg = self.config
        self.drive_controller = ProfiledPIDController(
            cfg.drive_kp,
            0.0,
            cfg.drive_kd,
            ProfileConstraints(cfg.max_velocity, cfg.max_acceleration),
            cfg.period,
        )
        self.drive_controller.set_tolerance(cfg.drive_tolerance)
        self.theta_controller = ProfiledPIDController(
            cfg.theta_kp,
            0.0,
            cfg.theta_kd,
            ProfileConstraints(cfg.max_angular_velocity, cfg.max_angular_acceleration),
            cfg.period,
        )
        self.theta_controller.set_tolerance(cfg.theta_tolerance)
        self.theta_controller.enable_continuous_input(-math.pi, math.pi)

        self.running = False
        self.held_rotation: Optional[Rotation2d] = None
        self.last_setpoint_translation = Translation2d()
        self.drive_error_abs = math.inf
        self.theta_error_abs = math.inf

    @classmethod
    def without_driving(
        cls, drive: Drive, goal: PoseSource, config: Optional[DriveToPoseConfig] = None
    ) -> "DriveToPose":
        """Turn in place to the goal heading."""
        return cls(drive, goal, config, enable_driving=False)

    @classmethod
    def ignore_heading(
        cls, drive: Drive, goal: PoseSource, config: Optional[DriveToPoseConfig] = None
    ) -> "DriveToPose":
        """Drive to the goal translation, keeping the current heading."""
        return cls(drive, goal, config, check_theta=False)

    def _target(self, current: Pose2d) -> Pose2d:
        goal = self.goal_source()
        rotation = goal.rotation if self.held_rotation is None else self.held_rotation
        if not self.enable_driving:
            return Pose2d(current.translation, rotation)
        return Pose2d(goal.translation, rotation)

    def start(self) -> None:
        current = self.drive.get_pose()
        self.held_rotation = None if self.check_theta else current.rotation
        goal = self.goal_source()
        velocity = self.drive.get_field_velocity()

        # Rate of change of the distance to the goal; only approach counts
        toward_goal = Translation2d(velocity.vx, velocity.vy).rotate_by(
            -(goal.translation - current.translation).angle
        )
        self.drive_controller.reset(
            current.translation.distance(goal.translation), min(0.0, -toward_goal.x)
        )
        self.theta_controller.reset(current.theta, self.drive.get_yaw_velocity())
        self.last_setpoint_translation = current.translation
        self.running = False
        self.drive_error_abs = math.inf
        self.theta_error_abs = math.inf

    def step(self) -> None:
        self.running = True

        current = self.drive.get_pose()
        target = self._target(current)

        # Drive speed along the line to the goal
        current_distance = current.translation.distance(self.goal_source().translation)
        ff_scalar = min(
            max(
                (current_distance - self.config.ff_min_radius)
                / (self.config.ff_max_radius - self.config.ff_min_radius),
                0.0,
            ),
            1.0,
        )
        self.drive_error_abs = current_distance
        self.drive_controller.reset(
            self.last_setpoint_translation.distance(target.translation),
            self.drive_controller.setpoint.velocity,
        )
        drive_velocity_scalar = self.drive_controller.setpoint.velocity * ff_scalar + (
            self.drive_controller.calculate(self.drive_error_abs, 0.0)
        )
        if current_distance < self.drive_controller.position_tolerance:
            drive_velocity_scalar = 0.0

        away_from_target = (current.translation - target.translation).angle
        self.last_setpoint_translation = (
            Pose2d(target.translation, away_from_target)
            .transform_by(Transform2d.from_translation(self.drive_controller.setpoint.position, 0.0))
            .translation
        )

        # Heading speed
        theta_velocity = self.theta_controller.setpoint.velocity * ff_scalar + (
            self.theta_controller.calculate(current.theta, target.theta)
        )
        self.theta_error_abs = abs((current.rotation - target.rotation).radians)
        if self.theta_error_abs < self.theta_controller.position_tolerance:
            theta_velocity = 0.0

        drive_velocity = Translation2d.from_polar(drive_velocity_scalar, away_from_target)
        if not self.enable_driving:
            drive_velocity = Translation2d()
        self.drive.run_velocity(ChassisSpeeds(drive_velocity.x, drive_velocity.y, theta_velocity))

    def is_done(self) -> bool:
        """Stopped at the goal, or close enough under the fixed tolerances."""
        done = self.running
        if self.enable_driving:
            done = done and self.drive_controller.at_goal()
        if self.check_theta:
            done = done and self.theta_controller.at_goal()
        return done or self.within_tolerance(
            DRIVE_TO_POSE_DRIVE_TOLERANCE, DRIVE_TO_POSE_THETA_TOLERANCE
        )

    def within_tolerance(self, drive_tolerance: float, theta_tolerance: float) -> bool:
        return (
            self.running
            and abs(self.drive_error_abs) < drive_tolerance
            and abs(self.theta_error_abs) < theta_tolerance
        )

    def stop(self) -> None:
        self.running = False
        self.drive.stop()

    def get_diagnostics(self) -> Dict[str, float]:
        """Get controller errors and setpoints for telemetry.

        Returns:
            Dictionary containing the distance and heading errors and the
            profiled setpoint pose.
        """
        return {
            "drive_error": self.drive_error_abs,
            "theta_error": self.theta_error_abs,
            "setpoint_x": self.last_setpoint_translation.x,
            "setpoint_y": self.last_setpoint_translation.y,
            "setpoint_theta": self.theta_controller.setpoint.position,
        }


class HolonomicDriveController:
    """Feedforward from the trajectory plus independent x, y and heading PID."""

    def __init__(
        self,
        x_controller: PIDController,
        y_controller: PIDController,
        theta_controller: PIDController,
    ):
        self.x_controller = x_controller
        self.y_controller = y_controller
        self.theta_controller = theta_controller
        self.theta_controller.enable_continuous_input(-math.pi, math.pi)

        self.translation_error = Translation2d()
        self.rotation_error = Rotation2d()

    def calculate(
        self, current: Pose2d, drive_state: TrajectoryState, rotation_state: RotationState
    ) -> ChassisSpeeds:
        """Field-relative chassis speeds that track the sampled setpoint.

        Args:
            current: Estimated robot pose.
            drive_state: Translational setpoint; its rotation is the direction of travel.
            rotation_state: Holonomic heading setpoint.

        Returns:
            ChassisSpeeds: Field-relative command.
        """
        x_ff = drive_state.velocity * drive_state.pose.rotation.cos
        y_ff = drive_state.velocity * drive_state.pose.rotation.sin
        theta_ff = rotation_state.velocity

        self.translation_error = drive_state.pose.translation - current.translation
        self.rotation_error = rotation_state.rotation - current.rotation

        x_feedback = self.x_controller.calculate(current.x, drive_state.pose.x)
        y_feedback = self.y_controller.calculate(current.y, drive_state.pose.y)
        theta_feedback = self.theta_controller.calculate(
            current.theta, rotation_state.rotation.radians
        )
        return ChassisSpeeds(x_ff + x_feedback, y_ff + y_feedback, theta_ff + theta_feedback)

    def reset(self) -> None:
        self.x_controller.reset()
        self.y_controller.reset()
        self.theta_controller.reset()

    def get_errors(self) -> Tuple[float, float, float]:
        return (self.translation_error.x, self.translation_error.y, self.rotation_error.radians)


class TrajectoryFollower(MotionBehavior):
    """Track a generated trajectory and its holonomic rotation sequence."""

    def __init__(
        self,
        drive: Drive,
        trajectory: Trajectory,
        rotation_sequence: Optional[RotationSequence] = None,
        config: Optional[TrajectoryFollowerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the follower.

        Args:
            drive: Drive to read the pose from and command.
            trajectory: Translational trajectory. A single-state (invalid)
                trajectory finishes immediately without commanding motion.
            rotation_sequence: Holonomic heading over time. If empty, the
                heading at start() is held.
            config: Gains and finish tolerances. Defaults to TrajectoryFollowerConfig().
            clock: Time source for elapsed trajectory time (seconds).
        """
        self.drive = drive
        self.trajectory = trajectory
        self.rotation_sequence = rotation_sequence if rotation_sequence is not None else RotationSequence()
        self.config = config if config is not None else TrajectoryFollowerConfig()
        self.clock = clock

        cfg = self.config
        self.controller = HolonomicDriveController(
            PIDController(cfg.x_kp, 0.0, 0.0, cfg.period),
            PIDController(cfg.y_kp, 0.0, 0.0, cfg.period),
            PIDController(cfg.theta_kp, 0.0, 0.0, cfg.period),
        )
        self.start_time: Optional[float] = None
        self.held_rotation = Rotation2d()
        self.last_setpoint: Optional[Pose2d] = None

    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return self.clock() - self.start_time

    def _rotation_at(self, t: float) -> RotationState:
        if self.rotation_sequence.is_empty():
            return RotationState(t, self.held_rotation, 0.0)
        return self.rotation_sequence.sample(t)

    def start(self) -> None:
        self.start_time = self.clock()
        self.held_rotation = self.drive.get_pose().rotation
        self.controller.reset()
        if not self.trajectory.is_valid():
            logger.warning("Trajectory is invalid, nothing to follow")

    def step(self) -> None:
        if not self.trajectory.is_valid():
            return

        t = self.elapsed()
        drive_state = self.trajectory.sample(t)
        rotation_state = self._rotation_at(t)
        self.last_setpoint = Pose2d(drive_state.pose.translation, rotation_state.rotation)

        speeds = self.controller.calculate(self.drive.get_pose(), drive_state, rotation_state)
        self.drive.run_velocity(speeds)

    def is_done(self) -> bool:
        """Timed out and converged on the final state, or nothing to follow."""
        if not self.trajectory.is_valid():
            return True
        total = self.trajectory.total_time
        if self.elapsed() < total:
            return False

        current = self.drive.get_pose()
        final_translation = self.trajectory.states[-1].pose.translation
        final_rotation = self._rotation_at(total).rotation
        position_error = current.translation.distance(final_translation)
        theta_error = abs((current.rotation - final_rotation).radians)
        return (
            position_error < self.config.finish_position_tolerance
            and theta_error < self.config.finish_theta_tolerance
        )

    def stop(self) -> None:
        self.drive.stop()

    def get_diagnostics(self) -> Dict[str, float]:
        """Get tracking errors and the current setpoint for telemetry.

        Returns:
            Dictionary containing elapsed time, x/y/theta tracking errors and
            the sampled setpoint pose.
        """
        x_err, y_err, theta_err = self.controller.get_errors()
        setpoint = self.last_setpoint if self.last_setpoint is not None else Pose2d()
        return {
            "elapsed": self.elapsed(),
            "x_error": x_err,
            "y_error": y_err,
            "theta_error": theta_err,
            "setpoint_x": setpoint.x,
            "setpoint_y": setpoint.y,
            "setpoint_theta": setpoint.theta,
        }


def behavior_for_plan(
    plan: PathPlan,
    drive: Drive,
    drive_to_pose_config: Optional[DriveToPoseConfig] = None,
    follower_config: Optional[TrajectoryFollowerConfig] = None,
    clock: Callable[[], float] = time.monotonic,
) -> MotionBehavior:
    """Build the behavior that executes a path plan.

    Args:
        plan: Output of path.generate_path().
        drive: Drive the behavior commands.
        drive_to_pose_config: Config for direct (point stabilization) plans.
        follower_config: Config for trajectory plans.
        clock: Time source for trajectory following.

    Returns:
        MotionBehavior: DriveToPose for direct plans, TrajectoryFollower otherwise.
    """
    if plan.is_direct:
        if plan.hold_heading:
            return DriveToPose(drive, plan.goal, drive_to_pose_config)
        return DriveToPose.ignore_heading(drive, plan.goal, drive_to_pose_config)
    return TrajectoryFollower(drive, plan.trajectory, plan.rotation_sequence, follower_config, clock)


class MotionScheduler:
    """Owns the single active motion behavior and runs it each cycle."""

    def __init__(self):
        self.active: Optional[MotionBehavior] = None

    @property
    def is_idle(self) -> bool:
        return self.active is None

    def switch_to(self, behavior: Optional[MotionBehavior]) -> None:
        """Stop the active behavior (if any) and start ``behavior``."""
        if self.active is not None:
            self.active.stop()
        self.active = behavior
        if behavior is not None:
            logger.debug(f"Starting {type(behavior).__name__}")
            behavior.start()

    def cancel(self) -> None:
        self.switch_to(None)

    def step(self) -> bool:
        """Run the active behavior for one cycle.

        Returns:
            True if the active behavior finished during this cycle.
        """
        if self.active is None:
            return False
        self.active.step()
        if self.active.is_done():
            logger.info(f"{type(self.active).__name__} finished")
            self.active.stop()
            self.active = None
            return True
        return False
