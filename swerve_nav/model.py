"""
Swerve drive kinematic model.

This module provides the forward and inverse kinematics for a four-module
swerve drive, converting chassis velocities into per-module wheel states and
per-module wheel motion back into a chassis twist.

For module i mounted at (x_i, y_i) relative to the robot center, the wheel
velocity vector for a chassis velocity (vx, vy, omega) is:
    v_ix = vx - omega * y_i
    v_iy = vy + omega * x_i

Stacking all modules gives an overdetermined linear system; the forward
direction (wheels -> chassis) is solved in the least-squares sense with the
Moore-Penrose pseudo-inverse.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .geometry import Pose2d, Rotation2d, Translation2d, Twist2d

# Speeds below this are treated as "not moving" when choosing a wheel angle
MIN_MODULE_SPEED = 1e-6


@dataclass(frozen=True)
class ChassisSpeeds:
    """Chassis velocity (m/s, m/s, rad/s).

    Robot-relative unless stated otherwise by the producing API.
    """

    vx: float = 0.0
    vy: float = 0.0
    omega: float = 0.0

    @classmethod
    def from_field_relative(
        cls, vx: float, vy: float, omega: float, robot_angle: Rotation2d
    ) -> "ChassisSpeeds":
        """Convert field-relative speeds into the robot frame."""
        rotated = Translation2d(vx, vy).rotate_by(-robot_angle)
        return cls(rotated.x, rotated.y, omega)

    def to_field_relative(self, robot_angle: Rotation2d) -> "ChassisSpeeds":
        """Convert robot-relative speeds into the field frame."""
        rotated = Translation2d(self.vx, self.vy).rotate_by(robot_angle)
        return ChassisSpeeds(rotated.x, rotated.y, self.omega)

    def discretize(self, dt: float) -> "ChassisSpeeds":
        """Correct for the arc travelled while translating and rotating over ``dt``.

        Commanding (vx, vy, omega) for one period produces a curved path; this
        returns the speeds whose constant-curvature arc ends at the pose the
        straight-line command intended.
        """
        if dt <= 0.0:
            raise ValueError(f"Discretization period must be positive, got {dt}")
        desired = Pose2d.from_xy_theta(self.vx * dt, self.vy * dt, self.omega * dt)
        twist = Pose2d().log(desired)
        return ChassisSpeeds(twist.dx / dt, twist.dy / dt, twist.dtheta / dt)


@dataclass(frozen=True)
class ModuleState:
    """Wheel heading (rad) and linear wheel speed (m/s) of one module."""

    angle: Rotation2d = Rotation2d()
    speed: float = 0.0

    def optimize(self, current_angle: Rotation2d) -> "ModuleState":
        """Flip direction instead of steering more than 90 degrees."""
        delta = self.angle - current_angle
        if abs(delta.radians) > math.pi / 2.0:
            return ModuleState(self.angle + Rotation2d(math.pi), -self.speed)
        return self


@dataclass(frozen=True)
class ModulePosition:
    """Wheel heading (rad) and cumulative wheel distance (m) of one module."""

    angle: Rotation2d = Rotation2d()
    distance: float = 0.0


class SwerveKinematics:
    """Kinematics for a swerve drive with an arbitrary number of modules."""

    def __init__(self, module_translations: Sequence[Translation2d]) -> None:
        """Initialize the kinematics.

        Args:
            module_translations: Module positions relative to the robot center
                (meters), ordered front-left, front-right, back-left, back-right.

        Raises:
            ValueError: If fewer than two modules are given.
        """
        if len(module_translations) < 2:
            raise ValueError("Swerve kinematics needs at least two modules")

        self.module_translations = list(module_translations)
        self.num_modules = len(self.module_translations)

        # Inverse kinematics matrix (2n x 3): chassis -> module velocity vectors
        self.inverse_matrix = np.zeros((2 * self.num_modules, 3))
        for i, t in enumerate(self.module_translations):
            self.inverse_matrix[2 * i, :] = [1.0, 0.0, -t.y]
            self.inverse_matrix[2 * i + 1, :] = [0.0, 1.0, t.x]

        # Least-squares forward kinematics (3 x 2n)
        self.forward_matrix = np.linalg.pinv(self.inverse_matrix)

        self.last_angles: List[Rotation2d] = [Rotation2d() for _ in range(self.num_modules)]

    def to_module_states(
        self, speeds: ChassisSpeeds, center_of_rotation: Optional[Translation2d] = None
    ) -> List[ModuleState]:
        """Compute the module states that realize a robot-relative chassis speed.

        A module asked for zero speed keeps its previous heading rather than
        snapping back to 0 rad.
        """
        if center_of_rotation is not None and (center_of_rotation.x or center_of_rotation.y):
            matrix = np.zeros_like(self.inverse_matrix)
            for i, t in enumerate(self.module_translations):
                rel = t - center_of_rotation
                matrix[2 * i, :] = [1.0, 0.0, -rel.y]
                matrix[2 * i + 1, :] = [0.0, 1.0, rel.x]
        else:
            matrix = self.inverse_matrix

        module_vectors = matrix @ np.array([speeds.vx, speeds.vy, speeds.omega])

        states = []
        for i in range(self.num_modules):
            vx = float(module_vectors[2 * i])
            vy = float(module_vectors[2 * i + 1])
            speed = math.hypot(vx, vy)
            if speed < MIN_MODULE_SPEED:
                states.append(ModuleState(self.last_angles[i], 0.0))
            else:
                angle = Rotation2d(math.atan2(vy, vx))
                self.last_angles[i] = angle
                states.append(ModuleState(angle, speed))
        return states

    def to_chassis_speeds(self, states: Sequence[ModuleState]) -> ChassisSpeeds:
        """Least-squares chassis speed from measured module states."""
        self._check_count(states)
        vectors = np.zeros(2 * self.num_modules)
        for i, state in enumerate(states):
            vectors[2 * i] = state.speed * state.angle.cos
            vectors[2 * i + 1] = state.speed * state.angle.sin
        vx, vy, omega = self.forward_matrix @ vectors
        return ChassisSpeeds(float(vx), float(vy), float(omega))

    def to_twist(self, wheel_deltas: Sequence[ModulePosition]) -> Twist2d:
        """Least-squares chassis twist from per-module distance deltas.

        Args:
            wheel_deltas: Distance travelled by each wheel this cycle, paired
                with the wheel heading during the cycle.

        Returns:
            Robot-relative twist for the cycle.
        """
        self._check_count(wheel_deltas)
        vectors = np.zeros(2 * self.num_modules)
        for i, delta in enumerate(wheel_deltas):
            vectors[2 * i] = delta.distance * delta.angle.cos
            vectors[2 * i + 1] = delta.distance * delta.angle.sin
        dx, dy, dtheta = self.forward_matrix @ vectors
        return Twist2d(float(dx), float(dy), float(dtheta))

    def _check_count(self, items: Sequence[object]) -> None:
        if len(items) != self.num_modules:
            raise ValueError(
                f"Expected {self.num_modules} module values, got {len(items)}"
            )


def desaturate_wheel_speeds(states: Sequence[ModuleState], max_speed: float) -> List[ModuleState]:
    """
    Scale all module speeds down together so none exceeds ``max_speed``.

    Scaling every module by the same factor keeps the commanded chassis motion
    direction intact, only slower.

    Args:
        states: Module states to limit.
        max_speed: Maximum attainable wheel speed (m/s).

    Returns:
        list[ModuleState]: Limited module states.
    """
    real_max = max((abs(s.speed) for s in states), default=0.0)
    if real_max <= max_speed or real_max == 0.0:
        return list(states)
    factor = max_speed / real_max
    return [ModuleState(s.angle, s.speed * factor) for s in states]
