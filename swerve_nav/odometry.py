"""Wheel odometry integration for the swerve drive.

Converts per-cycle changes in cumulative module distance into a chassis twist
using the least-squares swerve kinematics. When the gyro is connected its yaw
delta replaces the kinematic rotation estimate, since wheel-derived rotation
drifts under wheel slip.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .geometry import Rotation2d, Twist2d
from .model import ModulePosition, SwerveKinematics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OdometryResult:
    """Twist for one cycle plus the rotation source used to produce it."""

    twist: Twist2d
    gyro_connected: bool


class OdometryIntegrator:
    """Turns cumulative module positions (and gyro yaw) into per-cycle twists.

    The integrator keeps only the previous sample; it never owns or mutates
    a pose.
    """

    def __init__(self, kinematics: SwerveKinematics):
        self.kinematics = kinematics
        self.last_positions: Optional[List[ModulePosition]] = None
        self.last_gyro_yaw: Optional[Rotation2d] = None
        self.gyro_was_connected = True

    def update(
        self,
        module_positions: Sequence[ModulePosition],
        gyro_yaw: Optional[Rotation2d] = None,
        gyro_connected: bool = False,
    ) -> OdometryResult:
        """Compute the chassis twist since the previous call.

        Args:
            module_positions: Cumulative distance and current steer angle of
                every module, in kinematics order.
            gyro_yaw: Current gyro yaw, or None if no reading is available.
            gyro_connected: Whether the gyro reading can be trusted.

        Returns:
            OdometryResult: Robot-relative twist for the cycle. The first call
            only records the sample and returns a zero twist.
        """
        use_gyro = gyro_connected and gyro_yaw is not None
        if self.gyro_was_connected and not use_gyro:
            logger.warning("Gyro disconnected, falling back to kinematic rotation estimate")
        elif use_gyro and not self.gyro_was_connected:
            logger.info("Gyro reconnected")
        self.gyro_was_connected = use_gyro

        positions = list(module_positions)
        if self.last_positions is None:
            self.last_positions = positions
            self.last_gyro_yaw = gyro_yaw if use_gyro else None
            return OdometryResult(Twist2d(), use_gyro)

        # Distance moved this cycle, along the current wheel heading
        deltas = [
            ModulePosition(current.angle, current.distance - previous.distance)
            for current, previous in zip(positions, self.last_positions)
        ]
        twist = self.kinematics.to_twist(deltas)

        if use_gyro and self.last_gyro_yaw is not None:
            twist = Twist2d(twist.dx, twist.dy, (gyro_yaw - self.last_gyro_yaw).radians)

        self.last_positions = positions
        self.last_gyro_yaw = gyro_yaw if use_gyro else None
        return OdometryResult(twist, use_gyro)

    def reset(self) -> None:
        """Forget the previous sample; the next update returns a zero twist."""
        self.last_positions = None
        self.last_gyro_yaw = None
