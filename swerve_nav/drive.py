"""Swerve drivetrain: sensor IO, odometry, pose estimation and command output.

The Drive owns its gyro and module IO, the odometry integrator and the pose
estimator. Motion behaviors talk to it through a small surface:
get_pose(), run_velocity() with field-relative speeds, and stop().
"""

import logging
from typing import Dict, List, Optional, Sequence

from .config import DriveConfig
from .geometry import Pose2d, Twist2d
from .io import GyroInputs, GyroIO, ModuleInputs, ModuleIO
from .localizer import PoseEstimator, VisionObservation
from .model import ChassisSpeeds, ModuleState, SwerveKinematics, desaturate_wheel_speeds
from .odometry import OdometryIntegrator

logger = logging.getLogger(__name__)


class Drive:
    """Four-module swerve drive with an odometry + vision pose estimate."""

    def __init__(
        self,
        gyro_io: GyroIO,
        module_ios: Sequence[ModuleIO],
        estimator: PoseEstimator,
        config: Optional[DriveConfig] = None,
    ):
        """Initialize the drive.

        Args:
            gyro_io: Gyro device (real, simulated or null).
            module_ios: One IO per module, in the order of the configured
                module translations.
            estimator: Pose estimator fed by this drive's odometry.
            config: Geometry and limits. Defaults to DriveConfig().

        Raises:
            ValueError: If the module IO count does not match the geometry.
        """
        self.config = config if config is not None else DriveConfig()
        if len(module_ios) != len(self.config.module_translations):
            raise ValueError(
                f"Got {len(module_ios)} module IOs for "
                f"{len(self.config.module_translations)} module translations"
            )

        self.gyro_io = gyro_io
        self.module_ios = list(module_ios)
        self.estimator = estimator
        self.kinematics = SwerveKinematics(self.config.module_translations)
        self.odometry = OdometryIntegrator(self.kinematics)

        self.gyro_inputs = GyroInputs()
        self.module_inputs: List[ModuleInputs] = [ModuleInputs() for _ in self.module_ios]

        # Field-relative command, applied on the next periodic()
        self.setpoint = ChassisSpeeds()
        self.last_setpoint_states: List[ModuleState] = [ModuleState() for _ in self.module_ios]
        self.field_velocity = ChassisSpeeds()
        self.last_twist = Twist2d()
        self.gyro_connected = False

    def periodic(self, timestamp: float) -> None:
        """Run one control cycle: read sensors, command modules, integrate odometry.

        Args:
            timestamp: Cycle time (seconds) on the estimator's clock.
        """
        self.gyro_inputs = self.gyro_io.update_inputs()
        self.module_inputs = [io.update_inputs() for io in self.module_ios]

        # Command modules with the latest field-relative setpoint
        robot_speeds = ChassisSpeeds.from_field_relative(
            self.setpoint.vx, self.setpoint.vy, self.setpoint.omega, self.get_pose().rotation
        )
        adjusted = robot_speeds.discretize(self.config.loop_period)
        states = desaturate_wheel_speeds(
            self.kinematics.to_module_states(adjusted), self.config.max_linear_speed
        )
        self.last_setpoint_states = states
        for io, inputs, state in zip(self.module_ios, self.module_inputs, states):
            io.set_desired_state(state.optimize(inputs.steer_angle))

        # Odometry
        result = self.odometry.update(
            [inputs.position for inputs in self.module_inputs],
            self.gyro_inputs.yaw,
            self.gyro_inputs.connected,
        )
        self.gyro_connected = result.gyro_connected
        self.last_twist = result.twist
        self.estimator.add_drive_data(timestamp, result.twist)

        # Field velocity from measured module states
        measured = self.kinematics.to_chassis_speeds([inputs.state for inputs in self.module_inputs])
        field = measured.to_field_relative(self.get_pose().rotation)
        omega = self.gyro_inputs.yaw_velocity if self.gyro_inputs.connected else measured.omega
        self.field_velocity = ChassisSpeeds(field.vx, field.vy, omega)

    def run_velocity(self, speeds: ChassisSpeeds) -> None:
        """Set the field-relative chassis velocity applied from the next cycle on."""
        self.setpoint = speeds

    def stop(self) -> None:
        self.run_velocity(ChassisSpeeds())

    def get_pose(self) -> Pose2d:
        return self.estimator.get_latest_pose()

    def set_pose(self, pose: Pose2d) -> None:
        """Reset the pose estimate to a known pose. Odometry deltas are unaffected."""
        self.estimator.reset_pose(pose)

    def add_vision_data(self, observations: Sequence[VisionObservation]) -> None:
        self.estimator.add_vision_data(observations)

    def get_field_velocity(self) -> ChassisSpeeds:
        """Measured field-relative velocity (m/s, m/s, rad/s)."""
        return self.field_velocity

    def get_yaw_velocity(self) -> float:
        return self.gyro_inputs.yaw_velocity

    @property
    def modules_connected(self) -> List[bool]:
        return [inputs.connected for inputs in self.module_inputs]

    def get_diagnostics(self) -> Dict[str, float]:
        """Get drivetrain diagnostic information for telemetry.

        Returns:
            Dictionary containing the commanded and measured field velocity
            and device connectivity flags.
        """
        diagnostics = {
            "cmd_vx": self.setpoint.vx,
            "cmd_vy": self.setpoint.vy,
            "cmd_omega": self.setpoint.omega,
            "meas_vx": self.field_velocity.vx,
            "meas_vy": self.field_velocity.vy,
            "meas_omega": self.field_velocity.omega,
            "gyro_connected": self.gyro_connected,
        }
        for i, connected in enumerate(self.modules_connected):
            diagnostics[f"module{i}_connected"] = connected
        return diagnostics
