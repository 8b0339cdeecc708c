"""Configuration parameters for the swerve localization and motion control system.

This module centralizes all configuration parameters including:
- Physical robot and field parameters
- Pose estimator (sensor fusion) parameters
- Vision observation filter parameters
- Trajectory generation limits
- Point stabilization and trajectory tracking gains
- Control loop and camera feed connection parameters

All parameters are documented with their purpose, units, and tuning rationale.
The module-level constants are the defaults; each component receives them
through a frozen configuration dataclass at construction so that two
controllers never share mutable tuning state.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Tuple

from .geometry import Quaternion, Transform3d, Translation2d, inches_to_meters

# ============================================================================
# Physical Robot Parameters
# ============================================================================

ROBOT_WIDTH = inches_to_meters(29.5)
"""Robot frame width including bumpers (meters)."""

ROBOT_LENGTH = inches_to_meters(29.5)
"""Robot frame length including bumpers (meters)."""

MODULE_OFFSET = inches_to_meters(13.0)
"""Distance of each swerve module from the robot center along x and y (meters).
Modules sit on the corners of a square, ordered FL, FR, BL, BR."""

MAX_LINEAR_SPEED = 4.5
"""Maximum attainable wheel speed (m/s). Module states are desaturated to this."""

LOOP_PERIOD = 0.02
"""Fixed control loop period (seconds). 50 Hz."""

WHEEL_RADIUS = inches_to_meters(2.0)
"""Drive wheel radius (meters). Converts wheel distance to wheel rotation."""


# ============================================================================
# Field Parameters
# ============================================================================

FIELD_LENGTH = inches_to_meters(651.25)
"""Field length along x (meters). ~16.54 m."""

FIELD_WIDTH = inches_to_meters(323.25)
"""Field width along y (meters). ~8.21 m."""


# ============================================================================
# Pose Estimator Parameters
# ============================================================================

ESTIMATOR_STATE_STD_DEVS = (0.003, 0.003, 0.0002)
"""Process noise standard deviations for (x, y, theta) (meters, meters, radians).

Squared to form q in the per-axis gain k = q / (q + sqrt(q * r)).

Tuning rationale:
- Small values: wheel odometry on a swerve drive is trusted over short horizons
- Theta is an order of magnitude tighter because the gyro is authoritative
  for rotation
"""

ESTIMATOR_HISTORY_LENGTH = 0.3
"""Pose history retention window (seconds).

Vision frames arriving later than this after capture can no longer be
inserted. 0.3 s covers camera latency plus coprocessor jitter.
"""

ESTIMATOR_ANTI_JITTER_THRESHOLD = inches_to_meters(3.0)
"""Correction distance under which x/y vision corrections are scaled down (meters)."""

ESTIMATOR_ANTI_JITTER_FACTOR = 0.2
"""Scale applied to x/y corrections below the anti-jitter threshold (range: (0, 1]).

Lower values suppress more jitter once the estimate has converged.
"""


# ============================================================================
# Vision Observation Filter Parameters
# ============================================================================

VISION_XY_STD_DEV_COEFFICIENT = 0.01
"""Coefficient for translational std dev: coeff * avg_distance^2 / tag_count.

Smaller values increase the influence of vision on the pose estimate.
"""

VISION_THETA_STD_DEV_COEFFICIENT = 0.02
"""Coefficient for rotational std dev: coeff * avg_distance^2 / tag_count."""

VISION_AMBIGUITY_THRESHOLD = 0.3
"""Ratio a dual-hypothesis frame's winning error must beat the other error by.

Hypothesis 0 wins if error0 < error1 * threshold, hypothesis 1 wins if
error1 < error0 * threshold, otherwise the frame is dropped.
"""

VISION_FIELD_BORDER_MARGIN = 0.5
"""Margin outside the field rectangle within which vision poses are still accepted (meters)."""

VISION_Z_MARGIN = inches_to_meters(20.0)
"""Band around the floor (|z| <= margin) in which vision robot poses are accepted (meters)."""

VISION_TAG_LOG_TIME = 0.1
"""How long a tag is reported as visible after its last detection (seconds)."""

CAMERA_TRANSFORMS: Tuple[Transform3d, ...] = (
    # Inward-facing camera on the back-right module
    Transform3d(
        inches_to_meters(-11.0),
        inches_to_meters(-11.0),
        inches_to_meters(-9.0),
        Quaternion.from_euler(0.0, math.radians(-28.125), math.radians(180.0 + 43.745)),
    ),
    # Center-mounted rear camera
    Transform3d(
        inches_to_meters(-12.5),
        0.0,
        inches_to_meters(-16.0),
        Quaternion.from_euler(0.0, math.radians(-20.0), math.radians(180.0)),
    ),
)
"""Camera -> robot center transforms, one per camera, applied to the camera pose."""

CAMERA_WEIGHTS: Tuple[float, ...] = (0.9, 1.0)
"""Relative trust per camera. Std devs are divided by the weight."""

TAG_WEIGHTS: Dict[int, float] = {
    1: 0.95, 2: 0.95, 3: 1.25, 4: 1.0, 5: 0.9, 6: 0.8, 7: 0.8, 8: 0.8,
    9: 0.95, 10: 0.95, 11: 1.25, 12: 1.0, 13: 0.9, 14: 0.8, 15: 0.8, 16: 0.8,
}
"""Relative trust per tag id. Std devs are divided by the mean weight of the tags seen."""


# ============================================================================
# Trajectory Generation Parameters
# ============================================================================

TRAJECTORY_MAX_VELOCITY = inches_to_meters(160.0)
"""Maximum path velocity (m/s). ~4.06 m/s."""

TRAJECTORY_MAX_ACCELERATION = inches_to_meters(105.0)
"""Maximum path acceleration (m/s^2). ~2.67 m/s^2."""

TRAJECTORY_MAX_CENTRIPETAL_ACCELERATION = inches_to_meters(150.0)
"""Maximum centripetal acceleration (m/s^2). Limits speed through curves."""

TRAJECTORY_DIRECT_PATH_DISTANCE = 0.5
"""Two-waypoint paths shorter than this are driven with point stabilization (meters)."""

TRAJECTORY_MIN_TIME = 1e-3
"""Generated trajectories shorter than this are treated as a generator failure (seconds)."""

TRAJECTORY_SAMPLES_PER_METER = 50
"""Spline sampling density used by the time parameterization."""


# ============================================================================
# Point Stabilization Parameters (DriveToPose)
# ============================================================================

DRIVE_TO_POSE_DRIVE_KP = 2.4
DRIVE_TO_POSE_DRIVE_KD = 0.01
"""Distance-to-goal PID gains."""

DRIVE_TO_POSE_THETA_KP = 4.2
DRIVE_TO_POSE_THETA_KD = 0.05
"""Heading PID gains."""

DRIVE_TO_POSE_MAX_VELOCITY = inches_to_meters(140.0)
DRIVE_TO_POSE_MAX_ACCELERATION = inches_to_meters(90.0)
DRIVE_TO_POSE_SLOW_MAX_VELOCITY = inches_to_meters(50.0)
"""Trapezoid profile limits for the distance controller (m/s, m/s^2)."""

DRIVE_TO_POSE_MAX_ANGULAR_VELOCITY = math.radians(170.0)
DRIVE_TO_POSE_MAX_ANGULAR_ACCELERATION = math.radians(820.0)
DRIVE_TO_POSE_SLOW_MAX_ANGULAR_VELOCITY = math.radians(50.0)
"""Trapezoid profile limits for the heading controller (rad/s, rad/s^2)."""

DRIVE_TO_POSE_DRIVE_TOLERANCE = inches_to_meters(3.0)
DRIVE_TO_POSE_SLOW_DRIVE_TOLERANCE = inches_to_meters(2.0)
"""Position tolerance of the distance controller (meters)."""

DRIVE_TO_POSE_THETA_TOLERANCE = math.radians(1.0)
DRIVE_TO_POSE_SLOW_THETA_TOLERANCE = math.radians(2.0)
"""Position tolerance of the heading controller (radians)."""

DRIVE_TO_POSE_FF_MIN_RADIUS = 0.02
DRIVE_TO_POSE_FF_MAX_RADIUS = 0.06
"""Profile feedforward fades in linearly between these distances from the goal (meters)."""


# ============================================================================
# Trajectory Tracking Parameters
# ============================================================================

TRAJECTORY_X_KP = 2.5
TRAJECTORY_Y_KP = 2.5
TRAJECTORY_THETA_KP = 5.0
"""Independent feedback gains on field x, y and heading."""

TRAJECTORY_FINISH_POSITION_TOLERANCE = inches_to_meters(2.7)
"""Position error below which a timed-out trajectory counts as converged (meters)."""

TRAJECTORY_FINISH_THETA_TOLERANCE = math.radians(2.0)
"""Heading error below which a timed-out trajectory counts as converged (radians)."""


# ============================================================================
# Simulation Parameters
# ============================================================================

SIM_CAMERA_PERIOD = 0.05
"""Time between simulated camera frames (seconds). 20 Hz."""

SIM_CAMERA_LATENCY = 0.04
"""Capture-to-delivery latency of simulated camera frames (seconds)."""

SIM_CAMERA_MAX_RANGE = 5.0
"""Tags farther than this from a simulated camera are not detected (meters)."""

SIM_CAMERA_NOISE_STD = 0.02
"""Standard deviation of Gaussian noise on simulated camera x/y (meters)."""

SIM_CAMERA_REPROJECTION_ERROR = 0.1
"""Reprojection error reported in simulated frames."""


# ============================================================================
# Terminal colors
# ============================================================================

TERM_BLUE = "\033[38;2;35;116;247m"
"""Terminal color code for status lines."""

TERM_ORANGE = "\033[38;2;247;72;35m"
"""Terminal color code for warnings in status lines."""

TERM_RESET = "\033[0m"
"""Terminal color reset code."""


# ============================================================================
# Camera Feed Configuration
# ============================================================================

VISION_WS_URI = "ws://10.41.45.11:5800"
"""WebSocket URI of the vision coprocessor frame stream."""

WS_RETRY_DELAY_SECONDS = 1
"""Initial retry delay for failed WebSocket connections (seconds)."""

WS_MAX_RETRY_DELAY_SECONDS = 60
"""Maximum retry delay with exponential backoff (seconds)."""

WS_TIMEOUT_SECONDS = 5.0
"""Timeout for WebSocket message reception (seconds)."""


# ============================================================================
# Per-component configuration structs
# ============================================================================


def default_module_translations() -> Tuple[Translation2d, ...]:
    return (
        Translation2d(MODULE_OFFSET, MODULE_OFFSET),
        Translation2d(MODULE_OFFSET, -MODULE_OFFSET),
        Translation2d(-MODULE_OFFSET, MODULE_OFFSET),
        Translation2d(-MODULE_OFFSET, -MODULE_OFFSET),
    )


@dataclass(frozen=True)
class DriveConfig:
    """Drivetrain geometry and limits."""

    module_translations: Tuple[Translation2d, ...] = field(
        default_factory=default_module_translations
    )
    max_linear_speed: float = MAX_LINEAR_SPEED
    loop_period: float = LOOP_PERIOD


@dataclass(frozen=True)
class EstimatorConfig:
    """Pose estimator tuning and field bounds."""

    state_std_devs: Tuple[float, float, float] = ESTIMATOR_STATE_STD_DEVS
    history_length: float = ESTIMATOR_HISTORY_LENGTH
    anti_jitter_threshold: float = ESTIMATOR_ANTI_JITTER_THRESHOLD
    anti_jitter_factor: float = ESTIMATOR_ANTI_JITTER_FACTOR
    field_length: float = FIELD_LENGTH
    field_width: float = FIELD_WIDTH
    robot_width: float = ROBOT_WIDTH
    robot_length: float = ROBOT_LENGTH


@dataclass(frozen=True)
class VisionConfig:
    """Vision observation filter tuning."""

    xy_std_dev_coefficient: float = VISION_XY_STD_DEV_COEFFICIENT
    theta_std_dev_coefficient: float = VISION_THETA_STD_DEV_COEFFICIENT
    ambiguity_threshold: float = VISION_AMBIGUITY_THRESHOLD
    field_border_margin: float = VISION_FIELD_BORDER_MARGIN
    z_margin: float = VISION_Z_MARGIN
    tag_log_time: float = VISION_TAG_LOG_TIME
    camera_transforms: Tuple[Transform3d, ...] = CAMERA_TRANSFORMS
    camera_weights: Tuple[float, ...] = CAMERA_WEIGHTS
    tag_weights: Dict[int, float] = field(default_factory=dict)


@dataclass(frozen=True)
class TrajectoryConfig:
    """Trajectory generation limits."""

    max_velocity: float = TRAJECTORY_MAX_VELOCITY
    max_acceleration: float = TRAJECTORY_MAX_ACCELERATION
    max_centripetal_acceleration: float = TRAJECTORY_MAX_CENTRIPETAL_ACCELERATION
    start_velocity: float = 0.0
    end_velocity: float = 0.0
    direct_path_distance: float = TRAJECTORY_DIRECT_PATH_DISTANCE
    min_trajectory_time: float = TRAJECTORY_MIN_TIME
    samples_per_meter: int = TRAJECTORY_SAMPLES_PER_METER


@dataclass(frozen=True)
class DriveToPoseConfig:
    """Point stabilization gains, limits and tolerances."""

    drive_kp: float = DRIVE_TO_POSE_DRIVE_KP
    drive_kd: float = DRIVE_TO_POSE_DRIVE_KD
    theta_kp: float = DRIVE_TO_POSE_THETA_KP
    theta_kd: float = DRIVE_TO_POSE_THETA_KD
    max_velocity: float = DRIVE_TO_POSE_MAX_VELOCITY
    max_acceleration: float = DRIVE_TO_POSE_MAX_ACCELERATION
    max_angular_velocity: float = DRIVE_TO_POSE_MAX_ANGULAR_VELOCITY
    max_angular_acceleration: float = DRIVE_TO_POSE_MAX_ANGULAR_ACCELERATION
    drive_tolerance: float = DRIVE_TO_POSE_DRIVE_TOLERANCE
    theta_tolerance: float = DRIVE_TO_POSE_THETA_TOLERANCE
    ff_min_radius: float = DRIVE_TO_POSE_FF_MIN_RADIUS
    ff_max_radius: float = DRIVE_TO_POSE_FF_MAX_RADIUS
    period: float = LOOP_PERIOD

    @classmethod
    def slow(cls) -> "DriveToPoseConfig":
        """Lower speeds and tighter drive tolerance for precise placement."""
        return cls(
            max_velocity=DRIVE_TO_POSE_SLOW_MAX_VELOCITY,
            max_angular_velocity=DRIVE_TO_POSE_SLOW_MAX_ANGULAR_VELOCITY,
            drive_tolerance=DRIVE_TO_POSE_SLOW_DRIVE_TOLERANCE,
            theta_tolerance=DRIVE_TO_POSE_SLOW_THETA_TOLERANCE,
        )


@dataclass(frozen=True)
class TrajectoryFollowerConfig:
    """Trajectory tracking gains and finish tolerances."""

    x_kp: float = TRAJECTORY_X_KP
    y_kp: float = TRAJECTORY_Y_KP
    theta_kp: float = TRAJECTORY_THETA_KP
    finish_position_tolerance: float = TRAJECTORY_FINISH_POSITION_TOLERANCE
    finish_theta_tolerance: float = TRAJECTORY_FINISH_THETA_TOLERANCE
    period: float = LOOP_PERIOD
