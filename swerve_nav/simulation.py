"""Simulated swerve hardware for closed-loop testing without a robot.

The simulator keeps a ground-truth pose and provides IO implementations
that the Drive and VisionFilter consume exactly like real devices:
- SimModuleIO: ideal modules that reach their commanded state each period
- SimGyroIO: yaw read straight from the ground-truth pose
- SimCameraIO: renders single-hypothesis tag frames of the true pose,
  with Gaussian position noise and capture latency
"""

import math
from typing import List, Optional, Sequence

import numpy as np

from .config import (
    SIM_CAMERA_LATENCY,
    SIM_CAMERA_MAX_RANGE,
    SIM_CAMERA_NOISE_STD,
    SIM_CAMERA_PERIOD,
    SIM_CAMERA_REPROJECTION_ERROR,
    WHEEL_RADIUS,
    DriveConfig,
    VisionConfig,
)
from .geometry import Pose2d, Pose3d, Rotation2d, Transform3d, Twist2d
from .io import GyroInputs, GyroIO, ModuleInputs, ModuleIO, VisionFrame, VisionInputs, VisionIO
from .model import ModuleState, SwerveKinematics
from .vision import FieldLayout


class SimGyroIO(GyroIO):
    """Gyro reporting the simulator's true heading."""

    def __init__(self):
        self.connected = True
        self.yaw = Rotation2d()
        self.yaw_velocity = 0.0

    def update_inputs(self) -> GyroInputs:
        if not self.connected:
            return GyroInputs(connected=False)
        return GyroInputs(connected=True, yaw=self.yaw, yaw_velocity=self.yaw_velocity)


class SimModuleIO(ModuleIO):
    """Ideal module: steers and spins to the commanded state instantly."""

    def __init__(self):
        self.connected = True
        self.desired = ModuleState()
        self.angle = Rotation2d()
        self.speed = 0.0
        self.distance = 0.0

    def set_desired_state(self, state: ModuleState) -> None:
        self.desired = state

    def advance(self, dt: float) -> None:
        self.angle = self.desired.angle
        self.speed = self.desired.speed
        self.distance += self.speed * dt

    def update_inputs(self) -> ModuleInputs:
        return ModuleInputs(
            connected=self.connected,
            drive_position_rad=self.distance / WHEEL_RADIUS,
            drive_distance=self.distance,
            drive_velocity=self.speed,
            steer_angle=self.angle,
        )


class SimCameraIO(VisionIO):
    """Camera producing tag frames of the simulator's true pose."""

    def __init__(
        self,
        simulator: "RobotSimulator",
        camera_transform: Transform3d,
        layout: FieldLayout,
        rng: np.random.Generator,
        noise_std: float = SIM_CAMERA_NOISE_STD,
        period: float = SIM_CAMERA_PERIOD,
        latency: float = SIM_CAMERA_LATENCY,
        max_range: float = SIM_CAMERA_MAX_RANGE,
    ):
        """Initialize the simulated camera.

        Args:
            simulator: Source of the true pose and simulation time.
            camera_transform: Camera -> robot center transform of this camera.
            layout: Field layout the tags are rendered from.
            rng: Random generator for measurement noise.
            noise_std: Gaussian noise on the camera x/y position (meters).
            period: Time between frames (seconds).
            latency: Capture-to-delivery delay (seconds).
            max_range: Detection range (meters).
        """
        self.simulator = simulator
        self.robot_to_camera = camera_transform.inverse()
        self.layout = layout
        self.rng = rng
        self.noise_std = noise_std
        self.period = period
        self.latency = latency
        self.max_range = max_range

        self.pending: List[VisionFrame] = []
        self.last_capture_time = -math.inf

    def visible_tags(self, camera_pose: Pose3d) -> List[int]:
        """Tag ids within range whose face points towards the camera."""
        visible = []
        for tag_id, tag_pose in sorted(self.layout.tags.items()):
            offset = camera_pose.translation - tag_pose.translation
            if np.linalg.norm(offset) > self.max_range:
                continue
            normal = tag_pose.rotation.to_rotation_matrix()[:, 0]
            if float(np.dot(normal, offset)) <= 0.0:
                continue
            visible.append(tag_id)
        return visible

    def capture(self, capture_time: float, true_pose: Pose2d) -> None:
        """Render a frame of ``true_pose`` if any tag is visible."""
        camera_pose = Pose3d.from_pose2d(true_pose).transform_by(self.robot_to_camera)
        tag_ids = self.visible_tags(camera_pose)
        if not tag_ids:
            return

        noise = self.rng.normal(0.0, self.noise_std, size=2)
        rotation = camera_pose.rotation
        values = [
            1.0,
            SIM_CAMERA_REPROJECTION_ERROR,
            camera_pose.x + float(noise[0]),
            camera_pose.y + float(noise[1]),
            camera_pose.z,
            rotation.w,
            rotation.x,
            rotation.y,
            rotation.z,
        ]
        values.extend(float(tag_id) for tag_id in tag_ids)
        self.pending.append(VisionFrame(int(round(capture_time * 1e6)), tuple(values)))

    def update_inputs(self) -> VisionInputs:
        # Frames become available once their latency has elapsed
        now = self.simulator.time
        ready = [f for f in self.pending if f.timestamp_us / 1e6 + self.latency <= now + 1e-9]
        self.pending = [f for f in self.pending if f not in ready]
        return VisionInputs(connected=True, frames=ready)

    def step(self) -> None:
        now = self.simulator.time
        if now - self.last_capture_time >= self.period - 1e-9:
            self.last_capture_time = now
            self.capture(now, self.simulator.pose)


class RobotSimulator:
    """Ground-truth swerve robot driven by its simulated module IO."""

    def __init__(
        self,
        config: Optional[DriveConfig] = None,
        vision_config: Optional[VisionConfig] = None,
        layout: Optional[FieldLayout] = None,
        initial_pose: Pose2d = Pose2d(),
        seed: Optional[int] = None,
        camera_noise_std: float = SIM_CAMERA_NOISE_STD,
    ):
        """Initialize the simulator.

        Args:
            config: Drive geometry. Defaults to DriveConfig().
            vision_config: Provides the camera transforms. Defaults to VisionConfig().
            layout: Field layout for the cameras. Defaults to the built-in layout.
            initial_pose: True starting pose.
            seed: Seed for the camera noise generator.
            camera_noise_std: Camera x/y noise (meters).
        """
        self.config = config if config is not None else DriveConfig()
        vision_config = vision_config if vision_config is not None else VisionConfig()
        layout = layout if layout is not None else FieldLayout()

        self.kinematics = SwerveKinematics(self.config.module_translations)
        self.gyro = SimGyroIO()
        self.modules = [SimModuleIO() for _ in self.config.module_translations]

        rng = np.random.default_rng(seed)
        self.cameras = [
            SimCameraIO(self, transform, layout, rng, noise_std=camera_noise_std)
            for transform in vision_config.camera_transforms
        ]

        self.time = 0.0
        self.pose = initial_pose
        self.gyro.yaw = initial_pose.rotation

    def clock(self) -> float:
        """Simulation time (seconds); pass as the estimator/follower clock."""
        return self.time

    @property
    def module_ios(self) -> Sequence[SimModuleIO]:
        return self.modules

    def step(self, dt: float) -> None:
        """Advance the world by ``dt`` seconds.

        Modules move with their last commanded state; the true pose follows
        the resulting chassis motion.
        """
        for module in self.modules:
            module.advance(dt)

        speeds = self.kinematics.to_chassis_speeds([ModuleState(m.angle, m.speed) for m in self.modules])
        self.pose = self.pose.exp(Twist2d(speeds.vx * dt, speeds.vy * dt, speeds.omega * dt))
        self.gyro.yaw = self.pose.rotation
        self.gyro.yaw_velocity = speeds.omega
        self.time += dt

        for camera in self.cameras:
            camera.step()
