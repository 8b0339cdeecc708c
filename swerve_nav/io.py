"""Device IO capability interfaces.

Every hardware device the drive talks to is reached through one of these
interfaces so the same control stack runs against real hardware, the
simulator, or nothing at all. Each interface has an explicit "null" variant
that reports a disconnected device instead of relying on no-op defaults.
"""

import collections
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Deque, List, Tuple

from .geometry import Rotation2d
from .model import ModulePosition, ModuleState


@dataclass
class GyroInputs:
    """Latest gyro sample."""

    connected: bool = False
    yaw: Rotation2d = Rotation2d()
    pitch: Rotation2d = Rotation2d()
    roll: Rotation2d = Rotation2d()
    yaw_velocity: float = 0.0
    """Yaw rate (rad/s)."""


@dataclass
class ModuleInputs:
    """Latest sample of one swerve module."""

    connected: bool = False
    drive_position_rad: float = 0.0
    """Cumulative wheel rotation (radians)."""
    drive_distance: float = 0.0
    """Cumulative wheel travel (meters)."""
    drive_velocity: float = 0.0
    """Wheel linear speed (m/s)."""
    steer_angle: Rotation2d = Rotation2d()

    @property
    def position(self) -> ModulePosition:
        return ModulePosition(self.steer_angle, self.drive_distance)

    @property
    def state(self) -> ModuleState:
        return ModuleState(self.steer_angle, self.drive_velocity)


@dataclass(frozen=True)
class VisionFrame:
    """One raw camera record: capture time in microseconds plus the flat value array."""

    timestamp_us: int
    values: Tuple[float, ...]


@dataclass
class VisionInputs:
    """Frames a camera produced since the previous update."""

    connected: bool = False
    frames: List[VisionFrame] = field(default_factory=list)


class GyroIO(ABC):
    @abstractmethod
    def update_inputs(self) -> GyroInputs:
        """Read the gyro."""


class ModuleIO(ABC):
    @abstractmethod
    def update_inputs(self) -> ModuleInputs:
        """Read the module sensors."""

    @abstractmethod
    def set_desired_state(self, state: ModuleState) -> None:
        """Command a wheel heading and speed."""


class VisionIO(ABC):
    @abstractmethod
    def update_inputs(self) -> VisionInputs:
        """Drain the frames received since the last call. Never blocks."""


class NullGyroIO(GyroIO):
    """A gyro that is not installed."""

    def update_inputs(self) -> GyroInputs:
        return GyroInputs(connected=False)


class NullModuleIO(ModuleIO):
    """A module that is not installed; commands are discarded."""

    def update_inputs(self) -> ModuleInputs:
        return ModuleInputs(connected=False)

    def set_desired_state(self, state: ModuleState) -> None:
        pass


class NullVisionIO(VisionIO):
    """A camera that is not installed."""

    def update_inputs(self) -> VisionInputs:
        return VisionInputs(connected=False)


class QueuedVisionIO(VisionIO):
    """Camera fed from outside the control loop.

    A transport (e.g. the websocket client) calls :meth:`push` whenever a
    frame arrives; the control loop drains the queue once per cycle.
    """

    def __init__(self, maxlen: int = 50):
        """
        Args:
            maxlen: Frames kept while the loop is not draining. Oldest frames
                are discarded first.
        """
        self.queue: Deque[VisionFrame] = collections.deque(maxlen=maxlen)
        self.connected = False

    def push(self, timestamp_us: int, values) -> None:
        self.queue.append(VisionFrame(int(timestamp_us), tuple(float(v) for v in values)))

    def update_inputs(self) -> VisionInputs:
        frames = list(self.queue)
        self.queue.clear()
        return VisionInputs(connected=self.connected, frames=frames)
