"""Localization module for swerve robot pose estimation.

This module fuses high-rate wheel odometry with delayed, noisy vision
observations into a single field pose:
- Odometry twists are stored in a short timestamp-ordered history
- Vision observations are inserted at their capture time, splitting the
  odometry twist that spans that instant
- After every insert the history is replayed from a persistent base pose,
  applying each vision observation with a per-axis steady-state Kalman gain
- Entries older than the retention window are folded into the base pose
"""

import bisect
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import EstimatorConfig
from .geometry import Pose2d, Translation2d, Twist2d

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisionObservation:
    """A robot pose measured by the cameras at a capture time.

    Attributes:
        timestamp: Capture time (seconds, same clock as the drive data).
        pose: Observed robot pose on the field.
        std_devs: Standard deviations for (x, y, theta) (meters, meters, radians).
    """

    timestamp: float
    pose: Pose2d
    std_devs: Tuple[float, float, float]

    @property
    def translation_std_dev(self) -> float:
        """Combined x + y standard deviation used to order corrections."""
        return self.std_devs[0] + self.std_devs[1]


@dataclass
class PoseHistoryEntry:
    """Motion since the previous entry plus the observations made at this instant."""

    twist: Twist2d
    vision: List[VisionObservation] = field(default_factory=list)

    def add_vision(self, observation: VisionObservation) -> None:
        self.vision.append(observation)
        self.vision.sort(key=lambda obs: obs.translation_std_dev)


class PoseEstimator:
    """Odometry + vision pose estimator over a bounded pose history.

    Gains per axis follow k = q / (q + sqrt(q * r)), with q the process
    variance (state std dev squared) and r the observation variance, which
    is the closed-form steady-state gain of a one-dimensional Kalman filter
    with identity dynamics.

    The estimator never reads wall time on its own: ``clock`` supplies
    "now" for the retention window, so tests and simulations can drive it
    deterministically.
    """

    def __init__(
        self,
        config: Optional[EstimatorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the estimator at the origin with an empty history.

        Args:
            config: Estimator tuning and field bounds. Defaults to EstimatorConfig().
            clock: Returns the current time in seconds on the drive-data clock.
        """
        self.config = config if config is not None else EstimatorConfig()
        self.clock = clock

        # Process noise variances
        self.q = tuple(std * std for std in self.config.state_std_devs)

        # Sorted map: parallel key list plus dict for O(log n) bracketing
        self._keys: List[float] = []
        self._entries: Dict[float, PoseHistoryEntry] = {}

        self._base_pose = Pose2d()
        self._latest_pose = Pose2d()

        # Diagnostics
        self.vision_applied = 0
        self.vision_dropped = 0

    @property
    def base_pose(self) -> Pose2d:
        """Pose with every folded (aged-out) entry applied."""
        return self._base_pose

    def get_latest_pose(self) -> Pose2d:
        """Return the pose computed by the last insert. Never recomputes."""
        return self._latest_pose

    def reset_pose(self, pose: Pose2d) -> None:
        """Discard the history and restart estimation from a known pose.

        Args:
            pose: Pose the robot is known to be at.
        """
        self._base_pose = pose
        self._keys.clear()
        self._entries.clear()
        self._update()

    def add_drive_data(self, timestamp: float, twist: Twist2d) -> None:
        """Record the odometry motion since the previous drive sample.

        Args:
            timestamp: Sample time (seconds).
            twist: Robot-relative motion since the previous sample.
        """
        if timestamp not in self._entries:
            bisect.insort(self._keys, timestamp)
        self._entries[timestamp] = PoseHistoryEntry(twist)
        self._update()

    def add_vision_data(self, observations: Sequence[VisionObservation]) -> None:
        """Insert vision observations at their capture times and recompute once.

        An observation at an existing timestamp is merged into that entry.
        Otherwise the twist of the following entry is split at the capture
        time; observations outside the buffered range are dropped.

        Args:
            observations: Observations to insert, in any order.
        """
        for observation in observations:
            self._insert_vision(observation)
        self._update()

    def _insert_vision(self, observation: VisionObservation) -> None:
        timestamp = observation.timestamp
        existing = self._entries.get(timestamp)
        if existing is not None:
            existing.add_vision(observation)
            return

        index = bisect.bisect_left(self._keys, timestamp)
        if index == 0 or index == len(self._keys):
            self.vision_dropped += 1
            logger.debug(f"Dropping vision observation at {timestamp:.3f} s outside buffered history")
            return

        prev_time = self._keys[index - 1]
        next_time = self._keys[index]
        next_entry = self._entries[next_time]

        dt = next_time - prev_time
        twist0 = next_entry.twist * ((timestamp - prev_time) / dt)
        twist1 = next_entry.twist * ((next_time - timestamp) / dt)

        self._keys.insert(index, timestamp)
        self._entries[timestamp] = PoseHistoryEntry(twist0, [observation])
        self._entries[next_time] = PoseHistoryEntry(twist1, next_entry.vision)

    def _update(self) -> None:
        """Fold aged-out entries into the base pose and replay the rest."""
        cutoff = self.clock() - self.config.history_length
        while len(self._keys) > 1 and self._keys[0] < cutoff:
            entry = self._entries.pop(self._keys.pop(0))
            self._base_pose, _ = self._apply(self._base_pose, entry)

        applied = 0
        pose = self._base_pose
        for key in self._keys:
            pose, count = self._apply(pose, self._entries[key])
            applied += count

        self._latest_pose = pose
        self.vision_applied = applied

    def _apply(self, pose: Pose2d, entry: PoseHistoryEntry) -> Tuple[Pose2d, int]:
        """Advance ``pose`` through one history entry.

        Returns:
            The new pose and the number of vision observations applied.
        """
        pose = pose.exp(entry.twist)
        if not entry.vision:
            return pose, 0

        for observation in entry.vision:
            pose = self._apply_vision(pose, observation)
        return self._clamp(pose), len(entry.vision)

    def _apply_vision(self, pose: Pose2d, observation: VisionObservation) -> Pose2d:
        gains = []
        for q, std in zip(self.q, observation.std_devs):
            if q == 0.0:
                gains.append(0.0)
            else:
                gains.append(q / (q + math.sqrt(q * std * std)))

        # Converged estimates take smaller translational steps
        distance = pose.translation.distance(observation.pose.translation)
        scale = 1.0
        if distance < self.config.anti_jitter_threshold:
            scale = self.config.anti_jitter_factor

        twist = pose.log(observation.pose)
        return pose.exp(
            Twist2d(
                gains[0] * twist.dx * scale,
                gains[1] * twist.dy * scale,
                gains[2] * twist.dtheta,
            )
        )

    def _clamp(self, pose: Pose2d) -> Pose2d:
        """Clamp x/y so the robot footprint stays inside the field walls."""
        inset = min(self.config.robot_width, self.config.robot_length) / 2.0
        x = min(max(pose.x, inset), self.config.field_length - inset)
        y = min(max(pose.y, inset), self.config.field_width - inset)
        return Pose2d(Translation2d(x, y), pose.rotation)

    def get_history(self) -> List[Tuple[float, PoseHistoryEntry]]:
        """Snapshot of the buffered history, oldest first."""
        return [(key, self._entries[key]) for key in self._keys]

    def get_diagnostics(self) -> Dict[str, float]:
        """Get estimator diagnostic information for logging and monitoring.

        Returns:
            Dictionary containing:
                - history_size: Buffered history entries
                - vision_applied: Observations applied in the last recompute
                - vision_dropped: Observations dropped since construction
                - x, y, theta: Latest pose
        """
        return {
            "history_size": len(self._keys),
            "vision_applied": self.vision_applied,
            "vision_dropped": self.vision_dropped,
            "x": self._latest_pose.x,
            "y": self._latest_pose.y,
            "theta": self._latest_pose.theta,
        }
