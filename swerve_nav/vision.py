"""Vision observation filter.

Turns raw per-camera frames from the tag-detection coprocessor into
VisionObservations for the pose estimator:
- Decodes single-hypothesis (format 1) and dual-hypothesis (format 2) frames
- Resolves dual hypotheses with the reprojection-error ambiguity test
- Rejects robot poses outside the field or away from the floor
- Derives per-observation standard deviations from tag distance and count

Frame layout (flat numeric array, capture time in microseconds alongside):
    1: [1, error, tx, ty, tz, qw, qx, qy, qz, id, id, ...]
    2: [2, error0, tx0, ty0, tz0, qw0, qx0, qy0, qz0,
           error1, tx1, ty1, tz1, qw1, qx1, qy1, qz1, id, id, ...]
"""

import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import FIELD_LENGTH, FIELD_WIDTH, VisionConfig
from .geometry import Pose3d, Quaternion
from .io import VisionFrame
from .localizer import VisionObservation

logger = logging.getLogger(__name__)

SINGLE_HYPOTHESIS = 1
DUAL_HYPOTHESIS = 2

SINGLE_IDS_START = 9
DUAL_IDS_START = 17


def _tag(x: float, y: float, z: float, yaw_degrees: float) -> Pose3d:
    return Pose3d(x, y, z, Quaternion.from_euler(0.0, 0.0, math.radians(yaw_degrees)))


DEFAULT_TAGS: Dict[int, Pose3d] = {
    1: _tag(15.079, 0.246, 1.356, 120.0),
    2: _tag(16.185, 0.884, 1.356, 120.0),
    3: _tag(16.579, 4.983, 1.451, 180.0),
    4: _tag(16.579, 5.548, 1.451, 180.0),
    5: _tag(14.701, 8.204, 1.356, 270.0),
    6: _tag(1.842, 8.204, 1.356, 270.0),
    7: _tag(-0.038, 5.548, 1.451, 0.0),
    8: _tag(-0.038, 4.983, 1.451, 0.0),
    9: _tag(0.356, 0.884, 1.356, 60.0),
    10: _tag(1.461, 0.246, 1.356, 60.0),
    11: _tag(11.904, 3.713, 1.321, 300.0),
    12: _tag(11.904, 4.498, 1.321, 60.0),
    13: _tag(11.220, 4.105, 1.321, 180.0),
    14: _tag(5.321, 4.105, 1.321, 0.0),
    15: _tag(4.641, 4.498, 1.321, 120.0),
    16: _tag(4.641, 3.713, 1.321, 240.0),
}
"""Fiducial poses of the default field layout, keyed by tag id."""


@dataclass(frozen=True)
class FieldLayout:
    """Known fiducial poses plus the field rectangle."""

    tags: Dict[int, Pose3d] = field(default_factory=lambda: dict(DEFAULT_TAGS))
    field_length: float = FIELD_LENGTH
    field_width: float = FIELD_WIDTH

    def get_tag_pose(self, tag_id: int) -> Optional[Pose3d]:
        return self.tags.get(tag_id)

    @classmethod
    def from_json(cls, path: str) -> "FieldLayout":
        """Load a WPILib-style AprilTag layout file.

        Args:
            path: Path to a JSON file with ``tags`` (ID plus pose translation
                and quaternion) and ``field`` (length, width).

        Returns:
            FieldLayout: The parsed layout.
        """
        with open(path, "r") as f:
            data = json.load(f)

        tags = {}
        for tag in data["tags"]:
            translation = tag["pose"]["translation"]
            quaternion = tag["pose"]["rotation"]["quaternion"]
            tags[int(tag["ID"])] = Pose3d(
                translation["x"],
                translation["y"],
                translation["z"],
                Quaternion(quaternion["W"], quaternion["X"], quaternion["Y"], quaternion["Z"]),
            )
        return cls(tags, data["field"]["length"], data["field"]["width"])


def choose_hypothesis(error0: float, error1: float, threshold: float) -> Optional[int]:
    """Pick a hypothesis from a dual-hypothesis frame.

    The test is order dependent: hypothesis 0 is checked first.

    Args:
        error0: Reprojection error of hypothesis 0.
        error1: Reprojection error of hypothesis 1.
        threshold: Ambiguity threshold.

    Returns:
        0 or 1 for the selected hypothesis, or None if neither dominates.
    """
    if error0 < error1 * threshold:
        return 0
    if error1 < error0 * threshold:
        return 1
    return None


def _pose_at(values: Sequence[float], start: int) -> Pose3d:
    return Pose3d(
        values[start],
        values[start + 1],
        values[start + 2],
        Quaternion(values[start + 3], values[start + 4], values[start + 5], values[start + 6]),
    )


class VisionFilter:
    """Decodes camera frames and scores them for the pose estimator."""

    def __init__(
        self,
        config: Optional[VisionConfig] = None,
        layout: Optional[FieldLayout] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the filter.

        Args:
            config: Filter tuning and per-camera transforms. Defaults to VisionConfig().
            layout: Known fiducial poses and field size. Defaults to the built-in layout.
            clock: Time source for the tag last-seen bookkeeping.
        """
        self.config = config if config is not None else VisionConfig()
        self.layout = layout if layout is not None else FieldLayout()
        self.clock = clock

        self.last_tag_detection_times: Dict[int, float] = {}
        self.detection_count = 0

        # Per-cycle diagnostics
        self.last_errors: Optional[Tuple[float, float]] = None
        self.last_invalid_pose: Optional[Pose3d] = None
        self.last_robot_poses: List[Pose3d] = []
        self.frames_dropped = 0

    def process(self, camera_frames: Sequence[Sequence[VisionFrame]]) -> List[VisionObservation]:
        """Convert one cycle of camera frames into vision observations.

        Args:
            camera_frames: Frames per camera, indexed like the configured
                camera transforms.

        Returns:
            list[VisionObservation]: Accepted observations, ordered by camera
            then frame.
        """
        observations = []
        self.last_robot_poses = []
        for camera_index, frames in enumerate(camera_frames):
            for frame in frames:
                observation = self._process_frame(camera_index, frame)
                if observation is not None:
                    observations.append(observation)
        return observations

    def _process_frame(self, camera_index: int, frame: VisionFrame) -> Optional[VisionObservation]:
        values = frame.values
        if len(values) == 0 or values[0] == 0:
            return None
        if not math.isfinite(values[0]):
            return self._drop("non-finite frame format", values[0])

        kind = int(values[0])
        if kind == SINGLE_HYPOTHESIS:
            if len(values) < SINGLE_IDS_START:
                return self._drop("truncated single-hypothesis frame", len(values))
            pose_start = 2
            ids_start = SINGLE_IDS_START
        elif kind == DUAL_HYPOTHESIS:
            if len(values) < DUAL_IDS_START:
                return self._drop("truncated dual-hypothesis frame", len(values))
            error0, error1 = values[1], values[9]
            self.last_errors = (error0, error1)
            choice = choose_hypothesis(error0, error1, self.config.ambiguity_threshold)
            if choice is None:
                return self._drop("ambiguous frame, errors", (error0, error1))
            pose_start = 2 if choice == 0 else 10
            ids_start = DUAL_IDS_START
        else:
            return self._drop("unknown frame format", kind)

        pose_values = values[pose_start : pose_start + 7]
        if not all(math.isfinite(v) for v in pose_values):
            return self._drop("non-finite camera pose", pose_values)
        camera_pose = _pose_at(values, pose_start)

        if camera_index >= len(self.config.camera_transforms):
            return self._drop("no transform for camera", camera_index)
        robot_pose = camera_pose.transform_by(self.config.camera_transforms[camera_index])
        if not self.is_pose_valid(robot_pose):
            self.last_invalid_pose = robot_pose
            return self._drop("robot pose off the field", robot_pose)

        now = self.clock()
        tag_ids = []
        tag_poses = []
        for raw_id in values[ids_start:]:
            if not math.isfinite(raw_id):
                return self._drop("non-finite tag id", raw_id)
            tag_id = int(raw_id)
            self.last_tag_detection_times[tag_id] = now
            tag_pose = self.layout.get_tag_pose(tag_id)
            if tag_pose is not None:
                tag_ids.append(tag_id)
                tag_poses.append(tag_pose)

        if not tag_poses:
            return self._drop("no known tags in frame", values[ids_start:])

        xy_std_dev, theta_std_dev = self.compute_std_devs(
            camera_pose, tag_poses, camera_index, tag_ids
        )

        self.last_robot_poses.append(robot_pose)
        self.detection_count += 1
        return VisionObservation(
            frame.timestamp_us / 1e6,
            robot_pose.to_pose2d(),
            (xy_std_dev, xy_std_dev, theta_std_dev),
        )

    def _drop(self, reason: str, detail) -> None:
        self.frames_dropped += 1
        logger.debug(f"Dropping vision frame: {reason} {detail}")
        return None

    def is_pose_valid(self, pose: Pose3d) -> bool:
        """Whether a robot pose lies on the field (plus margin) and near the floor."""
        margin = self.config.field_border_margin
        return (
            -margin <= pose.x <= self.layout.field_length + margin
            and -margin <= pose.y <= self.layout.field_width + margin
            and -self.config.z_margin <= pose.z <= self.config.z_margin
        )

    def compute_std_devs(
        self,
        camera_pose: Pose3d,
        tag_poses: Sequence[Pose3d],
        camera_index: int = 0,
        tag_ids: Sequence[int] = (),
    ) -> Tuple[float, float]:
        """Standard deviations from observation geometry.

        std = coefficient * average_distance^2 / tag_count, divided by the
        camera weight and by the mean configured weight of ``tag_ids`` (tags
        without a configured weight count as 1.0). More and closer tags give
        tighter estimates.

        Returns:
            Tuple of (xy_std_dev, theta_std_dev).
        """
        average_distance = sum(camera_pose.distance(tag) for tag in tag_poses) / len(tag_poses)
        weight = 1.0
        if camera_index < len(self.config.camera_weights):
            weight = self.config.camera_weights[camera_index]
        if tag_ids and self.config.tag_weights:
            tag_weights = [self.config.tag_weights.get(tag_id, 1.0) for tag_id in tag_ids]
            weight *= sum(tag_weights) / len(tag_weights)

        factor = average_distance**2 / len(tag_poses) / weight
        return (
            self.config.xy_std_dev_coefficient * factor,
            self.config.theta_std_dev_coefficient * factor,
        )

    def get_visible_tags(self, now: Optional[float] = None, window: Optional[float] = None) -> List[int]:
        """Tag ids detected within ``window`` seconds of ``now``, sorted."""
        now = self.clock() if now is None else now
        window = self.config.tag_log_time if window is None else window
        return sorted(
            tag_id
            for tag_id, seen in self.last_tag_detection_times.items()
            if now - seen < window
        )

    def get_diagnostics(self) -> Dict[str, float]:
        """Get filter diagnostics for telemetry.

        Returns:
            Dictionary containing the total detection count, frames dropped,
            observations produced this cycle and the last dual-hypothesis errors.
        """
        error0, error1 = self.last_errors if self.last_errors is not None else (math.nan, math.nan)
        return {
            "detection_count": self.detection_count,
            "frames_dropped": self.frames_dropped,
            "robot_poses": len(self.last_robot_poses),
            "error0": error0,
            "error1": error1,
        }
