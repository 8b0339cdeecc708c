"""Trajectory generation for holonomic path following.

This module turns a list of waypoints into a time-parameterized path:
- A cubic Hermite spline is fitted through the waypoint translations
- The spline is sampled densely and time-parameterized with forward and
  backward passes honoring velocity, acceleration and centripetal limits
- The holonomic heading is an independent RotationSequence, since a swerve
  robot's heading need not follow its direction of travel

Generation is best effort: failures are retried without the centripetal
constraint and then degrade to a single-state trajectory that followers
treat as already finished.
"""

import bisect
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt

from .config import TrajectoryConfig
from .geometry import Pose2d, Rotation2d, Translation2d

logger = logging.getLogger(__name__)

# Tangent magnitude relative to the segment chord
TANGENT_SCALE = 1.2

# Minimum spline samples per segment
MIN_SEGMENT_SAMPLES = 8

DIRECT = "direct"
TRAJECTORY = "trajectory"


@dataclass(frozen=True)
class Waypoint:
    """A point the path passes through.

    Attributes:
        translation: Field position (meters).
        holonomic_rotation: Heading the robot should face here, if constrained.
        drive_rotation: Direction of travel through this point, if constrained.
    """

    translation: Translation2d
    holonomic_rotation: Optional[Rotation2d] = None
    drive_rotation: Optional[Rotation2d] = None

    @classmethod
    def from_holonomic_pose(
        cls, pose: Pose2d, drive_rotation: Optional[Rotation2d] = None
    ) -> "Waypoint":
        """Waypoint at a pose whose rotation is the holonomic heading."""
        return cls(pose.translation, pose.rotation, drive_rotation)

    @classmethod
    def from_different_headings(
        cls,
        translation: Translation2d,
        holonomic_rotation: Optional[Rotation2d],
        drive_rotation: Optional[Rotation2d],
    ) -> "Waypoint":
        return cls(translation, holonomic_rotation, drive_rotation)


@dataclass(frozen=True)
class TrajectoryState:
    """One sample of a trajectory.

    Attributes:
        time: Time since the start of the trajectory (seconds).
        pose: Position plus direction of travel.
        velocity: Speed along the path (m/s).
        acceleration: Acceleration along the path (m/s^2).
        curvature: Path curvature (rad/m).
    """

    time: float
    pose: Pose2d
    velocity: float
    acceleration: float
    curvature: float


class Trajectory:
    """Time-ordered list of trajectory states."""

    def __init__(self, states: Sequence[TrajectoryState]):
        if not states:
            raise ValueError("A trajectory needs at least one state")
        self.states = list(states)
        self._times = [state.time for state in self.states]

    @property
    def total_time(self) -> float:
        return self.states[-1].time

    def is_valid(self) -> bool:
        """False for the single-state trajectory produced on generation failure."""
        return len(self.states) > 1

    def sample(self, t: float) -> TrajectoryState:
        """Interpolate the state at time ``t``, clamped to the trajectory span.

        Between samples the acceleration of the earlier state is assumed
        constant, as the time parameterization produced it.
        """
        if t <= self.states[0].time:
            return self.states[0]
        if t >= self.total_time:
            return self.states[-1]

        index = bisect.bisect_right(self._times, t)
        prev = self.states[index - 1]
        nxt = self.states[index]

        dt = t - prev.time
        velocity = prev.velocity + prev.acceleration * dt
        travelled = prev.velocity * dt + 0.5 * prev.acceleration * dt * dt
        segment = prev.pose.translation.distance(nxt.pose.translation)
        if segment > 1e-9:
            fraction = min(max(travelled / segment, 0.0), 1.0)
        else:
            fraction = dt / (nxt.time - prev.time)

        return TrajectoryState(
            t,
            Pose2d(
                prev.pose.translation.interpolate(nxt.pose.translation, fraction),
                prev.pose.rotation.interpolate(nxt.pose.rotation, fraction),
            ),
            velocity,
            prev.acceleration,
            prev.curvature + (nxt.curvature - prev.curvature) * fraction,
        )

    def get_poses(self) -> List[Pose2d]:
        return [state.pose for state in self.states]


@dataclass(frozen=True)
class RotationState:
    """Holonomic heading setpoint at a time, with its rate (rad/s)."""

    time: float
    rotation: Rotation2d
    velocity: float = 0.0


class RotationSequence:
    """Holonomic heading keyed by time, interpolated along the shortest arc."""

    def __init__(self, keyframes: Sequence[Tuple[float, Rotation2d]] = ()):
        ordered = sorted(keyframes, key=lambda item: item[0])
        self._times = [time for time, _ in ordered]
        self._rotations = [rotation for _, rotation in ordered]

    def is_empty(self) -> bool:
        return not self._times

    def sample(self, t: float) -> RotationState:
        if not self._times:
            return RotationState(t, Rotation2d(), 0.0)
        if t <= self._times[0]:
            return RotationState(t, self._rotations[0], 0.0)
        if t >= self._times[-1]:
            return RotationState(t, self._rotations[-1], 0.0)

        index = bisect.bisect_right(self._times, t)
        t0, t1 = self._times[index - 1], self._times[index]
        r0, r1 = self._rotations[index - 1], self._rotations[index]
        fraction = (t - t0) / (t1 - t0)
        return RotationState(t, r0.interpolate(r1, fraction), (r1 - r0).radians / (t1 - t0))


class MaxAccelerationConstraint:
    """Narrows the acceleration and deceleration bounds along the whole path."""

    def __init__(self, max_acceleration: float, max_deceleration: float):
        self.max_acceleration = max_acceleration
        self.max_deceleration = max_deceleration

    def max_velocity(self, pose: Pose2d, curvature: float, velocity: float) -> float:
        return math.inf

    def min_max_acceleration(
        self, pose: Pose2d, curvature: float, velocity: float
    ) -> Tuple[float, float]:
        return -self.max_deceleration, self.max_acceleration


class CentripetalAccelerationConstraint:
    """Limits speed through curves to v <= sqrt(a_c / |curvature|)."""

    def __init__(self, max_centripetal_acceleration: float):
        self.max_centripetal_acceleration = max_centripetal_acceleration

    def max_velocity(self, pose: Pose2d, curvature: float, velocity: float) -> float:
        if abs(curvature) < 1e-9:
            return math.inf
        return math.sqrt(self.max_centripetal_acceleration / abs(curvature))

    def min_max_acceleration(
        self, pose: Pose2d, curvature: float, velocity: float
    ) -> Tuple[float, float]:
        return -math.inf, math.inf


@dataclass(frozen=True)
class PathPlan:
    """Result of planning a motion through waypoints.

    Attributes:
        kind: DIRECT for point stabilization to ``goal``, TRAJECTORY otherwise.
        goal: Final pose of the motion.
        hold_heading: Whether the goal heading is constrained.
        trajectory: Translational trajectory (TRAJECTORY plans only).
        rotation_sequence: Holonomic heading over time (TRAJECTORY plans only).
    """

    kind: str
    goal: Pose2d
    hold_heading: bool = True
    trajectory: Optional[Trajectory] = None
    rotation_sequence: Optional[RotationSequence] = None

    @property
    def is_direct(self) -> bool:
        return self.kind == DIRECT


@dataclass
class _SampledSpline:
    points: npt.NDArray[np.float64]
    headings: npt.NDArray[np.float64]
    curvatures: npt.NDArray[np.float64]
    waypoint_indices: List[int]


def remove_duplicate_waypoints(waypoints: Sequence[Waypoint], tolerance: float = 1e-6) -> List[Waypoint]:
    """Drop consecutive waypoints at the same translation, keeping the later constraints."""
    unique: List[Waypoint] = []
    for waypoint in waypoints:
        if unique and unique[-1].translation.distance(waypoint.translation) < tolerance:
            previous = unique[-1]
            unique[-1] = Waypoint(
                previous.translation,
                waypoint.holonomic_rotation
                if waypoint.holonomic_rotation is not None
                else previous.holonomic_rotation,
                waypoint.drive_rotation
                if waypoint.drive_rotation is not None
                else previous.drive_rotation,
            )
            continue
        unique.append(waypoint)
    return unique


def _tangent_directions(waypoints: Sequence[Waypoint]) -> List[Tuple[float, float]]:
    directions = []
    n = len(waypoints)
    for i, waypoint in enumerate(waypoints):
        if waypoint.drive_rotation is not None:
            directions.append((waypoint.drive_rotation.cos, waypoint.drive_rotation.sin))
            continue
        before = waypoints[max(i - 1, 0)].translation
        after = waypoints[min(i + 1, n - 1)].translation
        chord = after - before
        if chord.norm < 1e-9:
            # Path doubles back; follow the incoming segment
            chord = waypoint.translation - before
        norm = chord.norm
        directions.append((chord.x / norm, chord.y / norm))
    return directions


def sample_spline(waypoints: Sequence[Waypoint], samples_per_meter: int) -> _SampledSpline:
    """Fit and sample a cubic Hermite spline through the waypoints.

    Args:
        waypoints: At least two waypoints with distinct consecutive translations.
        samples_per_meter: Sampling density along each segment's chord.

    Returns:
        Sample positions, tangent headings, signed curvatures, and the
        sample index at which each waypoint lies.
    """
    directions = _tangent_directions(waypoints)

    points = []
    headings = []
    curvatures = []
    waypoint_indices = [0]

    for i in range(len(waypoints) - 1):
        p0 = np.array([waypoints[i].translation.x, waypoints[i].translation.y])
        p1 = np.array([waypoints[i + 1].translation.x, waypoints[i + 1].translation.y])
        chord = float(np.linalg.norm(p1 - p0))
        m0 = np.array(directions[i]) * TANGENT_SCALE * chord
        m1 = np.array(directions[i + 1]) * TANGENT_SCALE * chord

        count = max(MIN_SEGMENT_SAMPLES, int(math.ceil(chord * samples_per_meter)))
        s = np.linspace(0.0, 1.0, count + 1)
        if i > 0:
            # Shared with the previous segment's last sample
            s = s[1:]
        s = s[:, None]

        position = (
            (2 * s**3 - 3 * s**2 + 1) * p0
            + (s**3 - 2 * s**2 + s) * m0
            + (-2 * s**3 + 3 * s**2) * p1
            + (s**3 - s**2) * m1
        )
        d1 = (
            (6 * s**2 - 6 * s) * p0
            + (3 * s**2 - 4 * s + 1) * m0
            + (-6 * s**2 + 6 * s) * p1
            + (3 * s**2 - 2 * s) * m1
        )
        d2 = (12 * s - 6) * p0 + (6 * s - 4) * m0 + (-12 * s + 6) * p1 + (6 * s - 2) * m1

        speed = np.hypot(d1[:, 0], d1[:, 1])
        if np.any(speed < 1e-9):
            raise ValueError(f"Spline segment {i} has a cusp")

        points.append(position)
        headings.append(np.arctan2(d1[:, 1], d1[:, 0]))
        curvatures.append((d1[:, 0] * d2[:, 1] - d1[:, 1] * d2[:, 0]) / speed**3)
        waypoint_indices.append(waypoint_indices[-1] + len(position) - (1 if i == 0 else 0))

    return _SampledSpline(
        np.vstack(points), np.concatenate(headings), np.concatenate(curvatures), waypoint_indices
    )


class TrajectoryGenerator:
    """Builds trajectories and rotation sequences from waypoints."""

    def __init__(self, config: Optional[TrajectoryConfig] = None):
        self.config = config if config is not None else TrajectoryConfig()

    def generate(
        self,
        waypoints: Sequence[Waypoint],
        extra_constraints: Sequence[object] = (),
        start_velocity: Optional[float] = None,
    ) -> Tuple[Trajectory, RotationSequence]:
        """Generate a trajectory; never raises.

        Args:
            waypoints: Path waypoints, at least two distinct translations.
            extra_constraints: Additional constraints such as
                MaxAccelerationConstraint.
            start_velocity: Overrides the configured start velocity (m/s).

        Returns:
            Tuple of (trajectory, rotation_sequence). On failure the
            trajectory holds a single state at the first waypoint.
        """
        waypoints = remove_duplicate_waypoints(waypoints)
        start = self.config.start_velocity if start_velocity is None else start_velocity

        centripetal = CentripetalAccelerationConstraint(self.config.max_centripetal_acceleration)
        attempts = (
            [centripetal, *extra_constraints],
            list(extra_constraints),
        )
        for attempt, constraints in enumerate(attempts):
            try:
                result = self._generate(waypoints, constraints, start)
            except Exception:
                if attempt == len(attempts) - 1:
                    logger.warning("Trajectory generation failed", exc_info=True)
                else:
                    logger.debug("Trajectory generation failed, retrying without centripetal limit")
                continue
            if result[0].total_time >= self.config.min_trajectory_time:
                return result
            logger.debug(f"Generated trajectory has near-zero duration (attempt {attempt + 1})")

        logger.warning(f"Trajectory generation failed for {len(waypoints)} waypoints")
        return self._failed(waypoints), RotationSequence()

    def _failed(self, waypoints: Sequence[Waypoint]) -> Trajectory:
        if waypoints:
            first = waypoints[0]
            rotation = first.holonomic_rotation
            pose = Pose2d(first.translation, rotation if rotation is not None else Rotation2d())
        else:
            pose = Pose2d()
        return Trajectory([TrajectoryState(0.0, pose, 0.0, 0.0, 0.0)])

    def _generate(
        self, waypoints: Sequence[Waypoint], constraints: Sequence[object], start_velocity: float
    ) -> Tuple[Trajectory, RotationSequence]:
        if len(waypoints) < 2:
            raise ValueError("Need at least two distinct waypoints")

        spline = sample_spline(waypoints, self.config.samples_per_meter)
        n = len(spline.points)
        poses = [
            Pose2d(Translation2d(float(x), float(y)), Rotation2d(float(h)))
            for (x, y), h in zip(spline.points, spline.headings)
        ]
        ds = np.hypot(*np.diff(spline.points, axis=0).T)

        max_velocity = np.full(n, self.config.max_velocity)
        max_accel = np.full(n, self.config.max_acceleration)
        max_decel = np.full(n, self.config.max_acceleration)
        for i in range(n):
            curvature = float(spline.curvatures[i])
            for constraint in constraints:
                max_velocity[i] = min(
                    max_velocity[i], constraint.max_velocity(poses[i], curvature, max_velocity[i])
                )
                low, high = constraint.min_max_acceleration(poses[i], curvature, max_velocity[i])
                max_accel[i] = min(max_accel[i], high)
                max_decel[i] = min(max_decel[i], -low)

        # Forward pass: accelerate as hard as allowed
        velocity = np.zeros(n)
        velocity[0] = min(start_velocity, max_velocity[0])
        for i in range(1, n):
            reachable = math.sqrt(velocity[i - 1] ** 2 + 2.0 * max_accel[i - 1] * ds[i - 1])
            velocity[i] = min(max_velocity[i], reachable)

        # Backward pass: leave room to decelerate
        velocity[-1] = min(velocity[-1], self.config.end_velocity)
        for i in range(n - 2, -1, -1):
            reachable = math.sqrt(velocity[i + 1] ** 2 + 2.0 * max_decel[i + 1] * ds[i])
            velocity[i] = min(velocity[i], reachable)

        times = [0.0]
        accelerations = []
        t = 0.0
        for i in range(1, n):
            v_sum = velocity[i - 1] + velocity[i]
            if v_sum <= 1e-12:
                raise ValueError(f"Stalled at spline sample {i}")
            t += 2.0 * ds[i - 1] / v_sum
            accelerations.append((velocity[i] ** 2 - velocity[i - 1] ** 2) / (2.0 * ds[i - 1]))
            times.append(t)

        if not math.isfinite(t):
            raise ValueError("Trajectory duration is not finite")

        accelerations.append(0.0)
        states = [
            TrajectoryState(
                times[i],
                poses[i],
                float(velocity[i]),
                float(accelerations[i]),
                float(spline.curvatures[i]),
            )
            for i in range(n)
        ]

        keyframes = [
            (times[index], waypoint.holonomic_rotation)
            for waypoint, index in zip(waypoints, spline.waypoint_indices)
            if waypoint.holonomic_rotation is not None
        ]
        return Trajectory(states), RotationSequence(keyframes)


def generate_path(
    waypoints: Sequence[Waypoint],
    config: Optional[TrajectoryConfig] = None,
    extra_constraints: Sequence[object] = (),
    start_velocity: Optional[float] = None,
) -> PathPlan:
    """Plan a motion through waypoints.

    Two waypoints closer than the direct-path distance, neither constraining
    the direction of travel, are driven with point stabilization instead of
    a generated trajectory.

    Args:
        waypoints: At least two waypoints.
        config: Generation limits. Defaults to TrajectoryConfig().
        extra_constraints: Additional trajectory constraints.
        start_velocity: Overrides the configured start velocity (m/s).

    Returns:
        PathPlan: A DIRECT or TRAJECTORY plan.

    Raises:
        ValueError: If fewer than two waypoints are given.
    """
    if len(waypoints) < 2:
        raise ValueError(f"Need at least two waypoints, got {len(waypoints)}")
    config = config if config is not None else TrajectoryConfig()

    unique = remove_duplicate_waypoints(waypoints)
    first, last = unique[0], unique[-1]
    goal_rotation = last.holonomic_rotation
    if goal_rotation is None:
        goal_rotation = first.holonomic_rotation
    goal = Pose2d(last.translation, goal_rotation if goal_rotation is not None else Rotation2d())

    is_short = (
        len(unique) < 2
        or (
            len(unique) == 2
            and first.drive_rotation is None
            and last.drive_rotation is None
            and first.translation.distance(last.translation) < config.direct_path_distance
        )
    )
    if is_short:
        return PathPlan(DIRECT, goal, hold_heading=goal_rotation is not None)

    trajectory, rotation_sequence = TrajectoryGenerator(config).generate(
        unique, extra_constraints, start_velocity
    )
    return PathPlan(
        TRAJECTORY,
        goal,
        hold_heading=goal_rotation is not None,
        trajectory=trajectory,
        rotation_sequence=rotation_sequence,
    )
