"""Planar and spatial geometry primitives for the swerve localization stack.

This module provides the value types shared by every control layer:
- Translation2d, Rotation2d, Pose2d, Transform2d: rigid-body poses on the field
- Twist2d: interval motion, used by the exponential / logarithm maps
- Quaternion, Pose3d, Transform3d: camera poses reported by the vision pipeline

All types are immutable dataclasses and are copied freely. Angles are in
radians, distances in meters.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import numpy.typing as npt
from scipy.spatial.transform import Rotation

# Below this magnitude the closed-form SE(2) maps switch to Taylor expansions
SMALL_ANGLE = 1e-9


def angle_modulus(angle: float) -> float:
    """Wrap an angle to the half-open range (-pi, pi].

    Args:
        angle: Angle in radians.

    Returns:
        Equivalent angle in (-pi, pi].
    """
    wrapped = math.atan2(math.sin(angle), math.cos(angle))
    if wrapped == -math.pi:
        return math.pi
    return wrapped


def inches_to_meters(inches: float) -> float:
    """Convert inches to meters."""
    return inches * 0.0254


@dataclass(frozen=True)
class Rotation2d:
    """A planar rotation stored as an angle in radians."""

    radians: float = 0.0

    @classmethod
    def from_degrees(cls, degrees: float) -> "Rotation2d":
        return cls(math.radians(degrees))

    @classmethod
    def from_vector(cls, x: float, y: float) -> "Rotation2d":
        """Rotation pointing along the vector (x, y). Zero vector gives 0 rad."""
        if math.hypot(x, y) < 1e-12:
            return cls(0.0)
        return cls(math.atan2(y, x))

    @property
    def cos(self) -> float:
        return math.cos(self.radians)

    @property
    def sin(self) -> float:
        return math.sin(self.radians)

    @property
    def degrees(self) -> float:
        return math.degrees(self.radians)

    def __add__(self, other: "Rotation2d") -> "Rotation2d":
        return Rotation2d(angle_modulus(self.radians + other.radians))

    def __sub__(self, other: "Rotation2d") -> "Rotation2d":
        return Rotation2d(angle_modulus(self.radians - other.radians))

    def __neg__(self) -> "Rotation2d":
        return Rotation2d(-self.radians)

    def times(self, scalar: float) -> "Rotation2d":
        return Rotation2d(angle_modulus(self.radians * scalar))

    def interpolate(self, end: "Rotation2d", t: float) -> "Rotation2d":
        """Interpolate along the shortest arc towards ``end``."""
        t = min(max(t, 0.0), 1.0)
        return self + (end - self).times(t)


@dataclass(frozen=True)
class Translation2d:
    """A 2D vector on the field (meters)."""

    x: float = 0.0
    y: float = 0.0

    @classmethod
    def from_polar(cls, distance: float, angle: Rotation2d) -> "Translation2d":
        return cls(distance * angle.cos, distance * angle.sin)

    @property
    def norm(self) -> float:
        return math.hypot(self.x, self.y)

    @property
    def angle(self) -> Rotation2d:
        return Rotation2d.from_vector(self.x, self.y)

    def distance(self, other: "Translation2d") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def rotate_by(self, rotation: Rotation2d) -> "Translation2d":
        c, s = rotation.cos, rotation.sin
        return Translation2d(self.x * c - self.y * s, self.x * s + self.y * c)

    def __add__(self, other: "Translation2d") -> "Translation2d":
        return Translation2d(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Translation2d") -> "Translation2d":
        return Translation2d(self.x - other.x, self.y - other.y)

    def __neg__(self) -> "Translation2d":
        return Translation2d(-self.x, -self.y)

    def __mul__(self, scalar: float) -> "Translation2d":
        return Translation2d(self.x * scalar, self.y * scalar)

    def interpolate(self, end: "Translation2d", t: float) -> "Translation2d":
        t = min(max(t, 0.0), 1.0)
        return self + (end - self) * t


@dataclass(frozen=True)
class Twist2d:
    """Interval motion (dx, dy, dtheta) expressed in the starting robot frame."""

    dx: float = 0.0
    dy: float = 0.0
    dtheta: float = 0.0

    def __mul__(self, factor: float) -> "Twist2d":
        return Twist2d(self.dx * factor, self.dy * factor, self.dtheta * factor)


@dataclass(frozen=True)
class Transform2d:
    """A rigid transformation from one frame to another."""

    translation: Translation2d = Translation2d()
    rotation: Rotation2d = Rotation2d()

    @classmethod
    def from_translation(cls, x: float, y: float) -> "Transform2d":
        return cls(Translation2d(x, y), Rotation2d())

    def inverse(self) -> "Transform2d":
        return Transform2d((-self.translation).rotate_by(-self.rotation), -self.rotation)


@dataclass(frozen=True)
class Pose2d:
    """Robot pose on the field: translation plus heading."""

    translation: Translation2d = Translation2d()
    rotation: Rotation2d = Rotation2d()

    @classmethod
    def from_xy_theta(cls, x: float, y: float, theta: float) -> "Pose2d":
        return cls(Translation2d(x, y), Rotation2d(theta))

    @property
    def x(self) -> float:
        return self.translation.x

    @property
    def y(self) -> float:
        return self.translation.y

    @property
    def theta(self) -> float:
        return self.rotation.radians

    def transform_by(self, transform: Transform2d) -> "Pose2d":
        return Pose2d(
            self.translation + transform.translation.rotate_by(self.rotation),
            self.rotation + transform.rotation,
        )

    def relative_to(self, other: "Pose2d") -> "Pose2d":
        """Express this pose in the frame of ``other``."""
        translation = (self.translation - other.translation).rotate_by(-other.rotation)
        return Pose2d(translation, self.rotation - other.rotation)

    def exp(self, twist: Twist2d) -> "Pose2d":
        """Apply a twist to this pose using the SE(2) exponential map.

        Args:
            twist: Motion expressed in this pose's frame.

        Returns:
            The pose reached after following the constant-curvature arc.
        """
        dx, dy, dtheta = twist.dx, twist.dy, twist.dtheta
        sin_theta = math.sin(dtheta)
        cos_theta = math.cos(dtheta)

        if abs(dtheta) < SMALL_ANGLE:
            s = 1.0 - dtheta * dtheta / 6.0
            c = 0.5 * dtheta
        else:
            s = sin_theta / dtheta
            c = (1.0 - cos_theta) / dtheta

        transform = Transform2d(
            Translation2d(dx * s - dy * c, dx * c + dy * s),
            Rotation2d(math.atan2(sin_theta, cos_theta)),
        )
        return self.transform_by(transform)

    def log(self, end: "Pose2d") -> Twist2d:
        """Recover the twist that maps this pose onto ``end`` (SE(2) logarithm).

        The heading difference is wrapped to (-pi, pi], so poses on either side
        of the +/-pi seam produce the short rotation rather than a full turn.
        """
        transform = end.relative_to(self)
        dtheta = transform.rotation.radians
        half_dtheta = dtheta / 2.0
        cos_minus_one = math.cos(dtheta) - 1.0

        if abs(cos_minus_one) < SMALL_ANGLE:
            half_theta_by_tan = 1.0 - dtheta * dtheta / 12.0
        else:
            half_theta_by_tan = -(half_dtheta * math.sin(dtheta)) / cos_minus_one

        translation_part = transform.translation.rotate_by(
            Rotation2d(math.atan2(-half_dtheta, half_theta_by_tan))
        ) * math.hypot(half_theta_by_tan, half_dtheta)

        return Twist2d(translation_part.x, translation_part.y, dtheta)

    def interpolate(self, end: "Pose2d", t: float) -> "Pose2d":
        """Interpolate along the twist between two poses."""
        if t <= 0.0:
            return self
        if t >= 1.0:
            return end
        return self.exp(self.log(end) * t)


@dataclass(frozen=True)
class Quaternion:
    """Unit quaternion (w, x, y, z).

    Conversions go through ``scipy.spatial.transform.Rotation``, which orders
    quaternion components (x, y, z, w).
    """

    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_rotation(cls, rotation: Rotation) -> "Quaternion":
        x, y, z, w = rotation.as_quat()
        return cls(float(w), float(x), float(y), float(z))

    @classmethod
    def from_rotation_matrix(cls, m: npt.NDArray[np.float64]) -> "Quaternion":
        return cls.from_rotation(Rotation.from_matrix(m))

    @classmethod
    def from_euler(cls, roll: float, pitch: float, yaw: float) -> "Quaternion":
        """Build from extrinsic roll-pitch-yaw (applied X, then Y, then Z)."""
        return cls.from_rotation(Rotation.from_euler("xyz", [roll, pitch, yaw]))

    def normalized(self) -> "Quaternion":
        norm = math.sqrt(self.w**2 + self.x**2 + self.y**2 + self.z**2)
        if norm < 1e-12:
            return Quaternion()
        return Quaternion(self.w / norm, self.x / norm, self.y / norm, self.z / norm)

    def to_rotation(self) -> Rotation:
        q = self.normalized()
        return Rotation.from_quat([q.x, q.y, q.z, q.w])

    def to_rotation_matrix(self) -> npt.NDArray[np.float64]:
        return self.to_rotation().as_matrix()

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.w, self.x, self.y, self.z)


@dataclass(frozen=True)
class Transform3d:
    """A spatial rigid transform (translation in meters, quaternion rotation)."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    rotation: Quaternion = Quaternion()

    def inverse(self) -> "Transform3d":
        r_inv = self.rotation.to_rotation().inv()
        t = -r_inv.apply([self.x, self.y, self.z])
        return Transform3d(float(t[0]), float(t[1]), float(t[2]), Quaternion.from_rotation(r_inv))


@dataclass(frozen=True)
class Pose3d:
    """A spatial pose, as reported by the camera pipeline."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    rotation: Quaternion = Quaternion()

    @property
    def translation(self) -> npt.NDArray[np.float64]:
        return np.array([self.x, self.y, self.z])

    def distance(self, other: "Pose3d") -> float:
        return float(np.linalg.norm(self.translation - other.translation))

    def transform_by(self, transform: Transform3d) -> "Pose3d":
        """Apply ``transform`` expressed in this pose's own frame."""
        r = self.rotation.to_rotation()
        t = self.translation + r.apply([transform.x, transform.y, transform.z])
        r_new = r * transform.rotation.to_rotation()
        return Pose3d(float(t[0]), float(t[1]), float(t[2]), Quaternion.from_rotation(r_new))

    def to_pose2d(self) -> Pose2d:
        """Project onto the floor plane, keeping the yaw of the rotation."""
        r = self.rotation.to_rotation_matrix()
        return Pose2d(Translation2d(self.x, self.y), Rotation2d(math.atan2(r[1, 0], r[0, 0])))

    @classmethod
    def from_pose2d(cls, pose: Pose2d, z: float = 0.0) -> "Pose3d":
        return cls(pose.x, pose.y, z, Quaternion.from_euler(0.0, 0.0, pose.theta))
