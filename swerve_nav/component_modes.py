"""
Component isolation modes for modular testing.

This module defines which localization and control components are
active/bypassed so that each component's contribution to tracking quality
can be evaluated in simulation.
"""

import argparse
import math
import sys
from dataclasses import dataclass, replace

from .config import EstimatorConfig, TrajectoryConfig, TrajectoryFollowerConfig


@dataclass
class ComponentMode:
    """Configuration for which control components are active."""

    # Localization Layer
    use_vision: bool = True  # If False, pure wheel odometry
    use_gyro: bool = True  # If False, gyro reported disconnected (kinematic rotation)
    use_anti_jitter: bool = True  # If False, full-size vision corrections near convergence

    # Trajectory Layer
    use_centripetal: bool = True  # If False, no curvature speed limit

    # Control Layer
    use_feedback: bool = True  # If False, trajectory feedforward only

    def __str__(self):
        """Human-readable description of active components."""
        components = []

        # Localization
        sources = ["Odometry"]
        if self.use_gyro:
            sources.append("Gyro")
        if self.use_vision:
            sources.append("Vision")
            if not self.use_anti_jitter:
                sources.append("NoAntiJitter")
        components.append("+".join(sources))

        # Trajectory
        if self.use_centripetal:
            components.append("Trajectory(v,a,ac)")
        else:
            components.append("Trajectory(v,a)")

        # Control
        if self.use_feedback:
            components.append("FF+PID")
        else:
            components.append("FF only")

        return " → ".join(components)

    def to_dict(self):
        """Convert to dictionary for logging."""
        return {
            'use_vision': self.use_vision,
            'use_gyro': self.use_gyro,
            'use_anti_jitter': self.use_anti_jitter,
            'use_centripetal': self.use_centripetal,
            'use_feedback': self.use_feedback,
        }

    def apply_estimator(self, config: EstimatorConfig) -> EstimatorConfig:
        if self.use_anti_jitter:
            return config
        return replace(config, anti_jitter_factor=1.0)

    def apply_trajectory(self, config: TrajectoryConfig) -> TrajectoryConfig:
        if self.use_centripetal:
            return config
        return replace(config, max_centripetal_acceleration=math.inf)

    def apply_follower(self, config: TrajectoryFollowerConfig) -> TrajectoryFollowerConfig:
        if self.use_feedback:
            return config
        return replace(config, x_kp=0.0, y_kp=0.0, theta_kp=0.0)


def parse_component_flags(args=None):
    """
    Parse command-line flags to determine which components are active.

    Args:
        args: List of command-line arguments (default: sys.argv[1:])

    Returns:
        tuple: (ComponentMode, remaining_args)
            - ComponentMode with appropriate settings
            - List of remaining arguments not consumed
    """
    parser = argparse.ArgumentParser(add_help=False)

    # Component bypass flags
    parser.add_argument('--no-vision', action='store_true',
                        help='Ignore camera frames (pure wheel odometry)')
    parser.add_argument('--no-gyro', action='store_true',
                        help='Report the gyro as disconnected (kinematic rotation estimate)')
    parser.add_argument('--no-anti-jitter', action='store_true',
                        help='Apply full vision corrections near convergence')
    parser.add_argument('--no-centripetal', action='store_true',
                        help='Generate trajectories without the centripetal limit')
    parser.add_argument('--no-feedback', action='store_true',
                        help='Track trajectories with feedforward only')

    # Parse known args, keep the rest
    if args is None:
        args = sys.argv[1:]

    known_args, remaining_args = parser.parse_known_args(args)

    # Create ComponentMode from flags
    mode = ComponentMode(
        use_vision=not known_args.no_vision,
        use_gyro=not known_args.no_gyro,
        use_anti_jitter=not known_args.no_anti_jitter,
        use_centripetal=not known_args.no_centripetal,
        use_feedback=not known_args.no_feedback,
    )

    return mode, remaining_args
