"""Swerve Nav - Localization and Motion Control for Swerve-Drive Robots

Fuses wheel odometry, gyro heading and latency-delayed fiducial camera
observations into a field pose estimate, and drives the robot to poses or
along generated trajectories.

## Architecture Overview

Each control period (20 ms) runs one synchronous cycle:

### Layer 1: Sensing (io.py, odometry.py, vision.py)
- Gyro and module IO read once per cycle; disconnected devices are flagged
- Odometry: wheel deltas -> robot-relative twist, gyro heading when connected
- Vision filter: raw camera frames -> scored robot pose observations

### Layer 2: State Estimation (localizer.py)
- Time-indexed history of odometry twists with merged vision observations
- Late observations are inserted at their capture time and the pose replayed
- Output: Latest field pose

### Layer 3: Planning (path.py)
- Spline through waypoints with velocity/acceleration/centripetal limits
- Holonomic rotation sequence keyed at waypoint times
- Short moves fall back to direct point stabilization

### Layer 4: Motion Control (follower.py, motor_controller.py, drive.py)
- DriveToPose: profiled PID on distance and heading
- TrajectoryFollower: feedforward plus x/y/heading PID
- Drive: field-relative speeds -> discretized, desaturated module states

## Modules

### Core Modules
- `config.py` - Centralized constants and per-component config dataclasses
- `geometry.py` - SE(2)/SE(3) poses, rotations, twists
- `model.py` - Swerve kinematics and chassis speeds
- `odometry.py` - Wheel/gyro odometry integrator
- `localizer.py` - Latency-compensating pose estimator
- `vision.py` - Camera frame decoding, validation and scoring
- `path.py` - Trajectory generation
- `motor_controller.py` - PID, trapezoid profile, profiled PID
- `follower.py` - Motion behaviors and scheduler
- `drive.py` - Drivetrain
- `io.py` - Device IO interfaces
- `simulation.py` - Simulated robot and devices

### Communication & Data
- `client.py` - Control loop, camera WebSocket feed, CLI
- `data_collector.py` - CSV data logging for all system signals
- `visualization.py` / `plot_results.py` - Post-run plots

## Quick Start

```bash
python -m swerve_nav --waypoints "2,2,0;4.5,3,45;7,2,90" --seed 1
python -m swerve_nav.plot_results --save --no-show
```
"""

__version__ = "0.1.0"

# Export key classes for convenience
from .data_collector import DataCollector
from .drive import Drive
from .follower import DriveToPose, MotionScheduler, TrajectoryFollower
from .localizer import PoseEstimator, VisionObservation
from .path import Waypoint, generate_path
from .vision import FieldLayout, VisionFilter

__all__ = [
    "PoseEstimator",
    "VisionObservation",
    "VisionFilter",
    "FieldLayout",
    "Drive",
    "Waypoint",
    "generate_path",
    "DriveToPose",
    "TrajectoryFollower",
    "MotionScheduler",
    "DataCollector",
]
