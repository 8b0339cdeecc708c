"""Data collection and CSV logging for swerve localization and control data.

This module provides CSV data logging for:
- Odometry twists (per-cycle wheel/gyro motion)
- Vision observations accepted by the filter
- Pose estimates (fused position, heading, field velocity)
- Ground truth pose (simulation only)
- Reference setpoints (trajectory or point-stabilization setpoint)
- Controller diagnostics (commands and tracking errors)
- Estimator diagnostics (history size, vision applied/dropped)
- Trajectory previews (generated path, one file per plan)
- Tracking metrics (position errors, L2 error)
- Final summary
"""

import csv
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from .config import TERM_BLUE, TERM_RESET
from .geometry import Pose2d, Twist2d
from .localizer import VisionObservation
from .path import Trajectory


class DataCollector:
    """Manages CSV file creation and logging for swerve control data.

    This class handles all data logging responsibilities:
    - Creates timestamped output directories
    - Initializes CSV files with headers
    - Writes sensor, estimate, and control data
    - Ensures proper cleanup on shutdown

    Attributes:
        run_dir: Directory path for this run's output files.
        odometry_csv_file: File handle for odometry twists CSV.
        vision_csv_file: File handle for vision observations CSV.
        state_csv_file: File handle for pose estimates CSV.
        truth_csv_file: File handle for ground truth CSV.
        reference_csv_file: File handle for reference setpoints CSV.
        controller_csv_file: File handle for controller diagnostics CSV.
        estimator_csv_file: File handle for estimator diagnostics CSV.
        tracking_csv_file: File handle for tracking metrics CSV.
        summary_output_path: Path for final summary text file.
    """

    def __init__(self, output_dir: str = ".", run_dir: Optional[str] = None) -> None:
        """Initialize the data collector.

        Args:
            output_dir: Base directory for output files (default: current directory).
            run_dir: Optional specific run directory. If None, creates timestamped
                directory. Can also be set via RUN_DIR environment variable.

        Raises:
            ValueError: If output_dir is not a valid directory.
        """
        # Validate output directory
        output_path = Path(output_dir)
        if output_path.exists() and not output_path.is_dir():
            raise ValueError(f"Output path exists but is not a directory: {output_dir}")

        # CSV file handles
        self.odometry_csv_file: Optional[TextIO] = None
        self.odometry_csv_writer: Any = None
        self.vision_csv_file: Optional[TextIO] = None
        self.vision_csv_writer: Any = None
        self.state_csv_file: Optional[TextIO] = None
        self.state_csv_writer: Any = None
        self.truth_csv_file: Optional[TextIO] = None
        self.truth_csv_writer: Any = None
        self.reference_csv_file: Optional[TextIO] = None
        self.reference_csv_writer: Any = None
        self.controller_csv_file: Optional[TextIO] = None
        self.controller_csv_writer: Any = None
        self.estimator_csv_file: Optional[TextIO] = None
        self.estimator_csv_writer: Any = None
        self.tracking_csv_file: Optional[TextIO] = None
        self.tracking_csv_writer: Any = None

        self.trajectory_count = 0

        # Determine run directory
        if run_dir:
            self.run_dir: Path = Path(run_dir)
        elif env_run_dir := os.environ.get("RUN_DIR"):
            self.run_dir = Path(env_run_dir)
        else:
            # Create timestamped directory: results/run_YYYYMMDD_HHMMSS/
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            results_dir = output_path / "results"
            self.run_dir = results_dir / f"run_{timestamp}"

        # Create directory structure
        self.run_dir.mkdir(parents=True, exist_ok=True)

        # Define output file paths
        self.odometry_output_path: Path = self.run_dir / "odometry_data.csv"
        self.vision_output_path: Path = self.run_dir / "vision_data.csv"
        self.state_output_path: Path = self.run_dir / "state_data.csv"
        self.truth_output_path: Path = self.run_dir / "truth_data.csv"
        self.reference_output_path: Path = self.run_dir / "reference_data.csv"
        self.controller_output_path: Path = self.run_dir / "controller_data.csv"
        self.estimator_output_path: Path = self.run_dir / "estimator_diagnostics.csv"
        self.tracking_output_path: Path = self.run_dir / "tracking_metrics.csv"
        self.summary_output_path: Path = self.run_dir / "summary.txt"

    def _open_csv(self, path: Path, header: List[str]):
        csv_file = open(path, "w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(header)
        csv_file.flush()
        return csv_file, writer

    def setup(self) -> None:
        """Initialize CSV files with headers.

        Creates and opens all CSV files with appropriate column headers.
        Must be called before writing data.
        """
        self.odometry_csv_file, self.odometry_csv_writer = self._open_csv(
            self.odometry_output_path, ["timestamp", "dx", "dy", "dtheta", "gyro_connected"]
        )
        self.vision_csv_file, self.vision_csv_writer = self._open_csv(
            self.vision_output_path,
            ["timestamp", "capture_time", "x", "y", "theta", "std_x", "std_y", "std_theta"],
        )
        self.state_csv_file, self.state_csv_writer = self._open_csv(
            self.state_output_path, ["timestamp", "x_est", "y_est", "theta_est", "v_x", "v_y", "omega"]
        )
        self.truth_csv_file, self.truth_csv_writer = self._open_csv(
            self.truth_output_path, ["timestamp", "x_true", "y_true", "theta_true"]
        )
        self.reference_csv_file, self.reference_csv_writer = self._open_csv(
            self.reference_output_path, ["timestamp", "elapsed_time", "x_ref", "y_ref", "theta_ref"]
        )
        self.controller_csv_file, self.controller_csv_writer = self._open_csv(
            self.controller_output_path,
            [
                "timestamp",
                "behavior",
                "cmd_vx",
                "cmd_vy",
                "cmd_omega",
                "x_error",
                "y_error",
                "theta_error",
            ],
        )
        self.estimator_csv_file, self.estimator_csv_writer = self._open_csv(
            self.estimator_output_path,
            ["timestamp", "history_size", "vision_applied", "vision_dropped", "detection_count"],
        )
        self.tracking_csv_file, self.tracking_csv_writer = self._open_csv(
            self.tracking_output_path,
            [
                "timestamp",
                "error_x",
                "error_y",
                "error_l2",
                "cumulative_l2_error",
                "sample_count",
                "avg_sample_error_mm",
            ],
        )

        print(
            f"{TERM_BLUE}✓ Initialized data collection to results/{self.run_dir.name}/{TERM_RESET}"
        )

    def log_odometry(self, timestamp: float, twist: Twist2d, gyro_connected: bool) -> None:
        """Log one odometry twist to CSV.

        Args:
            timestamp: Cycle time (seconds).
            twist: Robot-relative motion for the cycle.
            gyro_connected: Whether the rotation came from the gyro.
        """
        self.odometry_csv_writer.writerow(
            [timestamp, twist.dx, twist.dy, twist.dtheta, int(gyro_connected)]
        )
        if self.odometry_csv_file:
            self.odometry_csv_file.flush()

    def log_vision(self, timestamp: float, observations: List[VisionObservation]) -> None:
        """Log accepted vision observations to CSV.

        Args:
            timestamp: Cycle time the observations were processed (seconds).
            observations: Observations produced by the vision filter.
        """
        for obs in observations:
            self.vision_csv_writer.writerow(
                [timestamp, obs.timestamp, obs.pose.x, obs.pose.y, obs.pose.theta, *obs.std_devs]
            )
        if self.vision_csv_file:
            self.vision_csv_file.flush()

    def log_state(
        self, timestamp: float, pose: Pose2d, v_x: float, v_y: float, omega: float
    ) -> None:
        """Log the fused pose estimate to CSV.

        Args:
            timestamp: Current time (seconds).
            pose: Estimated pose.
            v_x: Measured field x velocity (m/s).
            v_y: Measured field y velocity (m/s).
            omega: Measured yaw rate (rad/s).
        """
        self.state_csv_writer.writerow([timestamp, pose.x, pose.y, pose.theta, v_x, v_y, omega])
        if self.state_csv_file:
            self.state_csv_file.flush()

    def log_truth(self, timestamp: float, pose: Pose2d) -> None:
        """Log the simulator's ground truth pose to CSV."""
        self.truth_csv_writer.writerow([timestamp, pose.x, pose.y, pose.theta])
        if self.truth_csv_file:
            self.truth_csv_file.flush()

    def log_reference(self, timestamp: float, elapsed_time: float, setpoint: Pose2d) -> None:
        """Log the active behavior's setpoint to CSV.

        Args:
            timestamp: Current time (seconds).
            elapsed_time: Time since the behavior started (seconds).
            setpoint: Reference pose.
        """
        self.reference_csv_writer.writerow(
            [timestamp, elapsed_time, setpoint.x, setpoint.y, setpoint.theta]
        )
        if self.reference_csv_file:
            self.reference_csv_file.flush()

    def log_controller_diagnostics(
        self, timestamp: float, behavior: str, diagnostics: Dict[str, float]
    ) -> None:
        """Log controller diagnostics to CSV.

        Args:
            timestamp: Current time (seconds).
            behavior: Name of the active behavior.
            diagnostics: Dictionary with keys 'cmd_vx', 'cmd_vy', 'cmd_omega'
                and optionally 'x_error', 'y_error', 'theta_error'.
        """
        self.controller_csv_writer.writerow(
            [
                timestamp,
                behavior,
                diagnostics["cmd_vx"],
                diagnostics["cmd_vy"],
                diagnostics["cmd_omega"],
                diagnostics.get("x_error", ""),
                diagnostics.get("y_error", ""),
                diagnostics.get("theta_error", ""),
            ]
        )
        if self.controller_csv_file:
            self.controller_csv_file.flush()

    def log_estimator_diagnostics(self, timestamp: float, diagnostics: Dict[str, float]) -> None:
        """Log estimator diagnostics to CSV.

        Args:
            timestamp: Current time (seconds).
            diagnostics: Dictionary with keys 'history_size', 'vision_applied',
                'vision_dropped' and 'detection_count'.
        """
        self.estimator_csv_writer.writerow(
            [
                timestamp,
                diagnostics["history_size"],
                diagnostics["vision_applied"],
                diagnostics["vision_dropped"],
                diagnostics["detection_count"],
            ]
        )
        if self.estimator_csv_file:
            self.estimator_csv_file.flush()

    def log_trajectory(self, trajectory: Trajectory) -> Path:
        """Write a trajectory preview to its own CSV file.

        Args:
            trajectory: Generated trajectory.

        Returns:
            Path of the written file.
        """
        self.trajectory_count += 1
        path = self.run_dir / f"trajectory_{self.trajectory_count:02d}.csv"
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["time", "x", "y", "heading", "velocity", "acceleration", "curvature"])
            for state in trajectory.states:
                writer.writerow(
                    [
                        state.time,
                        state.pose.x,
                        state.pose.y,
                        state.pose.theta,
                        state.velocity,
                        state.acceleration,
                        state.curvature,
                    ]
                )
        return path

    def log_tracking_metrics(
        self,
        timestamp: float,
        error_x: float,
        error_y: float,
        error_l2: float,
        cumulative_l2_error: float,
        sample_count: int,
        avg_sample_error_mm: float,
    ) -> None:
        """Log estimate-versus-truth error metrics to CSV.

        Args:
            timestamp: Current time (seconds).
            error_x: X position error (meters).
            error_y: Y position error (meters).
            error_l2: L2 norm of position error (meters).
            cumulative_l2_error: Running sum of L2 errors (meters).
            sample_count: Number of samples so far.
            avg_sample_error_mm: Average error per sample (millimeters).
        """
        self.tracking_csv_writer.writerow(
            [
                timestamp,
                error_x,
                error_y,
                error_l2,
                cumulative_l2_error,
                sample_count,
                avg_sample_error_mm,
            ]
        )
        if self.tracking_csv_file:
            self.tracking_csv_file.flush()

    def log_summary(self, summary: Dict[str, float]) -> None:
        """Write the final run summary as ``key: value`` lines.

        Args:
            summary: Final metrics, e.g. mean localization error.
        """
        with open(self.summary_output_path, "w") as f:
            for key, value in summary.items():
                if isinstance(value, float):
                    f.write(f"{key}: {value:.6f}\n")
                else:
                    f.write(f"{key}: {value}\n")
        print(f"{TERM_BLUE}✓ Saved run summary to {self.summary_output_path.name}{TERM_RESET}")

    def cleanup(self) -> None:
        """Close all CSV files and log final output location."""
        for csv_file in (
            self.odometry_csv_file,
            self.vision_csv_file,
            self.state_csv_file,
            self.truth_csv_file,
            self.reference_csv_file,
            self.controller_csv_file,
            self.estimator_csv_file,
            self.tracking_csv_file,
        ):
            if csv_file:
                csv_file.close()

        print(f"{TERM_BLUE}✓ Saved run data to results/{self.run_dir.name}/{TERM_RESET}")

    def __enter__(self) -> "DataCollector":
        """Context manager entry point.

        Returns:
            Self reference for use in with statement.
        """
        self.setup()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit point - ensures cleanup is called."""
        self.cleanup()
