#!/usr/bin/env python3
"""
Control Loop Client for Swerve Localization and Motion Control

This module runs the fixed-period control cycle against a simulated robot:
camera frames are decoded by the vision filter and fused by the pose
estimator, the drive integrates odometry and commands its modules, and the
motion scheduler steps the active behavior. Camera frames can alternatively
be streamed from a vision coprocessor over a WebSocket. All signals are
logged to CSV files for post-run analysis.
"""

import argparse
import asyncio
import json
import logging
import math
import signal
import sys
from typing import Any, List, Optional, Sequence, Union

import websockets

from swerve_nav.component_modes import ComponentMode, parse_component_flags
from swerve_nav.config import (
    LOOP_PERIOD,
    TAG_WEIGHTS,
    TERM_BLUE,
    TERM_ORANGE,
    TERM_RESET,
    WS_MAX_RETRY_DELAY_SECONDS,
    WS_RETRY_DELAY_SECONDS,
    WS_TIMEOUT_SECONDS,
    DriveConfig,
    DriveToPoseConfig,
    EstimatorConfig,
    TrajectoryConfig,
    TrajectoryFollowerConfig,
    VisionConfig,
)
from swerve_nav.data_collector import DataCollector
from swerve_nav.drive import Drive
from swerve_nav.follower import MotionScheduler, behavior_for_plan
from swerve_nav.geometry import Pose2d, Rotation2d, Translation2d
from swerve_nav.io import QueuedVisionIO, VisionIO
from swerve_nav.localizer import PoseEstimator
from swerve_nav.path import PathPlan, Waypoint, generate_path
from swerve_nav.simulation import RobotSimulator
from swerve_nav.vision import FieldLayout, VisionFilter

DEFAULT_WAYPOINTS = "2.0,2.0,0;4.5,3.0,45;7.0,2.0,90"


class CustomFormatter(logging.Formatter):
    """Custom logging formatter that removes timestamps from INFO messages.

    This formatter provides clean console output by showing INFO messages without
    timestamps while preserving full context for WARNING, ERROR, and DEBUG messages.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record based on its level.

        Args:
            record: The log record to format.

        Returns:
            Formatted log message string.
        """
        if record.levelno == logging.INFO:
            # INFO messages: just the message without timestamp
            return record.getMessage()
        else:
            # WARNING, ERROR, etc.: include timestamp and level
            return f"{self.formatTime(record, self.datefmt)} - {record.levelname} - {record.getMessage()}"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, show all levels with timestamps. If False, show INFO
                 without timestamps and WARNING/ERROR with timestamps.
    """
    if verbose:
        # Verbose mode: show all levels with timestamps
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        # Normal mode: INFO without timestamps, WARNING/ERROR with timestamps
        handler = logging.StreamHandler()
        formatter = CustomFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        handler.setFormatter(formatter)
        logger = logging.getLogger()
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)


def parse_waypoints(text: str) -> List[Waypoint]:
    """Parse waypoints from ``"x,y[,heading_deg];x,y[,heading_deg];..."``.

    Positions are in meters. A heading, when given, constrains the holonomic
    rotation at that waypoint.

    Raises:
        ValueError: If an entry does not have two or three numbers.
    """
    waypoints = []
    for item in text.split(";"):
        item = item.strip()
        if not item:
            continue
        parts = [float(p) for p in item.split(",")]
        if len(parts) not in (2, 3):
            raise ValueError(f"Waypoint '{item}' must be 'x,y' or 'x,y,heading_deg'")
        rotation = Rotation2d.from_degrees(parts[2]) if len(parts) == 3 else None
        waypoints.append(Waypoint(Translation2d(parts[0], parts[1]), holonomic_rotation=rotation))
    return waypoints


class WebSocketVisionIO:
    """Streams camera frames from a vision coprocessor into a QueuedVisionIO.

    Each message is a JSON object ``{"timestamp_us": int, "data": [...]}``
    holding one raw frame. The connection is retried with exponential
    backoff until stop() is called.

    Attributes:
        uri: WebSocket URI of the coprocessor.
        camera_io: Queue the control loop drains each cycle.
        should_stop: Flag indicating whether to stop receiving.
    """

    def __init__(self, uri: str, camera_io: Optional[QueuedVisionIO] = None) -> None:
        """Initialize the feed.

        Args:
            uri: WebSocket URI to connect to (must start with ws:// or wss://).
            camera_io: Queue to push frames into. A new one is created if None.

        Raises:
            ValueError: If URI format is invalid.
        """
        # Validate URI format
        if not uri or not uri.startswith(("ws://", "wss://")):
            raise ValueError(f"Invalid WebSocket URI: {uri}. Must start with 'ws://' or 'wss://'")

        self.uri: str = uri
        self.camera_io = camera_io if camera_io is not None else QueuedVisionIO()
        self.should_stop: bool = False
        self.frames_received: int = 0

    def parse_and_route_message(self, message: Union[str, bytes]) -> bool:
        """Parse one incoming message and queue its frame.

        Args:
            message: Raw JSON message string or bytes from WebSocket.

        Returns:
            True if a frame was queued.
        """
        try:
            # Handle both str and bytes
            if isinstance(message, bytes):
                message = message.decode("utf-8")
            data = json.loads(message)

            timestamp_us = data["timestamp_us"]
            values = data["data"]
            if not isinstance(values, list):
                logging.warning(f"Invalid frame data type: expected list, got {type(values)}")
                return False

            self.camera_io.push(int(timestamp_us), values)
            self.frames_received += 1
            return True

        except json.JSONDecodeError as e:
            logging.error(f"Error parsing JSON: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logging.error(f"Error processing frame data: {e}")
        return False

    async def run(self) -> None:
        """Receive frames until stop() is called, reconnecting on failure."""
        retry_delay = WS_RETRY_DELAY_SECONDS
        max_retry_delay = WS_MAX_RETRY_DELAY_SECONDS

        while not self.should_stop:
            try:
                async with websockets.connect(self.uri) as websocket:
                    logging.info(f"{TERM_BLUE}✓ Connected to camera feed {self.uri}{TERM_RESET}")
                    self.camera_io.connected = True
                    retry_delay = WS_RETRY_DELAY_SECONDS  # Reset retry delay on successful connection

                    while not self.should_stop:
                        try:
                            message = await asyncio.wait_for(websocket.recv(), timeout=WS_TIMEOUT_SECONDS)
                            self.parse_and_route_message(message)
                        except asyncio.TimeoutError:
                            # No frame in timeout period, continue
                            continue
                        except websockets.exceptions.ConnectionClosed:
                            logging.warning("Camera feed closed by server")
                            break

            except (OSError, websockets.exceptions.WebSocketException) as e:
                if self.should_stop:
                    break
                logging.error(f"Camera feed connection error: {e}")
                logging.info(f"Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, max_retry_delay)
            finally:
                self.camera_io.connected = False

    def stop(self) -> None:
        """Signal the feed to stop."""
        self.should_stop = True


class RobotController:
    """Swerve control system running against the simulated robot.

    This class manages the complete control pipeline:
    - Vision frame decoding and filtering
    - Pose estimation (odometry + latency-compensated vision)
    - Path planning and the active motion behavior
    - Data logging to CSV files

    Attributes:
        simulator: Ground-truth robot providing the IO devices and clock.
        drive: Drivetrain owning odometry and the pose estimator.
        vision_filter: Camera frame decoder and scorer.
        scheduler: Owner of the active motion behavior.
        data_collector: Handles CSV file logging.
        should_stop: Flag indicating whether to stop control loop.
    """

    def __init__(
        self,
        waypoints: Sequence[Waypoint],
        output_dir: str = ".",
        component_mode: Optional[ComponentMode] = None,
        seed: Optional[int] = None,
        duration: float = 20.0,
        realtime: bool = False,
        camera_ios: Optional[Sequence[VisionIO]] = None,
        layout: Optional[FieldLayout] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            waypoints: At least two waypoints; the first is the start pose.
            output_dir: Base directory for output files (default: current directory).
            component_mode: ComponentMode configuration for component isolation testing.
            seed: Seed for simulated camera noise.
            duration: Maximum run time (simulated seconds).
            realtime: If True, sleep one loop period per cycle.
            camera_ios: Camera devices to read. Defaults to the simulator's cameras.
            layout: Field layout. Defaults to the built-in layout.

        Raises:
            ValueError: If fewer than two waypoints are given.
        """
        if len(waypoints) < 2:
            raise ValueError(f"Need at least two waypoints, got {len(waypoints)}")

        self.waypoints = list(waypoints)
        self.duration = duration
        self.realtime = realtime
        self.should_stop: bool = False

        # Store component mode configuration
        if component_mode is None:
            component_mode = ComponentMode()  # Default: all components enabled
        self.component_mode = component_mode
        logging.info(f"{TERM_BLUE}Component Configuration: {component_mode}{TERM_RESET}")

        self.drive_config = DriveConfig()
        self.estimator_config = component_mode.apply_estimator(EstimatorConfig())
        self.vision_config = VisionConfig(tag_weights=TAG_WEIGHTS)
        self.trajectory_config = component_mode.apply_trajectory(TrajectoryConfig())
        self.follower_config = component_mode.apply_follower(TrajectoryFollowerConfig())
        self.drive_to_pose_config = DriveToPoseConfig()
        layout = layout if layout is not None else FieldLayout()

        first = self.waypoints[0]
        start_rotation = first.holonomic_rotation if first.holonomic_rotation is not None else Rotation2d()
        start_pose = Pose2d(first.translation, start_rotation)

        self.simulator = RobotSimulator(
            self.drive_config, self.vision_config, layout, initial_pose=start_pose, seed=seed
        )
        self.simulator.gyro.connected = component_mode.use_gyro
        self.camera_ios = list(camera_ios) if camera_ios is not None else list(self.simulator.cameras)

        clock = self.simulator.clock
        self.clock = clock
        self.estimator = PoseEstimator(self.estimator_config, clock=clock)
        self.estimator.reset_pose(start_pose)
        self.drive = Drive(self.simulator.gyro, self.simulator.module_ios, self.estimator, self.drive_config)
        self.vision_filter = VisionFilter(self.vision_config, layout, clock=clock)
        self.scheduler = MotionScheduler()

        self.data_collector = DataCollector(output_dir=output_dir)

        self.plan: Optional[PathPlan] = None
        self.behavior_start_time: float = 0.0
        self.finished: bool = False

        # Tracking metrics for localization quality analysis
        self.cumulative_l2_error: float = 0.0  # Running sum of L2 position errors
        self.sample_count: int = 0  # Number of tracking error samples logged

    def start_plan(self) -> PathPlan:
        """Plan through the waypoints and hand the behavior to the scheduler."""
        plan = generate_path(self.waypoints, self.trajectory_config)
        if plan.trajectory is not None:
            self.data_collector.log_trajectory(plan.trajectory)
            logging.info(
                f"{TERM_BLUE}✓ Generated trajectory: {len(plan.trajectory.states)} states, "
                f"{plan.trajectory.total_time:.2f}s{TERM_RESET}"
            )
        else:
            logging.info(f"{TERM_BLUE}✓ Short move, driving directly to goal{TERM_RESET}")

        behavior = behavior_for_plan(
            plan, self.drive, self.drive_to_pose_config, self.follower_config, self.clock
        )
        self.behavior_start_time = self.clock()
        self.scheduler.switch_to(behavior)
        self.plan = plan
        return plan

    def run_cycle(self) -> bool:
        """Run one control period and advance the simulation.

        Returns:
            True if the active behavior finished during this cycle.
        """
        timestamp = self.clock()

        # Vision: always drain the cameras, fuse only when enabled
        camera_frames = [io.update_inputs().frames for io in self.camera_ios]
        observations = []
        if self.component_mode.use_vision:
            observations = self.vision_filter.process(camera_frames)
            self.drive.add_vision_data(observations)

        self.drive.periodic(timestamp)
        behavior = self.scheduler.active
        finished = self.scheduler.step()

        self.log_cycle(timestamp, observations, behavior)

        self.simulator.step(self.drive_config.loop_period)
        return finished

    def log_cycle(self, timestamp: float, observations, behavior) -> None:
        """Write one cycle of telemetry."""
        pose = self.drive.get_pose()
        velocity = self.drive.get_field_velocity()
        true_pose = self.simulator.pose

        self.data_collector.log_odometry(timestamp, self.drive.last_twist, self.drive.gyro_connected)
        if observations:
            self.data_collector.log_vision(timestamp, observations)
        self.data_collector.log_state(timestamp, pose, velocity.vx, velocity.vy, velocity.omega)
        self.data_collector.log_truth(timestamp, true_pose)

        estimator_diagnostics = self.estimator.get_diagnostics()
        estimator_diagnostics["detection_count"] = self.vision_filter.detection_count
        self.data_collector.log_estimator_diagnostics(timestamp, estimator_diagnostics)

        if behavior is not None:
            diagnostics = self.drive.get_diagnostics()
            diagnostics.update(behavior.get_diagnostics())
            self.data_collector.log_controller_diagnostics(
                timestamp, type(behavior).__name__, diagnostics
            )
            setpoint = Pose2d.from_xy_theta(
                diagnostics["setpoint_x"], diagnostics["setpoint_y"], diagnostics["setpoint_theta"]
            )
            self.data_collector.log_reference(timestamp, timestamp - self.behavior_start_time, setpoint)

        # Calculate and log localization error metrics
        error_x = true_pose.x - pose.x
        error_y = true_pose.y - pose.y
        error_l2 = math.sqrt(error_x**2 + error_y**2)

        # Update cumulative tracking metrics
        self.cumulative_l2_error += error_l2
        self.sample_count += 1
        avg_sample_error_mm = (self.cumulative_l2_error / self.sample_count) * 1000.0

        self.data_collector.log_tracking_metrics(
            timestamp,
            error_x,
            error_y,
            error_l2,
            self.cumulative_l2_error,
            self.sample_count,
            avg_sample_error_mm,
        )

    def summarize(self) -> dict:
        """Compute final goal and localization errors."""
        goal = self.plan.goal if self.plan is not None else Pose2d()
        true_pose = self.simulator.pose
        estimate = self.drive.get_pose()
        avg_error = self.cumulative_l2_error / self.sample_count if self.sample_count else 0.0
        return {
            "finished": self.finished,
            "elapsed": self.clock(),
            "goal_position_error": true_pose.translation.distance(goal.translation),
            "goal_theta_error": abs((true_pose.rotation - goal.rotation).radians),
            "final_localization_error": true_pose.translation.distance(estimate.translation),
            "mean_localization_error": avg_error,
            "vision_applied": self.estimator.vision_applied,
            "vision_dropped": self.estimator.vision_dropped,
            "frames_dropped": self.vision_filter.frames_dropped,
        }

    async def run_control_loop(self) -> None:
        """Plan the motion and run control cycles until done, timed out or stopped."""
        self.start_plan()
        logging.info(f"{TERM_BLUE}✓ Running motion control{TERM_RESET}")

        while not self.should_stop and self.clock() < self.duration:
            if self.run_cycle():
                self.finished = True
                break
            # Yield to the camera feed between cycles
            await asyncio.sleep(self.drive_config.loop_period if self.realtime else 0)

        if not self.finished:
            logging.warning("Motion did not finish before the run ended")
            self.scheduler.cancel()

        summary = self.summarize()
        self.data_collector.log_summary(summary)
        logging.info(
            f"{TERM_BLUE}\033[1m→ Goal error: {summary['goal_position_error'] * 1000.0:.1f}mm  "
            f"{math.degrees(summary['goal_theta_error']):.2f}°{TERM_RESET}"
        )
        logging.info(
            f"{TERM_ORANGE}\033[1m→ LOC Avg: {summary['mean_localization_error'] * 1000.0:.1f}mm  "
            f"Vision applied: {summary['vision_applied']}{TERM_RESET}"
        )

    def stop(self) -> None:
        """Signal the controller to stop."""
        self.should_stop = True

    def __enter__(self) -> "RobotController":
        """Context manager entry point.

        Returns:
            Self reference for use in with statement.
        """
        self.data_collector.setup()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit point - ensures cleanup is called."""
        self.data_collector.cleanup()


async def main(
    waypoints: Sequence[Waypoint],
    component_mode: Optional[ComponentMode] = None,
    seed: Optional[int] = None,
    duration: float = 20.0,
    realtime: bool = False,
    vision_uri: Optional[str] = None,
    output_dir: str = ".",
) -> None:
    """Main entry point for the control loop client.

    Creates a RobotController, optionally connects a coprocessor camera feed
    in place of the simulated cameras, sets up signal handlers for graceful
    shutdown, and runs the control loop.

    Args:
        waypoints: Path waypoints; the first is the start pose.
        component_mode: ComponentMode configuration for component isolation testing.
        seed: Seed for simulated camera noise.
        duration: Maximum run time (seconds).
        realtime: Pace the loop at the control period.
        vision_uri: Optional WebSocket URI of a camera feed.
        output_dir: Base directory for output files.
    """
    feed = WebSocketVisionIO(vision_uri) if vision_uri else None
    camera_ios = [feed.camera_io] if feed is not None else None

    with RobotController(
        waypoints,
        output_dir=output_dir,
        component_mode=component_mode,
        seed=seed,
        duration=duration,
        realtime=realtime,
        camera_ios=camera_ios,
    ) as controller:
        # Setup signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            """Handle shutdown signals (SIGINT, SIGTERM)."""
            logging.info("\nShutdown signal received...")
            controller.stop()
            if feed is not None:
                feed.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        feed_task = asyncio.create_task(feed.run()) if feed is not None else None
        try:
            await controller.run_control_loop()
        finally:
            if feed_task is not None:
                feed.stop()
                feed_task.cancel()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Swerve localization and motion control demo on a simulated robot"
    )
    parser.add_argument(
        "--waypoints",
        default=DEFAULT_WAYPOINTS,
        help="Waypoints as 'x,y[,heading_deg];...' in meters (default: %(default)s)",
    )
    parser.add_argument(
        "--duration", type=float, default=20.0, help="Maximum run time in seconds (default: %(default)s)"
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for simulated camera noise")
    parser.add_argument(
        "--realtime", action="store_true", help=f"Pace the loop at {LOOP_PERIOD * 1000:.0f} ms per cycle"
    )
    parser.add_argument(
        "--vision-uri",
        default=None,
        help="Read camera frames from this WebSocket feed instead of the simulated cameras",
    )
    parser.add_argument("--output-dir", default=".", help="Base directory for results/")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging with timestamps"
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> None:
    """Parse command-line arguments and run the demo."""
    # Parse component isolation flags first
    component_mode, remaining_args = parse_component_flags(argv)
    args = build_parser().parse_args(remaining_args)

    # Setup logging based on verbose flag
    setup_logging(args.verbose)

    try:
        waypoints = parse_waypoints(args.waypoints)
        if len(waypoints) < 2:
            raise ValueError(f"need at least two, got {len(waypoints)}")
    except ValueError as e:
        logging.error(f"Invalid waypoints: {e}")
        sys.exit(2)

    try:
        asyncio.run(
            main(
                waypoints,
                component_mode=component_mode,
                seed=args.seed,
                duration=args.duration,
                realtime=args.realtime,
                vision_uri=args.vision_uri,
                output_dir=args.output_dir,
            )
        )
    except KeyboardInterrupt:
        logging.info("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    run_cli()
