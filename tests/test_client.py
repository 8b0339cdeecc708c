"""
Tests for the control loop client: waypoint parsing, the camera feed and full simulated runs.
"""

import asyncio
import json
import math

import pytest

from swerve_nav.client import (
    DEFAULT_WAYPOINTS,
    RobotController,
    WebSocketVisionIO,
    parse_waypoints,
    run_cli,
)
from swerve_nav.component_modes import ComponentMode
from swerve_nav.vision import VisionFilter
from swerve_nav.visualization import load_run_data, plot_run_summary


def test_parse_waypoints():
    waypoints = parse_waypoints("1.0,2.0; 3.0,4.0,90")
    assert len(waypoints) == 2
    assert waypoints[0].translation.x == 1.0
    assert waypoints[0].holonomic_rotation is None
    assert waypoints[1].holonomic_rotation.degrees == pytest.approx(90.0)


@pytest.mark.parametrize("text", ["1.0", "1,2,3,4", "a,b"])
def test_parse_waypoints_rejects_bad_entries(text):
    with pytest.raises(ValueError):
        parse_waypoints(text)


def test_vision_feed_rejects_bad_uri():
    with pytest.raises(ValueError):
        WebSocketVisionIO("http://localhost:5800")


def test_vision_feed_queues_frames():
    feed = WebSocketVisionIO("ws://localhost:5800")
    message = json.dumps({"timestamp_us": 1500000, "data": [1, 0.1, 2.0, 2.0, 0.0, 1, 0, 0, 0, 14]})

    assert feed.parse_and_route_message(message)
    assert feed.parse_and_route_message(message.encode("utf-8"))
    assert feed.frames_received == 2

    frames = feed.camera_io.update_inputs().frames
    assert len(frames) == 2
    assert frames[0].timestamp_us == 1500000
    assert frames[0].values[-1] == 14.0
    assert feed.camera_io.update_inputs().frames == []


@pytest.mark.parametrize(
    "message",
    [
        "not json",
        json.dumps({"data": [1, 2]}),
        json.dumps({"timestamp_us": 10, "data": "1,2"}),
        json.dumps({"timestamp_us": 10, "data": ["x"]}),
    ],
)
def test_vision_feed_ignores_bad_messages(message):
    feed = WebSocketVisionIO("ws://localhost:5800")
    assert not feed.parse_and_route_message(message)
    assert feed.frames_received == 0


def test_controller_needs_two_waypoints(tmp_path):
    with pytest.raises(ValueError):
        RobotController(parse_waypoints("2,2"), output_dir=str(tmp_path))


@pytest.fixture
def isolated_results(tmp_path, monkeypatch):
    monkeypatch.delenv("RUN_DIR", raising=False)
    return tmp_path


def test_full_run_reaches_goal(isolated_results):
    controller = RobotController(
        parse_waypoints(DEFAULT_WAYPOINTS), output_dir=str(isolated_results), seed=0
    )
    with controller:
        asyncio.run(controller.run_control_loop())

    summary = controller.summarize()
    assert summary["finished"]
    assert summary["goal_position_error"] < 0.15
    assert summary["goal_theta_error"] < math.radians(5.0)
    assert summary["elapsed"] < controller.duration
    assert controller.vision_filter.detection_count > 0

    run_dir = controller.data_collector.run_dir
    for name in ("state_data.csv", "truth_data.csv", "tracking_metrics.csv", "summary.txt"):
        assert (run_dir / name).exists()
    assert (run_dir / "trajectory_01.csv").exists()

    data = load_run_data(run_dir)
    assert len(data["state"]["x_est"]) == controller.sample_count
    assert "reference" in data

    figures = plot_run_summary(run_dir, save_plots=True, show_plots=False)
    assert set(figures) == {"field", "localization", "velocity"}
    for name in ("field_view.png", "localization_error.png", "velocity_tracking.png"):
        assert (run_dir / name).exists()


def test_short_move_without_vision(isolated_results):
    controller = RobotController(
        parse_waypoints("2,2,0;2.3,2.1,20"),
        output_dir=str(isolated_results),
        component_mode=ComponentMode(use_vision=False),
        seed=0,
        duration=5.0,
    )
    with controller:
        asyncio.run(controller.run_control_loop())

    summary = controller.summarize()
    assert summary["finished"]
    assert controller.plan.is_direct
    assert summary["vision_applied"] == 0
    assert controller.vision_filter.detection_count == 0
    assert summary["final_localization_error"] == pytest.approx(0.0, abs=1e-6)
    assert not (controller.data_collector.run_dir / "trajectory_01.csv").exists()


def test_run_stops_at_duration(isolated_results):
    controller = RobotController(
        parse_waypoints(DEFAULT_WAYPOINTS), output_dir=str(isolated_results), seed=0, duration=0.5
    )
    with controller:
        asyncio.run(controller.run_control_loop())

    assert not controller.finished
    assert controller.scheduler.is_idle
    assert controller.summarize()["elapsed"] == pytest.approx(0.5, abs=0.021)


def test_cli_rejects_single_waypoint(isolated_results):
    with pytest.raises(SystemExit) as excinfo:
        run_cli(["--waypoints", "1,2", "--output-dir", str(isolated_results)])
    assert excinfo.value.code == 2


def test_non_finite_camera_message_is_dropped_by_filter(clock):
    feed = WebSocketVisionIO("ws://localhost:5800")
    data = [1, 0.1, 2.0, 2.0, 0.0, 1, 0, 0, 0, math.nan]
    assert feed.parse_and_route_message(json.dumps({"timestamp_us": 1000000, "data": data}))

    vision_filter = VisionFilter(clock=clock)
    assert vision_filter.process([feed.camera_io.update_inputs().frames]) == []
    assert vision_filter.frames_dropped == 1
