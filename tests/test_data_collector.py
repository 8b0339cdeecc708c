"""
Tests for CSV logging of a run.
"""

import csv

import pytest

from swerve_nav.data_collector import DataCollector
from swerve_nav.geometry import Pose2d, Translation2d, Twist2d
from swerve_nav.localizer import VisionObservation
from swerve_nav.path import Waypoint, generate_path


def read_rows(path):
    with open(path, newline="") as f:
        return list(csv.reader(f))


@pytest.fixture
def collector(tmp_path):
    with DataCollector(run_dir=str(tmp_path / "run_test")) as data_collector:
        yield data_collector


def test_setup_writes_headers(collector):
    collector.state_csv_file.flush()
    assert read_rows(collector.state_output_path)[0] == [
        "timestamp",
        "x_est",
        "y_est",
        "theta_est",
        "v_x",
        "v_y",
        "omega",
    ]
    assert read_rows(collector.odometry_output_path)[0][0] == "timestamp"
    assert collector.tracking_output_path.exists()


def test_run_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("RUN_DIR", str(tmp_path / "from_env"))
    data_collector = DataCollector(output_dir=str(tmp_path))
    assert data_collector.run_dir == tmp_path / "from_env"
    assert data_collector.run_dir.is_dir()


def test_timestamped_run_dir(tmp_path, monkeypatch):
    monkeypatch.delenv("RUN_DIR", raising=False)
    data_collector = DataCollector(output_dir=str(tmp_path))
    assert data_collector.run_dir.parent == tmp_path / "results"
    assert data_collector.run_dir.name.startswith("run_")


def test_output_dir_must_be_directory(tmp_path):
    path = tmp_path / "file.txt"
    path.write_text("not a directory")
    with pytest.raises(ValueError):
        DataCollector(output_dir=str(path))


def test_log_rows(collector):
    collector.log_odometry(0.02, Twist2d(0.01, 0.0, 0.001), True)
    collector.log_state(0.02, Pose2d.from_xy_theta(1.0, 2.0, 0.5), 0.5, 0.0, 0.1)
    collector.log_vision(
        0.04,
        [VisionObservation(0.0, Pose2d.from_xy_theta(1.0, 2.0, 0.5), (0.01, 0.01, 0.02))],
    )

    odometry = read_rows(collector.odometry_output_path)
    assert odometry[1] == ["0.02", "0.01", "0.0", "0.001", "1"]
    state = read_rows(collector.state_output_path)
    assert float(state[1][1]) == pytest.approx(1.0)
    vision = read_rows(collector.vision_output_path)
    assert len(vision) == 2
    assert float(vision[1][7]) == pytest.approx(0.02)


def test_controller_diagnostics_without_tracking_errors(collector):
    collector.log_controller_diagnostics(
        1.0, "DriveToPose", {"cmd_vx": 1.0, "cmd_vy": 0.0, "cmd_omega": 0.2}
    )
    row = read_rows(collector.controller_output_path)[1]
    assert row[1] == "DriveToPose"
    assert row[5:] == ["", "", ""]


def test_log_trajectory_numbers_files(collector):
    plan = generate_path([Waypoint(Translation2d(1.0, 1.0)), Waypoint(Translation2d(3.0, 1.0))])
    first = collector.log_trajectory(plan.trajectory)
    second = collector.log_trajectory(plan.trajectory)
    assert first.name == "trajectory_01.csv"
    assert second.name == "trajectory_02.csv"
    rows = read_rows(first)
    assert rows[0] == ["time", "x", "y", "heading", "velocity", "acceleration", "curvature"]
    assert len(rows) == len(plan.trajectory.states) + 1


def test_log_summary(collector):
    collector.log_summary({"finished": True, "goal_position_error": 0.0123456789, "frames_dropped": 3})
    lines = collector.summary_output_path.read_text().splitlines()
    assert lines == ["finished: True", "goal_position_error: 0.012346", "frames_dropped: 3"]
