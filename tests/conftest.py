"""
Shared fixtures for swerve_nav tests.
"""

import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from swerve_nav.config import EstimatorConfig  # noqa: E402
from swerve_nav.drive import Drive  # noqa: E402
from swerve_nav.geometry import Pose2d  # noqa: E402
from swerve_nav.localizer import PoseEstimator  # noqa: E402
from swerve_nav.simulation import RobotSimulator  # noqa: E402


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def estimator(clock):
    return PoseEstimator(EstimatorConfig(), clock=clock)


@pytest.fixture
def sim():
    """Simulated robot at (2, 2, 0) with seeded camera noise."""
    return RobotSimulator(initial_pose=Pose2d.from_xy_theta(2.0, 2.0, 0.0), seed=0)


@pytest.fixture
def sim_drive(sim):
    """Drive wired to the simulator, estimator on simulation time."""
    estimator = PoseEstimator(EstimatorConfig(), clock=sim.clock)
    estimator.reset_pose(sim.pose)
    return Drive(sim.gyro, sim.module_ios, estimator)


def run_cycles(sim, drive, behavior=None, max_time=5.0):
    """Run the control cycle until the behavior finishes or time runs out.

    Returns:
        True if the behavior finished.
    """
    if behavior is not None:
        behavior.start()
    while sim.time < max_time:
        drive.periodic(sim.time)
        if behavior is not None:
            behavior.step()
            if behavior.is_done():
                behavior.stop()
                return True
        sim.step(drive.config.loop_period)
    return False
