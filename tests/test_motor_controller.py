"""
Tests for the PID, trapezoid profile and profiled PID controllers.
"""

import math

import pytest

from swerve_nav.motor_controller import (
    PIDController,
    ProfileConstraints,
    ProfiledPIDController,
    ProfileState,
    TrapezoidProfile,
    input_modulus,
)


def test_proportional_output():
    controller = PIDController(2.0)
    assert controller.calculate(1.0, 3.0) == pytest.approx(4.0)
    # Setpoint is kept between calls
    assert controller.calculate(2.0) == pytest.approx(2.0)


def test_derivative_acts_on_error_change():
    controller = PIDController(0.0, kd=0.1, period=0.02)
    controller.calculate(0.0, 1.0)
    output = controller.calculate(0.5)
    assert output == pytest.approx(0.1 * (0.5 - 1.0) / 0.02)


def test_continuous_input_takes_short_way():
    controller = PIDController(1.0)
    controller.enable_continuous_input(-math.pi, math.pi)
    output = controller.calculate(-3.0, 3.0)
    assert output == pytest.approx(6.0 - 2.0 * math.pi)


def test_input_modulus():
    assert input_modulus(7.0, -math.pi, math.pi) == pytest.approx(7.0 - 2.0 * math.pi)
    assert input_modulus(0.5, -math.pi, math.pi) == pytest.approx(0.5)


def test_at_setpoint_requires_a_measurement():
    controller = PIDController(1.0)
    controller.set_tolerance(0.1)
    assert not controller.at_setpoint()
    controller.calculate(0.95, 1.0)
    assert controller.at_setpoint()
    controller.calculate(0.5)
    assert not controller.at_setpoint()


def test_integrator_is_clamped():
    controller = PIDController(0.0, ki=1.0)
    controller.set_integrator_range(-0.5, 0.5)
    for _ in range(1000):
        output = controller.calculate(0.0, 100.0)
    assert output == pytest.approx(0.5)


def test_reset_clears_state():
    controller = PIDController(1.0, ki=1.0)
    controller.calculate(0.0, 1.0)
    controller.reset()
    assert controller.integral == 0.0
    assert not controller.at_setpoint()


def test_non_positive_period_raises():
    with pytest.raises(ValueError):
        PIDController(1.0, period=0.0)


@pytest.fixture
def profile():
    return TrapezoidProfile(ProfileConstraints(max_velocity=2.0, max_acceleration=1.0))


def test_trapezoid_acceleration_phase(profile):
    state = profile.calculate(1.0, ProfileState(0.0, 0.0), ProfileState(10.0, 0.0))
    assert state.velocity == pytest.approx(1.0)
    assert state.position == pytest.approx(0.5)


def test_trapezoid_cruise_phase(profile):
    state = profile.calculate(3.0, ProfileState(0.0, 0.0), ProfileState(10.0, 0.0))
    assert state.velocity == pytest.approx(2.0)
    assert state.position == pytest.approx(4.0)


def test_trapezoid_triangle_profile(profile):
    state = profile.calculate(1.5, ProfileState(0.0, 0.0), ProfileState(1.0, 0.0))
    assert state.velocity == pytest.approx(0.5)
    assert state.position == pytest.approx(0.875)


def test_trapezoid_mirrors_negative_motion(profile):
    state = profile.calculate(1.0, ProfileState(0.0, 0.0), ProfileState(-10.0, 0.0))
    assert state.velocity == pytest.approx(-1.0)
    assert state.position == pytest.approx(-0.5)


def test_trapezoid_returns_goal_when_done(profile):
    goal = ProfileState(1.0, 0.0)
    assert profile.calculate(100.0, ProfileState(0.0, 0.0), goal) == goal


def test_profiled_controller_reaches_goal():
    controller = ProfiledPIDController(1.0, 0.0, 0.0, ProfileConstraints(2.0, 1.0))
    controller.set_tolerance(0.01)
    controller.reset(0.0)

    controller.calculate(0.0, goal=1.0)
    assert not controller.at_goal()

    measurement = 0.0
    for _ in range(200):
        measurement = controller.setpoint.position
        controller.calculate(measurement)
    assert controller.setpoint == controller.goal
    assert controller.at_goal()
    assert controller.get_diagnostics()["goal"] == pytest.approx(1.0)


def test_profiled_controller_wraps_continuous_goal():
    controller = ProfiledPIDController(1.0, 0.0, 0.0, ProfileConstraints(2.0, 1.0))
    controller.enable_continuous_input(-math.pi, math.pi)
    controller.reset(3.0)
    # Goal of -3.0 is reached by turning through +pi
    assert controller.calculate(3.0, goal=-3.0) > 0.0
    assert controller.goal.position == pytest.approx(-3.0 + 2.0 * math.pi)
