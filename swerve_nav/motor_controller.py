"""Feedback control primitives for the motion behaviors.

This module provides the controllers the point-stabilization and
trajectory-tracking behaviors are built from:
- PIDController: fixed-period PID with anti-windup and continuous input
- TrapezoidProfile: time-optimal motion profile under velocity and
  acceleration limits
- ProfiledPIDController: PID tracking a trapezoid profile towards a goal
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional

from .config import LOOP_PERIOD


def input_modulus(value: float, minimum: float, maximum: float) -> float:
    """Wrap ``value`` into [minimum, maximum)."""
    modulus = maximum - minimum
    value -= int((value - minimum) / modulus) * modulus
    value -= int((value - maximum) / modulus) * modulus
    return value


class PIDController:
    """PID feedback controller running at a fixed period.

    Control law:
        output = kp * e + ki * integral(e) + kd * de/dt
    where e = setpoint - measurement, wrapped into the input range when
    continuous input is enabled (e.g. headings).

    Attributes:
        kp: Proportional gain
        ki: Integral gain
        kd: Derivative gain
        period: Loop period (seconds)
    """

    def __init__(self, kp: float, ki: float = 0.0, kd: float = 0.0, period: float = LOOP_PERIOD):
        """Initialize the controller.

        Args:
            kp: Proportional gain.
            ki: Integral gain.
            kd: Derivative gain.
            period: Time between calculate() calls (seconds).

        Raises:
            ValueError: If the period is not positive.
        """
        if period <= 0.0:
            raise ValueError(f"Controller period must be positive, got {period}")

        self.kp = kp
        self.ki = ki
        self.kd = kd
        self.period = period

        # Anti-windup limits
        self.integral_min = -1.0
        self.integral_max = 1.0

        self.position_tolerance = 0.05
        self.velocity_tolerance = math.inf

        self.continuous = False
        self.minimum_input = 0.0
        self.maximum_input = 0.0

        self.setpoint = 0.0
        self.measurement = 0.0
        self.position_error = 0.0
        self.velocity_error = 0.0
        self.prev_error = 0.0
        self.integral = 0.0
        self.have_measurement = False
        self.have_setpoint = False

    def enable_continuous_input(self, minimum_input: float, maximum_input: float) -> None:
        """Treat the input range as circular, so errors take the short way round."""
        self.continuous = True
        self.minimum_input = minimum_input
        self.maximum_input = maximum_input

    def set_integrator_range(self, minimum: float, maximum: float) -> None:
        self.integral_min = minimum
        self.integral_max = maximum

    def set_tolerance(self, position_tolerance: float, velocity_tolerance: float = math.inf) -> None:
        self.position_tolerance = position_tolerance
        self.velocity_tolerance = velocity_tolerance

    def _wrap_error(self, error: float) -> float:
        if not self.continuous:
            return error
        bound = (self.maximum_input - self.minimum_input) / 2.0
        return input_modulus(error, -bound, bound)

    def calculate(self, measurement: float, setpoint: Optional[float] = None) -> float:
        """Compute the controller output for one period.

        Args:
            measurement: Current process value.
            setpoint: New setpoint, or None to keep the previous one.

        Returns:
            Controller output.
        """
        if setpoint is not None:
            self.setpoint = setpoint
            self.have_setpoint = True
        self.measurement = measurement
        self.have_measurement = True

        self.prev_error = self.position_error
        self.position_error = self._wrap_error(self.setpoint - measurement)
        self.velocity_error = (self.position_error - self.prev_error) / self.period

        if self.ki != 0.0:
            self.integral = min(
                max(self.integral + self.position_error * self.period, self.integral_min / self.ki),
                self.integral_max / self.ki,
            )

        return self.kp * self.position_error + self.ki * self.integral + self.kd * self.velocity_error

    def at_setpoint(self) -> bool:
        return (
            self.have_measurement
            and self.have_setpoint
            and abs(self.position_error) < self.position_tolerance
            and abs(self.velocity_error) < self.velocity_tolerance
        )

    def reset(self) -> None:
        """Clear integral and derivative state."""
        self.position_error = 0.0
        self.prev_error = 0.0
        self.velocity_error = 0.0
        self.integral = 0.0
        self.have_measurement = False

    def get_diagnostics(self) -> Dict[str, float]:
        """Get diagnostic information for logging and debugging.

        Returns:
            Dictionary containing setpoint, measurement, errors and integral state
        """
        return {
            "setpoint": self.setpoint,
            "measurement": self.measurement,
            "position_error": self.position_error,
            "velocity_error": self.velocity_error,
            "integral": self.integral,
        }


@dataclass(frozen=True)
class ProfileConstraints:
    """Trapezoid profile limits (units/s, units/s^2)."""

    max_velocity: float
    max_acceleration: float


@dataclass(frozen=True)
class ProfileState:
    """Position and velocity on a motion profile."""

    position: float = 0.0
    velocity: float = 0.0


class TrapezoidProfile:
    """Time-optimal profile with bounded velocity and acceleration.

    The profile accelerates at the limit, cruises at max velocity if the
    distance allows, then decelerates to arrive at the goal with the goal
    velocity. Motion in the negative direction is handled by mirroring.
    """

    def __init__(self, constraints: ProfileConstraints):
        self.constraints = constraints

    def calculate(self, t: float, current: ProfileState, goal: ProfileState) -> ProfileState:
        """Return the profile state ``t`` seconds after ``current``, heading for ``goal``."""
        direction = -1.0 if current.position > goal.position else 1.0
        max_velocity = self.constraints.max_velocity
        max_acceleration = self.constraints.max_acceleration

        start_position = current.position * direction
        start_velocity = min(current.velocity * direction, max_velocity)
        goal_position = goal.position * direction
        goal_velocity = goal.velocity * direction

        # Virtual profile starting and ending at rest
        cutoff_begin = start_velocity / max_acceleration
        cutoff_dist_begin = cutoff_begin * cutoff_begin * max_acceleration / 2.0
        cutoff_end = goal_velocity / max_acceleration
        cutoff_dist_end = cutoff_end * cutoff_end * max_acceleration / 2.0

        full_trap_dist = cutoff_dist_begin + (goal_position - start_position) + cutoff_dist_end
        acceleration_time = max_velocity / max_acceleration
        full_speed_dist = full_trap_dist - acceleration_time * acceleration_time * max_acceleration
        if full_speed_dist < 0.0:
            acceleration_time = math.sqrt(max(full_trap_dist, 0.0) / max_acceleration)
            full_speed_dist = 0.0

        end_accel = acceleration_time - cutoff_begin
        end_full_speed = end_accel + full_speed_dist / max_velocity
        end_decel = end_full_speed + acceleration_time - cutoff_end

        if t < end_accel:
            velocity = start_velocity + t * max_acceleration
            position = start_position + (start_velocity + t * max_acceleration / 2.0) * t
        elif t < end_full_speed:
            velocity = max_velocity
            position = (
                start_position
                + (start_velocity + end_accel * max_acceleration / 2.0) * end_accel
                + max_velocity * (t - end_accel)
            )
        elif t <= end_decel:
            time_left = end_decel - t
            velocity = goal_velocity + time_left * max_acceleration
            position = goal_position - (goal_velocity + time_left * max_acceleration / 2.0) * time_left
        else:
            return goal

        return ProfileState(position * direction, velocity * direction)


class ProfiledPIDController:
    """PID controller whose setpoint follows a trapezoid profile to a goal."""

    def __init__(
        self,
        kp: float,
        ki: float,
        kd: float,
        constraints: ProfileConstraints,
        period: float = LOOP_PERIOD,
    ):
        self.controller = PIDController(kp, ki, kd, period)
        self.period = period
        self.profile = TrapezoidProfile(constraints)
        self.goal = ProfileState()
        self.setpoint = ProfileState()

    @property
    def position_tolerance(self) -> float:
        return self.controller.position_tolerance

    @property
    def position_error(self) -> float:
        return self.controller.position_error

    def set_constraints(self, constraints: ProfileConstraints) -> None:
        self.profile = TrapezoidProfile(constraints)

    def set_tolerance(self, position_tolerance: float, velocity_tolerance: float = math.inf) -> None:
        self.controller.set_tolerance(position_tolerance, velocity_tolerance)

    def enable_continuous_input(self, minimum_input: float, maximum_input: float) -> None:
        self.controller.enable_continuous_input(minimum_input, maximum_input)

    def reset(self, position: float, velocity: float = 0.0) -> None:
        """Restart the profile from a measured position and velocity."""
        self.controller.reset()
        self.setpoint = ProfileState(position, velocity)

    def calculate(self, measurement: float, goal: Optional[float] = None) -> float:
        """Advance the profile one period and return the PID output.

        Args:
            measurement: Current process value.
            goal: New goal position (at rest), or None to keep the current goal.
        """
        if goal is not None:
            self.goal = ProfileState(goal, 0.0)

        if self.controller.continuous:
            bound = (self.controller.maximum_input - self.controller.minimum_input) / 2.0
            goal_distance = input_modulus(self.goal.position - measurement, -bound, bound)
            setpoint_distance = input_modulus(self.setpoint.position - measurement, -bound, bound)
            self.goal = ProfileState(goal_distance + measurement, self.goal.velocity)
            self.setpoint = ProfileState(setpoint_distance + measurement, self.setpoint.velocity)

        self.setpoint = self.profile.calculate(self.period, self.setpoint, self.goal)
        return self.controller.calculate(measurement, self.setpoint.position)

    def at_goal(self) -> bool:
        """At the setpoint, and the profile has reached the goal."""
        return self.controller.at_setpoint() and self.goal == self.setpoint

    def get_diagnostics(self) -> Dict[str, float]:
        diagnostics = self.controller.get_diagnostics()
        diagnostics.update(
            {
                "goal": self.goal.position,
                "profile_position": self.setpoint.position,
                "profile_velocity": self.setpoint.velocity,
            }
        )
        return diagnostics
