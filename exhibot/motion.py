"""Motion helpers used by the firmware: steering, sweep odometry, escapes."""

from __future__ import annotations

import math
import random
from typing import Optional, Tuple

from .models import DriveParams, EscapeParams, EscapeProfile, EscapeReason


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def normalize_angle(a: float) -> float:
    """Wrap an angle into (-pi, pi]."""
    a = math.fmod(a + math.pi, 2.0 * math.pi)
    if a <= 0.0:
        a += 2.0 * math.pi
    return a - math.pi


def steer_toward(
    current_heading: float,
    target_bearing: float,
    gain: float,
    forward_speed: float,
    max_wheel_speed: float = 0.25,
    max_turn: Optional[float] = None,
) -> Tuple[float, float]:
    """
    Proportional steering toward a bearing.

    The forward component shrinks with the heading error (cos of the error,
    floored at zero) so sharp corrections turn more than they drive.
    Positive error means the target is to the left (CCW), which speeds up the
    right wheel.

    Returns:
        (left_speed, right_speed) in m/s, each within +/- max_wheel_speed
    """
    err = normalize_angle(target_bearing - current_heading)
    turn = gain * err
    if max_turn is not None:
        turn = clamp(turn, -max_turn, max_turn)
    forward = forward_speed * max(0.0, math.cos(err))
    left = clamp(forward - turn, -max_wheel_speed, max_wheel_speed)
    right = clamp(forward + turn, -max_wheel_speed, max_wheel_speed)
    return left, right


def steer_by_balance(
    left_mm: float,
    right_mm: float,
    forward_speed: float,
    gain: float,
    max_frac: float,
    max_wheel_speed: float = 0.25,
) -> Tuple[float, float]:
    """
    Steer toward the side reporting the nearer surface.

    Error is right - left: a nearer left reading gives a positive error and
    turns the robot left. The correction is limited to max_frac of the
    forward speed.
    """
    limit = abs(forward_speed) * max_frac
    turn = clamp(gain * (right_mm - left_mm), -limit, limit)
    left = clamp(forward_speed - turn, -max_wheel_speed, max_wheel_speed)
    right = clamp(forward_speed + turn, -max_wheel_speed, max_wheel_speed)
    return left, right


def integrate_sweep_angle(left_speed: float, right_speed: float, wheel_base: float, dt: float) -> float:
    """Rotation (rad, CCW positive) produced by the wheel speeds over dt."""
    return (right_speed - left_speed) / max(wheel_base, 1e-9) * dt


def turn_in_place_rate(turn_speed: float, wheel_base: float) -> float:
    """Angular rate (rad/s) when the wheels spin at +/- turn_speed."""
    return 2.0 * abs(turn_speed) / max(wheel_base, 1e-9)


def pick_turn_direction(side_bias: Optional[float], tolerance_mm: float, rng: random.Random) -> int:
    """
    Turn away from the nearer side.

    side_bias is left_mm - right_mm. Negative means the left side is closer,
    so turn right (-1). Within the tolerance (or unknown) the choice is random.
    """
    if side_bias is None or not math.isfinite(side_bias) or abs(side_bias) <= tolerance_mm:
        return rng.choice((-1, 1))
    return -1 if side_bias < 0 else 1


def compute_escape_profile(
    reason: EscapeReason,
    side_bias: Optional[float],
    params: EscapeParams,
    drive: DriveParams,
    rng: random.Random,
    tolerance_mm: float = 30.0,
) -> EscapeProfile:
    """Build the reverse + turn plan for an escape."""
    table = {
        EscapeReason.WALL: (params.wall_back_s, params.wall_turn_deg),
        EscapeReason.DEPOSIT: (params.deposit_back_s, params.deposit_turn_deg),
        EscapeReason.DEFAULT: (params.default_back_s, params.default_turn_deg),
    }
    back_s, (lo_deg, hi_deg) = table.get(reason, table[EscapeReason.DEFAULT])
    angle = math.radians(rng.uniform(lo_deg, hi_deg))
    rate = turn_in_place_rate(params.escape_turn_speed, drive.wheel_base)
    turn_s = angle / rate if rate > 0 else 0.0
    direction = pick_turn_direction(side_bias, tolerance_mm, rng)
    return EscapeProfile(reason=reason, back_duration=back_s, turn_duration=turn_s, turn_direction=direction)
