"""Safety rails between the mode engine and the actuator.

Fixed order, no branching on mode:
  1. rate limit   ease half the gap, cap the per-tick delta, snap when close
  2. hard clamp   speed [0, 100], amplitude [0, 50]
  3. floor        optional anti-boredom minimums
  4. window       amplitude → minY/maxY around center 50, then drift
  5. validate     bounds and ordering; a failing command never leaves here
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from chartsync.metrics import clamp, round_half_up
from chartsync.models import MAX_AMP, MAX_SPEED, MAX_Y, MIN_AMP, MIN_SPEED, MIN_Y, DeviceCommand

log = logging.getLogger("chartsync.safety")

EASE_FACTOR = 0.5
MAX_SPEED_CHANGE = 25
MAX_AMP_CHANGE = 15
SNAP_EPSILON = 2

ANTI_BORED_SPEED = 12
ANTI_BORED_AMP = 8

CENTER_Y = 50
MAX_DRIFTED_MIN_Y = 95
MIN_DRIFTED_SPAN = 5


class CommandValidationError(ValueError):
    """A command violated device bounds or ordering."""

    def __init__(self, msg: str, command: DeviceCommand | None = None):
        super().__init__(msg)
        self.command = command


@dataclass
class RateLimitResult:
    speed: float
    amplitude: float
    was_limited: bool = False
    details: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SafetyResult:
    speed: int
    amplitude: int
    command: DeviceCommand
    was_limited: bool
    details: str = ""


def apply_rate_limit(target_speed: float, target_amp: float,
                     last_speed: float, last_amp: float) -> RateLimitResult:
    result = RateLimitResult(
        speed=last_speed + (target_speed - last_speed) * EASE_FACTOR,
        amplitude=last_amp + (target_amp - last_amp) * EASE_FACTOR,
    )

    if abs(result.speed - last_speed) > MAX_SPEED_CHANGE:
        result.speed = clamp(result.speed, last_speed - MAX_SPEED_CHANGE,
                             last_speed + MAX_SPEED_CHANGE)
        result.details.append(f"speed capped: {target_speed} -> {round_half_up(result.speed)}")
        result.was_limited = True

    if abs(result.amplitude - last_amp) > MAX_AMP_CHANGE:
        result.amplitude = clamp(result.amplitude, last_amp - MAX_AMP_CHANGE,
                                 last_amp + MAX_AMP_CHANGE)
        result.details.append(f"amplitude capped: {target_amp} -> {round_half_up(result.amplitude)}")
        result.was_limited = True

    if abs(result.speed - target_speed) < SNAP_EPSILON:
        result.speed = target_speed
    if abs(result.amplitude - target_amp) < SNAP_EPSILON:
        result.amplitude = target_amp

    return result


def apply_hard_clamps(speed: float, amplitude: float) -> tuple[int, int]:
    return (
        int(clamp(round_half_up(speed), MIN_SPEED, MAX_SPEED)),
        int(clamp(round_half_up(amplitude), MIN_AMP, MAX_AMP)),
    )


def apply_anti_bored_floor(speed: int, amplitude: int,
                           enabled: bool = False) -> tuple[int, int]:
    if not enabled:
        return speed, amplitude
    return max(speed, ANTI_BORED_SPEED), max(amplitude, ANTI_BORED_AMP)


def amplitude_to_range(amplitude: float) -> tuple[int, int]:
    """Window centered on 50; never collapses to minY == maxY."""
    half_span = max(1, round_half_up(amplitude))
    min_y = int(clamp(CENTER_Y - half_span, MIN_Y, MAX_Y))
    max_y = int(clamp(CENTER_Y + half_span, MIN_Y, MAX_Y))
    return min_y, max_y


def apply_range_drift(command: DeviceCommand, drift: int) -> DeviceCommand:
    if drift == 0:
        return command
    min_y = clamp(command.min_y + drift, MIN_Y, MAX_DRIFTED_MIN_Y)
    max_y = clamp(command.max_y + drift, min_y + MIN_DRIFTED_SPAN, MAX_Y)
    return DeviceCommand(
        speed=command.speed,
        min_y=round_half_up(min_y),
        max_y=round_half_up(max_y),
    )


def validate_command(command: DeviceCommand, strict: bool = False) -> bool:
    """Bounds check. The stop command (speed 0) may have minY == maxY."""
    problems = []
    if not MIN_SPEED <= command.speed <= MAX_SPEED:
        problems.append(f"speed {command.speed} out of range")
    if not MIN_Y <= command.min_y <= MAX_Y:
        problems.append(f"minY {command.min_y} out of range")
    if not MIN_Y <= command.max_y <= MAX_Y:
        problems.append(f"maxY {command.max_y} out of range")
    if command.speed > 0 and command.min_y >= command.max_y:
        problems.append(f"minY {command.min_y} >= maxY {command.max_y}")
    elif command.min_y > command.max_y:
        problems.append(f"minY {command.min_y} > maxY {command.max_y}")

    if not problems:
        return True
    msg = "; ".join(problems)
    if strict:
        raise CommandValidationError(f"invalid device command: {msg}", command)
    log.error("[SAFETY] Rejected command %s: %s", command.to_dict(), msg)
    return False


def run_safety_pipeline(target_speed: float, target_amp: float,
                        last_speed: float, last_amp: float,
                        anti_bored_floor: bool = False,
                        drift: int = 0) -> SafetyResult:
    """Full pipeline. Raises CommandValidationError if the result is unsafe."""
    limited = apply_rate_limit(target_speed, target_amp, last_speed, last_amp)
    speed, amplitude = apply_hard_clamps(limited.speed, limited.amplitude)
    speed, amplitude = apply_anti_bored_floor(speed, amplitude, anti_bored_floor)

    min_y, max_y = amplitude_to_range(amplitude)
    command = apply_range_drift(DeviceCommand(speed=speed, min_y=min_y, max_y=max_y), drift)

    if limited.was_limited:
        log.debug("[SAFETY] %s", "; ".join(limited.details))

    try:
        validate_command(command, strict=True)
    except CommandValidationError:
        log.error("[SAFETY] Pipeline produced invalid command %s", command.to_dict())
        raise

    return SafetyResult(
        speed=speed,
        amplitude=amplitude,
        command=command,
        was_limited=limited.was_limited,
        details="; ".join(limited.details),
    )
