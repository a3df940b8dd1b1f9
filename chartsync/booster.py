"""Booster mechanic: a rotating floor that keeps quiet charts visibly alive.

Below the intensity threshold, one of three fixed patterns lifts speed and
amplitude via max(value, floor). The step advances 0 → 1 → 2 → 0 while the
market stays quiet and resets to 0 as soon as intensity recovers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from chartsync.models import BOOSTER_THRESHOLD

log = logging.getLogger("chartsync.booster")

# (name, min speed, min amplitude)
BOOSTER_PATTERNS = (
    ("heartbeat", 28, 18),     # gentle pulse
    ("pump", 45, 28),          # stronger push
    ("tease-reset", 35, 12),   # back down
)


@dataclass(frozen=True)
class BoosterResult:
    speed: float
    amplitude: float
    new_step: int
    was_applied: bool


def should_boost(intensity: float) -> bool:
    return intensity < BOOSTER_THRESHOLD


def booster_pattern_name(step: int) -> str:
    if 0 <= step < len(BOOSTER_PATTERNS):
        return BOOSTER_PATTERNS[step][0]
    return "unknown"


def apply_booster(intensity: float, speed: float, amplitude: float,
                  step: int) -> BoosterResult:
    if not should_boost(intensity):
        return BoosterResult(speed=speed, amplitude=amplitude, new_step=0, was_applied=False)

    # A corrupted step from storage still lands on a valid pattern
    step = step % len(BOOSTER_PATTERNS)
    name, min_speed, min_amp = BOOSTER_PATTERNS[step]
    boosted = BoosterResult(
        speed=max(speed, min_speed),
        amplitude=max(amplitude, min_amp),
        new_step=(step + 1) % len(BOOSTER_PATTERNS),
        was_applied=True,
    )
    log.debug("[BOOSTER] %s intensity=%.3f speed %s→%s amp %s→%s",
              name, intensity, speed, boosted.speed, amplitude, boosted.amplitude)
    return boosted
