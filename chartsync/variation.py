"""Seeded randomness: session seeds, per-session mode params, per-tick variation.

Every derivation builds its own SeededRandom so concurrent ticks for the same
session reproduce the same stream. Nothing here touches the global random
module.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from chartsync.metrics import clamp, clamp01, round_half_up
from chartsync.models import COMMAND_INTERVAL_MS, ChartSyncSession, DerivedMetrics, ModeParams

log = logging.getLogger("chartsync.variation")

_LCG_MULT = 1103515245
_LCG_INC = 12345
_LCG_MASK = 0x7FFFFFFF

TICK_SALT = 7919
MODE_SALT = 3571
MAX_DRIFT = 12


class SeededRandom:
    """Linear congruential generator; next() yields floats in [0, 1]."""

    def __init__(self, seed: int):
        self.state = int(seed)

    def next(self) -> float:
        self.state = (self.state * _LCG_MULT + _LCG_INC) & _LCG_MASK
        return self.state / _LCG_MASK

    def range(self, lo: float, hi: float) -> float:
        return lo + self.next() * (hi - lo)

    def randint(self, lo: int, hi: int) -> int:
        """Integer in [lo, hi], inclusive."""
        # next() can return exactly 1.0 when the state hits the mask
        return min(hi, math.floor(self.range(lo, hi + 1)))


def _hash32(text: str) -> int:
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    # Reinterpret as signed 32-bit
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def generate_seed(state_id: str, token_mint: str, start_time: int) -> int:
    """Deterministic seed shared by sessions for the same token in the same minute."""
    return abs(_hash32(f"{state_id}:{token_mint}:{start_time // 60_000}"))


def generate_mode_params(rng: SeededRandom, mode_id: int) -> ModeParams:
    """Randomized caps/weights for one session. Caps are low for meme-coin volatility."""
    trend_cap = rng.range(0.003, 0.010)
    chop_cap = rng.range(0.005, 0.020)
    accel_cap = rng.range(0.002, 0.008)
    dev_cap = rng.range(0.005, 0.020)
    liq_drop_cap = rng.range(0.03, 0.15)
    weight_trend = rng.range(0.5, 0.75)
    ema_window = rng.randint(2, 4)

    if mode_id == 2:
        chop_cap = rng.range(0.004, 0.015)
    elif mode_id == 3:
        accel_cap = rng.range(0.002, 0.008)
    elif mode_id == 5:
        liq_drop_cap = rng.range(0.03, 0.12)

    params = ModeParams(
        trend_cap=trend_cap,
        chop_cap=chop_cap,
        accel_cap=accel_cap,
        dev_cap=dev_cap,
        liq_drop_cap=liq_drop_cap,
        weight_trend=weight_trend,
        weight_chop=1 - weight_trend,
        ema_window=ema_window,
    )
    log.debug("[CHARTSYNC] Mode params trendCap=%.4f chopCap=%.4f accelCap=%.4f devCap=%.4f",
              params.trend_cap, params.chop_cap, params.accel_cap, params.dev_cap)
    return params


@dataclass(frozen=True)
class Variation:
    speed: int
    amplitude: int
    drift: int


def elapsed_ticks(session: ChartSyncSession, now_ms: int) -> int:
    return max(0, (now_ms - session.start_time) // COMMAND_INTERVAL_MS)


def apply_expressive_variation(session: ChartSyncSession, metrics: DerivedMetrics,
                               speed: float, amplitude: float,
                               now_ms: Optional[int] = None) -> Variation:
    """Bounded sinusoidal offsets plus a directional window drift in [-12, 12]."""
    ticks = elapsed_ticks(session, now_ms if now_ms is not None else session.start_time)
    rng = SeededRandom(session.seed + ticks * TICK_SALT + session.mode_id * MODE_SALT)

    volatility = clamp01(metrics.chop * 25 + metrics.accel * 80 + metrics.vol_norm * 0.5)

    swing = math.sin((ticks + rng.next()) * (1.2 + session.mode_id * 0.18))
    pulse = math.cos((ticks + rng.next()) * (0.7 + session.mode_id * 0.12))

    speed_variance = (4 + volatility * 12) * swing + rng.range(-3, 3)
    amp_variance = (2 + volatility * 10) * pulse + rng.range(-2, 2)

    direction = 1 if metrics.trend >= 0 else -1
    drift = round_half_up(clamp(
        direction * (3 + volatility * 8) + metrics.deviation * 15, -MAX_DRIFT, MAX_DRIFT,
    ))

    return Variation(
        speed=round_half_up(speed + speed_variance),
        amplitude=round_half_up(amplitude + amp_variance),
        drift=drift,
    )
