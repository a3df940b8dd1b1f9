"""Five chart-sync modes and the rule that picks one each tick.

Each mode maps (metrics, params) → ModeResult:
  1. Trend Rider      slope-driven, follows the chart
  2. Chop Monster     sideways volatility becomes depth
  3. Momentum Bursts  acceleration spikes become events
  4. Mean Reverter    overextension changes the feel
  5. Liquidity Panic  volume collapse: fast and tight, or a full stop

Every ratio is clamped to [0, 1] against the session's per-mode cap before
weighting. Selection is pure: same inputs, same mode.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Callable

from chartsync.metrics import clamp01, round_half_up
from chartsync.models import DerivedMetrics, ModeParams, ModeResult

log = logging.getLogger("chartsync.modes")


class ModeId(IntEnum):
    TREND_RIDER = 1
    CHOP_MONSTER = 2
    MOMENTUM_BURSTS = 3
    MEAN_REVERTER = 4
    LIQUIDITY_PANIC = 5


MODE_NAMES = {
    ModeId.TREND_RIDER: "Trend Rider",
    ModeId.CHOP_MONSTER: "Chop Monster",
    ModeId.MOMENTUM_BURSTS: "Momentum Bursts",
    ModeId.MEAN_REVERTER: "Mean Reverter",
    ModeId.LIQUIDITY_PANIC: "Liquidity Panic",
}

# Selection weights, in tie-break order
SELECTION_WEIGHTS = (
    (ModeId.TREND_RIDER, 1.0),
    (ModeId.CHOP_MONSTER, 1.1),
    (ModeId.MOMENTUM_BURSTS, 1.2),
    (ModeId.MEAN_REVERTER, 1.05),
)
PANIC_OVERRIDE = 0.35   # liqDrop score that forces Liquidity Panic
PANIC_STOP = 0.90       # liqDrop score that stops the device
MIN_SCORE = 0.05        # below this everything is quiet → Trend Rider


def _ratio(value: float, cap: float) -> float:
    return clamp01(value / cap) if cap > 0 else 0.0


def trend_rider(metrics: DerivedMetrics, params: ModeParams) -> ModeResult:
    trend_n = _ratio(abs(metrics.trend), params.trend_cap)
    chop_n = _ratio(metrics.chop, params.chop_cap)

    intensity = params.weight_trend * trend_n + params.weight_chop * chop_n
    return ModeResult(
        intensity=intensity,
        speed=round_half_up(15 + 85 * intensity),
        amplitude=round_half_up(10 + 40 * (0.35 * trend_n + 0.65 * chop_n)),
        style="trend-rider",
    )


def chop_monster(metrics: DerivedMetrics, params: ModeParams) -> ModeResult:
    trend_n = _ratio(abs(metrics.trend), params.trend_cap)
    chop_n = _ratio(metrics.chop, params.chop_cap)

    # Slower but deeper
    intensity = 0.25 * trend_n + 0.75 * chop_n
    return ModeResult(
        intensity=intensity,
        speed=round_half_up(10 + 70 * intensity),
        amplitude=round_half_up(20 + 30 * chop_n),
        style="chop-monster",
    )


def momentum_bursts(metrics: DerivedMetrics, params: ModeParams) -> ModeResult:
    accel_n = _ratio(metrics.accel, params.accel_cap)
    vol_n = clamp01(metrics.vol_norm)

    intensity = 0.65 * accel_n + 0.35 * vol_n
    speed = round_half_up(20 + 80 * intensity)
    amplitude = round_half_up(12 + 38 * (0.5 * accel_n + 0.5 * vol_n))

    style = "momentum-bursts"
    if accel_n > 0.85:
        speed = max(speed, 85)
        amplitude = max(amplitude, 30)
        style = "momentum-burst-spike"

    return ModeResult(intensity=intensity, speed=speed, amplitude=amplitude, style=style)


def mean_reverter(metrics: DerivedMetrics, params: ModeParams) -> ModeResult:
    dev_n = _ratio(abs(metrics.deviation), params.dev_cap)
    chop_n = _ratio(metrics.chop, params.chop_cap)

    intensity = 0.55 * dev_n + 0.45 * chop_n
    speed = round_half_up(10 + 75 * intensity)
    amplitude = round_half_up(15 + 35 * (0.7 * dev_n + 0.3 * chop_n))

    style = "mean-reverter"
    if metrics.deviation > 0:
        # Overbought: tense, narrow and quicker
        amplitude = round_half_up(amplitude * 0.85)
        speed = round_half_up(speed * 1.1)
        style = "mean-reverter-overbought"
    elif metrics.deviation < 0:
        # Oversold: slower grind, wider strokes
        amplitude = round_half_up(amplitude * 1.15)
        speed = round_half_up(speed * 0.9)
        style = "mean-reverter-oversold"

    return ModeResult(intensity=intensity, speed=speed, amplitude=amplitude, style=style)


def liquidity_panic(metrics: DerivedMetrics, params: ModeParams) -> ModeResult:
    trend_n = _ratio(abs(metrics.trend), params.trend_cap)
    chop_n = _ratio(metrics.chop, params.chop_cap)
    liq_n = _ratio(metrics.liq_drop, params.liq_drop_cap)

    base = 0.5 * trend_n + 0.5 * chop_n
    intensity = max(base, liq_n)

    if liq_n >= PANIC_STOP:
        return ModeResult(intensity=intensity, speed=0, amplitude=0,
                          style="liquidity-panic-stop")
    if liq_n >= PANIC_OVERRIDE:
        return ModeResult(
            intensity=intensity,
            speed=round_half_up(60 + 40 * liq_n),
            amplitude=round_half_up(6 + 16 * (1 - liq_n)),
            style="liquidity-panic-active",
        )
    return ModeResult(
        intensity=intensity,
        speed=round_half_up(15 + 75 * base),
        amplitude=round_half_up(12 + 38 * chop_n),
        style="liquidity-panic",
    )


MODES: dict[int, Callable[[DerivedMetrics, ModeParams], ModeResult]] = {
    ModeId.TREND_RIDER: trend_rider,
    ModeId.CHOP_MONSTER: chop_monster,
    ModeId.MOMENTUM_BURSTS: momentum_bursts,
    ModeId.MEAN_REVERTER: mean_reverter,
    ModeId.LIQUIDITY_PANIC: liquidity_panic,
}


def compute_mode(mode_id: int, metrics: DerivedMetrics, params: ModeParams) -> ModeResult:
    """Run one mode. Unknown ids fall back to Trend Rider."""
    return MODES.get(mode_id, trend_rider)(metrics, params)


def mode_name(mode_id: int) -> str:
    try:
        return MODE_NAMES[ModeId(mode_id)]
    except ValueError:
        return "Unknown"


def select_mode(metrics: DerivedMetrics, params: ModeParams) -> int:
    """Pick the mode whose market condition dominates this tick."""
    scores = {
        ModeId.TREND_RIDER: _ratio(abs(metrics.trend), params.trend_cap),
        ModeId.CHOP_MONSTER: _ratio(metrics.chop, params.chop_cap),
        ModeId.MOMENTUM_BURSTS: _ratio(metrics.accel, params.accel_cap),
        ModeId.MEAN_REVERTER: _ratio(abs(metrics.deviation), params.dev_cap),
    }
    liq_score = _ratio(metrics.liq_drop, params.liq_drop_cap)

    log.debug(
        "[MODE] Scores trend=%.3f chop=%.3f accel=%.3f dev=%.3f liqDrop=%.3f",
        scores[ModeId.TREND_RIDER], scores[ModeId.CHOP_MONSTER],
        scores[ModeId.MOMENTUM_BURSTS], scores[ModeId.MEAN_REVERTER], liq_score,
    )

    if liq_score >= PANIC_OVERRIDE:
        return int(ModeId.LIQUIDITY_PANIC)

    best_mode, best_score = ModeId.TREND_RIDER, -1.0
    for mode, weight in SELECTION_WEIGHTS:
        weighted = scores[mode] * weight
        # Strictly greater keeps the first-listed mode on ties
        if weighted > best_score:
            best_mode, best_score = mode, weighted

    if best_score < MIN_SCORE:
        return int(ModeId.TREND_RIDER)
    return int(best_mode)
