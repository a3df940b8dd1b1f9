"""Metrics engine: turns a bounded candle buffer into normalized indicators.

All indicators are heuristics tuned for visible motion on the device, not
trading signals. Every function tolerates short or empty buffers.
"""
from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

import numpy as np

from chartsync.models import BUFFER_SIZE, Candle, DerivedMetrics

log = logging.getLogger("chartsync.metrics")

NEUTRAL_METRICS = DerivedMetrics()

TREND_WINDOW = 3
SMA_WINDOW = 5


# ── Numeric helpers ──

def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def clamp01(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def round_half_up(value: float) -> int:
    """Round .5 away from zero toward +inf, independent of banker's rounding."""
    return int(math.floor(value + 0.5))


def ema(values: Sequence[float], n: int) -> float:
    """Final value of an EMA with k = 2/(n+1), seeded with the first value."""
    if len(values) == 0:
        return 0.0
    arr = np.asarray(values, dtype=float)
    if len(arr) == 1:
        return float(arr[0])

    k = 2.0 / (n + 1)
    result = arr[0]
    for v in arr[1:]:
        result = v * k + result * (1 - k)
    return float(result)


def sma(values: Sequence[float], n: int) -> float:
    """Mean of the last n values (or all of them when fewer)."""
    if len(values) == 0 or n <= 0:
        return 0.0
    return float(np.mean(np.asarray(values[-n:], dtype=float)))


def normalize_volume(volumes: Sequence[float]) -> float:
    """Z-score of the latest volume, mapped so that -3..+3 sigma covers 0..1."""
    if len(volumes) < 2:
        return 0.5

    arr = np.asarray(volumes, dtype=float)
    std = float(np.std(arr)) or 1.0
    z_score = (arr[-1] - float(np.mean(arr))) / std
    return clamp01((z_score + 3) / 6)


def _candle_return(c: Candle) -> float:
    return (c.close - c.open) / c.open if c.open > 0 else 0.0


def _candle_range(c: Candle) -> float:
    return (c.high - c.low) / c.open if c.open > 0 else 0.0


# ── Buffer + metrics ──

def update_buffer(buffer: Sequence[Candle], new_candle: Candle,
                  max_size: int = BUFFER_SIZE) -> list[Candle]:
    """Append a candle, evicting the oldest entries past max_size."""
    updated = list(buffer)
    updated.append(new_candle)
    if len(updated) > max_size:
        return updated[-max_size:]
    return updated


def compute_metrics(candles: Sequence[Candle],
                    prev_volume: Optional[float] = None) -> DerivedMetrics:
    """Compute DerivedMetrics from the buffer. Empty buffer → neutral metrics."""
    if not candles:
        return NEUTRAL_METRICS

    latest = candles[-1]
    returns = [_candle_return(c) for c in candles]
    ranges = [_candle_range(c) for c in candles]
    volumes = [c.volume for c in candles]
    closes = [c.close for c in candles]

    window = min(TREND_WINDOW, len(candles))
    trend = ema(returns, window)
    chop = ema(ranges, window)

    accel = abs(returns[-1] - returns[-2]) if len(returns) >= 2 else 0.0

    ma = sma(closes, min(SMA_WINDOW, len(closes)))
    deviation = (latest.close - ma) / ma if ma > 0 else 0.0

    # Volume stands in for liquidity; a zero/missing previous value means no reading
    liq_drop = 0.0
    if prev_volume and len(volumes) >= 2:
        liq_drop = max(0.0, (prev_volume - volumes[-1]) / prev_volume)

    metrics = DerivedMetrics(
        ret=returns[-1],
        range_pct=ranges[-1],
        trend=trend,
        chop=chop,
        vol_norm=normalize_volume(volumes),
        liq_drop=liq_drop,
        accel=accel,
        deviation=deviation,
    )
    log.debug(
        "[METRICS] n=%d trend=%.5f chop=%.5f accel=%.5f dev=%.5f liqDrop=%.5f volNorm=%.3f",
        len(candles), trend, chop, accel, deviation, liq_drop, metrics.vol_norm,
    )
    return metrics
