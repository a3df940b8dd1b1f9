from __future__ import annotations

from chartsync.models import DerivedMetrics
from chartsync.modes import (
    ModeId,
    chop_monster,
    compute_mode,
    liquidity_panic,
    mean_reverter,
    mode_name,
    momentum_bursts,
    select_mode,
    trend_rider,
)


def test_trend_rider_mapping(params):
    result = trend_rider(DerivedMetrics(trend=0.01), params)
    assert result.intensity == 0.6
    assert result.speed == 66
    assert result.amplitude == 24
    assert result.style == "trend-rider"


def test_ratios_are_capped_at_one(params):
    huge = trend_rider(DerivedMetrics(trend=5.0, chop=5.0), params)
    assert huge.intensity == 1.0
    assert huge.speed == 100
    assert huge.amplitude == 50


def test_chop_monster_is_deeper_than_fast(params):
    result = chop_monster(DerivedMetrics(chop=0.01), params)
    assert result.intensity == 0.75
    assert result.amplitude == 50
    assert result.speed == 63


def test_momentum_spike_forces_floor(params):
    result = momentum_bursts(DerivedMetrics(accel=0.005, vol_norm=0.0), params)
    assert result.style == "momentum-burst-spike"
    assert result.speed >= 85
    assert result.amplitude >= 30


def test_momentum_without_spike(params):
    result = momentum_bursts(DerivedMetrics(accel=0.001, vol_norm=0.5), params)
    assert result.style == "momentum-bursts"


def test_mean_reverter_overbought_vs_oversold(params):
    over = mean_reverter(DerivedMetrics(deviation=0.01), params)
    under = mean_reverter(DerivedMetrics(deviation=-0.01), params)
    assert over.style == "mean-reverter-overbought"
    assert under.style == "mean-reverter-oversold"
    assert over.speed > under.speed
    assert over.amplitude < under.amplitude


def test_liquidity_panic_full_stop_ignores_trend(params):
    metrics = DerivedMetrics(trend=0.05, chop=0.05, liq_drop=0.095)
    result = liquidity_panic(metrics, params)
    assert (result.speed, result.amplitude, result.style) == (0, 0, "liquidity-panic-stop")


def test_liquidity_panic_active_band(params):
    result = liquidity_panic(DerivedMetrics(liq_drop=0.05), params)
    assert result.style == "liquidity-panic-active"
    assert result.speed == 80
    assert result.amplitude == 14


def test_liquidity_panic_baseline(params):
    result = liquidity_panic(DerivedMetrics(liq_drop=0.01), params)
    assert result.style == "liquidity-panic"


def test_select_mode_liquidity_override(params):
    metrics = DerivedMetrics(trend=0.05, chop=0.05, accel=0.05, liq_drop=0.05)
    assert select_mode(metrics, params) == ModeId.LIQUIDITY_PANIC


def test_select_mode_quiet_market_defaults_to_trend_rider(params):
    assert select_mode(DerivedMetrics(), params) == ModeId.TREND_RIDER
    assert select_mode(DerivedMetrics(chop=0.0002), params) == ModeId.TREND_RIDER


def test_select_mode_picks_weighted_max(params):
    assert select_mode(DerivedMetrics(chop=0.008, trend=0.005), params) == ModeId.CHOP_MONSTER
    assert select_mode(DerivedMetrics(accel=0.004, chop=0.008), params) == ModeId.MOMENTUM_BURSTS
    assert select_mode(DerivedMetrics(deviation=-0.009), params) == ModeId.MEAN_REVERTER


def test_select_mode_saturated_scores_use_weights(params):
    # Every score saturates at 1.0, so the heaviest weight (accel) wins
    saturated = DerivedMetrics(trend=1, chop=1, accel=1, deviation=1)
    assert select_mode(saturated, params) == ModeId.MOMENTUM_BURSTS


def test_selection_is_pure(params):
    metrics = DerivedMetrics(trend=0.004, chop=0.006, accel=0.002, deviation=0.003, liq_drop=0.01)
    first = select_mode(metrics, params)
    assert all(select_mode(metrics, params) == first for _ in range(5))
    assert compute_mode(first, metrics, params) == compute_mode(first, metrics, params)


def test_compute_mode_unknown_id_falls_back(params):
    metrics = DerivedMetrics(trend=0.01)
    assert compute_mode(99, metrics, params) == trend_rider(metrics, params)


def test_mode_names():
    assert mode_name(1) == "Trend Rider"
    assert mode_name(5) == "Liquidity Panic"
    assert mode_name(42) == "Unknown"
