"""Shared fixtures: a controllable clock, session/candle factories, memory stores."""
from __future__ import annotations

import pytest

from chartsync.models import Candle, ChartSyncSession, ModeParams
from chartsync.store import MemoryBackend, SessionStore

T0 = 1_700_000_000_000  # fixed epoch ms used across tests


class FakeClock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class FakeFeed:
    """Hands out queued candles; None once the queue is empty."""

    def __init__(self, candles=None, error: Exception | None = None):
        self.candles = list(candles or [])
        self.error = error
        self.calls = []

    async def fetch_candle(self, token_mint):
        self.calls.append(token_mint)
        if self.error is not None:
            raise self.error
        return self.candles.pop(0) if self.candles else None

    async def close(self):
        return None


def candle(close: float, open_: float | None = None, volume: float = 100.0,
           spread: float = 0.002, ts: int = T0) -> Candle:
    open_ = close if open_ is None else open_
    return Candle(
        open=open_,
        high=max(open_, close) * (1 + spread),
        low=min(open_, close) * (1 - spread),
        close=close,
        volume=volume,
        timestamp=ts,
    )


PARAMS = ModeParams(
    trend_cap=0.01,
    chop_cap=0.01,
    accel_cap=0.005,
    dev_cap=0.01,
    liq_drop_cap=0.1,
    weight_trend=0.6,
    weight_chop=0.4,
    ema_window=3,
)


def session(session_id: str = "state-1", token_mint: str = "MintAAA",
            start_time: int = T0, duration_ms: int = 600_000, **kwargs) -> ChartSyncSession:
    return ChartSyncSession(
        session_id=session_id,
        token_mint=token_mint,
        start_time=start_time,
        end_time=start_time + duration_ms,
        mode_id=kwargs.pop("mode_id", 1),
        mode_params=kwargs.pop("mode_params", PARAMS),
        seed=kwargs.pop("seed", 12345),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_session():
    return session


@pytest.fixture
def make_candle():
    return candle


@pytest.fixture
def params():
    return PARAMS


@pytest.fixture
def backends():
    return MemoryBackend(name="redis"), MemoryBackend(name="firestore")


@pytest.fixture
def store(backends, clock):
    primary, durable = backends
    return SessionStore(primary, durable, clock=clock)


@pytest.fixture
def fake_feed():
    return FakeFeed
