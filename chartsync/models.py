"""Data models for chart-synced actuator sessions.

Timestamps are epoch milliseconds throughout; the persisted session layout
uses the camelCase keys shared with the outer API layer.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

# ── Engine constants ──
COMMAND_INTERVAL_MS = 60_000            # one tick per minute
SESSION_DURATION_MS = 10 * 60 * 1000    # default promotion slot
BUFFER_SIZE = 10                        # candles kept per session
BOOSTER_THRESHOLD = 0.10                # intensity below this gets boosted

DEFAULT_SPEED = 40
DEFAULT_AMPLITUDE = 25

# Device limits
MIN_SPEED = 0
MAX_SPEED = 100
MIN_AMP = 0
MAX_AMP = 50
MIN_Y = 0
MAX_Y = 100


def _as_ms(value: Any) -> int:
    """Epoch ms from an int/float, or from a datetime left by a server timestamp."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if hasattr(value, "timestamp"):
        return int(value.timestamp() * 1000)
    return 0


@dataclass(frozen=True)
class Candle:
    """One OHLCV sample. Immutable once recorded."""

    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> Candle:
        return cls(
            open=float(d["open"]),
            high=float(d["high"]),
            low=float(d["low"]),
            close=float(d["close"]),
            volume=float(d["volume"]),
            timestamp=float(d["timestamp"]),
        )


@dataclass(frozen=True)
class DerivedMetrics:
    """Normalized indicators computed fresh each tick from the candle buffer."""

    ret: float = 0.0          # (close - open) / open of the latest candle
    range_pct: float = 0.0    # (high - low) / open of the latest candle
    trend: float = 0.0        # EMA of per-candle returns
    chop: float = 0.0         # EMA of per-candle ranges
    vol_norm: float = 0.5     # volume z-score mapped to 0-1
    liq_drop: float = 0.0     # fractional volume drop vs previous candle
    accel: float = 0.0        # |change in return|
    deviation: float = 0.0    # distance from SMA of closes

    def to_dict(self) -> dict:
        return {
            "ret": self.ret,
            "rangePct": self.range_pct,
            "trend": self.trend,
            "chop": self.chop,
            "volNorm": self.vol_norm,
            "liqDrop": self.liq_drop,
            "accel": self.accel,
            "deviation": self.deviation,
        }


@dataclass(frozen=True)
class ModeParams:
    """Per-session randomized caps and weights. Never mutated after creation."""

    trend_cap: float
    chop_cap: float
    accel_cap: float
    dev_cap: float
    liq_drop_cap: float
    weight_trend: float
    weight_chop: float
    ema_window: int

    def to_dict(self) -> dict:
        return {
            "trendCap": self.trend_cap,
            "chopCap": self.chop_cap,
            "accelCap": self.accel_cap,
            "devCap": self.dev_cap,
            "liqDropCap": self.liq_drop_cap,
            "weightTrend": self.weight_trend,
            "weightChop": self.weight_chop,
            "emaN": self.ema_window,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ModeParams:
        return cls(
            trend_cap=float(d["trendCap"]),
            chop_cap=float(d["chopCap"]),
            accel_cap=float(d["accelCap"]),
            dev_cap=float(d["devCap"]),
            liq_drop_cap=float(d["liqDropCap"]),
            weight_trend=float(d["weightTrend"]),
            weight_chop=float(d["weightChop"]),
            ema_window=int(d["emaN"]),
        )


@dataclass(frozen=True)
class ModeResult:
    intensity: float
    speed: float
    amplitude: float
    style: str = ""


@dataclass(frozen=True)
class DeviceCommand:
    """What the actuator receives. speed == 0 is the canonical stop."""

    speed: int
    min_y: int
    max_y: int

    @classmethod
    def stop(cls) -> DeviceCommand:
        return cls(speed=0, min_y=50, max_y=50)

    @property
    def is_stop(self) -> bool:
        return self.speed == 0

    def to_dict(self) -> dict:
        return {"speed": self.speed, "minY": self.min_y, "maxY": self.max_y}


@dataclass
class SessionConfig:
    """Inputs for creating a session when a token becomes the active promotion."""

    session_state_id: str
    token_mint: str
    start_time: Optional[int] = None
    duration_ms: Optional[int] = None
    initial_mode_id: Optional[int] = None
    initial_speed: Optional[int] = None
    initial_amplitude: Optional[int] = None


@dataclass
class ChartSyncSession:
    """The only persisted entity: one token's chart-synced run."""

    session_id: str
    token_mint: str
    start_time: int
    end_time: int
    mode_id: int
    mode_params: ModeParams
    seed: int
    last_speed: int = DEFAULT_SPEED
    last_amplitude: int = DEFAULT_AMPLITUDE
    booster_step: int = 0
    candle_buffer: list[Candle] = field(default_factory=list)
    is_active: bool = True
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted layout (camelCase keys)."""
        return {
            "sessionId": self.session_id,
            "tokenMint": self.token_mint,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "modeId": self.mode_id,
            "modeParams": self.mode_params.to_dict(),
            "seed": self.seed,
            "lastSpeed": self.last_speed,
            "lastAmplitude": self.last_amplitude,
            "boosterStep": self.booster_step,
            "candleBuffer": [c.to_dict() for c in self.candle_buffer],
            "isActive": self.is_active,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ChartSyncSession:
        """Inverse of to_dict. Raises KeyError/TypeError/ValueError on malformed input."""
        if not isinstance(d, dict):
            raise ValueError(f"session record is {type(d).__name__}, not an object")
        if not d.get("sessionId") or not d.get("tokenMint"):
            raise ValueError("session record missing sessionId/tokenMint")
        return cls(
            session_id=str(d["sessionId"]),
            token_mint=str(d["tokenMint"]),
            start_time=int(d["startTime"]),
            end_time=int(d["endTime"]),
            mode_id=int(d["modeId"]),
            mode_params=ModeParams.from_dict(d["modeParams"]),
            seed=int(d["seed"]),
            last_speed=int(d.get("lastSpeed", DEFAULT_SPEED)),
            last_amplitude=int(d.get("lastAmplitude", DEFAULT_AMPLITUDE)),
            booster_step=int(d.get("boosterStep", 0)),
            candle_buffer=[Candle.from_dict(c) for c in d.get("candleBuffer") or []],
            is_active=bool(d.get("isActive", True)),
            updated_at=_as_ms(d.get("updatedAt")),
        )


@dataclass
class SessionStatus:
    exists: bool
    is_active: bool
    elapsed_s: Optional[int] = None
    remaining_s: Optional[int] = None
    mode: Optional[str] = None
    last_speed: Optional[int] = None
    last_amplitude: Optional[int] = None

    def to_dict(self) -> dict:
        if not self.exists:
            return {"exists": False, "isActive": False}
        return {
            "exists": True,
            "isActive": self.is_active,
            "elapsed": self.elapsed_s,
            "remaining": self.remaining_s,
            "mode": self.mode,
            "lastCommand": {"speed": self.last_speed, "amplitude": self.last_amplitude},
        }
