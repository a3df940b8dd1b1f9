"""Session manager: create, tick, end and sweep chart-sync sessions.

One tick = fetch candle → metrics → mode → booster → variation → safety.
A tick returns a command, a conservative fallback command, or None when there
is no live session to drive. The only error it lets through is
StoreUnavailableError, when neither backend accepted the updated session.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from chartsync.booster import apply_booster, booster_pattern_name
from chartsync.config import ChartSyncConfig
from chartsync.metrics import compute_metrics, update_buffer
from chartsync.models import (
    BUFFER_SIZE,
    DEFAULT_AMPLITUDE,
    DEFAULT_SPEED,
    SESSION_DURATION_MS,
    Candle,
    ChartSyncSession,
    DeviceCommand,
    SessionConfig,
    SessionStatus,
)
from chartsync.modes import ModeId, compute_mode, mode_name, select_mode
from chartsync.safety import run_safety_pipeline
from chartsync.store import SessionStore, StoreUnavailableError
from chartsync.variation import (
    SeededRandom,
    apply_expressive_variation,
    generate_mode_params,
    generate_seed,
)

log = logging.getLogger("chartsync.session")

FALLBACK_MIN_SPEED = 20
FALLBACK_SPEED_DROP = 10
FALLBACK_WINDOW = (40, 60)


class CandleFeed(Protocol):
    async def fetch_candle(self, token_mint: str) -> Optional[Candle]: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def fallback_command(last_speed: int) -> DeviceCommand:
    """Degraded but safe: a bit slower than before, narrow centered window."""
    return DeviceCommand(
        speed=max(FALLBACK_MIN_SPEED, last_speed - FALLBACK_SPEED_DROP),
        min_y=FALLBACK_WINDOW[0],
        max_y=FALLBACK_WINDOW[1],
    )


class SessionManager:
    def __init__(self, store: SessionStore, feed: CandleFeed,
                 cfg: Optional[ChartSyncConfig] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.feed = feed
        self._clock = clock or _now_ms
        self._buffer_size = cfg.buffer_size if cfg else BUFFER_SIZE
        self._anti_bored_floor = cfg.anti_bored_floor if cfg else False
        self._duration_ms = cfg.session_duration_s * 1000 if cfg else SESSION_DURATION_MS

    def is_expired(self, session: ChartSyncSession, now: Optional[int] = None) -> bool:
        return (now if now is not None else self._clock()) >= session.end_time

    # ── Lifecycle ──

    async def create(self, config: SessionConfig) -> ChartSyncSession:
        """Build and persist a new session. Raises StoreUnavailableError if nothing persisted."""
        start_time = config.start_time or self._clock()
        duration_ms = config.duration_ms or self._duration_ms
        seed = generate_seed(config.session_state_id, config.token_mint, start_time)
        mode_id = config.initial_mode_id or int(ModeId.TREND_RIDER)

        session = ChartSyncSession(
            session_id=f"{config.session_state_id}-{config.token_mint}-{start_time}",
            token_mint=config.token_mint,
            start_time=start_time,
            end_time=start_time + duration_ms,
            mode_id=mode_id,
            mode_params=generate_mode_params(SeededRandom(seed), mode_id),
            seed=seed,
            last_speed=config.initial_speed if config.initial_speed is not None else DEFAULT_SPEED,
            last_amplitude=(config.initial_amplitude if config.initial_amplitude is not None
                            else DEFAULT_AMPLITUDE),
        )
        await self.store.save(session)

        log.info("[CHARTSYNC] Session created %s token=%s mode=%s duration=%dm seed=%d",
                 session.session_id, session.token_mint[:12], mode_name(mode_id),
                 round(duration_ms / 60_000), seed)
        return session

    async def get(self, session_id: str) -> Optional[ChartSyncSession]:
        return await self.store.load(session_id)

    async def end(self, session_id: str) -> None:
        """Mark inactive and persist. The record stays until the sweep removes it."""
        session = await self.store.load(session_id)
        if session is None:
            return
        session.is_active = False
        await self.store.save(session)
        log.info("[CHARTSYNC] Session ended: %s", session_id)

    async def tick(self, session_id: str) -> Optional[DeviceCommand]:
        session = await self.store.load(session_id)
        if session is None:
            log.warning("[CHARTSYNC] Session not found: %s", session_id)
            return None
        if not session.is_active:
            log.debug("[CHARTSYNC] Session %s already ended, tick ignored", session_id)
            return None

        now = self._clock()
        if self.is_expired(session, now):
            log.info("[CHARTSYNC] Session expired: %s", session_id)
            try:
                await self.end(session_id)
            except StoreUnavailableError:
                log.error("[CHARTSYNC] Could not persist end of %s", session_id)
            return DeviceCommand.stop()

        last_speed = session.last_speed
        try:
            return await self._run_pipeline(session, now)
        except StoreUnavailableError:
            # Nothing persisted; the caller retries the tick
            raise
        except Exception:
            log.exception("[CHARTSYNC] Tick error for %s, sending fallback", session_id)
            return fallback_command(last_speed)

    async def _run_pipeline(self, session: ChartSyncSession, now: int) -> DeviceCommand:
        candle = await self.feed.fetch_candle(session.token_mint)
        if candle is not None:
            session.candle_buffer = update_buffer(session.candle_buffer, candle, self._buffer_size)

        buf = session.candle_buffer
        prev_volume = buf[-2].volume if len(buf) > 1 else None
        metrics = compute_metrics(buf, prev_volume)

        session.mode_id = select_mode(metrics, session.mode_params)
        result = compute_mode(session.mode_id, metrics, session.mode_params)

        applied_step = session.booster_step
        boosted = apply_booster(result.intensity, result.speed, result.amplitude, applied_step)
        session.booster_step = boosted.new_step

        varied = apply_expressive_variation(session, metrics, boosted.speed,
                                            boosted.amplitude, now)

        safe = run_safety_pipeline(
            varied.speed, varied.amplitude,
            session.last_speed, session.last_amplitude,
            anti_bored_floor=self._anti_bored_floor,
            drift=varied.drift,
        )
        session.last_speed = safe.speed
        session.last_amplitude = safe.amplitude

        log.info(
            "[CHARTSYNC] Tick %s @%ds mode=%s style=%s intensity=%.3f booster=%s drift=%d "
            "limited=%s cmd=%s",
            session.session_id, (now - session.start_time) // 1000,
            mode_name(session.mode_id), result.style, result.intensity,
            booster_pattern_name(applied_step % 3) if boosted.was_applied else "off",
            varied.drift, safe.was_limited, safe.command.to_dict(),
        )

        await self.store.save(session)
        return safe.command

    async def status(self, session_id: str) -> SessionStatus:
        session = await self.store.load(session_id)
        if session is None:
            return SessionStatus(exists=False, is_active=False)

        now = self._clock()
        return SessionStatus(
            exists=True,
            is_active=session.is_active and not self.is_expired(session, now),
            elapsed_s=(now - session.start_time) // 1000,
            remaining_s=max(0, (session.end_time - now) // 1000),
            mode=mode_name(session.mode_id),
            last_speed=session.last_speed,
            last_amplitude=session.last_amplitude,
        )

    # ── Queries + sweep ──

    async def active_for_token(self, token_mint: str) -> Optional[ChartSyncSession]:
        now = self._clock()
        for session in await self.store.list_sessions():
            if (session.token_mint == token_mint and session.is_active
                    and not self.is_expired(session, now)):
                return session
        return None

    async def list_active(self, include_expired: bool = False) -> list[ChartSyncSession]:
        """Active sessions. include_expired keeps ones past endTime not yet ended."""
        now = self._clock()
        return [s for s in await self.store.list_sessions()
                if s.is_active and (include_expired or not self.is_expired(s, now))]

    async def cleanup_expired(self) -> int:
        """Delete inactive or expired sessions. Returns how many were removed."""
        now = self._clock()
        cleaned = 0
        for session in await self.store.list_sessions():
            if session.is_active and not self.is_expired(session, now):
                continue
            try:
                await self.store.remove(session.session_id)
                cleaned += 1
            except StoreUnavailableError as exc:
                log.error("[CHARTSYNC] Failed to remove expired session %s: %s",
                          session.session_id, exc)
        if cleaned:
            log.info("[CHARTSYNC] Cleaned %d expired sessions", cleaned)
        return cleaned
