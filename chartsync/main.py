"""ChartSync service: drives every live session once per tick interval.

Each cycle:
  1. rebalance the two session stores
  2. tick every active session (expired ones get ended and a stop command)
  3. dispatch commands to the device when enabled
  4. sweep ended/expired sessions
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from chartsync.config import ChartSyncConfig
from chartsync.device import DeviceClient
from chartsync.market import DexScreenerFeed
from chartsync.models import DeviceCommand, SessionConfig
from chartsync.modes import mode_name
from chartsync.safety import CommandValidationError
from chartsync.session import SessionManager
from chartsync.store import RebalanceReport, SessionStore, build_store

log = logging.getLogger("chartsync")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionResult:
    session_id: str
    token_mint: str
    mode: str
    command: Optional[DeviceCommand]
    device_result: Optional[bool]
    expired: bool = False
    error: str = ""

    def to_dict(self) -> dict:
        d = {
            "sessionId": self.session_id,
            "tokenMint": self.token_mint,
            "mode": self.mode,
            "command": self.command.to_dict() if self.command else None,
            "deviceResult": self.device_result,
            "expired": self.expired,
        }
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class CycleReport:
    timestamp: int
    device_enabled: bool
    store_sync: Optional[RebalanceReport] = None
    processed: int = 0
    cleaned: int = 0
    results: list[SessionResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "deviceEnabled": self.device_enabled,
            "storeSync": self.store_sync.to_dict() if self.store_sync else None,
            "sessionsProcessed": self.processed,
            "cleaned": self.cleaned,
            "results": [r.to_dict() for r in self.results],
        }


class ChartSyncService:
    """Owns the store, market feed, device client and session manager."""

    def __init__(self, cfg: Optional[ChartSyncConfig] = None,
                 store: Optional[SessionStore] = None,
                 feed: Optional[DexScreenerFeed] = None,
                 device: Optional[DeviceClient] = None,
                 clock: Optional[Callable[[], int]] = None):
        self._cfg = cfg or ChartSyncConfig()
        self._clock = clock or _now_ms
        self.store = store or build_store(self._cfg, clock=self._clock)
        self.feed = feed or DexScreenerFeed(self._cfg)
        self.device = device or DeviceClient(self._cfg, clock=self._clock)
        self.manager = SessionManager(self.store, self.feed, self._cfg, clock=self._clock)

        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._logging_ready = False
        self._cycle_count = 0

    @property
    def device_enabled(self) -> bool:
        return self._cfg.device_enabled and self.device.configured

    # ── Logging ──

    def setup_logging(self) -> None:
        if self._logging_ready:
            return
        level = getattr(logging, self._cfg.log_level.upper(), logging.INFO)
        root_log = logging.getLogger("chartsync")
        root_log.setLevel(level)

        fmt = logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(level)
        ch.setFormatter(fmt)
        root_log.addHandler(ch)

        fh = logging.FileHandler(self._cfg.data_dir / "chartsync.log")
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_log.addHandler(fh)

        for lib in ("httpx", "httpcore", "google", "urllib3"):
            logging.getLogger(lib).setLevel(logging.WARNING)
        self._logging_ready = True

    # ── Device dispatch ──

    async def _dispatch(self, command: Optional[DeviceCommand]) -> Optional[bool]:
        """None when dispatch is disabled, else whether the device accepted it."""
        if command is None or not self.device_enabled:
            return None
        try:
            return await self.device.send(command)
        except CommandValidationError as exc:
            log.error("[SERVICE] Refusing to dispatch invalid command: %s", exc)
            return False

    # ── Operations ──

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(timestamp=self._clock(), device_enabled=self.device_enabled)
        report.store_sync = await self.store.rebalance()

        sessions = await self.manager.list_active(include_expired=True)
        for session in sessions:
            result = SessionResult(
                session_id=session.session_id,
                token_mint=session.token_mint,
                mode=mode_name(session.mode_id),
                command=None,
                device_result=None,
            )
            try:
                if self.manager.is_expired(session):
                    await self.manager.end(session.session_id)
                    result.expired = True
                    result.command = DeviceCommand.stop()
                else:
                    result.command = await self.manager.tick(session.session_id)
                    updated = await self.manager.get(session.session_id)
                    if updated is not None:
                        result.mode = mode_name(updated.mode_id)
                result.device_result = await self._dispatch(result.command)
            except Exception as exc:
                log.exception("[SERVICE] Session %s failed this cycle", session.session_id)
                result.error = str(exc)[:200]
            report.results.append(result)
            report.processed += 1

        report.cleaned = await self.manager.cleanup_expired()
        await self.store.flush()

        if report.processed:
            log.info("[SERVICE] Cycle: %d sessions, %d cleaned, device=%s",
                     report.processed, report.cleaned, "ON" if report.device_enabled else "OFF")
        else:
            log.debug("[SERVICE] Cycle: no active sessions")
        return report

    async def start_session(self, token_mint: str, state_id: str,
                            duration_s: Optional[int] = None) -> dict:
        """Reuse the token's live session or create one, then tick it immediately."""
        session = await self.manager.active_for_token(token_mint)
        reused = session is not None
        if session is None:
            session = await self.manager.create(SessionConfig(
                session_state_id=state_id,
                token_mint=token_mint,
                duration_ms=duration_s * 1000 if duration_s else None,
            ))
        else:
            log.info("[SERVICE] Reusing active session %s for %s",
                     session.session_id, token_mint[:12])

        command = await self.manager.tick(session.session_id)
        device_result = await self._dispatch(command)
        updated = await self.manager.get(session.session_id) or session
        return {
            "sessionId": session.session_id,
            "reused": reused,
            "modeId": updated.mode_id,
            "modeName": mode_name(updated.mode_id),
            "startTime": session.start_time,
            "endTime": session.end_time,
            "command": command.to_dict() if command else None,
            "deviceEnabled": self.device_enabled,
            "deviceResult": device_result,
        }

    async def stop_session(self, token_mint: str) -> dict:
        """End every active session for the token and stop the device."""
        ended = 0
        for session in await self.manager.list_active(include_expired=True):
            if session.token_mint != token_mint:
                continue
            await self.manager.end(session.session_id)
            ended += 1
        device_result = await self._dispatch(DeviceCommand.stop())
        log.info("[SERVICE] Stopped %s: %d sessions ended", token_mint[:12], ended)
        return {"tokenMint": token_mint, "ended": ended, "deviceResult": device_result}

    # ── Loop ──

    def _shutdown(self) -> None:
        log.info("[SERVICE] Shutdown signal received")
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        self.setup_logging()
        self._running = True
        self._stop_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._shutdown)

        log.info("=" * 60)
        log.info("  CHARTSYNC: chart-synced device control")
        log.info("  Primary: %s | Durable: %s",
                 self.store.primary.name if self.store.primary.enabled else "OFF",
                 self.store.durable.name if self.store.durable.enabled else "OFF")
        log.info("  Device: %s (%s) | Tick: %ds | Session: %ds",
                 "ON" if self.device_enabled else "OFF", self.device.base_url or "-",
                 self._cfg.tick_interval_s, self._cfg.session_duration_s)
        log.info("=" * 60)

        try:
            while self._running:
                self._cycle_count += 1
                try:
                    await self.run_cycle()
                except Exception:
                    log.exception("[SERVICE] Cycle %d failed", self._cycle_count)

                try:
                    await asyncio.wait_for(self._stop_event.wait(),
                                           timeout=self._cfg.tick_interval_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.close()
            log.info("[SERVICE] Stopped after %d cycles", self._cycle_count)

    async def close(self) -> None:
        await self.store.close()
        await self.feed.close()
        await self.device.close()
