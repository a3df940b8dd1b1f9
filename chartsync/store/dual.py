"""Reconciling facade over the primary (Redis) and durable (Firestore) backends.

Policy, kept in this one place:
  - writes go to both concurrently; one success is enough
  - reads prefer primary; whichever side answers heals the other
  - lists prefer a non-empty primary index, else the durable recent window
  - healing never replaces a copy that is as new or newer (``updatedAt``)
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from chartsync.models import ChartSyncSession
from chartsync.store.base import BackendError, SessionBackend, StoreUnavailableError

log = logging.getLogger("chartsync.store")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _should_overwrite(incoming: ChartSyncSession,
                      existing: Optional[ChartSyncSession]) -> bool:
    """Newer-wins: heal only a missing or strictly older copy."""
    return existing is None or existing.updated_at < incoming.updated_at


@dataclass
class RebalanceReport:
    source: str                 # "redis" | "firestore" | "none"
    redis_count: int = 0
    firestore_count: int = 0
    mirrored_to_firestore: int = 0
    mirrored_to_redis: int = 0

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "redisCount": self.redis_count,
            "firestoreCount": self.firestore_count,
            "mirroredToFirestore": self.mirrored_to_firestore,
            "mirroredToRedis": self.mirrored_to_redis,
        }


class SessionStore:
    """Primary/durable pair behind one interface."""

    def __init__(self, primary: SessionBackend, durable: SessionBackend,
                 clock: Optional[Callable[[], int]] = None):
        self.primary = primary
        self.durable = durable
        self._clock = clock or _now_ms
        self._pending: set[asyncio.Task] = set()

    # ── Per-backend wrappers: BackendError never escapes these ──

    async def _write(self, backend: SessionBackend, session: ChartSyncSession) -> bool:
        if not backend.enabled:
            return False
        try:
            await backend.write(session)
            return True
        except BackendError as exc:
            log.warning("[STORE] %s write %s failed: %s", backend.name, session.session_id, exc)
            return False

    async def _read(self, backend: SessionBackend, session_id: str) -> Optional[ChartSyncSession]:
        if not backend.enabled:
            return None
        try:
            return await backend.read(session_id)
        except BackendError as exc:
            log.warning("[STORE] %s read %s failed: %s", backend.name, session_id, exc)
            return None

    async def _delete(self, backend: SessionBackend, session_id: str) -> bool:
        if not backend.enabled:
            return False
        try:
            await backend.delete(session_id)
            return True
        except BackendError as exc:
            log.warning("[STORE] %s delete %s failed: %s", backend.name, session_id, exc)
            return False

    async def _list(self, backend: SessionBackend) -> Optional[list[ChartSyncSession]]:
        """None means the backend could not answer (as opposed to answering empty)."""
        if not backend.enabled:
            return None
        try:
            return await backend.list_sessions()
        except BackendError as exc:
            log.warning("[STORE] %s list failed: %s", backend.name, exc)
            return None

    # ── Healing ──

    async def _heal(self, target: SessionBackend, session: ChartSyncSession,
                    known: Optional[dict[str, ChartSyncSession]] = None) -> bool:
        if not target.enabled:
            return False
        if known is not None:
            existing = known.get(session.session_id)
        else:
            existing = await self._read(target, session.session_id)
        if not _should_overwrite(session, existing):
            return False
        return await self._write(target, session)

    async def _mirror(self, target: SessionBackend, sessions: list[ChartSyncSession],
                      known: Optional[list[ChartSyncSession]] = None) -> int:
        """Heal target from sessions. known, when given, is target's complete listing."""
        if not sessions or not target.enabled:
            return 0
        by_id = {s.session_id: s for s in known} if known is not None else None
        results = await asyncio.gather(*(self._heal(target, s, by_id) for s in sessions))
        return sum(1 for ok in results if ok)

    def _heal_in_background(self, target: SessionBackend, session: ChartSyncSession) -> None:
        task = asyncio.create_task(self._heal(target, session))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for background heals started by load()."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ── Public API ──

    async def save(self, session: ChartSyncSession) -> None:
        session.updated_at = self._clock()
        primary_ok, durable_ok = await asyncio.gather(
            self._write(self.primary, session),
            self._write(self.durable, session),
        )
        if not (primary_ok or durable_ok):
            log.error("[STORE] Session %s not persisted: both backends failed", session.session_id)
            raise StoreUnavailableError("both backends rejected the write", "save", session.session_id)

    async def load(self, session_id: str) -> Optional[ChartSyncSession]:
        session = await self._read(self.primary, session_id)
        if session is not None:
            self._heal_in_background(self.durable, session)
            return session

        session = await self._read(self.durable, session_id)
        if session is not None:
            await self._heal(self.primary, session)
        return session

    async def list_sessions(self) -> list[ChartSyncSession]:
        primary = await self._list(self.primary)
        if primary:
            await self._mirror(self.durable, primary)
            return primary

        durable = await self._list(self.durable) or []
        if durable:
            await self._mirror(self.primary, durable, known=primary)
        return durable

    async def rebalance(self) -> RebalanceReport:
        primary, durable = await asyncio.gather(
            self._list(self.primary), self._list(self.durable),
        )
        primary = primary or []
        durable = durable or []
        report = RebalanceReport(
            source="none",
            redis_count=len(primary),
            firestore_count=len(durable),
        )

        if primary:
            report.source = "redis"
            report.mirrored_to_firestore = await self._mirror(self.durable, primary)
        elif durable:
            report.source = "firestore"
            report.mirrored_to_redis = await self._mirror(self.primary, durable, known=primary)

        log.info("[STORE] Rebalance source=%s redis=%d firestore=%d →fs=%d →redis=%d",
                 report.source, report.redis_count, report.firestore_count,
                 report.mirrored_to_firestore, report.mirrored_to_redis)
        return report

    async def remove(self, session_id: str) -> None:
        primary_ok, durable_ok = await asyncio.gather(
            self._delete(self.primary, session_id),
            self._delete(self.durable, session_id),
        )
        if not (primary_ok or durable_ok):
            log.error("[STORE] Session %s not removed: both backends failed", session_id)
            raise StoreUnavailableError("both backends rejected the delete", "remove", session_id)

    async def close(self) -> None:
        await self.flush()
        await asyncio.gather(self.primary.close(), self.durable.close())
