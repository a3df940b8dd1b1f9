"""In-process backend. Used when running without Redis/Firestore and in tests."""
from __future__ import annotations

import copy
import logging
from typing import Optional

from chartsync.models import ChartSyncSession
from chartsync.store.base import BackendError, SessionBackend

log = logging.getLogger("chartsync.store")


class MemoryBackend(SessionBackend):
    """Keeps serialized records so callers never share objects with the store.

    Flip ``available`` to False to simulate an outage: every call then raises
    BackendError, the same as a dropped network backend.
    """

    def __init__(self, name: str = "memory", window: int = 200):
        self.name = name
        self.window = window
        self.available = True
        self.records: dict[str, dict] = {}

    def _check(self) -> None:
        if not self.available:
            raise BackendError("backend offline", self.name)

    async def write(self, session: ChartSyncSession) -> None:
        self._check()
        self.records[session.session_id] = session.to_dict()

    async def read(self, session_id: str) -> Optional[ChartSyncSession]:
        self._check()
        raw = self.records.get(session_id)
        if raw is None:
            return None
        try:
            return ChartSyncSession.from_dict(copy.deepcopy(raw))
        except (KeyError, TypeError, ValueError):
            log.warning("[STORE] %s: dropping malformed record %s", self.name, session_id)
            self.records.pop(session_id, None)
            return None

    async def delete(self, session_id: str) -> None:
        self._check()
        self.records.pop(session_id, None)

    async def list_sessions(self) -> list[ChartSyncSession]:
        self._check()
        sessions = []
        for session_id in list(self.records):
            session = await self.read(session_id)
            if session is not None:
                sessions.append(session)
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions[: self.window]
