"""Session persistence: Redis primary, Firestore durable copy, one facade."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from chartsync.config import ChartSyncConfig
from chartsync.store.base import BackendError, SessionBackend, StoreUnavailableError
from chartsync.store.dual import RebalanceReport, SessionStore
from chartsync.store.firestore_backend import FirestoreBackend
from chartsync.store.memory import MemoryBackend
from chartsync.store.redis_backend import RedisBackend

log = logging.getLogger("chartsync.store")

__all__ = [
    "BackendError",
    "FirestoreBackend",
    "MemoryBackend",
    "RebalanceReport",
    "RedisBackend",
    "SessionBackend",
    "SessionStore",
    "StoreUnavailableError",
    "build_store",
]


def build_store(cfg: ChartSyncConfig,
                clock: Optional[Callable[[], int]] = None) -> SessionStore:
    """Wire the configured backends. With neither configured, fall back to memory."""
    primary: SessionBackend = RedisBackend(cfg.redis_url, cfg.redis_prefix, clock=clock,
                                           timeout_s=cfg.redis_timeout_s)
    durable: SessionBackend = FirestoreBackend(
        project_id=cfg.firebase_project_id,
        collection=cfg.firestore_collection,
        client_email=cfg.firebase_client_email,
        private_key=cfg.firebase_private_key,
        window=cfg.fallback_window,
        timeout_s=cfg.firestore_timeout_s,
    )
    if not primary.enabled and not durable.enabled:
        log.warning("[STORE] No Redis or Firestore configured, sessions live in memory only")
        primary = MemoryBackend(name="memory", window=cfg.fallback_window)
    return SessionStore(primary, durable, clock=clock)
