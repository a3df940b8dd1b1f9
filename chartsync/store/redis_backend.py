"""Primary store: Redis, one JSON blob per session plus a set index.

Keys:
  <prefix>:session:<id>   serialized session, TTL = max(5m, remaining + 1h)
  <prefix>:session_ids    set of live session ids, same TTL
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Any, Callable, Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from chartsync.models import ChartSyncSession
from chartsync.store.base import BackendError, SessionBackend

log = logging.getLogger("chartsync.store")

MIN_TTL_S = 300
TTL_GRACE_S = 3600
CONNECT_TIMEOUT_S = 5
COMMAND_TIMEOUT_S = 3.0


def session_ttl_seconds(session: ChartSyncSession, now_ms: int) -> int:
    remaining = math.ceil((session.end_time - now_ms) / 1000)
    return max(MIN_TTL_S, remaining + TTL_GRACE_S)


def _parse(raw: Any) -> Optional[ChartSyncSession]:
    try:
        return ChartSyncSession.from_dict(json.loads(raw))
    except (KeyError, TypeError, ValueError):
        return None


class RedisBackend(SessionBackend):
    name = "redis"

    def __init__(self, url: str, prefix: str, client: Any = None,
                 clock: Optional[Callable[[], int]] = None,
                 timeout_s: float = COMMAND_TIMEOUT_S):
        self._url = url
        self._prefix = prefix
        self._timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None
        self._connect_lock: Optional[asyncio.Lock] = None
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._logged_error = False
        if not url and client is None:
            log.warning("[STORE] REDIS_URL not set, using Firestore fallback only")

    @property
    def enabled(self) -> bool:
        return bool(self._url) or self._client is not None

    @property
    def index_key(self) -> str:
        return f"{self._prefix}:session_ids"

    def session_key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}"

    # ── Connection ──

    async def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._url:
            raise BackendError("redis not configured", self.name)
        if self._connect_lock is None:
            self._connect_lock = asyncio.Lock()
        # Concurrent first callers share one connection attempt
        async with self._connect_lock:
            if self._client is not None:
                return self._client
            client = redis_async.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=CONNECT_TIMEOUT_S,
                socket_timeout=self._timeout_s,
            )
            try:
                await client.ping()
            except (RedisError, OSError) as exc:
                await client.aclose()
                self._fail("connect", exc)
            self._client = client
            self._logged_error = False
            log.info("[STORE] Redis connected (prefix=%s)", self._prefix)
            return client

    def _fail(self, op: str, exc: Exception):
        # Log the first failure loudly, then stay quiet until a call succeeds
        if not self._logged_error:
            self._logged_error = True
            log.warning("[STORE] Redis %s failed: %s", op, exc)
        else:
            log.debug("[STORE] Redis %s failed: %s", op, exc)
        raise BackendError(f"redis {op} failed: {exc}", self.name) from exc

    # ── Operations ──

    async def write(self, session: ChartSyncSession) -> None:
        client = await self._get_client()
        ttl = session_ttl_seconds(session, self._clock())
        payload = json.dumps(session.to_dict())
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self.session_key(session.session_id), payload, ex=ttl)
                pipe.sadd(self.index_key, session.session_id)
                pipe.expire(self.index_key, ttl)
                await pipe.execute()
        except (RedisError, OSError) as exc:
            self._fail("write", exc)
        self._logged_error = False

    async def read(self, session_id: str) -> Optional[ChartSyncSession]:
        client = await self._get_client()
        try:
            raw = await client.get(self.session_key(session_id))
            if not raw:
                return None
            session = _parse(raw)
            if session is None:
                log.warning("[STORE] Purging malformed Redis record %s", session_id)
                await client.delete(self.session_key(session_id))
                await client.srem(self.index_key, session_id)
            return session
        except (RedisError, OSError) as exc:
            self._fail("read", exc)

    async def delete(self, session_id: str) -> None:
        client = await self._get_client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self.session_key(session_id))
                pipe.srem(self.index_key, session_id)
                await pipe.execute()
        except (RedisError, OSError) as exc:
            self._fail("delete", exc)

    async def list_sessions(self) -> list[ChartSyncSession]:
        client = await self._get_client()
        try:
            ids = sorted(await client.smembers(self.index_key))
            if not ids:
                return []

            rows = await client.mget([self.session_key(i) for i in ids])
            sessions, stale = [], []
            for session_id, row in zip(ids, rows):
                session = _parse(row) if row else None
                if session is None:
                    stale.append(session_id)
                else:
                    sessions.append(session)

            if stale:
                log.info("[STORE] Dropping %d stale ids from Redis index", len(stale))
                await client.srem(self.index_key, *stale)
            return sessions
        except (RedisError, OSError) as exc:
            self._fail("list", exc)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            self._connect_lock = None
