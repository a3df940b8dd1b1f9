"""Durable store: one Firestore document per session, keyed by sessionId.

Writes merge so fields owned by other writers survive. ``syncedAt`` carries
the server timestamp; ``updatedAt`` stays the client's epoch-ms stamp used
for newer-wins healing.
"""
from __future__ import annotations

import inspect
import logging
from typing import Any, Optional

from google.api_core.exceptions import GoogleAPIError
from google.api_core.retry import if_transient_error
from google.api_core.retry_async import AsyncRetry
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore
from google.oauth2 import service_account

from chartsync.models import ChartSyncSession
from chartsync.store.base import BackendError, SessionBackend

log = logging.getLogger("chartsync.store")

TOKEN_URI = "https://oauth2.googleapis.com/token"
_ERRORS = (GoogleAPIError, GoogleAuthError, OSError)
DEFAULT_TIMEOUT_S = 8.0


class FirestoreBackend(SessionBackend):
    name = "firestore"

    def __init__(self, project_id: str, collection: str = "chartSyncSessions",
                 client_email: str = "", private_key: str = "",
                 window: int = 200, client: Any = None,
                 timeout_s: float = DEFAULT_TIMEOUT_S):
        self._project_id = project_id
        self._collection_name = collection
        self._client_email = client_email
        self._private_key = private_key
        self._window = window
        # Each RPC gets its own deadline; transient errors retry inside it
        self._call_opts = {
            "timeout": timeout_s,
            "retry": AsyncRetry(predicate=if_transient_error, initial=0.2,
                                maximum=2.0, multiplier=2.0, timeout=timeout_s),
        }
        self._client = client
        self._owns_client = client is None
        if not project_id and client is None:
            log.warning("[STORE] FIREBASE_PROJECT_ID not set, durable store disabled")

    @property
    def enabled(self) -> bool:
        return bool(self._project_id) or self._client is not None

    def _credentials(self):
        if not (self._client_email and self._private_key):
            return None  # application default credentials
        return service_account.Credentials.from_service_account_info({
            "type": "service_account",
            "project_id": self._project_id,
            "client_email": self._client_email,
            "private_key": self._private_key,
            "token_uri": TOKEN_URI,
        })

    def _collection(self):
        if self._client is None:
            if not self._project_id:
                raise BackendError("firestore not configured", self.name)
            try:
                self._client = firestore.AsyncClient(
                    project=self._project_id, credentials=self._credentials(),
                )
            except (*_ERRORS, ValueError) as exc:
                raise BackendError(f"firestore init failed: {exc}", self.name) from exc
            log.info("[STORE] Firestore client ready (project=%s, collection=%s)",
                     self._project_id, self._collection_name)
        return self._client.collection(self._collection_name)

    def _fail(self, op: str, exc: Exception):
        log.warning("[STORE] Firestore %s failed: %s", op, exc)
        raise BackendError(f"firestore {op} failed: {exc}", self.name) from exc

    # ── Operations ──

    async def write(self, session: ChartSyncSession) -> None:
        doc = self._collection().document(session.session_id)
        data = session.to_dict()
        data["syncedAt"] = firestore.SERVER_TIMESTAMP
        try:
            await doc.set(data, merge=True, **self._call_opts)
        except _ERRORS as exc:
            self._fail("write", exc)

    async def read(self, session_id: str) -> Optional[ChartSyncSession]:
        doc = self._collection().document(session_id)
        try:
            snapshot = await doc.get(**self._call_opts)
            if not snapshot.exists:
                return None
            try:
                return ChartSyncSession.from_dict(snapshot.to_dict() or {})
            except (KeyError, TypeError, ValueError):
                log.warning("[STORE] Purging malformed Firestore record %s", session_id)
                await doc.delete(**self._call_opts)
                return None
        except _ERRORS as exc:
            self._fail("read", exc)

    async def delete(self, session_id: str) -> None:
        try:
            await self._collection().document(session_id).delete(**self._call_opts)
        except _ERRORS as exc:
            self._fail("delete", exc)

    async def list_sessions(self) -> list[ChartSyncSession]:
        """Most recent sessions by startTime, bounded by the fallback window."""
        query = (
            self._collection()
            .order_by("startTime", direction=firestore.Query.DESCENDING)
            .limit(self._window)
        )
        sessions, malformed = [], []
        try:
            async for snapshot in query.stream(**self._call_opts):
                try:
                    sessions.append(ChartSyncSession.from_dict(snapshot.to_dict() or {}))
                except (KeyError, TypeError, ValueError):
                    malformed.append(snapshot.id)
            for session_id in malformed:
                log.warning("[STORE] Purging malformed Firestore record %s", session_id)
                await self._collection().document(session_id).delete(**self._call_opts)
        except _ERRORS as exc:
            self._fail("list", exc)
        return sessions

    async def close(self) -> None:
        if self._client is None or not self._owns_client:
            return
        result = self._client.close()
        if inspect.isawaitable(result):
            await result
        self._client = None
