"""Backend interface shared by the primary and durable session stores."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from chartsync.models import ChartSyncSession


class StoreUnavailableError(Exception):
    """Raised when neither backend accepted an operation."""

    def __init__(self, msg: str, operation: str = "", session_id: str = ""):
        self.msg = msg
        self.operation = operation
        self.session_id = session_id
        super().__init__(f"{msg} ({operation} {session_id})".rstrip())


class BackendError(Exception):
    """Transport failure inside a single backend. Never escapes the facade."""

    def __init__(self, msg: str, backend: str = ""):
        self.msg = msg
        self.backend = backend
        super().__init__(f"{msg} ({backend})")


class SessionBackend(ABC):
    """One storage backend.

    read/list return None-or-empty for "nothing there" and raise BackendError
    when the backend could not be reached. A backend that is not configured
    reports ``enabled = False`` and is skipped by the facade.
    """

    name: str = "backend"

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def write(self, session: ChartSyncSession) -> None: ...

    @abstractmethod
    async def read(self, session_id: str) -> Optional[ChartSyncSession]: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...

    @abstractmethod
    async def list_sessions(self) -> list[ChartSyncSession]: ...

    async def close(self) -> None:
        return None
