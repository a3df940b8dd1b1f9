"""ChartSync configuration: all settings from env vars with safe defaults."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the package root, then the working directory
_ENV_PATH = Path(__file__).parent / ".env"
if _ENV_PATH.exists():
    load_dotenv(_ENV_PATH)
load_dotenv(override=False)


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _bool(val: str) -> bool:
    return val.strip().lower() in ("true", "1", "yes", "on")


def _slug(raw: str, fallback: str) -> str:
    """Lowercase, strip scheme/path, collapse anything non [a-z0-9-] to single dashes."""
    value = raw.strip().lower()
    value = re.sub(r"^https?://", "", value)
    value = re.sub(r"/.*", "", value)
    value = re.sub(r"[^a-z0-9-]", "-", value)
    value = re.sub(r"-+", "-", value).strip("-")
    return value or fallback


def default_redis_prefix() -> str:
    """Key namespace for the primary store.

    An explicit REDIS_PREFIX wins. Otherwise derive ``<project>:<env>:chartsync``
    so that staging and production sharing one Redis never collide.
    """
    explicit = _env("REDIS_PREFIX").strip()
    if explicit:
        return explicit

    project = (
        _env("FIREBASE_PROJECT_ID")
        or _env("NEXT_PUBLIC_FIREBASE_PROJECT_ID")
        or _env("APP_URL")
    )
    env_name = _env("CHARTSYNC_ENV") or _env("NODE_ENV") or "development"
    return f"{_slug(project, 'sessionmint')}:{_slug(env_name, 'development')}:chartsync"


@dataclass(frozen=True)
class ChartSyncConfig:
    # ── Primary store (Redis) ──
    redis_url: str = _env("REDIS_URL")
    redis_prefix: str = field(default_factory=default_redis_prefix)
    redis_timeout_s: float = float(_env("REDIS_TIMEOUT_S", "3.0"))

    # ── Durable store (Firestore) ──
    firebase_project_id: str = _env("FIREBASE_PROJECT_ID", _env("NEXT_PUBLIC_FIREBASE_PROJECT_ID"))
    firebase_client_email: str = _env("FIREBASE_CLIENT_EMAIL")
    # Private keys pasted into .env usually carry literal "\n"
    firebase_private_key: str = _env("FIREBASE_PRIVATE_KEY").replace("\\n", "\n")
    firestore_collection: str = _env("FIRESTORE_COLLECTION", "chartSyncSessions")
    fallback_window: int = int(_env("CHARTSYNC_FALLBACK_WINDOW", "200"))
    firestore_timeout_s: float = float(_env("FIRESTORE_TIMEOUT_S", "8.0"))

    # ── Market data ──
    dexscreener_base: str = _env("DEXSCREENER_API_BASE", "https://api.dexscreener.com")
    fetch_timeout_s: float = float(_env("CHARTSYNC_FETCH_TIMEOUT_S", "6.0"))
    http_retries: int = int(_env("CHARTSYNC_HTTP_RETRIES", "2"))

    # ── Actuator ──
    device_token: str = _env("AUTOBLOW_DEVICE_TOKEN")
    device_enabled: bool = _bool(_env("AUTOBLOW_ENABLED", "false"))
    device_cluster: str = _env("AUTOBLOW_CLUSTER", "ca-central-1")

    # ── Engine ──
    tick_interval_s: int = int(_env("CHARTSYNC_TICK_INTERVAL_S", "60"))
    session_duration_s: int = int(_env("CHARTSYNC_SESSION_DURATION_S", "600"))
    buffer_size: int = int(_env("CHARTSYNC_BUFFER_SIZE", "10"))
    anti_bored_floor: bool = _bool(_env("CHARTSYNC_ANTI_BORED_FLOOR", "false"))

    # ── Mode ──
    log_level: str = _env("CHARTSYNC_LOG_LEVEL", "INFO")

    # ── Paths ──
    data_dir: Path = field(
        default_factory=lambda: Path(_env("CHARTSYNC_DATA_DIR", "data"))
    )

    def __post_init__(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def firestore_enabled(self) -> bool:
        return bool(self.firebase_project_id)

    @property
    def has_device_credentials(self) -> bool:
        return bool(self.device_token)
