"""Actuator command sink: the Autoblow cloud oscillation API.

send() is the only way a DeviceCommand leaves the process, so it re-validates
every command. speed == 0 is routed to the stop endpoint.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

from chartsync.config import ChartSyncConfig
from chartsync.http_session import create_client, request_with_retry
from chartsync.models import COMMAND_INTERVAL_MS, DeviceCommand
from chartsync.safety import validate_command

log = logging.getLogger("chartsync.device")

CLUSTER_ALIASES = {
    "ca": "ca-central-1",
    "use1": "us-east-1",
    "use2": "us-east-2",
    "usw1": "us-west-1",
    "usw2": "us-west-2",
    "aps2": "ap-southeast-2",
    "euw2": "eu-west-2",
    "euc1": "eu-central-1",
}
DEFAULT_COOLDOWN_MS = COMMAND_INTERVAL_MS - 5_000


def normalize_cluster_url(raw: str) -> str:
    """Alias, region name, bare host or full URL → base URL without trailing slash."""
    value = raw.strip().strip("'\"").rstrip("/")
    if not value:
        return ""
    value = CLUSTER_ALIASES.get(value, value)
    if value.startswith(("http://", "https://")):
        return value
    if "." in value:
        return f"https://{value}"
    return f"https://{value}.autoblowapi.com"


class DeviceClient:
    """Owns the device HTTP client and the last-command bookkeeping."""

    def __init__(self, cfg: ChartSyncConfig, client: Optional[httpx.AsyncClient] = None,
                 clock: Optional[Callable[[], int]] = None,
                 cooldown_ms: int = DEFAULT_COOLDOWN_MS):
        self._token = cfg.device_token
        self._base = normalize_cluster_url(cfg.device_cluster)
        self._retries = cfg.http_retries
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._cooldown_ms = cooldown_ms
        self._owns_client = client is None
        self._client = client or create_client(cfg.fetch_timeout_s, cfg.http_retries)

        self.last_command: Optional[DeviceCommand] = None
        self.last_command_at: int = 0

    @property
    def configured(self) -> bool:
        return bool(self._token) and bool(self._base)

    @property
    def base_url(self) -> str:
        return self._base

    def _headers(self) -> dict:
        return {"x-device-token": self._token}

    async def _put(self, path: str, json: Optional[dict] = None) -> bool:
        url = f"{self._base}{path}"
        try:
            resp = await request_with_retry(
                self._client, "PUT", url, retries=self._retries, backoff_s=0,
                headers=self._headers(), json=json,
            )
        except httpx.HTTPError as exc:
            log.warning("[DEVICE] PUT %s failed: %s", path, exc)
            return False
        if resp.is_success:
            return True
        log.warning("[DEVICE] PUT %s -> %d %s", path, resp.status_code, resp.text[:200])
        return False

    async def send(self, command: DeviceCommand) -> bool:
        """Dispatch one command. Raises CommandValidationError for an unsafe command."""
        validate_command(command, strict=True)
        if not self.configured:
            log.debug("[DEVICE] No device token, dispatch skipped")
            return False

        now = self._clock()
        in_cooldown = (
            self.last_command_at > 0
            and now - self.last_command_at < self._cooldown_ms
        )
        if in_cooldown and not command.is_stop:
            log.info("[DEVICE] Command skipped, cooldown active (%dms since last)",
                     now - self.last_command_at)
            return False

        if command.is_stop:
            ok = await self._put("/autoblow/oscillate/stop")
        else:
            ok = await self._put("/autoblow/oscillate", json=command.to_dict())

        # Cooldown only starts once the device accepted a command
        if ok:
            self.last_command = command
            self.last_command_at = now
            log.info("[DEVICE] Sent speed=%d minY=%d maxY=%d",
                     command.speed, command.min_y, command.max_y)
        return ok

    async def stop(self) -> bool:
        if not self.configured:
            return False
        ok = await self._put("/autoblow/oscillate/stop")
        if ok:
            self.last_command = DeviceCommand.stop()
            self.last_command_at = self._clock()
            log.info("[DEVICE] Stopped")
        return ok

    async def get_state(self) -> Optional[dict]:
        if not self.configured:
            return None
        try:
            resp = await request_with_retry(
                self._client, "GET", f"{self._base}/autoblow/state",
                retries=self._retries, backoff_s=0, headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            log.warning("[DEVICE] State request failed: %s", exc)
            return None
        if not resp.is_success:
            log.warning("[DEVICE] State request -> %d", resp.status_code)
            return None
        try:
            return resp.json()
        except ValueError:
            log.warning("[DEVICE] State response was not JSON")
            return None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
