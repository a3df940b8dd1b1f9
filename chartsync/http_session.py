"""Async HTTP client factory with timeouts and bounded retry/backoff.

Connection-level failures (DNS, resets) are retried by the transport.
Transient server statuses (429/502/503/504) are retried by request_with_retry.
Clients are owned by whoever creates them; nothing here is module-global.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

log = logging.getLogger("chartsync.http")

RETRY_STATUSES = frozenset({429, 502, 503, 504})
DEFAULT_TIMEOUT = 6.0
DEFAULT_BACKOFF = 0.5   # 0.5s -> 1s -> 2s


def create_client(timeout_s: float = DEFAULT_TIMEOUT, retries: int = 2,
                  headers: Optional[dict] = None,
                  transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """AsyncClient with a retrying transport. Pass transport to stub the network."""
    if transport is None:
        transport = httpx.AsyncHTTPTransport(retries=retries)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_s),
        headers=headers,
        transport=transport,
    )


async def request_with_retry(client: httpx.AsyncClient, method: str, url: str,
                             retries: int = 2, backoff_s: float = DEFAULT_BACKOFF,
                             **kwargs) -> httpx.Response:
    """Send a request, retrying transient statuses with exponential backoff.

    The last response is returned as-is so callers can inspect the status.
    Transport errors propagate after the final attempt.
    """
    attempt = 0
    while True:
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= retries:
                raise
            log.debug("[HTTP] %s %s transport error (%s), retry %d/%d",
                      method, url, exc, attempt + 1, retries)
        else:
            if resp.status_code not in RETRY_STATUSES or attempt >= retries:
                return resp
            log.debug("[HTTP] %s %s -> %d, retry %d/%d",
                      method, url, resp.status_code, attempt + 1, retries)

        if backoff_s > 0:
            await asyncio.sleep(backoff_s * (2 ** attempt))
        attempt += 1
