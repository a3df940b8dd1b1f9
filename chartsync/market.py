"""Market snapshot provider: one synthetic 1m candle per call from DexScreener.

The token endpoint has no candle history, so the candle is built from the
current price plus the 5m change and hourly volume scaled down to a minute.
Any failure yields None; the engine treats that as "no new data".
"""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

from chartsync.config import ChartSyncConfig
from chartsync.http_session import create_client, request_with_retry
from chartsync.models import Candle

log = logging.getLogger("chartsync.market")


def _num(value: Any) -> float:
    """parseFloat-style: anything unparseable is 0."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def candle_from_pair(pair: dict, now_ms: Optional[int] = None) -> Candle:
    price = _num(pair.get("priceUsd"))
    change_1m = _num((pair.get("priceChange") or {}).get("m5")) / 5
    volume = _num((pair.get("volume") or {}).get("h1")) / 60

    open_ = price / (1 + change_1m / 100) if change_1m != -100 else price
    volatility = abs(change_1m) / 100
    return Candle(
        open=open_,
        high=price * (1 + volatility * 0.5),
        low=open_ * (1 - volatility * 0.5),
        close=price,
        volume=volume,
        timestamp=now_ms if now_ms is not None else int(time.time() * 1000),
    )


class DexScreenerFeed:
    """Fetches the latest synthetic candle for a token mint."""

    def __init__(self, cfg: ChartSyncConfig, client: Optional[httpx.AsyncClient] = None,
                 backoff_s: float = 0.5):
        self._base = cfg.dexscreener_base.rstrip("/")
        self._retries = cfg.http_retries
        self._backoff_s = backoff_s
        self._owns_client = client is None
        self._client = client or create_client(cfg.fetch_timeout_s, cfg.http_retries)

    async def fetch_candle(self, token_mint: str) -> Optional[Candle]:
        url = f"{self._base}/latest/dex/tokens/{token_mint}"
        try:
            resp = await request_with_retry(
                self._client, "GET", url, retries=self._retries, backoff_s=self._backoff_s,
            )
        except httpx.HTTPError as exc:
            log.warning("[MARKET] DexScreener request failed for %s: %s", token_mint[:12], exc)
            return None

        if resp.status_code != 200:
            log.warning("[MARKET] DexScreener API error %d for %s", resp.status_code, token_mint[:12])
            return None

        try:
            data = resp.json()
        except ValueError:
            log.warning("[MARKET] DexScreener returned non-JSON for %s", token_mint[:12])
            return None

        pairs = data.get("pairs") if isinstance(data, dict) else None
        if not pairs or not isinstance(pairs[0], dict):
            log.warning("[MARKET] No pair found for token %s", token_mint[:12])
            return None

        candle = candle_from_pair(pairs[0])
        log.debug("[MARKET] %s close=%.8f vol=%.2f", token_mint[:12], candle.close, candle.volume)
        return candle

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
