from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

import aiohttp
import websockets

from ..models import Candle

log = logging.getLogger("binance")


def _rest_base(market: str) -> str:
    return "https://fapi.binance.com" if market == "futures" else "https://api.binance.com"


def _klines_path(market: str) -> str:
    return "/fapi/v1/klines" if market == "futures" else "/api/v3/klines"


def _ws_url(market: str) -> str:
    return "wss://fstream.binance.com/ws" if market == "futures" else "wss://stream.binance.com:9443/ws"


def _stream_name(symbol: str, tf: str) -> str:
    # interval keeps its case: 1m is a minute, 1M a month
    return f"{symbol.lower()}@kline_{tf}"


@dataclass(frozen=True)
class KlineEvent:
    symbol: str
    timeframe: str
    candle: Candle


def candle_from_rest_row(row: Sequence) -> Candle:
    """REST kline row: [open_ms, o, h, l, c, v, close_ms, ...] -> Candle at open time (seconds)."""
    return Candle(
        time=int(row[0]) // 1000,
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def event_from_ws_message(raw: str) -> Optional[KlineEvent]:
    """Closed-kline event from a stream frame; None for acks, open bars and noise."""
    try:
        j = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(j, dict):
        return None
    if "result" in j and j.get("id") == 1:
        return None  # subscribe ack

    data = j.get("data") or j
    if not isinstance(data, dict) or data.get("e") != "kline":
        return None

    k = data.get("k", {})
    if not k.get("x", False):
        return None  # only closed candles

    c = Candle(
        time=int(k.get("t")) // 1000,
        open=float(k.get("o")),
        high=float(k.get("h")),
        low=float(k.get("l")),
        close=float(k.get("c")),
        volume=float(k.get("v")),
    )
    return KlineEvent(symbol=k.get("s", "").upper(), timeframe=k.get("i", ""), candle=c)


class BinanceProvider:
    """Read-only kline source: REST warmup plus a closed-candle websocket stream."""

    def __init__(
        self,
        market: str = "spot",
        *,
        rest_timeout_s: int = 20,
        ws_heartbeat_s: int = 20,
        rest_max_retries: int = 4,
        rest_backoff_s: float = 0.8,
        rest_conn_limit: int = 40,
        rest_conn_limit_per_host: int = 10,
    ):
        self.market = market
        self.rest_timeout_s = rest_timeout_s
        self.ws_heartbeat_s = ws_heartbeat_s

        self.rest_max_retries = rest_max_retries
        self.rest_backoff_s = rest_backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.rest_conn_limit,
                limit_per_host=self.rest_conn_limit_per_host,
                ttl_dns_cache=300,
            )
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=connector)
        return self._session

    async def fetch_klines(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        """Most recent `limit` klines, oldest first. The still-open bar is dropped."""
        url = _rest_base(self.market) + _klines_path(self.market)
        params = {"symbol": symbol.upper(), "interval": timeframe, "limit": int(limit)}
        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        data = None
        for attempt in range(1, int(self.rest_max_retries) + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status in (418, 429):
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning(
                            "rest_rate_limited status=%s symbol=%s tf=%s sleep=%.1fs",
                            resp.status, symbol, timeframe, sleep_s,
                        )
                        await asyncio.sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        raise RuntimeError(f"Binance klines failed: {resp.status} {txt[:500]}")

                    data = await resp.json(content_type=None)
                    break

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                if attempt >= int(self.rest_max_retries):
                    raise
                log.warning(
                    "rest_retry attempt=%d/%d symbol=%s tf=%s backoff=%.1fs err=%s",
                    attempt, self.rest_max_retries, symbol, timeframe, backoff, e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if data is None:
            raise RuntimeError(f"Binance klines rate limited: {symbol} {timeframe}")

        out = [candle_from_rest_row(row) for row in data]
        # the last row is the forming bar; the stream delivers it once it closes
        return out[:-1] if out else out

    async def stream_klines(self, symbols: List[str], timeframes: List[str]) -> AsyncIterator[KlineEvent]:
        """Yields CLOSED klines for all (symbol, tf). Auto-reconnects."""
        streams = [_stream_name(sym, tf) for sym in symbols for tf in timeframes]
        sub_msg = {"method": "SUBSCRIBE", "params": streams, "id": 1}

        backoff = 1
        while True:
            try:
                async with websockets.connect(
                    _ws_url(self.market),
                    ping_interval=self.ws_heartbeat_s,
                    ping_timeout=self.ws_heartbeat_s,
                    close_timeout=5,
                    max_queue=5000,
                ) as ws:
                    backoff = 1
                    await ws.send(json.dumps(sub_msg))
                    log.info("ws_subscribed streams=%d market=%s", len(streams), self.market)

                    async for msg in ws:
                        evt = event_from_ws_message(msg)
                        if evt is not None:
                            yield evt

            except (OSError, websockets.WebSocketException) as e:
                log.warning("ws_error err=%s reconnect_in=%ss", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)
