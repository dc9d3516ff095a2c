from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

import aiohttp

from ..models import Signal

log = logging.getLogger("webhook")


def format_price(x: float) -> float:
    """Round to 8 decimals, enough for any listed pair."""
    return round(float(x), 8)


def signal_payload(sig: Signal, secret: str = "") -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "symbol": sig.symbol,
        "timeframe": sig.timeframe,
        "direction": sig.direction,
        "confidence": round(sig.confidence, 2),
        "success_probability": round(sig.success_probability, 2),
        "entry_price": format_price(sig.entry_price),
        "stop_loss": format_price(sig.stop_loss),
        "take_profit": format_price(sig.take_profit),
        "timestamp": int(sig.timestamp),
        "stage": sig.stage,
    }
    if sig.structure is not None:
        payload["regime"] = sig.structure.regime
        payload["bias"] = sig.structure.bias
    if secret:
        payload["secret"] = secret
    return payload


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_signal(self, sig: Signal) -> bool:
        if not self.enabled or not self.url:
            return False

        body = json.dumps(signal_payload(sig, self.secret), separators=(",", ":"))
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, data=body, headers={"Content-Type": "application/json", **self.headers}) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # Log but do not crash
            log.warning("webhook_post_failed err=%s", e)
            return False
        return True
