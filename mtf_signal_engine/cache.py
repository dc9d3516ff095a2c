from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Hashable, Sequence, Tuple

from .models import Candle

log = logging.getLogger("cache")

SeriesId = Tuple[str, str, int, int]  # (symbol, timeframe, length, last_time)


def series_id(symbol: str, timeframe: str, candles: Sequence[Candle]) -> SeriesId:
    last_time = candles[-1].time if candles else 0
    return (symbol, timeframe, len(candles), last_time)


class IndicatorCache:
    """Bounded LRU of indicator results.

    Keys carry the series length and last candle time, so appending a candle
    moves every lookup to a fresh key. A replaced series with the same shape
    must be dropped explicitly with invalidate().
    """

    def __init__(self, max_entries: int = 4096):
        self.max_entries = max(1, int(max_entries))
        self._data: "OrderedDict[Tuple[SeriesId, str, Hashable], Any]" = OrderedDict()
        self._lock = threading.Lock()

    def get_or_compute(self, sid: SeriesId, fn_id: str, params: Hashable, compute: Callable[[], Any]) -> Any:
        key = (sid, fn_id, params)
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
                return self._data[key]

        # compute outside the lock; two threads may race on a miss, both results are identical
        value = compute()

        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)
        return value

    def invalidate(self, symbol: str, timeframe: str) -> int:
        with self._lock:
            stale = [k for k in self._data if k[0][0] == symbol and k[0][1] == timeframe]
            for k in stale:
                del self._data[k]
        if stale:
            log.debug("cache_invalidate symbol=%s tf=%s dropped=%d", symbol, timeframe, len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
