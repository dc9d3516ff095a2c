from __future__ import annotations


class InvalidInputError(ValueError):
    """Rejected at the engine boundary: bad symbol, timeframe, price or series."""


class InsufficientDataError(Exception):
    """Series shorter than the timeframe minimum; recovered into a NEUTRAL signal."""

    def __init__(self, symbol: str, timeframe: str, have: int, need: int):
        super().__init__(f"{symbol} {timeframe}: {have} candles, need {need}")
        self.symbol = symbol
        self.timeframe = timeframe
        self.have = have
        self.need = need
