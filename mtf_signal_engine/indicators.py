from __future__ import annotations
from typing import List, Optional, Sequence, Tuple
import math

from .models import AdxReading, BollingerReading, MacdReading, StochasticReading, SupportResistance

# Substituted for a zero average loss so a rising series tends to, but never hits, 100.
RSI_LOSS_FLOOR = 1e-10

Level = Tuple[float, int]  # (price, touches)


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def ema_series(values: Sequence[float], length: int) -> List[float]:
    """EMA over the whole series, seeded with the first value (not an SMA seed)."""
    out: List[float] = []
    prev: Optional[float] = None
    for x in values:
        prev = ema_next(prev, x, length)
        out.append(prev)
    return out


def ema(values: Sequence[float], length: int) -> float:
    if not values:
        return 0.0
    if len(values) < length:
        return float(values[-1])
    return ema_series(values, length)[-1]


def sma(values: Sequence[float], length: int) -> Optional[float]:
    if length <= 0 or len(values) < length:
        return None
    return sum(values[-length:]) / float(length)


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_gain == 0 and avg_loss == 0:
        return 50.0
    rs = avg_gain / max(avg_loss, RSI_LOSS_FLOOR)
    return min(100.0, max(0.0, 100.0 - (100.0 / (1.0 + rs))))


def rsi_wilder(closes: Sequence[float], length: int = 14) -> float:
    if length <= 0 or len(closes) < length + 1:
        return 50.0
    # Wilder's smoothing: plain mean seed, then recursive update
    gains = 0.0
    losses = 0.0
    for i in range(1, length + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / length
    avg_loss = losses / length
    for i in range(length + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = (avg_gain * (length - 1) + max(ch, 0.0)) / length
        avg_loss = (avg_loss * (length - 1) + max(-ch, 0.0)) / length
    return _rsi_from_averages(avg_gain, avg_loss)


def macd(closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> MacdReading:
    if slow <= 0 or len(closes) < slow:
        return MacdReading()
    fast_line = ema_series(closes, fast)
    slow_line = ema_series(closes, slow)
    line = [f - s for f, s in zip(fast_line, slow_line)]
    signal_line = ema_series(line, signal)
    return MacdReading(value=line[-1], signal=signal_line[-1], histogram=line[-1] - signal_line[-1])


def bollinger(closes: Sequence[float], length: int = 20, mult: float = 2.0) -> BollingerReading:
    if not closes:
        return BollingerReading(upper=0.0, middle=0.0, lower=0.0)
    price = closes[-1]
    if length <= 0 or len(closes) < length:
        return BollingerReading(upper=price * 1.02, middle=price, lower=price * 0.98)

    window = closes[-length:]
    mid = sum(window) / length
    # population standard deviation
    sd = math.sqrt(sum((x - mid) ** 2 for x in window) / length)
    upper = mid + mult * sd
    lower = mid - mult * sd
    width = (upper - lower) / mid if mid else 0.0
    percent_b = 50.0 if upper == lower else (price - lower) / (upper - lower) * 100.0
    return BollingerReading(upper=upper, middle=mid, lower=lower, width=width, percent_b=percent_b)


def stochastic(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    k_len: int = 14,
    d_len: int = 3,
) -> StochasticReading:
    n = len(closes)
    if k_len <= 0 or n < k_len:
        return StochasticReading()

    ks: List[float] = []
    for i in range(max(k_len - 1, n - max(1, d_len)), n):
        hh = max(highs[i - k_len + 1:i + 1])
        ll = min(lows[i - k_len + 1:i + 1])
        rng = hh - ll
        ks.append(50.0 if rng <= 0 else (closes[i] - ll) / rng * 100.0)
    return StochasticReading(k=ks[-1], d=sma(ks, len(ks)))


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14) -> float:
    if not closes:
        return 0.0
    if length <= 0 or len(closes) < length + 1:
        return closes[-1] * 0.02
    trs = []
    for i in range(-length, 0):
        trs.append(true_range(highs[i], lows[i], closes[i - 1]))
    return sum(trs) / length


def _di(dm_sum: float, tr_sum: float) -> float:
    return 0.0 if tr_sum <= 0 else dm_sum / tr_sum * 100.0


def _dx(plus_di: float, minus_di: float) -> float:
    total = plus_di + minus_di
    return 0.0 if total <= 0 else abs(plus_di - minus_di) / total * 100.0


def adx(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14) -> AdxReading:
    n = len(closes)
    if length <= 0 or n < length + 1:
        return AdxReading()

    plus_dm: List[float] = []
    minus_dm: List[float] = []
    trs: List[float] = []
    for i in range(1, n):
        up = highs[i] - highs[i - 1]
        down = lows[i - 1] - lows[i]
        plus_dm.append(up if (up > down and up > 0) else 0.0)
        minus_dm.append(down if (down > up and down > 0) else 0.0)
        trs.append(true_range(highs[i], lows[i], closes[i - 1]))

    s_plus = sum(plus_dm[:length])
    s_minus = sum(minus_dm[:length])
    s_tr = sum(trs[:length])
    plus_di = _di(s_plus, s_tr)
    minus_di = _di(s_minus, s_tr)
    dxs = [_dx(plus_di, minus_di)]

    for i in range(length, len(trs)):
        s_plus = s_plus - s_plus / length + plus_dm[i]
        s_minus = s_minus - s_minus / length + minus_dm[i]
        s_tr = s_tr - s_tr / length + trs[i]
        plus_di = _di(s_plus, s_tr)
        minus_di = _di(s_minus, s_tr)
        dxs.append(_dx(plus_di, minus_di))

    if len(dxs) < length:
        adx_val = dxs[-1]
    else:
        adx_val = sum(dxs[:length]) / length
        for dx in dxs[length:]:
            adx_val = (adx_val * (length - 1) + dx) / length
    return AdxReading(adx=adx_val, plus_di=plus_di, minus_di=minus_di)


def swing_highs(values: Sequence[float], sensitivity: int) -> List[int]:
    """Indices strictly above every value within `sensitivity` bars on both sides."""
    out: List[int] = []
    for i in range(sensitivity, len(values) - sensitivity):
        v = values[i]
        if all(v > values[j] for j in range(i - sensitivity, i + sensitivity + 1) if j != i):
            out.append(i)
    return out


def swing_lows(values: Sequence[float], sensitivity: int) -> List[int]:
    out: List[int] = []
    for i in range(sensitivity, len(values) - sensitivity):
        v = values[i]
        if all(v < values[j] for j in range(i - sensitivity, i + sensitivity + 1) if j != i):
            out.append(i)
    return out


def cluster_levels(levels: Sequence[float], tolerance_pct: float) -> List[Level]:
    """Group ascending levels whose gap to the previous member is within tolerance_pct."""
    if not levels:
        return []
    ordered = sorted(levels)
    clusters: List[List[float]] = [[ordered[0]]]
    for lvl in ordered[1:]:
        last = clusters[-1][-1]
        gap_pct = (lvl - last) / abs(last) * 100.0 if last != 0 else (0.0 if lvl == last else math.inf)
        if gap_pct <= tolerance_pct:
            clusters[-1].append(lvl)
        else:
            clusters.append([lvl])
    return [(sum(c) / len(c), len(c)) for c in clusters]


def _volume_confirmed(volumes: Sequence[float], i: int, half_window: int, factor: float) -> bool:
    lo = max(0, i - half_window)
    hi = min(len(volumes), i + half_window + 1)
    avg = sum(volumes[lo:hi]) / (hi - lo)
    if avg <= 0:
        # no volume information in the feed: nothing to filter on
        return True
    return volumes[i] >= avg * factor


def find_levels(
    highs: Sequence[float],
    lows: Sequence[float],
    volumes: Sequence[float],
    current_price: float,
    *,
    sensitivity: int = 3,
    tolerance_pct: float = 0.5,
    volume_factor: float = 1.2,
    volume_window: int = 7,
    lookback: int = 100,
) -> Tuple[List[Level], List[Level]]:
    """Volume-confirmed, clustered swing levels split around current_price.

    Returns (supports, resistances) as (price, touches) pairs, each side ordered
    nearest-first. Not capped.
    """
    if lookback > 0:
        highs = highs[-lookback:]
        lows = lows[-lookback:]
        volumes = volumes[-lookback:]
    half = max(0, volume_window // 2)

    raw_supports = [lows[i] for i in swing_lows(lows, sensitivity) if _volume_confirmed(volumes, i, half, volume_factor)]
    raw_resistances = [highs[i] for i in swing_highs(highs, sensitivity) if _volume_confirmed(volumes, i, half, volume_factor)]

    supports = [lv for lv in cluster_levels(raw_supports, tolerance_pct) if lv[0] < current_price]
    resistances = [lv for lv in cluster_levels(raw_resistances, tolerance_pct) if lv[0] > current_price]
    supports.sort(key=lambda lv: current_price - lv[0])
    resistances.sort(key=lambda lv: lv[0] - current_price)
    return supports, resistances


def support_resistance(
    highs: Sequence[float],
    lows: Sequence[float],
    volumes: Sequence[float],
    current_price: float,
    *,
    sensitivity: int = 3,
    tolerance_pct: float = 0.5,
    volume_factor: float = 1.2,
    volume_window: int = 7,
    lookback: int = 100,
    max_levels: int = 3,
) -> SupportResistance:
    supports, resistances = find_levels(
        highs,
        lows,
        volumes,
        current_price,
        sensitivity=sensitivity,
        tolerance_pct=tolerance_pct,
        volume_factor=volume_factor,
        volume_window=volume_window,
        lookback=lookback,
    )
    return SupportResistance(
        supports=tuple(lv[0] for lv in supports[:max_levels]),
        resistances=tuple(lv[0] for lv in resistances[:max_levels]),
    )
