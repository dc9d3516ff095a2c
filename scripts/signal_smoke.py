from __future__ import annotations

import math

from mtf_signal_engine.engine import SignalEngine
from mtf_signal_engine.models import Candle
from mtf_signal_engine.timeframes import TIMEFRAMES, tf_seconds


def candle(idx: int, tf: str, open_p: float, high: float, low: float, close: float, vol: float = 1.0) -> Candle:
    return Candle(time=idx * tf_seconds(tf), open=open_p, high=high, low=low, close=close, volume=vol)


def wave_series(tf: str, n: int, drift: float):
    """Sine wave on a drift so every indicator has something to say."""
    out = []
    prev = 100.0
    for i in range(n):
        close = 100.0 * (1 + drift) ** i + 2.0 * math.sin(i / 5.0)
        high = max(prev, close) + 0.2
        low = min(prev, close) - 0.2
        out.append(candle(i, tf, prev, high, low, close, 1.0 + (i % 7) / 10.0))
        prev = close
    return out


def main():
    with SignalEngine() as eng:
        for tf in TIMEFRAMES:
            n = 5 if tf == "1m" else 120  # 1m stays short on purpose: fallback path
            eng.update("SMOKE", tf, wave_series(tf, n, 0.002))
        price = eng.series("SMOKE", "1h")[-1].close

        print("independent:")
        for tf in TIMEFRAMES:
            s = eng.compute("SMOKE", tf, price)
            print(f"  {tf:>3} {s.direction:<7} conf={s.confidence:5.1f} sl={s.stop_loss:.2f} tp={s.take_profit:.2f} stage={s.stage}")

        print("harmonized:")
        for tf, s in eng.compute_all("SMOKE", price).items():
            print(f"  {tf:>3} {s.direction:<7} conf={s.confidence:5.1f} success={s.success_probability:5.1f} stage={s.stage}")

        rep = eng.last_harmony("SMOKE")
        print(f"dominant={rep.dominant_direction} dominance={rep.dominance:.2f} adjustments={len(rep.adjustments)}")
        for adj in rep.adjustments:
            print(f"  {adj.kind:<8} {adj.timeframe:>3} <- {adj.source:<8} {adj.before_direction}->{adj.after_direction} "
                  f"{adj.before_confidence:.1f}->{adj.after_confidence:.1f}")
        print(eng.stats())


if __name__ == "__main__":
    main()
