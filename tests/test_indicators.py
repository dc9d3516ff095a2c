import math

from mtf_signal_engine.indicators import (
    adx,
    atr,
    bollinger,
    cluster_levels,
    ema,
    macd,
    rsi_wilder,
    sma,
    stochastic,
    swing_highs,
    swing_lows,
)


def _ramp(n: int, start: float = 100.0, step: float = 1.0):
    closes = [start + i * step for i in range(n)]
    opens = [closes[0]] + closes[:-1]
    highs = [max(o, c) + 0.5 for o, c in zip(opens, closes)]
    lows = [min(o, c) - 0.5 for o, c in zip(opens, closes)]
    return highs, lows, closes


def test_short_input_defaults():
    assert ema([], 10) == 0.0
    assert ema([1.0, 2.0, 3.0], 10) == 3.0
    assert sma([1.0, 2.0], 3) is None
    assert rsi_wilder([1.0] * 10, 14) == 50.0

    m = macd([1.0] * 10)
    assert (m.value, m.signal, m.histogram) == (0.0, 0.0, 0.0)

    bb = bollinger([100.0] * 5, 20)
    assert math.isclose(bb.upper, 102.0)
    assert math.isclose(bb.lower, 98.0)
    assert bb.width == 0.04
    assert bb.percent_b == 50.0

    st = stochastic([1.0] * 5, [1.0] * 5, [1.0] * 5, 14, 3)
    assert (st.k, st.d) == (50.0, 50.0)

    a = adx([1.0] * 5, [1.0] * 5, [1.0] * 5, 14)
    assert (a.adx, a.plus_di, a.minus_di) == (25.0, 25.0, 25.0)

    assert math.isclose(atr([101.0] * 5, [99.0] * 5, [100.0] * 5, 14), 2.0)


def test_ema_seeded_with_first_value():
    # alpha = 0.5 for length 3
    assert ema([10.0, 20.0, 30.0], 3) == 22.5


def test_rsi_flat_series_is_fifty():
    assert rsi_wilder([100.0] * 30, 14) == 50.0


def test_rsi_rising_series_increases_toward_hundred():
    closes = [100.0 * 1.01 ** i for i in range(80)]
    values = [rsi_wilder(closes[:k], 14) for k in range(16, 81)]
    for prev, cur in zip(values, values[1:]):
        assert cur > prev
    assert all(0.0 <= v < 100.0 for v in values)
    assert values[-1] > 99.0


def test_rsi_falling_series_is_low():
    closes = [200.0 - i for i in range(40)]
    assert rsi_wilder(closes, 14) < 1.0


def test_macd_positive_on_uptrend():
    _, _, closes = _ramp(60)
    m = macd(closes)
    assert m.value > 0
    assert math.isclose(m.histogram, m.value - m.signal)


def test_bollinger_collapsed_bands():
    bb = bollinger([50.0] * 25, 20)
    assert bb.upper == bb.lower == 50.0
    assert bb.width == 0.0
    assert bb.percent_b == 50.0


def test_stochastic_close_at_top_of_range():
    highs, lows, closes = _ramp(30)
    highs[-1] = closes[-1]
    st = stochastic(highs, lows, closes, 14, 3)
    assert math.isclose(st.k, 100.0)
    assert st.d <= 100.0


def test_stochastic_zero_range():
    st = stochastic([5.0] * 20, [5.0] * 20, [5.0] * 20, 14, 3)
    assert st.k == 50.0 and st.d == 50.0


def test_atr_constant_range():
    highs = [101.0] * 30
    lows = [99.0] * 30
    closes = [100.0] * 30
    assert math.isclose(atr(highs, lows, closes, 14), 2.0)


def test_adx_uptrend():
    highs, lows, closes = _ramp(60)
    a = adx(highs, lows, closes, 14)
    assert a.plus_di > a.minus_di
    assert a.adx > 30


def test_adx_zero_true_range():
    a = adx([10.0] * 40, [10.0] * 40, [10.0] * 40, 14)
    assert (a.adx, a.plus_di, a.minus_di) == (0.0, 0.0, 0.0)


def test_swing_points_are_strict():
    values = [1, 2, 3, 9, 3, 2, 1, 5, 5, 1, 0, 0, 0]
    assert swing_highs(values, 3) == [3]
    # the 5,5 plateau is not a swing high
    assert 7 not in swing_highs(values, 1)
    assert swing_lows([5, 4, 3, 1, 3, 4, 5], 3) == [3]


def test_cluster_levels():
    out = cluster_levels([105.0, 100.0, 100.3], 0.5)
    assert len(out) == 2
    assert math.isclose(out[0][0], 100.15)
    assert out[0][1] == 2
    assert out[1] == (105.0, 1)
    assert cluster_levels([], 0.5) == []
