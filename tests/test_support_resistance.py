from mtf_signal_engine.indicators import find_levels, support_resistance


def _flat(n: int = 60):
    highs = [106.0] * n
    lows = [104.0] * n
    vols = [1.0] * n
    return highs, lows, vols


def test_double_bottom_is_one_support_with_two_touches():
    highs, lows, vols = _flat()
    for i in (20, 40):
        lows[i] = 100.0
        vols[i] = 1.5

    supports, resistances = find_levels(highs, lows, vols, 106.0)
    assert supports == [(100.0, 2)]
    assert resistances == []

    sr = support_resistance(highs, lows, vols, 106.0)
    assert sr.supports == (100.0,)


def test_unconfirmed_swing_is_ignored():
    highs, lows, vols = _flat()
    lows[20] = 100.0  # average volume only
    supports, _ = find_levels(highs, lows, vols, 106.0)
    assert supports == []


def test_supports_nearest_first_capped_at_three():
    highs, lows, vols = _flat()
    for i, lvl in ((10, 90.0), (20, 95.0), (30, 100.0), (40, 102.0)):
        lows[i] = lvl
        vols[i] = 1.5

    supports, _ = find_levels(highs, lows, vols, 106.0)
    assert [lv[0] for lv in supports] == [102.0, 100.0, 95.0, 90.0]

    sr = support_resistance(highs, lows, vols, 106.0)
    assert sr.supports == (102.0, 100.0, 95.0)


def test_resistance_above_price():
    highs, lows, vols = _flat()
    highs[25] = 112.0
    vols[25] = 1.5
    sr = support_resistance(highs, lows, vols, 106.0)
    assert sr.resistances == (112.0,)
    assert sr.supports == ()


def test_levels_split_around_current_price():
    highs, lows, vols = _flat()
    lows[20] = 100.0
    vols[20] = 1.5
    # a swing low above the current price is not a support
    supports, _ = find_levels(highs, lows, vols, 99.0)
    assert supports == []


def test_lookback_window():
    highs, lows, vols = _flat(160)
    lows[20] = 100.0
    vols[20] = 1.5
    supports, _ = find_levels(highs, lows, vols, 106.0, lookback=100)
    assert supports == []
    supports, _ = find_levels(highs, lows, vols, 106.0, lookback=0)
    assert supports == [(100.0, 1)]
