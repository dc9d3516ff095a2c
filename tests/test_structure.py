from mtf_signal_engine.models import Candle, MarketStructure
from mtf_signal_engine.structure import MarketStructureClassifier


def _c(i: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(time=i * 3600, open=o, high=h, low=l, close=c, volume=v)


def _rising(n: int = 60, vols=None):
    out = []
    for i in range(n):
        o, c = 99.0 + i, 100.0 + i
        out.append(_c(i, o, c + 0.5, o - 0.5, c, vols[i] if vols else 1.0))
    return out


def _falling(n: int = 60):
    out = []
    for i in range(n):
        o, c = 201.0 - i, 200.0 - i
        out.append(_c(i, o, o + 0.5, c - 0.5, c))
    return out


def test_short_slice_is_neutral():
    assert MarketStructureClassifier().classify(_rising(9)) == MarketStructure()


def test_uptrend():
    st = MarketStructureClassifier().classify(_rising(), "BTC", "1h")
    assert st.regime == "TRENDING"
    assert st.bias == "BULLISH"
    assert st.strength == 100.0
    assert st.volume_profile == "NEUTRAL"


def test_downtrend():
    st = MarketStructureClassifier().classify(_falling(), "BTC", "1h")
    assert st.regime == "TRENDING"
    assert st.bias == "BEARISH"
    assert 0.0 <= st.strength <= 100.0


def test_volatile_regime():
    candles = []
    for i in range(40):
        o, c = (100.0, 110.0) if i % 2 == 0 else (110.0, 100.0)
        candles.append(_c(i, o, 111.0, 99.0, c))
    st = MarketStructureClassifier().classify(candles)
    assert st.regime == "VOLATILE"


def test_volume_profile():
    strong = [1.0] * 55 + [3.0] * 5
    weak = [1.0] * 55 + [0.2] * 5
    clf = MarketStructureClassifier()
    assert clf.classify(_rising(vols=strong)).volume_profile == "STRONG"
    assert clf.classify(_rising(vols=weak)).volume_profile == "WEAK"
