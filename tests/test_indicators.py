"""Deterministic tests for squeezewatch.strategy.indicators.

All tests use fixed candle data. Same input = same output, always.
"""

import random

import pytest

from squeezewatch.strategy.indicators import (
    calculate_atr,
    calculate_bollinger,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    calculate_sma,
)
from squeezewatch.strategy.models import Candle


# ── Candle fixtures ──────────────────────────────────────────────────────

def _make_candle(i: int, o: float, h: float, l: float, c: float, vol: float = 10) -> Candle:
    return Candle(start=i * 60, open=o, high=h, low=l, close=c, volume=vol)


def _candles_from_closes(closes: list[float], spread: float = 0.0001) -> list[Candle]:
    return [
        _make_candle(i, c, c + spread, c - spread, c)
        for i, c in enumerate(closes)
    ]


# ── SMA / EMA ────────────────────────────────────────────────────────────


class TestMovingAverages:
    def test_sma(self):
        assert calculate_sma(_candles_from_closes([1.0, 2.0, 3.0])) == pytest.approx(2.0)

    def test_sma_empty(self):
        assert calculate_sma([]) == 0.0

    def test_ema_seeded_with_sma(self):
        # seed = (1 + 2) / 2 = 1.5, k = 2/3 → 2.5 → 3.5
        candles = _candles_from_closes([1.0, 2.0, 3.0, 4.0])
        assert calculate_ema(candles, 2) == pytest.approx(3.5)

    def test_ema_short_series_falls_back_to_sma(self):
        candles = _candles_from_closes([1.0, 2.0, 3.0])
        assert calculate_ema(candles, 5) == pytest.approx(2.0)


# ── RSI ──────────────────────────────────────────────────────────────────


class TestRSI:
    def test_all_increasing_is_100(self):
        closes = [1.10000 + i * 0.0001 for i in range(15)]
        assert calculate_rsi(_candles_from_closes(closes), 14) == 100.0

    def test_all_decreasing_is_0(self):
        closes = [1.10000 - i * 0.0001 for i in range(20)]
        assert calculate_rsi(_candles_from_closes(closes), 14) == 0.0

    def test_insufficient_data_is_neutral(self):
        closes = [1.1 + i * 0.001 for i in range(14)]
        assert calculate_rsi(_candles_from_closes(closes), 14) == 50.0

    def test_balanced_moves_are_50(self):
        closes = [10.0 + (i % 2) for i in range(15)]
        assert calculate_rsi(_candles_from_closes(closes), 14) == pytest.approx(50.0)

    def test_uses_only_trailing_window(self):
        # A long decline followed by 15 rising closes: only the rise counts.
        closes = [2.0 - i * 0.01 for i in range(30)] + [1.0 + i * 0.01 for i in range(15)]
        assert calculate_rsi(_candles_from_closes(closes), 14) == 100.0

    def test_bounded_for_noisy_series(self):
        rng = random.Random(7)
        closes = [1.1]
        for _ in range(200):
            closes.append(closes[-1] + rng.uniform(-0.001, 0.001))
        candles = _candles_from_closes(closes)
        for end in range(15, len(candles)):
            assert 0.0 <= calculate_rsi(candles[:end], 14) <= 100.0


# ── ATR ──────────────────────────────────────────────────────────────────


class TestATR:
    def test_constant_range(self):
        candles = [_make_candle(i, 1.1, 1.101, 1.099, 1.1) for i in range(20)]
        assert calculate_atr(candles, 14) == pytest.approx(0.002)

    def test_gap_uses_previous_close(self):
        candles = [_make_candle(i, 1.1, 1.101, 1.099, 1.1) for i in range(14)]
        # Gap up: |high - prev_close| = 0.011 dominates high - low = 0.002
        candles.append(_make_candle(14, 1.11, 1.111, 1.109, 1.11))
        expected = (13 * 0.002 + 0.011) / 14
        assert calculate_atr(candles, 14) == pytest.approx(expected)

    def test_insufficient_data(self):
        candles = [_make_candle(i, 1.1, 1.101, 1.099, 1.1) for i in range(14)]
        assert calculate_atr(candles, 14) == 0.0


# ── Bollinger ────────────────────────────────────────────────────────────


class TestBollinger:
    def test_flat_series_collapses_bands(self):
        bands = calculate_bollinger(_candles_from_closes([1.1] * 25), 20)
        assert bands.upper == pytest.approx(1.1)
        assert bands.middle == pytest.approx(1.1)
        assert bands.lower == pytest.approx(1.1)

    def test_symmetric_around_sma(self):
        closes = [float(i) for i in range(1, 21)]
        bands = calculate_bollinger(_candles_from_closes(closes), 20, 2.0)
        assert bands.middle == pytest.approx(10.5)
        # population variance of 1..20 = (20² - 1) / 12
        sigma = ((20 ** 2 - 1) / 12) ** 0.5
        assert bands.upper == pytest.approx(10.5 + 2 * sigma)
        assert bands.lower == pytest.approx(10.5 - 2 * sigma)

    def test_insufficient_data(self):
        bands = calculate_bollinger(_candles_from_closes([1.1] * 19), 20)
        assert bands == (0.0, 0.0, 0.0)


# ── MACD ─────────────────────────────────────────────────────────────────


class TestMACD:
    def test_insufficient_data(self):
        macd = calculate_macd(_candles_from_closes([1.1] * 25))
        assert macd == (0.0, 0.0, 0.0)

    def test_flat_series_is_zero(self):
        macd = calculate_macd(_candles_from_closes([1.1] * 60))
        assert macd.macd == pytest.approx(0.0, abs=1e-12)
        assert macd.histogram == pytest.approx(0.0, abs=1e-12)

    def test_uptrend_positive(self):
        closes = [1.1 + i * 0.0005 for i in range(80)]
        macd = calculate_macd(_candles_from_closes(closes))
        assert macd.macd > 0
        assert macd.histogram == pytest.approx(macd.macd - macd.signal)

    def test_downtrend_negative(self):
        closes = [1.2 - i * 0.0005 for i in range(80)]
        assert calculate_macd(_candles_from_closes(closes)).macd < 0

    def test_short_history_signal_equals_macd(self):
        # 30 candles give only 5 full trailing windows, fewer than 9.
        closes = [1.1 + i * 0.0005 for i in range(30)]
        macd = calculate_macd(_candles_from_closes(closes))
        assert macd.signal == pytest.approx(macd.macd)
        assert macd.histogram == pytest.approx(0.0)
