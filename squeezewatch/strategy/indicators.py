"""Technical indicators — SMA, EMA, RSI, ATR, Bollinger Bands, MACD. Pure functions, no I/O.

Every function takes a slice of sealed candles and returns a neutral value
instead of raising when the slice is too short, so the strategy engine can
run on partially warmed-up history.
"""

import math
from typing import NamedTuple

from squeezewatch.strategy.models import Candle


class BollingerBands(NamedTuple):
    upper: float
    middle: float
    lower: float


class MACD(NamedTuple):
    macd: float
    signal: float
    histogram: float


def calculate_sma(candles: list[Candle]) -> float:
    """Arithmetic mean of the closes in *candles* (``0.0`` when empty)."""
    if not candles:
        return 0.0
    return sum(c.close for c in candles) / len(candles)


def calculate_ema(candles: list[Candle], period: int) -> float:
    """Return the latest Exponential Moving Average value.

    Uses the standard EMA formula:
        ``EMA_today = close × k + EMA_yesterday × (1 - k)``
    where ``k = 2 / (period + 1)``.

    The first EMA value is seeded with the SMA of the first *period*
    closes.  With fewer than *period* candles the plain SMA is returned.
    """
    if len(candles) < period:
        return calculate_sma(candles)

    k = 2.0 / (period + 1)
    ema = calculate_sma(candles[:period])
    for candle in candles[period:]:
        ema = (candle.close - ema) * k + ema
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(candles: list[Candle], period: int = 14) -> float:
    """Calculate the Relative Strength Index over the last ``period + 1`` candles.

    Algorithm (simple averaging, not Wilder-smoothed):
        1. delta = close[i] - close[i-1] across the trailing window.
        2. avg gain = Σ positive deltas / period, avg loss likewise.
        3. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Returns 100 when there are no losses, 0 when there are no gains and
    a neutral 50 when fewer than ``period + 1`` candles are available.
    """
    if len(candles) < period + 1:
        return 50.0

    window = candles[-(period + 1):]
    gains = 0.0
    losses = 0.0
    for prev, cur in zip(window, window[1:]):
        change = cur.close - prev.close
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period

    if avg_loss == 0:
        return 100.0
    if avg_gain == 0:
        return 0.0

    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


# ── ATR ──────────────────────────────────────────────────────────────────


def calculate_atr(candles: list[Candle], period: int = 14) -> float:
    """Calculate the Average True Range over the last *period* candles.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Requires at least ``period + 1`` candles (need a previous close for TR);
    returns ``0.0`` otherwise.
    """
    if len(candles) < period + 1:
        return 0.0

    window = candles[-(period + 1):]
    true_ranges = [
        max(
            cur.high - cur.low,
            abs(cur.high - prev.close),
            abs(cur.low - prev.close),
        )
        for prev, cur in zip(window, window[1:])
    ]
    return sum(true_ranges) / len(true_ranges)


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    candles: list[Candle],
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerBands:
    """Calculate Bollinger Bands on the trailing *period* closes.

    Middle = SMA(close, *period*)
    Upper  = middle + *std_dev* × σ
    Lower  = middle − *std_dev* × σ

    Uses the population standard deviation.  Returns all-zero bands when
    fewer than *period* candles are available.
    """
    if len(candles) < period:
        return BollingerBands(0.0, 0.0, 0.0)

    window = candles[-period:]
    middle = calculate_sma(window)
    variance = sum((c.close - middle) ** 2 for c in window) / period
    sigma = math.sqrt(variance)
    return BollingerBands(
        upper=middle + std_dev * sigma,
        middle=middle,
        lower=middle - std_dev * sigma,
    )


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    candles: list[Candle],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACD:
    """Calculate MACD = EMA(fast) − EMA(slow) on the full series.

    The signal line is approximated: the MACD value is recomputed on
    *signal* successively trimmed trailing windows (each dropping one more
    of the newest candles) and EMA(*signal*) is taken over that short
    synthetic series, oldest first.  When fewer than *signal* windows are
    long enough, the signal equals the MACD value.

    Returns all zeros with fewer than *slow* candles.
    """
    if len(candles) < slow:
        return MACD(0.0, 0.0, 0.0)

    macd = calculate_ema(candles, fast) - calculate_ema(candles, slow)

    history: list[float] = []
    for offset in range(signal):
        end = len(candles) - offset
        window = candles[max(0, end - slow):end]
        if len(window) >= slow:
            history.append(calculate_ema(window, fast) - calculate_ema(window, slow))

    if len(history) >= signal:
        synthetic = [
            Candle(start=i, open=v, high=v, low=v, close=v, volume=0.0)
            for i, v in enumerate(reversed(history))
        ]
        signal_value = calculate_ema(synthetic, signal)
    else:
        signal_value = macd

    return MACD(macd=macd, signal=signal_value, histogram=macd - signal_value)
