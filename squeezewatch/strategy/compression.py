"""Compression-zone tracking and breakout/fakeout pattern checks — pure functions, no I/O.

The zone is measured on the 20 candles that precede the latest one, and the
latest close is tested against it.  A close can only exit a range that does
not already contain it.
"""

from dataclasses import dataclass
from typing import Optional

from squeezewatch.strategy.indicators import BollingerBands, MACD
from squeezewatch.strategy.models import BEARISH, BULLISH, Candle, CompressionZone


ZONE_LOOKBACK = 20
MIN_ZONE_CANDLES = 10
COMPRESSION_RANGE_RATIO = 0.008
# Average candle range must stay below this share of the zone's height.
COMPRESSION_AVG_RANGE_SHARE = 0.6


def update_compression_zone(
    zone: CompressionZone,
    candles: list[Candle],
    now: Optional[float] = None,
    lookback: int = ZONE_LOOKBACK,
) -> CompressionZone:
    """Refresh *zone* in place from the trailing candles and return it.

    Steps:
        1. Zone high/low/volume over the *lookback* candles before the last.
        2. ``is_compressed`` when the zone height is < 0.8 % of its low and
           the average candle range is < 60 % of the zone height.
        3. While compressed, a last close outside the zone confirms a
           breakout in that direction.  A compressed pass with the close
           inside keeps any earlier breakout; a non-compressed pass clears it.

    Fewer than ``MIN_ZONE_CANDLES`` zone candles leave *zone* untouched.
    """
    if len(candles) < 2:
        return zone
    last = candles[-1]
    window = candles[-(lookback + 1):-1]
    if len(window) < MIN_ZONE_CANDLES:
        return zone

    high = max(c.high for c in window)
    low = min(c.low for c in window)
    total_range = sum(c.range for c in window)
    avg_range = total_range / len(window)
    height = high - low
    range_ratio = height / low if low > 0 else float("inf")

    zone.high = high
    zone.low = low
    zone.volume = sum(c.volume for c in window)
    zone.candle_count = len(window)
    zone.is_compressed = (
        range_ratio < COMPRESSION_RANGE_RATIO
        and avg_range < height * COMPRESSION_AVG_RANGE_SHARE
    )

    if zone.is_compressed:
        if last.close > high or last.close < low:
            zone.confirmed_breakout = True
            zone.breakout_direction = BULLISH if last.close > high else BEARISH
            zone.breakout_at = now
    else:
        zone.confirmed_breakout = False
        zone.breakout_direction = None
        zone.breakout_at = None
    return zone


def volume_trend(candles: list[Candle]) -> float:
    """Relative change of the last 5 candles' mean volume vs the 5 before.

    Returns 0.0 with fewer than 10 candles or when the earlier mean is zero.
    """
    if len(candles) < 10:
        return 0.0
    earlier = sum(c.volume for c in candles[-10:-5]) / 5
    recent = sum(c.volume for c in candles[-5:]) / 5
    if earlier == 0:
        return 0.0
    return (recent - earlier) / earlier


def average_volume(candles: list[Candle]) -> float:
    if not candles:
        return 0.0
    return sum(c.volume for c in candles) / len(candles)


@dataclass(frozen=True)
class FakeoutScan:
    has_fakeout: bool
    count: int = 0
    ratio: float = 0.0


def detect_fakeouts(candles: list[Candle]) -> FakeoutScan:
    """Count false range exits in *candles* (normally the last 10).

    A fakeout is a close beyond the previous candle's high (low) that is
    followed by a close back below that high (above that low).
    """
    if len(candles) < 5:
        return FakeoutScan(has_fakeout=False)

    count = 0
    for prev, cur, nxt in zip(candles, candles[1:], candles[2:]):
        if (cur.close > prev.high and nxt.close < prev.high) or (
            cur.close < prev.low and nxt.close > prev.low
        ):
            count += 1
    return FakeoutScan(
        has_fakeout=count > 0,
        count=count,
        ratio=count / (len(candles) - 2),
    )


def check_potential_breakout(
    zone: CompressionZone,
    current: Candle,
    previous: Candle,
    bands: BollingerBands,
) -> bool:
    """Return True when a compressed zone looks about to break.

    All must hold: close in the outer 30 % of the zone, volume up 20 % on
    the previous candle, body over 60 % of the range, and close within
    2 % of a Bollinger band.
    """
    if not zone.is_compressed or zone.high <= zone.low:
        return False

    position = (current.close - zone.low) / (zone.high - zone.low)
    near_edge = position > 0.7 or position < 0.3
    increasing_volume = current.volume > previous.volume * 1.2
    closing_strong = current.body > current.range * 0.6
    near_band = current.close > bands.upper * 0.98 or current.close < bands.lower * 1.02
    return near_edge and increasing_volume and closing_strong and near_band


def check_trend_alignment(candle: Candle, primary_trend: str, macd: MACD) -> bool:
    """Return True when the candle's body agrees with the SMA trend and MACD."""
    if candle.range == 0:
        return False
    strength = candle.body / candle.range
    if primary_trend == BULLISH:
        return candle.is_bullish and strength > 0.4 and macd.histogram > -0.0001
    return not candle.is_bullish and strength > 0.4 and macd.histogram < 0.0001


def check_breakout_confirmation(
    zone: CompressionZone,
    current: Candle,
    previous: Candle,
    bands: BollingerBands,
) -> bool:
    """Return True when the latest candle follows through on a confirmed breakout."""
    if not zone.confirmed_breakout:
        return False
    if zone.breakout_direction == BULLISH:
        return (
            current.close > zone.high
            and current.close > current.open
            and current.volume > previous.volume
            and current.close > bands.middle
        )
    return (
        current.close < zone.low
        and current.close < current.open
        and current.volume > previous.volume
        and current.close < bands.middle
    )
