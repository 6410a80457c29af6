"""Strategy data models — candles, zone state, learning state, analysis output."""

import math
from dataclasses import dataclass, field
from typing import Optional


# ── Classification vocabulary ───────────────────────────────────────────

WAIT = "WAIT"
WATCH = "WATCH"
READY = "READY"

CALL = "CALL"
PUT = "PUT"

BULLISH = "BULLISH"
BEARISH = "BEARISH"


@dataclass(frozen=True)
class Candle:
    """A one-minute OHLCV bar. ``start`` is the bucket start in epoch seconds."""

    start: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open


@dataclass
class CompressionZone:
    """Rolling low-volatility zone tracked per instrument across analyses.

    The confirmed-breakout flag survives between passes while the zone stays
    compressed, so this object must be reused for the same instrument.
    """

    high: float = -math.inf
    low: float = math.inf
    volume: float = 0.0
    candle_count: int = 0
    is_compressed: bool = False
    confirmed_breakout: bool = False
    breakout_direction: Optional[str] = None  # BULLISH / BEARISH
    breakout_at: Optional[float] = None

    @property
    def is_defined(self) -> bool:
        return self.candle_count > 0 and self.high >= self.low

    @property
    def midpoint(self) -> float:
        return (self.high + self.low) / 2

    @property
    def range_ratio(self) -> float:
        """Zone height relative to its midpoint (``inf`` when undefined)."""
        if not self.is_defined or self.midpoint == 0:
            return math.inf
        return (self.high - self.low) / self.midpoint


@dataclass
class AdaptiveStats:
    """Per-instrument self-evaluation counters feeding a confidence multiplier."""

    signals_sent: int = 0
    successful_signals: int = 0
    total_signals: int = 0
    win_rate: float = 0.0
    confidence_multiplier: float = 1.0

    def record_outcome(self, success: bool) -> None:
        self.total_signals += 1
        if success:
            self.successful_signals += 1
        self.win_rate = self.successful_signals / self.total_signals

    def refresh_multiplier(self, min_samples: int = 10) -> float:
        """Recompute the multiplier once *min_samples* outcomes are known."""
        if self.total_signals >= min_samples:
            self.win_rate = self.successful_signals / self.total_signals
            if self.win_rate > 0.6:
                self.confidence_multiplier = 1.1
            elif self.win_rate < 0.4:
                self.confidence_multiplier = 0.9
            else:
                self.confidence_multiplier = 1.0
        return self.confidence_multiplier


@dataclass(frozen=True)
class Conditions:
    """The ten boolean setup conditions evaluated on every pass."""

    in_compression: bool = False
    volume_decreasing: bool = False
    rsi_neutral: bool = False
    no_recent_fakeout: bool = False
    potential_breakout: bool = False
    trend_alignment: bool = False
    bollinger_squeeze: bool = False
    macd_alignment: bool = False
    volume_spike: bool = False
    atr_low: bool = False

    def as_dict(self) -> dict[str, bool]:
        return {
            "in_compression": self.in_compression,
            "volume_decreasing": self.volume_decreasing,
            "rsi_neutral": self.rsi_neutral,
            "no_recent_fakeout": self.no_recent_fakeout,
            "potential_breakout": self.potential_breakout,
            "trend_alignment": self.trend_alignment,
            "bollinger_squeeze": self.bollinger_squeeze,
            "macd_alignment": self.macd_alignment,
            "volume_spike": self.volume_spike,
            "atr_low": self.atr_low,
        }


@dataclass(frozen=True)
class Analysis:
    """Classification produced by one ``StrategyEngine.analyze`` pass."""

    state: str
    confidence: int
    direction: str = "WAIT"
    watch_strength: int = 0
    rsi: float = 50.0
    sma20: float = 0.0
    sma50: float = 0.0
    price: float = 0.0
    compression: bool = False
    compression_range: float = 0.0
    fakeout_alert: bool = False
    bollinger_width: float = 0.0
    atr_pct: float = 0.0
    macd_histogram: float = 0.0
    reasons: tuple[str, ...] = field(default_factory=tuple)
    entry_minutes: int = 0
    session_filtered: bool = False
    news_filtered: bool = False

    @classmethod
    def waiting(cls) -> "Analysis":
        return cls(state=WAIT, confidence=0)
