"""Per-instrument state and the tick → one-minute candle aggregator."""

import asyncio
from dataclasses import dataclass, field, replace
from typing import Optional

from squeezewatch.feed.models import Instrument, Tick
from squeezewatch.strategy.models import (
    WAIT,
    AdaptiveStats,
    Analysis,
    Candle,
    CompressionZone,
)


HISTORY_LIMIT = 200
BUCKET_SECONDS = 60


@dataclass
class InstrumentState:
    """Everything the monitor tracks for one instrument.

    ``candles`` holds sealed candles oldest-first and is owned by this
    record only.  ``lock`` serialises analysis passes for the instrument.
    """

    instrument: Instrument
    candles: list[Candle] = field(default_factory=list)
    open_candle: Optional[Candle] = None
    classification: str = WAIT
    analysis: Optional[Analysis] = None
    last_analysis_at: float = 0.0
    last_signal_hash: str = ""
    last_signal_at: float = 0.0
    cooldown_until: float = 0.0
    ticks_count: int = 0
    is_active_session: bool = False
    has_high_impact_news: bool = False
    zone: CompressionZone = field(default_factory=CompressionZone)
    learning: AdaptiveStats = field(default_factory=AdaptiveStats)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def symbol(self) -> str:
        return self.instrument.symbol

    @property
    def last_candle(self) -> Optional[Candle]:
        return self.candles[-1] if self.candles else None

    def load_history(self, candles: list[Candle], limit: int = HISTORY_LIMIT) -> None:
        """Replace the sealed history with the newest *limit* candles."""
        self.candles = list(candles[-limit:])

    def in_cooldown(self, now: float) -> bool:
        return now < self.cooldown_until


def bucket_start(epoch: int, bucket_seconds: int = BUCKET_SECONDS) -> int:
    """Floor an epoch timestamp to its bucket boundary."""
    return (int(epoch) // bucket_seconds) * bucket_seconds


class CandleAggregator:
    """Folds ticks into bucketed OHLCV candles with a bounded history.

    Args:
        history_limit: Maximum number of sealed candles kept per instrument.
        bucket_seconds: Candle width in seconds.
    """

    def __init__(
        self,
        history_limit: int = HISTORY_LIMIT,
        bucket_seconds: int = BUCKET_SECONDS,
    ) -> None:
        self._history_limit = history_limit
        self._bucket_seconds = bucket_seconds

    def update(self, state: InstrumentState, tick: Tick) -> bool:
        """Apply *tick* to *state* and report whether a new candle was opened.

        When the tick's bucket differs from the open candle's, the open
        candle is sealed into history (oldest evicted past the limit) and a
        fresh candle starts at the tick price with volume 1.
        A first tick falling in the bucket of the last backfilled candle
        reopens that candle instead of duplicating its start.
        """
        start = bucket_start(tick.epoch, self._bucket_seconds)
        price = tick.quote
        state.ticks_count += 1
        current = state.open_candle

        # Backfilled history ends with the still-forming minute; keep building it.
        if current is None and state.candles and state.candles[-1].start == start:
            current = state.candles.pop()

        if current is None or current.start != start:
            if current is not None:
                state.candles.append(current)
                if len(state.candles) > self._history_limit:
                    del state.candles[: len(state.candles) - self._history_limit]
            state.open_candle = Candle(
                start=start,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=1,
            )
            return True

        state.open_candle = replace(
            current,
            high=max(current.high, price),
            low=min(current.low, price),
            close=price,
            volume=current.volume + 1,
        )
        return False
