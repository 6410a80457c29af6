"""Signal dispatch: dedup, confirmation filter, delivery and self-evaluation.

Flow for a READY analysis with confidence ≥ threshold:
    1. Skip while the instrument is cooling down.
    2. Skip a hash already delivered in the last 2 hours.
    3. Reject (false positive) when the previous candle strongly opposes
       the direction.
    4. Hand the alert to the notifier; on delivery record hash, time and
       cooldown, journal the signal and schedule its evaluation.
"""

import asyncio
import logging
import sqlite3
import time
from dataclasses import replace
from typing import Callable, Optional

from squeezewatch.market.state import InstrumentState
from squeezewatch.notify.formatting import build_alert_message
from squeezewatch.notify.telegram import DELIVERED, SUPPRESSED
from squeezewatch.reporting.stats import PerformanceStats
from squeezewatch.signals.models import Outcome, Signal
from squeezewatch.signals.store import ExpiringStore
from squeezewatch.strategy.models import CALL, READY, Analysis, Candle

logger = logging.getLogger("squeezewatch.signals")

DEDUP_WINDOW = 2 * 60 * 60
COOLDOWN = 30 * 60
EVALUATION_DELAY = 5 * 60
STRONG_BODY_RATIO = 0.7


def candle_pattern_digest(candles: list[Candle]) -> str:
    """Fingerprint the last three candles as ``B_3-S_1-B_2``.

    Each part is the candle colour and its range relative to its low in
    tenths of a percent, rounded.
    """
    parts = []
    for candle in candles[-3:]:
        colour = "B" if candle.close > candle.open else "S"
        spread = (candle.high - candle.low) / candle.low * 1000 if candle.low else 0.0
        parts.append(f"{colour}_{spread:.0f}")
    return "-".join(parts)


def signal_hash(state: InstrumentState, analysis: Analysis) -> str:
    return (
        f"{state.symbol}_{analysis.direction}_{analysis.confidence}_"
        f"{candle_pattern_digest(state.candles)}_{analysis.watch_strength}"
    )


def confirm_with_previous_candle(candles: list[Candle], direction: str) -> bool:
    """Reject when the previous candle has a strong body against *direction*.

    Requires at least three candles; fewer is treated as unconfirmed.
    """
    if len(candles) < 3:
        return False
    previous = candles[-2]
    strong = previous.body > previous.range * STRONG_BODY_RATIO
    if direction == CALL:
        return not (previous.close < previous.open and strong)
    return not (previous.close > previous.open and strong)


class SignalDispatcher:
    """Turns READY analyses into delivered, journalled, evaluated signals.

    Args:
        notifier: Object with ``async send(text, symbol, signal_hash)`` returning
            ``DELIVERED``, ``SUPPRESSED`` or ``FAILED``.
        evaluator: ``OutcomeEvaluator`` used after *evaluation_delay*.
        stats: Global counters.
        repo: Optional ``SignalRepo`` journal.
        threshold: Minimum confidence for a signal.
        formatter: ``(state, analysis, stats) -> str`` message builder.
    """

    def __init__(
        self,
        notifier,
        evaluator=None,
        stats: Optional[PerformanceStats] = None,
        repo=None,
        threshold: int = 75,
        dedup_window: float = DEDUP_WINDOW,
        cooldown: float = COOLDOWN,
        evaluation_delay: float = EVALUATION_DELAY,
        formatter: Callable[..., str] = build_alert_message,
    ) -> None:
        self._notifier = notifier
        self._evaluator = evaluator
        self.stats = stats if stats is not None else PerformanceStats()
        self._repo = repo
        self._threshold = threshold
        self.sent_hashes: ExpiringStore[str] = ExpiringStore(dedup_window)
        self._cooldown = cooldown
        self._evaluation_delay = evaluation_delay
        self._formatter = formatter
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_evaluations(self) -> int:
        return len(self._tasks)

    async def maybe_signal(
        self,
        state: InstrumentState,
        analysis: Analysis,
        now: Optional[float] = None,
    ) -> Optional[Signal]:
        """Deliver a signal for *analysis* if every gate passes.

        Returns the delivered ``Signal`` or None.
        """
        if analysis.state != READY or analysis.confidence < self._threshold:
            return None
        now = time.time() if now is None else now

        if state.in_cooldown(now):
            logger.debug("%s cooling down, signal suppressed", state.symbol)
            return None

        digest = signal_hash(state, analysis)
        if self.sent_hashes.lookup(digest, now) is not None:
            logger.debug("Duplicate signal for %s suppressed", state.symbol)
            return None

        if not confirm_with_previous_candle(state.candles, analysis.direction):
            self.stats.false_positives += 1
            logger.info(
                "%s %s rejected: previous candle opposes direction",
                state.symbol, analysis.direction,
            )
            return None

        message = self._formatter(state, analysis, self.stats)
        result = await self._notifier.send(message, state.symbol, digest)
        if result == SUPPRESSED:
            logger.debug("Notifier suppressed signal for %s", state.symbol)
            return None
        if result != DELIVERED:
            self.stats.delivery_failures += 1
            return None

        self.sent_hashes.insert(digest, at=now)
        self.sent_hashes.evict_expired(now)

        state.last_signal_hash = digest
        state.last_signal_at = now
        state.cooldown_until = now + self._cooldown
        state.learning.signals_sent += 1
        self.stats.signals_sent += 1

        signal = Signal(
            symbol=state.symbol,
            display_name=state.instrument.display_name,
            direction=analysis.direction,
            confidence=analysis.confidence,
            price=analysis.price,
            entry_minutes=analysis.entry_minutes,
            signal_hash=digest,
            created_at=now,
            watch_strength=analysis.watch_strength,
            state=analysis.state,
            compression=analysis.compression,
            fakeout_alert=analysis.fakeout_alert,
            session_filtered=analysis.session_filtered,
            news_filtered=analysis.news_filtered,
        )
        signal = self._journal(signal)
        logger.info(
            "Signal sent: %s %s confidence=%d price=%s entry=%dm",
            signal.symbol, signal.direction, signal.confidence,
            signal.price, signal.entry_minutes,
        )

        self._schedule_evaluation(state, signal)
        return signal

    async def evaluate(self, state: InstrumentState, signal: Signal) -> Optional[Outcome]:
        """Re-price *signal* and feed the outcome into the learning counters."""
        if self._evaluator is None:
            return None
        outcome = await self._evaluator.evaluate(signal)
        if outcome is None:
            return None

        state.learning.record_outcome(outcome.success)
        self.stats.record_outcome(outcome.success)
        if self._repo is not None and signal.journal_id is not None:
            try:
                self._repo.record_outcome(signal.journal_id, outcome.label, outcome.exit_price)
            except sqlite3.Error:
                logger.exception("Failed to journal outcome for %s", signal.symbol)
        return outcome

    async def close(self) -> None:
        """Cancel scheduled evaluations."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _journal(self, signal: Signal) -> Signal:
        if self._repo is None:
            return signal
        try:
            return replace(signal, journal_id=self._repo.insert_signal(signal))
        except sqlite3.Error:
            logger.exception("Failed to journal signal for %s", signal.symbol)
            return signal

    def _schedule_evaluation(self, state: InstrumentState, signal: Signal) -> None:
        task = asyncio.create_task(self._evaluate_later(state, signal))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _evaluate_later(self, state: InstrumentState, signal: Signal) -> None:
        await asyncio.sleep(self._evaluation_delay)
        await self.evaluate(state, signal)
