"""MarketMonitor — wires the feed, aggregator, engine and dispatcher together.

Startup:
    1. Load the news calendar and connect the feed.
    2. Discover the tradable universe and register instruments in batches
       of 10 (1 s apart), queueing each for history backfill.
    3. Once an instrument's history is loaded, subscribe to its ticks after
       a random 0–5 s delay and run a first analysis.

Background loops: idle re-analysis every 30 s, the 1 s reporter tick and an
hourly session/news refresh that also sweeps expired dedup entries.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from squeezewatch.config import Config
from squeezewatch.feed.deriv_client import DerivFeedClient
from squeezewatch.feed.errors import FeedError
from squeezewatch.feed.models import Instrument, Tick, is_tradable
from squeezewatch.market.backfill import HistoryBackfiller
from squeezewatch.market.state import CandleAggregator, InstrumentState
from squeezewatch.notify.telegram import TelegramNotifier
from squeezewatch.reporting.stats import PerformanceStats, Reporter, format_uptime
from squeezewatch.signals.dispatcher import SignalDispatcher
from squeezewatch.signals.evaluator import OutcomeEvaluator
from squeezewatch.strategy.engine import StrategyEngine
from squeezewatch.strategy.models import READY, WATCH, Analysis
from squeezewatch.strategy.session_filter import NewsCalendar, is_active_session

logger = logging.getLogger("squeezewatch.monitor")

MIN_ANALYSIS_INTERVAL = 15.0
IDLE_THRESHOLD = 30.0
SCHEDULER_INTERVAL = 30.0
SESSION_REFRESH_INTERVAL = 60 * 60
REPORTER_INTERVAL = 1.0


class MarketMonitor:
    """Runs the whole monitoring pipeline for every tradable instrument.

    Args:
        config: Application ``Config``.
        feed: Streaming client; built from ``config.ws_endpoint`` if omitted.
        notifier: Alert channel; a ``TelegramNotifier`` if omitted.
        repo: Optional ``SignalRepo`` journal.
        clock: Time source (epoch seconds).
    """

    def __init__(
        self,
        config: Config,
        feed: Optional[DerivFeedClient] = None,
        notifier=None,
        repo=None,
        engine: Optional[StrategyEngine] = None,
        news: Optional[NewsCalendar] = None,
        clock: Callable[[], float] = time.time,
        subscribe_delay_max: float = 5.0,
        registration_batch: int = 10,
        registration_delay: float = 1.0,
        universe_retry_delay: float = 5.0,
    ) -> None:
        self._config = config
        self._clock = clock
        self._subscribe_delay_max = subscribe_delay_max
        self._registration_batch = registration_batch
        self._registration_delay = registration_delay
        self._universe_retry_delay = universe_retry_delay

        self.feed = feed or DerivFeedClient(config.ws_endpoint)
        self.notifier = notifier or TelegramNotifier.from_config(config)
        self.news = news or NewsCalendar()
        self.stats = PerformanceStats()
        self.aggregator = CandleAggregator()
        self.engine = engine or StrategyEngine()
        self.dispatcher = SignalDispatcher(
            self.notifier,
            evaluator=OutcomeEvaluator(self.feed),
            stats=self.stats,
            repo=repo,
            threshold=config.confidence_threshold,
            cooldown=config.signal_cooldown_minutes * 60,
            evaluation_delay=config.evaluation_delay_seconds,
        )
        self.backfiller = HistoryBackfiller(self.feed, self._on_history_loaded)
        self.reporter = Reporter(self.stats, self._reporter_status)
        self.instruments: dict[str, InstrumentState] = {}

        self.started_at: Optional[float] = None
        self._running = False
        self._loops: list[asyncio.Task] = []
        self._tasks: set[asyncio.Task] = set()

        self.feed.on_tick(self.handle_tick)

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, connect_timeout: Optional[float] = None) -> None:
        """Connect, discover instruments and start the background loops."""
        logger.info("Starting SqueezeWatch monitor...")
        self._running = True
        self.started_at = self._clock()
        self.reporter = Reporter(self.stats, self._reporter_status, started_at=self.started_at)

        await self.news.load()
        self.feed.start()
        await self.feed.wait_connected(connect_timeout)

        instruments = await self.load_instruments()
        await self.register_instruments(instruments)

        self._loops = [
            asyncio.create_task(self._scheduler_loop(), name="analysis-scheduler"),
            asyncio.create_task(self._reporter_loop(), name="reporter"),
            asyncio.create_task(self._session_loop(), name="session-refresh"),
        ]
        logger.info("Monitor active: %d instruments", len(self.instruments))

    async def stop(self) -> None:
        """Cancel loops and pending work, then close the feed."""
        if not self._running and not self._loops:
            return
        self._running = False
        tasks = self._loops + list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = []
        self._tasks.clear()
        await self.backfiller.close()
        await self.dispatcher.close()
        await self.feed.stop()
        logger.info("Monitor stopped")

    # ── Universe ─────────────────────────────────────────────────────────

    async def load_instruments(self) -> list[Instrument]:
        """Fetch ``active_symbols`` and keep tradable, non-OTC instruments.

        Retries after a delay while the feed is unavailable.
        """
        while True:
            try:
                records = await self.feed.fetch_active_symbols()
                break
            except FeedError as exc:
                logger.error(
                    "Failed to load instruments (%s), retrying in %.0fs",
                    exc, self._universe_retry_delay,
                )
                await asyncio.sleep(self._universe_retry_delay)
                await self.feed.wait_connected()

        instruments = []
        for record in records:
            try:
                instrument = Instrument.from_wire(record)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed symbol record: %s", exc)
                continue
            if is_tradable(instrument):
                instruments.append(instrument)
        logger.info("Loaded %d tradable instruments (of %d)", len(instruments), len(records))
        return instruments

    async def register_instruments(self, instruments: list[Instrument]) -> None:
        """Create instrument states and queue them for backfill in batches."""
        size = self._registration_batch
        for i in range(0, len(instruments), size):
            for instrument in instruments[i:i + size]:
                if instrument.symbol in self.instruments:
                    continue
                state = InstrumentState(instrument)
                self.refresh_flags(state)
                self.instruments[instrument.symbol] = state
                self.backfiller.add(state)
            if i + size < len(instruments):
                await asyncio.sleep(self._registration_delay)

    async def _on_history_loaded(self, state: InstrumentState) -> None:
        delay = random.uniform(0, self._subscribe_delay_max)
        self._spawn(self._subscribe_later(state.symbol, delay))
        await self.analyze_instrument(state)

    async def _subscribe_later(self, symbol: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self.feed.subscribe(symbol)

    # ── Ticks and analysis ───────────────────────────────────────────────

    def handle_tick(self, tick: Tick) -> None:
        """Fold *tick* into its instrument; analyze when a candle closes."""
        state = self.instruments.get(tick.symbol)
        if state is None:
            return
        if self.aggregator.update(state, tick):
            self._spawn(self.analyze_instrument(state))

    def refresh_flags(self, state: InstrumentState, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        hour = datetime.fromtimestamp(now, tz=timezone.utc).hour
        state.is_active_session = is_active_session(hour, self._config.sessions)
        state.has_high_impact_news = self.news.has_high_impact_news(state.symbol)

    async def analyze_instrument(
        self,
        state: InstrumentState,
        now: Optional[float] = None,
    ) -> Optional[Analysis]:
        """Run one analysis pass for *state* and dispatch a signal if READY.

        Passes are serialised per instrument and throttled to one every
        15 seconds; a skipped pass returns None.
        """
        if state.lock.locked():
            return None
        async with state.lock:
            now = self._clock() if now is None else now
            if now - state.last_analysis_at < MIN_ANALYSIS_INTERVAL:
                return None
            state.last_analysis_at = now
            self.refresh_flags(state, now)

            try:
                analysis = self.engine.analyze(state, now)
            except Exception:
                logger.exception("Analysis failed for %s", state.symbol)
                return None

            state.analysis = analysis
            state.classification = analysis.state
            self.stats.record_analysis(analysis)

            if analysis.state == READY and analysis.confidence >= self._config.confidence_threshold:
                await self.dispatcher.maybe_signal(state, analysis, now)
            return analysis

    async def run_scheduled_pass(self, now: Optional[float] = None) -> int:
        """Re-analyze every instrument idle for more than 30 s.

        Returns the number of instruments that were due.
        """
        now = self._clock() if now is None else now
        due = [
            state for state in self.instruments.values()
            if now - state.last_analysis_at > IDLE_THRESHOLD
        ]
        if due:
            await asyncio.gather(*(self.analyze_instrument(s, now) for s in due))
        return len(due)

    def refresh_sessions(self, now: Optional[float] = None) -> None:
        for state in self.instruments.values():
            self.refresh_flags(state, now)

    # ── Background loops ─────────────────────────────────────────────────

    async def _scheduler_loop(self) -> None:
        while self._running:
            await asyncio.sleep(SCHEDULER_INTERVAL)
            await self.run_scheduled_pass()

    async def _reporter_loop(self) -> None:
        while self._running:
            await asyncio.sleep(REPORTER_INTERVAL)
            self.reporter.tick(self._clock())

    async def _session_loop(self) -> None:
        while self._running:
            await asyncio.sleep(SESSION_REFRESH_INTERVAL)
            self.refresh_sessions()
            evicted = self.notifier.evict_expired()
            logger.debug("Session flags refreshed, %d expired dedup entries evicted", evicted)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Status ───────────────────────────────────────────────────────────

    def _reporter_status(self) -> tuple[int, bool]:
        return len(self.instruments), self.feed.connected

    @property
    def uptime(self) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, self._clock() - self.started_at)

    def status(self) -> dict:
        """Snapshot for the status API and the periodic status log."""
        states = [s.classification for s in self.instruments.values()]
        return {
            "running": self._running,
            "uptime_seconds": round(self.uptime),
            "uptime": format_uptime(self.uptime),
            "feed_connected": self.feed.connected,
            "feed_state": self.feed.state,
            "subscriptions": len(self.feed.subscriptions),
            "pending_requests": self.feed.pending_count,
            "instruments": len(self.instruments),
            "watching": states.count(WATCH),
            "ready": states.count(READY),
            "backfill_queued": self.backfiller.queued,
            "pending_evaluations": self.dispatcher.pending_evaluations,
            "stats": self.stats.snapshot(),
        }

    def instrument_summaries(self) -> list[dict]:
        now = self._clock()
        rows = []
        for state in self.instruments.values():
            analysis = state.analysis
            rows.append({
                "symbol": state.symbol,
                "display_name": state.instrument.display_name,
                "market": state.instrument.market,
                "state": state.classification,
                "confidence": analysis.confidence if analysis else 0,
                "direction": analysis.direction if analysis else None,
                "candles": len(state.candles),
                "ticks": state.ticks_count,
                "subscribed": self.feed.is_subscribed(state.symbol),
                "in_cooldown": state.in_cooldown(now),
                "cooldown_remaining": round(max(0.0, state.cooldown_until - now)),
                "active_session": state.is_active_session,
            })
        return rows
