"""History backfill queue.

Instruments are fetched at most ``concurrency`` at a time with a pause
between batches so the provider's request-rate expectations are respected.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Optional

from squeezewatch.feed.models import candle_from_wire
from squeezewatch.market.state import HISTORY_LIMIT, InstrumentState

logger = logging.getLogger("squeezewatch.backfill")

OnLoaded = Callable[[InstrumentState], Awaitable[None]]


class HistoryBackfiller:
    """Loads one-minute candle history for queued instruments.

    Args:
        feed: Object exposing ``async fetch_history(symbol, granularity, count)``.
        on_loaded: Coroutine called with each successfully loaded state.
        concurrency: Instruments fetched per batch.
        batch_delay: Pause between batches (seconds).
        history_limit: Candles requested and kept.
    """

    def __init__(
        self,
        feed,
        on_loaded: Optional[OnLoaded] = None,
        concurrency: int = 3,
        batch_delay: float = 0.25,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._feed = feed
        self._on_loaded = on_loaded
        self._concurrency = concurrency
        self._batch_delay = batch_delay
        self._history_limit = history_limit
        self._queue: deque[InstrumentState] = deque()
        self._task: Optional[asyncio.Task] = None
        self.loaded = 0
        self.failed = 0

    @property
    def queued(self) -> int:
        return len(self._queue)

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def add(self, state: InstrumentState) -> None:
        """Queue *state* for backfill and make sure the pump is running."""
        self._queue.append(state)
        if not self.busy:
            self._task = asyncio.create_task(self._pump())

    async def drain(self) -> None:
        """Wait until every queued instrument has been processed."""
        while self.busy:
            await asyncio.shield(self._task)

    async def close(self) -> None:
        self._queue.clear()
        if self.busy:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def _pump(self) -> None:
        while self._queue:
            batch = [
                self._queue.popleft()
                for _ in range(min(self._concurrency, len(self._queue)))
            ]
            await asyncio.gather(*(self.load(state) for state in batch))
            if self._queue:
                await asyncio.sleep(self._batch_delay)

    async def load(self, state: InstrumentState) -> bool:
        """Fetch, convert and store history for one instrument.

        Returns True when candles were loaded and the completion callback
        ran.  An empty or unparsable response leaves the state untouched.
        """
        records = await self._feed.fetch_history(
            state.symbol, granularity=60, count=self._history_limit,
        )
        if not records:
            self.failed += 1
            logger.warning("No history returned for %s", state.symbol)
            return False

        try:
            candles = [candle_from_wire(record) for record in records]
        except (KeyError, TypeError, ValueError) as exc:
            self.failed += 1
            logger.error("Malformed history for %s: %s", state.symbol, exc)
            return False

        state.load_history(candles, self._history_limit)
        self.loaded += 1
        logger.info("Loaded %d candles for %s", len(state.candles), state.symbol)

        if self._on_loaded is not None:
            try:
                await self._on_loaded(state)
            except Exception:
                logger.exception("Backfill callback failed for %s", state.symbol)
        return True
