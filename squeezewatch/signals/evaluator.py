"""Delayed self-evaluation of delivered signals.

A fresh price is obtained through a disposable one-shot tick subscription
that is always released, then compared with the entry price using a 0.1 %
threshold.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from squeezewatch.feed.errors import FeedError, ProviderError
from squeezewatch.signals.models import Outcome, Signal
from squeezewatch.strategy.models import CALL, PUT

logger = logging.getLogger("squeezewatch.evaluator")

OUTCOME_THRESHOLD = 0.001
QUOTE_TIMEOUT = 10.0


class PriceUnavailable(FeedError):
    code = "PRICE_UNAVAILABLE"


def classify_outcome(
    direction: str,
    entry_price: float,
    current_price: float,
    threshold: float = OUTCOME_THRESHOLD,
) -> bool:
    """Return True when price moved more than *threshold* in *direction*.

    >>> classify_outcome("CALL", 1.0, 1.0011)
    True
    >>> classify_outcome("PUT", 1.0, 0.9995)
    False
    """
    if direction == CALL:
        return current_price > entry_price * (1 + threshold)
    if direction == PUT:
        return current_price < entry_price * (1 - threshold)
    raise ValueError(f"Unknown direction {direction!r}")


@asynccontextmanager
async def one_shot_subscription(
    feed,
    symbol: str,
    timeout: float = QUOTE_TIMEOUT,
) -> AsyncIterator[dict]:
    """Subscribe to *symbol*, yield the first response, then ``forget`` it.

    The subscription is released on every exit path.  If the response only
    arrives after *timeout*, the feed releases it when it lands.
    """
    response: Optional[dict] = None
    try:
        response = await feed.request(
            {"ticks": symbol, "subscribe": 1},
            timeout=timeout,
            release_on_abandon=True,
        )
        yield response
    finally:
        subscription_id = ((response or {}).get("subscription") or {}).get("id")
        if subscription_id:
            feed.forget_nowait(subscription_id)


class OutcomeEvaluator:
    """Re-prices signals and classifies them as win or loss.

    Args:
        feed: A ``DerivFeedClient`` (or anything exposing ``request``,
            ``forget_nowait`` and ``last_quote``).
        quote_timeout: Seconds to wait for the quote response.
    """

    def __init__(self, feed, quote_timeout: float = QUOTE_TIMEOUT) -> None:
        self._feed = feed
        self._quote_timeout = quote_timeout

    async def fetch_price(self, symbol: str) -> float:
        """Return a fresh quote for *symbol*.

        When the symbol is already streamed the provider rejects a second
        subscription, so the latest streamed quote is used instead.

        Raises:
            FeedError: The price could not be obtained.
        """
        try:
            async with one_shot_subscription(
                self._feed, symbol, self._quote_timeout,
            ) as response:
                quote = (response.get("tick") or {}).get("quote")
        except ProviderError as exc:
            cached = self._feed.last_quote(symbol)
            if exc.code == "AlreadySubscribed" and cached is not None:
                return float(cached)
            raise

        if quote is None:
            cached = self._feed.last_quote(symbol)
            if cached is None:
                raise PriceUnavailable(f"No quote in quote response for {symbol}")
            return float(cached)
        return float(quote)

    async def evaluate(self, signal: Signal) -> Optional[Outcome]:
        """Classify *signal*; returns None when no price could be obtained."""
        try:
            price = await self.fetch_price(signal.symbol)
        except FeedError as exc:
            logger.error("Error evaluating signal for %s: %s", signal.symbol, exc)
            return None

        if price <= 0:
            logger.error("Invalid price %s for %s, skipping evaluation", price, signal.symbol)
            return None

        outcome = Outcome(
            symbol=signal.symbol,
            direction=signal.direction,
            entry_price=signal.price,
            exit_price=price,
            success=classify_outcome(signal.direction, signal.price, price),
        )
        logger.info(
            "Signal evaluation: %s %s entry=%s exit=%s -> %s",
            signal.symbol, signal.direction, signal.price, price, outcome.label.upper(),
        )
        return outcome
