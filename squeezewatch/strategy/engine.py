"""Compression/breakout strategy engine.

Classifies an instrument's sealed candle history as WAIT, WATCH or READY.

Flow:
    1. Refresh the instrument's adaptive confidence multiplier.
    2. Update its compression zone from the trailing candles.
    3. Compute the indicator snapshot and the ten setup conditions.
    4. Score the conditions, run the state machine, apply session/news
       penalties, resolve a CALL/PUT direction.

The engine keeps no state of its own: the zone and learning counters live
on the ``InstrumentState`` so they persist between passes.
"""

import logging
import math
import time
from typing import Optional

from squeezewatch.market.state import BUCKET_SECONDS, InstrumentState
from squeezewatch.strategy.compression import (
    FakeoutScan,
    average_volume,
    check_breakout_confirmation,
    check_potential_breakout,
    check_trend_alignment,
    detect_fakeouts,
    update_compression_zone,
    volume_trend,
)
from squeezewatch.strategy.indicators import (
    MACD,
    calculate_atr,
    calculate_bollinger,
    calculate_macd,
    calculate_rsi,
    calculate_sma,
)
from squeezewatch.strategy.models import (
    BEARISH,
    BULLISH,
    CALL,
    PUT,
    READY,
    WATCH,
    Analysis,
    Candle,
    CompressionZone,
    Conditions,
)
from squeezewatch.strategy.scoring import (
    apply_filters,
    classify,
    dynamic_weights,
    finalize_confidence,
    score_conditions,
)

logger = logging.getLogger("squeezewatch.strategy")

MIN_CANDLES = 50


class StrategyEngine:
    """Stateless analyzer applied to one ``InstrumentState`` per call."""

    def __init__(self, min_candles: int = MIN_CANDLES) -> None:
        self._min_candles = min_candles

    def analyze(self, state: InstrumentState, now: Optional[float] = None) -> Analysis:
        """Classify *state*'s sealed candles.

        Returns ``Analysis.waiting()`` (WAIT, confidence 0) when fewer than
        50 sealed candles are available.

        Args:
            state: The instrument record; its zone and learning counters
                are updated in place.
            now: Current epoch seconds.  Defaults to ``time.time()``.
        """
        candles = state.candles
        if len(candles) < self._min_candles:
            return Analysis.waiting()
        if now is None:
            now = time.time()

        multiplier = state.learning.refresh_multiplier()
        zone = update_compression_zone(state.zone, candles, now=now)

        rsi = calculate_rsi(candles, 14)
        sma20 = calculate_sma(candles[-20:])
        sma50 = calculate_sma(candles[-50:])
        bands = calculate_bollinger(candles, 20)
        macd = calculate_macd(candles)
        atr = calculate_atr(candles, 14)

        last = candles[-1]
        prev = candles[-2]
        price = last.close
        primary_trend = BULLISH if sma20 > sma50 else BEARISH

        compression_range = zone.range_ratio
        vol_trend = volume_trend(candles)
        fakeouts = detect_fakeouts(candles[-10:])
        potential = check_potential_breakout(zone, last, prev, bands)
        bollinger_width = (bands.upper - bands.lower) / price if price else 0.0
        atr_ratio = atr / price if price else 0.0

        conditions = Conditions(
            in_compression=zone.is_compressed and compression_range < 0.005,
            volume_decreasing=vol_trend < -0.2,
            rsi_neutral=45 < rsi < 55,
            no_recent_fakeout=not fakeouts.has_fakeout,
            potential_breakout=potential,
            trend_alignment=check_trend_alignment(last, primary_trend, macd),
            bollinger_squeeze=bollinger_width < 0.01,
            macd_alignment=(
                (primary_trend == BULLISH and macd.histogram > 0)
                or (primary_trend == BEARISH and macd.histogram < 0)
            ),
            volume_spike=last.volume > average_volume(candles[-10:]) * 1.5,
            atr_low=atr_ratio < 0.001,
        )

        raw = score_conditions(conditions.as_dict(), dynamic_weights(last))
        result = classify(
            conditions,
            raw * multiplier,
            confirmed_breakout=zone.confirmed_breakout,
            breakout_confirmation=check_breakout_confirmation(zone, last, prev, bands),
        )
        state_name, confidence = apply_filters(
            result.state,
            result.confidence,
            has_high_impact_news=state.has_high_impact_news,
            is_active_session=state.is_active_session,
        )

        direction = resolve_direction(zone, last, potential, primary_trend, macd)

        analysis = Analysis(
            state=state_name,
            confidence=finalize_confidence(confidence),
            direction=direction,
            watch_strength=result.watch_strength,
            rsi=round(rsi),
            sma20=sma20,
            sma50=sma50,
            price=price,
            compression=zone.is_compressed,
            compression_range=compression_range if math.isfinite(compression_range) else 0.0,
            fakeout_alert=fakeouts.has_fakeout,
            bollinger_width=bollinger_width,
            atr_pct=atr_ratio * 100,
            macd_histogram=macd.histogram,
            reasons=build_reasons(conditions, zone, fakeouts),
            entry_minutes=estimate_entry_minutes(state_name, now),
            session_filtered=not state.is_active_session,
            news_filtered=state.has_high_impact_news,
        )
        logger.debug(
            "%s analysed: %s %s confidence=%d",
            state.symbol, analysis.state, analysis.direction, analysis.confidence,
        )
        return analysis


# ── Helpers ──────────────────────────────────────────────────────────────


def resolve_direction(
    zone: CompressionZone,
    candle: Candle,
    potential_breakout: bool,
    primary_trend: str,
    macd: MACD,
) -> str:
    """Pick CALL or PUT.

    Priority: confirmed breakout direction, then the side of the zone
    midpoint when a potential breakout holds, then trend agreeing with the
    MACD histogram, then the bare trend.
    """
    if zone.confirmed_breakout:
        return CALL if zone.breakout_direction == BULLISH else PUT
    if zone.is_compressed and potential_breakout:
        return CALL if candle.close > zone.midpoint else PUT
    if primary_trend == BULLISH and macd.histogram > 0:
        return CALL
    if primary_trend == BEARISH and macd.histogram < 0:
        return PUT
    return CALL if primary_trend == BULLISH else PUT


def estimate_entry_minutes(state: str, now: float) -> int:
    """Minutes until the suggested entry.

    READY waits for the next candle boundary; WATCH additionally waits one
    more candle for confirmation.  Any other state returns 0.
    """
    seconds_left = BUCKET_SECONDS - (now % BUCKET_SECONDS)
    to_next = max(1, math.ceil(seconds_left / BUCKET_SECONDS))
    if state == READY:
        return to_next
    if state == WATCH:
        return to_next + 1
    return 0


def build_reasons(
    conditions: Conditions,
    zone: CompressionZone,
    fakeouts: FakeoutScan,
) -> tuple[str, ...]:
    """Return up to three human-readable reasons, most structural first."""
    reasons: list[str] = []
    if conditions.in_compression:
        reasons.append(f"Tight compression (range {zone.range_ratio * 100:.2f}%)")
    if conditions.volume_decreasing:
        reasons.append("Volume drying up before the break")
    if conditions.no_recent_fakeout and fakeouts.count == 0:
        reasons.append("No recent fakeouts")
    if conditions.bollinger_squeeze:
        reasons.append("Bollinger squeeze")
    if conditions.potential_breakout:
        reasons.append("Strong potential-breakout signals")
    if conditions.macd_alignment:
        reasons.append("MACD aligned with trend")
    if zone.confirmed_breakout:
        side = "bullish" if zone.breakout_direction == BULLISH else "bearish"
        reasons.append(f"Confirmed {side} breakout")
    return tuple(reasons[:3])
