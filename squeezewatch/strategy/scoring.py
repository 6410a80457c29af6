"""Confidence scoring and WAIT → WATCH → READY classification — pure functions."""

from dataclasses import dataclass

from squeezewatch.strategy.models import READY, WAIT, WATCH, Candle, Conditions


BASE_WEIGHTS: dict[str, float] = {
    "in_compression": 20,
    "volume_decreasing": 15,
    "rsi_neutral": 10,
    "no_recent_fakeout": 15,
    "potential_breakout": 20,
    "trend_alignment": 10,
    "bollinger_squeeze": 12,
    "macd_alignment": 8,
    "volume_spike": 15,
    "atr_low": 10,
}

LARGE_BODY_PCT = 0.005
LARGE_BODY_BOOST = 5

STRONG_WATCH_BONUS = 15
READY_BONUS = 20
DOWNGRADE_PENALTY = 10
MAX_CONFIDENCE = 95


def dynamic_weights(last_candle: Candle) -> dict[str, float]:
    """Return condition weights, boosting momentum weights on a large body.

    A body above 0.5 % of the close adds 5 to ``volume_spike`` and
    ``trend_alignment``.
    """
    weights = dict(BASE_WEIGHTS)
    if last_candle.close > 0 and last_candle.body / last_candle.close > LARGE_BODY_PCT:
        weights["volume_spike"] += LARGE_BODY_BOOST
        weights["trend_alignment"] += LARGE_BODY_BOOST
    return weights


def score_conditions(conditions: dict[str, bool], weights: dict[str, float]) -> float:
    """Sum the weights of every condition that holds."""
    return float(sum(weights.get(name, 0) for name, held in conditions.items() if held))


@dataclass(frozen=True)
class Classification:
    state: str
    watch_strength: int
    confidence: float


def classify(
    conditions: Conditions,
    confidence: float,
    confirmed_breakout: bool,
    breakout_confirmation: bool,
) -> Classification:
    """Run the state machine on one condition set.

    * WATCH when ≥3 of {compression, volume decreasing, RSI neutral, no
      fakeout}; strong watch (+15) when all 4 hold and ≥2 of {Bollinger
      squeeze, ATR low, MACD alignment}.
    * READY when ≥4 of {confirmed breakout, potential breakout, trend
      alignment, volume spike, breakout confirmation} on top of watch
      status; +20 capped at 95.
    * A READY score without watch status is reported as WATCH, −10.
    """
    watch_score = sum([
        conditions.in_compression,
        conditions.volume_decreasing,
        conditions.rsi_neutral,
        conditions.no_recent_fakeout,
    ])
    strong_score = sum([
        conditions.bollinger_squeeze,
        conditions.atr_low,
        conditions.macd_alignment,
    ])
    ready_score = sum([
        confirmed_breakout,
        conditions.potential_breakout,
        conditions.trend_alignment,
        conditions.volume_spike,
        breakout_confirmation,
    ])

    state = WAIT
    watch_strength = 0
    if watch_score >= 3:
        state = WATCH
        watch_strength = 1
        if strong_score >= 2 and watch_score >= 4:
            watch_strength = 2
            confidence += STRONG_WATCH_BONUS

    if ready_score >= 4:
        if watch_strength >= 1:
            state = READY
            confidence = min(confidence + READY_BONUS, MAX_CONFIDENCE)
        else:
            state = WATCH
            confidence -= DOWNGRADE_PENALTY

    return Classification(state=state, watch_strength=watch_strength, confidence=confidence)


def apply_filters(
    state: str,
    confidence: float,
    has_high_impact_news: bool,
    is_active_session: bool,
) -> tuple[str, float]:
    """Apply the news (force WAIT, ×0.7) and off-session (×0.8) penalties."""
    if has_high_impact_news:
        state = WAIT
        confidence *= 0.7
    if not is_active_session:
        confidence *= 0.8
    return state, confidence


def finalize_confidence(confidence: float) -> int:
    """Round and clamp a confidence value to 0–95."""
    return int(max(0, min(MAX_CONFIDENCE, round(confidence))))
