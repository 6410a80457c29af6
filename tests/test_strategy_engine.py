"""Deterministic tests for the compression/breakout strategy.

Covers the zone tracker, the pattern helpers, the pure scoring and
classification functions, and ``StrategyEngine.analyze`` end to end.
"""

import pytest

from squeezewatch.feed.models import Instrument
from squeezewatch.market.state import InstrumentState
from squeezewatch.strategy.compression import (
    check_breakout_confirmation,
    check_potential_breakout,
    check_trend_alignment,
    detect_fakeouts,
    update_compression_zone,
    volume_trend,
)
from squeezewatch.strategy.engine import (
    StrategyEngine,
    build_reasons,
    estimate_entry_minutes,
    resolve_direction,
)
from squeezewatch.strategy.indicators import MACD, BollingerBands
from squeezewatch.strategy.models import (
    BEARISH,
    BULLISH,
    CALL,
    PUT,
    READY,
    WAIT,
    WATCH,
    AdaptiveStats,
    Analysis,
    Candle,
    CompressionZone,
    Conditions,
)
from squeezewatch.strategy.scoring import (
    BASE_WEIGHTS,
    apply_filters,
    classify,
    dynamic_weights,
    finalize_confidence,
    score_conditions,
)

BUCKET = 1_700_000_040


# ── Candle fixtures ──────────────────────────────────────────────────────

def _make_candle(i: int, o: float, h: float, l: float, c: float, vol: float = 10) -> Candle:
    return Candle(start=BUCKET + i * 60, open=o, high=h, low=l, close=c, volume=vol)


def _tight_range(n: int, base: float = 1.1000) -> list[Candle]:
    """Candles alternating between two closes 6 pips apart, 2-pip ranges."""
    candles = []
    for i in range(n):
        mid = base + (i % 2) * 0.0006
        candles.append(_make_candle(i, mid, mid + 0.0001, mid - 0.0001, mid))
    return candles


def _wide_range(n: int, base: float = 1.1000) -> list[Candle]:
    """Candles swinging 3 % so no compression is detected."""
    candles = []
    for i in range(n):
        mid = base * (1 + 0.03 * (i % 2))
        candles.append(_make_candle(i, mid, mid * 1.01, mid * 0.99, mid))
    return candles


def _make_state(candles: list[Candle]) -> InstrumentState:
    state = InstrumentState(Instrument("frxEURUSD", "EUR/USD", "forex", 0.00001))
    state.load_history(candles)
    state.is_active_session = True
    return state


# ── Compression zone ─────────────────────────────────────────────────────


class TestCompressionZone:
    def test_tight_range_is_compressed(self):
        zone = update_compression_zone(CompressionZone(), _tight_range(21))
        assert zone.is_compressed
        assert zone.high == pytest.approx(1.1007)
        assert zone.low == pytest.approx(1.0999)
        assert zone.candle_count == 20
        assert not zone.confirmed_breakout

    def test_wide_range_not_compressed(self):
        zone = update_compression_zone(CompressionZone(), _wide_range(21))
        assert not zone.is_compressed

    def test_bullish_breakout_confirmed(self):
        candles = _tight_range(21)
        candles.append(_make_candle(21, 1.1006, 1.1021, 1.1005, 1.1020))
        zone = update_compression_zone(CompressionZone(), candles, now=123.0)
        assert zone.is_compressed
        assert zone.confirmed_breakout
        assert zone.breakout_direction == BULLISH
        assert zone.breakout_at == 123.0

    def test_bearish_breakout_confirmed(self):
        candles = _tight_range(21)
        candles.append(_make_candle(21, 1.1000, 1.1001, 1.0979, 1.0980))
        zone = update_compression_zone(CompressionZone(), candles)
        assert zone.confirmed_breakout
        assert zone.breakout_direction == BEARISH

    def test_breakout_persists_while_compressed(self):
        zone = CompressionZone()
        candles = _tight_range(21)
        candles.append(_make_candle(21, 1.1006, 1.1021, 1.1005, 1.1020))
        update_compression_zone(zone, candles)
        # Next pass: the zone window shifts but stays tight, close back inside.
        later = _tight_range(22)
        update_compression_zone(zone, later)
        assert zone.is_compressed
        assert zone.confirmed_breakout

    def test_breakout_cleared_when_not_compressed(self):
        zone = CompressionZone(confirmed_breakout=True, breakout_direction=BULLISH)
        update_compression_zone(zone, _wide_range(21))
        assert not zone.confirmed_breakout
        assert zone.breakout_direction is None

    def test_too_few_candles_leaves_zone_untouched(self):
        zone = CompressionZone()
        update_compression_zone(zone, _tight_range(10))
        assert not zone.is_defined


# ── Pattern helpers ──────────────────────────────────────────────────────


class TestPatternHelpers:
    def test_volume_trend_decreasing(self):
        candles = [_make_candle(i, 1, 1, 1, 1, vol=10 if i < 5 else 5) for i in range(10)]
        assert volume_trend(candles) == pytest.approx(-0.5)

    def test_volume_trend_short_series(self):
        assert volume_trend(_tight_range(9)) == 0.0

    def test_fakeout_detected(self):
        candles = [
            _make_candle(0, 1.10, 1.101, 1.099, 1.100),
            _make_candle(1, 1.10, 1.102, 1.099, 1.1015),  # closes above prev high
            _make_candle(2, 1.1015, 1.1016, 1.099, 1.0995),  # back inside
            _make_candle(3, 1.0995, 1.100, 1.099, 1.0998),
            _make_candle(4, 1.0998, 1.100, 1.099, 1.0999),
        ]
        scan = detect_fakeouts(candles)
        assert scan.has_fakeout
        assert scan.count == 1

    def test_no_fakeout_in_quiet_tape(self):
        candles = [_make_candle(i, 1.1, 1.1001, 1.0999, 1.1) for i in range(10)]
        assert not detect_fakeouts(candles).has_fakeout

    def test_fakeout_needs_five_candles(self):
        assert not detect_fakeouts(_tight_range(4)).has_fakeout

    def test_potential_breakout(self):
        zone = CompressionZone(high=1.1010, low=1.1000, is_compressed=True)
        previous = _make_candle(0, 1.1004, 1.1005, 1.1003, 1.1004, vol=10)
        current = _make_candle(1, 1.1002, 1.10095, 1.1001, 1.1009, vol=13)
        bands = BollingerBands(upper=1.1010, middle=1.1005, lower=1.1000)
        assert check_potential_breakout(zone, current, previous, bands)

    def test_potential_breakout_needs_volume(self):
        zone = CompressionZone(high=1.1010, low=1.1000, is_compressed=True)
        previous = _make_candle(0, 1.1004, 1.1005, 1.1003, 1.1004, vol=10)
        current = _make_candle(1, 1.1002, 1.10095, 1.1001, 1.1009, vol=11)
        bands = BollingerBands(upper=1.1010, middle=1.1005, lower=1.1000)
        assert not check_potential_breakout(zone, current, previous, bands)

    def test_trend_alignment(self):
        bullish = _make_candle(0, 1.1000, 1.1010, 1.1000, 1.1008)
        assert check_trend_alignment(bullish, BULLISH, MACD(0.001, 0.0005, 0.0005))
        assert not check_trend_alignment(bullish, BEARISH, MACD(0.001, 0.0005, 0.0005))

    def test_trend_alignment_flat_candle(self):
        flat = _make_candle(0, 1.1, 1.1, 1.1, 1.1)
        assert not check_trend_alignment(flat, BULLISH, MACD(0, 0, 0))

    def test_breakout_confirmation(self):
        zone = CompressionZone(
            high=1.1010, low=1.1000, is_compressed=True,
            confirmed_breakout=True, breakout_direction=BULLISH,
        )
        previous = _make_candle(0, 1.1005, 1.1008, 1.1004, 1.1007, vol=10)
        current = _make_candle(1, 1.1008, 1.1016, 1.1007, 1.1015, vol=15)
        bands = BollingerBands(upper=1.1020, middle=1.1006, lower=1.0990)
        assert check_breakout_confirmation(zone, current, previous, bands)

    def test_breakout_confirmation_requires_confirmed_breakout(self):
        zone = CompressionZone(high=1.1010, low=1.1000, is_compressed=True)
        current = _make_candle(1, 1.1008, 1.1016, 1.1007, 1.1015, vol=15)
        assert not check_breakout_confirmation(
            zone, current, current, BollingerBands(1.102, 1.1006, 1.099),
        )


# ── Scoring ──────────────────────────────────────────────────────────────


class TestScoring:
    def test_score_sums_true_conditions(self):
        all_true = {name: True for name in BASE_WEIGHTS}
        assert score_conditions(all_true, BASE_WEIGHTS) == 135.0
        assert score_conditions({"in_compression": True, "atr_low": False}, BASE_WEIGHTS) == 20.0

    def test_score_ignores_unknown_conditions(self):
        assert score_conditions({"unknown": True}, BASE_WEIGHTS) == 0.0

    def test_dynamic_weights_boost_large_body(self):
        big = _make_candle(0, 1.1000, 1.1070, 1.0995, 1.1065)  # body ≈ 0.59 %
        weights = dynamic_weights(big)
        assert weights["volume_spike"] == BASE_WEIGHTS["volume_spike"] + 5
        assert weights["trend_alignment"] == BASE_WEIGHTS["trend_alignment"] + 5
        assert BASE_WEIGHTS["volume_spike"] == 15  # base table untouched

    def test_dynamic_weights_small_body(self):
        small = _make_candle(0, 1.1000, 1.1002, 1.0999, 1.1001)
        assert dynamic_weights(small) == BASE_WEIGHTS

    def test_wait_below_watch_threshold(self):
        result = classify(Conditions(in_compression=True, rsi_neutral=True), 30, False, False)
        assert result.state == WAIT
        assert result.watch_strength == 0
        assert result.confidence == 30

    def test_watch(self):
        conditions = Conditions(in_compression=True, rsi_neutral=True, no_recent_fakeout=True)
        result = classify(conditions, 45, False, False)
        assert result.state == WATCH
        assert result.watch_strength == 1
        assert result.confidence == 45

    def test_strong_watch(self):
        conditions = Conditions(
            in_compression=True, volume_decreasing=True, rsi_neutral=True,
            no_recent_fakeout=True, bollinger_squeeze=True, atr_low=True,
        )
        result = classify(conditions, 60, False, False)
        assert result.state == WATCH
        assert result.watch_strength == 2
        assert result.confidence == 75

    def test_strong_watch_needs_all_four_watch_conditions(self):
        conditions = Conditions(
            in_compression=True, volume_decreasing=True, rsi_neutral=True,
            bollinger_squeeze=True, atr_low=True, macd_alignment=True,
        )
        assert classify(conditions, 60, False, False).watch_strength == 1

    def test_ready_capped_at_95(self):
        conditions = Conditions(
            in_compression=True, volume_decreasing=True, rsi_neutral=True,
            no_recent_fakeout=True, potential_breakout=True,
            trend_alignment=True, volume_spike=True,
        )
        result = classify(conditions, 80, confirmed_breakout=True, breakout_confirmation=False)
        assert result.state == READY
        assert result.confidence == 95

    def test_ready_without_watch_downgraded(self):
        conditions = Conditions(potential_breakout=True, trend_alignment=True, volume_spike=True)
        result = classify(conditions, 50, confirmed_breakout=True, breakout_confirmation=True)
        assert result.state == WATCH
        assert result.watch_strength == 0
        assert result.confidence == 40

    def test_news_forces_wait(self):
        state, confidence = apply_filters(READY, 90, has_high_impact_news=True, is_active_session=True)
        assert state == WAIT
        assert confidence == pytest.approx(63)

    def test_off_session_penalty_keeps_state(self):
        state, confidence = apply_filters(READY, 90, has_high_impact_news=False, is_active_session=False)
        assert state == READY
        assert confidence == pytest.approx(72)

    @pytest.mark.parametrize("raw, expected", [(-5, 0), (0, 0), (74.6, 75), (120, 95)])
    def test_finalize_confidence(self, raw, expected):
        assert finalize_confidence(raw) == expected


# ── Direction, entry, reasons ────────────────────────────────────────────


class TestDirection:
    def test_confirmed_breakout_wins(self):
        zone = CompressionZone(high=1.1, low=1.0, is_compressed=True,
                               confirmed_breakout=True, breakout_direction=BEARISH)
        candle = _make_candle(0, 1.0, 1.2, 1.0, 1.2)
        assert resolve_direction(zone, candle, True, BULLISH, MACD(1, 0, 1)) == PUT

    def test_zone_midpoint_with_potential_breakout(self):
        zone = CompressionZone(high=1.1010, low=1.1000, is_compressed=True)
        above = _make_candle(0, 1.1, 1.101, 1.1, 1.1008)
        below = _make_candle(0, 1.1, 1.101, 1.1, 1.1002)
        assert resolve_direction(zone, above, True, BEARISH, MACD(0, 0, -1)) == CALL
        assert resolve_direction(zone, below, True, BULLISH, MACD(0, 0, 1)) == PUT

    def test_trend_and_macd(self):
        zone = CompressionZone()
        candle = _make_candle(0, 1, 1, 1, 1)
        assert resolve_direction(zone, candle, False, BEARISH, MACD(0, 0, -0.1)) == PUT
        assert resolve_direction(zone, candle, False, BULLISH, MACD(0, 0, 0.1)) == CALL

    def test_trend_fallback_never_waits(self):
        zone = CompressionZone()
        candle = _make_candle(0, 1, 1, 1, 1)
        assert resolve_direction(zone, candle, False, BULLISH, MACD(0, 0, -0.1)) == CALL
        assert resolve_direction(zone, candle, False, BEARISH, MACD(0, 0, 0.1)) == PUT


class TestEntryMinutes:
    def test_ready_waits_for_next_candle(self):
        assert estimate_entry_minutes(READY, BUCKET + 30) == 1

    def test_watch_waits_one_more_candle(self):
        assert estimate_entry_minutes(WATCH, BUCKET + 30) == 2

    def test_wait_is_zero(self):
        assert estimate_entry_minutes(WAIT, BUCKET + 30) == 0


class TestReasons:
    def test_at_most_three(self):
        conditions = Conditions(**{name: True for name in BASE_WEIGHTS})
        zone = CompressionZone(high=1.1005, low=1.1000, is_compressed=True,
                               confirmed_breakout=True, breakout_direction=BULLISH)
        reasons = build_reasons(conditions, zone, detect_fakeouts(_tight_range(10)))
        assert len(reasons) == 3
        assert reasons[0].startswith("Tight compression")

    def test_empty_when_nothing_holds(self):
        reasons = build_reasons(Conditions(), CompressionZone(), detect_fakeouts([]))
        assert reasons == ()


# ── Adaptive learning ────────────────────────────────────────────────────


class TestAdaptiveStats:
    def _stats(self, wins: int, total: int) -> AdaptiveStats:
        stats = AdaptiveStats()
        for i in range(total):
            stats.record_outcome(i < wins)
        return stats

    def test_no_adjustment_below_ten_samples(self):
        assert self._stats(9, 9).refresh_multiplier() == 1.0

    def test_high_win_rate_boosts(self):
        assert self._stats(7, 10).refresh_multiplier() == 1.1

    def test_low_win_rate_penalises(self):
        assert self._stats(3, 10).refresh_multiplier() == 0.9

    def test_middling_win_rate_neutral(self):
        assert self._stats(5, 10).refresh_multiplier() == 1.0


# ── Engine ───────────────────────────────────────────────────────────────


class TestStrategyEngine:
    def test_fewer_than_50_candles_waits(self):
        state = _make_state(_tight_range(49))
        analysis = StrategyEngine().analyze(state, now=BUCKET)
        assert analysis == Analysis.waiting()
        assert analysis.state == WAIT
        assert analysis.confidence == 0

    def test_output_ranges(self):
        state = _make_state(_wide_range(80))
        analysis = StrategyEngine().analyze(state, now=BUCKET + 30)
        assert analysis.state in (WAIT, WATCH, READY)
        assert 0 <= analysis.confidence <= 95
        assert analysis.direction in (CALL, PUT)
        assert len(analysis.reasons) <= 3
        assert 0 <= analysis.rsi <= 100

    def test_breakout_sets_direction_and_persists_zone(self):
        candles = _tight_range(59)
        candles.append(_make_candle(59, 1.1006, 1.1021, 1.1005, 1.1020, vol=30))
        state = _make_state(candles)
        zone = state.zone

        analysis = StrategyEngine().analyze(state, now=BUCKET + 30)

        assert state.zone is zone
        assert zone.confirmed_breakout
        assert zone.breakout_direction == BULLISH
        assert analysis.direction == CALL
        assert analysis.compression is True

    def test_news_flag_forces_wait(self):
        candles = _tight_range(59)
        candles.append(_make_candle(59, 1.1006, 1.1021, 1.1005, 1.1020, vol=30))
        state = _make_state(candles)
        state.has_high_impact_news = True
        analysis = StrategyEngine().analyze(state, now=BUCKET + 30)
        assert analysis.state == WAIT
        assert analysis.news_filtered is True

    def test_learning_state_is_reused(self):
        state = _make_state(_tight_range(60))
        for i in range(10):
            state.learning.record_outcome(i < 8)
        StrategyEngine().analyze(state, now=BUCKET)
        assert state.learning.confidence_multiplier == 1.1
