"""Tests for squeezewatch.reporting.stats — counters, verdict and reports."""

import logging
from unittest.mock import MagicMock

import pytest

from squeezewatch.reporting.stats import (
    PerformanceStats,
    Reporter,
    format_uptime,
    judge_test_run,
)
from squeezewatch.strategy.models import READY, Analysis


class TestPerformanceStats:
    def test_accuracy_rate(self):
        stats = PerformanceStats(signals_sent=8, false_positives=2)
        assert stats.accuracy_rate == 80.0

    def test_accuracy_rate_without_signals(self):
        assert PerformanceStats(false_positives=5).accuracy_rate == 0.0

    def test_accuracy_rate_rounded(self):
        assert PerformanceStats(signals_sent=2, false_positives=1).accuracy_rate == 66.7

    def test_record_outcome(self):
        stats = PerformanceStats()
        stats.record_outcome(True)
        stats.record_outcome(False)
        stats.record_outcome(True)
        assert stats.total_signals == 3
        assert stats.successful_signals == 2
        assert stats.win_rate == pytest.approx(2 / 3)

    def test_record_analysis(self):
        stats = PerformanceStats()
        stats.record_analysis(Analysis(
            state=READY, confidence=80, compression=True,
            fakeout_alert=True, session_filtered=True,
        ))
        stats.record_analysis(Analysis.waiting())
        assert stats.compressions_found == 1
        assert stats.fakeouts_detected == 1
        assert stats.session_filtered == 1
        assert stats.news_filtered == 0

    def test_snapshot_includes_accuracy(self):
        snapshot = PerformanceStats(signals_sent=1).snapshot()
        assert snapshot["signals_sent"] == 1
        assert snapshot["accuracy_rate"] == 100.0
        assert "delivery_failures" in snapshot


class TestJudgeTestRun:
    def test_fails_on_low_win_rate(self):
        verdict = judge_test_run(PerformanceStats(signals_sent=100, win_rate=0.5))
        assert verdict.passed is False
        assert verdict.recommendations[0] == "Increase confidence threshold to 80%"
        assert len(verdict.recommendations) == 3

    def test_fails_on_too_few_signals(self):
        verdict = judge_test_run(PerformanceStats(signals_sent=50, win_rate=0.9))
        assert verdict.passed is False

    def test_passes(self):
        verdict = judge_test_run(PerformanceStats(signals_sent=51, win_rate=0.6))
        assert verdict.passed is True
        assert verdict.recommendations[-1].startswith("Optimal configuration")
        assert len(verdict.recommendations) == 1

    def test_pass_with_conditional_recommendations(self):
        verdict = judge_test_run(PerformanceStats(
            signals_sent=60, win_rate=0.7, false_positives=30, session_filtered=40,
        ))
        assert verdict.passed is True
        assert len(verdict.recommendations) == 4
        assert "cooldown to 20 minutes" in verdict.recommendations[0]


class TestFormatUptime:
    @pytest.mark.parametrize("seconds, expected", [
        (0, "0h 0m 0s"),
        (3725, "1h 2m 5s"),
        (90061.7, "25h 1m 1s"),
        (-5, "0h 0m 0s"),
    ])
    def test_format(self, seconds, expected):
        assert format_uptime(seconds) == expected


class TestReporter:
    def test_fires_on_interval(self):
        status = MagicMock(return_value=(12, True))
        reporter = Reporter(PerformanceStats(), status, started_at=0.0)
        assert reporter.tick(299) == []
        assert reporter.tick(300) == ["performance"]
        assert reporter.tick(599) == []
        assert reporter.tick(600) == ["performance"]
        status.assert_called_with()

    def test_hourly(self):
        reporter = Reporter(PerformanceStats(), lambda: (0, False), started_at=0.0)
        fired = reporter.tick(3600)
        assert fired == ["performance", "hourly"]
        assert reporter.last_hourly_at == 3600

    def test_late_tick_fires_once(self):
        reporter = Reporter(PerformanceStats(), lambda: (0, False), started_at=0.0)
        assert reporter.tick(1000) == ["performance"]
        assert reporter.tick(1001) == []

    def test_low_win_rate_warning(self, caplog):
        stats = PerformanceStats(signals_sent=11, win_rate=0.3)
        reporter = Reporter(stats, lambda: (1, True), started_at=0.0)
        with caplog.at_level(logging.WARNING, logger="squeezewatch.reporting"):
            reporter.tick(300)
        assert "System win rate is below 40%" in caplog.text
