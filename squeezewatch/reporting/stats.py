"""Performance counters, periodic reports and the test-run verdict."""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

logger = logging.getLogger("squeezewatch.reporting")

REPORT_INTERVAL = 5 * 60
HOURLY_INTERVAL = 60 * 60

PASS_WIN_RATE = 0.55
PASS_MIN_SIGNALS = 50


@dataclass
class PerformanceStats:
    """Monitor-wide counters."""

    signals_sent: int = 0
    successful_signals: int = 0
    total_signals: int = 0
    win_rate: float = 0.0
    fakeouts_detected: int = 0
    compressions_found: int = 0
    false_positives: int = 0
    session_filtered: int = 0
    news_filtered: int = 0
    delivery_failures: int = 0

    @property
    def accuracy_rate(self) -> float:
        """Sent signals as a percentage of sent plus rejected ones."""
        if self.signals_sent == 0:
            return 0.0
        return round(
            self.signals_sent / (self.signals_sent + self.false_positives) * 100, 1
        )

    def record_analysis(self, analysis) -> None:
        if analysis.compression:
            self.compressions_found += 1
        if analysis.fakeout_alert:
            self.fakeouts_detected += 1
        if analysis.session_filtered:
            self.session_filtered += 1
        if analysis.news_filtered:
            self.news_filtered += 1

    def record_outcome(self, success: bool) -> None:
        self.total_signals += 1
        if success:
            self.successful_signals += 1
        self.win_rate = self.successful_signals / self.total_signals

    def snapshot(self) -> dict:
        data = asdict(self)
        data["accuracy_rate"] = self.accuracy_rate
        return data


@dataclass(frozen=True)
class RunVerdict:
    passed: bool
    recommendations: tuple[str, ...]


def judge_test_run(stats: PerformanceStats) -> RunVerdict:
    """PASS when win rate > 55 % over more than 50 sent signals.

    Returns the verdict with tuning recommendations for the operator.
    """
    passed = stats.win_rate > PASS_WIN_RATE and stats.signals_sent > PASS_MIN_SIGNALS
    if not passed:
        return RunVerdict(False, (
            "Increase confidence threshold to 80%",
            "Add more confirmation filters",
            "Review compression zone parameters",
        ))

    recommendations = []
    if stats.win_rate > 0.65:
        recommendations.append("Excellent win rate: consider reducing cooldown to 20 minutes")
    if stats.false_positives > stats.signals_sent * 0.3:
        recommendations.append("High false positives: increase confirmation requirements")
    if stats.session_filtered > stats.signals_sent * 0.5:
        recommendations.append("Many signals filtered by session: consider expanding session hours")
    recommendations.append(
        "Optimal configuration: confidence 75%, cooldown 30 minutes, "
        "session filter on, news filter on"
    )
    return RunVerdict(True, tuple(recommendations))


def format_uptime(seconds: float) -> str:
    """``3725`` → ``"1h 2m 5s"``."""
    seconds = int(max(0, seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


class Reporter:
    """Emits the 5-minute and hourly reports.

    Call :meth:`tick` every second; each report fires when its interval
    has elapsed since it last fired, so timer drift never skips or
    doubles a report.

    Args:
        stats: Counters to report.
        status: Returns ``(active_instruments, feed_connected)``.
        started_at: Monitor start time (epoch seconds).
    """

    def __init__(
        self,
        stats: PerformanceStats,
        status: Callable[[], tuple[int, bool]],
        started_at: Optional[float] = None,
        report_interval: float = REPORT_INTERVAL,
        hourly_interval: float = HOURLY_INTERVAL,
    ) -> None:
        self._stats = stats
        self._status = status
        self._started_at = time.time() if started_at is None else started_at
        self._report_interval = report_interval
        self._hourly_interval = hourly_interval
        self.last_report_at = self._started_at
        self.last_hourly_at = self._started_at

    def tick(self, now: Optional[float] = None) -> list[str]:
        """Fire any due reports; returns the names of those that fired."""
        now = time.time() if now is None else now
        fired = []
        if now - self.last_report_at >= self._report_interval:
            self.last_report_at = now
            self.performance_report(now)
            fired.append("performance")
        if now - self.last_hourly_at >= self._hourly_interval:
            self.last_hourly_at = now
            self.hourly_report(now)
            fired.append("hourly")
        return fired

    def performance_report(self, now: float) -> None:
        stats = self._stats
        active, connected = self._status()
        logger.info(
            "Performance report (5min): uptime=%s instruments=%d ws=%s "
            "signals=%d win_rate=%.1f%% false_positives=%d "
            "session_filtered=%d news_filtered=%d health=%s",
            format_uptime(now - self._started_at),
            active,
            "up" if connected else "down",
            stats.signals_sent,
            stats.win_rate * 100,
            stats.false_positives,
            stats.session_filtered,
            stats.news_filtered,
            "GOOD" if stats.win_rate > 0.5 else "NEEDS ATTENTION",
        )
        if stats.win_rate < 0.4 and stats.signals_sent > 10:
            logger.warning("System win rate is below 40%")

    def hourly_report(self, now: float) -> None:
        stats = self._stats
        logger.info(
            "Hourly report: uptime=%s signals=%d successful=%d win_rate=%.1f%% "
            "compressions=%d fakeouts=%d",
            format_uptime(now - self._started_at),
            stats.signals_sent,
            stats.successful_signals,
            stats.win_rate * 100,
            stats.compressions_found,
            stats.fakeouts_detected,
        )
