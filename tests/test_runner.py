"""Tests for the run modes and the CLI entry point."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from squeezewatch.main import _run_cli
from squeezewatch.reporting.stats import PerformanceStats
from squeezewatch.runner import (
    final_test_report,
    run_extended_test,
    run_production,
    start_monitor,
)


class _SteppingClock:
    """Advances by *step* seconds on every call."""

    def __init__(self, step: float, now: float = 0.0) -> None:
        self.step = step
        self.now = now - step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


def _passing_stats() -> PerformanceStats:
    return PerformanceStats(signals_sent=60, successful_signals=40, total_signals=60, win_rate=0.66)


# ── Startup ──────────────────────────────────────────────────────────────


class TestStartMonitor:
    @pytest.mark.asyncio
    async def test_started(self):
        monitor = MagicMock()
        monitor.start = AsyncMock()
        assert await start_monitor(monitor, asyncio.Event()) is True

    @pytest.mark.asyncio
    async def test_startup_failure(self):
        monitor = MagicMock()
        monitor.start = AsyncMock(side_effect=asyncio.TimeoutError())
        assert await start_monitor(monitor, asyncio.Event()) is False

    @pytest.mark.asyncio
    async def test_stop_during_startup(self):
        started = asyncio.Event()

        async def _hang():
            started.set()
            await asyncio.sleep(60)

        monitor = MagicMock()
        monitor.start = _hang
        stop = asyncio.Event()
        task = asyncio.create_task(start_monitor(monitor, stop))
        await started.wait()
        stop.set()
        assert await task is False


# ── Run modes ────────────────────────────────────────────────────────────


class TestRunModes:
    @pytest.mark.asyncio
    async def test_production_logs_status_until_stopped(self):
        stop = asyncio.Event()
        monitor = MagicMock()
        monitor.uptime = 600.0

        def _status():
            stop.set()
            return {
                "instruments": 3,
                "feed_connected": True,
                "stats": {"signals_sent": 2, "win_rate": 0.5},
            }

        monitor.status.side_effect = _status
        result = await run_production(monitor, stop, clock=_SteppingClock(301), interval=0)
        assert result == 0
        monitor.status.assert_called_once()

    @pytest.mark.asyncio
    async def test_extended_test_runs_for_duration(self, caplog):
        monitor = MagicMock()
        monitor.stats = _passing_stats()
        with caplog.at_level(logging.INFO, logger="squeezewatch.runner"):
            result = await run_extended_test(
                monitor, asyncio.Event(), duration=7200,
                clock=_SteppingClock(1800), interval=0,
            )
        assert result == 0
        assert caplog.text.count("Test progress") == 2
        assert "TEST PASSED" in caplog.text
        assert "interrupted" not in caplog.text

    @pytest.mark.asyncio
    async def test_extended_test_fails_verdict(self):
        monitor = MagicMock()
        monitor.stats = PerformanceStats()
        result = await run_extended_test(
            monitor, asyncio.Event(), duration=60,
            clock=_SteppingClock(61), interval=0,
        )
        assert result == 1

    @pytest.mark.asyncio
    async def test_interrupted_test_still_reports(self, caplog):
        stop = asyncio.Event()
        stop.set()
        monitor = MagicMock()
        monitor.stats = _passing_stats()
        with caplog.at_level(logging.INFO, logger="squeezewatch.runner"):
            result = await run_extended_test(
                monitor, stop, duration=3600, clock=_SteppingClock(1), interval=0,
            )
        assert result == 0
        assert "interrupted before the planned duration" in caplog.text
        assert "EXTENDED TEST COMPLETED" in caplog.text

    def test_final_report_lists_recommendations(self, caplog):
        with caplog.at_level(logging.INFO, logger="squeezewatch.runner"):
            assert final_test_report(PerformanceStats(), 3600) == 1
        assert "TEST FAILED" in caplog.text
        assert "Recommendation 3: Review compression zone parameters" in caplog.text


# ── CLI ──────────────────────────────────────────────────────────────────


class TestCli:
    def test_missing_config_exits_with_error(self, monkeypatch, tmp_path):
        for var in ("DERIV_APP_ID", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID"):
            monkeypatch.delenv(var, raising=False)
        assert _run_cli(["test", "--env-file", str(tmp_path / "absent.env")]) == 1

    def test_unknown_mode_rejected(self):
        with pytest.raises(SystemExit) as excinfo:
            _run_cli(["staging"])
        assert excinfo.value.code == 2
