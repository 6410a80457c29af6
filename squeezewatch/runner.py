"""Run modes — production (indefinite) and the fixed-duration test run."""

import asyncio
import logging
import time
from typing import Callable

from squeezewatch.reporting.stats import PerformanceStats, format_uptime, judge_test_run

logger = logging.getLogger("squeezewatch.runner")

STATUS_INTERVAL = 5 * 60
PROGRESS_INTERVAL = 60 * 60


async def start_monitor(monitor, stop: asyncio.Event) -> bool:
    """Start *monitor* unless *stop* fires first.

    Returns True when startup completed.  Startup failures are logged and
    reported as False.
    """
    start_task = asyncio.create_task(monitor.start())
    stop_task = asyncio.create_task(stop.wait())
    done, _ = await asyncio.wait({start_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    stop_task.cancel()
    if start_task not in done:
        start_task.cancel()
        await asyncio.gather(start_task, return_exceptions=True)
        logger.info("Stopped during startup")
        return False
    exc = start_task.exception()
    if exc is not None:
        logger.error("System startup failed: %r", exc)
        return False
    return True


async def _sleep_or_stop(stop: asyncio.Event, seconds: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), seconds)
    except asyncio.TimeoutError:
        pass


def log_production_status(monitor, now: float) -> None:
    status = monitor.status()
    stats = status["stats"]
    logger.info(
        "Production status: uptime=%s instruments=%d ws=%s signals=%d "
        "win_rate=%.1f%% health=%s",
        format_uptime(monitor.uptime),
        status["instruments"],
        "up" if status["feed_connected"] else "down",
        stats["signals_sent"],
        stats["win_rate"] * 100,
        "GOOD" if stats["win_rate"] > 0.5 else "NEEDS ATTENTION",
    )


async def run_production(
    monitor,
    stop: asyncio.Event,
    clock: Callable[[], float] = time.time,
    interval: float = 1.0,
) -> int:
    """Run until *stop* is set, logging a status line every 5 minutes."""
    logger.info("Running in PRODUCTION mode")
    last_status = clock()
    while not stop.is_set():
        now = clock()
        if now - last_status >= STATUS_INTERVAL:
            last_status = now
            log_production_status(monitor, now)
        await _sleep_or_stop(stop, interval)
    return 0


def final_test_report(stats: PerformanceStats, runtime: float) -> int:
    """Log the final test summary and return the process exit code."""
    logger.info("=" * 50)
    logger.info("EXTENDED TEST COMPLETED (runtime %s)", format_uptime(runtime))
    logger.info("Signals generated: %d", stats.signals_sent)
    logger.info("Successful signals: %d", stats.successful_signals)
    logger.info("Win rate: %.1f%%", stats.win_rate * 100)
    logger.info("Compression zones found: %d", stats.compressions_found)
    logger.info("Fakeouts detected: %d", stats.fakeouts_detected)
    logger.info("False positives: %d", stats.false_positives)
    logger.info("Session filtered: %d", stats.session_filtered)
    logger.info("News filtered: %d", stats.news_filtered)
    logger.info("Final accuracy: %.1f%%", stats.accuracy_rate)
    logger.info("=" * 50)

    verdict = judge_test_run(stats)
    if verdict.passed:
        logger.info("TEST PASSED: system ready for production")
    else:
        logger.warning("TEST FAILED: strategy needs adjustment")
    for i, recommendation in enumerate(verdict.recommendations, start=1):
        logger.info("Recommendation %d: %s", i, recommendation)
    return 0 if verdict.passed else 1


async def run_extended_test(
    monitor,
    stop: asyncio.Event,
    duration: float,
    clock: Callable[[], float] = time.time,
    interval: float = 1.0,
) -> int:
    """Run for *duration* seconds, logging hourly progress.

    Returns 0 when the final verdict passes, 1 otherwise.  An early stop
    still produces the final report for the elapsed period.
    """
    logger.info("Running EXTENDED TEST for %s", format_uptime(duration))
    started = clock()
    last_progress = started
    while not stop.is_set():
        now = clock()
        if now - last_progress >= PROGRESS_INTERVAL:
            last_progress = now
            stats = monitor.stats
            logger.info(
                "Test progress: %dh signals=%d win_rate=%.1f%% "
                "false_positives=%d accuracy=%.1f%%",
                int((now - started) // 3600),
                stats.signals_sent,
                stats.win_rate * 100,
                stats.false_positives,
                stats.accuracy_rate,
            )
        if now - started > duration:
            break
        await _sleep_or_stop(stop, interval)
    else:
        logger.warning("Test interrupted before the planned duration")
    return final_test_report(monitor.stats, clock() - started)
