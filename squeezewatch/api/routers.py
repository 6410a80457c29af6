"""Internal API routers — /status, /instruments, /signals endpoints.

No business logic, no DB access. Delegates to the monitor and the signal repo.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

logger = logging.getLogger("squeezewatch.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_monitor = None      # Set via configure_routers()
_signal_repo = None  # Set via configure_routers()


def configure_routers(monitor=None, signal_repo=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        monitor: A ``MarketMonitor`` instance (or duck-type for tests).
        signal_repo: A ``SignalRepo`` instance.
    """
    global _monitor, _signal_repo  # noqa: PLW0603
    _monitor = monitor
    _signal_repo = signal_repo


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return uptime, feed connectivity and performance counters."""
    if _monitor is None:
        return {"running": False}
    return _monitor.status()


@router.get("/instruments")
async def get_instruments(
    state: Optional[str] = Query(default=None, pattern="^(WAIT|WATCH|READY)$"),
):
    """Return per-instrument classification, optionally filtered by state."""
    if _monitor is None:
        return {"instruments": [], "total": 0}
    rows = _monitor.instrument_summaries()
    if state:
        rows = [r for r in rows if r["state"] == state]
    return {"instruments": rows, "total": len(rows)}


@router.get("/signals")
async def get_signals(
    limit: int = Query(default=20, ge=1, le=200),
    symbol: Optional[str] = Query(default=None),
):
    """Return recent journalled signals, newest first."""
    if _signal_repo is None:
        return {"signals": [], "total": 0}
    return _signal_repo.get_signals(limit=limit, symbol=symbol)
