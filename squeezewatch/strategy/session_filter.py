"""Session and news filters — pure functions plus the stub news calendar."""

import logging
from typing import Mapping

logger = logging.getLogger("squeezewatch.news")

DEFAULT_SESSIONS: dict[str, tuple[int, int]] = {
    "london": (7, 16),
    "newyork": (13, 22),
}


def is_in_session(
    utc_hour: int,
    session_start: int = 7,
    session_end: int = 16,
) -> bool:
    """Return True if *utc_hour* falls within one session window.

    Args:
        utc_hour: The hour in UTC (0–23).
        session_start: Session start hour (inclusive).
        session_end: Session end hour (exclusive).
    """
    return session_start <= utc_hour < session_end


def is_active_session(
    utc_hour: int,
    sessions: Mapping[str, tuple[int, int]] = DEFAULT_SESSIONS,
) -> bool:
    """Return True if *utc_hour* is inside any of the named *sessions*.

    Default windows: London 07:00–16:00 and New York 13:00–22:00 UTC.
    """
    return any(is_in_session(utc_hour, start, end) for start, end in sessions.values())


class NewsCalendar:
    """Economic-calendar lookup. No provider is wired in, so it never flags news."""

    def __init__(self) -> None:
        self._events: dict[str, list[dict]] = {}

    async def load(self) -> None:
        self._events = {}
        logger.info("News events: disabled (no calendar provider configured)")

    def has_high_impact_news(self, symbol: str, minutes_buffer: int = 30) -> bool:
        return False
