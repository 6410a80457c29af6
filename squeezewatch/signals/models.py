"""Signal records — what was alerted and how it turned out."""

from dataclasses import dataclass
from typing import Optional

WIN = "win"
LOSS = "loss"


@dataclass(frozen=True)
class Signal:
    """A delivered READY alert."""

    symbol: str
    display_name: str
    direction: str
    confidence: int
    price: float
    entry_minutes: int
    signal_hash: str
    created_at: float
    watch_strength: int = 0
    state: str = "READY"
    compression: bool = False
    fakeout_alert: bool = False
    session_filtered: bool = False
    news_filtered: bool = False
    journal_id: Optional[int] = None


@dataclass(frozen=True)
class Outcome:
    """Result of re-pricing a signal after the evaluation delay."""

    symbol: str
    direction: str
    entry_price: float
    exit_price: float
    success: bool

    @property
    def label(self) -> str:
        return WIN if self.success else LOSS
