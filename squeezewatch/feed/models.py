"""Feed data models — typed representations of Deriv API payloads."""

from dataclasses import dataclass

from squeezewatch.strategy.models import Candle


_ALLOWED_MARKETS = ("forex", "crypto", "commodit")


@dataclass(frozen=True)
class Instrument:
    """A tradable symbol discovered from ``active_symbols``."""

    symbol: str
    display_name: str
    market: str
    pip: float

    @classmethod
    def from_wire(cls, data: dict) -> "Instrument":
        return cls(
            symbol=data["symbol"],
            display_name=data.get("display_name", data["symbol"]),
            market=data.get("market", ""),
            pip=float(data.get("pip", 0.0001)),
        )


@dataclass(frozen=True)
class Tick:
    """A single price quote."""

    symbol: str
    epoch: int
    quote: float

    @classmethod
    def from_wire(cls, data: dict) -> "Tick":
        return cls(
            symbol=data["symbol"],
            epoch=int(data["epoch"]),
            quote=float(data["quote"]),
        )


def candle_from_wire(data: dict) -> Candle:
    """Convert a ``ticks_history`` candle record into a ``Candle``.

    The provider reports prices as numeric strings and the bucket start as
    epoch seconds.
    """
    return Candle(
        start=int(data["epoch"]),
        open=float(data["open"]),
        high=float(data["high"]),
        low=float(data["low"]),
        close=float(data["close"]),
        volume=float(data.get("volume", 0) or 0),
    )


def is_tradable(instrument: Instrument) -> bool:
    """Return True for forex, crypto and commodity symbols that are not OTC."""
    market = instrument.market.lower()
    if not any(m in market for m in _ALLOWED_MARKETS):
        return False
    return "OTC" not in instrument.display_name and "OTC" not in instrument.symbol
