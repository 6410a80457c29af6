"""SqueezeWatch — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "DERIV_APP_ID",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
]

_DEFAULT_WS_URL = "wss://ws.derivws.com/websockets/v3"


def parse_session(value: str) -> tuple[int, int]:
    """Parse a ``"start-end"`` UTC hour window such as ``"7-16"``.

    Raises ``ValueError`` if the value is malformed or out of range.
    """
    try:
        start_raw, end_raw = value.split("-", 1)
        start, end = int(start_raw), int(end_raw)
    except ValueError:
        raise ValueError(f"Invalid session window '{value}', expected 'H-H'") from None
    if not (0 <= start <= 24 and 0 <= end <= 24):
        raise ValueError(f"Session hours out of range in '{value}'")
    return start, end


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    deriv_app_id: str
    telegram_bot_token: str
    telegram_chat_id: str
    deriv_ws_url: str = _DEFAULT_WS_URL
    confidence_threshold: int = 75
    signal_cooldown_minutes: int = 30
    evaluation_delay_seconds: int = 300
    london_session: tuple[int, int] = (7, 16)
    newyork_session: tuple[int, int] = (13, 22)
    db_path: str = "data/squeezewatch.db"
    log_level: str = "INFO"
    health_port: int = 8080
    test_duration_hours: float = 168.0

    @property
    def ws_endpoint(self) -> str:
        """Return the Deriv WebSocket URL carrying the application id."""
        return f"{self.deriv_ws_url}?app_id={self.deriv_app_id}"

    @property
    def telegram_url(self) -> str:
        """Return the Bot API ``sendMessage`` URL for the configured token."""
        return f"https://api.telegram.org/bot{self.telegram_bot_token}/sendMessage"

    @property
    def sessions(self) -> dict[str, tuple[int, int]]:
        """Named UTC trading sessions used by the session filter."""
        return {"london": self.london_session, "newyork": self.newyork_session}


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variables when
    a required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        deriv_app_id=os.environ["DERIV_APP_ID"],
        telegram_bot_token=os.environ["TELEGRAM_BOT_TOKEN"],
        telegram_chat_id=os.environ["TELEGRAM_CHAT_ID"],
        deriv_ws_url=os.environ.get("DERIV_WS_URL", _DEFAULT_WS_URL),
        confidence_threshold=int(os.environ.get("CONFIDENCE_THRESHOLD", "75")),
        signal_cooldown_minutes=int(os.environ.get("SIGNAL_COOLDOWN_MINUTES", "30")),
        evaluation_delay_seconds=int(os.environ.get("EVALUATION_DELAY_SECONDS", "300")),
        london_session=parse_session(os.environ.get("LONDON_SESSION", "7-16")),
        newyork_session=parse_session(os.environ.get("NEWYORK_SESSION", "13-22")),
        db_path=os.environ.get("DB_PATH", "data/squeezewatch.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
        test_duration_hours=float(os.environ.get("TEST_DURATION_HOURS", "168")),
    )
