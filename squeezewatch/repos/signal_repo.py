"""Signal repository — SQLite CRUD for the signals table."""

from datetime import datetime, timezone
from typing import Optional

from squeezewatch.repos.db import get_connection
from squeezewatch.signals.models import Signal


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


class SignalRepo:
    """Data access layer for delivered signals and their outcomes.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_signal(self, signal: Signal) -> int:
        """Insert a delivered signal and return its ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO signals
                    (created_at, symbol, display_name, direction, confidence,
                     entry_minutes, price, compression, fakeout,
                     watch_strength, state, session_filtered,
                     news_filtered, signal_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _iso(signal.created_at), signal.symbol, signal.display_name,
                    signal.direction, signal.confidence, signal.entry_minutes,
                    signal.price, int(signal.compression), int(signal.fakeout_alert),
                    signal.watch_strength, signal.state,
                    int(signal.session_filtered), int(signal.news_filtered),
                    signal.signal_hash,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def record_outcome(self, signal_id: int, outcome: str, exit_price: float) -> None:
        """Store the evaluation result (``"win"`` or ``"loss"``) of a signal."""
        evaluated_at = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                UPDATE signals
                SET outcome = ?, exit_price = ?, evaluated_at = ?
                WHERE id = ?
                """,
                (outcome, exit_price, evaluated_at, signal_id),
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_signals(self, limit: int = 20, symbol: Optional[str] = None) -> dict:
        """Return recent signals, newest first.

        Returns:
            ``{"signals": [...], "total": int}``
        """
        conn = get_connection(self._db_path)
        try:
            where_clause = ""
            params: list = []
            if symbol:
                where_clause = "WHERE symbol = ?"
                params.append(symbol)

            rows = conn.execute(
                f"SELECT * FROM signals {where_clause} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM signals {where_clause}",
                params,
            ).fetchone()[0]

            signals = [dict(row) for row in rows]
            for row in signals:
                for flag in ("compression", "fakeout", "session_filtered", "news_filtered"):
                    row[flag] = bool(row[flag])
            return {"signals": signals, "total": total}
        finally:
            conn.close()
