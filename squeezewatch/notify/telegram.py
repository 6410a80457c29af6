"""Telegram Bot API notifier.

Keeps its own dedup (4 h) and per-instrument cooldown (30 min) stores,
independent of the dispatcher's bookkeeping.  Delivery is retried up to
three times; ``send`` reports ``DELIVERED``, ``SUPPRESSED`` (blocked by
dedup or cooldown, nothing posted) or ``FAILED`` (attempts exhausted) and
never raises.
"""

import asyncio
import logging
from typing import Callable, Optional

import httpx

from squeezewatch.signals.store import ExpiringStore

logger = logging.getLogger("squeezewatch.notifier")

DEDUP_TTL = 4 * 60 * 60
COOLDOWN = 30 * 60

DELIVERED = "delivered"
SUPPRESSED = "suppressed"
FAILED = "failed"


class NotifierDeliveryError(Exception):
    """A single delivery attempt failed."""


class TelegramNotifier:
    """Posts HTML messages to one Telegram chat.

    Args:
        url: ``https://api.telegram.org/bot<token>/sendMessage``.
        chat_id: Destination chat.
        dedup_ttl: Seconds a signal hash blocks identical messages.
        cooldown: Seconds an instrument is muted after a delivery.
        max_attempts: Delivery attempts per message.
        retry_delay: Pause after a failed attempt (seconds).
        timeout: HTTP timeout per attempt (seconds).
        clock: Time source shared with the expiring stores.
    """

    def __init__(
        self,
        url: str,
        chat_id: str,
        dedup_ttl: float = DEDUP_TTL,
        cooldown: float = COOLDOWN,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 5.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._url = url
        self._chat_id = chat_id
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._timeout = timeout
        self.sent_hashes: ExpiringStore[str] = ExpiringStore(dedup_ttl, clock)
        self.cooldowns: ExpiringStore[str] = ExpiringStore(cooldown, clock)
        self.failures = 0

    @classmethod
    def from_config(cls, config) -> "TelegramNotifier":
        return cls(
            config.telegram_url,
            config.telegram_chat_id,
            cooldown=config.signal_cooldown_minutes * 60,
        )

    async def send(self, text: str, symbol: str, signal_hash: str) -> str:
        """Deliver *text* unless *symbol* is cooling down or *signal_hash* was sent.

        Returns:
            ``DELIVERED`` when Telegram accepted the message, ``SUPPRESSED``
            when dedup or cooldown blocked it, ``FAILED`` when every attempt
            failed.
        """
        if symbol in self.cooldowns:
            logger.info("Cooldown for %s, skipping", symbol)
            return SUPPRESSED
        if signal_hash in self.sent_hashes:
            logger.info("Duplicate signal for %s, skipping", symbol)
            return SUPPRESSED

        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._post(text)
            except NotifierDeliveryError as exc:
                logger.error(
                    "Telegram delivery failed for %s (attempt %d/%d): %s",
                    symbol, attempt, self._max_attempts, exc,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay)
                continue

            self.sent_hashes.insert(signal_hash)
            self.cooldowns.insert(symbol)
            self.sent_hashes.evict_expired()
            logger.info("Telegram sent for %s", symbol)
            return DELIVERED

        self.failures += 1
        return FAILED

    async def _post(self, text: str) -> None:
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self._url, json=payload, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise NotifierDeliveryError(f"transport error: {exc}") from exc

        if resp.status_code != 200:
            raise NotifierDeliveryError(f"HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise NotifierDeliveryError("invalid JSON response") from exc
        if not body.get("ok"):
            raise NotifierDeliveryError(body.get("description", "ok=false"))

    def evict_expired(self) -> int:
        """Sweep both stores; returns the number of entries dropped."""
        return self.sent_hashes.evict_expired() + self.cooldowns.evict_expired()
