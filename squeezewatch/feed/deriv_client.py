"""Deriv WebSocket feed client.

Maintains one persistent connection with exponential-backoff reconnects,
correlates requests with responses through the ``req_id`` echoed in
``echo_req``, answers server pings, and pumps tick subscriptions in small
jittered batches.  All I/O runs on the event loop; there are no threads.
"""

import asyncio
import itertools
import json
import logging
import random
import time
from collections import deque
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

from squeezewatch.feed.errors import (
    ConnectionLost,
    FeedConnectionError,
    FeedError,
    MalformedMessage,
    NotConnected,
    ProviderError,
    RequestTimeout,
    SubscriptionError,
)
from squeezewatch.feed.models import Tick
from squeezewatch.feed.pending import PendingRequests
from squeezewatch.signals.store import ExpiringStore

logger = logging.getLogger("squeezewatch.feed")

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"

_TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class ReconnectBackoff:
    """Doubling reconnect delay with a ceiling.

    After *n* consecutive failed connections the wait is
    ``min(initial × 2ⁿ, maximum)``; ``reset()`` after a successful
    connection brings it back to *initial*.
    """

    def __init__(self, initial: float = 1.0, maximum: float = 30.0) -> None:
        self._initial = initial
        self._maximum = maximum
        self._delay = initial

    @property
    def current(self) -> float:
        return self._delay

    def next_delay(self) -> float:
        delay = self._delay
        self._delay = min(self._delay * 2, self._maximum)
        return delay

    def reset(self) -> None:
        self._delay = self._initial


class DerivFeedClient:
    """Async client for the Deriv streaming API.

    Args:
        endpoint: Full WebSocket URL including ``app_id``.
        connect: Connection factory; defaults to ``websockets.connect``.
        request_timeout: Seconds before an unanswered request fails.
        heartbeat_interval: Seconds between keepalive pings.
        backoff: Reconnect delay policy.
        batch_size: Subscriptions sent per batch.
        batch_delay: Pause between subscription batches (seconds).
        max_jitter: Upper bound of the random delay before each
            subscription in a batch (seconds).
        abandon_ttl: Seconds a timed-out subscribe id is remembered so a
            late response can still be released.
        clock: Time source for the abandoned-id store.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        connect: Optional[Callable[..., Any]] = None,
        request_timeout: float = 15.0,
        heartbeat_interval: float = 30.0,
        backoff: Optional[ReconnectBackoff] = None,
        batch_size: int = 5,
        batch_delay: float = 0.5,
        max_jitter: float = 0.1,
        abandon_ttl: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._endpoint = endpoint
        self._connect = connect or websockets.connect
        self._request_timeout = request_timeout
        self._heartbeat_interval = heartbeat_interval
        self._backoff = backoff or ReconnectBackoff()
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._max_jitter = max_jitter

        self._ws = None
        self._state = DISCONNECTED
        self._running = False
        self._connected = asyncio.Event()
        self._pending = PendingRequests()
        self._abandoned: ExpiringStore[int] = ExpiringStore(abandon_ttl, clock)
        self._req_ids = itertools.count(1)

        self._subscriptions: dict[str, str] = {}  # symbol → subscription id
        self._wanted: set[str] = set()
        self._queue: deque[str] = deque()
        self._pump_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._run_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

        self._tick_handlers: list[Callable[[Tick], None]] = []
        self._last_quotes: dict[str, float] = {}
        self.connection_count = 0
        self.last_message_at: Optional[float] = None
        self.last_heartbeat_at: Optional[float] = None

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == CONNECTED and self._ws is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def subscriptions(self) -> dict[str, str]:
        return dict(self._subscriptions)

    @property
    def abandoned_count(self) -> int:
        return len(self._abandoned)

    @property
    def reconnect_delay(self) -> float:
        return self._backoff.current

    def is_subscribed(self, symbol: str) -> bool:
        return symbol in self._subscriptions

    def last_quote(self, symbol: str) -> Optional[float]:
        return self._last_quotes.get(symbol)

    def on_tick(self, handler: Callable[[Tick], None]) -> None:
        """Register a synchronous callback invoked for every inbound tick."""
        self._tick_handlers.append(handler)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> asyncio.Task:
        """Launch :meth:`run` as a background task and return it."""
        if self._run_task is None or self._run_task.done():
            self._run_task = asyncio.create_task(self.run(), name="deriv-feed")
        return self._run_task

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """Block until the connection is up (raises ``asyncio.TimeoutError``)."""
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def run(self) -> None:
        """Connect and keep reconnecting until :meth:`stop` is called."""
        self._running = True
        while self._running:
            self._state = CONNECTING
            try:
                async with self._connect(
                    self._endpoint,
                    ping_interval=None,
                    close_timeout=10,
                    max_size=None,
                ) as ws:
                    self._on_connected(ws)
                    async for raw in ws:
                        await self._handle_message(raw)
                    logger.warning("Deriv WebSocket closed by server")
            except _TRANSPORT_ERRORS as exc:
                logger.warning("Deriv WebSocket error: %s", FeedConnectionError(str(exc)))
            finally:
                self._on_disconnected()

            if not self._running:
                break
            delay = self._backoff.next_delay()
            logger.info("Reconnecting in %.1fs...", delay)
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        """Close the socket, stop reconnecting and cancel background work."""
        self._running = False
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except _TRANSPORT_ERRORS as exc:
                logger.debug("Error closing WebSocket: %s", exc)
        tasks = [t for t in (self._run_task, self._pump_task) if t is not None]
        tasks.extend(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        self._on_disconnected()

    def _on_connected(self, ws) -> None:
        self._ws = ws
        self._state = CONNECTED
        self.connection_count += 1
        self._backoff.reset()
        self._connected.set()
        logger.info("Deriv WebSocket connected")

        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        queued = set(self._queue)
        for symbol in sorted(self._wanted - queued):
            self._queue.append(symbol)
        self._ensure_pump()

    def _on_disconnected(self) -> None:
        was_connected = self._state == CONNECTED
        self._state = DISCONNECTED
        self._ws = None
        self._connected.clear()
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        failed = self._pending.fail_all(ConnectionLost("WebSocket disconnected"))
        self._abandoned.clear()
        self._subscriptions.clear()
        if was_connected:
            logger.warning(
                "Deriv WebSocket disconnected (%d pending request(s) failed)", failed
            )

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            self._abandoned.evict_expired()
            ws = self._ws
            if ws is None:
                return
            try:
                await ws.send(json.dumps({"ping": 1}))
            except _TRANSPORT_ERRORS as exc:
                logger.warning("Heartbeat failed: %s", exc)
                return

    # ── Requests ─────────────────────────────────────────────────────────

    async def request(
        self,
        payload: dict,
        timeout: Optional[float] = None,
        *,
        release_on_abandon: bool = False,
    ) -> dict:
        """Send *payload* and await the response echoing its ``req_id``.

        Args:
            payload: Request body; a fresh ``req_id`` is added.
            timeout: Seconds to wait (defaults to the client's 15 s).
            release_on_abandon: For subscribe requests, send ``forget`` if
                the response only arrives after the caller gave up.

        Raises:
            NotConnected: The socket is down.  Nothing is queued.
            FeedConnectionError: The frame could not be written.
            RequestTimeout: No response within *timeout*.
            ConnectionLost: The socket closed before the response arrived.
            ProviderError: The response carried an ``error`` object.
        """
        ws = self._ws
        if ws is None or self._state != CONNECTED:
            raise NotConnected("WebSocket not connected")

        req_id = next(self._req_ids)
        future = self._pending.insert(req_id)
        try:
            await ws.send(json.dumps({**payload, "req_id": req_id}))
        except _TRANSPORT_ERRORS as exc:
            self._pending.discard(req_id)
            raise FeedConnectionError(f"Failed to send request: {exc}") from exc

        try:
            response = await asyncio.wait_for(future, timeout or self._request_timeout)
        except asyncio.TimeoutError:
            self._abandon(req_id, release_on_abandon)
            raise RequestTimeout(f"Request {req_id} timed out") from None
        except asyncio.CancelledError:
            self._abandon(req_id, release_on_abandon)
            raise

        if response.get("error"):
            raise ProviderError.from_payload(response)
        return response

    def _abandon(self, req_id: int, release: bool) -> None:
        self._pending.discard(req_id)
        if release and self.connected:
            self._abandoned.evict_expired()
            self._abandoned.insert(req_id)

    async def fetch_history(
        self,
        symbol: str,
        granularity: int = 60,
        count: int = 200,
    ) -> list[dict]:
        """Fetch recent candles for *symbol*; returns ``[]`` on any feed error."""
        try:
            response = await self.request({
                "ticks_history": symbol,
                "adjust_start_time": 1,
                "count": count,
                "granularity": granularity,
                "style": "candles",
                "end": "latest",
            })
        except FeedError as exc:
            logger.error("History request for %s failed: %s", symbol, exc)
            return []
        return response.get("candles") or []

    async def fetch_active_symbols(self) -> list[dict]:
        """Return the provider's ``active_symbols`` list (raises ``FeedError``)."""
        response = await self.request({"active_symbols": "brief", "product_type": "basic"})
        return response.get("active_symbols") or []

    # ── Subscriptions ────────────────────────────────────────────────────

    def subscribe(self, symbol: str) -> bool:
        """Queue a tick subscription for *symbol*.

        Already subscribed or already queued symbols are a no-op.  Symbols
        queued while disconnected are sent after the next connect.
        """
        self._wanted.add(symbol)
        if symbol in self._subscriptions or symbol in self._queue:
            return True
        self._queue.append(symbol)
        self._ensure_pump()
        return True

    def unsubscribe(self, symbol: str) -> bool:
        """Best-effort ``forget`` of *symbol*'s stream. Does not wait for the reply."""
        self._wanted.discard(symbol)
        subscription_id = self._subscriptions.get(symbol)
        if subscription_id is None or not self.connected:
            return False
        self._spawn(self._forget(subscription_id, symbol))
        return True

    def forget_nowait(self, subscription_id: str) -> None:
        """Fire-and-forget release of a provider subscription id."""
        if self.connected:
            self._spawn(self._forget(subscription_id))

    def _ensure_pump(self) -> None:
        if not self.connected or not self._queue:
            return
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump_subscriptions())

    async def _pump_subscriptions(self) -> None:
        while self._queue and self.connected:
            batch = [
                self._queue.popleft()
                for _ in range(min(self._batch_size, len(self._queue)))
            ]
            await asyncio.gather(*(self._subscribe_one(symbol) for symbol in batch))
            if self._queue and self.connected:
                await asyncio.sleep(self._batch_delay)

    async def _subscribe_one(self, symbol: str) -> None:
        await asyncio.sleep(random.uniform(0, self._max_jitter))
        if symbol in self._subscriptions or symbol not in self._wanted:
            return
        try:
            response = await self.request({"ticks": symbol, "subscribe": 1})
        except ProviderError as exc:
            self._wanted.discard(symbol)
            logger.error(
                "Failed to subscribe to %s: %s",
                symbol, SubscriptionError(f"{exc.code}: {exc.message}"),
            )
            return
        except (NotConnected, ConnectionLost, FeedConnectionError):
            logger.debug("Subscription to %s deferred until reconnect", symbol)
            return
        except RequestTimeout:
            self._wanted.discard(symbol)
            logger.error("Subscription to %s timed out", symbol)
            return

        subscription_id = (response.get("subscription") or {}).get("id")
        if subscription_id:
            self._subscriptions[symbol] = subscription_id
            logger.info("Subscribed to %s", symbol)

    async def _forget(self, subscription_id: str, symbol: Optional[str] = None) -> None:
        try:
            await self.request({"forget": subscription_id})
        except FeedError as exc:
            logger.debug("Forget %s failed: %s", subscription_id, exc)
            return
        if symbol is not None and self._subscriptions.get(symbol) == subscription_id:
            del self._subscriptions[symbol]
            logger.info("Unsubscribed from %s", symbol)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ── Inbound messages ─────────────────────────────────────────────────

    async def _handle_message(self, raw) -> None:
        self.last_message_at = time.time()
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise ValueError("expected a JSON object")
        except ValueError as exc:
            logger.warning("Dropping frame: %s", MalformedMessage(str(exc)))
            return

        msg_type = message.get("msg_type")
        echo = message.get("echo_req")
        echo = echo if isinstance(echo, dict) else {}

        if msg_type == "ping":
            if echo.get("ping"):
                self.last_heartbeat_at = self.last_message_at
            else:
                await self._send_pong()
            return

        req_id = echo.get("req_id")
        if req_id is not None:
            if req_id in self._abandoned:
                self._abandoned.discard(req_id)
                subscription_id = (message.get("subscription") or {}).get("id")
                if subscription_id:
                    logger.debug("Releasing orphaned subscription %s", subscription_id)
                    self.forget_nowait(subscription_id)
                return
            resolved = self._pending.resolve(req_id, message)
            if not resolved and message.get("error"):
                logger.warning("Late error for request %s: %s", req_id, message["error"])

        if msg_type == "tick" and message.get("tick"):
            self._dispatch_tick(message["tick"])
            return

        if message.get("error") and req_id is None:
            logger.error("Deriv API error: %s", message["error"])

    async def _send_pong(self) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.send(json.dumps({"pong": 1}))
        except _TRANSPORT_ERRORS as exc:
            logger.warning("Failed to answer ping: %s", exc)

    def _dispatch_tick(self, data: dict) -> None:
        try:
            tick = Tick.from_wire(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Dropping tick: %s", MalformedMessage(str(exc)))
            return
        self._last_quotes[tick.symbol] = tick.quote
        for handler in list(self._tick_handlers):
            try:
                handler(tick)
            except Exception:
                logger.exception("Tick handler failed for %s", tick.symbol)
