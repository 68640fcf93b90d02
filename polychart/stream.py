import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Union

import websockets
from websockets.asyncio.client import ClientConnection

from .config import Config
from .models import (
    AggregateMessage,
    ConnectionState,
    FeedStats,
    MarketKind,
    MessageDecodeError,
    StatusMessage,
    TradeMessage,
    decode_message,
)
from .rest import MarketDataError

log = logging.getLogger("polychart.stream")

FeedMessage = Union[AggregateMessage, TradeMessage]

_AGGREGATE_TOPICS = {
    MarketKind.CRYPTO: "XA",
    MarketKind.FOREX: "CA",
    MarketKind.OPTIONS: "AM",
    MarketKind.STOCKS: "AM",
}
_TRADE_TOPICS = {
    MarketKind.CRYPTO: "XT",
    MarketKind.OPTIONS: "T",
    MarketKind.STOCKS: "T",
}


def live_topic(market: MarketKind, ws_ticker: str, trades: bool = False) -> str:
    """Subscription topic; forex has no trade channel and always uses aggregates"""
    prefix: Optional[str] = _TRADE_TOPICS.get(market) if trades else None
    return f"{prefix or _AGGREGATE_TOPICS[market]}.{ws_ticker}"


class LiveFeed:
    """One websocket subscription: authenticate, subscribe, decode, reconnect"""

    def __init__(
        self,
        config: Config,
        market: MarketKind,
        topic: str,
        on_message: Callable[[FeedMessage], None],
        stats: Optional[FeedStats] = None,
        on_reconnect: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self.config = config
        self.market: MarketKind = market
        self.topic: str = topic
        self.on_message: Callable[[FeedMessage], None] = on_message
        self.stats: FeedStats = stats or FeedStats()
        self.on_reconnect: Optional[Callable[[], Awaitable[None]]] = on_reconnect

        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self._shutdown: asyncio.Event = asyncio.Event()
        self._ws: Optional[ClientConnection] = None
        self._subscriptions: int = 0

    @property
    def url(self) -> str:
        return f"{self.config.WS_BASE_URL}/{self.market.value}"

    async def run(self) -> None:
        """Connection loop with exponential backoff; returns once stopped"""
        delay: float = self.config.INITIAL_RECONNECT_DELAY

        while not self._shutdown.is_set():
            try:
                self.state = ConnectionState.CONNECTING
                await self._connect_and_stream()
                delay = self.config.INITIAL_RECONNECT_DELAY
            except MarketDataError as e:
                log.error(f"Live feed for {self.topic} rejected: {e}")
                break
            except (
                websockets.exceptions.WebSocketException,
                asyncio.TimeoutError,
                OSError,
            ) as e:
                log.warning(f"Connection error ({type(e).__name__}): {e}")
                if self._shutdown.is_set():
                    break
                self.state = ConnectionState.RECONNECTING
                log.info(f"Reconnecting in {delay:.1f} seconds...")
                await asyncio.sleep(delay)
                delay = min(
                    delay * self.config.RECONNECT_MULTIPLIER,
                    self.config.MAX_RECONNECT_DELAY,
                )
                self.stats.reconnect_count += 1

        self.state = ConnectionState.DISCONNECTED

    async def _connect_and_stream(self) -> None:
        log.info(f"Connecting to {self.url}")
        async with websockets.connect(
            self.url,
            ping_interval=20,
            ping_timeout=20,
            close_timeout=10,
            max_size=10 * 1024 * 1024,
        ) as ws:
            self._ws = ws
            self.state = ConnectionState.AUTHENTICATING
            self.stats.connected_at = datetime.now(timezone.utc)
            try:
                await self._message_loop(ws)
            finally:
                self._ws = None

    async def _message_loop(self, ws: ClientConnection) -> None:
        async for frame in ws:
            if self._shutdown.is_set():
                break
            self.stats.messages_received += 1
            for message in self.decode_frame(frame):
                if isinstance(message, StatusMessage):
                    await self._on_status(ws, message)
                else:
                    self.on_message(message)

    def decode_frame(self, frame: Union[str, bytes]) -> List[Union[StatusMessage, FeedMessage]]:
        """Decode a frame; undecodable elements are logged and dropped individually"""
        try:
            payload: Any = json.loads(frame)
        except json.JSONDecodeError:
            log.warning(f"Failed to parse frame as JSON: {frame!r}")
            self.stats.parse_errors += 1
            return []

        items: List[Any] = payload if isinstance(payload, list) else [payload]
        messages: List[Union[StatusMessage, FeedMessage]] = []
        for item in items:
            if not isinstance(item, dict):
                log.warning(f"Skipping non-object message: {item!r}")
                self.stats.parse_errors += 1
                continue
            try:
                messages.append(decode_message(item))
            except MessageDecodeError as e:
                log.warning(str(e))
                self.stats.parse_errors += 1
        return messages

    async def _on_status(self, ws: ClientConnection, message: StatusMessage) -> None:
        log.debug(f"Status: {message.status} {message.message}")
        if message.status == "connected":
            await ws.send(json.dumps({"action": "auth", "params": self.config.API_KEY}))
        elif message.status == "auth_success":
            self.state = ConnectionState.SUBSCRIBING
            log.info(f"Subscribing to {self.topic}")
            await ws.send(json.dumps({"action": "subscribe", "params": self.topic}))
            self._subscriptions += 1
            # Frames queue on the socket until the missed bars are in
            if self._subscriptions > 1:
                await self._fill_gaps()
            self.state = ConnectionState.STREAMING
        elif message.status in ("auth_failed", "auth_timeout"):
            raise MarketDataError(f"{message.status}: {message.message}")

    async def _fill_gaps(self) -> None:
        if self.on_reconnect is None or not self.config.FILL_GAPS_ON_RECONNECT:
            return
        log.info(f"Resubscribed to {self.topic}, filling the gap since the drop")
        await self.on_reconnect()

    async def close(self) -> None:
        """Stop the loop and close the socket"""
        self._shutdown.set()
        if self._ws is not None:
            await self._ws.close()
        log.info(f"Live feed for {self.topic} closed")
