from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    TypeAdapter,
    ValidationError,
    computed_field,
)


class MessageDecodeError(ValueError):
    """Live payload that does not match any known message shape"""

    pass


class ConnectionState(Enum):
    """Live feed connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"


class MarketKind(Enum):
    """Asset class, derived from a ticker's prefix"""
    STOCKS = "stocks"
    OPTIONS = "options"
    FOREX = "forex"
    CRYPTO = "crypto"


class Bar(BaseModel):
    """One OHLCV bucket of the chart window.

    A bar without trade data only carries ``time``; every price field is None.
    ``liquidity`` is the running price x size sum so that ``vwap`` can be
    maintained incrementally.
    """
    time: int
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    volume: Optional[float] = None
    liquidity: Optional[float] = None
    vwap: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.open is None

    @computed_field
    @property
    def timestamp_utc(self) -> datetime:
        """Bucket start as UTC datetime"""
        return datetime.fromtimestamp(self.time / 1000, tz=timezone.utc)

    @classmethod
    def empty(cls, time: int) -> "Bar":
        return cls(time=time)

    @classmethod
    def from_raw(cls, raw: "RawAggregate", time: Optional[int] = None) -> "Bar":
        """Build a filled bar from a REST record, optionally re-stamped to its bucket"""
        vwap: float = raw.vw if raw.vw is not None else raw.c
        return cls(
            time=raw.t if time is None else time,
            open=raw.o,
            high=raw.h,
            low=raw.l,
            close=raw.c,
            volume=raw.v,
            liquidity=vwap * raw.v,
            vwap=vwap,
        )

    def __str__(self) -> str:
        ts: datetime = self.timestamp_utc
        if self.is_empty:
            return f"{ts:%Y-%m-%d %H:%M:%S} | (empty)"
        return (f"{ts:%Y-%m-%d %H:%M:%S} | "
                f"O: {self.open:.2f} | H: {self.high:.2f} | "
                f"L: {self.low:.2f} | C: {self.close:.2f} | "
                f"V: {self.volume:.2f} | VWAP: {self.vwap:.2f}")


class Trade(BaseModel):
    """A single executed trade"""
    ts: int
    price: float
    size: float
    conditions: List[int] = Field(default_factory=list)


class RawAggregate(BaseModel):
    """Aggregate record as returned by the REST aggregates endpoint"""
    t: int
    o: float
    h: float
    l: float  # noqa: E741
    c: float
    v: float
    vw: Optional[float] = None
    n: Optional[int] = None


class StatusMessage(BaseModel):
    ev: Literal["status"]
    status: str
    message: str = ""


class AggregateMessage(BaseModel):
    """Finished bar pushed by the feed; ``s`` is the bucket start"""
    ev: Literal["A", "AM", "XA", "CA"]
    symbol: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("sym", "pair")
    )
    s: int
    e: Optional[int] = None
    o: float
    h: float
    l: float  # noqa: E741
    c: float
    v: float
    vw: Optional[float] = None

    def to_bar(self) -> Bar:
        vwap: float = self.vw if self.vw is not None else self.c
        return Bar(
            time=self.s,
            open=self.o,
            high=self.h,
            low=self.l,
            close=self.c,
            volume=self.v,
            liquidity=vwap * self.v,
            vwap=vwap,
        )


class TradeMessage(BaseModel):
    ev: Literal["T", "XT"]
    symbol: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("sym", "pair")
    )
    t: int
    p: float
    s: float
    c: List[int] = Field(default_factory=list)

    def to_trade(self) -> Trade:
        return Trade(ts=self.t, price=self.p, size=self.s, conditions=self.c)


LiveMessage = Annotated[
    Union[StatusMessage, AggregateMessage, TradeMessage], Field(discriminator="ev")
]

_live_message_adapter: TypeAdapter = TypeAdapter(LiveMessage)


def decode_message(payload: Dict[str, Any]) -> Union[StatusMessage, AggregateMessage, TradeMessage]:
    """Decode one element of a feed frame into its tagged variant"""
    try:
        return _live_message_adapter.validate_python(payload)
    except ValidationError as e:
        raise MessageDecodeError(
            f"Unrecognised message {payload!r}: {e.error_count()} error(s)"
        ) from e


class FeedStats(BaseModel):
    """Live feed and window mutation statistics"""
    connected_at: Optional[datetime] = None
    messages_received: int = 0
    bars_applied: int = 0
    bars_appended: int = 0
    trades_folded: int = 0
    trades_rejected: int = 0
    aggregates_rejected: int = 0
    parse_errors: int = 0
    stale_results: int = 0
    reconnect_count: int = 0

    def uptime_seconds(self) -> float:
        if not self.connected_at:
            return 0.0
        return (datetime.now(timezone.utc) - self.connected_at).total_seconds()

    def __str__(self) -> str:
        uptime: timedelta = timedelta(seconds=int(self.uptime_seconds()))
        return (f"Uptime: {uptime} | Msgs: {self.messages_received} | "
                f"Bars: {self.bars_applied} (new: {self.bars_appended}) | "
                f"Trades: {self.trades_folded} (rejected: {self.trades_rejected}) | "
                f"Late aggregates: {self.aggregates_rejected} | "
                f"Parse errors: {self.parse_errors} | Stale: {self.stale_results} | "
                f"Reconnects: {self.reconnect_count}")
