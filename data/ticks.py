"""
Tick message schemas and routing.

Decoded market-data messages (dicts or lists of dicts, keyed the way the
Alpaca streams key them) are validated with pydantic and pushed into the
analytics store. Options and stock streams share the "t"/"q" type codes, so
the caller says which feed a payload came from.
"""

import json
import logging
import threading
import time
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class Feed(Enum):
    OPTIONS = "options"
    STOCKS = "stocks"


class _Tick(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: str = Field(..., alias="S", min_length=1)
    timestamp: str = Field(default="", alias="t")

    @field_validator("timestamp", mode="before")
    @classmethod
    def stringify_timestamp(cls, v):
        return "" if v is None else str(v)


def _join_conditions(v):
    if v is None:
        return ""
    if isinstance(v, (list, tuple)):
        return ",".join(str(c) for c in v)
    return str(v)


# Stock feeds send condition lists, option feeds a single code
ConditionCode = Annotated[str, BeforeValidator(_join_conditions)]


class OptionTrade(_Tick):
    """Option trade, T="t"."""
    msg_type: Literal["t"] = Field(..., alias="T")
    price: float = Field(..., alias="p", ge=0, allow_inf_nan=False)
    size: int = Field(default=0, alias="s", ge=0)
    exchange: str = Field(default="", alias="x")
    condition: ConditionCode = Field(default="", alias="c")


class OptionQuote(_Tick):
    """Option quote, T="q"."""
    msg_type: Literal["q"] = Field(..., alias="T")
    bid_price: float = Field(default=0.0, alias="bp", ge=0, allow_inf_nan=False)
    bid_size: int = Field(default=0, alias="bs", ge=0)
    ask_price: float = Field(default=0.0, alias="ap", ge=0, allow_inf_nan=False)
    ask_size: int = Field(default=0, alias="as", ge=0)
    bid_exchange: str = Field(default="", alias="bx")
    ask_exchange: str = Field(default="", alias="ax")
    condition: ConditionCode = Field(default="", alias="c")


class StockTrade(_Tick):
    """Underlying trade, T="t" on the stock feed."""
    msg_type: Literal["t"] = Field(..., alias="T")
    price: float = Field(..., alias="p", gt=0, allow_inf_nan=False)
    size: int = Field(default=0, alias="s", ge=0)


class StockQuote(_Tick):
    """Underlying quote, T="q" on the stock feed."""
    msg_type: Literal["q"] = Field(..., alias="T")
    bid_price: float = Field(default=0.0, alias="bp", ge=0, allow_inf_nan=False)
    ask_price: float = Field(default=0.0, alias="ap", ge=0, allow_inf_nan=False)

    @property
    def mid_price(self) -> float:
        if self.bid_price > 0 and self.ask_price > 0:
            return (self.bid_price + self.ask_price) / 2.0
        return 0.0


CONTROL_TYPES = ("success", "subscription", "error")

MODELS = {
    (Feed.OPTIONS, "t"): OptionTrade,
    (Feed.OPTIONS, "q"): OptionQuote,
    (Feed.STOCKS, "t"): StockTrade,
    (Feed.STOCKS, "q"): StockQuote,
}


class TickRouter:
    """
    Validates decoded messages and applies them to a tick sink.

    The sink is anything exposing on_trade / on_quote / on_underlying_trade /
    on_underlying_quote_mid (AnalyticsStore or StreamAnalyzer). Invalid
    messages are dropped and counted in `stats`.
    """

    def __init__(self, sink):
        self.sink = sink
        self.stats = Counter()
        self._stats_lock = threading.Lock()

    def _count(self, key: str):
        with self._stats_lock:
            self.stats[key] += 1

    def handle(self, payload: Union[dict, List[dict]], feed: Feed = Feed.OPTIONS) -> int:
        """Route one message or a batch. Returns how many ticks were applied."""
        messages = payload if isinstance(payload, list) else [payload]
        return sum(1 for message in messages if self._dispatch(message, feed))

    def handle_raw(self, raw: Union[str, bytes], feed: Feed = Feed.OPTIONS) -> int:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._count("undecodable")
            logger.warning(f"Dropping undecodable {feed.value} frame: {e}")
            return 0
        if not isinstance(payload, (dict, list)):
            self._count("invalid")
            return 0
        return self.handle(payload, feed)

    def _dispatch(self, message: Any, feed: Feed) -> bool:
        if not isinstance(message, dict):
            self._count("invalid")
            return False

        msg_type = message.get("T")
        if msg_type in CONTROL_TYPES:
            self._handle_control(msg_type, message, feed)
            return False

        model = MODELS.get((feed, msg_type))
        if model is None:
            self._count("unknown")
            logger.debug(f"Ignoring {feed.value} message type {msg_type!r}")
            return False

        try:
            tick = model.model_validate(message)
        except ValidationError as e:
            self._count("invalid")
            logger.debug(f"Dropping invalid {feed.value} {msg_type!r} message: {e.error_count()} errors")
            return False

        applied = self._apply(tick)
        self._count("applied" if applied else "rejected")
        return applied

    def _apply(self, tick: BaseModel) -> bool:
        if isinstance(tick, OptionTrade):
            return self.sink.on_trade(
                tick.symbol, tick.price, tick.size, tick.timestamp,
                exchange=tick.exchange, condition=tick.condition,
            )
        if isinstance(tick, OptionQuote):
            return self.sink.on_quote(
                tick.symbol, tick.bid_price, tick.bid_size, tick.ask_price, tick.ask_size,
                tick.timestamp, bid_exchange=tick.bid_exchange,
                ask_exchange=tick.ask_exchange, condition=tick.condition,
            )
        if isinstance(tick, StockTrade):
            return self.sink.on_underlying_trade(tick.symbol, tick.price, tick.timestamp)
        if isinstance(tick, StockQuote):
            if tick.mid_price <= 0:
                return False
            return self.sink.on_underlying_quote_mid(tick.symbol, tick.mid_price, tick.timestamp)
        return False

    def _handle_control(self, msg_type: str, message: dict, feed: Feed):
        self._count(msg_type)
        if msg_type == "error":
            logger.error(f"{feed.value} stream error {message.get('code')}: {message.get('msg')}")
        elif msg_type == "success":
            logger.info(f"{feed.value} stream: {message.get('msg', 'ok')}")
        else:
            channels = {k: v for k, v in message.items() if k != "T"}
            logger.info(f"{feed.value} subscription: {channels}")


def replay_file(
    path: Union[str, Path],
    router: TickRouter,
    delay: float = 0.0,
    stop_event: Optional[threading.Event] = None
) -> int:
    """
    Feed a JSON-lines capture through the router.

    Each line is either a raw options-feed payload or an envelope
    {"feed": "stocks"|"options", "data": <payload>}. Returns the number of
    ticks applied.
    """
    applied = 0
    with open(path, "r") as f:
        for line_no, line in enumerate(f, 1):
            if stop_event is not None and stop_event.is_set():
                break
            line = line.strip()
            if not line:
                continue

            try:
                payload = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"{path}:{line_no}: skipping bad JSON ({e})")
                continue

            feed = Feed.OPTIONS
            if isinstance(payload, dict) and "data" in payload and "feed" in payload:
                try:
                    feed = Feed(payload["feed"])
                except ValueError:
                    logger.warning(f"{path}:{line_no}: unknown feed {payload['feed']!r}")
                    continue
                payload = payload["data"]

            if isinstance(payload, (dict, list)):
                applied += router.handle(payload, feed)

            if delay > 0:
                time.sleep(delay)

    logger.info(f"Replayed {applied} ticks from {path}")
    return applied
