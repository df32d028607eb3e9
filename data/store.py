"""
Analytics record store and underlying price cache.

Ingestion threads write ticks here; every accepted tick triggers a
rate-limited Black-Scholes recompute for its contract. Readers take deep
copies via snapshot() and never hold the table lock while analyzing.

Lock order is always table -> price entry. Underlying ingestion only touches
the price cache and never takes the table lock.
"""

import logging
import math
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from core.config import AnalyticsConfig, DEFAULT_CONFIG
from core.models import ContractRecord, PreviousValues, UnderlyingPrice
from core.symbols import parse_option_symbol, time_to_expiry_years
from analysis.implied_vol import compute_analytics

logger = logging.getLogger(__name__)


def _is_valid_number(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value >= 0


class UnderlyingPriceCache:
    """
    Latest price per underlying.

    Each entry carries its own lock; a cache-level lock only guards entry
    creation and lookup.
    """

    def __init__(self, max_underlyings: int = 50):
        self.max_underlyings = max_underlyings
        self._entries: Dict[str, UnderlyingPrice] = {}
        self._lock = threading.Lock()
        self._rejected = set()

    def _get_or_create(self, symbol: str) -> Optional[UnderlyingPrice]:
        with self._lock:
            entry = self._entries.get(symbol)
            if entry is not None:
                return entry
            if len(self._entries) >= self.max_underlyings:
                if symbol not in self._rejected:
                    self._rejected.add(symbol)
                    logger.warning(f"Underlying cache full ({self.max_underlyings}), rejecting {symbol}")
                return None
            entry = UnderlyingPrice(symbol=symbol)
            self._entries[symbol] = entry
            return entry

    def _find(self, symbol: str) -> Optional[UnderlyingPrice]:
        with self._lock:
            return self._entries.get(symbol)

    def update_trade(self, symbol: str, price: float, timestamp: str = "") -> bool:
        if not symbol or not _is_valid_number(price) or price <= 0:
            logger.debug(f"Dropping underlying trade {symbol!r} @ {price!r}")
            return False

        entry = self._get_or_create(symbol)
        if entry is None:
            return False

        with entry.lock:
            entry.last_price = float(price)
            entry.timestamp = timestamp
            entry.is_valid = True
            entry.has_trade = True
        return True

    def update_quote_mid(self, symbol: str, mid_price: float, timestamp: str = "") -> bool:
        """Use a quote mid only while no trade price has been seen."""
        if not symbol or not _is_valid_number(mid_price) or mid_price <= 0:
            return False

        entry = self._get_or_create(symbol)
        if entry is None:
            return False

        with entry.lock:
            if entry.has_trade:
                return False
            entry.last_price = float(mid_price)
            entry.timestamp = timestamp
            entry.is_valid = True
        return True

    def get_price(self, symbol: str) -> float:
        """Latest price, or 0.0 if unknown."""
        entry = self._find(symbol)
        if entry is None:
            return 0.0
        with entry.lock:
            return entry.last_price if entry.is_valid else 0.0

    def prices(self) -> Dict[str, float]:
        with self._lock:
            entries = list(self._entries.values())
        result = {}
        for entry in entries:
            with entry.lock:
                if entry.is_valid:
                    result[entry.symbol] = entry.last_price
        return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AnalyticsStore:
    """
    Bounded, insertion-ordered table of ContractRecords.

    Args:
        config: Store capacity, throttle and solver settings
        price_cache: Shared underlying price cache (created if omitted)
        clock: Monotonic seconds source for the recompute throttle
        now: Wall-clock source for time to expiry (defaults to current UTC time)
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        price_cache: Optional[UnderlyingPriceCache] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or DEFAULT_CONFIG
        self.risk_free_rate = self.config.risk_free_rate
        self.prices = price_cache or UnderlyingPriceCache(self.config.store.max_underlyings)

        self._records: Dict[str, ContractRecord] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self._now = now
        self._rejected = set()
        self.dropped_ticks = 0

    # ------------------------------------------------------------------
    # Table management
    # ------------------------------------------------------------------

    def _find_or_create(self, symbol: str) -> Optional[ContractRecord]:
        """Caller holds the table lock."""
        record = self._records.get(symbol)
        if record is not None:
            return record

        parsed = parse_option_symbol(symbol)
        if parsed is None:
            logger.debug(f"Dropping tick for unparseable symbol {symbol!r}")
            return None

        if len(self._records) >= self.config.store.max_contracts:
            if symbol not in self._rejected:
                self._rejected.add(symbol)
                logger.warning(
                    f"Record table full ({self.config.store.max_contracts}), rejecting {symbol}"
                )
            return None

        record = ContractRecord(
            symbol=symbol,
            underlying=parsed.underlying,
            expiry=parsed.expiry,
            strike=parsed.strike,
            option_type=parsed.option_type,
        )
        self._records[symbol] = record
        logger.debug(f"Tracking {symbol} ({len(self._records)}/{self.config.store.max_contracts})")
        return record

    def _count_drop(self):
        with self._lock:
            self.dropped_ticks += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._records

    @property
    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._records)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def on_trade(
        self,
        symbol: str,
        price: float,
        size: int = 0,
        timestamp: str = "",
        exchange: str = "",
        condition: str = ""
    ) -> bool:
        """Apply an option trade. Returns False if the tick was dropped."""
        if not _is_valid_number(price) or not _is_valid_number(size):
            self._count_drop()
            logger.debug(f"Dropping malformed trade for {symbol!r}: price={price!r} size={size!r}")
            return False

        with self._lock:
            record = self._find_or_create(symbol)
            if record is None:
                self.dropped_ticks += 1
                return False

            record.last_price = float(price)
            record.last_size = int(size)
            record.trade_exchange = exchange
            record.trade_condition = condition
            record.trade_time = timestamp
            record.has_trade = True

            self._maybe_recompute(record)
        return True

    def on_quote(
        self,
        symbol: str,
        bid: float,
        bid_size: int,
        ask: float,
        ask_size: int,
        timestamp: str = "",
        bid_exchange: str = "",
        ask_exchange: str = "",
        condition: str = ""
    ) -> bool:
        """Apply an option quote. Returns False if the tick was dropped."""
        if not all(_is_valid_number(v) for v in (bid, bid_size, ask, ask_size)):
            self._count_drop()
            logger.debug(f"Dropping malformed quote for {symbol!r}")
            return False

        with self._lock:
            record = self._find_or_create(symbol)
            if record is None:
                self.dropped_ticks += 1
                return False

            if record.has_quote:
                record.previous.spread = record.spread

            record.bid_price = float(bid)
            record.bid_size = int(bid_size)
            record.bid_exchange = bid_exchange
            record.ask_price = float(ask)
            record.ask_size = int(ask_size)
            record.ask_exchange = ask_exchange
            record.quote_condition = condition
            record.quote_time = timestamp
            record.has_quote = True

            self._maybe_recompute(record)
        return True

    def on_underlying_trade(self, symbol: str, price: float, timestamp: str = "") -> bool:
        return self.prices.update_trade(symbol, price, timestamp)

    def on_underlying_quote_mid(self, symbol: str, mid_price: float, timestamp: str = "") -> bool:
        return self.prices.update_quote_mid(symbol, mid_price, timestamp)

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def _maybe_recompute(self, record: ContractRecord) -> bool:
        """Caller holds the table lock. The throttle slot is taken before validation."""
        now = self._clock()
        throttle = self.config.store.recompute_throttle_seconds
        if record.last_recompute is not None and now - record.last_recompute < throttle:
            logger.debug(f"Throttled recompute for {record.symbol}")
            return False
        record.last_recompute = now

        underlying_price = self.prices.get_price(record.underlying)
        if underlying_price <= 0:
            record.analytics_valid = False
            return False

        now_dt = self._now() if self._now else None
        time_to_expiry = time_to_expiry_years(record.expiry, now_dt)
        if time_to_expiry <= 0:
            record.analytics_valid = False
            return False

        market_price = record.market_price
        if market_price <= 0:
            record.analytics_valid = False
            return False

        if record.analytics_valid:
            record.previous = PreviousValues(
                spread=record.previous.spread,
                analytics=record.analytics,
            )

        record.analytics = compute_analytics(
            market_price,
            underlying_price,
            record.strike,
            time_to_expiry,
            self.risk_free_rate,
            record.is_call,
            self.config.pricing,
        )
        record.underlying_price = underlying_price
        record.time_to_expiry = time_to_expiry
        record.analytics_valid = True
        record.recompute_count += 1
        return True

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self) -> List[ContractRecord]:
        """Deep copies of every record in insertion order."""
        with self._lock:
            return [record.copy() for record in self._records.values()]

    def get(self, symbol: str) -> Optional[ContractRecord]:
        with self._lock:
            record = self._records.get(symbol)
            return record.copy() if record else None
