"""
Mock market feed.

Generates a plausible live stream when no market connection is available:
- Random-walk underlying prices pushed as stock trades
- Option trades and quotes priced off Black-Scholes at a skewed synthetic vol
- Synthetic daily bar history for realized-vol seeding

Usage:
    from data.mock_feed import MockMarketFeed, build_mock_chain

    symbols = build_mock_chain(["QQQ", "SPY"])
    feed = MockMarketFeed(analyzer, symbols, config, stop_event)
    feed.start()
"""

import logging
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import numpy as np

from core.config import AnalyticsConfig, DEFAULT_CONFIG
from core.models import OhlcBar, OptionType
from core.symbols import build_option_symbol, parse_option_symbol, time_to_expiry_years
from analysis.black_scholes import bs_price

logger = logging.getLogger(__name__)

# Starting levels for common underlyings
REFERENCE_PRICES = {
    "AAPL": 150.0,
    "QQQ": 350.0,
    "SPY": 450.0,
    "TSLA": 200.0,
    "MSFT": 300.0,
    "NVDA": 800.0,
}
DEFAULT_PRICE = 100.0
EXCHANGES = ["N", "C", "A", "P", "B"]


def reference_price(symbol: str) -> float:
    return REFERENCE_PRICES.get(symbol, DEFAULT_PRICE)


def _strike_spacing(price: float) -> float:
    """Round strike spacing to the usual listed increments."""
    spacing = price * 0.025
    if spacing < 1:
        return 0.5
    if spacing < 2.5:
        return 1.0
    if spacing < 5:
        return 2.5
    return 5.0


def _next_friday(start: date, min_days: int) -> date:
    expiry = start + timedelta(days=min_days)
    while expiry.weekday() != 4:
        expiry += timedelta(days=1)
    return expiry


def build_mock_chain(
    underlyings: Iterable[str],
    expiry_days: Iterable[int] = (14, 45),
    strikes_per_side: int = 3,
    spot_prices: Optional[Dict[str, float]] = None,
    today: Optional[date] = None
) -> List[str]:
    """
    Option symbols around the money for each underlying: puts and calls on
    every strike, expiring on the first Friday after each horizon.
    """
    today = today or datetime.now(timezone.utc).date()
    spot_prices = spot_prices or {}
    symbols = []

    for underlying in underlyings:
        spot = spot_prices.get(underlying, reference_price(underlying))
        spacing = _strike_spacing(spot)
        atm = round(spot / spacing) * spacing
        strikes = [atm + i * spacing for i in range(-strikes_per_side, strikes_per_side + 1)]

        for days in expiry_days:
            expiry = _next_friday(today, days)
            for strike in strikes:
                if strike <= 0:
                    continue
                for option_type in (OptionType.PUT, OptionType.CALL):
                    symbols.append(build_option_symbol(underlying, expiry, option_type, strike))

    return symbols


def synthetic_vol(strike: float, spot: float, base_vol: float = 0.25,
                  skew: float = 0.6, convexity: float = 2.0) -> float:
    """Equity-style smile: downside skew plus curvature in log-moneyness."""
    x = np.log(strike / spot)
    vol = base_vol * (1.0 - skew * x + convexity * x * x)
    return float(min(max(vol, 0.05), 3.0))


def synthetic_history(
    spot: float,
    days: int = 90,
    annual_vol: float = 0.25,
    seed: Optional[int] = None,
    end: Optional[datetime] = None
) -> List[OhlcBar]:
    """Geometric random-walk daily bars ending at roughly `spot`, oldest first."""
    rng = np.random.default_rng(seed)
    daily_vol = annual_vol / np.sqrt(252.0)
    end = end or datetime.now()

    returns = rng.normal(0.0, daily_vol, days)
    closes = spot * np.exp(np.cumsum(returns) - returns.sum())
    bars = []
    prev_close = closes[0] * np.exp(-returns[0])

    for i, close in enumerate(closes):
        open_ = prev_close * np.exp(rng.normal(0.0, daily_vol * 0.2))
        wick = np.abs(rng.normal(0.0, daily_vol * 0.5, 2))
        high = max(open_, close) * np.exp(wick[0])
        low = min(open_, close) * np.exp(-wick[1])
        bars.append(OhlcBar(
            open=float(open_),
            high=float(high),
            low=float(low),
            close=float(close),
            timestamp=end - timedelta(days=days - 1 - i),
        ))
        prev_close = close

    return bars


class MockMarketFeed:
    """
    Threaded random-walk generator pushing ticks into a sink.

    One thread drives underlying prices, one drives option trades/quotes,
    mirroring the two live transports. Both stop when `stop_event` is set.
    """

    def __init__(
        self,
        sink,
        symbols: Iterable[str],
        config: Optional[AnalyticsConfig] = None,
        stop_event: Optional[threading.Event] = None,
        seed: Optional[int] = None
    ):
        self.sink = sink
        self.config = config or DEFAULT_CONFIG
        self.stop_event = stop_event or threading.Event()
        self._rng = np.random.default_rng(seed)
        self._threads: List[threading.Thread] = []

        self.contracts = [p for p in (parse_option_symbol(s) for s in symbols) if p is not None]
        self.spots: Dict[str, float] = {}
        for contract in self.contracts:
            self.spots.setdefault(contract.underlying, reference_price(contract.underlying))
        self._option_prices: Dict[str, float] = {}

    @property
    def underlyings(self) -> List[str]:
        return list(self.spots)

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

    def step_underlyings(self):
        """Move every underlying by a small random return and publish it."""
        for symbol, price in self.spots.items():
            price = max(price * (1.0 + self._rng.uniform(-0.01, 0.01)), 1.0)
            self.spots[symbol] = price
            self.sink.on_underlying_trade(symbol, price, self._timestamp())

    def _fair_price(self, contract) -> float:
        spot = self.spots[contract.underlying]
        t = time_to_expiry_years(contract.expiry)
        vol = synthetic_vol(contract.strike, spot)
        return bs_price(spot, contract.strike, t, self.config.risk_free_rate, vol, contract.is_call)

    def step_option(self, contract):
        """Publish one trade and one quote for a contract."""
        fair = self._fair_price(contract)
        noise = self._rng.uniform(-1.0, 1.0) * self.config.stream.mock_volatility_factor
        price = max(round(fair * (1.0 + noise), 2), 0.01)
        self._option_prices[contract.symbol] = price

        spread = max(price * 0.02, 0.01)
        bid = max(round(price - spread / 2, 2), 0.01)
        ask = round(price + spread / 2, 2)
        timestamp = self._timestamp()

        self.sink.on_trade(
            contract.symbol, price, int(self._rng.integers(1, 101)), timestamp,
            exchange=EXCHANGES[int(self._rng.integers(len(EXCHANGES)))], condition="I",
        )
        self.sink.on_quote(
            contract.symbol, bid, int(self._rng.integers(1, 101)),
            ask, int(self._rng.integers(1, 101)), timestamp,
        )

    def step(self):
        """One full round: underlyings first, then every option."""
        self.step_underlyings()
        for contract in self.contracts:
            self.step_option(contract)

    def seed_history(self, days: Optional[int] = None) -> Dict[str, int]:
        """Seed synthetic daily bars for every underlying via sink.seed_bars."""
        days = days or self.config.stream.history_days
        seeded = {}
        for symbol, spot in self.spots.items():
            bars = synthetic_history(spot, days, seed=int(self._rng.integers(1 << 31)))
            seeded[symbol] = self.sink.seed_bars(symbol, bars)
        return seeded

    def _run_underlyings(self):
        interval = self.config.stream.mock_interval_seconds
        while not self.stop_event.is_set():
            self.step_underlyings()
            self.stop_event.wait(interval)

    def _run_options(self):
        interval = self.config.stream.mock_interval_seconds
        delay = self.config.stream.mock_symbol_delay_seconds
        while not self.stop_event.is_set():
            for contract in self.contracts:
                if self.stop_event.is_set():
                    break
                if contract.underlying in self.spots:
                    self.step_option(contract)
                self.stop_event.wait(delay)
            self.stop_event.wait(interval)

    def start(self):
        logger.info(f"Starting mock feed: {len(self.contracts)} contracts on {', '.join(self.underlyings)}")
        # Publish prices before the first option ticks
        self.step_underlyings()
        self._threads = [
            threading.Thread(target=self._run_underlyings, name="mock-stocks", daemon=True),
            threading.Thread(target=self._run_options, name="mock-options", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: float = 5.0):
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        logger.info("Mock feed stopped")
