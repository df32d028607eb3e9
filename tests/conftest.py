"""
Shared fixtures for the analytics test suite.
"""

import os
import sys
from datetime import date, datetime, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import AnalyticsConfig
from core.models import BlackScholesResult, ContractRecord, OptionType
from core.symbols import build_option_symbol
from data.store import AnalyticsStore
from analyzer import StreamAnalyzer

# QQQ250801 options have 31 days left at this instant
FIXED_NOW = datetime(2025, 7, 1, 16, 0, tzinfo=timezone.utc)
EXPIRY = date(2025, 8, 1)


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return AnalyticsConfig()


@pytest.fixture
def store(config, clock):
    return AnalyticsStore(config, clock=clock, now=lambda: FIXED_NOW)


@pytest.fixture
def analyzer(config, clock):
    return StreamAnalyzer(config, clock=clock, now=lambda: FIXED_NOW)


@pytest.fixture
def make_record():
    """Build a record with converged analytics and hand-picked Greeks."""

    def _make(
        strike: float,
        spot: float = 100.0,
        iv: float = 0.2,
        option_type: OptionType = OptionType.CALL,
        underlying: str = "QQQ",
        expiry: date = EXPIRY,
        time_to_expiry: float = 0.25,
        converged: bool = True,
        valid: bool = True,
        **greeks
    ) -> ContractRecord:
        symbol = build_option_symbol(underlying, expiry, option_type, strike)
        analytics = BlackScholesResult(implied_vol=iv, iv_converged=converged, **greeks)
        return ContractRecord(
            symbol=symbol,
            underlying=underlying,
            expiry=f"{expiry:%y%m%d}",
            strike=strike,
            option_type=option_type,
            analytics=analytics,
            underlying_price=spot,
            time_to_expiry=time_to_expiry,
            analytics_valid=valid,
        )

    return _make
