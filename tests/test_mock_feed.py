"""
Tests for the mock market feed and synthetic data helpers.
"""

import time
from datetime import date

import pytest

from core.config import AnalyticsConfig
from core.symbols import parse_option_symbol
from analyzer import StreamAnalyzer
from data.mock_feed import MockMarketFeed, build_mock_chain, synthetic_history, synthetic_vol


@pytest.fixture
def live_config():
    config = AnalyticsConfig()
    config.store.recompute_throttle_ms = 0
    config.stream.mock_volatility_factor = 0.0
    config.stream.mock_interval_seconds = 0.01
    config.stream.mock_symbol_delay_seconds = 0.0
    return config


class TestChain:

    def test_strikes_around_the_money(self):
        symbols = build_mock_chain(["QQQ"], expiry_days=(14,), strikes_per_side=2, today=date(2025, 7, 1))

        assert len(symbols) == 10
        assert symbols[:2] == ["QQQ250718P00340000", "QQQ250718C00340000"]
        strikes = sorted({parse_option_symbol(s).strike for s in symbols})
        assert strikes == [340.0, 345.0, 350.0, 355.0, 360.0]

    def test_expiries_land_on_fridays(self):
        symbols = build_mock_chain(["SPY", "AAPL"], today=date(2025, 7, 1))
        expirations = {parse_option_symbol(s).expiration for s in symbols}
        assert len(expirations) == 2
        assert all(d.weekday() == 4 for d in expirations)

    def test_spot_override(self):
        symbols = build_mock_chain(["XYZ"], expiry_days=(30,), strikes_per_side=1,
                                   spot_prices={"XYZ": 20.0}, today=date(2025, 7, 1))
        assert sorted({parse_option_symbol(s).strike for s in symbols}) == [19.5, 20.0, 20.5]


class TestSyntheticData:

    def test_vol_has_downside_skew(self):
        assert synthetic_vol(100, 100) == pytest.approx(0.25)
        assert synthetic_vol(90, 100) > synthetic_vol(110, 100)
        assert 0.05 <= synthetic_vol(1, 100) <= 3.0

    def test_history_ends_at_spot(self):
        bars = synthetic_history(350.0, days=60, seed=7)
        assert len(bars) == 60
        assert bars[-1].close == pytest.approx(350.0)
        assert all(bar.is_consistent for bar in bars)
        assert [b.timestamp for b in bars] == sorted(b.timestamp for b in bars)

    def test_history_is_reproducible(self):
        a = synthetic_history(100.0, days=20, seed=1)
        b = synthetic_history(100.0, days=20, seed=1)
        assert [x.close for x in a] == [x.close for x in b]


class TestMockMarketFeed:

    def test_step_produces_solvable_prices(self, live_config):
        analyzer = StreamAnalyzer(live_config)
        symbols = build_mock_chain(["QQQ"], expiry_days=(30,), strikes_per_side=2)
        feed = MockMarketFeed(analyzer, symbols, live_config, seed=42)

        feed.step()

        records = analyzer.snapshot()
        assert len(records) == len(symbols)
        for record in records:
            assert record.has_trade and record.has_quote
            assert record.analytics_valid
            assert record.analytics.iv_converged
            expected = synthetic_vol(record.strike, record.underlying_price)
            assert record.analytics.implied_vol == pytest.approx(expected, abs=0.01)

    def test_seed_history(self, live_config):
        analyzer = StreamAnalyzer(live_config)
        feed = MockMarketFeed(analyzer, build_mock_chain(["QQQ", "SPY"]), live_config, seed=1)

        assert feed.seed_history() == {"QQQ": 90, "SPY": 90}
        assert analyzer.rv_stats()["QQQ"].rv_20d > 0

    def test_ignores_unparseable_symbols(self, live_config):
        feed = MockMarketFeed(StreamAnalyzer(live_config), ["junk", "QQQ250801C00350000"], live_config)
        assert len(feed.contracts) == 1
        assert feed.underlyings == ["QQQ"]

    def test_threads_start_and_stop(self, live_config):
        analyzer = StreamAnalyzer(live_config)
        symbols = build_mock_chain(["QQQ"], expiry_days=(30,), strikes_per_side=1)
        feed = MockMarketFeed(analyzer, symbols, live_config, seed=3)

        feed.start()
        deadline = time.monotonic() + 5.0
        while len(analyzer.store) < len(symbols) and time.monotonic() < deadline:
            time.sleep(0.01)
        feed.stop(timeout=2.0)

        assert len(analyzer.store) == len(symbols)
        assert analyzer.prices.get_price("QQQ") > 0
        assert not any(t.is_alive() for t in feed._threads)
