"""
Tests for the analytics record store and the underlying price cache.
"""

import logging
import threading

import pytest

from core.config import AnalyticsConfig
from core.symbols import time_to_expiry_years
from data.store import AnalyticsStore, UnderlyingPriceCache
from analysis.black_scholes import bs_price
from conftest import FIXED_NOW

CALL = "QQQ250801C00560000"
PUT = "QQQ250801P00550000"


def fair_price(strike=560.0, spot=560.0, vol=0.25, is_call=True):
    t = time_to_expiry_years("250801", FIXED_NOW)
    return bs_price(spot, strike, t, 0.05, vol, is_call)


class TestUnderlyingPriceCache:

    def test_trade_sets_price(self):
        cache = UnderlyingPriceCache()
        assert cache.update_trade("QQQ", 560.0, "t1")
        assert cache.get_price("QQQ") == 560.0
        assert cache.get_price("SPY") == 0.0

    def test_quote_mid_only_until_first_trade(self):
        cache = UnderlyingPriceCache()
        assert cache.update_quote_mid("QQQ", 559.5)
        assert cache.get_price("QQQ") == 559.5

        cache.update_trade("QQQ", 560.0)
        assert not cache.update_quote_mid("QQQ", 561.0)
        assert cache.get_price("QQQ") == 560.0

    @pytest.mark.parametrize("price", [0.0, -1.0, float("nan"), float("inf")])
    def test_rejects_bad_prices(self, price):
        cache = UnderlyingPriceCache()
        assert not cache.update_trade("QQQ", price)
        assert len(cache) == 0

    def test_capacity(self, caplog):
        cache = UnderlyingPriceCache(max_underlyings=2)
        assert cache.update_trade("A", 1.0)
        assert cache.update_trade("B", 1.0)
        with caplog.at_level(logging.WARNING):
            assert not cache.update_trade("C", 1.0)
            assert not cache.update_trade("C", 2.0)
        assert len(cache) == 2
        assert sum("rejecting C" in r.message for r in caplog.records) == 1

    def test_prices_snapshot(self):
        cache = UnderlyingPriceCache()
        cache.update_trade("QQQ", 560.0)
        cache.update_quote_mid("SPY", 450.0)
        assert cache.prices() == {"QQQ": 560.0, "SPY": 450.0}


class TestIngestion:

    def test_record_without_market_price_is_never_valid(self, store):
        store.on_underlying_trade("QQQ", 560.0)
        assert store.on_quote(CALL, 0.0, 0, 0.0, 0)
        record = store.get(CALL)
        assert record.has_quote
        assert not record.analytics_valid

    def test_trade_before_underlying_is_invalid(self, store):
        assert store.on_trade(CALL, 10.0, 1)
        record = store.get(CALL)
        assert record.has_trade
        assert not record.analytics_valid
        assert record.underlying == "QQQ"
        assert record.strike == 560.0

    def test_trade_recomputes_analytics(self, store):
        store.on_underlying_trade("QQQ", 560.0)
        assert store.on_trade(CALL, fair_price(), 5, "2025-07-01T16:00:00Z", exchange="N", condition="I")

        record = store.get(CALL)
        assert record.analytics_valid
        assert record.analytics.iv_converged
        assert record.analytics.implied_vol == pytest.approx(0.25, abs=1e-4)
        assert record.underlying_price == 560.0
        assert record.days_to_expiry == pytest.approx(31 * 365 / 365.25)
        assert record.trade_exchange == "N"
        assert record.recompute_count == 1

    def test_quote_mid_used_without_trade(self, store):
        store.on_underlying_trade("QQQ", 560.0)
        price = fair_price(strike=550.0, is_call=False)
        store.on_quote(PUT, price - 0.05, 10, price + 0.05, 12)

        record = store.get(PUT)
        assert record.market_price == pytest.approx(price)
        assert record.analytics.implied_vol == pytest.approx(0.25, abs=1e-4)

    def test_expired_contract_is_invalid(self, store):
        store.on_underlying_trade("QQQ", 560.0)
        store.on_trade("QQQ250620C00560000", 1.0, 1)
        assert not store.get("QQQ250620C00560000").analytics_valid

    @pytest.mark.parametrize("price,size", [
        (float("nan"), 1),
        (float("inf"), 1),
        (-1.0, 1),
        (1.0, -5),
    ])
    def test_malformed_trade_dropped(self, store, price, size):
        assert not store.on_trade(CALL, price, size)
        assert CALL not in store
        assert store.dropped_ticks == 1

    def test_malformed_quote_leaves_record_untouched(self, store):
        store.on_quote(CALL, 1.0, 1, 1.2, 1)
        assert not store.on_quote(CALL, float("nan"), 1, 1.2, 1)
        record = store.get(CALL)
        assert record.bid_price == 1.0
        assert store.dropped_ticks == 1

    def test_unparseable_symbol_dropped(self, store):
        assert not store.on_trade("NOTASYMBOL", 1.0, 1)
        assert len(store) == 0
        assert store.dropped_ticks == 1

    def test_capacity(self, clock, caplog):
        config = AnalyticsConfig()
        config.store.max_contracts = 2
        store = AnalyticsStore(config, clock=clock, now=lambda: FIXED_NOW)

        assert store.on_trade("QQQ250801C00560000", 1.0)
        assert store.on_trade("QQQ250801C00565000", 1.0)
        with caplog.at_level(logging.WARNING):
            assert not store.on_trade("QQQ250801C00570000", 1.0)
            assert not store.on_trade("QQQ250801C00570000", 1.0)

        assert store.symbols == ["QQQ250801C00560000", "QQQ250801C00565000"]
        assert sum("rejecting QQQ250801C00570000" in r.message for r in caplog.records) == 1
        # Existing symbols still update
        assert store.on_trade("QQQ250801C00560000", 2.0)


class TestThrottle:

    def test_two_ticks_inside_window_recompute_once(self, store, clock):
        store.on_underlying_trade("QQQ", 560.0)
        store.on_trade(CALL, fair_price(vol=0.25), 1)
        clock.advance(0.05)
        store.on_trade(CALL, fair_price(vol=0.30), 1)

        record = store.get(CALL)
        assert record.recompute_count == 1
        assert record.last_price == pytest.approx(fair_price(vol=0.30))
        assert record.analytics.implied_vol == pytest.approx(0.25, abs=1e-4)

        clock.advance(0.06)
        store.on_trade(CALL, fair_price(vol=0.30), 1)
        record = store.get(CALL)
        assert record.recompute_count == 2
        assert record.analytics.implied_vol == pytest.approx(0.30, abs=1e-4)

    def test_throttle_slot_taken_by_invalid_attempt(self, store, clock):
        store.on_trade(CALL, fair_price(), 1)          # no underlying yet
        store.on_underlying_trade("QQQ", 560.0)
        store.on_trade(CALL, fair_price(), 1)          # same instant, throttled
        assert not store.get(CALL).analytics_valid

        clock.advance(0.2)
        store.on_trade(CALL, fair_price(), 1)
        assert store.get(CALL).analytics_valid

    def test_zero_throttle(self, clock):
        config = AnalyticsConfig()
        config.store.recompute_throttle_ms = 0
        store = AnalyticsStore(config, clock=clock, now=lambda: FIXED_NOW)
        store.on_underlying_trade("QQQ", 560.0)
        for _ in range(3):
            store.on_trade(CALL, fair_price(), 1)
        assert store.get(CALL).recompute_count == 3


class TestPreviousValues:

    def test_previous_analytics_kept(self, store, clock):
        store.on_underlying_trade("QQQ", 560.0)
        store.on_trade(CALL, fair_price(vol=0.25), 1)
        clock.advance(1.0)
        store.on_trade(CALL, fair_price(vol=0.35), 1)

        record = store.get(CALL)
        assert record.previous.analytics.implied_vol == pytest.approx(0.25, abs=1e-4)
        assert record.analytics.implied_vol == pytest.approx(0.35, abs=1e-4)

    def test_previous_spread(self, store, clock):
        store.on_quote(CALL, 1.0, 1, 1.2, 1)
        clock.advance(1.0)
        store.on_quote(CALL, 1.0, 1, 1.3, 1)
        record = store.get(CALL)
        assert record.previous.spread == pytest.approx(0.2)
        assert record.spread == pytest.approx(0.3)


class TestReaders:

    def test_snapshot_is_detached(self, store):
        store.on_underlying_trade("QQQ", 560.0)
        store.on_trade(CALL, fair_price(), 1)

        snap = store.snapshot()
        snap[0].last_price = -1.0
        snap[0].analytics.delta = 99.0

        record = store.get(CALL)
        assert record.last_price == pytest.approx(fair_price())
        assert record.analytics.delta != 99.0

    def test_snapshot_preserves_insertion_order(self, store):
        for symbol in (PUT, CALL, "QQQ250801C00570000"):
            store.on_trade(symbol, 1.0)
        assert [r.symbol for r in store.snapshot()] == [PUT, CALL, "QQQ250801C00570000"]

    def test_concurrent_ingestion(self):
        config = AnalyticsConfig()
        config.store.recompute_throttle_ms = 0
        store = AnalyticsStore(config, now=lambda: FIXED_NOW)
        symbols = [f"QQQ250801C00{strike}000" for strike in (540, 550, 560, 570)]
        errors = []

        def pump_option(symbol):
            try:
                for i in range(200):
                    store.on_trade(symbol, 10.0 + (i % 5) * 0.1, 1)
                    store.on_quote(symbol, 9.9, 5, 10.1, 5)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        def pump_underlying():
            for i in range(400):
                store.on_underlying_trade("QQQ", 555.0 + (i % 10))

        def read():
            for _ in range(100):
                store.snapshot()

        threads = [threading.Thread(target=pump_option, args=(s,)) for s in symbols]
        threads += [threading.Thread(target=pump_underlying), threading.Thread(target=read)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(store) == 4
        assert all(r.has_trade and r.has_quote for r in store.snapshot())
