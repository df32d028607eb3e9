from data.store import AnalyticsStore, UnderlyingPriceCache
from data.ticks import Feed, TickRouter, replay_file
from data.history import HistoricalBarLoader, fetch_daily_bars, fetch_risk_free_rate
from data.mock_feed import MockMarketFeed, build_mock_chain, synthetic_history

__all__ = [
    'AnalyticsStore',
    'UnderlyingPriceCache',
    'Feed',
    'TickRouter',
    'replay_file',
    'HistoricalBarLoader',
    'fetch_daily_bars',
    'fetch_risk_free_rate',
    'MockMarketFeed',
    'build_mock_chain',
    'synthetic_history',
]
