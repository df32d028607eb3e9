"""
Tests for the yfinance-backed history layer. Network calls are patched out.
"""

from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest

from data import history
from data.history import HistoricalBarLoader, fetch_daily_bars, fetch_risk_free_rate, frame_to_bars


def yahoo_frame(rows):
    index = pd.date_range("2025-06-02", periods=len(rows), freq="B")
    frame = pd.DataFrame(rows, columns=["Open", "High", "Low", "Close"], index=index)
    frame["Volume"] = 1_000_000
    return frame


@pytest.fixture
def ticker(monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr(history.yf, "Ticker", MagicMock(return_value=mock))
    return mock


class TestFetchDailyBars:

    def test_normalizes_columns_and_drops_bad_rows(self, ticker):
        ticker.history.return_value = yahoo_frame([
            [100.0, 101.0, 99.0, 100.5],
            [100.5, 102.0, 0.0, 101.0],
            [101.0, np.inf, 100.0, 101.5],
            [101.5, 103.0, 101.0, 102.0],
        ])
        frame = fetch_daily_bars("QQQ", days=30)

        assert list(frame.columns) == ["open", "high", "low", "close"]
        assert len(frame) == 2
        ticker.history.assert_called_once_with(period="30d", interval="1d", auto_adjust=False)

    def test_download_failure_returns_empty(self, ticker):
        ticker.history.side_effect = RuntimeError("rate limited")
        frame = fetch_daily_bars("QQQ")
        assert frame.empty
        assert list(frame.columns) == ["open", "high", "low", "close"]

    def test_empty_history(self, ticker):
        ticker.history.return_value = pd.DataFrame()
        assert fetch_daily_bars("QQQ").empty

    def test_frame_to_bars(self, ticker):
        ticker.history.return_value = yahoo_frame([[100.0, 101.0, 99.0, 100.5]])
        bars = frame_to_bars(fetch_daily_bars("QQQ"))
        assert len(bars) == 1
        assert bars[0].close == 100.5
        assert bars[0].timestamp.year == 2025
        assert bars[0].is_consistent


class TestRiskFreeRate:

    def test_percent_quote_converted(self, ticker):
        ticker.history.return_value = pd.DataFrame({"Close": [4.4, 4.5]})
        assert fetch_risk_free_rate() == pytest.approx(0.045)

    def test_implausible_value_uses_default(self, ticker):
        ticker.history.return_value = pd.DataFrame({"Close": [75.0]})
        assert fetch_risk_free_rate(default=0.04) == 0.04

    def test_error_uses_default(self, ticker):
        ticker.history.side_effect = ConnectionError("offline")
        assert fetch_risk_free_rate() == 0.05


class TestHistoricalBarLoader:

    def test_seeds_sink(self, ticker):
        ticker.history.return_value = yahoo_frame([[100.0, 101.0, 99.0, 100.5]] * 3)
        sink = MagicMock()
        sink.seed_bars.return_value = 3

        seeded = HistoricalBarLoader().seed(sink, ["QQQ"])

        assert seeded == {"QQQ": 3}
        symbol, bars = sink.seed_bars.call_args.args
        assert symbol == "QQQ"
        assert len(bars) == 3

    def test_no_history_seeds_nothing(self, ticker):
        ticker.history.return_value = pd.DataFrame()
        sink = MagicMock()
        assert HistoricalBarLoader().seed(sink, ["QQQ", "SPY"]) == {"QQQ": 0, "SPY": 0}
        sink.seed_bars.assert_not_called()
