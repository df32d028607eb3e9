"""
Historical data layer.
Uses yfinance for daily OHLC bars (realized-vol seeding) and the 13-week
T-bill yield (risk-free rate).
"""

import yfinance as yf
import pandas as pd
import numpy as np
from datetime import datetime
from typing import Dict, Iterable, List, Optional
import logging

from core.models import OhlcBar
from core.config import AnalyticsConfig, DEFAULT_CONFIG

logger = logging.getLogger(__name__)

TBILL_SYMBOL = "^IRX"
OHLC_COLUMNS = ["Open", "High", "Low", "Close"]


def fetch_daily_bars(symbol: str, days: int = 90) -> pd.DataFrame:
    """
    Daily OHLC history for `symbol`, oldest first.

    Returns an empty frame (open/high/low/close columns) when the download
    fails or has no usable rows.
    """
    empty = pd.DataFrame(columns=["open", "high", "low", "close"])
    try:
        ticker = yf.Ticker(symbol)
        hist = ticker.history(period=f"{days}d", interval="1d", auto_adjust=False)
    except Exception as e:
        logger.warning(f"Error fetching history for {symbol}: {e}")
        return empty

    if hist is None or hist.empty or not set(OHLC_COLUMNS).issubset(hist.columns):
        logger.warning(f"{symbol}: no daily history returned")
        return empty

    frame = hist[OHLC_COLUMNS].rename(columns=str.lower)
    frame = frame.replace([np.inf, -np.inf], np.nan).dropna()
    frame = frame[(frame > 0).all(axis=1)].sort_index()

    logger.debug(f"{symbol}: {len(frame)} daily bars")
    return frame


def frame_to_bars(frame: pd.DataFrame) -> List[OhlcBar]:
    """Convert an open/high/low/close frame into OhlcBars, oldest first."""
    bars = []
    for ts, row in frame.iterrows():
        timestamp = ts.to_pydatetime() if isinstance(ts, pd.Timestamp) else datetime.now()
        bars.append(OhlcBar(
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            timestamp=timestamp,
        ))
    return bars


def fetch_risk_free_rate(default: float = 0.05) -> float:
    """
    Latest 13-week T-bill yield as a decimal rate.

    ^IRX is quoted in percent; falls back to `default` on any failure.
    """
    try:
        hist = yf.Ticker(TBILL_SYMBOL).history(period="5d")
        if hist is not None and not hist.empty:
            rate = float(hist["Close"].dropna().iloc[-1]) / 100.0
            if 0 <= rate < 0.5:
                logger.info(f"Risk-free rate from {TBILL_SYMBOL}: {rate:.2%}")
                return rate
            logger.warning(f"Implausible {TBILL_SYMBOL} yield {rate:.4f}, using default")
    except Exception as e:
        logger.warning(f"Error fetching risk-free rate: {e}")

    return default


class HistoricalBarLoader:
    """Downloads daily bars and seeds them into a bar sink (StreamAnalyzer or RealizedVolManager)."""

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def load(self, symbol: str) -> List[OhlcBar]:
        return frame_to_bars(fetch_daily_bars(symbol, self.config.stream.history_days))

    def seed(self, sink, symbols: Iterable[str]) -> Dict[str, int]:
        """Seed every symbol; returns accepted bar counts."""
        seeded = {}
        for symbol in symbols:
            bars = self.load(symbol)
            if not bars:
                seeded[symbol] = 0
                continue
            seeded[symbol] = sink.seed_bars(symbol, bars)
        return seeded
