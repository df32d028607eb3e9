"""
Main Stream Analytics Orchestrator.

Owns the record store, realized vol engine, smile constructor and
dislocation analyzer, and exposes the push interface feeds write into.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd

from core.config import AnalyticsConfig, DEFAULT_CONFIG
from core.models import AnalysisResult, ContractRecord, RealizedVolStats
from core.symbols import format_option_symbol
from data.store import AnalyticsStore, UnderlyingPriceCache
from analysis.realized_vol import RealizedVolManager
from analysis.volatility_smile import SmileConstructor
from analysis.dislocation import DislocationAnalyzer

logger = logging.getLogger(__name__)


class StreamAnalyzer:
    """
    Live options analytics engine.

    Workflow:
    1. Feeds push option and underlying ticks (on_trade, on_quote, ...)
    2. The store recomputes IV and Greeks per contract, rate limited
    3. Historical bars seed the realized vol engine
    4. run_analysis_cycle() snapshots the table and builds smiles,
       term structures and dislocation alerts off-lock
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or DEFAULT_CONFIG

        self.prices = UnderlyingPriceCache(self.config.store.max_underlyings)
        self.store = AnalyticsStore(self.config, self.prices, clock=clock, now=now)
        self.realized_vol = RealizedVolManager(self.config.realized_vol)
        self.smile_constructor = SmileConstructor(self.config.smile)
        self.dislocation_analyzer = DislocationAnalyzer(self.config.dislocation)

        self.last_result: Optional[AnalysisResult] = None

    @property
    def risk_free_rate(self) -> float:
        return self.store.risk_free_rate

    def set_risk_free_rate(self, rate: float):
        """Set once at startup, before ticks arrive."""
        self.store.risk_free_rate = rate
        logger.info(f"Risk-free rate set to {rate:.2%}")

    # ------------------------------------------------------------------
    # Push interface
    # ------------------------------------------------------------------

    def on_trade(self, symbol: str, price: float, size: int = 0, timestamp: str = "",
                 exchange: str = "", condition: str = "") -> bool:
        return self.store.on_trade(symbol, price, size, timestamp, exchange, condition)

    def on_quote(self, symbol: str, bid: float, bid_size: int, ask: float, ask_size: int,
                 timestamp: str = "", bid_exchange: str = "", ask_exchange: str = "",
                 condition: str = "") -> bool:
        return self.store.on_quote(symbol, bid, bid_size, ask, ask_size, timestamp,
                                   bid_exchange, ask_exchange, condition)

    def on_underlying_trade(self, symbol: str, price: float, timestamp: str = "") -> bool:
        return self.store.on_underlying_trade(symbol, price, timestamp)

    def on_underlying_quote_mid(self, symbol: str, mid_price: float, timestamp: str = "") -> bool:
        return self.store.on_underlying_quote_mid(symbol, mid_price, timestamp)

    def seed_bars(self, symbol: str, bars: Iterable) -> int:
        return self.realized_vol.seed_bars(symbol, bars)

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self) -> List[ContractRecord]:
        return self.store.snapshot()

    def rv_stats(self) -> Dict[str, RealizedVolStats]:
        return self.realized_vol.all_stats()

    def snapshot_frame(self, records: Optional[List[ContractRecord]] = None) -> pd.DataFrame:
        """Flat DataFrame of the current records, one row per contract."""
        records = records if records is not None else self.snapshot()
        rows = []
        for r in records:
            bs = r.analytics
            rows.append({
                'symbol': r.symbol,
                'description': format_option_symbol(r.symbol),
                'underlying': r.underlying,
                'expiry': r.expiry,
                'strike': r.strike,
                'type': r.option_type.value,
                'last': r.last_price,
                'bid': r.bid_price,
                'ask': r.ask_price,
                'spread': r.spread,
                'underlying_price': r.underlying_price,
                'dte': r.days_to_expiry,
                'valid': r.analytics_valid,
                'iv': bs.implied_vol,
                'iv_converged': bs.iv_converged,
                'delta': bs.delta,
                'gamma': bs.gamma,
                'theta': bs.theta,
                'vega': bs.vega,
                'rho': bs.rho,
                'vanna': bs.vanna,
                'charm': bs.charm,
                'volga': bs.volga,
                'speed': bs.speed,
                'zomma': bs.zomma,
                'color': bs.color,
            })
        return pd.DataFrame(rows)

    def run_analysis_cycle(self) -> AnalysisResult:
        """
        Snapshot the table and run smile and dislocation analysis on the copy.

        The store lock is held only for the copy.
        """
        records = self.snapshot()
        rv_stats = self.rv_stats()

        result = AnalysisResult(generated_at=datetime.now())
        result.contracts_analyzed = sum(1 for r in records if r.has_fresh_analytics)

        result.smiles = self.smile_constructor.build_smiles(records)
        result.term_structures = self.smile_constructor.term_structures(result.smiles)
        result.smile_alerts = self.smile_constructor.smile_alerts(result.smiles)
        result.alerts = self.dislocation_analyzer.analyze_all(records, rv_stats)

        logger.debug(
            f"Analysis cycle: {result.contracts_analyzed}/{len(records)} contracts, "
            f"{len(result.smiles)} smiles, {result.anomaly_count} dislocations"
        )
        self.last_result = result
        return result


class AnalyticsReader:
    """
    Periodic analysis thread.

    Runs a cycle every `interval` seconds until `stop_event` is set and hands
    each AnalysisResult to `callback`.
    """

    def __init__(
        self,
        analyzer: StreamAnalyzer,
        interval: float,
        stop_event: threading.Event,
        callback: Optional[Callable[[AnalysisResult], None]] = None
    ):
        self.analyzer = analyzer
        self.interval = interval
        self.stop_event = stop_event
        self.callback = callback
        self.cycles = 0
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        while not self.stop_event.wait(self.interval):
            try:
                result = self.analyzer.run_analysis_cycle()
                self.cycles += 1
                if self.callback:
                    self.callback(result)
            except Exception as e:
                logger.error(f"Analysis cycle failed: {e}", exc_info=True)

    def start(self):
        self._thread = threading.Thread(target=self._run, name="analytics-reader", daemon=True)
        self._thread.start()
        logger.info(f"Analytics reader running every {self.interval:.1f}s")

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)
