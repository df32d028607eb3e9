"""
Realized volatility engine.

Keeps a rolling window of daily OHLC bars per underlying and derives:
- Parkinson (high-low range) RV over 10/20/30 bars
- RV trend (10d vs 20d)
- Distribution of rolling 20-bar RV (mean/std) for IV percentile ranking

Close-to-close and Garman-Klass estimators are provided alongside Parkinson.
All estimators take bars in chronological order and return 0.0 when fewer than
the minimum number of usable observations exist.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
from scipy.special import erf

from core.config import RealizedVolConfig
from core.models import OhlcBar, RealizedVolStats, IvRvAnalysis, VolRegime

logger = logging.getLogger(__name__)

TRADING_DAYS = 252.0
MIN_OBSERVATIONS = 5


# ============================================================================
# Estimators
# ============================================================================

def parkinson_rv(
    bars: Sequence[OhlcBar],
    annualization: float = TRADING_DAYS,
    min_observations: int = MIN_OBSERVATIONS
) -> float:
    """Parkinson estimator: sqrt(252 * mean(ln(H/L)^2) / (4 ln 2))."""
    usable = [b for b in bars if b.valid and b.high > 0 and b.low > 0 and b.high >= b.low]
    if len(usable) < min_observations:
        return 0.0

    log_hl = np.log(np.array([b.high for b in usable]) / np.array([b.low for b in usable]))
    variance = np.mean(log_hl ** 2) / (4.0 * np.log(2.0))
    return float(np.sqrt(variance * annualization))


def close_to_close_rv(
    bars: Sequence[OhlcBar],
    annualization: float = TRADING_DAYS,
    min_observations: int = MIN_OBSERVATIONS
) -> float:
    """Classic estimator on squared log close-to-close returns."""
    returns = []
    for prev, cur in zip(bars, bars[1:]):
        if not (prev.valid and cur.valid) or prev.close <= 0 or cur.close <= 0:
            continue
        returns.append(np.log(cur.close / prev.close))

    if len(returns) < min_observations:
        return 0.0
    return float(np.sqrt(np.mean(np.square(returns)) * annualization))


def garman_klass_rv(
    bars: Sequence[OhlcBar],
    annualization: float = TRADING_DAYS,
    min_observations: int = MIN_OBSERVATIONS
) -> float:
    """
    Garman-Klass with an overnight gap term:
    ln(O/C_prev)^2 + 0.5 ln(H/L)^2 - (2 ln 2 - 1) ln(C/O)^2, averaged and floored at 0.
    """
    components = []
    for prev, cur in zip(bars, bars[1:]):
        if not (prev.valid and cur.valid) or prev.close <= 0:
            continue
        if min(cur.open, cur.high, cur.low, cur.close) <= 0:
            continue

        overnight = np.log(cur.open / prev.close)
        range_term = np.log(cur.high / cur.low)
        body = np.log(cur.close / cur.open)
        components.append(
            overnight ** 2 + 0.5 * range_term ** 2 - (2.0 * np.log(2.0) - 1.0) * body ** 2
        )

    if len(components) < min_observations:
        return 0.0
    variance = max(float(np.mean(components)), 0.0)
    return float(np.sqrt(variance * annualization))


# ============================================================================
# Per-underlying rolling series
# ============================================================================

class RealizedVolSeries:
    """
    Circular buffer of daily bars for one underlying.

    Metrics are recomputed synchronously on every accepted append. Not
    thread-safe on its own; RealizedVolManager serializes access.
    """

    def __init__(self, symbol: str, config: Optional[RealizedVolConfig] = None):
        self.symbol = symbol
        self.config = config or RealizedVolConfig()
        self._bars = deque(maxlen=self.config.history_window)

        self.rv_10d = 0.0
        self.rv_20d = 0.0
        self.rv_30d = 0.0
        self.rv_trend = 0.0
        self.rv_mean = 0.0
        self.rv_std = 0.0
        self.last_update: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._bars)

    @property
    def bars(self) -> List[OhlcBar]:
        """Bars in chronological order."""
        return list(self._bars)

    def append_bar(
        self,
        open: float,
        high: float,
        low: float,
        close: float,
        timestamp: Optional[datetime] = None
    ) -> bool:
        """Validate and store one bar. Returns False (no side effects) if rejected."""
        bar = OhlcBar(open=open, high=high, low=low, close=close,
                      timestamp=timestamp or datetime.now())
        if not bar.is_consistent:
            logger.debug(f"{self.symbol}: rejecting inconsistent bar O={open} H={high} L={low} C={close}")
            return False

        self._bars.append(bar)
        self.last_update = datetime.now()
        self._recompute()
        return True

    def _parkinson(self, bars: Sequence[OhlcBar]) -> float:
        return parkinson_rv(bars, self.config.annualization, self.config.min_observations)

    def _recompute(self):
        cfg = self.config
        bars = self.bars
        count = len(bars)
        if count < cfg.min_bars_for_metrics:
            return

        if count >= cfg.short_window:
            self.rv_10d = self._parkinson(bars[-cfg.short_window:])
        if count >= cfg.medium_window:
            self.rv_20d = self._parkinson(bars[-cfg.medium_window:])
        if count >= cfg.long_window:
            self.rv_30d = self._parkinson(bars[-cfg.long_window:])

        if self.rv_10d > 0 and self.rv_20d > 0:
            self.rv_trend = (self.rv_10d - self.rv_20d) / self.rv_20d

        if count >= cfg.stats_min_bars:
            # Offset 0 is the most recent window
            window = cfg.medium_window
            rolling = []
            for offset in range(cfg.rolling_offsets):
                end = count - offset
                if end - window < 0:
                    break
                rv = self._parkinson(bars[end - window:end])
                if rv > 0:
                    rolling.append(rv)

            if len(rolling) > cfg.min_rolling_samples:
                self.rv_mean = float(np.mean(rolling))
                self.rv_std = float(np.std(rolling))

    def stats(self) -> RealizedVolStats:
        return RealizedVolStats(
            symbol=self.symbol,
            rv_10d=self.rv_10d,
            rv_20d=self.rv_20d,
            rv_30d=self.rv_30d,
            rv_trend=self.rv_trend,
            rv_mean=self.rv_mean,
            rv_std=self.rv_std,
            bar_count=len(self._bars),
            last_update=self.last_update,
        )


BarInput = Union[OhlcBar, Mapping[str, float]]


class RealizedVolManager:
    """Thread-safe registry of RealizedVolSeries keyed by underlying symbol."""

    def __init__(self, config: Optional[RealizedVolConfig] = None):
        self.config = config or RealizedVolConfig()
        self._series: Dict[str, RealizedVolSeries] = {}
        self._lock = threading.RLock()

    def get_or_create(self, symbol: str) -> RealizedVolSeries:
        with self._lock:
            series = self._series.get(symbol)
            if series is None:
                series = RealizedVolSeries(symbol, self.config)
                self._series[symbol] = series
            return series

    def append_bar(self, symbol: str, open: float, high: float, low: float, close: float,
                   timestamp: Optional[datetime] = None) -> bool:
        with self._lock:
            return self.get_or_create(symbol).append_bar(open, high, low, close, timestamp)

    def seed_bars(self, symbol: str, bars: Iterable[BarInput]) -> int:
        """
        Append historical bars oldest first.

        Accepts OhlcBar objects or mappings with open/high/low/close keys.
        Returns the number of bars accepted.
        """
        accepted = 0
        with self._lock:
            series = self.get_or_create(symbol)
            for bar in bars:
                if isinstance(bar, OhlcBar):
                    ok = series.append_bar(bar.open, bar.high, bar.low, bar.close, bar.timestamp)
                else:
                    try:
                        ok = series.append_bar(
                            float(bar["open"]), float(bar["high"]),
                            float(bar["low"]), float(bar["close"]),
                            bar.get("timestamp"),
                        )
                    except (KeyError, TypeError, ValueError) as e:
                        logger.debug(f"{symbol}: skipping malformed bar {bar!r}: {e}")
                        ok = False
                accepted += int(ok)

        logger.info(f"Seeded {accepted} bars for {symbol}")
        return accepted

    def stats(self, symbol: str) -> Optional[RealizedVolStats]:
        with self._lock:
            series = self._series.get(symbol)
            return series.stats() if series else None

    def all_stats(self) -> Dict[str, RealizedVolStats]:
        with self._lock:
            return {symbol: series.stats() for symbol, series in self._series.items()}

    @property
    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._series)


# ============================================================================
# IV vs RV
# ============================================================================

def analyze_iv_vs_rv(
    implied_vol: float,
    rv: Optional[RealizedVolStats],
    days_to_expiry: float,
    threshold: float = 0.15
) -> IvRvAnalysis:
    """
    Compare implied vol with the realized vol most relevant to the horizon.

    Uses 10d RV under 15 days, 30d RV over 45 days, else 20d. The spread is
    significant when it exceeds `threshold` times the relevant RV.
    """
    if rv is None or implied_vol <= 0 or rv.rv_20d <= 0:
        return IvRvAnalysis()

    relevant_rv = rv.rv_20d
    if days_to_expiry < 15 and rv.rv_10d > 0:
        relevant_rv = rv.rv_10d
    elif days_to_expiry > 45 and rv.rv_30d > 0:
        relevant_rv = rv.rv_30d

    analysis = IvRvAnalysis(
        iv_rv_spread=implied_vol - relevant_rv,
        relevant_rv=relevant_rv,
        iv_percentile=0.5,
    )

    if rv.rv_mean > 0 and rv.rv_std > 0:
        z_score = (implied_vol - rv.rv_mean) / rv.rv_std
        analysis.iv_percentile = float(0.5 * (1.0 + erf(z_score / np.sqrt(2.0))))

        if relevant_rv < rv.rv_mean - 0.5 * rv.rv_std:
            analysis.vol_regime = VolRegime.LOW
        elif relevant_rv > rv.rv_mean + 0.5 * rv.rv_std:
            analysis.vol_regime = VolRegime.HIGH
        else:
            analysis.vol_regime = VolRegime.NORMAL

    spread_threshold = relevant_rv * threshold

    if analysis.iv_rv_spread > spread_threshold:
        analysis.signal = "EXPENSIVE"
        if analysis.iv_percentile > 0.8:
            analysis.recommendation = "SELL VOL - IV extremely rich vs RV"
        else:
            analysis.recommendation = "SHORT BIAS - IV moderately expensive"
    elif analysis.iv_rv_spread < -spread_threshold:
        analysis.signal = "CHEAP"
        if analysis.iv_percentile < 0.2:
            analysis.recommendation = "BUY VOL - IV extremely cheap vs RV"
        else:
            analysis.recommendation = "LONG BIAS - IV moderately cheap"
    else:
        analysis.signal = "NEUTRAL"
        analysis.recommendation = "FAIR VALUE - IV in line with RV"

    if rv.rv_trend > 0.2:
        analysis.recommendation += " (RV rising)"
    elif rv.rv_trend < -0.2:
        analysis.recommendation += " (RV falling)"

    return analysis
