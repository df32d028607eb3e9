"""
Configuration management for the options stream analytics engine.
All thresholds are configurable and can be modified at startup.
"""

from dataclasses import dataclass, field
from typing import List

from core.symbols import extract_underlying


@dataclass
class PricingConfig:
    """Black-Scholes kernel and implied volatility solver settings."""
    vol_floor: float = 0.001      # 0.1% minimum vol
    vol_ceiling: float = 5.0      # 500% maximum vol
    tolerance: float = 1e-6
    max_iterations: int = 100
    min_vega: float = 1e-10       # Below this Newton stops (flat region)
    intrinsic_epsilon: float = 1e-6


@dataclass
class StoreConfig:
    """Analytics record store capacity and recompute throttling."""
    max_contracts: int = 100
    max_underlyings: int = 50

    # Per-symbol minimum spacing between analytics recomputes.
    # Heuristic, not load-tested; tune for the feed's burstiness.
    recompute_throttle_ms: float = 100.0

    @property
    def recompute_throttle_seconds(self) -> float:
        return self.recompute_throttle_ms / 1000.0


@dataclass
class RealizedVolConfig:
    """Realized volatility engine settings."""
    history_window: int = 252     # 1 year of daily bars
    min_observations: int = 5
    annualization: float = 252.0
    short_window: int = 10
    medium_window: int = 20
    long_window: int = 30
    min_bars_for_metrics: int = 10
    stats_min_bars: int = 60
    rolling_offsets: int = 40
    min_rolling_samples: int = 10


@dataclass
class SmileConfig:
    """Volatility smile construction and pattern detection thresholds."""
    min_points: int = 3
    max_points: int = 50
    skew_threshold: float = 0.02    # 2% IV difference for skew detection
    smile_threshold: float = 0.01   # 1% IV difference for smile detection
    atm_tolerance: float = 0.01     # Within 1% moneyness counts as ATM
    otm_put_moneyness: float = 0.95
    otm_call_moneyness: float = 1.05

    # Anomaly screening
    extreme_skew: float = 0.05
    alert_skew: float = 0.03
    min_r_squared: float = 0.7
    poor_fit_r_squared: float = 0.5
    min_points_for_fit_check: int = 5
    extreme_vol_range: float = 0.10


@dataclass
class DislocationConfig:
    """Thresholds for Greek and IV/RV dislocation screening."""
    atm_band: float = 0.02              # |S/K - 1| inside this skips vanna sign test
    excessive_vanna: float = 2.0
    normal_volga: float = 20.0
    high_volga_multiple: float = 2.0
    low_volga_multiple: float = 0.1
    min_time_for_low_volga: float = 0.02   # ~1 week in years
    excessive_charm: float = 200.0
    min_time_for_charm_sign: float = 0.02
    min_volga_for_ratio: float = 0.001
    vanna_volga_low: float = 0.05
    vanna_volga_high: float = 0.5
    iv_rv_threshold: float = 0.15       # Fraction of RV

    # Recommendation mapping thresholds
    strong_vanna: float = 5.0
    risk_vanna: float = 10.0
    rich_volga: float = 40.0
    cheap_volga: float = 2.0
    risk_volga: float = 100.0


@dataclass
class StreamConfig:
    """Runtime cadence for the reader thread and the mock feed."""
    analysis_interval_seconds: float = 10.0
    display_interval_seconds: float = 1.0
    mock_interval_seconds: float = 2.0
    mock_volatility_factor: float = 0.02
    mock_symbol_delay_seconds: float = 0.05
    history_days: int = 90


@dataclass
class AnalyticsConfig:
    """Main configuration container."""
    pricing: PricingConfig = field(default_factory=PricingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    realized_vol: RealizedVolConfig = field(default_factory=RealizedVolConfig)
    smile: SmileConfig = field(default_factory=SmileConfig)
    dislocation: DislocationConfig = field(default_factory=DislocationConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)

    risk_free_rate: float = 0.05

    # Option symbols to stream; empty means the mock feed builds its own chain
    symbols: List[str] = field(default_factory=list)

    def get_underlyings(self) -> List[str]:
        """Distinct underlyings referenced by the configured option symbols."""
        seen = []
        for symbol in self.symbols:
            underlying = extract_underlying(symbol)
            if underlying and underlying not in seen:
                seen.append(underlying)
        return seen


DEFAULT_CONFIG = AnalyticsConfig()
