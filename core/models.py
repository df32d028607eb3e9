"""
Data models for the options stream analytics engine.
Dataclasses for the shared record table and the derived read-only views.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, date
from enum import Enum
from typing import Optional, List, Dict, Iterator, Any


class OptionType(Enum):
    CALL = "call"
    PUT = "put"

    @property
    def code(self) -> str:
        """Single-letter code used in OCC-style symbols."""
        return "C" if self is OptionType.CALL else "P"

    @classmethod
    def from_code(cls, code: str) -> "OptionType":
        return cls.CALL if code.upper() == "C" else cls.PUT


class VolRegime(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class OptionSymbol:
    """Parsed components of an option symbol such as QQQ250801C00560000."""
    symbol: str
    underlying: str
    expiry: str  # YYMMDD
    option_type: OptionType
    strike: float

    @property
    def is_call(self) -> bool:
        return self.option_type == OptionType.CALL

    @property
    def expiration(self) -> date:
        return datetime.strptime(self.expiry, "%y%m%d").date()


@dataclass
class BlackScholesResult:
    """Implied volatility plus Greeks of orders 1-3 for one contract."""
    call_price: float = 0.0
    put_price: float = 0.0
    implied_vol: float = 0.0
    iv_converged: bool = False

    # 1st order
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0   # Per year
    vega: float = 0.0    # Per 1.00 change in vol
    rho: float = 0.0

    # 2nd order
    vanna: float = 0.0   # d2V/dS dsigma
    charm: float = 0.0   # d2V/dS dt
    volga: float = 0.0   # d2V/dsigma2

    # 3rd order
    speed: float = 0.0   # d3V/dS3
    zomma: float = 0.0   # d3V/dS2 dsigma
    color: float = 0.0   # d3V/dS2 dt


@dataclass
class PreviousValues:
    """Last displayed analytics, kept for change highlighting."""
    spread: float = 0.0
    analytics: Optional[BlackScholesResult] = None


@dataclass
class ContractRecord:
    """Latest market data and derived analytics for one option symbol."""
    symbol: str
    underlying: str
    expiry: str
    strike: float
    option_type: OptionType

    # Trade data
    last_price: float = 0.0
    last_size: int = 0
    trade_exchange: str = ""
    trade_condition: str = ""
    trade_time: str = ""
    has_trade: bool = False

    # Quote data
    bid_price: float = 0.0
    bid_size: int = 0
    bid_exchange: str = ""
    ask_price: float = 0.0
    ask_size: int = 0
    ask_exchange: str = ""
    quote_condition: str = ""
    quote_time: str = ""
    has_quote: bool = False

    # Black-Scholes analytics
    analytics: BlackScholesResult = field(default_factory=BlackScholesResult)
    underlying_price: float = 0.0
    time_to_expiry: float = 0.0  # Years
    analytics_valid: bool = False
    last_recompute: Optional[float] = None  # Monotonic seconds
    recompute_count: int = 0

    previous: PreviousValues = field(default_factory=PreviousValues)

    @property
    def is_call(self) -> bool:
        return self.option_type == OptionType.CALL

    @property
    def mid_price(self) -> float:
        if self.has_quote and self.bid_price > 0 and self.ask_price > 0:
            return (self.bid_price + self.ask_price) / 2.0
        return 0.0

    @property
    def spread(self) -> float:
        if self.has_quote and self.bid_price > 0 and self.ask_price > 0:
            return self.ask_price - self.bid_price
        return 0.0

    @property
    def market_price(self) -> float:
        """Last trade if one exists, else quote mid; 0.0 when neither is usable."""
        if self.has_trade and self.last_price > 0:
            return self.last_price
        return self.mid_price

    @property
    def moneyness(self) -> float:
        """Strike / underlying price."""
        if self.underlying_price <= 0:
            return 0.0
        return self.strike / self.underlying_price

    @property
    def is_itm(self) -> bool:
        if self.is_call:
            return self.underlying_price > self.strike
        return self.underlying_price < self.strike

    @property
    def days_to_expiry(self) -> float:
        return self.time_to_expiry * 365.0

    @property
    def has_fresh_analytics(self) -> bool:
        return self.analytics_valid and self.analytics.iv_converged

    def copy(self) -> "ContractRecord":
        """Detached copy safe to read outside the store lock."""
        return replace(
            self,
            analytics=replace(self.analytics),
            previous=PreviousValues(
                spread=self.previous.spread,
                analytics=replace(self.previous.analytics) if self.previous.analytics else None,
            ),
        )


@dataclass
class UnderlyingPrice:
    """Price cache entry for one underlying; guarded by its own lock."""
    symbol: str
    last_price: float = 0.0
    timestamp: str = ""
    is_valid: bool = False
    has_trade: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


@dataclass
class OhlcBar:
    """Single daily OHLC observation."""
    open: float
    high: float
    low: float
    close: float
    timestamp: datetime = field(default_factory=datetime.now)
    valid: bool = True

    @property
    def is_consistent(self) -> bool:
        """Positive prices with high/low bracketing open and close."""
        if min(self.open, self.high, self.low, self.close) <= 0:
            return False
        return (self.high >= max(self.open, self.close, self.low)
                and self.low <= min(self.open, self.close, self.high))


@dataclass
class RealizedVolStats:
    """Read-only copy of one underlying's realized volatility metrics."""
    symbol: str
    rv_10d: float = 0.0
    rv_20d: float = 0.0
    rv_30d: float = 0.0
    rv_trend: float = 0.0   # Positive = RV increasing
    rv_mean: float = 0.0    # Mean of rolling 20d RV
    rv_std: float = 0.0
    bar_count: int = 0
    last_update: Optional[datetime] = None


@dataclass
class IvRvAnalysis:
    """Implied vs realized volatility comparison for one contract."""
    iv_rv_spread: float = 0.0      # IV - RV (positive = expensive vol)
    relevant_rv: float = 0.0
    iv_percentile: float = 0.0     # IV percentile vs historical RV
    vol_regime: VolRegime = VolRegime.UNKNOWN
    signal: str = "NO_DATA"        # "EXPENSIVE", "CHEAP", "NEUTRAL", "NO_DATA"
    recommendation: str = "Insufficient RV data"


@dataclass
class SmilePoint:
    """One implied volatility observation on a smile."""
    strike: float
    implied_vol: float
    moneyness: float
    time_to_expiry: float
    option_type: OptionType
    quality: int = 1  # 1 = good, 0 = questionable


@dataclass
class VolatilitySmile:
    """IV across strikes for one (underlying, expiry)."""
    underlying: str
    expiry: str
    time_to_expiry: float = 0.0
    underlying_price: float = 0.0
    points: List[SmilePoint] = field(default_factory=list)

    atm_vol: float = 0.0
    put_skew: float = 0.0         # ATM - OTM put
    call_skew: float = 0.0        # OTM call - ATM
    smile_curvature: float = 0.0  # Second derivative at ATM
    min_vol: float = 0.0
    max_vol: float = 0.0

    has_put_skew: bool = False
    has_call_skew: bool = False
    has_smile: bool = False
    is_inverted: bool = False

    r_squared: float = 0.0
    sufficient_data: bool = False
    last_update: Optional[datetime] = None

    @property
    def key(self) -> tuple:
        return (self.underlying, self.expiry)

    @property
    def point_count(self) -> int:
        return len(self.points)


@dataclass
class TermStructure:
    """ATM volatility across expiries for one underlying."""
    underlying: str
    atm_by_expiry: Dict[str, float] = field(default_factory=dict)
    slope: float = 0.0          # ATM IV change per year of expiry
    backwardation: bool = False  # Shorter-term IV above longer-term


@dataclass
class SmileAlert:
    """Pattern worth flagging on a smile."""
    underlying: str
    expiry: str
    pattern: str
    atm_vol: float
    put_skew: float
    call_skew: float
    r_squared: float


@dataclass
class DislocationAlert:
    """Greek and IV/RV dislocation flags for one contract in one cycle."""
    symbol: str
    vanna_anomaly: bool = False
    volga_anomaly: bool = False
    charm_anomaly: bool = False
    iv_rv_anomaly: bool = False
    vanna_volga_ratio: float = 0.0
    iv_rv_spread: float = 0.0
    rv_signal: str = ""
    messages: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def has_anomaly(self) -> bool:
        return self.vanna_anomaly or self.volga_anomaly or self.charm_anomaly or self.iv_rv_anomaly

    @property
    def alert_message(self) -> str:
        return " ".join(self.messages)

    @property
    def trade_recommendation(self) -> str:
        return "\n".join(f"• {line}" for line in self.recommendations)


@dataclass
class AnalysisResult:
    """Output of one analysis cycle. Unpacks as (smiles, alerts)."""
    generated_at: datetime
    smiles: List[VolatilitySmile] = field(default_factory=list)
    alerts: List[DislocationAlert] = field(default_factory=list)
    term_structures: Dict[str, TermStructure] = field(default_factory=dict)
    smile_alerts: List[SmileAlert] = field(default_factory=list)
    contracts_analyzed: int = 0

    def __iter__(self) -> Iterator[Any]:
        yield self.smiles
        yield self.alerts

    @property
    def anomaly_count(self) -> int:
        return sum(1 for a in self.alerts if a.has_anomaly)
