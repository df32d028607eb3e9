from core.config import (
    AnalyticsConfig,
    PricingConfig,
    StoreConfig,
    RealizedVolConfig,
    SmileConfig,
    DislocationConfig,
    StreamConfig,
    DEFAULT_CONFIG
)
from core.models import (
    OptionType,
    OptionSymbol,
    BlackScholesResult,
    ContractRecord,
    PreviousValues,
    UnderlyingPrice,
    OhlcBar,
    RealizedVolStats,
    IvRvAnalysis,
    VolRegime,
    SmilePoint,
    VolatilitySmile,
    TermStructure,
    SmileAlert,
    DislocationAlert,
    AnalysisResult
)
from core.symbols import (
    parse_option_symbol,
    build_option_symbol,
    extract_underlying,
    format_option_symbol,
    time_to_expiry_years,
)

__all__ = [
    'AnalyticsConfig',
    'PricingConfig',
    'StoreConfig',
    'RealizedVolConfig',
    'SmileConfig',
    'DislocationConfig',
    'StreamConfig',
    'DEFAULT_CONFIG',
    'OptionType',
    'OptionSymbol',
    'BlackScholesResult',
    'ContractRecord',
    'PreviousValues',
    'UnderlyingPrice',
    'OhlcBar',
    'RealizedVolStats',
    'IvRvAnalysis',
    'VolRegime',
    'SmilePoint',
    'VolatilitySmile',
    'TermStructure',
    'SmileAlert',
    'DislocationAlert',
    'AnalysisResult',
    'parse_option_symbol',
    'build_option_symbol',
    'extract_underlying',
    'format_option_symbol',
    'time_to_expiry_years',
]
