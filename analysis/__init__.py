from analysis.black_scholes import (
    black_scholes_metrics,
    bs_price,
    bs_call_price,
    bs_put_price,
    bs_delta_call,
    bs_delta_put,
    bs_gamma,
    bs_vega,
    bs_theta_call,
    bs_theta_put,
    bs_rho_call,
    bs_rho_put,
    bs_vanna,
    bs_charm,
    bs_volga,
    bs_speed,
    bs_zomma,
    bs_color,
)
from analysis.implied_vol import solve_iv, compute_analytics, corrado_miller_guess
from analysis.realized_vol import (
    RealizedVolSeries,
    RealizedVolManager,
    parkinson_rv,
    close_to_close_rv,
    garman_klass_rv,
    analyze_iv_vs_rv,
)
from analysis.volatility_smile import SmileConstructor, interpolate_atm_vol, fit_r_squared
from analysis.dislocation import DislocationAnalyzer, generate_recommendations

__all__ = [
    # Pricing kernel
    'black_scholes_metrics',
    'bs_price',
    'bs_call_price',
    'bs_put_price',
    'bs_delta_call',
    'bs_delta_put',
    'bs_gamma',
    'bs_vega',
    'bs_theta_call',
    'bs_theta_put',
    'bs_rho_call',
    'bs_rho_put',
    'bs_vanna',
    'bs_charm',
    'bs_volga',
    'bs_speed',
    'bs_zomma',
    'bs_color',
    # IV solver
    'solve_iv',
    'compute_analytics',
    'corrado_miller_guess',
    # Realized vol
    'RealizedVolSeries',
    'RealizedVolManager',
    'parkinson_rv',
    'close_to_close_rv',
    'garman_klass_rv',
    'analyze_iv_vs_rv',
    # Smiles and dislocations
    'SmileConstructor',
    'interpolate_atm_vol',
    'fit_r_squared',
    'DislocationAnalyzer',
    'generate_recommendations',
]
