"""
Implied volatility solver.

Newton-Raphson seeded by the Corrado-Miller approximation, with a bisection
fallback when Newton cannot finish inside its iteration budget. Results are
always bounded to [vol_floor, vol_ceiling]; the solver never raises.
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np

from core.config import PricingConfig
from core.models import BlackScholesResult
from analysis.black_scholes import bs_price, bs_vega, black_scholes_metrics

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def corrado_miller_guess(market_price: float, S: float, K: float, T: float, r: float) -> float:
    """
    Corrado-Miller initial volatility estimate with the log-moneyness correction.

    Uses the forward price F = S e^{rT}. Unclamped; callers bound it.
    """
    sqrt_t = np.sqrt(T)
    forward = S / np.exp(-r * T)
    log_moneyness = np.log(forward / K)

    guess = (np.sqrt(2.0 * np.pi) / sqrt_t) * (market_price - 0.5 * abs(forward - K)) / ((forward + K) / 2.0)
    return float(np.sqrt(guess ** 2 + 2.0 * abs(log_moneyness) / sqrt_t))


def _bisect(
    market_price: float,
    S: float,
    K: float,
    T: float,
    r: float,
    is_call: bool,
    config: PricingConfig
) -> Tuple[float, bool]:
    vol_low, vol_high = config.vol_floor, config.vol_ceiling

    if market_price < bs_price(S, K, T, r, vol_low, is_call):
        return vol_low, False
    if market_price > bs_price(S, K, T, r, vol_high, is_call):
        return vol_high, False

    iterations = 0
    while iterations < config.max_iterations and (vol_high - vol_low) > config.tolerance:
        vol_mid = (vol_low + vol_high) / 2.0
        price_mid = bs_price(S, K, T, r, vol_mid, is_call)

        if abs(price_mid - market_price) < config.tolerance:
            return vol_mid, True

        if price_mid < market_price:
            vol_low = vol_mid
        else:
            vol_high = vol_mid
        iterations += 1

    return (vol_low + vol_high) / 2.0, True


def solve_iv(
    market_price: float,
    S: float,
    K: float,
    T: float,
    r: float,
    is_call: bool,
    config: Optional[PricingConfig] = None
) -> Tuple[float, bool]:
    """
    Solve for the volatility that reproduces market_price.

    Returns:
        (vol, converged). Degenerate inputs and prices at or below intrinsic
        give (vol_floor, False). Answers pinned at a bound are not converged.
    """
    config = config or PricingConfig()

    inputs = (market_price, S, K, T, r)
    if not all(math.isfinite(x) for x in inputs):
        return config.vol_floor, False
    if market_price <= 0 or S <= 0 or K <= 0 or T <= 0:
        return config.vol_floor, False

    intrinsic = max(S - K, 0.0) if is_call else max(K - S, 0.0)
    if market_price <= intrinsic + config.intrinsic_epsilon:
        return config.vol_floor, False

    vol = _clamp(
        corrado_miller_guess(market_price, S, K, T, r),
        config.vol_floor,
        0.5 * config.vol_ceiling,
    )
    if not math.isfinite(vol):
        vol = 0.5 * config.vol_ceiling

    for _ in range(config.max_iterations):
        diff = bs_price(S, K, T, r, vol, is_call) - market_price
        vega = bs_vega(S, K, T, r, vol)

        if abs(diff) < config.tolerance:
            return vol, config.vol_floor < vol < config.vol_ceiling
        if vega < config.min_vega:
            # Flat region; Newton cannot move
            break

        new_vol = _clamp(vol - diff / vega, config.vol_floor, config.vol_ceiling)
        if abs(new_vol - vol) < config.tolerance:
            return new_vol, config.vol_floor < new_vol < config.vol_ceiling
        vol = new_vol

    logger.debug(f"Newton stalled for K={K} T={T:.4f} price={market_price}, bisecting")
    return _bisect(market_price, S, K, T, r, is_call, config)


def compute_analytics(
    market_price: float,
    S: float,
    K: float,
    T: float,
    r: float,
    is_call: bool,
    config: Optional[PricingConfig] = None
) -> BlackScholesResult:
    """Solve IV from the market price, then evaluate every Greek at that IV."""
    vol, converged = solve_iv(market_price, S, K, T, r, is_call, config)
    result = black_scholes_metrics(S, K, T, r, vol, is_call)
    result.iv_converged = converged
    return result
