"""
Black-Scholes pricing kernel.

European options, no dividends (q = 0). Pure functions of (S, K, T, r, sigma):
- Theoretical call/put prices
- 1st order Greeks: delta, gamma, theta, vega, rho
- 2nd order Greeks: vanna, charm, volga
- 3rd order Greeks: speed, zomma, color

Degenerate inputs never raise:
- T <= 0: intrinsic value, delta is the moneyness indicator, other Greeks 0
- sigma <= 0 (or S <= 0, K <= 0): deterministic discounted-intrinsic limit

Units: theta and charm per year, vega/volga per 1.00 of vol, rho per 1.00 of rate.
"""

import logging
from typing import Tuple

import numpy as np
from scipy.stats import norm

from core.models import BlackScholesResult

logger = logging.getLogger(__name__)


def _is_expired(T: float) -> bool:
    return T <= 0


def _is_deterministic(S: float, K: float, sigma: float) -> bool:
    return sigma <= 0 or S <= 0 or K <= 0


def _d1_d2(S: float, K: float, T: float, r: float, sigma: float) -> Tuple[float, float]:
    sigma_sqrt_t = sigma * np.sqrt(T)
    d1 = (np.log(S / K) + (r + 0.5 * sigma ** 2) * T) / sigma_sqrt_t
    return float(d1), float(d1 - sigma_sqrt_t)


# ============================================================================
# Closed forms on precomputed d1/d2
# ============================================================================

def _call_price(S, K, T, r, d1, d2):
    return S * norm.cdf(d1) - K * np.exp(-r * T) * norm.cdf(d2)


def _put_price(S, K, T, r, d1, d2):
    return K * np.exp(-r * T) * norm.cdf(-d2) - S * norm.cdf(-d1)


def _gamma(S, T, sigma, d1):
    return norm.pdf(d1) / (S * sigma * np.sqrt(T))


def _vega(S, T, d1):
    return S * norm.pdf(d1) * np.sqrt(T)


def _theta_call(S, K, T, r, sigma, d1, d2):
    decay = -(S * norm.pdf(d1) * sigma) / (2.0 * np.sqrt(T))
    return decay - r * K * np.exp(-r * T) * norm.cdf(d2)


def _theta_put(S, K, T, r, sigma, d1, d2):
    decay = -(S * norm.pdf(d1) * sigma) / (2.0 * np.sqrt(T))
    return decay + r * K * np.exp(-r * T) * norm.cdf(-d2)


def _vanna(sigma, d1, d2):
    return -norm.pdf(d1) * d2 / sigma


def _charm(T, r, sigma, d1, d2):
    # Identical for calls and puts when q = 0
    sigma_sqrt_t = sigma * np.sqrt(T)
    return -norm.pdf(d1) * (2.0 * r * T - d2 * sigma_sqrt_t) / (2.0 * T * sigma_sqrt_t)


def _volga(S, T, sigma, d1, d2):
    return _vega(S, T, d1) * d1 * d2 / sigma


def _speed(S, T, sigma, d1):
    return -_gamma(S, T, sigma, d1) / S * (d1 / (sigma * np.sqrt(T)) + 1.0)


def _zomma(S, T, sigma, d1, d2):
    return _gamma(S, T, sigma, d1) * (d1 * d2 - 1.0) / sigma


def _color(S, T, r, sigma, d1, d2):
    # Identical for calls and puts
    sigma_sqrt_t = sigma * np.sqrt(T)
    bracket = 1.0 + d1 * (2.0 * r * T - d2 * sigma_sqrt_t) / sigma_sqrt_t
    return -norm.pdf(d1) / (2.0 * S * T * sigma_sqrt_t) * bracket


# ============================================================================
# Public per-value helpers
# ============================================================================

def bs_call_price(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return max(S - K, 0.0)
    if _is_deterministic(S, K, sigma):
        return max(S - K * np.exp(-r * T), 0.0)
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_call_price(S, K, T, r, d1, d2))


def bs_put_price(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return max(K - S, 0.0)
    if _is_deterministic(S, K, sigma):
        return max(K * np.exp(-r * T) - S, 0.0)
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_put_price(S, K, T, r, d1, d2))


def bs_price(S: float, K: float, T: float, r: float, sigma: float, is_call: bool) -> float:
    return bs_call_price(S, K, T, r, sigma) if is_call else bs_put_price(S, K, T, r, sigma)


def bs_delta_call(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return 1.0 if S > K else 0.0
    if _is_deterministic(S, K, sigma):
        return 1.0 if S > K * np.exp(-r * T) else 0.0
    d1, _ = _d1_d2(S, K, T, r, sigma)
    return float(norm.cdf(d1))


def bs_delta_put(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return -1.0 if S < K else 0.0
    if _is_deterministic(S, K, sigma):
        return -1.0 if S < K * np.exp(-r * T) else 0.0
    d1, _ = _d1_d2(S, K, T, r, sigma)
    return float(norm.cdf(d1) - 1.0)


def bs_gamma(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, _ = _d1_d2(S, K, T, r, sigma)
    return float(_gamma(S, T, sigma, d1))


def bs_vega(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, _ = _d1_d2(S, K, T, r, sigma)
    return float(_vega(S, T, d1))


def bs_theta_call(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return 0.0
    if _is_deterministic(S, K, sigma):
        discounted = K * np.exp(-r * T)
        return float(-r * discounted) if S > discounted else 0.0
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_theta_call(S, K, T, r, sigma, d1, d2))


def bs_theta_put(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return 0.0
    if _is_deterministic(S, K, sigma):
        discounted = K * np.exp(-r * T)
        return float(r * discounted) if S < discounted else 0.0
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_theta_put(S, K, T, r, sigma, d1, d2))


def bs_rho_call(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return 0.0
    if _is_deterministic(S, K, sigma):
        discounted = K * np.exp(-r * T)
        return float(T * discounted) if S > discounted else 0.0
    _, d2 = _d1_d2(S, K, T, r, sigma)
    return float(K * T * np.exp(-r * T) * norm.cdf(d2))


def bs_rho_put(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T):
        return 0.0
    if _is_deterministic(S, K, sigma):
        discounted = K * np.exp(-r * T)
        return float(-T * discounted) if S < discounted else 0.0
    _, d2 = _d1_d2(S, K, T, r, sigma)
    return float(-K * T * np.exp(-r * T) * norm.cdf(-d2))


def bs_vanna(S: float, K: float, T: float, r: float, sigma: float) -> float:
    """Sensitivity of delta to volatility (same for calls and puts)."""
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_vanna(sigma, d1, d2))


def bs_charm(S: float, K: float, T: float, r: float, sigma: float) -> float:
    """Delta decay per year; calls and puts share it with no dividends."""
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_charm(T, r, sigma, d1, d2))


def bs_volga(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_volga(S, T, sigma, d1, d2))


def bs_speed(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, _ = _d1_d2(S, K, T, r, sigma)
    return float(_speed(S, T, sigma, d1))


def bs_zomma(S: float, K: float, T: float, r: float, sigma: float) -> float:
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_zomma(S, T, sigma, d1, d2))


def bs_color(S: float, K: float, T: float, r: float, sigma: float) -> float:
    """Gamma decay per year (same for calls and puts)."""
    if _is_expired(T) or _is_deterministic(S, K, sigma):
        return 0.0
    d1, d2 = _d1_d2(S, K, T, r, sigma)
    return float(_color(S, T, r, sigma, d1, d2))


# ============================================================================
# Full evaluation
# ============================================================================

def black_scholes_metrics(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    is_call: bool
) -> BlackScholesResult:
    """
    Prices and every Greek at one volatility.

    d1/d2 are computed once and shared by all Greeks. The implied_vol field is
    set to sigma; iv_converged is left to the caller.
    """
    result = BlackScholesResult(implied_vol=sigma)

    if _is_expired(T) or _is_deterministic(S, K, sigma):
        result.call_price = bs_call_price(S, K, T, r, sigma)
        result.put_price = bs_put_price(S, K, T, r, sigma)
        if is_call:
            result.delta = bs_delta_call(S, K, T, r, sigma)
            result.theta = bs_theta_call(S, K, T, r, sigma)
            result.rho = bs_rho_call(S, K, T, r, sigma)
        else:
            result.delta = bs_delta_put(S, K, T, r, sigma)
            result.theta = bs_theta_put(S, K, T, r, sigma)
            result.rho = bs_rho_put(S, K, T, r, sigma)
        return result

    d1, d2 = _d1_d2(S, K, T, r, sigma)

    result.call_price = float(_call_price(S, K, T, r, d1, d2))
    result.put_price = float(_put_price(S, K, T, r, d1, d2))

    if is_call:
        result.delta = float(norm.cdf(d1))
        result.theta = float(_theta_call(S, K, T, r, sigma, d1, d2))
        result.rho = float(K * T * np.exp(-r * T) * norm.cdf(d2))
    else:
        result.delta = float(norm.cdf(d1) - 1.0)
        result.theta = float(_theta_put(S, K, T, r, sigma, d1, d2))
        result.rho = float(-K * T * np.exp(-r * T) * norm.cdf(-d2))

    result.gamma = float(_gamma(S, T, sigma, d1))
    result.vega = float(_vega(S, T, d1))

    result.vanna = float(_vanna(sigma, d1, d2))
    result.charm = float(_charm(T, r, sigma, d1, d2))
    result.volga = float(_volga(S, T, sigma, d1, d2))

    result.speed = float(_speed(S, T, sigma, d1))
    result.zomma = float(_zomma(S, T, sigma, d1, d2))
    result.color = float(_color(S, T, r, sigma, d1, d2))

    return result
