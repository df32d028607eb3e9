"""
Tests for the Black-Scholes pricing kernel.
"""

import math

import pytest

from analysis.black_scholes import (
    black_scholes_metrics,
    bs_call_price,
    bs_put_price,
    bs_price,
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

GRID = [
    (100.0, 100.0, 0.25, 0.05, 0.20),
    (100.0, 80.0, 0.50, 0.03, 0.35),
    (100.0, 125.0, 1.00, 0.05, 0.60),
    (560.0, 540.0, 0.08, 0.045, 0.18),
    (25.0, 30.0, 2.00, 0.01, 1.20),
]


def central_diff(f, x, h):
    return (f(x + h) - f(x - h)) / (2.0 * h)


class TestPrices:

    def test_reference_call_value(self):
        assert bs_call_price(100, 100, 0.25, 0.05, 0.2) == pytest.approx(4.615, abs=1e-3)

    @pytest.mark.parametrize("S,K,T,r,sigma", GRID)
    def test_put_call_parity(self, S, K, T, r, sigma):
        call = bs_call_price(S, K, T, r, sigma)
        put = bs_put_price(S, K, T, r, sigma)
        assert call - put == pytest.approx(S - K * math.exp(-r * T), abs=1e-9)

    def test_bs_price_dispatches_on_type(self):
        assert bs_price(100, 95, 0.5, 0.05, 0.3, True) == bs_call_price(100, 95, 0.5, 0.05, 0.3)
        assert bs_price(100, 95, 0.5, 0.05, 0.3, False) == bs_put_price(100, 95, 0.5, 0.05, 0.3)

    def test_prices_bounded(self):
        for S, K, T, r, sigma in GRID:
            call = bs_call_price(S, K, T, r, sigma)
            assert max(S - K * math.exp(-r * T), 0.0) <= call <= S


class TestGreeksAgainstFiniteDifferences:

    @pytest.mark.parametrize("S,K,T,r,sigma", GRID)
    def test_first_order(self, S, K, T, r, sigma):
        h = S * 1e-4
        assert bs_delta_call(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda s: bs_call_price(s, K, T, r, sigma), S, h), rel=1e-5)
        assert bs_delta_put(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda s: bs_put_price(s, K, T, r, sigma), S, h), rel=1e-5, abs=1e-8)
        assert bs_gamma(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda s: bs_delta_call(s, K, T, r, sigma), S, h), rel=1e-5)
        assert bs_vega(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda v: bs_call_price(S, K, T, r, v), sigma, 1e-5), rel=1e-5)

    @pytest.mark.parametrize("S,K,T,r,sigma", GRID)
    def test_theta_is_negative_time_derivative(self, S, K, T, r, sigma):
        h = 1e-5
        assert bs_theta_call(S, K, T, r, sigma) == pytest.approx(
            -central_diff(lambda t: bs_call_price(S, K, t, r, sigma), T, h), rel=1e-4)
        assert bs_theta_put(S, K, T, r, sigma) == pytest.approx(
            -central_diff(lambda t: bs_put_price(S, K, t, r, sigma), T, h), rel=1e-4, abs=1e-6)

    @pytest.mark.parametrize("S,K,T,r,sigma", GRID)
    def test_rho(self, S, K, T, r, sigma):
        h = 1e-6
        assert bs_rho_call(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda x: bs_call_price(S, K, T, x, sigma), r, h), rel=1e-4)
        assert bs_rho_put(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda x: bs_put_price(S, K, T, x, sigma), r, h), rel=1e-4)

    @pytest.mark.parametrize("S,K,T,r,sigma", GRID)
    def test_second_order(self, S, K, T, r, sigma):
        assert bs_vanna(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda v: bs_delta_call(S, K, T, r, v), sigma, 1e-5), rel=1e-4, abs=1e-7)
        assert bs_charm(S, K, T, r, sigma) == pytest.approx(
            -central_diff(lambda t: bs_delta_call(S, K, t, r, sigma), T, 1e-6), rel=1e-4, abs=1e-7)
        assert bs_volga(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda v: bs_vega(S, K, T, r, v), sigma, 1e-5), rel=1e-4, abs=1e-6)

    @pytest.mark.parametrize("S,K,T,r,sigma", GRID)
    def test_third_order(self, S, K, T, r, sigma):
        assert bs_speed(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda s: bs_gamma(s, K, T, r, sigma), S, S * 1e-4), rel=1e-4, abs=1e-9)
        assert bs_zomma(S, K, T, r, sigma) == pytest.approx(
            central_diff(lambda v: bs_gamma(S, K, T, r, v), sigma, 1e-5), rel=1e-4, abs=1e-8)
        assert bs_color(S, K, T, r, sigma) == pytest.approx(
            -central_diff(lambda t: bs_gamma(S, K, t, r, sigma), T, 1e-6), rel=1e-4, abs=1e-8)


class TestMetrics:

    def test_matches_per_value_helpers(self):
        S, K, T, r, sigma = 100.0, 105.0, 0.4, 0.05, 0.3
        call = black_scholes_metrics(S, K, T, r, sigma, True)
        put = black_scholes_metrics(S, K, T, r, sigma, False)

        assert call.implied_vol == sigma
        assert call.call_price == pytest.approx(bs_call_price(S, K, T, r, sigma), abs=1e-12)
        assert put.put_price == pytest.approx(bs_put_price(S, K, T, r, sigma), abs=1e-12)
        assert call.delta == pytest.approx(bs_delta_call(S, K, T, r, sigma), abs=1e-12)
        assert put.delta == pytest.approx(bs_delta_put(S, K, T, r, sigma), abs=1e-12)
        assert call.theta == pytest.approx(bs_theta_call(S, K, T, r, sigma), abs=1e-12)
        assert put.rho == pytest.approx(bs_rho_put(S, K, T, r, sigma), abs=1e-12)
        assert call.speed == pytest.approx(bs_speed(S, K, T, r, sigma), abs=1e-12)

    def test_put_and_call_share_color_and_charm(self):
        call = black_scholes_metrics(100, 90, 0.3, 0.05, 0.25, True)
        put = black_scholes_metrics(100, 90, 0.3, 0.05, 0.25, False)
        assert put.color == call.color
        assert put.charm == call.charm
        assert put.gamma == call.gamma
        assert put.vanna == call.vanna

    def test_delta_difference_is_one(self):
        call = black_scholes_metrics(100, 90, 0.3, 0.05, 0.25, True)
        put = black_scholes_metrics(100, 90, 0.3, 0.05, 0.25, False)
        assert call.delta - put.delta == pytest.approx(1.0, abs=1e-12)

    def test_vanna_sign_follows_d2(self):
        # Spot above strike: d2 > 0, vanna < 0; below: vanna > 0
        assert bs_vanna(120, 100, 0.25, 0.05, 0.2) < 0
        assert bs_vanna(80, 100, 0.25, 0.05, 0.2) > 0


class TestDegenerateInputs:

    def test_expired_is_intrinsic(self):
        assert bs_call_price(110, 100, 0.0, 0.05, 0.2) == 10.0
        assert bs_put_price(110, 100, -1.0, 0.05, 0.2) == 0.0
        assert bs_delta_call(110, 100, 0.0, 0.05, 0.2) == 1.0
        assert bs_delta_put(90, 100, 0.0, 0.05, 0.2) == -1.0
        assert bs_gamma(100, 100, 0.0, 0.05, 0.2) == 0.0

        result = black_scholes_metrics(90, 100, 0.0, 0.05, 0.2, False)
        assert result.put_price == 10.0
        assert result.delta == -1.0
        assert result.gamma == result.vega == result.vanna == result.color == 0.0

    def test_zero_vol_is_discounted_intrinsic(self):
        discounted = 100 * math.exp(-0.05 * 0.5)
        assert bs_call_price(110, 100, 0.5, 0.05, 0.0) == pytest.approx(110 - discounted)
        assert bs_put_price(90, 100, 0.5, 0.05, 0.0) == pytest.approx(discounted - 90)
        assert bs_put_price(99, 100, 0.5, 0.05, 0.0) == 0.0  # 99 > K e^{-rT}

    def test_zero_vol_theta_and_rho(self):
        discounted = 100 * math.exp(-0.05 * 0.5)
        assert bs_theta_call(110, 100, 0.5, 0.05, 0.0) == pytest.approx(-0.05 * discounted)
        assert bs_theta_put(90, 100, 0.5, 0.05, 0.0) == pytest.approx(0.05 * discounted)
        assert bs_theta_call(90, 100, 0.5, 0.05, 0.0) == 0.0
        assert bs_rho_call(110, 100, 0.5, 0.05, 0.0) == pytest.approx(0.5 * discounted)
        assert bs_rho_put(90, 100, 0.5, 0.05, 0.0) == pytest.approx(-0.5 * discounted)

    def test_nonpositive_spot_or_strike_does_not_raise(self):
        result = black_scholes_metrics(0.0, 100, 0.5, 0.05, 0.2, True)
        assert result.call_price == 0.0
        assert result.gamma == 0.0

        result = black_scholes_metrics(100, 0.0, 0.5, 0.05, 0.2, True)
        assert result.call_price == pytest.approx(100.0)
        assert result.delta == 1.0


class TestIndependentOracle:
    """Cross-check against py_vollib's analytical implementation."""

    @pytest.mark.parametrize("S,K,T,r,sigma", GRID)
    def test_prices_and_first_order(self, S, K, T, r, sigma):
        bs = pytest.importorskip("py_vollib.black_scholes")
        analytical = pytest.importorskip("py_vollib.black_scholes.greeks.analytical")

        for flag, is_call in (("c", True), ("p", False)):
            ours = black_scholes_metrics(S, K, T, r, sigma, is_call)
            price = ours.call_price if is_call else ours.put_price

            assert price == pytest.approx(bs.black_scholes(flag, S, K, T, r, sigma), rel=1e-6, abs=1e-9)
            assert ours.delta == pytest.approx(analytical.delta(flag, S, K, T, r, sigma), rel=1e-6, abs=1e-9)
            assert ours.gamma == pytest.approx(analytical.gamma(flag, S, K, T, r, sigma), rel=1e-6)
            # py_vollib: vega and rho per 1%, theta per day
            assert ours.vega == pytest.approx(analytical.vega(flag, S, K, T, r, sigma) * 100, rel=1e-6)
            assert ours.rho == pytest.approx(analytical.rho(flag, S, K, T, r, sigma) * 100, rel=1e-6)
            assert ours.theta == pytest.approx(analytical.theta(flag, S, K, T, r, sigma) * 365, rel=1e-6)
