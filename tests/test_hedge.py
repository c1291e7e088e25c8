"""
Unit tests for signals/hedge.py – log-space OLS hedge ratio and role inversion.
"""
import numpy as np
import pytest

from signals.errors import DegenerateDistribution
from signals.hedge import HedgeEstimate, HedgeRoles, estimate_hedge, log_ols_slope

_X = 5.0 + 0.5 * np.sin(np.arange(50) / 3.0)


class TestLogOlsSlope:

    def test_power_law_slope_is_exponent(self):
        # Y = 3 * X^2  ->  log Y = log 3 + 2 log X
        assert log_ols_slope(3.0 * _X ** 2, _X) == pytest.approx(2.0, abs=1e-9)

    def test_intercept_is_discarded(self):
        a = log_ols_slope(_X ** 1.5, _X)
        b = log_ols_slope(100.0 * _X ** 1.5, _X)
        assert a == pytest.approx(b, abs=1e-9)

    def test_negative_slope(self):
        assert log_ols_slope(1.0 / _X, _X) == pytest.approx(-1.0, abs=1e-9)

    def test_constant_x_is_degenerate(self):
        with pytest.raises(DegenerateDistribution):
            log_ols_slope(np.full(50, 10.0), np.full(50, 5.0))

    def test_constant_y_gives_zero_slope(self):
        assert log_ols_slope(np.full(50, 10.0), _X) == pytest.approx(0.0, abs=1e-12)

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            log_ols_slope(_X[:10], _X)

    def test_needs_two_points(self):
        with pytest.raises(ValueError):
            log_ols_slope(_X[:1], _X[:1])


class TestHedgeEstimate:

    def test_positive_slope_keeps_roles(self):
        h = estimate_hedge(_X ** 2, _X)
        assert h.beta_raw == pytest.approx(2.0)
        assert h.beta_used == pytest.approx(2.0)
        assert h.inverted is False
        assert h.roles is HedgeRoles.NORMAL

    def test_negative_slope_inverts_roles(self):
        h = estimate_hedge(1.0 / _X ** 0.5, _X)
        assert h.beta_raw == pytest.approx(-0.5)
        assert h.beta_used == pytest.approx(0.5)
        assert h.beta_used == abs(h.beta_raw)
        assert h.inverted is True

    @pytest.mark.parametrize("slope,inverted", [
        (1.3, False),
        (0.0, False),
        (-0.0001, True),
        (-4.2, True),
    ])
    def test_sign_normalization(self, slope, inverted):
        h = HedgeEstimate.from_slope(slope)
        assert h.beta_used == pytest.approx(abs(slope))
        assert h.beta_used >= 0.0
        assert h.inverted is inverted

    def test_recompute_is_deterministic(self):
        y, x = 2.0 * _X ** 1.7, _X
        assert estimate_hedge(y, x) == estimate_hedge(y.copy(), x.copy())


class TestHedgeRoles:

    def test_normal_keeps_order(self):
        assert HedgeRoles.NORMAL.assign("POPCAT-USD", "PNUT-USD") == ("POPCAT-USD", "PNUT-USD")

    def test_inverted_swaps(self):
        assert HedgeRoles.INVERTED.assign(10.0, 5.0) == (5.0, 10.0)
