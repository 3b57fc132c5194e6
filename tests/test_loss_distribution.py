"""Tests for loss_distribution.py - VaR, CVaR, ratios and concentration."""

import logging
import math

import pytest
import numpy as np

from crypto_loan_risk import (
    AssetType,
    InvalidParameter,
    Portfolio,
    conditional_value_at_risk,
    sharpe_ratio,
    sortino_ratio,
    value_at_risk,
)
from crypto_loan_risk.loss_distribution import (
    asset_concentration,
    downside_deviation,
    largest_exposure_percent,
    loss_moments,
    var_order_index,
)


class TestValueAtRisk:
    """Tests for empirical VaR and CVaR."""

    def test_order_statistic(self):
        """Test VaR is the ceil(c * N)-th smallest loss."""
        losses = np.arange(1, 11, dtype=float)
        assert value_at_risk(losses, 0.95) == 10.0
        assert value_at_risk(losses, 0.5) == 5.0

    def test_exact_integer_rank(self):
        """Test c * N integer uses the lower order statistic."""
        losses = np.arange(1, 101, dtype=float)
        assert var_order_index(100, 0.95) == 94
        assert value_at_risk(losses, 0.95) == 95.0
        assert value_at_risk(losses, 0.99) == 99.0

    def test_input_order_irrelevant(self):
        """Test VaR does not depend on the order of trials."""
        losses = np.random.default_rng(0).exponential(1000, 500)
        shuffled = np.random.default_rng(1).permutation(losses)
        assert value_at_risk(losses, 0.99) == value_at_risk(shuffled, 0.99)

    def test_cvar_is_tail_mean(self):
        """Test CVaR averages the losses from the VaR order statistic upward."""
        losses = np.arange(1, 101, dtype=float)
        assert conditional_value_at_risk(losses, 0.95) == pytest.approx(np.mean([95, 96, 97, 98, 99, 100]))

    def test_var_monotone_in_confidence(self):
        """Test VaR(c2) >= VaR(c1) for c1 < c2."""
        losses = np.random.default_rng(42).lognormal(10, 1, 1000)
        levels = [0.5, 0.8, 0.9, 0.95, 0.975, 0.99, 0.999]
        vars_ = [value_at_risk(losses, c) for c in levels]
        assert all(b >= a for a, b in zip(vars_, vars_[1:]))

    def test_cvar_at_least_var(self):
        """Test CVaR(c) >= VaR(c)."""
        losses = np.random.default_rng(7).exponential(500, 1000)
        for c in (0.9, 0.95, 0.99):
            assert conditional_value_at_risk(losses, c) >= value_at_risk(losses, c)

    def test_all_zero_losses(self):
        """Test a zero loss distribution has zero VaR and CVaR."""
        zeros = np.zeros(100)
        assert value_at_risk(zeros, 0.99) == 0.0
        assert conditional_value_at_risk(zeros, 0.99) == 0.0

    def test_empty_losses(self):
        """Test an empty loss sequence is rejected."""
        with pytest.raises(InvalidParameter, match="empty"):
            value_at_risk([], 0.95)

    @pytest.mark.parametrize("confidence", [0.0, 1.0, -0.5, 1.5, float("nan")])
    def test_invalid_confidence(self, confidence):
        """Test confidence must lie in (0, 1)."""
        with pytest.raises(InvalidParameter):
            value_at_risk([1.0, 2.0], confidence)

    def test_non_finite_losses(self):
        """Test NaN losses are rejected."""
        with pytest.raises(InvalidParameter, match="non-finite"):
            conditional_value_at_risk([1.0, np.nan], 0.9)


class TestLossMoments:
    """Tests for summary statistics."""

    def test_moments(self):
        """Test moments of a simple sequence."""
        moments = loss_moments([0.0, 0.0, 2.0, 6.0])
        assert moments.mean == pytest.approx(2.0)
        assert moments.median == pytest.approx(1.0)
        assert moments.max == 6.0
        assert moments.probability_of_loss == pytest.approx(0.5)


class TestRiskAdjustedRatios:
    """Tests for Sharpe and Sortino ratios."""

    def test_sharpe(self):
        """Test Sharpe divides excess return by loss volatility."""
        assert sharpe_ratio(15.0, 5.0, [0.0, 2.0]) == pytest.approx(10.0)

    def test_sortino_uses_downside_losses(self):
        """Test Sortino divides by the deviation of positive losses only."""
        losses = [0.0, 0.0, 2.0, 4.0]
        assert downside_deviation(losses) == pytest.approx(1.0)
        assert sortino_ratio(3.0, 1.0, losses) == pytest.approx(2.0)

    def test_downside_threshold(self):
        """Test the minimum acceptable loss filters the downside set."""
        assert downside_deviation([1.0, 2.0, 10.0, 14.0], minimum_acceptable_loss=5.0) == pytest.approx(2.0)

    def test_zero_variance_sentinels(self, caplog):
        """Test zero dispersion yields signed infinity or zero, logged at DEBUG."""
        zeros = np.zeros(10)
        with caplog.at_level(logging.DEBUG, logger="crypto_loan_risk.loss_distribution"):
            assert sharpe_ratio(1.0, 0.0, zeros) == math.inf
            assert sharpe_ratio(0.0, 1.0, zeros) == -math.inf
            assert sharpe_ratio(1.0, 1.0, zeros) == 0.0
        assert "sentinel" in caplog.text

    def test_sortino_no_downside(self):
        """Test Sortino with no positive losses uses the sentinel."""
        assert sortino_ratio(5.0, 1.0, np.zeros(5)) == math.inf
        assert sortino_ratio(1.0, 5.0, [0.0, 0.0]) == -math.inf

    def test_non_finite_return_rejected(self):
        """Test non-finite inputs are rejected."""
        with pytest.raises(InvalidParameter):
            sharpe_ratio(float("inf"), 0.0, [1.0, 2.0])


class TestConcentration:
    """Tests for collateral and borrower concentration."""

    def test_asset_concentration(self, multi_loan_portfolio, current_prices):
        """Test concentration is the share of collateral market value."""
        shares = asset_concentration(multi_loan_portfolio, current_prices)
        total = 800_000 + 360_000 + 225_000 + 135_000
        assert shares[AssetType.BTC] == pytest.approx(800_000 / total * 100)
        assert shares[AssetType.ETH] == pytest.approx(495_000 / total * 100)
        assert sum(shares.values()) == pytest.approx(100.0)

    def test_every_asset_reported(self, sample_portfolio, current_prices):
        """Test unheld assets report zero concentration."""
        shares = asset_concentration(sample_portfolio, current_prices)
        assert set(shares) == set(AssetType)
        assert shares[AssetType.BTC] == pytest.approx(100.0)
        assert shares[AssetType.SOL] == 0.0

    def test_empty_portfolio(self, current_prices):
        """Test an empty portfolio has zero concentration everywhere."""
        assert all(v == 0.0 for v in asset_concentration(Portfolio(), current_prices).values())
        assert largest_exposure_percent(Portfolio()) == 0.0

    def test_largest_exposure(self, multi_loan_portfolio):
        """Test largest single exposure share."""
        assert largest_exposure_percent(multi_loan_portfolio) == pytest.approx(600_000 / 1_100_000 * 100)
