"""Tests for risk_metrics.py - portfolio metrics, contributions and reports."""

import math

import pytest
import numpy as np

from crypto_loan_risk import (
    AssetType,
    EngineConfig,
    InvalidParameter,
    MonteCarloEngine,
    Portfolio,
    RiskContribution,
    RiskDecomposition,
    calculate_portfolio_metrics,
    calculate_risk_contributions,
    create_contribution_report,
    create_decomposition_report,
    create_metrics_report,
    create_scenario_comparison_report,
    baseline_scenario,
    risk_decomposition,
)


@pytest.fixture
def multi_loan_result(monte_carlo_engine, multi_loan_portfolio, current_prices):
    """Baseline simulation of the multi-loan portfolio."""
    return monte_carlo_engine.simulate(multi_loan_portfolio, current_prices)


class TestPortfolioMetrics:
    """Tests for calculate_portfolio_metrics."""

    def test_metrics_from_simulation(self, multi_loan_portfolio, multi_loan_result, current_prices):
        """Test metrics read the supplied loss distribution."""
        metrics = calculate_portfolio_metrics(
            multi_loan_portfolio, current_prices, simulation=multi_loan_result
        )
        assert metrics.total_exposure == 1_100_000
        assert metrics.total_collateral_value == pytest.approx(1_520_000)
        assert metrics.aggregate_ltv == pytest.approx(1_100_000 / 1_520_000)
        assert metrics.expected_loss == pytest.approx(multi_loan_result.mean_loss)
        assert metrics.var_95 == multi_loan_result.var_95
        assert metrics.var_99 == multi_loan_result.var_99
        assert metrics.cvar_99 >= metrics.var_99
        assert metrics.var_99 >= metrics.var_95
        assert metrics.horizon_days == 30

    def test_sharpe_formula(self, multi_loan_portfolio, multi_loan_result, current_prices):
        """Test Sharpe compares horizon revenue less EL with the capital hurdle."""
        metrics = calculate_portfolio_metrics(
            multi_loan_portfolio, current_prices, simulation=multi_loan_result
        )
        year_fraction = 30 / 365
        revenue = sum(l.principal * l.lending_rate for l in multi_loan_portfolio) * year_fraction
        hurdle = 0.045 * 250_000 * year_fraction
        expected = (revenue - multi_loan_result.mean_loss - hurdle) / multi_loan_result.loss_std
        assert metrics.sharpe_ratio == pytest.approx(expected)
        assert not math.isnan(metrics.sortino_ratio)

    def test_concentration(self, multi_loan_portfolio, multi_loan_result, current_prices):
        """Test concentration metrics are populated."""
        metrics = calculate_portfolio_metrics(
            multi_loan_portfolio, current_prices, simulation=multi_loan_result
        )
        shares = np.array([600_000, 250_000, 150_000, 100_000]) / 1_100_000
        assert metrics.concentration.borrower_hhi == pytest.approx(np.sum(shares ** 2) * 10_000)
        assert metrics.concentration.asset_concentration[AssetType.BTC] == pytest.approx(
            800_000 / 1_520_000 * 100
        )

    def test_simulates_when_needed(self, multi_loan_portfolio, current_prices, engine_config):
        """Test a baseline simulation is run when none is supplied."""
        metrics = calculate_portfolio_metrics(
            multi_loan_portfolio, current_prices, config=engine_config
        )
        expected = MonteCarloEngine(engine_config).simulate(multi_loan_portfolio, current_prices)
        assert metrics.expected_loss == pytest.approx(expected.mean_loss)
        assert metrics.horizon_days == engine_config.default_horizon_days

    def test_drawdown_uses_stressed_baseline(self, multi_loan_portfolio, current_prices):
        """Test the market drawdown is carried into the simulated baseline."""
        engine = MonteCarloEngine(EngineConfig(num_trials=500, random_state=3))
        stressed = calculate_portfolio_metrics(
            multi_loan_portfolio, current_prices, market_drawdown=0.9, engine=engine
        )
        expected = engine.simulate(multi_loan_portfolio, current_prices, baseline_scenario(0.9))
        calm = engine.simulate(multi_loan_portfolio, current_prices, baseline_scenario())
        assert stressed.expected_loss == pytest.approx(expected.mean_loss)
        assert expected.default_rate > calm.default_rate

    def test_empty_portfolio(self, current_prices):
        """Test an empty portfolio returns all-zero metrics."""
        metrics = calculate_portfolio_metrics(Portfolio(), current_prices)
        assert metrics.total_exposure == 0
        assert metrics.var_95 == 0
        assert metrics.var_99 == 0
        assert metrics.concentration.borrower_hhi == 0
        assert metrics.sharpe_ratio == 0
        assert set(metrics.concentration.asset_concentration) == set(AssetType)

    def test_mismatched_simulation(self, sample_portfolio, multi_loan_result, current_prices):
        """Test a simulation of another portfolio is rejected."""
        with pytest.raises(InvalidParameter, match="different portfolio"):
            calculate_portfolio_metrics(sample_portfolio, current_prices, simulation=multi_loan_result)

    def test_negative_drawdown(self, sample_portfolio, current_prices):
        """Test the market drawdown must be non-negative."""
        with pytest.raises(InvalidParameter):
            calculate_portfolio_metrics(sample_portfolio, current_prices, market_drawdown=-0.2)


class TestRiskContributions:
    """Tests for marginal VaR contributions."""

    def test_one_per_loan(self, multi_loan_portfolio, multi_loan_result):
        """Test a contribution is returned for every loan in order."""
        contributions = calculate_risk_contributions(multi_loan_portfolio, multi_loan_result)
        assert [c.loan_id for c in contributions] == multi_loan_portfolio.loan_ids
        for c in contributions:
            assert c.standalone_var >= 0
            assert c.expected_loss >= 0

    def test_single_loan_carries_all_risk(self, monte_carlo_engine, at_the_money_loan, current_prices):
        """Test a lone loan's marginal VaR equals portfolio VaR."""
        portfolio = Portfolio([at_the_money_loan])
        result = monte_carlo_engine.simulate(portfolio, current_prices)
        (contribution,) = calculate_risk_contributions(portfolio, result, 0.95)
        assert contribution.marginal_var == pytest.approx(result.var_95)
        assert contribution.standalone_var == pytest.approx(result.var_95)
        assert contribution.percent_of_portfolio_risk == pytest.approx(100.0)

    def test_mismatched_simulation(self, sample_portfolio, multi_loan_result):
        """Test contributions need the matching simulation."""
        with pytest.raises(InvalidParameter):
            calculate_risk_contributions(sample_portfolio, multi_loan_result)


class TestRiskDecomposition:
    """Tests for risk decomposition by asset and rating."""

    def test_by_asset(self, multi_loan_portfolio, multi_loan_result):
        """Test decomposition groups loans by collateral asset."""
        decomposition = risk_decomposition(multi_loan_portfolio, multi_loan_result, by="asset")
        by_category = {d.category: d for d in decomposition}
        assert set(by_category) == {"BTC", "ETH", "SOL"}
        assert by_category["ETH"].loan_count == 2
        assert by_category["ETH"].total_exposure == 350_000
        total_el = sum(d.expected_loss for d in decomposition)
        assert total_el == pytest.approx(multi_loan_result.mean_loss)

    def test_by_rating(self, multi_loan_portfolio, multi_loan_result):
        """Test decomposition groups loans by rating tier."""
        decomposition = risk_decomposition(multi_loan_portfolio, multi_loan_result, by="rating")
        assert {d.category for d in decomposition} == {"A", "BBB", "BB", "CCC"}
        assert sum(d.total_exposure for d in decomposition) == multi_loan_portfolio.total_exposure

    def test_horizon_collateral(self, multi_loan_portfolio, multi_loan_result):
        """Test categories carry simulated collateral cover and default rate."""
        decomposition = risk_decomposition(multi_loan_portfolio, multi_loan_result, by="asset")
        btc = next(d for d in decomposition if d.category == "BTC")
        column = multi_loan_result.assets.index(AssetType.BTC)
        expected = np.mean(multi_loan_result.asset_prices[:, column]) * 8
        assert btc.horizon_collateral_value == pytest.approx(expected)
        assert btc.horizon_ltv == pytest.approx(600_000 / expected)
        assert btc.default_rate == pytest.approx(multi_loan_result.get_loan_default_rate("L-1"))

    def test_horizon_ltv_without_collateral(self):
        """Test a category without collateral value has infinite LTV."""
        decomp = RiskDecomposition(
            category="SOL", total_exposure=1e5, expected_loss=0.0,
            var_contribution=0.0, es_contribution=0.0, loan_count=1
        )
        assert math.isinf(decomp.horizon_ltv)

    def test_unknown_category(self, multi_loan_portfolio, multi_loan_result):
        """Test an unknown grouping is rejected."""
        with pytest.raises(ValueError, match="Unknown category type"):
            risk_decomposition(multi_loan_portfolio, multi_loan_result, by="country")

    def test_decomposition_fields(self):
        """Test RiskDecomposition holds its values."""
        decomp = RiskDecomposition(
            category="BTC", total_exposure=1e6, expected_loss=1e4,
            var_contribution=5e4, es_contribution=6e4, loan_count=3
        )
        assert decomp.category == "BTC"
        assert decomp.loan_count == 3


class TestReportFunctions:
    """Tests for report generation functions."""

    def test_metrics_report(self, multi_loan_portfolio, multi_loan_result, current_prices):
        """Test the metrics report lists every headline metric."""
        metrics = calculate_portfolio_metrics(
            multi_loan_portfolio, current_prices, simulation=multi_loan_result
        )
        df = create_metrics_report(metrics)
        assert list(df.columns) == ["Metric", "Value"]
        values = dict(zip(df["Metric"], df["Value"]))
        assert values["VaR_99"] == metrics.var_99
        assert values["Borrower_HHI"] == metrics.concentration.borrower_hhi
        assert "SOL_Concentration_Pct" in values

    def test_contribution_report(self, multi_loan_portfolio, multi_loan_result):
        """Test the contribution report is sorted by marginal VaR."""
        contributions = calculate_risk_contributions(multi_loan_portfolio, multi_loan_result)
        df = create_contribution_report(contributions, multi_loan_portfolio)
        assert len(df) == 4
        assert {"Loan", "Asset", "Rating", "Marginal_VaR", "Diversification_Benefit"} <= set(df.columns)
        assert df["Marginal_VaR"].is_monotonic_decreasing

    def test_contribution_report_values(self, sample_portfolio):
        """Test report rows carry loan attributes."""
        contribution = RiskContribution(
            loan_id="L-BTC-1", borrower_name="Alpha Capital", marginal_var=10.0,
            standalone_var=12.0, expected_loss=1.0, percent_of_portfolio_risk=100.0
        )
        df = create_contribution_report([contribution], sample_portfolio)
        row = df.iloc[0]
        assert row["Asset"] == "BTC"
        assert row["Rating"] == "A"
        assert row["Diversification_Benefit"] == pytest.approx(2.0)

    def test_decomposition_report(self, multi_loan_portfolio, multi_loan_result):
        """Test the decomposition report is sorted by ES contribution."""
        decomposition = risk_decomposition(multi_loan_portfolio, multi_loan_result, by="asset")
        df = create_decomposition_report(decomposition, "Asset")
        assert "Asset" in df.columns
        assert {"EL_Rate", "Horizon_Collateral", "Horizon_LTV", "Default_Rate"} <= set(df.columns)
        assert df["ES_Contribution"].is_monotonic_decreasing
        assert df["Pct_of_ES"].sum() == pytest.approx(100.0)
        assert df["Loans"].sum() == 4

    def test_scenario_comparison_report(self, monte_carlo_engine, multi_loan_portfolio, current_prices):
        """Test scenario comparison has one row per scenario."""
        from crypto_loan_risk import ScenarioCatalog

        catalog = ScenarioCatalog()
        results = {
            sid: monte_carlo_engine.simulate(multi_loan_portfolio, current_prices,
                                             catalog.get_scenario(sid), num_trials=200)
            for sid in ("stable-growth", "covid-crash")
        }
        df = create_scenario_comparison_report(results)
        assert set(df["Scenario"]) == {"stable-growth", "covid-crash"}
        assert df.iloc[0]["Scenario"] == "covid-crash"

    def test_empty_reports(self, sample_portfolio):
        """Test empty inputs give empty frames."""
        assert create_contribution_report([], sample_portfolio).empty
        assert create_decomposition_report([], "Asset").empty
        assert create_scenario_comparison_report({}).empty
