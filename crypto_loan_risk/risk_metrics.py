"""Portfolio risk metrics, loan risk contributions and tabular reports."""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from .config import EngineConfig
from .exceptions import InvalidParameter, require_non_negative
from .loss_distribution import (
    asset_concentration,
    conditional_value_at_risk,
    herfindahl_index,
    largest_exposure_percent,
    sharpe_ratio,
    sortino_ratio,
    value_at_risk,
)
from .portfolio import AssetType, Portfolio
from .scenarios import baseline_scenario
from .simulation import MonteCarloEngine, SimulationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConcentrationMetrics:
    """Concentration of the portfolio.

    Attributes:
        asset_concentration: Percent of collateral market value per asset
        borrower_hhi: Herfindahl-Hirschman Index over loans (0-10,000)
        largest_exposure_percent: Largest single principal as percent of total
    """
    asset_concentration: Dict[AssetType, float]
    borrower_hhi: float
    largest_exposure_percent: float


@dataclass(frozen=True)
class PortfolioMetrics:
    """Risk metrics derived from a portfolio snapshot and its loss distribution."""
    total_exposure: float
    total_collateral_value: float
    aggregate_ltv: float
    expected_loss: float
    var_95: float
    var_99: float
    cvar_95: float
    cvar_99: float
    sharpe_ratio: float
    sortino_ratio: float
    concentration: ConcentrationMetrics
    horizon_days: float


@dataclass
class RiskContribution:
    """Incremental VaR contribution of one loan.

    Attributes:
        loan_id: Loan identifier
        borrower_name: Borrower of the loan
        marginal_var: VaR(portfolio) - VaR(portfolio without the loan)
        standalone_var: VaR of the loan's own losses
        expected_loss: Mean simulated loss on the loan
        percent_of_portfolio_risk: marginal_var as percent of portfolio VaR
    """
    loan_id: str
    borrower_name: str
    marginal_var: float
    standalone_var: float
    expected_loss: float
    percent_of_portfolio_risk: float


@dataclass
class RiskDecomposition:
    """Risk decomposition by collateral asset or rating.

    Attributes:
        category: Asset symbol or rating tier
        total_exposure: Total principal in this category
        expected_loss: Expected loss contribution
        var_contribution: VaR of the category's own losses
        es_contribution: Category loss averaged over the portfolio tail
        loan_count: Number of loans in category
        horizon_collateral_value: Mean simulated collateral value at the horizon
        default_rate: Simulated default frequency across the category's loans
    """
    category: str
    total_exposure: float
    expected_loss: float
    var_contribution: float
    es_contribution: float
    loan_count: int
    horizon_collateral_value: float = 0.0
    default_rate: float = 0.0

    @property
    def horizon_ltv(self) -> float:
        """Category principal over its mean simulated collateral value."""
        if self.horizon_collateral_value <= 0:
            return math.inf
        return self.total_exposure / self.horizon_collateral_value


def _check_alignment(portfolio: Portfolio, simulation: SimulationResult) -> None:
    if tuple(portfolio.loan_ids) != tuple(simulation.loan_ids):
        raise InvalidParameter("Simulation was produced for a different portfolio")


def _empty_metrics(horizon_days: float) -> PortfolioMetrics:
    return PortfolioMetrics(
        total_exposure=0.0,
        total_collateral_value=0.0,
        aggregate_ltv=0.0,
        expected_loss=0.0,
        var_95=0.0,
        var_99=0.0,
        cvar_95=0.0,
        cvar_99=0.0,
        sharpe_ratio=0.0,
        sortino_ratio=0.0,
        concentration=ConcentrationMetrics(
            asset_concentration={asset: 0.0 for asset in AssetType},
            borrower_hhi=0.0,
            largest_exposure_percent=0.0,
        ),
        horizon_days=horizon_days,
    )


def calculate_portfolio_metrics(portfolio: Portfolio,
                                current_prices: Mapping[AssetType, float],
                                market_drawdown: float = 0.0,
                                simulation: Optional[SimulationResult] = None,
                                horizon_days: Optional[float] = None,
                                config: Optional[EngineConfig] = None,
                                engine: Optional[MonteCarloEngine] = None) -> PortfolioMetrics:
    """Calculate comprehensive portfolio risk metrics.

    Uses ``simulation`` when given; otherwise simulates the baseline scenario
    with ``market_drawdown`` applied. Sharpe and Sortino compare, in USD over
    the horizon, interest revenue less expected loss against the cost of the
    risk capital.

    Args:
        portfolio: Portfolio snapshot
        current_prices: Current USD price per asset
        market_drawdown: Market stress level for wrong-way PD risk
        simulation: Precomputed loss distribution for this portfolio
        horizon_days: Horizon when simulating (default from config)
        config: Engine configuration
        engine: Engine used when a simulation is needed

    Returns:
        PortfolioMetrics
    """
    config = config or (engine.config if engine is not None else EngineConfig())
    require_non_negative("Market drawdown", market_drawdown)
    horizon_days = horizon_days or (
        simulation.horizon_days if simulation is not None else config.default_horizon_days
    )

    if len(portfolio) == 0:
        logger.info("Empty portfolio; returning zero metrics")
        return _empty_metrics(horizon_days)

    if simulation is None:
        engine = engine or MonteCarloEngine(config)
        simulation = engine.simulate(
            portfolio, current_prices, baseline_scenario(market_drawdown), horizon_days
        )
    _check_alignment(portfolio, simulation)
    horizon_days = simulation.horizon_days

    losses = simulation.trial_losses
    year_fraction = horizon_days / 365
    total_exposure = portfolio.total_exposure
    total_collateral = portfolio.total_collateral_value(current_prices)
    revenue = sum(l.principal * l.lending_rate for l in portfolio) * year_fraction
    expected_loss = simulation.mean_loss
    expected_return = revenue - expected_loss
    hurdle = config.risk_free_rate * portfolio.risk_capital * year_fraction

    return PortfolioMetrics(
        total_exposure=total_exposure,
        total_collateral_value=total_collateral,
        aggregate_ltv=total_exposure / total_collateral if total_collateral > 0 else float("inf"),
        expected_loss=expected_loss,
        var_95=value_at_risk(losses, 0.95),
        var_99=value_at_risk(losses, 0.99),
        cvar_95=conditional_value_at_risk(losses, 0.95),
        cvar_99=conditional_value_at_risk(losses, 0.99),
        sharpe_ratio=sharpe_ratio(expected_return, hurdle, losses),
        sortino_ratio=sortino_ratio(expected_return, hurdle, losses),
        concentration=ConcentrationMetrics(
            asset_concentration=asset_concentration(portfolio, current_prices),
            borrower_hhi=herfindahl_index(portfolio),
            largest_exposure_percent=largest_exposure_percent(portfolio),
        ),
        horizon_days=horizon_days,
    )


def calculate_risk_contributions(portfolio: Portfolio, simulation: SimulationResult,
                                 confidence: float = 0.95) -> List[RiskContribution]:
    """Marginal VaR of every loan.

    Removing a loan's loss column from the same trials gives the portfolio
    loss without that loan under common random numbers.

    Args:
        portfolio: The simulated portfolio
        simulation: Its loss distribution
        confidence: Confidence level for VaR

    Returns:
        List of RiskContribution in portfolio order
    """
    _check_alignment(portfolio, simulation)
    base_var = simulation.get_var(confidence)
    results = []
    for idx, loan in enumerate(portfolio):
        loan_losses = simulation.loan_losses[:, idx]
        reduced_var = value_at_risk(simulation.trial_losses - loan_losses, confidence)
        marginal_var = base_var - reduced_var
        results.append(RiskContribution(
            loan_id=loan.loan_id,
            borrower_name=loan.borrower_name,
            marginal_var=marginal_var,
            standalone_var=value_at_risk(loan_losses, confidence),
            expected_loss=float(np.mean(loan_losses)),
            percent_of_portfolio_risk=marginal_var / base_var * 100 if base_var > 0 else 0.0
        ))
    return results


def risk_decomposition(portfolio: Portfolio, simulation: SimulationResult,
                       by: str = "asset", confidence: float = 0.99) -> List[RiskDecomposition]:
    """Decompose portfolio risk by collateral asset or rating tier.

    Args:
        portfolio: The simulated portfolio
        simulation: Its loss distribution
        by: 'asset' or 'rating'
        confidence: Confidence level

    Returns:
        List of RiskDecomposition
    """
    _check_alignment(portfolio, simulation)
    if by == "asset":
        get_category = lambda l: l.asset_type.value
    elif by == "rating":
        get_category = lambda l: l.rating.tier.value
    else:
        raise ValueError(f"Unknown category type: {by}")

    loans = portfolio.loans
    categories = sorted({get_category(l) for l in loans})
    tail_mask = simulation.trial_losses >= simulation.get_var(confidence)
    # trials x loans collateral value at the simulated horizon prices
    asset_columns = [simulation.assets.index(l.asset_type) for l in loans]
    quantities = np.array([l.collateral.quantity for l in loans], dtype=float)
    collateral_values = simulation.asset_prices[:, asset_columns] * quantities

    results = []
    for category in categories:
        category_mask = np.array([get_category(l) == category for l in loans])
        category_losses = np.sum(simulation.loan_losses[:, category_mask], axis=1)
        tail_losses = category_losses[tail_mask]
        var_contribution = value_at_risk(category_losses, confidence)

        results.append(RiskDecomposition(
            category=category,
            total_exposure=sum(l.principal for l in loans if get_category(l) == category),
            expected_loss=float(np.mean(category_losses)),
            var_contribution=var_contribution,
            es_contribution=float(np.mean(tail_losses)) if len(tail_losses) > 0 else var_contribution,
            loan_count=int(np.sum(category_mask)),
            horizon_collateral_value=float(np.mean(np.sum(collateral_values[:, category_mask], axis=1))),
            default_rate=float(np.mean(simulation.default_indicators[:, category_mask]))
        ))

    return results


def create_metrics_report(metrics: PortfolioMetrics) -> pd.DataFrame:
    """One-row-per-metric DataFrame of ``metrics``."""
    rows = [
        ("Total_Exposure", metrics.total_exposure),
        ("Total_Collateral_Value", metrics.total_collateral_value),
        ("Aggregate_LTV", metrics.aggregate_ltv),
        ("Expected_Loss", metrics.expected_loss),
        ("VaR_95", metrics.var_95),
        ("VaR_99", metrics.var_99),
        ("CVaR_95", metrics.cvar_95),
        ("CVaR_99", metrics.cvar_99),
        ("Sharpe_Ratio", metrics.sharpe_ratio),
        ("Sortino_Ratio", metrics.sortino_ratio),
        ("Borrower_HHI", metrics.concentration.borrower_hhi),
        ("Largest_Exposure_Pct", metrics.concentration.largest_exposure_percent),
    ]
    rows.extend(
        (f"{asset.value}_Concentration_Pct", share)
        for asset, share in metrics.concentration.asset_concentration.items()
    )
    return pd.DataFrame(rows, columns=["Metric", "Value"])


def create_contribution_report(contributions: List[RiskContribution],
                               portfolio: Portfolio) -> pd.DataFrame:
    """Create a DataFrame report of loan risk contributions.

    Args:
        contributions: List of RiskContribution
        portfolio: The portfolio (for additional loan info)

    Returns:
        DataFrame sorted by marginal VaR, largest first
    """
    data = []
    for result in contributions:
        loan = portfolio.get_loan(result.loan_id)
        data.append({
            'Loan': result.loan_id,
            'Borrower': result.borrower_name,
            'Asset': loan.asset_type.value,
            'Rating': loan.rating.tier.value,
            'Principal': loan.principal,
            'Expected_Loss': result.expected_loss,
            'Standalone_VaR': result.standalone_var,
            'Marginal_VaR': result.marginal_var,
            'Pct_of_Portfolio_Risk': result.percent_of_portfolio_risk,
            'Diversification_Benefit': result.standalone_var - result.marginal_var
        })

    df = pd.DataFrame(data)
    if not df.empty:
        df = df.sort_values('Marginal_VaR', ascending=False)
    return df


def create_decomposition_report(decompositions: List[RiskDecomposition],
                                category_name: str) -> pd.DataFrame:
    """Per-category table of exposure, horizon collateral cover and tail risk.

    ``Pct_of_ES`` is each category's share of the summed ES contributions.
    Rows are sorted by ES contribution, largest first.
    """
    total_es = sum(d.es_contribution for d in decompositions)
    df = pd.DataFrame([
        {
            category_name: d.category,
            'Loans': d.loan_count,
            'Principal': d.total_exposure,
            'Horizon_Collateral': d.horizon_collateral_value,
            'Horizon_LTV': d.horizon_ltv,
            'Default_Rate': d.default_rate,
            'Expected_Loss': d.expected_loss,
            'EL_Rate': d.expected_loss / d.total_exposure if d.total_exposure > 0 else 0.0,
            'VaR_Contribution': d.var_contribution,
            'ES_Contribution': d.es_contribution,
            'Pct_of_ES': d.es_contribution / total_es * 100 if total_es > 0 else 0.0,
        }
        for d in decompositions
    ])
    if df.empty:
        return df
    return df.sort_values('ES_Contribution', ascending=False, ignore_index=True)


def create_scenario_comparison_report(results: Mapping[str, SimulationResult]) -> pd.DataFrame:
    """Compare loss statistics across scenarios, most severe VaR99 first."""
    data = []
    for scenario_id, result in results.items():
        stats = result.statistics()
        data.append({
            'Scenario': scenario_id,
            'Mean_Loss': stats['mean_loss'],
            'VaR_95': stats['var_95'],
            'VaR_99': stats['var_99'],
            'CVaR_95': stats['cvar_95'],
            'CVaR_99': stats['cvar_99'],
            'Max_Loss': stats['max_loss'],
            'Prob_of_Loss': stats['probability_of_loss'],
            'Default_Rate': result.default_rate,
        })

    df = pd.DataFrame(data)
    if not df.empty:
        df = df.sort_values('VaR_99', ascending=False)
    return df
