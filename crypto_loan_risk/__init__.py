"""Monte Carlo risk engine for crypto-collateralized loan portfolios.

This package estimates the loss distribution of a book of loans secured by
BTC, ETH and SOL collateral, using correlated GBM collateral prices and a
Student-t copula for borrower defaults.

Main components:
- portfolio: Loan, collateral and Portfolio data structures
- credit_model: Term-structured PD and LGD by rating
- path_generator: Correlated price paths and copula default indicators
- simulation: Monte Carlo simulation engine
- risk_metrics: VaR, CVaR, risk-adjusted ratios, concentration and reports
- margin: Closed-form margin-call and liquidation probabilities
- scenarios: Stress scenarios and the built-in catalog
- engine: RiskEngine facade with loss-distribution caching
"""

from .config import EngineConfig, MarketParameters
from .exceptions import IllConditionedCorrelation, InvalidParameter, RiskEngineError
from .portfolio import (
    AssetType,
    CreditRating,
    CryptoAsset,
    Loan,
    MarginPolicy,
    Portfolio,
    RatingTier,
)
from .credit_model import CreditModel, default_probability, loss_given_default
from .scenarios import ScenarioCatalog, ScenarioParameters, baseline_scenario
from .path_generator import CorrelatedPathGenerator, PricePathSimulation
from .losses import evaluate_trial_loss
from .loss_distribution import (
    conditional_value_at_risk,
    herfindahl_index,
    sharpe_ratio,
    sortino_ratio,
    value_at_risk,
)
from .simulation import MonteCarloEngine, ParallelMonteCarloEngine, SimulationResult
from .margin import BarrierCrossingCalculator, LoanMetrics, MarginEventProbability, loan_metrics
from .risk_metrics import (
    ConcentrationMetrics,
    PortfolioMetrics,
    RiskContribution,
    RiskDecomposition,
    calculate_portfolio_metrics,
    calculate_risk_contributions,
    risk_decomposition,
    create_metrics_report,
    create_contribution_report,
    create_decomposition_report,
    create_scenario_comparison_report,
)
from .engine import RiskEngine
from .log import configure_logging

__version__ = "1.0.0"

__all__ = [
    # Configuration and errors
    "EngineConfig",
    "MarketParameters",
    "RiskEngineError",
    "InvalidParameter",
    "IllConditionedCorrelation",
    # Portfolio
    "AssetType",
    "CryptoAsset",
    "MarginPolicy",
    "RatingTier",
    "CreditRating",
    "Loan",
    "Portfolio",
    # Credit model
    "CreditModel",
    "default_probability",
    "loss_given_default",
    # Scenarios
    "ScenarioParameters",
    "ScenarioCatalog",
    "baseline_scenario",
    # Simulation
    "CorrelatedPathGenerator",
    "PricePathSimulation",
    "evaluate_trial_loss",
    "MonteCarloEngine",
    "ParallelMonteCarloEngine",
    "SimulationResult",
    # Loss distribution
    "value_at_risk",
    "conditional_value_at_risk",
    "sharpe_ratio",
    "sortino_ratio",
    "herfindahl_index",
    # Margin events
    "BarrierCrossingCalculator",
    "MarginEventProbability",
    "LoanMetrics",
    "loan_metrics",
    # Risk metrics
    "ConcentrationMetrics",
    "PortfolioMetrics",
    "RiskContribution",
    "RiskDecomposition",
    "calculate_portfolio_metrics",
    "calculate_risk_contributions",
    "risk_decomposition",
    "create_metrics_report",
    "create_contribution_report",
    "create_decomposition_report",
    "create_scenario_comparison_report",
    # Facade
    "RiskEngine",
    "configure_logging",
]
