"""Risk engine facade: loss distributions, portfolio metrics and margin events."""

import logging
from collections import OrderedDict
from typing import Dict, Mapping, Optional, Tuple

from .config import EngineConfig, MarketParameters
from .credit_model import CreditModel
from .margin import BarrierCrossingCalculator, MarginEventProbability
from .portfolio import AssetType, Loan, Portfolio
from .risk_metrics import PortfolioMetrics, calculate_portfolio_metrics
from .scenarios import ScenarioCatalog, ScenarioParameters, baseline_scenario
from .simulation import MonteCarloEngine, ParallelMonteCarloEngine, SimulationResult

logger = logging.getLogger(__name__)

CacheKey = Tuple[Portfolio, Tuple[Tuple[str, float], ...], ScenarioParameters, float, int]


class RiskEngine:
    """Entry point for portfolio risk calculations.

    Loss distributions are cached per (portfolio, prices, scenario, horizon,
    trial count) so that metrics requested after a simulation reuse its
    trials. The cache holds at most ``config.cache_size`` entries and evicts
    the least recently used.
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 market: Optional[MarketParameters] = None,
                 credit_model: Optional[CreditModel] = None,
                 catalog: Optional[ScenarioCatalog] = None,
                 parallel: bool = False):
        """Initialize the engine.

        Args:
            config: Engine configuration
            market: Asset volatilities, drifts and correlations
            credit_model: PD / LGD model
            catalog: Scenario catalog (built-in scenarios by default)
            parallel: Run trials on worker threads
        """
        self.config = config or EngineConfig()
        self.market = market or MarketParameters()
        self.credit_model = credit_model or CreditModel()
        self.catalog = catalog or ScenarioCatalog()
        engine_cls = ParallelMonteCarloEngine if parallel else MonteCarloEngine
        self.simulator = engine_cls(self.config, self.market, self.credit_model)
        self.barrier = BarrierCrossingCalculator(self.market, self.config)
        self._cache: "OrderedDict[CacheKey, SimulationResult]" = OrderedDict()

    def get_scenario(self, scenario_id: str) -> ScenarioParameters:
        return self.catalog.get_scenario(scenario_id)

    def _cache_key(self, portfolio: Portfolio, current_prices: Mapping[AssetType, float],
                   scenario: ScenarioParameters, horizon_days: float) -> CacheKey:
        prices = tuple(sorted((AssetType(a).value, float(p)) for a, p in current_prices.items()))
        num_trials = scenario.num_trials or self.config.num_trials
        return portfolio, prices, scenario, float(horizon_days), int(num_trials)

    def _loss_distribution(self, portfolio: Portfolio, current_prices: Mapping[AssetType, float],
                           scenario: ScenarioParameters, horizon_days: float) -> SimulationResult:
        key = self._cache_key(portfolio, current_prices, scenario, horizon_days)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for scenario '%s' (%d loans)",
                         scenario.scenario_id, len(portfolio))
            self._cache.move_to_end(key)
            return cached

        result = self.simulator.simulate(portfolio, current_prices, scenario, horizon_days)
        if self.config.cache_size > 0:
            self._cache[key] = result
            while len(self._cache) > self.config.cache_size:
                self._cache.popitem(last=False)
        return result

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        """Number of cached loss distributions."""
        return len(self._cache)

    def simulate_portfolio_loss(self, portfolio: Portfolio,
                                current_prices: Mapping[AssetType, float],
                                scenario: Optional[ScenarioParameters] = None,
                                horizon_days: float = 30) -> SimulationResult:
        """Simulate the portfolio loss distribution under a scenario.

        Args:
            portfolio: Loan portfolio
            current_prices: Current USD price per collateral asset
            scenario: Stress scenario (baseline when omitted)
            horizon_days: Horizon in days

        Returns:
            SimulationResult with ``config.num_trials`` trials unless the
            scenario overrides the count
        """
        return self._loss_distribution(
            portfolio, current_prices, scenario or baseline_scenario(), horizon_days
        )

    def calculate_portfolio_metrics(self, portfolio: Portfolio,
                                    current_prices: Mapping[AssetType, float],
                                    market_drawdown: float = 0.0,
                                    scenario: Optional[ScenarioParameters] = None,
                                    horizon_days: float = 30) -> PortfolioMetrics:
        """Portfolio risk metrics.

        With ``scenario`` the loss distribution of that scenario is used
        (from the cache when already simulated); otherwise a baseline
        scenario carrying ``market_drawdown`` is simulated.
        """
        scenario = scenario or baseline_scenario(market_drawdown)
        simulation = None
        if len(portfolio) > 0:
            simulation = self._loss_distribution(portfolio, current_prices, scenario, horizon_days)
        return calculate_portfolio_metrics(
            portfolio, current_prices, market_drawdown,
            simulation=simulation, horizon_days=horizon_days, config=self.config
        )

    def margin_event_probability(self, loan: Loan, current_price: float,
                                 horizon_days: float) -> MarginEventProbability:
        """Margin-call and liquidation probabilities for one loan."""
        return self.barrier.margin_event_probability(loan, current_price, horizon_days)

    def run_scenarios(self, portfolio: Portfolio, current_prices: Mapping[AssetType, float],
                      scenario_ids=None, horizon_days: float = 30) -> Dict[str, SimulationResult]:
        """Loss distribution for each catalog scenario (all when ``scenario_ids`` is None)."""
        ids = scenario_ids if scenario_ids is not None else self.catalog.scenario_ids
        return {
            scenario_id: self.simulate_portfolio_loss(
                portfolio, current_prices, self.get_scenario(scenario_id), horizon_days
            )
            for scenario_id in ids
        }
