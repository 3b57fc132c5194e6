"""Monte Carlo simulation engine for crypto-collateralized loan portfolios."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from os import cpu_count
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import EngineConfig, MarketParameters
from .credit_model import CreditModel
from .exceptions import InvalidParameter, require_non_negative, require_positive
from .loss_distribution import (
    conditional_value_at_risk,
    loss_moments,
    value_at_risk,
)
from .losses import LoanArrays, evaluate_batch_losses
from .path_generator import CorrelatedPathGenerator
from .portfolio import AssetType, Portfolio, price_for
from .scenarios import ScenarioParameters, baseline_scenario

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SimulationResult:
    """Results from a Monte Carlo simulation.

    Arrays are read-only; a result is never modified after construction.

    Attributes:
        trial_losses: Portfolio loss per trial, in trial order
        loan_losses: Loss per trial per loan (trials x loans)
        default_indicators: Boolean defaults (trials x loans)
        asset_prices: Simulated terminal prices (trials x assets)
        loan_ids: Loan id per column of the loan arrays
        assets: Asset per column of ``asset_prices``
        num_trials: Number of trials simulated
        horizon_days: Simulation horizon in days
        scenario_id: Scenario the trials were drawn under
        seed: Engine seed the per-trial streams were derived from
    """
    trial_losses: np.ndarray
    loan_losses: np.ndarray
    default_indicators: np.ndarray
    asset_prices: np.ndarray
    loan_ids: Tuple[str, ...]
    assets: Tuple[AssetType, ...]
    num_trials: int
    horizon_days: float
    scenario_id: str
    seed: int

    def __post_init__(self):
        for name in ("trial_losses", "loan_losses", "default_indicators", "asset_prices"):
            getattr(self, name).setflags(write=False)
        if len(self.trial_losses) != self.num_trials:
            raise ValueError(
                f"Expected {self.num_trials} trial losses, got {len(self.trial_losses)}"
            )

    @property
    def mean_loss(self) -> float:
        """Average loss across all trials."""
        return float(np.mean(self.trial_losses))

    @property
    def loss_std(self) -> float:
        """Standard deviation of losses."""
        return float(np.std(self.trial_losses))

    def get_var(self, confidence: float = 0.99) -> float:
        """Value at Risk at specified confidence level."""
        return value_at_risk(self.trial_losses, confidence)

    def get_expected_shortfall(self, confidence: float = 0.99) -> float:
        """Expected Shortfall (CVaR) at specified confidence level."""
        return conditional_value_at_risk(self.trial_losses, confidence)

    @property
    def var_95(self) -> float:
        return self.get_var(0.95)

    @property
    def var_99(self) -> float:
        return self.get_var(0.99)

    @property
    def cvar_95(self) -> float:
        return self.get_expected_shortfall(0.95)

    @property
    def cvar_99(self) -> float:
        return self.get_expected_shortfall(0.99)

    @property
    def median_loss(self) -> float:
        return float(np.median(self.trial_losses))

    @property
    def max_loss(self) -> float:
        return float(np.max(self.trial_losses))

    @property
    def probability_of_loss(self) -> float:
        """Fraction of trials with a positive loss."""
        return float(np.mean(self.trial_losses > 0))

    @property
    def num_defaults_per_trial(self) -> np.ndarray:
        return np.sum(self.default_indicators, axis=1)

    @property
    def default_rate(self) -> float:
        """Average default rate across trials and loans."""
        if self.default_indicators.size == 0:
            return 0.0
        return float(np.mean(self.default_indicators))

    def _loan_column(self, loan_id: str) -> int:
        try:
            return self.loan_ids.index(loan_id)
        except ValueError:
            raise KeyError(f"Loan '{loan_id}' not in simulation") from None

    def get_loan_default_rate(self, loan_id: str) -> float:
        """Simulated default frequency of one loan."""
        return float(np.mean(self.default_indicators[:, self._loan_column(loan_id)]))

    def get_loan_expected_loss(self, loan_id: str) -> float:
        return float(np.mean(self.loan_losses[:, self._loan_column(loan_id)]))

    @property
    def loan_default_frequencies(self) -> Dict[str, float]:
        """Loan id -> fraction of trials in which it defaulted."""
        return {loan_id: self.get_loan_default_rate(loan_id) for loan_id in self.loan_ids}

    def statistics(self) -> Dict[str, float]:
        """Headline statistics of the loss distribution."""
        moments = loss_moments(self.trial_losses)
        return {
            "mean_loss": moments.mean,
            "loss_std": moments.std,
            "median_loss": moments.median,
            "var_95": self.var_95,
            "var_99": self.var_99,
            "cvar_95": self.cvar_95,
            "cvar_99": self.cvar_99,
            "max_loss": moments.max,
            "probability_of_loss": moments.probability_of_loss,
        }


@dataclass
class _SimulationPlan:
    """Read-only inputs shared by every trial of one simulation."""
    generator: CorrelatedPathGenerator
    loans: LoanArrays
    initial_prices: np.ndarray
    shocks: np.ndarray
    default_probabilities: np.ndarray
    scenario: ScenarioParameters
    horizon_days: float
    num_trials: int
    seed: int


class MonteCarloEngine:
    """Monte Carlo simulation engine for crypto loan portfolio losses.

    Draws correlated collateral prices and t-copula defaults, evaluates the
    loss of every loan in every trial and returns the full distribution.
    Trial ``k`` draws only from ``(seed, k)``, so a fixed seed reproduces the
    result exactly regardless of batch size.
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 market: Optional[MarketParameters] = None,
                 credit_model: Optional[CreditModel] = None,
                 random_state: Optional[int] = None):
        """Initialize the simulation engine.

        Args:
            config: Engine configuration
            market: Asset volatilities, drifts and correlations
            credit_model: PD / LGD model
            random_state: Seed overriding ``config.random_state``
        """
        self.config = config or EngineConfig()
        self.market = market or MarketParameters()
        self.credit_model = credit_model or CreditModel()
        self.random_state = random_state if random_state is not None else self.config.random_state

    def simulate(self, portfolio: Portfolio, current_prices: Mapping[AssetType, float],
                 scenario: Optional[ScenarioParameters] = None, horizon_days: float = 30,
                 num_trials: Optional[int] = None,
                 batch_size: Optional[int] = None) -> SimulationResult:
        """Run Monte Carlo simulation.

        Args:
            portfolio: The loan portfolio to simulate
            current_prices: Current USD price per collateral asset
            scenario: Stress scenario (baseline when omitted)
            horizon_days: Horizon in days
            num_trials: Trial count; defaults to the scenario override, then config
            batch_size: Optional batch size for memory efficiency

        Returns:
            SimulationResult with the loss distribution
        """
        scenario = scenario or baseline_scenario()
        plan = self._prepare(portfolio, current_prices, scenario, horizon_days, num_trials)

        context = {"scenario_id": scenario.scenario_id, "num_trials": plan.num_trials}
        if len(plan.loans) == 0:
            logger.info("Empty portfolio; returning %d zero-loss trials", plan.num_trials,
                        extra=context)
            return self._empty_result(plan)

        logger.info(
            "Simulating %d trials for %d loans under '%s' over %g days",
            plan.num_trials, len(plan.loans), scenario.scenario_id, plan.horizon_days,
            extra=context
        )
        prices, defaults, loan_losses = self._run_trials(plan, batch_size)
        result = self._build_result(plan, prices, defaults, loan_losses)
        logger.info(
            "Simulation '%s' complete: mean loss %.2f, VaR99 %.2f",
            scenario.scenario_id, result.mean_loss, result.var_99,
            extra=context
        )
        return result

    def simulate_portfolio_loss(self, portfolio: Portfolio,
                                current_prices: Mapping[AssetType, float],
                                scenario: Optional[ScenarioParameters] = None,
                                horizon_days: float = 30) -> SimulationResult:
        """Loss distribution for ``portfolio`` under ``scenario``."""
        return self.simulate(portfolio, current_prices, scenario, horizon_days)

    def _resolve_seed(self) -> int:
        if self.random_state is not None:
            return int(self.random_state)
        seed = int(np.random.SeedSequence().entropy)
        logger.debug("No seed configured; drew entropy %d", seed)
        return seed

    def _prepare(self, portfolio: Portfolio, current_prices: Mapping[AssetType, float],
                 scenario: ScenarioParameters, horizon_days: float,
                 num_trials: Optional[int]) -> _SimulationPlan:
        """Validate every input and precompute per-loan arrays before any trial runs."""
        horizon_days = require_positive("Horizon", horizon_days)
        if num_trials is None:
            num_trials = scenario.num_trials
        if num_trials is None:
            num_trials = self.config.num_trials
        if num_trials < 1:
            raise InvalidParameter(f"Trial count must be positive, got {num_trials}")

        prices = {
            AssetType(asset): require_non_negative(f"{AssetType(asset).value} price", price)
            for asset, price in current_prices.items()
        }
        held = portfolio.get_asset_types()
        for asset in held:
            price_for(prices, asset)
        assets = [a for a in AssetType if a in held]

        generator = CorrelatedPathGenerator(assets, self.market, self.config)
        if assets:
            generator.apply_scenario(scenario)

        loans = LoanArrays.from_portfolio(
            portfolio, assets, scenario.lgd_multiplier,
            scenario.liquidation_slippage_multiplier, self.credit_model
        )
        default_probabilities = np.array([
            self.credit_model.default_probability(
                loan.rating, horizon_days,
                self.credit_model.stressed_multiplier(
                    scenario.pd_multiplier, scenario.market_drawdown, loan.leverage
                )
            )
            for loan in portfolio
        ], dtype=float)

        return _SimulationPlan(
            generator=generator,
            loans=loans,
            initial_prices=np.array([prices[a] for a in assets], dtype=float),
            shocks=np.array([scenario.shock(a) for a in assets], dtype=float),
            default_probabilities=default_probabilities,
            scenario=scenario,
            horizon_days=horizon_days,
            num_trials=int(num_trials),
            seed=self._resolve_seed(),
        )

    def _run_trials(self, plan: _SimulationPlan,
                    batch_size: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Simulate every trial, optionally in sequential batches."""
        if batch_size is None or batch_size >= plan.num_trials:
            return _simulate_block(plan, np.arange(plan.num_trials))

        blocks = []
        start = 0
        while start < plan.num_trials:
            stop = min(start + batch_size, plan.num_trials)
            blocks.append(_simulate_block(plan, np.arange(start, stop)))
            start = stop
        return _concatenate_blocks(blocks)

    def _build_result(self, plan: _SimulationPlan, prices: np.ndarray,
                      defaults: np.ndarray, loan_losses: np.ndarray) -> SimulationResult:
        if len(loan_losses) != plan.num_trials:
            raise RuntimeError(
                f"Incomplete simulation: {len(loan_losses)} of {plan.num_trials} trials"
            )
        return SimulationResult(
            trial_losses=np.sum(loan_losses, axis=1),
            loan_losses=loan_losses,
            default_indicators=defaults,
            asset_prices=prices,
            loan_ids=plan.loans.loan_ids,
            assets=tuple(plan.generator.assets),
            num_trials=plan.num_trials,
            horizon_days=plan.horizon_days,
            scenario_id=plan.scenario.scenario_id,
            seed=plan.seed,
        )

    def _empty_result(self, plan: _SimulationPlan) -> SimulationResult:
        n = plan.num_trials
        return SimulationResult(
            trial_losses=np.zeros(n),
            loan_losses=np.zeros((n, 0)),
            default_indicators=np.zeros((n, 0), dtype=bool),
            asset_prices=np.zeros((n, 0)),
            loan_ids=(),
            assets=(),
            num_trials=n,
            horizon_days=plan.horizon_days,
            scenario_id=plan.scenario.scenario_id,
            seed=plan.seed,
        )


def _simulate_block(plan: _SimulationPlan,
                    trial_indices: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Prices, defaults and loan losses for a block of trials.

    Reads ``plan`` only, so blocks can run concurrently.
    """
    generator = plan.generator
    scenario = plan.scenario
    draws = generator.draw_trials(
        trial_indices, plan.seed, len(plan.loans), scenario.copula_dof
    )
    correlated = generator.correlate(draws.asset_normals)
    prices = generator.terminal_prices(
        plan.initial_prices, correlated, plan.horizon_days,
        scenario.volatility_multiplier, plan.shocks
    )
    uniforms = generator.copula_uniforms(
        correlated, draws.loan_normals, draws.chi_square,
        plan.loans.asset_indices, scenario.default_correlation, scenario.copula_dof
    )
    defaults = generator.default_indicators(uniforms, plan.default_probabilities)
    loan_losses = evaluate_batch_losses(plan.loans, prices, defaults)
    return prices, defaults, loan_losses


def _concatenate_blocks(blocks: List[Tuple[np.ndarray, np.ndarray, np.ndarray]]):
    prices = np.concatenate([b[0] for b in blocks])
    defaults = np.concatenate([b[1] for b in blocks])
    loan_losses = np.concatenate([b[2] for b in blocks])
    return prices, defaults, loan_losses


def _chunk_ranges(num_trials: int, workers: int) -> List[np.ndarray]:
    """Split ``range(num_trials)`` into ``workers`` contiguous chunks."""
    per_worker = num_trials // workers
    remainder = num_trials % workers
    chunks = []
    start = 0
    for i in range(workers):
        n = per_worker + (1 if i < remainder else 0)
        if n > 0:
            chunks.append(np.arange(start, start + n))
        start += n
    return chunks


class ParallelMonteCarloEngine(MonteCarloEngine):
    """Monte Carlo engine that fans trials out across worker threads.

    Workers share the read-only simulation plan; each chunk derives its
    draws from the trial indices it owns, so the loss distribution matches
    the sequential engine for the same seed. All chunks are joined before
    the result is built.
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 market: Optional[MarketParameters] = None,
                 credit_model: Optional[CreditModel] = None,
                 random_state: Optional[int] = None,
                 num_workers: Optional[int] = None):
        """Initialize parallel engine.

        Args:
            config: Engine configuration
            market: Asset volatilities, drifts and correlations
            credit_model: PD / LGD model
            random_state: Seed overriding ``config.random_state``
            num_workers: Number of worker threads (None = config, then CPU count)
        """
        super().__init__(config, market, credit_model, random_state)
        self.num_workers = num_workers or self.config.num_workers

    def _run_trials(self, plan: _SimulationPlan,
                    batch_size: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        workers = self.num_workers or cpu_count() or 1
        chunks = _chunk_ranges(plan.num_trials, workers)
        logger.debug("Running %d trials on %d worker(s)", plan.num_trials, len(chunks))

        with ThreadPoolExecutor(max_workers=len(chunks)) as executor:
            blocks = list(executor.map(lambda chunk: _simulate_block(plan, chunk), chunks))
        return _concatenate_blocks(blocks)
