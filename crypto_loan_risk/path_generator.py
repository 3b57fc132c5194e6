"""Correlated GBM price paths and Student-t copula default indicators."""

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import numpy as np
from scipy import stats

from .config import EngineConfig, MarketParameters, pair_key
from .exceptions import (
    IllConditionedCorrelation,
    InvalidParameter,
    require_non_negative,
    require_positive,
    require_probability,
)
from .portfolio import AssetType
from .scenarios import ScenarioParameters

logger = logging.getLogger(__name__)

DAYS_PER_YEAR: float = 365.0


@dataclass
class TrialDraws:
    """Random inputs for a block of trials.

    Attributes:
        trial_indices: Global index of each trial in the block
        asset_normals: Independent standard normals (trials x assets)
        loan_normals: Idiosyncratic standard normals (trials x loans)
        chi_square: Shared chi-square mixing variable per trial (trials,)
    """
    trial_indices: np.ndarray
    asset_normals: np.ndarray
    loan_normals: np.ndarray
    chi_square: np.ndarray

    def __len__(self) -> int:
        return len(self.trial_indices)


@dataclass
class PricePathSimulation:
    """Per-step simulated price paths for one asset."""
    asset: AssetType
    paths: np.ndarray
    timesteps: int
    horizon_days: float

    @property
    def terminal_prices(self) -> np.ndarray:
        return self.paths[:, -1]


def trial_rng(seed: int, trial_index: int) -> np.random.Generator:
    """Generator for one trial, derived from the engine seed and trial index only."""
    return np.random.default_rng(np.random.SeedSequence(seed, spawn_key=(int(trial_index),)))


class CorrelatedPathGenerator:
    """Correlated price and default generator for a set of collateral assets.

    Prices follow correlated geometric Brownian motion:
        S_T = S_0 * shock * exp((mu - ½σ²m²)T + σm√T Z_corr),  Z_corr = L z

    Defaults follow a Student-t copula driven by the same systemic shocks:
        Y_i = √ρ_d Z_corr[a(i)] + √(1 - ρ_d) ε_i
        U_i = t_ν( Y_i / √(W/ν) ),  W ~ χ²(ν)
        loan i defaults iff U_i <= PD_i
    """

    def __init__(self, assets: Optional[Sequence[AssetType]] = None,
                 market: Optional[MarketParameters] = None,
                 config: Optional[EngineConfig] = None):
        """Initialize the generator.

        Args:
            assets: Assets to simulate, in column order. Defaults to all assets.
            market: Volatilities, drifts and base correlations
            config: Drift convention and correlation policy
        """
        self.assets = [AssetType(a) for a in (assets if assets is not None else list(AssetType))]
        if len(set(self.assets)) != len(self.assets):
            raise InvalidParameter("Assets must be unique")
        self.market = market or MarketParameters()
        self.config = config or EngineConfig()

        self._correlation: Optional[np.ndarray] = None
        self._cholesky: Optional[np.ndarray] = None
        self.set_correlation(self.market.correlation_matrix(self.assets))

    @property
    def num_assets(self) -> int:
        return len(self.assets)

    @property
    def correlation(self) -> np.ndarray:
        """The (possibly regularized) correlation matrix in use."""
        return self._correlation.copy()

    @property
    def cholesky_factor(self) -> np.ndarray:
        return self._cholesky.copy()

    def asset_index(self, asset: AssetType) -> int:
        try:
            return self.assets.index(AssetType(asset))
        except ValueError:
            raise KeyError(f"Asset '{asset}' not simulated by this generator") from None

    def volatility_vector(self) -> np.ndarray:
        return np.array([self.market.volatility(a) for a in self.assets])

    def drift_vector(self) -> np.ndarray:
        """Annual drift per asset under the configured convention."""
        if self.config.drift_convention == "historical":
            return np.array([self.market.drift(a) for a in self.assets])
        return np.zeros(self.num_assets)

    def set_correlation(self, correlation_matrix: np.ndarray) -> None:
        """Validate and decompose the asset correlation matrix.

        Args:
            correlation_matrix: Symmetric matrix of shape (num_assets, num_assets)
                               with unit diagonal and entries in [-1, 1]
        """
        corr = np.asarray(correlation_matrix, dtype=float)
        n = self.num_assets
        if corr.shape != (n, n):
            raise InvalidParameter(
                f"Correlation matrix must be {n}x{n}, got {corr.shape}"
            )

        if not np.all(np.isfinite(corr)):
            raise InvalidParameter("Correlation matrix contains non-finite values")

        if np.any(corr < -1) or np.any(corr > 1):
            raise InvalidParameter("Correlations must be between -1 and 1")

        if not np.allclose(corr, corr.T):
            raise InvalidParameter("Correlation matrix must be symmetric")

        if not np.allclose(np.diag(corr), 1.0):
            raise InvalidParameter("Diagonal elements must be 1")

        if n == 0:
            self._correlation, self._cholesky = corr.copy(), corr.copy()
            return

        self._correlation, self._cholesky = self._decompose(corr)

    def _decompose(self, corr: np.ndarray):
        try:
            return corr.copy(), np.linalg.cholesky(corr)
        except np.linalg.LinAlgError:
            if self.config.correlation_policy == "raise":
                raise IllConditionedCorrelation(
                    "Correlation matrix is not positive definite"
                ) from None

        # Shrink toward the identity: (R + εI) / (1 + ε) keeps a unit diagonal
        n = corr.shape[0]
        epsilon = self.config.regularization_epsilon
        for attempt in range(self.config.max_regularization_attempts):
            candidate = (corr + epsilon * np.eye(n)) / (1 + epsilon)
            try:
                factor = np.linalg.cholesky(candidate)
            except np.linalg.LinAlgError:
                epsilon *= self.config.regularization_growth
                continue
            logger.warning(
                "Correlation matrix regularized with epsilon=%.3g after %d attempt(s)",
                epsilon, attempt + 1
            )
            return candidate, factor

        raise IllConditionedCorrelation(
            f"Correlation matrix still not decomposable after "
            f"{self.config.max_regularization_attempts} regularization attempts"
        )

    def scenario_correlation(self, scenario: ScenarioParameters) -> np.ndarray:
        """Base correlations with the scenario's overrides and shift applied."""
        corr = self.market.correlation_matrix(self.assets)
        overrides = scenario.overrides
        n = self.num_assets
        for i in range(n):
            for j in range(i + 1, n):
                key = pair_key(self.assets[i], self.assets[j])
                rho = overrides.get(key, corr[i, j]) + scenario.correlation_shift
                corr[i, j] = rho
                corr[j, i] = rho
        return corr

    def apply_scenario(self, scenario: ScenarioParameters) -> None:
        """Install the scenario-adjusted correlation matrix."""
        self.set_correlation(self.scenario_correlation(scenario))

    def draw_trials(self, trial_indices: Sequence[int], seed: int, num_loans: int,
                    copula_dof: float) -> TrialDraws:
        """Draw every random input for the given trials.

        Each trial's draws depend only on ``(seed, trial_index)``, so any
        split of the trial range across workers reproduces the same numbers.
        """
        require_positive("Copula degrees of freedom", copula_dof)
        indices = np.asarray(trial_indices, dtype=np.int64)
        num_trials = len(indices)
        asset_normals = np.empty((num_trials, self.num_assets))
        loan_normals = np.empty((num_trials, num_loans))
        chi_square = np.empty(num_trials)

        for k, trial_index in enumerate(indices):
            rng = trial_rng(seed, trial_index)
            asset_normals[k] = rng.standard_normal(self.num_assets)
            loan_normals[k] = rng.standard_normal(num_loans)
            chi_square[k] = rng.chisquare(copula_dof)

        return TrialDraws(
            trial_indices=indices,
            asset_normals=asset_normals,
            loan_normals=loan_normals,
            chi_square=chi_square
        )

    def correlate(self, asset_normals: np.ndarray) -> np.ndarray:
        """Apply the Cholesky factor: rows of Z_corr = L z."""
        return asset_normals @ self._cholesky.T

    def terminal_prices(self, initial_prices: np.ndarray, correlated_normals: np.ndarray,
                        horizon_days: float, volatility_multiplier: float = 1.0,
                        shocks: Optional[np.ndarray] = None) -> np.ndarray:
        """Simulated prices at the horizon.

        Args:
            initial_prices: Current price per asset (num_assets,)
            correlated_normals: Correlated standard normals (trials x assets)
            horizon_days: Horizon in days
            volatility_multiplier: Scenario volatility multiplier
            shocks: Instantaneous price factor per asset

        Returns:
            Array of shape (trials, num_assets) with terminal prices
        """
        horizon_days = require_non_negative("Horizon", horizon_days)
        volatility_multiplier = require_non_negative("Volatility multiplier", volatility_multiplier)
        t = horizon_days / DAYS_PER_YEAR
        sigma = self.volatility_vector() * volatility_multiplier
        mu = self.drift_vector()
        if shocks is None:
            shocks = np.ones(self.num_assets)

        log_return = (mu - 0.5 * sigma ** 2) * t + sigma * np.sqrt(t) * correlated_normals
        return np.asarray(initial_prices) * shocks * np.exp(log_return)

    def copula_uniforms(self, correlated_normals: np.ndarray, loan_normals: np.ndarray,
                        chi_square: np.ndarray, loan_asset_indices: np.ndarray,
                        default_correlation: float, copula_dof: float) -> np.ndarray:
        """Correlated uniforms per loan via the Student-t copula.

        Returns:
            Array of shape (trials, loans) with marginally uniform values
        """
        rho = require_probability("Default correlation", default_correlation)
        nu = require_positive("Copula degrees of freedom", copula_dof)
        systemic = correlated_normals[:, loan_asset_indices]
        latent = np.sqrt(rho) * systemic + np.sqrt(1 - rho) * loan_normals
        t_variates = latent / np.sqrt(chi_square / nu)[:, np.newaxis]
        return stats.t.cdf(t_variates, df=nu)

    @staticmethod
    def default_indicators(uniforms: np.ndarray, default_probabilities: np.ndarray) -> np.ndarray:
        """Loan defaults in a trial iff its copula uniform is at or below its PD."""
        return uniforms <= np.asarray(default_probabilities)[np.newaxis, :]

    def simulate_price_paths(self, asset: AssetType, current_price: float,
                             horizon_days: float, num_paths: int = 100,
                             volatility_multiplier: float = 1.0,
                             seed: int = 0) -> PricePathSimulation:
        """Daily GBM paths for a single asset (at most 30 steps).

        Path ``p`` draws from ``(seed, p)`` so paths are reproducible.
        """
        current_price = require_non_negative("Current price", current_price)
        horizon_days = require_positive("Horizon", horizon_days)
        if num_paths < 1:
            raise InvalidParameter(f"Number of paths must be positive, got {num_paths}")
        idx = self.asset_index(asset)
        sigma = self.volatility_vector()[idx] * require_non_negative(
            "Volatility multiplier", volatility_multiplier
        )
        mu = self.drift_vector()[idx]
        timesteps = max(1, min(math.ceil(horizon_days), 30))
        dt = horizon_days / timesteps / DAYS_PER_YEAR

        shocks = np.empty((num_paths, timesteps))
        for p in range(num_paths):
            shocks[p] = trial_rng(seed, p).standard_normal(timesteps)

        increments = (mu - 0.5 * sigma ** 2) * dt + sigma * np.sqrt(dt) * shocks
        log_paths = np.concatenate(
            [np.zeros((num_paths, 1)), np.cumsum(increments, axis=1)], axis=1
        )
        return PricePathSimulation(
            asset=AssetType(asset),
            paths=current_price * np.exp(log_paths),
            timesteps=timesteps,
            horizon_days=horizon_days
        )
