"""Engine configuration and baseline market parameters."""

from __future__ import annotations

from typing import Any, Dict, Literal, Mapping, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import InvalidParameter, require_finite, require_non_negative
from .portfolio import AssetType


def pair_key(first: AssetType, second: AssetType) -> str:
    """Canonical key for an asset pair, e.g. ``"BTC_ETH"``."""
    order = list(AssetType)
    a, b = sorted((AssetType(first), AssetType(second)), key=order.index)
    return f"{a.value}_{b.value}"


def canonical_pair(key: Any) -> str:
    """Normalize ``"ETH_BTC"`` or ``(ETH, BTC)`` to its pair key.

    Raises:
        InvalidParameter: Unknown symbol or a pair of one asset with itself
    """
    parts = key.split("_") if isinstance(key, str) else key
    try:
        first, second = (AssetType(part) for part in parts)
    except (TypeError, ValueError):
        raise InvalidParameter(f"Unknown asset pair {key!r}") from None
    if first == second:
        raise InvalidParameter(f"Asset pair {key!r} names one asset twice")
    return pair_key(first, second)


def correlation_entry(key: Any, rho: Any) -> Tuple[str, float]:
    """Validated ``(pair key, correlation)`` with the correlation in [-1, 1]."""
    key = canonical_pair(key)
    rho = require_finite(f"Correlation {key}", rho)
    if not -1 <= rho <= 1:
        raise InvalidParameter(f"Correlation {key} must be between -1 and 1, got {rho}")
    return key, rho


class EngineConfig(BaseModel):
    """
    Simulation, analysis and numerical policy settings for the risk engine.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    num_trials: int = Field(
        default=1000,
        ge=1,
        description="Monte Carlo trials per simulation unless the scenario overrides it.",
    )
    random_state: Optional[int] = Field(
        default=None,
        ge=0,
        description="Engine-level seed. None draws fresh OS entropy per simulation.",
    )
    drift_convention: Literal["risk_neutral", "historical"] = Field(
        default="risk_neutral",
        description="GBM drift for simulated prices: zero (risk neutral) or the asset's historical drift.",
    )
    barrier_drift: Literal["zero", "historical"] = Field(
        default="zero",
        description="Drift assumed by the first-passage margin event calculator.",
    )
    correlation_policy: Literal["regularize", "raise"] = Field(
        default="regularize",
        description="What to do when a correlation matrix fails Cholesky decomposition.",
    )
    regularization_epsilon: float = Field(
        default=1e-10,
        gt=0,
        le=1,
        description="First diagonal nudge tried when regularizing.",
    )
    regularization_growth: float = Field(
        default=10.0,
        gt=1,
        description="Factor applied to the nudge after each failed attempt.",
    )
    max_regularization_attempts: int = Field(
        default=8,
        ge=1,
        description="Nudges tried before IllConditionedCorrelation is raised.",
    )
    risk_free_rate: float = Field(
        default=0.045,
        ge=0,
        le=1,
        description="Annual cost-of-capital hurdle used by Sharpe and Sortino ratios.",
    )
    default_horizon_days: int = Field(
        default=30,
        ge=1,
        description="Horizon used when metrics are requested without a simulation.",
    )
    num_workers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Threads used by the parallel engine (None = CPU count).",
    )
    cache_size: int = Field(
        default=16,
        ge=0,
        description="Loss distributions kept by RiskEngine for reuse across calls.",
    )


class MarketParameters(BaseModel):
    """
    Annualized volatility, historical drift and pairwise correlation per asset.

    Correlation keys are normalized to ``pair_key`` order; a pair left out
    is uncorrelated. Invalid values raise InvalidParameter on construction.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    volatilities: Dict[AssetType, float] = Field(
        default_factory=lambda: {
            AssetType.BTC: 0.50,
            AssetType.ETH: 0.65,
            AssetType.SOL: 0.90,
        },
        description="Annualized volatility of log returns.",
    )
    drifts: Dict[AssetType, float] = Field(
        default_factory=lambda: {
            AssetType.BTC: 0.0730,
            AssetType.ETH: 0.0913,
            AssetType.SOL: 0.1095,
        },
        description="Annualized historical drift, used only under the historical conventions.",
    )
    correlations: Dict[str, float] = Field(
        default_factory=lambda: {
            "BTC_ETH": 0.82,
            "BTC_SOL": 0.68,
            "ETH_SOL": 0.75,
        },
        description="Pairwise return correlation keyed by pair_key().",
    )

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            reasons = "; ".join(error["msg"] for error in exc.errors())
            raise InvalidParameter(f"Invalid market parameters: {reasons}") from exc

    @field_validator("volatilities")
    @classmethod
    def _check_volatilities(cls, value: Dict[AssetType, float]) -> Dict[AssetType, float]:
        for asset, sigma in value.items():
            require_non_negative(f"{asset.value} volatility", sigma)
        return value

    @field_validator("drifts")
    @classmethod
    def _check_drifts(cls, value: Dict[AssetType, float]) -> Dict[AssetType, float]:
        for asset, mu in value.items():
            require_finite(f"{asset.value} drift", mu)
        return value

    @field_validator("correlations", mode="before")
    @classmethod
    def _canonical_correlations(cls, value: Any) -> Dict[str, float]:
        if not isinstance(value, Mapping):
            return value
        correlations: Dict[str, float] = {}
        for key, rho in value.items():
            key, rho = correlation_entry(key, rho)
            if key in correlations and correlations[key] != rho:
                raise InvalidParameter(f"Conflicting correlations given for {key}")
            correlations[key] = rho
        return correlations

    def volatility(self, asset: AssetType) -> float:
        try:
            return self.volatilities[AssetType(asset)]
        except KeyError:
            raise KeyError(f"No volatility configured for {asset}") from None

    def drift(self, asset: AssetType) -> float:
        return self.drifts.get(AssetType(asset), 0.0)

    def correlation(self, first: AssetType, second: AssetType) -> float:
        if AssetType(first) == AssetType(second):
            return 1.0
        return self.correlations.get(pair_key(first, second), 0.0)

    def correlation_matrix(self, assets: Sequence[AssetType]) -> np.ndarray:
        """Build the correlation matrix for ``assets`` in the given order."""
        n = len(assets)
        corr = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                rho = self.correlation(assets[i], assets[j])
                corr[i, j] = rho
                corr[j, i] = rho
        return corr
