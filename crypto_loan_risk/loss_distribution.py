"""Loss distribution statistics: VaR, CVaR, moments, risk-adjusted ratios, concentration.

All functions are deterministic for a given input sequence and never depend
on simulation RNG state.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Mapping

import numpy as np

from .exceptions import InvalidParameter, require_finite, require_finite_array
from .portfolio import AssetType, Portfolio, price_for

logger = logging.getLogger(__name__)

# Tolerance when deciding whether c * N is an exact integer
_ORDER_TOLERANCE = 1e-9


def _losses(losses) -> np.ndarray:
    array = require_finite_array("Losses", losses)
    if array.size == 0:
        raise InvalidParameter("Loss sequence is empty")
    return array


def _confidence(confidence: float) -> float:
    c = require_finite("Confidence", confidence)
    if not 0 < c < 1:
        raise InvalidParameter(f"Confidence must be in (0, 1), got {c}")
    return c


def var_order_index(num_losses: int, confidence: float) -> int:
    """Zero-based index of the VaR order statistic.

    The ``ceil(c * N)``-th smallest loss; when ``c * N`` is an integer the
    lower index is used.
    """
    rank = math.ceil(_confidence(confidence) * num_losses - _ORDER_TOLERANCE)
    return min(max(rank, 1), num_losses) - 1


def value_at_risk(losses, confidence: float = 0.99) -> float:
    """Empirical Value at Risk.

    Args:
        losses: Trial losses in any order
        confidence: Confidence level in (0, 1)

    Returns:
        The ``ceil(c * N)``-th order statistic of the ascending losses
    """
    ordered = np.sort(_losses(losses))
    return float(ordered[var_order_index(len(ordered), confidence)])


def conditional_value_at_risk(losses, confidence: float = 0.99) -> float:
    """Expected Shortfall: mean of the losses at or above the VaR order statistic."""
    ordered = np.sort(_losses(losses))
    tail = ordered[var_order_index(len(ordered), confidence):]
    return float(np.mean(tail))


@dataclass(frozen=True)
class LossMoments:
    """Summary statistics of a loss sequence."""
    mean: float
    std: float
    median: float
    max: float
    probability_of_loss: float


def loss_moments(losses) -> LossMoments:
    array = _losses(losses)
    return LossMoments(
        mean=float(np.mean(array)),
        std=float(np.std(array)),
        median=float(np.median(array)),
        max=float(np.max(array)),
        probability_of_loss=float(np.mean(array > 0)),
    )


def _ratio(numerator: float, denominator: float, label: str) -> float:
    if denominator > 0 and math.isfinite(denominator):
        return numerator / denominator
    # Degenerate distribution: no dispersion to scale by
    logger.debug("%s undefined for zero-dispersion losses; returning sentinel", label)
    if numerator > 0:
        return math.inf
    if numerator < 0:
        return -math.inf
    return 0.0


def sharpe_ratio(expected_return: float, hurdle: float, losses) -> float:
    """(expected return - hurdle) / std(losses).

    A zero-variance loss sequence yields ``+inf`` / ``-inf`` by the sign of
    the excess return, or ``0.0`` when the excess return is zero.
    """
    excess = require_finite("Expected return", expected_return) - require_finite("Hurdle", hurdle)
    return _ratio(excess, float(np.std(_losses(losses))), "Sharpe ratio")


def downside_deviation(losses, minimum_acceptable_loss: float = 0.0) -> float:
    """Standard deviation of the losses strictly above the threshold (0 if none)."""
    array = _losses(losses)
    threshold = require_finite("Minimum acceptable loss", minimum_acceptable_loss)
    downside = array[array > threshold]
    if downside.size == 0:
        return 0.0
    return float(np.std(downside))


def sortino_ratio(expected_return: float, hurdle: float, losses,
                  minimum_acceptable_loss: float = 0.0) -> float:
    """(expected return - hurdle) / downside deviation of losses.

    Same sentinel convention as ``sharpe_ratio``.
    """
    excess = require_finite("Expected return", expected_return) - require_finite("Hurdle", hurdle)
    return _ratio(excess, downside_deviation(losses, minimum_acceptable_loss), "Sortino ratio")


def asset_concentration(portfolio: Portfolio,
                        prices: Mapping[AssetType, float]) -> Dict[AssetType, float]:
    """Percent of total collateral market value held in each asset.

    Every asset appears in the result; an empty or valueless portfolio maps
    every asset to 0.
    """
    values = {asset: 0.0 for asset in AssetType}
    for loan in portfolio:
        values[loan.asset_type] += loan.collateral_value(price_for(prices, loan.asset_type))
    total = sum(values.values())
    if total <= 0:
        return {asset: 0.0 for asset in AssetType}
    return {asset: value / total * 100 for asset, value in values.items()}


def herfindahl_index(portfolio: Portfolio) -> float:
    """Borrower concentration HHI on the 0-10,000 scale.

    Sum over loans of (principal / total principal)^2 x 10,000. An empty
    portfolio has HHI 0 by convention.
    """
    total = portfolio.total_exposure
    if len(portfolio) == 0 or total <= 0:
        return 0.0
    shares = portfolio.principal_array() / total
    return float(np.sum(shares ** 2) * 10_000)


def largest_exposure_percent(portfolio: Portfolio) -> float:
    total = portfolio.total_exposure
    if len(portfolio) == 0 or total <= 0:
        return 0.0
    return float(np.max(portfolio.principal_array()) / total * 100)
