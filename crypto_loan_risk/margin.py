"""Margin-call and liquidation probabilities from GBM first-passage times.

For log price X_t = ln(S_t / S_0) = νt + σW_t and a lower barrier
b = ln(B / S_0) < 0, the reflection principle gives

    P(min_{t<=T} X_t <= b) = Φ((b - νT) / σ√T) + exp(2νb / σ²) Φ((b + νT) / σ√T)

which reduces to 2Φ(b / σ√T) for a driftless log price. B is the price at
which the loan's LTV reaches the policy threshold.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd
from scipy.stats import norm

from .config import EngineConfig, MarketParameters
from .credit_model import CreditModel
from .exceptions import require_finite, require_non_negative
from .losses import loan_loss
from .portfolio import Loan

DAYS_PER_YEAR: float = 365.0


def first_passage_probability(distance: float, volatility: float, horizon_years: float,
                              drift: float = 0.0) -> float:
    """Probability that a Brownian log price falls ``distance`` within the horizon.

    Args:
        distance: ln(S_0 / B); zero or negative means already breached
        volatility: Annualized volatility σ
        horizon_years: Horizon T in years
        drift: Drift ν of the log price

    Returns:
        Probability in [0, 1]
    """
    distance = require_finite("Barrier distance", distance)
    sigma = require_non_negative("Volatility", volatility)
    t = require_non_negative("Horizon", horizon_years)
    nu = require_finite("Drift", drift)

    if distance <= 0:
        return 1.0
    if t == 0:
        return 0.0

    b = -distance
    if sigma == 0:
        return 1.0 if nu * t <= b else 0.0

    scale = sigma * math.sqrt(t)
    direct = norm.cdf((b - nu * t) / scale)
    # exp(2νb/σ²) can overflow when ν < 0; combine in log space
    reflected = math.exp(2 * nu * b / sigma ** 2 + norm.logcdf((b + nu * t) / scale))
    return float(np.clip(direct + reflected, 0.0, 1.0))


@dataclass(frozen=True)
class MarginEventProbability:
    """Probabilities of hitting the margin-call and liquidation LTVs."""
    margin_call_probability: float
    liquidation_probability: float
    horizon_days: float


@dataclass(frozen=True)
class LoanMetrics:
    """Point-in-time monitoring view of one loan."""
    loan_id: str
    ltv: float
    haircut_adjusted_ltv: float
    margin_status: str
    excess_collateral: float
    daily_interest: float
    expected_loss: float
    tenor_pd: float


class BarrierCrossingCalculator:
    """Closed-form margin event probabilities per loan.

    The drift assumption is fixed by ``EngineConfig.barrier_drift``:
    ``zero`` uses a driftless log price, ``historical`` uses the asset's
    historical drift less the Itô correction ½σ².
    """

    def __init__(self, market: Optional[MarketParameters] = None,
                 config: Optional[EngineConfig] = None):
        self.market = market or MarketParameters()
        self.config = config or EngineConfig()

    def log_drift(self, loan: Loan, volatility: float) -> float:
        if self.config.barrier_drift == "historical":
            return self.market.drift(loan.asset_type) - 0.5 * volatility ** 2
        return 0.0

    def crossing_probability(self, loan: Loan, current_price: float, ltv_threshold: float,
                             horizon_days: float, volatility: Optional[float] = None) -> float:
        """Probability the loan's LTV reaches ``ltv_threshold`` within the horizon."""
        current_price = require_non_negative("Current price", current_price)
        horizon_days = require_non_negative("Horizon", horizon_days)
        if volatility is None:
            volatility = self.market.volatility(loan.asset_type)
        volatility = require_non_negative("Volatility", volatility)

        barrier = loan.barrier_price(ltv_threshold)
        if current_price <= barrier:
            return 1.0
        return first_passage_probability(
            math.log(current_price / barrier),
            volatility,
            horizon_days / DAYS_PER_YEAR,
            self.log_drift(loan, volatility)
        )

    def margin_event_probability(self, loan: Loan, current_price: float,
                                 horizon_days: float,
                                 volatility: Optional[float] = None) -> MarginEventProbability:
        """Margin-call and liquidation probabilities within ``horizon_days``.

        Args:
            loan: The loan
            current_price: Current USD price of its collateral asset
            horizon_days: Horizon in days (typically 3 or 5)
            volatility: Annualized volatility; defaults to the asset's

        Returns:
            MarginEventProbability for the horizon
        """
        policy = loan.collateral.margin_policy
        return MarginEventProbability(
            margin_call_probability=self.crossing_probability(
                loan, current_price, policy.call_threshold, horizon_days, volatility
            ),
            liquidation_probability=self.crossing_probability(
                loan, current_price, policy.liquidation_threshold, horizon_days, volatility
            ),
            horizon_days=horizon_days,
        )

    def margin_event_table(self, loan: Loan, current_price: float,
                           horizons: Iterable[float] = (3, 5),
                           volatility: Optional[float] = None) -> pd.DataFrame:
        """Probability for every (threshold, horizon) pair."""
        policy = loan.collateral.margin_policy
        rows = []
        for event, threshold in (("margin_call", policy.call_threshold),
                                 ("liquidation", policy.liquidation_threshold)):
            for days in horizons:
                rows.append({
                    "Event": event,
                    "LTV_Threshold": threshold,
                    "Horizon_Days": days,
                    "Probability": self.crossing_probability(
                        loan, current_price, threshold, days, volatility
                    ),
                })
        return pd.DataFrame(rows)


def loan_metrics(loan: Loan, current_price: float, market_drawdown: float = 0.0,
                 credit_model: Optional[CreditModel] = None) -> LoanMetrics:
    """LTV, margin status and expected loss of ``loan`` at ``current_price``.

    Expected loss is taken over one tenor with the wrong-way stressed PD.
    """
    credit_model = credit_model or CreditModel()
    multiplier = credit_model.stressed_multiplier(1.0, market_drawdown, loan.leverage)
    tenor_pd = credit_model.default_probability(loan.rating, loan.tenor_days, multiplier)
    lgd = credit_model.loss_given_default(loan.rating)

    collateral_value = loan.collateral_value(current_price)
    liquidation_value = loan.principal / loan.collateral.margin_policy.liquidation_threshold
    expected_loss = (
        tenor_pd * loan_loss(loan, current_price, True, lgd)
        + (1 - tenor_pd) * loan_loss(loan, current_price, False, lgd)
    )

    return LoanMetrics(
        loan_id=loan.loan_id,
        ltv=loan.ltv(current_price),
        haircut_adjusted_ltv=loan.haircut_adjusted_ltv(current_price),
        margin_status=loan.margin_status(current_price),
        excess_collateral=collateral_value - liquidation_value,
        daily_interest=loan.daily_interest,
        expected_loss=expected_loss,
        tenor_pd=tenor_pd,
    )
