"""Term-structured default probability and loss-given-default model."""

from typing import Iterable, Union

import numpy as np
import pandas as pd

from .exceptions import require_non_negative, require_positive
from .portfolio import CreditRating, RatingTier

DAYS_PER_YEAR: float = 365.0

DEFAULT_PD_HORIZONS = (1, 3, 5, 7, 14, 30, 60, 90, 180, 365)

RatingLike = Union[CreditRating, RatingTier, str]


def _rating(rating: RatingLike) -> CreditRating:
    if isinstance(rating, CreditRating):
        return rating
    return CreditRating(RatingTier(rating))


class CreditModel:
    """Maps a credit rating and horizon to PD and LGD.

    Horizon scaling assumes a constant annual hazard:
        PD(h) = 1 - (1 - PD_annual) ^ (h / 365)

    which is non-decreasing in h and tends to 1 as h grows. Scenario
    multipliers are applied afterwards and the result is clamped to [0, 1].
    """

    def __init__(self, days_per_year: float = DAYS_PER_YEAR):
        self.days_per_year = require_positive("Days per year", days_per_year)

    def horizon_pd(self, rating: RatingLike, horizon_days: float) -> float:
        """Unstressed PD over ``horizon_days``."""
        horizon_days = require_non_negative("Horizon", horizon_days)
        annual_pd = _rating(rating).annual_pd
        if annual_pd >= 1:
            return 1.0 if horizon_days > 0 else 0.0
        survival = (1 - annual_pd) ** (horizon_days / self.days_per_year)
        return float(1 - survival)

    def default_probability(self, rating: RatingLike, horizon_days: float,
                            pd_multiplier: float = 1.0) -> float:
        """Stressed PD over ``horizon_days``, clamped to [0, 1].

        Args:
            rating: Borrower rating
            horizon_days: Horizon in days (non-negative)
            pd_multiplier: Scenario PD multiplier (non-negative)

        Returns:
            Probability of default within the horizon
        """
        pd_multiplier = require_non_negative("PD multiplier", pd_multiplier)
        pd_h = self.horizon_pd(rating, horizon_days)
        return float(np.clip(pd_h * pd_multiplier, 0.0, 1.0))

    def loss_given_default(self, rating: RatingLike, lgd_multiplier: float = 1.0) -> float:
        """Stressed LGD as a fraction of principal, clamped to [0, 1]."""
        lgd_multiplier = require_non_negative("LGD multiplier", lgd_multiplier)
        return float(np.clip(_rating(rating).lgd * lgd_multiplier, 0.0, 1.0))

    @staticmethod
    def stressed_multiplier(pd_multiplier: float, market_drawdown: float = 0.0,
                            leverage: float = 1.0) -> float:
        """Combine a scenario PD multiplier with wrong-way risk.

        A market drawdown hurts leveraged borrowers more:
            multiplier = pd_multiplier * (1 + drawdown * leverage)
        """
        pd_multiplier = require_non_negative("PD multiplier", pd_multiplier)
        market_drawdown = require_non_negative("Market drawdown", market_drawdown)
        leverage = require_non_negative("Leverage", leverage)
        return pd_multiplier * (1 + market_drawdown * leverage)

    def pd_curve(self, rating: RatingLike,
                 horizons: Iterable[int] = DEFAULT_PD_HORIZONS,
                 pd_multiplier: float = 1.0) -> pd.DataFrame:
        """PD term structure for charting.

        Returns:
            DataFrame with columns ``days`` and ``pd``
        """
        rows = [
            {"days": days, "pd": self.default_probability(rating, days, pd_multiplier)}
            for days in horizons
        ]
        return pd.DataFrame(rows, columns=["days", "pd"])


_DEFAULT_MODEL = CreditModel()


def default_probability(rating: RatingLike, horizon_days: float,
                        pd_multiplier: float = 1.0) -> float:
    """Module-level shortcut for ``CreditModel().default_probability``."""
    return _DEFAULT_MODEL.default_probability(rating, horizon_days, pd_multiplier)


def loss_given_default(rating: RatingLike, lgd_multiplier: float = 1.0) -> float:
    """Module-level shortcut for ``CreditModel().loss_given_default``."""
    return _DEFAULT_MODEL.loss_given_default(rating, lgd_multiplier)
