"""Per-trial loan loss evaluation.

Defaulted loan:      max(0, principal * LGD - liquidation proceeds)
Performing loan:     max(0, principal - collateral value)
Liquidation proceeds = collateral value * (1 - slippage * slippage multiplier)

Everything here is a pure function of its arguments so trials can be
evaluated in any order or in parallel.
"""

from dataclasses import dataclass
from typing import Collection, Mapping, Optional, Sequence

import numpy as np

from .credit_model import CreditModel
from .exceptions import InvalidParameter, require_non_negative
from .portfolio import AssetType, Loan, Portfolio, price_for


def _recovery_fraction(slippage: float, slippage_multiplier: float) -> float:
    return 1.0 - min(1.0, slippage * slippage_multiplier)


def loan_loss(loan: Loan, price: float, defaulted: bool, lgd: float,
              slippage_multiplier: float = 1.0) -> float:
    """Loss on one loan at a simulated collateral price."""
    collateral_value = loan.collateral_value(price)
    if defaulted:
        proceeds = collateral_value * _recovery_fraction(
            loan.collateral.liquidation_slippage, slippage_multiplier
        )
        return max(0.0, loan.principal * lgd - proceeds)
    return max(0.0, loan.principal - collateral_value)


def evaluate_trial_loss(portfolio: Portfolio, trial_prices: Mapping[AssetType, float],
                        defaulted_ids: Collection[str], lgd_multiplier: float = 1.0,
                        slippage_multiplier: float = 1.0,
                        credit_model: Optional[CreditModel] = None) -> float:
    """Portfolio loss for one trial.

    Args:
        portfolio: Portfolio snapshot
        trial_prices: Simulated USD price per collateral asset
        defaulted_ids: Ids of loans that defaulted in this trial
        lgd_multiplier: Scenario LGD multiplier
        slippage_multiplier: Scenario liquidation slippage multiplier
        credit_model: Source of rating LGDs

    Returns:
        Sum of loan losses in USD
    """
    credit_model = credit_model or CreditModel()
    slippage_multiplier = require_non_negative("Slippage multiplier", slippage_multiplier)
    unknown = set(defaulted_ids) - set(portfolio.loan_ids)
    if unknown:
        raise InvalidParameter(f"Defaulted loans not in portfolio: {sorted(unknown)}")

    total = 0.0
    for loan in portfolio:
        lgd = credit_model.loss_given_default(loan.rating, lgd_multiplier)
        total += loan_loss(
            loan,
            price_for(trial_prices, loan.asset_type),
            loan.loan_id in defaulted_ids,
            lgd,
            slippage_multiplier
        )
    return total


@dataclass(frozen=True)
class LoanArrays:
    """Column-aligned loan attributes for vectorized loss evaluation."""
    loan_ids: tuple
    principal: np.ndarray
    quantity: np.ndarray
    asset_indices: np.ndarray
    lgd: np.ndarray
    recovery_fraction: np.ndarray

    @classmethod
    def from_portfolio(cls, portfolio: Portfolio, assets: Sequence[AssetType],
                       lgd_multiplier: float = 1.0, slippage_multiplier: float = 1.0,
                       credit_model: Optional[CreditModel] = None) -> "LoanArrays":
        """Build arrays for ``portfolio`` against the generator's asset columns."""
        credit_model = credit_model or CreditModel()
        slippage_multiplier = require_non_negative("Slippage multiplier", slippage_multiplier)
        assets = [AssetType(a) for a in assets]
        loans = portfolio.loans
        try:
            asset_indices = np.array([assets.index(l.asset_type) for l in loans], dtype=np.int64)
        except ValueError:
            raise InvalidParameter("Portfolio holds collateral with no simulated price") from None
        return cls(
            loan_ids=tuple(portfolio.loan_ids),
            principal=np.array([l.principal for l in loans], dtype=float),
            quantity=np.array([l.collateral.quantity for l in loans], dtype=float),
            asset_indices=asset_indices,
            lgd=np.array(
                [credit_model.loss_given_default(l.rating, lgd_multiplier) for l in loans],
                dtype=float
            ),
            recovery_fraction=np.array(
                [_recovery_fraction(l.collateral.liquidation_slippage, slippage_multiplier)
                 for l in loans],
                dtype=float
            ),
        )

    def __len__(self) -> int:
        return len(self.loan_ids)


def evaluate_batch_losses(loans: LoanArrays, trial_prices: np.ndarray,
                          default_indicators: np.ndarray) -> np.ndarray:
    """Loan losses for a block of trials.

    Args:
        loans: Loan attribute arrays
        trial_prices: Simulated prices (trials x assets)
        default_indicators: Boolean defaults (trials x loans)

    Returns:
        Array of shape (trials, loans) with non-negative losses
    """
    collateral_value = trial_prices[:, loans.asset_indices] * loans.quantity
    default_loss = np.maximum(
        0.0, loans.principal * loans.lgd - collateral_value * loans.recovery_fraction
    )
    shortfall = np.maximum(0.0, loans.principal - collateral_value)
    return np.where(default_indicators, default_loss, shortfall)
