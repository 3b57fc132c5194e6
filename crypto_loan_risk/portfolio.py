"""Loan, collateral and portfolio data structures for crypto-backed lending."""

from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np

from .exceptions import (
    InvalidParameter,
    require_finite,
    require_non_negative,
    require_positive,
    require_probability,
)


class AssetType(str, Enum):
    """Supported collateral assets."""
    BTC = "BTC"
    ETH = "ETH"
    SOL = "SOL"


@dataclass(frozen=True)
class MarginPolicy:
    """LTV thresholds at which a loan moves between margin states."""
    warn_threshold: float
    call_threshold: float
    liquidation_threshold: float


MARGIN_POLICIES: Dict[AssetType, MarginPolicy] = {
    AssetType.BTC: MarginPolicy(0.70, 0.80, 0.90),
    AssetType.ETH: MarginPolicy(0.65, 0.75, 0.85),
    AssetType.SOL: MarginPolicy(0.60, 0.70, 0.80),
}

# Expected slippage on a forced liquidation, as a fraction of market value
LIQUIDATION_SLIPPAGE: Dict[AssetType, float] = {
    AssetType.BTC: 0.04,
    AssetType.ETH: 0.07,
    AssetType.SOL: 0.10,
}


@dataclass(frozen=True)
class CryptoAsset:
    """A pledged quantity of one crypto asset.

    Attributes:
        asset_type: Which asset is pledged
        quantity: Units pledged (must be positive)
    """
    asset_type: AssetType
    quantity: float

    def __post_init__(self):
        object.__setattr__(self, "asset_type", AssetType(self.asset_type))
        require_positive("Collateral quantity", self.quantity)

    @property
    def margin_policy(self) -> MarginPolicy:
        return MARGIN_POLICIES[self.asset_type]

    @property
    def liquidation_slippage(self) -> float:
        return LIQUIDATION_SLIPPAGE[self.asset_type]

    def value(self, price: float) -> float:
        """Market value of the collateral at ``price`` (USD per unit)."""
        return self.quantity * require_non_negative("Price", price)


class RatingTier(str, Enum):
    """Borrower credit rating tiers, best first."""
    AAA = "AAA"
    AA = "AA"
    A = "A"
    BBB = "BBB"
    BB = "BB"
    B = "B"
    CCC = "CCC"


BASE_ANNUAL_PD: Dict[RatingTier, float] = {
    RatingTier.AAA: 0.0001,
    RatingTier.AA: 0.003,
    RatingTier.A: 0.008,
    RatingTier.BBB: 0.015,
    RatingTier.BB: 0.04,
    RatingTier.B: 0.09,
    RatingTier.CCC: 0.25,
}

BASE_LGD: Dict[RatingTier, float] = {
    RatingTier.AAA: 0.30,
    RatingTier.AA: 0.35,
    RatingTier.A: 0.40,
    RatingTier.BBB: 0.45,
    RatingTier.BB: 0.55,
    RatingTier.B: 0.65,
    RatingTier.CCC: 0.75,
}


@dataclass(frozen=True)
class CreditRating:
    """A rating tier with its base annualized PD and LGD.

    The PD and LGD default to the tier's table values; pass them explicitly
    to use an internally calibrated rating.
    """
    tier: RatingTier
    annual_pd: Optional[float] = None
    lgd: Optional[float] = None

    def __post_init__(self):
        tier = RatingTier(self.tier)
        object.__setattr__(self, "tier", tier)
        if self.annual_pd is None:
            object.__setattr__(self, "annual_pd", BASE_ANNUAL_PD[tier])
        if self.lgd is None:
            object.__setattr__(self, "lgd", BASE_LGD[tier])
        require_probability("Annual PD", self.annual_pd)
        require_probability("LGD", self.lgd)

    @property
    def rank(self) -> int:
        """Ordinal position of the tier, 0 for the best."""
        return list(RatingTier).index(self.tier)

    def __lt__(self, other: "CreditRating") -> bool:
        if not isinstance(other, CreditRating):
            return NotImplemented
        return self.rank < other.rank


def _as_rating(rating: Union[CreditRating, RatingTier, str]) -> CreditRating:
    if isinstance(rating, CreditRating):
        return rating
    return CreditRating(RatingTier(rating))


@dataclass(frozen=True)
class Loan:
    """A single crypto-collateralized loan.

    Loans are immutable; use ``Loan.updated`` to obtain a modified copy.

    Attributes:
        loan_id: Unique identifier within a portfolio
        borrower_name: Counterparty name
        rating: Borrower credit rating
        principal: Outstanding principal in USD
        lending_rate: Annual lending rate (e.g. 0.0945)
        collateral: Pledged crypto asset
        tenor_days: Days between rollovers
        roll_date: Next rollover date
        origination_date: Date the loan was booked
        haircut: Fraction of collateral value excluded from lending value
        cost_of_capital: Annual funding cost of the principal
        leverage: Counterparty leverage ratio, drives wrong-way PD stress
    """
    loan_id: str
    borrower_name: str
    rating: CreditRating
    principal: float
    lending_rate: float
    collateral: CryptoAsset
    tenor_days: int = 30
    roll_date: Optional[date] = None
    origination_date: Optional[date] = None
    haircut: float = 0.0
    cost_of_capital: float = 0.045
    leverage: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, "rating", _as_rating(self.rating))
        require_positive("Principal", self.principal)
        require_non_negative("Lending rate", self.lending_rate)
        require_non_negative("Cost of capital", self.cost_of_capital)
        require_non_negative("Leverage", self.leverage)
        require_positive("Tenor", self.tenor_days)
        haircut = require_finite("Haircut", self.haircut)
        if not 0 <= haircut < 1:
            raise InvalidParameter(f"Haircut must be in [0, 1), got {haircut}")
        if not isinstance(self.collateral, CryptoAsset):
            raise InvalidParameter("Collateral must be a CryptoAsset")

    @property
    def asset_type(self) -> AssetType:
        return self.collateral.asset_type

    @property
    def next_roll_date(self) -> Optional[date]:
        """Explicit roll date, else origination plus one tenor."""
        if self.roll_date is not None:
            return self.roll_date
        if self.origination_date is not None:
            return self.origination_date + timedelta(days=self.tenor_days)
        return None

    @property
    def daily_interest(self) -> float:
        """Interest accrued per day in USD."""
        return self.principal * self.lending_rate / 365

    def collateral_value(self, price: float) -> float:
        return self.collateral.value(price)

    def ltv(self, price: float) -> float:
        """Loan-to-value: principal over collateral market value."""
        value = self.collateral_value(price)
        if value == 0:
            return float("inf")
        return self.principal / value

    def haircut_adjusted_ltv(self, price: float) -> float:
        """LTV against the haircut lending value of the collateral."""
        value = self.collateral_value(price) * (1 - self.haircut)
        if value == 0:
            return float("inf")
        return self.principal / value

    def barrier_price(self, ltv_threshold: float) -> float:
        """Collateral price at which the LTV reaches ``ltv_threshold``."""
        require_positive("LTV threshold", ltv_threshold)
        return self.principal / (self.collateral.quantity * ltv_threshold)

    def margin_status(self, price: float) -> str:
        """One of ``healthy``, ``warning``, ``call`` or ``liquidation``."""
        ltv = self.ltv(price)
        policy = self.collateral.margin_policy
        if ltv >= policy.liquidation_threshold:
            return "liquidation"
        if ltv >= policy.call_threshold:
            return "call"
        if ltv >= policy.warn_threshold:
            return "warning"
        return "healthy"

    def updated(self, **changes) -> "Loan":
        """Return a copy with ``changes`` applied (the original is untouched)."""
        return replace(self, **changes)


class Portfolio:
    """Immutable, ordered collection of loans plus the risk capital behind it.

    Methods that change the loan set return a new portfolio.
    """

    def __init__(self, loans: Iterable[Loan] = (), risk_capital: float = 0.0,
                 name: str = "Portfolio"):
        self.name = name
        self._risk_capital = require_non_negative("Risk capital", risk_capital)
        loans = tuple(loans)
        self._loans: Dict[str, Loan] = {}
        for loan in loans:
            if loan.loan_id in self._loans:
                raise ValueError(f"Loan '{loan.loan_id}' already exists in portfolio")
            self._loans[loan.loan_id] = loan
        self._key: Tuple = (tuple(self._loans.values()), self._risk_capital)

    @property
    def risk_capital(self) -> float:
        return self._risk_capital

    def add_loan(self, loan: Loan) -> "Portfolio":
        """Return a new portfolio with ``loan`` appended."""
        if loan.loan_id in self._loans:
            raise ValueError(f"Loan '{loan.loan_id}' already exists in portfolio")
        return Portfolio(self.loans + [loan], self._risk_capital, self.name)

    def remove_loan(self, loan_id: str) -> "Portfolio":
        """Return a new portfolio without ``loan_id``."""
        if loan_id not in self._loans:
            raise KeyError(f"Loan '{loan_id}' not found in portfolio")
        return Portfolio(
            [l for l in self._loans.values() if l.loan_id != loan_id],
            self._risk_capital, self.name
        )

    def replace_loan(self, loan: Loan) -> "Portfolio":
        """Return a new portfolio with the loan of the same id swapped out."""
        if loan.loan_id not in self._loans:
            raise KeyError(f"Loan '{loan.loan_id}' not found in portfolio")
        return Portfolio(
            [loan if l.loan_id == loan.loan_id else l for l in self._loans.values()],
            self._risk_capital, self.name
        )

    def with_risk_capital(self, risk_capital: float) -> "Portfolio":
        return Portfolio(self.loans, risk_capital, self.name)

    def get_loan(self, loan_id: str) -> Loan:
        """Get a loan by id."""
        if loan_id not in self._loans:
            raise KeyError(f"Loan '{loan_id}' not found in portfolio")
        return self._loans[loan_id]

    @property
    def loans(self) -> List[Loan]:
        """Return list of all loans in portfolio order."""
        return list(self._loans.values())

    @property
    def loan_ids(self) -> List[str]:
        return list(self._loans.keys())

    def __len__(self) -> int:
        return len(self._loans)

    def __iter__(self) -> Iterator[Loan]:
        return iter(self._loans.values())

    def __contains__(self, loan_id: str) -> bool:
        return loan_id in self._loans

    def __eq__(self, other) -> bool:
        if not isinstance(other, Portfolio):
            return NotImplemented
        return self._key == other._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        return (f"Portfolio(name={self.name!r}, loans={len(self)}, "
                f"risk_capital={self._risk_capital:,.0f})")

    @property
    def total_exposure(self) -> float:
        """Total outstanding principal across all loans."""
        return float(sum(l.principal for l in self._loans.values()))

    def total_collateral_value(self, prices: Mapping[AssetType, float]) -> float:
        return float(sum(
            l.collateral_value(price_for(prices, l.asset_type)) for l in self._loans.values()
        ))

    def exposure_by_asset(self) -> Dict[AssetType, float]:
        """Principal grouped by collateral asset."""
        exposure = {asset: 0.0 for asset in AssetType}
        for loan in self._loans.values():
            exposure[loan.asset_type] += loan.principal
        return exposure

    def exposure_by_borrower(self) -> Dict[str, float]:
        exposure: Dict[str, float] = {}
        for loan in self._loans.values():
            exposure[loan.borrower_name] = exposure.get(loan.borrower_name, 0.0) + loan.principal
        return exposure

    def get_asset_types(self) -> set:
        """Get all collateral assets used in the portfolio."""
        return {l.asset_type for l in self._loans.values()}

    def get_ratings(self) -> set:
        """Get all rating tiers in the portfolio."""
        return {l.rating.tier for l in self._loans.values()}

    def filter_by_asset(self, asset: AssetType) -> List[Loan]:
        """Return loans collateralized by ``asset``."""
        return [l for l in self._loans.values() if l.asset_type == AssetType(asset)]

    def filter_by_rating(self, tier: RatingTier) -> List[Loan]:
        """Return loans whose borrower has rating ``tier``."""
        return [l for l in self._loans.values() if l.rating.tier == RatingTier(tier)]

    def principal_array(self) -> np.ndarray:
        return np.array([l.principal for l in self._loans.values()], dtype=float)


def price_for(prices: Mapping[AssetType, float], asset: AssetType) -> float:
    """Look up and validate the USD price of ``asset``."""
    asset = AssetType(asset)
    if asset in prices:
        price = prices[asset]
    elif asset.value in prices:
        price = prices[asset.value]
    else:
        raise InvalidParameter(f"No current price supplied for {asset.value}")
    return require_non_negative(f"{asset.value} price", price)
