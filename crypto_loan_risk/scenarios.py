"""Stress scenario definitions and the built-in scenario catalog."""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import pandas as pd

from .config import correlation_entry
from .exceptions import (
    InvalidParameter,
    require_finite,
    require_non_negative,
    require_positive,
    require_probability,
)
from .portfolio import AssetType, price_for


def _freeze(mapping: Optional[Mapping]) -> Tuple:
    if not mapping:
        return ()
    if isinstance(mapping, tuple):
        mapping = dict(mapping)
    return tuple(sorted(mapping.items(), key=lambda item: str(item[0])))


@dataclass(frozen=True)
class ScenarioParameters:
    """A named market and credit stress.

    Mapping arguments are stored as sorted tuples so scenarios are hashable
    and can key cached simulation results.

    Attributes:
        scenario_id: Catalog key
        name: Display name
        volatility_multiplier: Scales every asset's volatility
        pd_multiplier: Scales horizon PDs
        lgd_multiplier: Scales rating LGDs
        asset_shocks: Instantaneous price factor per asset (0.5 = -50 %)
        correlation_overrides: Pair key (``"BTC_ETH"``) to correlation
        correlation_shift: Added to every off-diagonal correlation
        default_correlation: t-copula loading on the systemic price shock
        copula_dof: t-copula degrees of freedom (lower = fatter joint tails)
        market_drawdown: Market stress level feeding wrong-way PD risk
        liquidation_slippage_multiplier: Scales liquidation slippage
        num_trials: Optional trial count override
    """
    scenario_id: str
    name: str = ""
    description: str = ""
    volatility_multiplier: float = 1.0
    pd_multiplier: float = 1.0
    lgd_multiplier: float = 1.0
    asset_shocks: Tuple = ()
    correlation_overrides: Tuple = ()
    correlation_shift: float = 0.0
    default_correlation: float = 0.30
    copula_dof: float = 5.0
    market_drawdown: float = 0.0
    liquidation_slippage_multiplier: float = 1.0
    num_trials: Optional[int] = None

    def __post_init__(self):
        shocks = tuple(
            (AssetType(asset), require_positive(f"{AssetType(asset).value} shock", factor))
            for asset, factor in _freeze(self.asset_shocks)
        )
        object.__setattr__(self, "asset_shocks", shocks)

        overrides = [correlation_entry(key, rho) for key, rho in _freeze(self.correlation_overrides)]
        object.__setattr__(self, "correlation_overrides", tuple(sorted(overrides)))

        require_non_negative("Volatility multiplier", self.volatility_multiplier)
        require_non_negative("PD multiplier", self.pd_multiplier)
        require_non_negative("LGD multiplier", self.lgd_multiplier)
        require_non_negative("Liquidation slippage multiplier",
                             self.liquidation_slippage_multiplier)
        require_finite("Correlation shift", self.correlation_shift)
        require_probability("Default correlation", self.default_correlation)
        require_positive("Copula degrees of freedom", self.copula_dof)
        require_probability("Market drawdown", self.market_drawdown)
        if self.num_trials is not None and self.num_trials < 1:
            raise InvalidParameter(f"Trial count must be positive, got {self.num_trials}")
        if not self.name:
            object.__setattr__(self, "name", self.scenario_id)

    def shock(self, asset: AssetType) -> float:
        """Instantaneous price factor for ``asset`` (1.0 when unshocked)."""
        return dict(self.asset_shocks).get(AssetType(asset), 1.0)

    @property
    def overrides(self) -> Dict[str, float]:
        return dict(self.correlation_overrides)

    def apply_prices(self, current_prices: Mapping[AssetType, float]) -> Dict[AssetType, float]:
        """Apply the instantaneous shocks to ``current_prices``."""
        return {
            AssetType(asset): price_for(current_prices, asset) * self.shock(asset)
            for asset in current_prices
        }


BASELINE_SCENARIO_ID = "baseline"


def baseline_scenario(market_drawdown: float = 0.0) -> ScenarioParameters:
    """Unstressed scenario, optionally with a market drawdown."""
    return ScenarioParameters(
        scenario_id=BASELINE_SCENARIO_ID,
        name="Baseline",
        description="Base volatilities, correlations and rating PDs",
        market_drawdown=market_drawdown,
    )


def _builtin_scenarios() -> List[ScenarioParameters]:
    return [
        ScenarioParameters(
            scenario_id="bull-market",
            name="Bull Market Rally",
            description="Strong upward momentum with improving correlations and low default risk",
            volatility_multiplier=0.7,
            asset_shocks={AssetType.BTC: 1.5, AssetType.ETH: 1.6, AssetType.SOL: 1.8},
            correlation_overrides={"BTC_ETH": 0.88, "BTC_SOL": 0.75, "ETH_SOL": 0.82},
            pd_multiplier=0.5,
            lgd_multiplier=0.7,
            copula_dof=8,
            default_correlation=0.15,
            liquidation_slippage_multiplier=0.8,
        ),
        ScenarioParameters(
            scenario_id="covid-crash",
            name="2020 COVID Crash",
            description="Extreme liquidity crisis with synchronized asset collapse",
            market_drawdown=0.5,
            volatility_multiplier=3.0,
            asset_shocks={AssetType.BTC: 0.5, AssetType.ETH: 0.45, AssetType.SOL: 0.40},
            correlation_overrides={"BTC_ETH": 0.95, "BTC_SOL": 0.88, "ETH_SOL": 0.92},
            pd_multiplier=3.0,
            lgd_multiplier=2.0,
            copula_dof=3,
            default_correlation=0.65,
            liquidation_slippage_multiplier=2.5,
        ),
        ScenarioParameters(
            scenario_id="luna-collapse",
            name="2022 Luna/FTX Collapse",
            description="Contagion-driven crypto-specific crash with leverage unwind",
            market_drawdown=0.65,
            volatility_multiplier=2.5,
            asset_shocks={AssetType.BTC: 0.65, AssetType.ETH: 0.60, AssetType.SOL: 0.45},
            correlation_overrides={"BTC_ETH": 0.92, "BTC_SOL": 0.85, "ETH_SOL": 0.88},
            pd_multiplier=4.0,
            lgd_multiplier=2.5,
            copula_dof=2.5,
            default_correlation=0.75,
            liquidation_slippage_multiplier=3.0,
        ),
        ScenarioParameters(
            scenario_id="stable-growth",
            name="Stable Growth",
            description="Moderate growth with typical correlations and default rates",
            volatility_multiplier=1.0,
            asset_shocks={AssetType.BTC: 1.15, AssetType.ETH: 1.18, AssetType.SOL: 1.22},
            correlation_overrides={"BTC_ETH": 0.82, "BTC_SOL": 0.68, "ETH_SOL": 0.75},
            pd_multiplier=1.0,
            lgd_multiplier=1.0,
            copula_dof=5,
            default_correlation=0.30,
        ),
        ScenarioParameters(
            scenario_id="high-volatility",
            name="High Volatility Regime",
            description="Elevated volatility with mean-reverting prices but increased tail risk",
            market_drawdown=0.15,
            volatility_multiplier=2.0,
            asset_shocks={AssetType.BTC: 1.05, AssetType.ETH: 1.02, AssetType.SOL: 0.98},
            correlation_overrides={"BTC_ETH": 0.75, "BTC_SOL": 0.58, "ETH_SOL": 0.65},
            pd_multiplier=1.5,
            lgd_multiplier=1.3,
            copula_dof=4,
            default_correlation=0.40,
            liquidation_slippage_multiplier=1.5,
        ),
    ]


class ScenarioCatalog:
    """Lookup of named scenarios by id.

    The built-in catalog mirrors historical crypto market regimes; custom
    scenarios can be registered per catalog instance.
    """

    def __init__(self, scenarios: Optional[List[ScenarioParameters]] = None):
        self._scenarios: Dict[str, ScenarioParameters] = {}
        for scenario in (_builtin_scenarios() if scenarios is None else scenarios):
            self._scenarios[scenario.scenario_id] = scenario

    def get_scenario(self, scenario_id: str) -> ScenarioParameters:
        """Get a scenario by id."""
        if scenario_id not in self._scenarios:
            raise KeyError(f"Scenario '{scenario_id}' not found in catalog")
        return self._scenarios[scenario_id]

    def get_all_scenarios(self) -> List[ScenarioParameters]:
        return list(self._scenarios.values())

    @property
    def scenario_ids(self) -> List[str]:
        return list(self._scenarios.keys())

    def __len__(self) -> int:
        return len(self._scenarios)

    def __contains__(self, scenario_id: str) -> bool:
        return scenario_id in self._scenarios

    def add_scenario(self, scenario: ScenarioParameters) -> None:
        """Register a custom scenario."""
        if scenario.scenario_id in self._scenarios:
            raise ValueError(f"Scenario '{scenario.scenario_id}' already exists in catalog")
        self._scenarios[scenario.scenario_id] = scenario

    def compare_scenarios(self, scenario_ids: List[str]) -> pd.DataFrame:
        """Tabulate the stress levers of several scenarios side by side."""
        rows = []
        for scenario_id in scenario_ids:
            s = self.get_scenario(scenario_id)
            rows.append({
                "Scenario": s.name,
                "Market_Drawdown": s.market_drawdown,
                "Volatility_Multiplier": s.volatility_multiplier,
                "PD_Multiplier": s.pd_multiplier,
                "LGD_Multiplier": s.lgd_multiplier,
                "Default_Correlation": s.default_correlation,
                "Copula_DOF": s.copula_dof,
            })
        return pd.DataFrame(rows)
