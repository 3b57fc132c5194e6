"""Pytest fixtures for crypto loan risk engine tests."""

import pytest

from crypto_loan_risk import (
    AssetType,
    CryptoAsset,
    EngineConfig,
    Loan,
    MonteCarloEngine,
    Portfolio,
)


@pytest.fixture
def current_prices():
    """Spot prices used across tests."""
    return {
        AssetType.BTC: 100_000.0,
        AssetType.ETH: 3_000.0,
        AssetType.SOL: 150.0,
    }


@pytest.fixture
def sample_loan():
    """A healthy BTC loan at 50% LTV when BTC trades at $100k."""
    return Loan(
        loan_id="L-BTC-1",
        borrower_name="Alpha Capital",
        rating="A",
        principal=500_000,
        lending_rate=0.0945,
        collateral=CryptoAsset(AssetType.BTC, 10.0),
    )


@pytest.fixture
def at_the_money_loan():
    """$1M against 10 BTC: 100% LTV at $100k."""
    return Loan(
        loan_id="L-ATM",
        borrower_name="Atm Borrower",
        rating="A",
        principal=1_000_000,
        lending_rate=0.09,
        collateral=CryptoAsset(AssetType.BTC, 10.0),
    )


@pytest.fixture
def sample_portfolio(sample_loan):
    """Create a simple portfolio with one loan."""
    return Portfolio([sample_loan], risk_capital=100_000, name="TestPortfolio")


@pytest.fixture
def multi_loan_portfolio():
    """Create a portfolio with loans across all three collateral assets."""
    loans = [
        Loan(
            loan_id="L-1",
            borrower_name="Alpha Capital",
            rating="A",
            principal=600_000,
            lending_rate=0.09,
            collateral=CryptoAsset(AssetType.BTC, 8.0),
            leverage=1.5,
        ),
        Loan(
            loan_id="L-2",
            borrower_name="Beta Trading",
            rating="BBB",
            principal=250_000,
            lending_rate=0.11,
            collateral=CryptoAsset(AssetType.ETH, 120.0),
            leverage=2.0,
        ),
        Loan(
            loan_id="L-3",
            borrower_name="Gamma Fund",
            rating="BB",
            principal=150_000,
            lending_rate=0.13,
            collateral=CryptoAsset(AssetType.SOL, 1_500.0),
            leverage=3.0,
        ),
        Loan(
            loan_id="L-4",
            borrower_name="Alpha Capital",
            rating="CCC",
            principal=100_000,
            lending_rate=0.16,
            collateral=CryptoAsset(AssetType.ETH, 45.0),
            leverage=4.0,
        ),
    ]
    return Portfolio(loans, risk_capital=250_000, name="MultiLoanPortfolio")


@pytest.fixture
def engine_config():
    """Engine configuration with a fixed seed."""
    return EngineConfig(num_trials=1000, random_state=42)


@pytest.fixture
def monte_carlo_engine(engine_config):
    """Create a Monte Carlo engine with fixed random state."""
    return MonteCarloEngine(engine_config)
