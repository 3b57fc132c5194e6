#!/usr/bin/env python3
"""Example usage of the crypto-collateralized loan risk engine.

This script demonstrates:
1. Creating a BTC / ETH / SOL collateralized loan book
2. Loan-level LTV, margin status and margin event probabilities
3. Running the baseline Monte Carlo simulation
4. Portfolio metrics, risk contributions and risk decomposition
5. Running every catalog stress scenario side by side
"""

from datetime import date

from crypto_loan_risk import (
    AssetType,
    CryptoAsset,
    EngineConfig,
    Loan,
    Portfolio,
    RiskEngine,
    calculate_risk_contributions,
    configure_logging,
    create_contribution_report,
    create_decomposition_report,
    create_metrics_report,
    create_scenario_comparison_report,
    loan_metrics,
    risk_decomposition,
)


CURRENT_PRICES = {
    AssetType.BTC: 100_000.0,
    AssetType.ETH: 3_500.0,
    AssetType.SOL: 180.0,
}


def create_sample_portfolio() -> Portfolio:
    """Create a sample crypto-backed loan book."""
    loans_data = [
        {"id": "L-001", "borrower": "Alpha Capital", "rating": "A", "principal": 2_000_000,
         "rate": 0.0945, "asset": AssetType.BTC, "quantity": 32.0, "leverage": 1.5},
        {"id": "L-002", "borrower": "Beta Trading", "rating": "BBB", "principal": 1_500_000,
         "rate": 0.1050, "asset": AssetType.ETH, "quantity": 680.0, "leverage": 2.0},
        {"id": "L-003", "borrower": "Gamma Fund", "rating": "BB", "principal": 750_000,
         "rate": 0.1250, "asset": AssetType.SOL, "quantity": 6_500.0, "leverage": 3.0},
        {"id": "L-004", "borrower": "Delta Markets", "rating": "AA", "principal": 3_000_000,
         "rate": 0.0850, "asset": AssetType.BTC, "quantity": 55.0, "leverage": 1.0},
        {"id": "L-005", "borrower": "Epsilon Labs", "rating": "B", "principal": 400_000,
         "rate": 0.1450, "asset": AssetType.ETH, "quantity": 170.0, "leverage": 4.0},
    ]

    loans = [
        Loan(
            loan_id=data["id"],
            borrower_name=data["borrower"],
            rating=data["rating"],
            principal=data["principal"],
            lending_rate=data["rate"],
            collateral=CryptoAsset(data["asset"], data["quantity"]),
            origination_date=date(2024, 1, 15),
            haircut=0.10,
            leverage=data["leverage"],
        )
        for data in loans_data
    ]
    return Portfolio(loans, risk_capital=1_500_000, name="Sample Crypto Book")


def main():
    """Run the example."""
    configure_logging()

    print("=" * 70)
    print("CRYPTO-COLLATERALIZED LOAN RISK ENGINE - EXAMPLE")
    print("=" * 70)

    print("\n1. Creating sample portfolio...")
    portfolio = create_sample_portfolio()
    print(f"   Portfolio: {portfolio.name}")
    print(f"   Number of loans: {len(portfolio)}")
    print(f"   Total exposure: ${portfolio.total_exposure:,.0f}")
    print(f"   Collateral value: ${portfolio.total_collateral_value(CURRENT_PRICES):,.0f}")
    print(f"   Ratings: {sorted(t.value for t in portfolio.get_ratings())}")

    engine = RiskEngine(EngineConfig(num_trials=5000, random_state=42), parallel=True)

    print("\n2. Loan monitoring...")
    for loan in portfolio:
        price = CURRENT_PRICES[loan.asset_type]
        snapshot = loan_metrics(loan, price)
        events = engine.margin_event_probability(loan, price, horizon_days=5)
        print(f"   {loan.loan_id} {loan.asset_type.value}: LTV {snapshot.ltv:.1%} "
              f"({snapshot.margin_status}), 5d call {events.margin_call_probability:.2%}, "
              f"5d liquidation {events.liquidation_probability:.2%}")

    print("\n3. Running baseline Monte Carlo simulation...")
    result = engine.simulate_portfolio_loss(portfolio, CURRENT_PRICES, horizon_days=30)
    print(f"   Trials simulated: {result.num_trials:,}")
    print(f"   Expected Loss: ${result.mean_loss:,.0f}")
    print(f"   VaR (99%): ${result.var_99:,.0f}")
    print(f"   Expected Shortfall (99%): ${result.cvar_99:,.0f}")
    print(f"   Average Default Rate: {result.default_rate:.4f}")

    print("\n4. Portfolio metrics...")
    metrics = engine.calculate_portfolio_metrics(
        portfolio, CURRENT_PRICES, scenario=engine.get_scenario("stable-growth")
    )
    print(create_metrics_report(metrics).to_string(index=False))

    print("\n5. Risk contributions (99% VaR)...")
    contributions = calculate_risk_contributions(portfolio, result, confidence=0.99)
    report = create_contribution_report(contributions, portfolio)
    display_cols = ['Loan', 'Asset', 'Rating', 'Principal', 'Expected_Loss', 'Marginal_VaR']
    print(report[display_cols].to_string(index=False))

    print("\n6. Risk decomposition by asset and rating...")
    print(create_decomposition_report(risk_decomposition(portfolio, result, by="asset"),
                                      "Asset").to_string(index=False))
    print(create_decomposition_report(risk_decomposition(portfolio, result, by="rating"),
                                      "Rating").to_string(index=False))

    print("\n7. Stress scenarios...")
    print(engine.catalog.compare_scenarios(engine.catalog.scenario_ids).to_string(index=False))
    scenario_results = engine.run_scenarios(portfolio, CURRENT_PRICES)
    print(create_scenario_comparison_report(scenario_results).to_string(index=False))

    print("\n" + "=" * 70)
    print("SIMULATION COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    main()
