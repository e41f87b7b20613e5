#!/usr/bin/env python3
"""
Quick Start Example
===================

Computes the tax on a retail deal in Birmingham, AL (trade-in credit
against state tax only) and on a 36-month lease in Beverly Hills, CA,
then prints the itemized breakdown.

Usage:
    python examples/quick_start.py
"""

from datetime import date
from decimal import Decimal

from dealtax.audit import AuditContext
from dealtax.engine import TaxEngine
from dealtax.models import LeaseTerms, TaxCalculationRequest, TransactionKind


def main() -> None:
    # Seeded jurisdiction data and rules, in-memory audit trail
    engine = TaxEngine()

    # $30,000 vehicle with a $10,000 trade-in, registered in Alabama
    retail = TaxCalculationRequest(
        transaction_kind=TransactionKind.RETAIL,
        vehicle_price=Decimal("30000.00"),
        trade_in_value=Decimal("10000.00"),
        zip_code="35203",
        registration_state="AL",
        as_of=date(2025, 6, 1),
    )
    quote = engine.calculate(retail, AuditContext(actor="example", deal_id="D-1001"))
    result = quote.result

    print(f"Calculation:    {quote.calculation_id}")
    print(f"Rule:           {result.rule_id}")
    print(f"State Base:     ${result.state_taxable_base:,.2f}")
    print(f"Local Base:     ${result.local_taxable_base:,.2f}")
    for line in result.lines:
        print(f"  {line.jurisdiction:<24} {line.rate:>8} on ${line.base:>10,.2f} = ${line.amount:,.2f}")
    print(f"Total Tax:      ${result.total_tax:,.2f}")
    print(f"Effective Rate: {result.effective_rate * 100:.3f}%")

    # 36-month lease in California with $3,000 cash down
    print("\n--- Lease ---")
    lease = TaxCalculationRequest(
        transaction_kind=TransactionKind.LEASE,
        vehicle_price=Decimal("40000.00"),
        zip_code="90210",
        registration_state="CA",
        lease_terms=LeaseTerms(
            residual_value=Decimal("24000.00"),
            term_months=36,
            money_factor=Decimal("0.00250"),
            cash_down=Decimal("3000.00"),
        ),
        as_of=date(2025, 6, 1),
    )
    quote = engine.calculate(lease, AuditContext(actor="example", deal_id="D-1002"))
    detail = quote.result.lease

    print(f"Method:         {detail.method}")
    print(f"Payment:        ${detail.payment_base:,.2f}")
    print(f"Tax/Payment:    ${detail.tax_per_payment:,.2f}")
    print(f"Due at Signing: ${detail.upfront_tax:,.2f}")
    print(f"Total Tax:      ${quote.total_tax:,.2f}")

    for advisory in quote.advisories:
        print(f"Advisory:       {advisory.kind}: {advisory.message}")


if __name__ == "__main__":
    main()
