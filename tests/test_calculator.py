"""Tests for the TaxCalculator engine."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from dealtax.calculator import TaxCalculator
from dealtax.errors import InvalidInput
from dealtax.jurisdictions import (
    SOURCE_DATABASE,
    SOURCE_FALLBACK,
    Jurisdiction,
    JurisdictionSet,
    JurisdictionType,
)
from dealtax.models import (
    AccessoryItem,
    FeeCategory,
    FeeItem,
    LeaseTerms,
    LineKind,
    Rebate,
    RebateSource,
    TaxCalculationRequest,
    TransactionKind,
)
from dealtax.state_rules import (
    LeaseComponent,
    LeaseTaxMethod,
    ReciprocityMode,
    ReciprocityScope,
    StateRule,
    TradeInCredit,
    VehicleTaxScheme,
)

D = Decimal
AS_OF = date(2025, 6, 1)


@pytest.fixture
def calc() -> TaxCalculator:
    return TaxCalculator()


def _jset(
    state_rate: str = "0.02",
    local_rates: tuple[str, ...] = ("0.04",),
    state: str = "AL",
    source: str = SOURCE_DATABASE,
) -> JurisdictionSet:
    layers = [
        Jurisdiction(f"{state}-STATE", JurisdictionType.STATE, state, "State", D(state_rate), date(2020, 1, 1))
    ]
    for i, rate in enumerate(local_rates):
        layers.append(
            Jurisdiction(
                f"{state}-LOCAL-{i}",
                JurisdictionType.COUNTY if i == 0 else JurisdictionType.CITY,
                state,
                f"Local {i}",
                D(rate),
                date(2020, 1, 1),
            )
        )
    return JurisdictionSet(
        zip_code="35203", state_code=state, as_of=AS_OF, layers=tuple(layers), source=source
    )


def _req(
    price: str = "30000.00",
    trade_in: str = "0",
    payoff: str = "0",
    state: str = "AL",
    **kwargs,
) -> TaxCalculationRequest:
    return TaxCalculationRequest(
        transaction_kind=kwargs.pop("kind", TransactionKind.RETAIL),
        vehicle_price=D(price),
        trade_in_value=D(trade_in),
        trade_in_payoff=D(payoff),
        zip_code="35203",
        registration_state=state,
        as_of=AS_OF,
        **kwargs,
    )


def _lease(
    price: str = "40000.00",
    residual: str = "24000.00",
    term: int = 36,
    mf: str = "0.0025",
    cash_down: str = "0",
    trade_in: str = "0",
    payment: str | None = None,
    **kwargs,
) -> TaxCalculationRequest:
    return _req(
        price=price,
        trade_in=trade_in,
        kind=TransactionKind.LEASE,
        lease_terms=LeaseTerms(
            residual_value=D(residual),
            term_months=term,
            money_factor=D(mf),
            cash_down=D(cash_down),
            monthly_payment=D(payment) if payment else None,
        ),
        **kwargs,
    )


# ── Retail: trade-in credit ──────────────────────────────────────────


def test_trade_in_credits_state_tax_only(calc: TaxCalculator):
    rule = StateRule("AL", trade_in_applies_to_local=False)
    result = calc.calculate(_req("30000.00", "10000.00"), _jset("0.02", ("0.04",)), rule)

    state_line, local_line = result.lines
    assert state_line.base == D("20000.00")
    assert state_line.amount == D("400.00")
    assert local_line.base == D("30000.00")
    assert local_line.amount == D("1200.00")
    assert result.total_tax == D("1600.00")
    assert "Trade-in credit applied to state tax only" in result.notes


def test_full_credit_reduces_every_layer(calc: TaxCalculator):
    result = calc.calculate(
        _req("30000.00", "10000.00"), _jset("0.06", ("0.01",)), StateRule("FL")
    )
    assert result.state_taxable_base == D("20000.00")
    assert result.local_taxable_base == D("20000.00")
    assert result.trade_in_credit == D("10000.00")
    assert result.total_tax == D("1400.00")


def test_capped_credit_never_exceeds_cap(calc: TaxCalculator):
    rule = StateRule("MI", trade_in_credit=TradeInCredit.CAPPED, trade_in_cap=D("10000.00"))
    result = calc.calculate(_req("40000.00", "15000.00"), _jset("0.06", ()), rule)
    assert result.trade_in_credit == D("10000.00")
    assert result.state_taxable_base == D("30000.00")
    assert result.total_tax == D("1800.00")
    assert any("capped" in n for n in result.notes)


def test_capped_credit_below_cap_is_full_value(calc: TaxCalculator):
    rule = StateRule("MI", trade_in_credit=TradeInCredit.CAPPED, trade_in_cap=D("10000.00"))
    result = calc.calculate(_req("40000.00", "4000.00"), _jset("0.06", ()), rule)
    assert result.trade_in_credit == D("4000.00")
    assert result.state_taxable_base == D("36000.00")


def test_no_trade_in_credit(calc: TaxCalculator):
    rule = StateRule("CA", trade_in_credit=TradeInCredit.NONE)
    result = calc.calculate(_req("30000.00", "10000.00"), _jset("0.0725", ()), rule)
    assert result.trade_in_credit == D("0")
    assert result.state_taxable_base == D("30000.00")
    assert result.total_tax == D("2175.00")


def test_percent_credit_takes_share_of_value(calc: TaxCalculator):
    rule = StateRule("XX", trade_in_credit=TradeInCredit.PERCENT, trade_in_percent=D("0.5"))
    result = calc.calculate(_req("30000.00", "10000.00"), _jset("0.02", ()), rule)
    assert result.trade_in_credit == D("5000.00")
    assert result.state_taxable_base == D("25000.00")
    assert result.total_tax == D("500.00")
    assert "50% trade-in credit" in result.notes


def test_state_only_scheme_drops_local_layers(calc: TaxCalculator):
    rule = StateRule("XX", vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY)
    result = calc.calculate(_req("30000.00"), _jset("0.02", ("0.04", "0.01")), rule)
    assert len(result.lines) == 1
    assert result.total_tax == D("600.00")
    assert result.combined_local_rate == D("0")
    assert "XX taxes vehicles at the state rate only" in result.notes


def test_base_clamped_at_zero(calc: TaxCalculator):
    result = calc.calculate(
        _req("10000.00", "12000.00", trade_in_over_price_allowed=True),
        _jset(),
        StateRule("FL"),
    )
    assert result.state_taxable_base == D("0")
    assert result.total_tax == D("0.00")
    assert all(line.amount >= 0 for line in result.lines)


# ── Retail: rebates and negative equity ──────────────────────────────


def test_manufacturer_rebate_reduces_base_when_rule_says_so(calc: TaxCalculator):
    rule = StateRule("IL", manufacturer_rebate_reduces_base=True)
    rebates = (
        Rebate(RebateSource.MANUFACTURER, D("2000.00")),
        Rebate(RebateSource.DEALER, D("500.00")),
    )
    result = calc.calculate(_req(rebates=rebates), _jset("0.0625", ()), rule)
    # dealer rebate stays taxable
    assert result.state_taxable_base == D("28000.00")


def test_rebates_taxable_by_default(calc: TaxCalculator):
    rebates = (Rebate(RebateSource.MANUFACTURER, D("2000.00")),)
    result = calc.calculate(_req(rebates=rebates), _jset(), StateRule("AL"))
    assert result.state_taxable_base == D("30000.00")


def test_negative_equity_excluded_by_default(calc: TaxCalculator):
    result = calc.calculate(_req("30000.00", "5000.00", "8000.00"), _jset(), StateRule("AL"))
    assert result.negative_equity == D("3000.00")
    assert result.state_taxable_base == D("25000.00")


def test_negative_equity_taxed_when_rule_says_so(calc: TaxCalculator):
    rule = StateRule("IN", negative_equity_taxable_retail=True)
    result = calc.calculate(_req("30000.00", "5000.00", "8000.00"), _jset("0.07", ()), rule)
    assert result.state_taxable_base == D("28000.00")
    assert result.total_tax == D("1960.00")


# ── Fees and accessories ─────────────────────────────────────────────


def test_fee_taxability_follows_rule_flags(calc: TaxCalculator):
    fees = (
        FeeItem("DOC", FeeCategory.DOC_FEE, D("500.00")),
        FeeItem("VSC", FeeCategory.SERVICE_CONTRACT, D("2000.00")),
        FeeItem("TITLE", FeeCategory.TITLE, D("100.00")),
        FeeItem("ETCH", FeeCategory.OTHER, D("200.00"), taxable_hint=True),
        FeeItem("NITRO", FeeCategory.OTHER, D("99.00")),
    )
    result = calc.calculate(_req(fees=fees), _jset("0.02", ("0.04",)), StateRule("AL"))
    fee_lines = result.lines_of(LineKind.FEE)
    assert [line.base for line in fee_lines] == [D("500.00"), D("200.00")]
    assert [line.amount for line in fee_lines] == [D("30.00"), D("12.00")]
    assert result.doc_fee_charged == D("500.00")


def test_taxable_override_wins(calc: TaxCalculator):
    fees = (
        FeeItem("DOC", FeeCategory.DOC_FEE, D("500.00"), taxable_override=False),
        FeeItem("VSC", FeeCategory.SERVICE_CONTRACT, D("1000.00"), taxable_override=True),
    )
    result = calc.calculate(_req(fees=fees), _jset("0.05", ()), StateRule("AL"))
    fee_lines = result.lines_of(LineKind.FEE)
    assert len(fee_lines) == 1
    assert fee_lines[0].amount == D("50.00")


def test_service_contract_taxable_in_state_that_taxes_it(calc: TaxCalculator):
    fees = (FeeItem("VSC", FeeCategory.SERVICE_CONTRACT, D("1500.00")),)
    rule = StateRule("FL", service_contract_taxable=True)
    result = calc.calculate(_req(fees=fees), _jset("0.06", ("0.01",)), rule)
    assert result.lines_of(LineKind.FEE)[0].amount == D("105.00")


def test_accessory_after_delivery_uses_general_rate(calc: TaxCalculator):
    rule = StateRule("AL", general_sales_rate=D("0.04"))
    items = (
        AccessoryItem("Floor mats", D("200.00")),
        AccessoryItem("Tow hitch", D("1000.00"), at_time_of_sale=False),
    )
    result = calc.calculate(_req(accessories=items), _jset("0.02", ("0.04",)), rule)
    at_sale, after = result.lines_of(LineKind.ACCESSORY)
    assert at_sale.rate == D("0.06")
    assert at_sale.amount == D("12.00")
    assert after.rate == D("0.08")
    assert after.amount == D("80.00")


# ── Result properties ────────────────────────────────────────────────


def test_lines_sum_to_total(calc: TaxCalculator):
    request = _req(
        "31999.99",
        "7321.45",
        rebates=(Rebate(RebateSource.DEALER, D("333.33")),),
        fees=(FeeItem("DOC", FeeCategory.DOC_FEE, D("489.99")),),
        accessories=(AccessoryItem("Mats", D("129.95")),),
    )
    rule = StateRule("XX", dealer_rebate_reduces_base=True)
    result = calc.calculate(request, _jset("0.0625", ("0.0175", "0.01375")), rule)
    assert sum(line.amount for line in result.lines) == result.total_tax
    for line in result.lines:
        assert line.amount == line.amount.quantize(D("0.01"))


def test_recomputation_is_identical(calc: TaxCalculator):
    request = _req("30000.00", "10000.00")
    rule = StateRule("AL", trade_in_applies_to_local=False)
    first = calc.calculate(request, _jset(), rule)
    second = calc.calculate(request, _jset(), rule)
    assert first == second
    assert first.to_dict() == second.to_dict()


def test_effective_rate(calc: TaxCalculator):
    result = calc.calculate(_req("20000.00"), _jset("0.02", ("0.04",)), StateRule("AL"))
    assert result.total_tax == D("1200.00")
    assert result.effective_rate == D("0.060000")


def test_fallback_source_and_default_rule_noted(calc: TaxCalculator):
    rule = replace(StateRule("OH"), is_default=True)
    result = calc.calculate(_req(state="OH"), _jset("0.0575", (), "OH", SOURCE_FALLBACK), rule)
    assert result.used_fallback_jurisdiction
    assert result.used_fallback_rule
    assert result.rule_id == "OH-default"
    assert len(result.notes) == 2


# ── Lease: upfront ───────────────────────────────────────────────────


def test_upfront_lease_taxes_total_lease_price(calc: TaxCalculator):
    rule = StateRule("NY", lease_tax_method=LeaseTaxMethod.UPFRONT)
    result = calc.calculate(_lease(), _jset("0.04", ("0.045",)), rule)
    # (40000 - 24000) + (40000 + 24000) x 0.0025 x 36 = 16000 + 5760
    assert result.lease.upfront_base == D("21760.00")
    assert result.lease.finance_charge == D("5760.00")
    assert [line.amount for line in result.lines] == [D("870.40"), D("979.20")]
    assert result.total_tax == D("1849.60")


def test_upfront_lease_tax_uses_unrounded_price(calc: TaxCalculator):
    rule = StateRule("XX", lease_tax_method=LeaseTaxMethod.UPFRONT)
    request = _lease("1000.00", "900.00", 1, "0.00002374")
    result = calc.calculate(request, _jset("0.10", ()), rule)
    # 100 + 1900 x 0.00002374 = 100.045106; taxing the rounded 100.05 would give 10.01
    assert result.lease.upfront_base == D("100.05")
    assert result.lines[0].base == D("100.05")
    assert result.lines[0].amount == D("10.00")
    assert result.total_tax == D("10.00")


def test_upfront_lease_ignores_cash_down(calc: TaxCalculator):
    rule = StateRule("NY", lease_tax_method=LeaseTaxMethod.UPFRONT)
    jset = _jset("0.04", ("0.045",))
    without = calc.calculate(_lease(cash_down="0"), jset, rule)
    with_down = calc.calculate(_lease(cash_down="5000.00"), jset, rule)
    assert with_down.total_tax == without.total_tax
    assert with_down.lease.excluded_cap_reductions == D("5000.00")


def test_upfront_lease_cash_down_reduces_when_rule_says_so(calc: TaxCalculator):
    rule = StateRule(
        "XX", lease_tax_method=LeaseTaxMethod.UPFRONT, cap_reduction_reduces_base=True
    )
    jset = _jset("0.05", ())
    without = calc.calculate(_lease(cash_down="0"), jset, rule)
    with_down = calc.calculate(_lease(cash_down="5000.00"), jset, rule)
    assert with_down.total_tax < without.total_tax


def test_lease_cash_down_excluded_trade_equity_taxed(calc: TaxCalculator):
    rule = StateRule(
        "XX", lease_tax_method=LeaseTaxMethod.UPFRONT, lease_trade_in_credit=False
    )
    jset = _jset("0.04", ("0.045",))
    result = calc.calculate(_lease(cash_down="5000.00", trade_in="5000.00"), jset, rule)

    assert result.lease.excluded_cap_reductions == D("5000.00")
    assert result.lease.taxed_cap_reductions == D("5000.00")
    # uncredited equity leaves the taxed cap cost at the full 40000
    assert result.lease.upfront_base == D("21760.00")
    assert any("not credited on lease" in n for n in result.notes)


def test_lease_trade_equity_credited_when_allowed(calc: TaxCalculator):
    rule = StateRule("XX", lease_tax_method=LeaseTaxMethod.UPFRONT)
    result = calc.calculate(_lease(trade_in="5000.00"), _jset("0.05", ()), rule)
    # taxed cap 35000: 11000 + (35000 + 24000) x 0.09
    assert result.lease.upfront_base == D("16310.00")
    assert result.lease.taxed_cap_reductions == D("0")
    assert result.total_tax == D("815.50")


def test_residual_above_cap_cost_rejected(calc: TaxCalculator):
    with pytest.raises(InvalidInput) as exc:
        calc.calculate(_lease(residual="45000.00"), _jset(), StateRule("XX"))
    assert exc.value.field == "lease_terms.residual_value"


# ── Lease: monthly and hybrid ────────────────────────────────────────


def test_monthly_lease_taxes_each_payment(calc: TaxCalculator):
    request = _lease("30000.00", "18000.00", 36, "0.002", cash_down="3000.00")
    result = calc.calculate(request, _jset("0.0625", ()), StateRule("IL"))
    # adjusted cap 27000: 9000 / 36 + (27000 + 18000) x 0.002 = 250 + 90
    assert result.lease.payment_base == D("340.00")
    assert result.lease.tax_per_payment == D("21.25")
    payment_line = result.lines_of(LineKind.LEASE_PAYMENT)[0]
    assert payment_line.amount == D("765.00")
    cap_line = result.lines_of(LineKind.LEASE_CAP_REDUCTION)[0]
    assert cap_line.amount == D("187.50")
    assert result.total_tax == D("952.50")
    assert result.lease.total_tax_over_term == D("952.50")


def test_monthly_lease_uses_given_payment(calc: TaxCalculator):
    request = _lease("30000.00", "18000.00", 36, "0.002", payment="400.00")
    result = calc.calculate(request, _jset("0.0625", ()), StateRule("IL"))
    assert result.lease.payment_base == D("400.00")
    assert result.lease.tax_per_payment == D("25.00")
    assert result.total_tax == D("900.00")


def test_monthly_payment_tax_rounded_per_payment(calc: TaxCalculator):
    request = _lease("30000.00", "18000.00", 36, "0.002", payment="333.33")
    result = calc.calculate(request, _jset("0.0625", ()), StateRule("IL"))
    # 333.33 x 0.0625 = 20.833125 -> 20.83 per payment
    assert result.lease.tax_per_payment == D("20.83")
    assert result.total_tax == D("749.88")


def test_hybrid_lease_taxes_only_listed_components_upfront(calc: TaxCalculator):
    request = _lease("30000.00", "18000.00", 36, "0.002", cash_down="1000.00", trade_in="2000.00")
    jset = _jset("0.05", ())
    monthly = StateRule("XX", lease_trade_in_credit=False)
    hybrid = replace(
        monthly,
        lease_tax_method=LeaseTaxMethod.HYBRID,
        hybrid_upfront_components=frozenset({LeaseComponent.CASH_DOWN}),
    )

    m = calc.calculate(request, jset, monthly)
    h = calc.calculate(request, jset, hybrid)
    assert m.lease.taxed_cap_reductions == D("3000.00")
    assert h.lease.taxed_cap_reductions == D("1000.00")
    assert h.lease.excluded_cap_reductions == D("2000.00")
    assert m.lease.payment_base == h.lease.payment_base
    assert h.total_tax == m.total_tax - D("100.00")


def test_lease_fees_taxed_upfront(calc: TaxCalculator):
    fees = (FeeItem("DOC", FeeCategory.DOC_FEE, D("300.00")),)
    request = _lease("30000.00", "18000.00", 36, "0.002", fees=fees)
    result = calc.calculate(request, _jset("0.05", ()), StateRule("IL"))
    assert result.lines_of(LineKind.FEE)[0].amount == D("15.00")


# ── Interstate ───────────────────────────────────────────────────────


def _reciprocal_rule(**kwargs) -> StateRule:
    return StateRule(
        "AL",
        trade_in_applies_to_local=False,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        **kwargs,
    )


def test_reciprocity_credit_for_tax_paid_elsewhere(calc: TaxCalculator):
    request = _req(
        "30000.00", "10000.00", state="GA", dealership_state="AL", tax_paid_elsewhere=D("300.00")
    )
    result = calc.calculate(request, _jset(), _reciprocal_rule())
    credit = result.lines_of(LineKind.RECIPROCITY_CREDIT)[0]
    assert credit.is_credit
    assert credit.amount == D("-300.00")
    assert result.reciprocity_credit == D("300.00")
    assert result.total_tax == D("1300.00")


def test_reciprocity_credit_never_exceeds_tax_owed(calc: TaxCalculator):
    request = _req(
        "30000.00", "10000.00", state="GA", dealership_state="AL", tax_paid_elsewhere=D("5000.00")
    )
    result = calc.calculate(request, _jset(), _reciprocal_rule())
    assert result.reciprocity_credit == D("1600.00")
    assert result.total_tax == D("0.00")


def test_no_credit_for_non_reciprocal_state(calc: TaxCalculator):
    request = _req(state="GA", dealership_state="AL", tax_paid_elsewhere=D("300.00"))
    rule = _reciprocal_rule(non_reciprocal_states=frozenset({"GA"}))
    result = calc.calculate(request, _jset(), rule)
    assert result.reciprocity_credit == D("0")
    assert not result.lines_of(LineKind.RECIPROCITY_CREDIT)
    assert any("non-reciprocal" in n for n in result.notes)


def test_no_credit_when_rule_has_no_reciprocity(calc: TaxCalculator):
    request = _req(state="GA", dealership_state="AL", tax_paid_elsewhere=D("300.00"))
    result = calc.calculate(request, _jset(), StateRule("AL"))
    assert result.reciprocity_credit == D("0")


def _interstate(**kwargs) -> TaxCalculationRequest:
    return _req(
        "30000.00",
        "10000.00",
        state="GA",
        dealership_state="AL",
        tax_paid_elsewhere=D("300.00"),
        **kwargs,
    )


def test_retail_only_reciprocity_skips_leases(calc: TaxCalculator):
    request = _lease(state="GA", dealership_state="AL", tax_paid_elsewhere=D("300.00"))
    rule = _reciprocal_rule(reciprocity_scope=ReciprocityScope.RETAIL_ONLY)
    result = calc.calculate(request, _jset(), rule)
    assert result.reciprocity_credit == D("0")
    assert "AL reciprocity does not cover lease deals" in result.notes


def test_lease_only_reciprocity_skips_retail(calc: TaxCalculator):
    rule = _reciprocal_rule(reciprocity_scope=ReciprocityScope.LEASE_ONLY)
    result = calc.calculate(_interstate(), _jset(), rule)
    assert result.reciprocity_credit == D("0")


@pytest.mark.parametrize(
    "paid_on, credit",
    [
        (date(2025, 5, 1), D("300.00")),
        (date(2025, 3, 3), D("300.00")),
        (date(2025, 3, 2), D("0")),
        (date(2025, 6, 2), D("0")),
        (None, D("0")),
    ],
)
def test_reciprocity_window(calc: TaxCalculator, paid_on, credit):
    rule = _reciprocal_rule(reciprocity_window_days=90)
    result = calc.calculate(_interstate(tax_paid_date=paid_on), _jset(), rule)
    assert result.reciprocity_credit == credit


def test_reciprocity_proof_required(calc: TaxCalculator):
    rule = _reciprocal_rule(reciprocity_requires_proof=True)
    without = calc.calculate(_interstate(), _jset(), rule)
    with_proof = calc.calculate(_interstate(proof_of_tax_paid=True), _jset(), rule)
    assert without.reciprocity_credit == D("0")
    assert "AL requires proof of tax paid to GA" in without.notes
    assert with_proof.reciprocity_credit == D("300.00")


def test_mutual_credit_needs_origin_state_to_reciprocate(calc: TaxCalculator):
    rule = _reciprocal_rule(reciprocity_requires_mutual_credit=True)
    ga = StateRule("GA", reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX)
    ga_excludes_al = replace(ga, non_reciprocal_states=frozenset({"AL"}))

    assert calc.calculate(_interstate(), _jset(), rule).reciprocity_credit == D("0")
    assert calc.calculate(_interstate(), _jset(), rule, origin_rule=ga).reciprocity_credit == D(
        "300.00"
    )
    excluded = calc.calculate(_interstate(), _jset(), rule, origin_rule=ga_excludes_al)
    assert excluded.reciprocity_credit == D("0")


def test_drive_out_waives_local_and_caps_rate(calc: TaxCalculator):
    request = _req("30000.00", "10000.00", state="GA", dealership_state="AL", removed_from_state=True)
    rule = _reciprocal_rule(drive_out_eligible=True)
    result = calc.calculate(request, _jset(), rule, destination_state_rate=D("0.01"))
    assert result.drive_out_applied
    assert len(result.lines) == 1
    assert result.lines[0].rate == D("0.01")
    assert result.total_tax == D("200.00")
    assert result.combined_local_rate == D("0")


def test_drive_out_uses_dealer_rate_when_lower(calc: TaxCalculator):
    request = _req("30000.00", state="GA", dealership_state="AL", removed_from_state=True)
    rule = _reciprocal_rule(drive_out_eligible=True)
    result = calc.calculate(request, _jset(), rule, destination_state_rate=D("0.07"))
    assert result.lines[0].rate == D("0.02")
    assert result.total_tax == D("600.00")


def test_drive_out_requires_removal(calc: TaxCalculator):
    request = _req("30000.00", state="GA", dealership_state="AL")
    rule = _reciprocal_rule(drive_out_eligible=True)
    result = calc.calculate(request, _jset(), rule, destination_state_rate=D("0.01"))
    assert not result.drive_out_applied
    assert len(result.lines) == 2


def test_lease_reciprocity_offsets_upfront_tax_only(calc: TaxCalculator):
    request = _lease(
        "30000.00",
        "18000.00",
        36,
        "0.002",
        cash_down="3000.00",
        state="GA",
        dealership_state="IL",
        tax_paid_elsewhere=D("1000.00"),
    )
    rule = StateRule("IL", reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX)
    result = calc.calculate(request, _jset("0.0625", (), "IL"), rule)
    assert result.reciprocity_credit == D("187.50")
    assert result.total_tax == D("765.00")
