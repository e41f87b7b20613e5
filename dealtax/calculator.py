"""
Vehicle sales and lease tax calculation.

Handles:
- Retail purchases with trade-in credit, rebates, negative equity
- Leases taxed upfront, monthly, or hybrid
- Fees, F&I products and accessories
- Reciprocity credit and drive-out for out-of-state buyers

The calculator is pure: it reads a request, a resolved jurisdiction set and
a state rule, and returns an immutable result. Identical inputs always give
an identical result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dealtax.errors import InvalidInput, UnknownJurisdiction
from dealtax.jurisdictions import Jurisdiction, JurisdictionSet, JurisdictionType
from dealtax.models import (
    ZERO,
    AccessoryItem,
    FeeCategory,
    FeeItem,
    LeaseTaxDetail,
    LeaseTerms,
    LineKind,
    TaxCalculationRequest,
    TaxCalculationResult,
    TaxLine,
    TransactionKind,
)
from dealtax.state_rules import (
    LeaseComponent,
    LeaseTaxMethod,
    ReciprocityMode,
    StateRule,
    TradeInCredit,
    VehicleTaxScheme,
)

logger = logging.getLogger(__name__)

_RATE_PLACES = Decimal("0.000001")


def _round_tax(amount: Decimal) -> Decimal:
    """Round to the nearest cent, halves away from zero."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class _Layer:
    """A jurisdiction and the rate actually applied to it."""

    jurisdiction: Jurisdiction
    rate: Decimal

    @property
    def is_state(self) -> bool:
        return self.jurisdiction.jurisdiction_type is JurisdictionType.STATE


class TaxCalculator:
    """
    Computes itemized tax for one deal.

    Usage:
        calc = TaxCalculator()
        result = calc.calculate(request, resolver.resolve("35203"), rule)
    """

    def calculate(
        self,
        request: TaxCalculationRequest,
        jurisdictions: JurisdictionSet,
        rule: StateRule,
        destination_state_rate: Optional[Decimal] = None,
        origin_rule: Optional[StateRule] = None,
    ) -> TaxCalculationResult:
        """
        Calculate tax for ``request``.

        ``destination_state_rate`` is the registration state's own rate; it
        caps the drive-out rate and is only consulted for drive-out deals.
        ``origin_rule`` is the registration state's rule, read only when the
        selling state grants reciprocity on mutual terms.
        """
        if not jurisdictions.layers:
            raise UnknownJurisdiction(f"No rates resolved for ZIP {jurisdictions.zip_code}")
        terms = request.lease_terms
        if request.transaction_kind is TransactionKind.LEASE and terms is None:
            raise InvalidInput("lease_terms", "required for lease transactions")

        notes: list[str] = []
        if rule.is_default:
            notes.append(f"No tax rule configured for {rule.state_code}; default rule applied")
        if jurisdictions.is_fallback:
            notes.append(
                f"ZIP {jurisdictions.zip_code} not found; state rate only for "
                f"{jurisdictions.state_code}"
            )

        layers, drive_out = self._layers(
            request, jurisdictions, rule, destination_state_rate, notes
        )

        lines: list[TaxLine] = []
        lease_detail: Optional[LeaseTaxDetail] = None
        if request.transaction_kind is TransactionKind.RETAIL:
            trade_credit = self._trade_credit(request.trade_in_value, rule, notes)
            state_base, local_base = self._retail_bases(request, rule, trade_credit, notes)
            for layer in layers:
                base = state_base if layer.is_state else local_base
                lines.append(self._line(LineKind.VEHICLE, layer, base))
            vehicle_taxable = state_base
        else:
            lease_lines, lease_detail, state_base, local_base = self._lease(
                request, terms, rule, layers, notes
            )
            lines.extend(lease_lines)
            trade_credit = self._lease_trade_credit(request, rule)
            if lease_detail.method == LeaseTaxMethod.UPFRONT.value:
                vehicle_taxable = state_base
            else:
                vehicle_taxable = (
                    lease_detail.payment_base * lease_detail.term_months
                    + lease_detail.taxed_cap_reductions
                )

        combined = sum((layer.rate for layer in layers), ZERO)
        fee_lines, fee_taxable, doc_fee_charged = self._fees(request.fees, rule, combined)
        lines.extend(fee_lines)
        acc_lines, acc_taxable = self._accessories(
            request.accessories, rule, layers, combined, drive_out
        )
        lines.extend(acc_lines)

        credit = self._reciprocity_credit(
            request, rule, origin_rule, lines, drive_out, notes
        )
        if credit > 0:
            lines.append(
                TaxLine(
                    kind=LineKind.RECIPROCITY_CREDIT,
                    jurisdiction=f"credit for tax paid to {request.registration_state}",
                    base=request.tax_paid_elsewhere,
                    rate=ZERO,
                    amount=-credit,
                    is_credit=True,
                    description="Reciprocity credit",
                )
            )

        total_tax = sum((line.amount for line in lines), ZERO)
        taxable_amount = vehicle_taxable + fee_taxable + acc_taxable
        if taxable_amount > 0:
            effective_rate = (total_tax / taxable_amount).quantize(
                _RATE_PLACES, rounding=ROUND_HALF_UP
            )
        else:
            effective_rate = ZERO

        state_layer = layers[0]
        local_rate = sum((layer.rate for layer in layers if not layer.is_state), ZERO)
        logger.debug(
            "%s %s in %s: total %s over %d lines (rule %s)",
            request.transaction_kind.value,
            request.vehicle_price,
            jurisdictions.zip_code,
            total_tax,
            len(lines),
            rule.rule_id,
        )
        return TaxCalculationResult(
            transaction_kind=request.transaction_kind,
            state_code=rule.state_code,
            lines=tuple(lines),
            total_tax=total_tax,
            taxable_amount=taxable_amount,
            state_taxable_base=state_base,
            local_taxable_base=local_base,
            effective_rate=effective_rate,
            state_rate=state_layer.rate,
            combined_local_rate=local_rate,
            total_rate=state_layer.rate + local_rate,
            jurisdiction_source=jurisdictions.source,
            jurisdiction_ids=jurisdictions.jurisdiction_ids,
            rule_id=rule.rule_id,
            used_fallback_rule=rule.is_default,
            vehicle_price=request.vehicle_price,
            trade_in_value=request.trade_in_value,
            trade_in_credit=trade_credit,
            negative_equity=request.negative_equity,
            trade_in_over_price_allowed=request.trade_in_over_price_allowed,
            doc_fee_charged=doc_fee_charged,
            doc_fee_cap=rule.doc_fee_cap,
            drive_out_applied=drive_out,
            reciprocity_credit=credit,
            lease=lease_detail,
            notes=tuple(notes),
        )

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    def _layers(
        self,
        request: TaxCalculationRequest,
        jurisdictions: JurisdictionSet,
        rule: StateRule,
        destination_state_rate: Optional[Decimal],
        notes: list[str],
    ) -> tuple[list[_Layer], bool]:
        drive_out = (
            request.is_interstate
            and request.removed_from_state
            and rule.drive_out_eligible
            and request.transaction_kind is TransactionKind.RETAIL
        )
        if not drive_out:
            if rule.vehicle_tax_scheme is VehicleTaxScheme.STATE_ONLY:
                if len(jurisdictions.layers) > 1:
                    notes.append(f"{rule.state_code} taxes vehicles at the state rate only")
                return [_Layer(jurisdictions.state, jurisdictions.state_rate)], False
            return [_Layer(j, j.rate) for j in jurisdictions.layers], False

        rate = jurisdictions.state_rate
        if destination_state_rate is not None and destination_state_rate < rate:
            rate = destination_state_rate
        notes.append(
            f"Drive-out: {rule.state_code} state tax at {rate} "
            f"(registered in {request.registration_state}); local tax waived"
        )
        return [_Layer(jurisdictions.state, rate)], True

    @staticmethod
    def _line(
        kind: LineKind, layer: _Layer, base: Decimal, description: str = ""
    ) -> TaxLine:
        return TaxLine(
            kind=kind,
            jurisdiction=layer.jurisdiction.name,
            jurisdiction_id=layer.jurisdiction.jurisdiction_id,
            base=base,
            rate=layer.rate,
            amount=_round_tax(base * layer.rate),
            description=description,
        )

    # ------------------------------------------------------------------
    # Retail
    # ------------------------------------------------------------------

    @staticmethod
    def _trade_credit(value: Decimal, rule: StateRule, notes: list[str]) -> Decimal:
        if value <= 0 or rule.trade_in_credit is TradeInCredit.NONE:
            return ZERO
        if rule.trade_in_credit is TradeInCredit.CAPPED and value > rule.trade_in_cap:
            notes.append(f"Trade-in credit capped at {rule.trade_in_cap}")
            return rule.trade_in_cap
        if rule.trade_in_credit is TradeInCredit.PERCENT:
            notes.append(f"{(rule.trade_in_percent * 100).normalize():f}% trade-in credit")
            return _round_tax(value * rule.trade_in_percent)
        return value

    @staticmethod
    def _reducing_rebates(request: TaxCalculationRequest, rule: StateRule) -> Decimal:
        return sum(
            (r.amount for r in request.rebates if rule.rebate_reduces_base(r.source.value)),
            ZERO,
        )

    def _retail_bases(
        self,
        request: TaxCalculationRequest,
        rule: StateRule,
        trade_credit: Decimal,
        notes: list[str],
    ) -> tuple[Decimal, Decimal]:
        gross = request.vehicle_price
        if rule.negative_equity_taxable_retail and request.negative_equity > 0:
            gross += request.negative_equity
            notes.append(f"Negative equity of {request.negative_equity} taxed")
        rebates = self._reducing_rebates(request, rule)

        state_base = max(gross - trade_credit - rebates, ZERO)
        if rule.trade_in_applies_to_local:
            local_base = state_base
        else:
            local_base = max(gross - rebates, ZERO)
            if trade_credit > 0:
                notes.append("Trade-in credit applied to state tax only")
        return state_base, local_base

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    @staticmethod
    def _lease_trade_credit(request: TaxCalculationRequest, rule: StateRule) -> Decimal:
        equity = request.trade_in_equity
        if not rule.lease_trade_in_credit or equity <= 0:
            return ZERO
        if rule.trade_in_credit is TradeInCredit.NONE:
            return ZERO
        if rule.trade_in_credit is TradeInCredit.CAPPED:
            return min(equity, rule.trade_in_cap)
        if rule.trade_in_credit is TradeInCredit.PERCENT:
            return _round_tax(equity * rule.trade_in_percent)
        return equity

    def _lease(
        self,
        request: TaxCalculationRequest,
        terms: LeaseTerms,
        rule: StateRule,
        layers: list[_Layer],
        notes: list[str],
    ) -> tuple[list[TaxLine], LeaseTaxDetail, Decimal, Decimal]:
        if terms.residual_value > request.vehicle_price:
            raise InvalidInput("lease_terms.residual_value", "exceeds capitalized cost")

        gross_cap = request.vehicle_price
        if rule.negative_equity_taxable_lease and request.negative_equity > 0:
            gross_cap += request.negative_equity

        equity = request.trade_in_equity
        trade_credit = self._lease_trade_credit(request, rule)
        uncredited_equity = equity - trade_credit
        if uncredited_equity > 0:
            notes.append(f"Trade-in equity of {uncredited_equity} not credited on lease")

        reducing = self._reducing_rebates(request, rule)
        all_rebates = sum((r.amount for r in request.rebates), ZERO)
        taxable_rebates = all_rebates - reducing

        cash_down_reduces = rule.cap_reduction_reduces_base
        method = rule.lease_tax_method

        if method is LeaseTaxMethod.UPFRONT:
            taxed_cap_state = gross_cap - trade_credit - reducing
            local_credit = trade_credit if rule.trade_in_applies_to_local else ZERO
            taxed_cap_local = gross_cap - local_credit - reducing
            if cash_down_reduces:
                taxed_cap_state -= terms.cash_down
                taxed_cap_local -= terms.cash_down

            def price(taxed_cap: Decimal) -> tuple[Decimal, Decimal]:
                finance = (taxed_cap + terms.residual_value) * terms.money_factor * terms.term_months
                depreciation = max(taxed_cap - terms.residual_value, ZERO)
                return depreciation + finance, finance

            exact_state, finance = price(taxed_cap_state)
            exact_local, _ = price(taxed_cap_local)
            state_base, local_base = _round_tax(exact_state), _round_tax(exact_local)

            # tax on the unrounded price; the base is rounded for display only
            lines = []
            for layer in layers:
                exact = exact_state if layer.is_state else exact_local
                lines.append(
                    TaxLine(
                        kind=LineKind.LEASE_UPFRONT,
                        jurisdiction=layer.jurisdiction.name,
                        jurisdiction_id=layer.jurisdiction.jurisdiction_id,
                        base=_round_tax(exact),
                        rate=layer.rate,
                        amount=_round_tax(exact * layer.rate),
                        description="Lease price taxed at inception",
                    )
                )
            upfront_tax = sum((line.amount for line in lines), ZERO)
            detail = LeaseTaxDetail(
                method=method.value,
                gross_cap_cost=gross_cap,
                residual_value=terms.residual_value,
                term_months=terms.term_months,
                finance_charge=_round_tax(finance),
                upfront_base=state_base,
                taxed_cap_reductions=uncredited_equity + taxable_rebates,
                excluded_cap_reductions=ZERO if cash_down_reduces else terms.cash_down,
                upfront_tax=upfront_tax,
                total_tax_over_term=upfront_tax,
            )
            return lines, detail, state_base, local_base

        # monthly and hybrid: payments taxed as billed, some reductions up front
        if method is LeaseTaxMethod.MONTHLY:
            upfront_components = frozenset(LeaseComponent)
        else:
            upfront_components = rule.hybrid_upfront_components

        reductions: dict[LeaseComponent, Decimal] = {
            LeaseComponent.CASH_DOWN: ZERO if cash_down_reduces else terms.cash_down,
            LeaseComponent.TRADE_IN_EQUITY: uncredited_equity,
            LeaseComponent.REBATES: taxable_rebates,
        }
        taxed_reductions = sum(
            (amount for c, amount in reductions.items() if c in upfront_components),
            ZERO,
        )
        excluded = sum(
            (amount for c, amount in reductions.items() if c not in upfront_components),
            ZERO,
        )
        if cash_down_reduces:
            excluded += terms.cash_down

        adjusted = gross_cap - terms.cash_down - equity - all_rebates
        rent = (adjusted + terms.residual_value) * terms.money_factor
        if terms.monthly_payment is not None:
            payment = terms.monthly_payment
        else:
            depreciation = (adjusted - terms.residual_value) / terms.term_months
            payment = _round_tax(max(depreciation, ZERO) + rent)
        finance = rent * terms.term_months

        lines = []
        per_payment = ZERO
        for layer in layers:
            if taxed_reductions > 0:
                lines.append(
                    self._line(
                        LineKind.LEASE_CAP_REDUCTION,
                        layer,
                        taxed_reductions,
                        "Cap cost reduction taxed up front",
                    )
                )
            tax_each = _round_tax(payment * layer.rate)
            per_payment += tax_each
            lines.append(
                TaxLine(
                    kind=LineKind.LEASE_PAYMENT,
                    jurisdiction=layer.jurisdiction.name,
                    jurisdiction_id=layer.jurisdiction.jurisdiction_id,
                    base=payment,
                    rate=layer.rate,
                    amount=tax_each * terms.term_months,
                    description=f"{terms.term_months} payments at {tax_each}",
                )
            )

        upfront_tax = sum(
            (line.amount for line in lines if line.kind is LineKind.LEASE_CAP_REDUCTION),
            ZERO,
        )
        detail = LeaseTaxDetail(
            method=method.value,
            gross_cap_cost=gross_cap,
            residual_value=terms.residual_value,
            term_months=terms.term_months,
            finance_charge=_round_tax(max(finance, ZERO)),
            upfront_base=taxed_reductions,
            taxed_cap_reductions=taxed_reductions,
            excluded_cap_reductions=excluded,
            payment_base=payment,
            tax_per_payment=per_payment,
            upfront_tax=upfront_tax,
            total_tax_over_term=upfront_tax + per_payment * terms.term_months,
        )
        return lines, detail, payment, payment

    # ------------------------------------------------------------------
    # Fees and accessories
    # ------------------------------------------------------------------

    @staticmethod
    def _fee_taxable(fee: FeeItem, rule: StateRule) -> bool:
        if fee.taxable_override is not None:
            return fee.taxable_override
        if fee.category is FeeCategory.DOC_FEE:
            return rule.doc_fee_taxable
        if fee.category is FeeCategory.SERVICE_CONTRACT:
            return rule.service_contract_taxable
        if fee.category is FeeCategory.GAP:
            return rule.gap_taxable
        if fee.category in (FeeCategory.TITLE, FeeCategory.REGISTRATION):
            return False
        return bool(fee.taxable_hint)

    def _fees(
        self, fees: tuple[FeeItem, ...], rule: StateRule, rate: Decimal
    ) -> tuple[list[TaxLine], Decimal, Decimal]:
        lines: list[TaxLine] = []
        taxable = ZERO
        doc_fee = ZERO
        for fee in fees:
            if fee.category is FeeCategory.DOC_FEE:
                doc_fee += fee.amount
            if not self._fee_taxable(fee, rule) or fee.amount == 0:
                continue
            taxable += fee.amount
            lines.append(
                TaxLine(
                    kind=LineKind.FEE,
                    jurisdiction="combined",
                    base=fee.amount,
                    rate=rate,
                    amount=_round_tax(fee.amount * rate),
                    description=f"{fee.category.value}:{fee.code}",
                )
            )
        return lines, taxable, doc_fee

    def _accessories(
        self,
        items: tuple[AccessoryItem, ...],
        rule: StateRule,
        layers: list[_Layer],
        combined: Decimal,
        drive_out: bool,
    ) -> tuple[list[TaxLine], Decimal]:
        local = sum((layer.rate for layer in layers if not layer.is_state), ZERO)
        lines: list[TaxLine] = []
        taxable = ZERO
        for item in items:
            is_taxable = (
                item.taxable_override
                if item.taxable_override is not None
                else rule.accessories_taxable
            )
            if not is_taxable or item.amount == 0:
                continue
            rate = combined
            if not item.at_time_of_sale and not drive_out:
                # added after delivery: ordinary sales tax, not the vehicle rate
                general = rule.general_sales_rate
                if general is None:
                    general = layers[0].rate
                rate = general + local
            taxable += item.amount
            lines.append(
                TaxLine(
                    kind=LineKind.ACCESSORY,
                    jurisdiction="combined",
                    base=item.amount,
                    rate=rate,
                    amount=_round_tax(item.amount * rate),
                    description=item.description,
                )
            )
        return lines, taxable

    # ------------------------------------------------------------------
    # Interstate
    # ------------------------------------------------------------------

    @staticmethod
    def _reciprocity_credit(
        request: TaxCalculationRequest,
        rule: StateRule,
        origin_rule: Optional[StateRule],
        lines: list[TaxLine],
        drive_out: bool,
        notes: list[str],
    ) -> Decimal:
        if drive_out or not request.is_interstate or request.tax_paid_elsewhere <= 0:
            return ZERO
        origin = request.registration_state
        if rule.reciprocity is ReciprocityMode.NONE:
            notes.append(f"{rule.state_code} gives no credit for tax paid elsewhere")
            return ZERO
        if origin in rule.non_reciprocal_states:
            notes.append(
                f"No reciprocity credit: {origin} is non-reciprocal with {rule.state_code}"
            )
            return ZERO
        kind = request.transaction_kind.value
        if not rule.reciprocity_scope.covers(kind):
            notes.append(f"{rule.state_code} reciprocity does not cover {kind} deals")
            return ZERO
        if rule.reciprocity_requires_mutual_credit and (
            origin_rule is None
            or origin_rule.is_default
            or origin_rule.reciprocity is ReciprocityMode.NONE
            or rule.state_code in origin_rule.non_reciprocal_states
            or not origin_rule.reciprocity_scope.covers(kind)
        ):
            notes.append(
                f"No reciprocity credit: {origin} does not credit tax paid to {rule.state_code}"
            )
            return ZERO
        if rule.reciprocity_window_days is not None:
            if request.tax_paid_date is None or request.as_of is None:
                notes.append("No reciprocity credit: tax payment date is required")
                return ZERO
            days = (request.as_of - request.tax_paid_date).days
            if days < 0 or days > rule.reciprocity_window_days:
                notes.append(
                    f"No reciprocity credit: tax paid {days} days before the deal, "
                    f"outside the {rule.reciprocity_window_days}-day window"
                )
                return ZERO
        if rule.reciprocity_requires_proof and not request.proof_of_tax_paid:
            notes.append(f"{rule.state_code} requires proof of tax paid to {origin}")
            return ZERO
        is_lease = request.transaction_kind is TransactionKind.LEASE

        # leases: only tax collected at signing can be offset
        owed = sum(
            (
                line.amount
                for line in lines
                if not (is_lease and line.kind is LineKind.LEASE_PAYMENT)
            ),
            ZERO,
        )
        credit = min(request.tax_paid_elsewhere, max(owed, ZERO))
        if credit > 0:
            notes.append(f"Reciprocity credit of {credit} for tax paid elsewhere")
        return credit
