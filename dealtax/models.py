"""
Request and result types for the tax engine.

Money is always ``Decimal``. At the JSON boundary amounts travel as decimal
strings; binary floats are rejected outright so no precision is lost on the
way in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from dealtax.errors import InvalidInput

ZERO = Decimal("0")


class TransactionKind(Enum):
    RETAIL = "retail"
    LEASE = "lease"


class RebateSource(Enum):
    MANUFACTURER = "manufacturer"
    DEALER = "dealer"


class FeeCategory(Enum):
    DOC_FEE = "doc_fee"
    SERVICE_CONTRACT = "service_contract"
    GAP = "gap"
    TITLE = "title"
    REGISTRATION = "registration"
    OTHER = "other"


def parse_decimal(value: Any, field_name: str, allow_negative: bool = False) -> Decimal:
    """Convert a boundary value to Decimal, naming ``field_name`` on failure."""
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidInput(
            field_name, f"must be a decimal string, not {type(value).__name__}"
        )
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidInput(field_name, f"not a number: {value!r}") from None
    else:
        raise InvalidInput(field_name, f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidInput(field_name, f"not a finite number: {value!r}")
    if amount < 0 and not allow_negative:
        raise InvalidInput(field_name, f"must not be negative, got {amount}")
    return amount


def _optional_decimal(data: dict, key: str, prefix: str = "") -> Optional[Decimal]:
    if data.get(key) is None:
        return None
    return parse_decimal(data[key], f"{prefix}{key}")


def _enum(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidInput(field_name, f"expected one of {allowed}, got {value!r}") from None


def _state(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or len(value.strip()) != 2 or not value.strip().isalpha():
        raise InvalidInput(field_name, f"expected a two-letter state code, got {value!r}")
    return value.strip().upper()


def _date(value: Any, field_name: str) -> Optional[date]:
    if not isinstance(value, str):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidInput(field_name, f"not an ISO date: {value!r}") from None


@dataclass(frozen=True)
class Rebate:
    source: RebateSource
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class FeeItem:
    """
    A fee or F&I product line.

    ``taxable_override`` always wins over the state rule. ``taxable_hint``
    is only consulted for ``other`` fees, which no rule flag covers.
    """

    code: str
    category: FeeCategory
    amount: Decimal
    taxable_hint: Optional[bool] = None
    taxable_override: Optional[bool] = None


@dataclass(frozen=True)
class AccessoryItem:
    description: str
    amount: Decimal
    at_time_of_sale: bool = True
    taxable_override: Optional[bool] = None


@dataclass(frozen=True)
class LeaseTerms:
    residual_value: Decimal
    term_months: int
    money_factor: Decimal = ZERO
    monthly_payment: Optional[Decimal] = None
    cash_down: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: dict) -> "LeaseTerms":
        prefix = "lease_terms."
        if "residual_value" not in data:
            raise InvalidInput(f"{prefix}residual_value", "is required")
        term = data.get("term_months")
        if isinstance(term, bool) or not isinstance(term, (int, str)) or not str(term).isdigit():
            raise InvalidInput(f"{prefix}term_months", f"expected a positive integer, got {term!r}")
        term = int(term)
        if term <= 0:
            raise InvalidInput(f"{prefix}term_months", "must be at least 1")

        if data.get("money_factor") is not None:
            money_factor = parse_decimal(data["money_factor"], f"{prefix}money_factor")
        elif data.get("apr") is not None:
            # money factor = APR (percent) / 2400
            money_factor = parse_decimal(data["apr"], f"{prefix}apr") / Decimal("2400")
        else:
            money_factor = ZERO

        return cls(
            residual_value=parse_decimal(data["residual_value"], f"{prefix}residual_value"),
            term_months=term,
            money_factor=money_factor,
            monthly_payment=_optional_decimal(data, "monthly_payment", prefix),
            cash_down=parse_decimal(data.get("cash_down", "0"), f"{prefix}cash_down"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "residual_value": str(self.residual_value),
            "term_months": self.term_months,
            "money_factor": str(self.money_factor),
            "monthly_payment": (
                str(self.monthly_payment) if self.monthly_payment is not None else None
            ),
            "cash_down": str(self.cash_down),
        }


@dataclass(frozen=True)
class TaxCalculationRequest:
    """The facts of one retail sale or lease."""

    transaction_kind: TransactionKind
    vehicle_price: Decimal  # cap cost for leases
    zip_code: str
    registration_state: str
    dealership_state: Optional[str] = None
    trade_in_value: Decimal = ZERO
    trade_in_payoff: Decimal = ZERO
    rebates: tuple[Rebate, ...] = ()
    fees: tuple[FeeItem, ...] = ()
    accessories: tuple[AccessoryItem, ...] = ()
    lease_terms: Optional[LeaseTerms] = None
    as_of: Optional[date] = None
    tax_paid_elsewhere: Decimal = ZERO
    removed_from_state: bool = False
    trade_in_over_price_allowed: bool = False
    tax_paid_date: Optional[date] = None
    proof_of_tax_paid: bool = False

    def __post_init__(self) -> None:
        if self.transaction_kind is TransactionKind.LEASE and self.lease_terms is None:
            raise InvalidInput("lease_terms", "required for lease transactions")
        if self.vehicle_price <= 0:
            raise InvalidInput("vehicle_price", "must be greater than zero")
        for name in ("trade_in_value", "trade_in_payoff", "tax_paid_elsewhere"):
            if getattr(self, name) < 0:
                raise InvalidInput(name, "must not be negative")

    @property
    def selling_state(self) -> str:
        return self.dealership_state or self.registration_state

    @property
    def is_interstate(self) -> bool:
        return self.registration_state != self.selling_state

    @property
    def negative_equity(self) -> Decimal:
        return max(self.trade_in_payoff - self.trade_in_value, ZERO)

    @property
    def trade_in_equity(self) -> Decimal:
        return max(self.trade_in_value - self.trade_in_payoff, ZERO)

    @classmethod
    def from_dict(cls, data: dict) -> "TaxCalculationRequest":
        if "vehicle_price" not in data:
            raise InvalidInput("vehicle_price", "is required")
        if "zip_code" not in data:
            raise InvalidInput("zip_code", "is required")
        if "registration_state" not in data:
            raise InvalidInput("registration_state", "is required")

        rebates = tuple(
            Rebate(
                source=_enum(RebateSource, r.get("source", "manufacturer"), f"rebates[{i}].source"),
                amount=parse_decimal(r.get("amount"), f"rebates[{i}].amount"),
                description=str(r.get("description", "")),
            )
            for i, r in enumerate(data.get("rebates", []))
        )
        fees = tuple(
            FeeItem(
                code=str(f.get("code", f.get("category", "fee"))),
                category=_enum(FeeCategory, f.get("category", "other"), f"fees[{i}].category"),
                amount=parse_decimal(f.get("amount"), f"fees[{i}].amount"),
                taxable_hint=f.get("taxable_hint", f.get("taxable")),
                taxable_override=f.get("taxable_override"),
            )
            for i, f in enumerate(data.get("fees", []))
        )
        accessories = tuple(
            AccessoryItem(
                description=str(a.get("description", "")),
                amount=parse_decimal(a.get("amount"), f"accessories[{i}].amount"),
                at_time_of_sale=bool(a.get("at_time_of_sale", True)),
                taxable_override=a.get("taxable_override"),
            )
            for i, a in enumerate(data.get("accessories", []))
        )

        lease = data.get("lease_terms")
        return cls(
            transaction_kind=_enum(
                TransactionKind, data.get("transaction_kind", "retail"), "transaction_kind"
            ),
            vehicle_price=parse_decimal(data["vehicle_price"], "vehicle_price"),
            zip_code=str(data["zip_code"]).strip(),
            registration_state=_state(data["registration_state"], "registration_state"),
            dealership_state=(
                _state(data["dealership_state"], "dealership_state")
                if data.get("dealership_state")
                else None
            ),
            trade_in_value=parse_decimal(data.get("trade_in_value", "0"), "trade_in_value"),
            trade_in_payoff=parse_decimal(data.get("trade_in_payoff", "0"), "trade_in_payoff"),
            rebates=rebates,
            fees=fees,
            accessories=accessories,
            lease_terms=LeaseTerms.from_dict(lease) if lease is not None else None,
            as_of=_date(data.get("as_of"), "as_of"),
            tax_paid_elsewhere=parse_decimal(
                data.get("tax_paid_elsewhere", "0"), "tax_paid_elsewhere"
            ),
            removed_from_state=bool(data.get("removed_from_state", False)),
            trade_in_over_price_allowed=bool(data.get("trade_in_over_price_allowed", False)),
            tax_paid_date=_date(data.get("tax_paid_date"), "tax_paid_date"),
            proof_of_tax_paid=bool(data.get("proof_of_tax_paid", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_kind": self.transaction_kind.value,
            "vehicle_price": str(self.vehicle_price),
            "zip_code": self.zip_code,
            "registration_state": self.registration_state,
            "dealership_state": self.dealership_state,
            "trade_in_value": str(self.trade_in_value),
            "trade_in_payoff": str(self.trade_in_payoff),
            "rebates": [
                {"source": r.source.value, "amount": str(r.amount), "description": r.description}
                for r in self.rebates
            ],
            "fees": [
                {
                    "code": f.code,
                    "category": f.category.value,
                    "amount": str(f.amount),
                    "taxable_hint": f.taxable_hint,
                    "taxable_override": f.taxable_override,
                }
                for f in self.fees
            ],
            "accessories": [
                {
                    "description": a.description,
                    "amount": str(a.amount),
                    "at_time_of_sale": a.at_time_of_sale,
                    "taxable_override": a.taxable_override,
                }
                for a in self.accessories
            ],
            "lease_terms": self.lease_terms.to_dict() if self.lease_terms else None,
            "as_of": self.as_of.isoformat() if self.as_of else None,
            "tax_paid_elsewhere": str(self.tax_paid_elsewhere),
            "removed_from_state": self.removed_from_state,
            "trade_in_over_price_allowed": self.trade_in_over_price_allowed,
            "tax_paid_date": self.tax_paid_date.isoformat() if self.tax_paid_date else None,
            "proof_of_tax_paid": self.proof_of_tax_paid,
        }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class LineKind(Enum):
    VEHICLE = "vehicle"
    FEE = "fee"
    ACCESSORY = "accessory"
    LEASE_UPFRONT = "lease_upfront"
    LEASE_CAP_REDUCTION = "lease_cap_reduction"
    LEASE_PAYMENT = "lease_payment"
    RECIPROCITY_CREDIT = "reciprocity_credit"


@dataclass(frozen=True)
class TaxLine:
    """One finalized, cent-rounded line of the breakdown."""

    kind: LineKind
    jurisdiction: str
    base: Decimal
    rate: Decimal
    amount: Decimal
    jurisdiction_id: Optional[str] = None
    is_credit: bool = False
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "jurisdiction": self.jurisdiction,
            "jurisdiction_id": self.jurisdiction_id,
            "base": str(self.base),
            "rate": str(self.rate),
            "amount": str(self.amount),
            "is_credit": self.is_credit,
            "description": self.description,
        }


@dataclass(frozen=True)
class LeaseTaxDetail:
    method: str
    gross_cap_cost: Decimal
    residual_value: Decimal
    term_months: int
    finance_charge: Decimal
    upfront_base: Decimal
    taxed_cap_reductions: Decimal
    excluded_cap_reductions: Decimal
    payment_base: Decimal = ZERO
    tax_per_payment: Decimal = ZERO
    upfront_tax: Decimal = ZERO
    total_tax_over_term: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "gross_cap_cost": str(self.gross_cap_cost),
            "residual_value": str(self.residual_value),
            "term_months": self.term_months,
            "finance_charge": str(self.finance_charge),
            "upfront_base": str(self.upfront_base),
            "taxed_cap_reductions": str(self.taxed_cap_reductions),
            "excluded_cap_reductions": str(self.excluded_cap_reductions),
            "payment_base": str(self.payment_base),
            "tax_per_payment": str(self.tax_per_payment),
            "upfront_tax": str(self.upfront_tax),
            "total_tax_over_term": str(self.total_tax_over_term),
        }


@dataclass(frozen=True)
class TaxCalculationResult:
    """Itemized outcome of one calculation. Immutable and deterministic."""

    transaction_kind: TransactionKind
    state_code: str
    lines: tuple[TaxLine, ...]
    total_tax: Decimal
    taxable_amount: Decimal
    state_taxable_base: Decimal
    local_taxable_base: Decimal
    effective_rate: Decimal
    state_rate: Decimal
    combined_local_rate: Decimal
    total_rate: Decimal
    jurisdiction_source: str
    jurisdiction_ids: tuple[str, ...]
    rule_id: str
    used_fallback_rule: bool
    vehicle_price: Decimal
    trade_in_value: Decimal
    trade_in_credit: Decimal
    negative_equity: Decimal
    trade_in_over_price_allowed: bool = False
    doc_fee_charged: Decimal = ZERO
    doc_fee_cap: Optional[Decimal] = None
    drive_out_applied: bool = False
    reciprocity_credit: Decimal = ZERO
    lease: Optional[LeaseTaxDetail] = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def used_fallback_jurisdiction(self) -> bool:
        return self.jurisdiction_source == "fallback"

    def lines_of(self, kind: LineKind) -> list[TaxLine]:
        return [line for line in self.lines if line.kind is kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_kind": self.transaction_kind.value,
            "state_code": self.state_code,
            "total_tax": str(self.total_tax),
            "taxable_amount": str(self.taxable_amount),
            "state_taxable_base": str(self.state_taxable_base),
            "local_taxable_base": str(self.local_taxable_base),
            "effective_rate": str(self.effective_rate),
            "state_rate": str(self.state_rate),
            "combined_local_rate": str(self.combined_local_rate),
            "total_rate": str(self.total_rate),
            "lines": [line.to_dict() for line in self.lines],
            "jurisdiction_source": self.jurisdiction_source,
            "jurisdiction_ids": list(self.jurisdiction_ids),
            "rule_id": self.rule_id,
            "used_fallback_rule": self.used_fallback_rule,
            "vehicle_price": str(self.vehicle_price),
            "trade_in_value": str(self.trade_in_value),
            "trade_in_credit": str(self.trade_in_credit),
            "negative_equity": str(self.negative_equity),
            "trade_in_over_price_allowed": self.trade_in_over_price_allowed,
            "doc_fee_charged": str(self.doc_fee_charged),
            "doc_fee_cap": str(self.doc_fee_cap) if self.doc_fee_cap is not None else None,
            "drive_out_applied": self.drive_out_applied,
            "reciprocity_credit": str(self.reciprocity_credit),
            "lease": self.lease.to_dict() if self.lease else None,
            "notes": list(self.notes),
        }
