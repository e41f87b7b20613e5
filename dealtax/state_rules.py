"""
Per-state vehicle tax policy.

Every axis on which states differ (trade-in credit, local layers, rebate
and fee taxability, lease method, reciprocity, drive-out) is a field on
:class:`StateRule`. The calculator reads only these fields and never
branches on a state code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional, Union

from dealtax.cache import SnapshotCache

logger = logging.getLogger(__name__)


class TradeInCredit(Enum):
    FULL = "full"  # whole trade-in value reduces the base
    CAPPED = "capped"  # credit limited to trade_in_cap
    PERCENT = "percent"  # credit is trade_in_percent of the value
    NONE = "none"  # no credit


class LeaseTaxMethod(Enum):
    UPFRONT = "upfront"  # whole lease price taxed at inception
    MONTHLY = "monthly"  # each payment taxed, cap reductions up front
    HYBRID = "hybrid"  # selected cap reductions up front, payments monthly


class LeaseComponent(Enum):
    CASH_DOWN = "cash_down"
    TRADE_IN_EQUITY = "trade_in_equity"
    REBATES = "rebates"


class ReciprocityMode(Enum):
    NONE = "none"
    CREDIT_UP_TO_STATE_TAX = "credit_up_to_state_tax"


class ReciprocityScope(Enum):
    BOTH = "both"
    RETAIL_ONLY = "retail_only"
    LEASE_ONLY = "lease_only"

    def covers(self, transaction_kind: str) -> bool:
        if self is ReciprocityScope.BOTH:
            return True
        if self is ReciprocityScope.RETAIL_ONLY:
            return transaction_kind == "retail"
        return transaction_kind == "lease"


class VehicleTaxScheme(Enum):
    STATE_PLUS_LOCAL = "state_plus_local"
    STATE_ONLY = "state_only"  # local layers never apply to vehicles


@dataclass(frozen=True)
class StateRule:
    """One version of a state's vehicle tax policy."""

    state_code: str
    version: int = 1
    effective_date: date = date(2000, 1, 1)

    # Trade-in
    trade_in_credit: TradeInCredit = TradeInCredit.FULL
    trade_in_cap: Optional[Decimal] = None
    trade_in_percent: Optional[Decimal] = None
    trade_in_applies_to_local: bool = True

    vehicle_tax_scheme: VehicleTaxScheme = VehicleTaxScheme.STATE_PLUS_LOCAL

    # Rebates: True means the rebate is non-taxable and reduces the base
    manufacturer_rebate_reduces_base: bool = False
    dealer_rebate_reduces_base: bool = False

    # Fees and products
    doc_fee_taxable: bool = True
    doc_fee_cap: Optional[Decimal] = None
    service_contract_taxable: bool = False
    gap_taxable: bool = False
    accessories_taxable: bool = True
    general_sales_rate: Optional[Decimal] = None

    # Negative equity
    negative_equity_taxable_retail: bool = False
    negative_equity_taxable_lease: bool = True

    # Leases
    lease_tax_method: LeaseTaxMethod = LeaseTaxMethod.MONTHLY
    lease_trade_in_credit: bool = True
    cap_reduction_reduces_base: bool = False
    hybrid_upfront_components: frozenset[LeaseComponent] = frozenset(
        {LeaseComponent.CASH_DOWN}
    )

    # Interstate
    reciprocity: ReciprocityMode = ReciprocityMode.NONE
    reciprocity_scope: ReciprocityScope = ReciprocityScope.BOTH
    reciprocity_requires_proof: bool = False
    reciprocity_window_days: Optional[int] = None  # days since tax was paid
    reciprocity_requires_mutual_credit: bool = False
    non_reciprocal_states: frozenset[str] = frozenset()
    drive_out_eligible: bool = False

    is_default: bool = False
    notes: str = ""

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "state_code", self.state_code.strip().upper())
        if self.trade_in_credit is TradeInCredit.CAPPED and self.trade_in_cap is None:
            raise ValueError(f"{self.state_code} v{self.version}: capped trade-in needs a cap")
        if self.trade_in_cap is not None and self.trade_in_cap < 0:
            raise ValueError(f"{self.state_code} v{self.version}: negative trade-in cap")
        if self.trade_in_credit is TradeInCredit.PERCENT:
            pct = self.trade_in_percent
            if pct is None or not Decimal("0") < pct <= Decimal("1"):
                raise ValueError(
                    f"{self.state_code} v{self.version}: percent trade-in needs "
                    "a trade_in_percent in (0, 1]"
                )
        if self.reciprocity_window_days is not None and self.reciprocity_window_days < 0:
            raise ValueError(f"{self.state_code} v{self.version}: negative reciprocity window")

    @property
    def rule_id(self) -> str:
        if self.is_default:
            return f"{self.state_code}-default"
        return f"{self.state_code}-v{self.version}"

    def rebate_reduces_base(self, source: str) -> bool:
        if source == "manufacturer":
            return self.manufacturer_rebate_reduces_base
        return self.dealer_rebate_reduces_base

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "state_code": self.state_code,
            "version": self.version,
            "effective_date": self.effective_date.isoformat(),
            "trade_in_credit": self.trade_in_credit.value,
            "trade_in_cap": str(self.trade_in_cap) if self.trade_in_cap is not None else None,
            "trade_in_percent": (
                str(self.trade_in_percent) if self.trade_in_percent is not None else None
            ),
            "trade_in_applies_to_local": self.trade_in_applies_to_local,
            "vehicle_tax_scheme": self.vehicle_tax_scheme.value,
            "manufacturer_rebate_reduces_base": self.manufacturer_rebate_reduces_base,
            "dealer_rebate_reduces_base": self.dealer_rebate_reduces_base,
            "doc_fee_taxable": self.doc_fee_taxable,
            "doc_fee_cap": str(self.doc_fee_cap) if self.doc_fee_cap is not None else None,
            "service_contract_taxable": self.service_contract_taxable,
            "gap_taxable": self.gap_taxable,
            "accessories_taxable": self.accessories_taxable,
            "general_sales_rate": (
                str(self.general_sales_rate) if self.general_sales_rate is not None else None
            ),
            "negative_equity_taxable_retail": self.negative_equity_taxable_retail,
            "negative_equity_taxable_lease": self.negative_equity_taxable_lease,
            "lease_tax_method": self.lease_tax_method.value,
            "lease_trade_in_credit": self.lease_trade_in_credit,
            "cap_reduction_reduces_base": self.cap_reduction_reduces_base,
            "hybrid_upfront_components": sorted(
                c.value for c in self.hybrid_upfront_components
            ),
            "reciprocity": self.reciprocity.value,
            "reciprocity_scope": self.reciprocity_scope.value,
            "reciprocity_requires_proof": self.reciprocity_requires_proof,
            "reciprocity_window_days": self.reciprocity_window_days,
            "reciprocity_requires_mutual_credit": self.reciprocity_requires_mutual_credit,
            "non_reciprocal_states": sorted(self.non_reciprocal_states),
            "drive_out_eligible": self.drive_out_eligible,
            "is_default": self.is_default,
            "notes": self.notes,
        }


# Conservative default used when a state has no configured rule:
# no trade-in cap, rebates taxable, doc fee taxable.
DEFAULT_RULE = StateRule(
    state_code="XX",
    version=0,
    is_default=True,
    notes="Default rule: state not configured",
)


@dataclass(frozen=True)
class RuleTable:
    """Immutable snapshot of rule versions, newest last per state."""

    versions: Mapping[str, tuple[StateRule, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )


def build_rule_table(rules: Iterable[StateRule]) -> RuleTable:
    by_state: dict[str, list[StateRule]] = {}
    for rule in rules:
        if rule.is_default:
            raise ValueError("Default rule cannot be registered for a state")
        existing = by_state.setdefault(rule.state_code, [])
        if any(r.effective_date == rule.effective_date for r in existing):
            raise ValueError(
                f"Two {rule.state_code} rule versions effective "
                f"{rule.effective_date.isoformat()}"
            )
        existing.append(rule)
    return RuleTable(
        versions=MappingProxyType(
            {
                code: tuple(sorted(rows, key=lambda r: r.effective_date))
                for code, rows in by_state.items()
            }
        )
    )


RuleSource = Union[
    RuleTable,
    SnapshotCache[RuleTable],
    Callable[[], RuleTable],
    Iterable[StateRule],
]


class StateRuleRegistry:
    """
    Effective-dated lookup of state rules.

    :meth:`get_rule` always returns a rule. States without an entry get
    ``DEFAULT_RULE`` relabelled for that state with ``is_default`` set,
    so callers can detect under-configured states without failing.
    """

    def __init__(
        self,
        source: Optional[RuleSource] = None,
        default_rule: StateRule = DEFAULT_RULE,
    ) -> None:
        if source is None:
            from dealtax.seed import SEED_RULES

            source = build_rule_table(SEED_RULES)
        if isinstance(source, RuleTable):
            self._cache = SnapshotCache.of(source, name="state rules")
        elif isinstance(source, SnapshotCache):
            self._cache = source
        elif callable(source):
            self._cache = SnapshotCache(source, name="state rules")
        else:
            self._cache = SnapshotCache.of(build_rule_table(source), name="state rules")
        self._default = default_rule

    @property
    def cache(self) -> SnapshotCache[RuleTable]:
        return self._cache

    def get_rule(self, state_code: str, as_of: Optional[date] = None) -> StateRule:
        code = state_code.strip().upper()
        on = as_of or date.today()
        versions = self._cache.get().versions.get(code, ())
        effective = [r for r in versions if r.effective_date <= on]
        if effective:
            return effective[-1]

        logger.warning(
            "No tax rule for %s effective %s; using default rule",
            code,
            on.isoformat(),
        )
        return replace(self._default, state_code=code, is_default=True)

    def versions(self, state_code: str) -> list[StateRule]:
        return list(self._cache.get().versions.get(state_code.upper(), ()))

    def states(self) -> list[str]:
        return sorted(self._cache.get().versions)
