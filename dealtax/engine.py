"""
Deal-desk tax engine: resolve, look up rule, calculate, validate, record.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

from dealtax.audit import AuditContext, AuditRecorder
from dealtax.calculator import TaxCalculator
from dealtax.errors import AuditWriteFailed, InvalidInput, UnknownState
from dealtax.jurisdictions import JurisdictionResolver
from dealtax.models import TaxCalculationRequest, TaxCalculationResult
from dealtax.state_rules import StateRule, StateRuleRegistry
from dealtax.validator import ValidationOutcome, Validator

logger = logging.getLogger(__name__)

FALLBACK_USED = "FallbackUsed"
VALIDATION_WARNING = "ValidationWarning"


@dataclass(frozen=True)
class Advisory:
    """A non-fatal condition the deal desk should know about."""

    kind: str  # FallbackUsed, ValidationWarning
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


@dataclass(frozen=True)
class TaxQuote:
    calculation_id: str
    request: TaxCalculationRequest
    result: TaxCalculationResult
    validation: ValidationOutcome
    advisories: tuple[Advisory, ...] = field(default_factory=tuple)

    @property
    def total_tax(self) -> Decimal:
        return self.result.total_tax

    def to_dict(self) -> dict[str, Any]:
        data = {
            "calculation_id": self.calculation_id,
            "total_tax": str(self.result.total_tax),
            "taxable_amount": str(self.result.taxable_amount),
            "effective_rate": str(self.result.effective_rate),
            "lines": [line.to_dict() for line in self.result.lines],
            "validation": self.validation.to_dict(),
            "advisories": [a.to_dict() for a in self.advisories],
        }
        data["result"] = self.result.to_dict()
        return data


class TaxEngine:
    """
    Orchestrates one tax calculation end to end.

    Usage:
        engine = TaxEngine()
        quote = engine.calculate(request, AuditContext(actor="desk-1", deal_id="D-100"))
        print(quote.total_tax)

    Every collaborator defaults to the bundled seed data and an in-memory
    audit store, so ``TaxEngine()`` works out of the box.
    """

    def __init__(
        self,
        resolver: Optional[JurisdictionResolver] = None,
        registry: Optional[StateRuleRegistry] = None,
        calculator: Optional[TaxCalculator] = None,
        validator: Optional[Validator] = None,
        recorder: Optional[AuditRecorder] = None,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.resolver = resolver or JurisdictionResolver()
        self.registry = registry or StateRuleRegistry()
        self.calculator = calculator or TaxCalculator()
        self.validator = validator or Validator(self.resolver.max_local_rate)
        self.recorder = recorder or AuditRecorder()
        self._new_id = id_factory

    def _destination_rate(
        self, request: TaxCalculationRequest, rule: StateRule, as_of: date
    ) -> Optional[Decimal]:
        if not (request.is_interstate and request.removed_from_state and rule.drive_out_eligible):
            return None
        try:
            return self.resolver.state_rate(request.registration_state, as_of)
        except UnknownState:
            logger.warning(
                "No rate for destination state %s; drive-out capped at %s rate",
                request.registration_state,
                rule.state_code,
            )
            return None

    def _origin_rule(
        self, request: TaxCalculationRequest, rule: StateRule, as_of: date
    ) -> Optional[StateRule]:
        if not (request.is_interstate and rule.reciprocity_requires_mutual_credit):
            return None
        return self.registry.get_rule(request.registration_state, as_of)

    def quote(self, request: TaxCalculationRequest) -> TaxQuote:
        """Calculate and validate without writing an audit entry."""
        if request.as_of is None:
            request = replace(request, as_of=date.today())
        as_of = request.as_of
        state = request.selling_state

        jurisdictions = self.resolver.resolve(request.zip_code, as_of, state_hint=state)
        if not jurisdictions.is_fallback and jurisdictions.state_code != state:
            raise InvalidInput(
                "zip_code",
                f"ZIP {request.zip_code} is in {jurisdictions.state_code}, not {state}",
            )
        rule = self.registry.get_rule(state, as_of)
        result = self.calculator.calculate(
            request,
            jurisdictions,
            rule,
            destination_state_rate=self._destination_rate(request, rule, as_of),
            origin_rule=self._origin_rule(request, rule, as_of),
        )
        validation = self.validator.validate(result)

        advisories: list[Advisory] = []
        if jurisdictions.is_fallback:
            advisories.append(
                Advisory(
                    FALLBACK_USED,
                    f"ZIP {request.zip_code} not in jurisdiction data; "
                    f"{jurisdictions.state_code} state rate only",
                )
            )
        if rule.is_default:
            advisories.append(
                Advisory(FALLBACK_USED, f"No tax rule for {state}; default rule applied")
            )
        for issue in validation.issues:
            advisories.append(Advisory(VALIDATION_WARNING, issue.message))

        return TaxQuote(
            calculation_id=self._new_id(),
            request=request,
            result=result,
            validation=validation,
            advisories=tuple(advisories),
        )

    def record(self, quote: TaxQuote, context: Optional[AuditContext] = None) -> str:
        """Write the audit entry for an already computed quote."""
        try:
            return self.recorder.record(
                quote.request, quote.result, context, audit_id=quote.calculation_id
            )
        except AuditWriteFailed as e:
            raise AuditWriteFailed(str(e), quote=quote) from e

    def calculate(
        self,
        request: TaxCalculationRequest,
        context: Optional[AuditContext] = None,
    ) -> TaxQuote:
        """
        Full pipeline. Raises AuditWriteFailed (carrying the quote) when the
        result was computed but could not be recorded.
        """
        quote = self.quote(request)
        self.record(quote, context)
        return quote

    def calculate_dict(
        self, payload: dict[str, Any], context: Optional[AuditContext] = None
    ) -> dict[str, Any]:
        """JSON-shaped entry point: decimal strings in, decimal strings out."""
        request = TaxCalculationRequest.from_dict(payload)
        return self.calculate(request, context).to_dict()
