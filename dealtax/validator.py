"""
Post-calculation sanity checks.

Validation is advisory: a failed check is reported alongside the result,
never in place of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from dealtax.models import ZERO, TaxCalculationResult

logger = logging.getLogger(__name__)

# Lines may drift from the total by at most one cent
SUM_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ValidationIssue:
    """One failed check."""

    check: str
    severity: str  # error, warning
    message: str

    def to_dict(self) -> dict:
        return {"check": self.check, "severity": self.severity, "message": self.message}


@dataclass(frozen=True)
class ValidationOutcome:
    ok: bool
    reason: str = ""
    detail: str = ""
    issues: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "reason": self.reason,
            "detail": self.detail,
            "issues": [i.to_dict() for i in self.issues],
        }


class Validator:
    """
    Checks a result for internal consistency and plausible inputs.

    ``max_local_rate`` maps a state code to the highest combined local rate
    seen there, or None when no bound is known.
    """

    def __init__(
        self, max_local_rate: Optional[Callable[[str], Optional[Decimal]]] = None
    ) -> None:
        self._max_local_rate = max_local_rate or (lambda state: None)

    def validate(self, result: TaxCalculationResult) -> ValidationOutcome:
        issues: list[ValidationIssue] = []

        line_sum = sum((line.amount for line in result.lines), ZERO)
        if abs(line_sum - result.total_tax) > SUM_TOLERANCE:
            issues.append(
                ValidationIssue(
                    "line_sum",
                    "error",
                    f"Lines sum to {line_sum} but total is {result.total_tax}",
                )
            )

        for line in result.lines:
            if line.amount < 0 and not line.is_credit:
                issues.append(
                    ValidationIssue(
                        "negative_line",
                        "error",
                        f"Negative amount {line.amount} on {line.kind.value} "
                        f"line for {line.jurisdiction}",
                    )
                )

        if (
            result.trade_in_value > result.vehicle_price
            and not result.trade_in_over_price_allowed
        ):
            issues.append(
                ValidationIssue(
                    "trade_in_over_price",
                    "error",
                    f"Trade-in value {result.trade_in_value} exceeds vehicle "
                    f"price {result.vehicle_price}",
                )
            )

        local_rate = result.combined_local_rate
        if local_rate < 0:
            issues.append(
                ValidationIssue(
                    "local_rate", "error", f"Negative combined local rate {local_rate}"
                )
            )
        else:
            bound = self._max_local_rate(result.state_code)
            if bound is not None and local_rate > bound:
                issues.append(
                    ValidationIssue(
                        "local_rate",
                        "error",
                        f"Combined local rate {local_rate} exceeds the "
                        f"{result.state_code} maximum of {bound}",
                    )
                )

        if result.doc_fee_cap is not None and result.doc_fee_charged > result.doc_fee_cap:
            issues.append(
                ValidationIssue(
                    "doc_fee_cap",
                    "error",
                    f"Doc fee {result.doc_fee_charged} exceeds the "
                    f"{result.state_code} cap of {result.doc_fee_cap}",
                )
            )

        if not issues:
            return ValidationOutcome(ok=True)

        for issue in issues:
            logger.warning("Validation failed [%s]: %s", issue.check, issue.message)
        return ValidationOutcome(
            ok=False,
            reason=issues[0].check,
            detail="; ".join(i.message for i in issues),
            issues=tuple(issues),
        )
