"""
Error taxonomy for the tax engine.

Errors that prevent a legally correct number abort the calculation and
surface to the caller. Everything else (fallback data, failed consistency
checks) is reported as an advisory on an otherwise returned result.
"""

from __future__ import annotations

from typing import Any, Optional


class TaxEngineError(Exception):
    """Base class for all engine errors."""

    code = "tax_engine_error"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class InvalidInput(TaxEngineError):
    """Malformed or out-of-range request data."""

    code = "invalid_input"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class UnknownJurisdiction(TaxEngineError):
    """No rate can be resolved, not even a state-level fallback."""

    code = "unknown_jurisdiction"


class UnknownState(UnknownJurisdiction):
    """A state code is not present in the jurisdiction data."""

    code = "unknown_state"

    def __init__(self, state_code: str) -> None:
        super().__init__(f"Unknown state code: {state_code}")
        self.state_code = state_code


class DataFetchTimeout(TaxEngineError):
    """Loading jurisdiction or rule data took longer than allowed."""

    code = "data_fetch_timeout"


class AuditWriteFailed(TaxEngineError):
    """
    The calculation succeeded but the audit entry was not written.

    ``quote`` carries the computed result so the caller can retry the
    audit write without recomputing.
    """

    code = "audit_write_failed"

    def __init__(self, message: str, quote: Optional[Any] = None) -> None:
        super().__init__(message)
        self.quote = quote
