"""
Deal Desk Tax Engine
====================

Vehicle sales and lease tax calculation for dealership deal desks, with
effective-dated jurisdiction data, versioned state rules and an
append-only audit trail.

Modules:
    jurisdictions   - ZIP to state/county/city/district rate resolution
    state_rules     - Per-state tax policy records and versioned registry
    calculator      - Pure retail and lease tax calculation
    validator       - Post-calculation consistency checks
    audit           - Append-only audit log (in-memory and SQLite)
    engine          - End-to-end orchestration
    loaders         - CSV/JSON data loaders
    report_generator- Quote and audit reports with CSV/JSON export
    cli             - Command-line interface
"""

__version__ = "1.0.0"

from dealtax.audit import AuditContext, AuditRecorder, InMemoryAuditStore, SQLiteAuditStore
from dealtax.calculator import TaxCalculator
from dealtax.engine import TaxEngine, TaxQuote
from dealtax.jurisdictions import JurisdictionResolver
from dealtax.models import TaxCalculationRequest, TaxCalculationResult, TransactionKind
from dealtax.report_generator import ReportGenerator
from dealtax.state_rules import StateRule, StateRuleRegistry
from dealtax.validator import Validator

__all__ = [
    "AuditContext",
    "AuditRecorder",
    "InMemoryAuditStore",
    "SQLiteAuditStore",
    "TaxCalculator",
    "TaxEngine",
    "TaxQuote",
    "JurisdictionResolver",
    "TaxCalculationRequest",
    "TaxCalculationResult",
    "TransactionKind",
    "ReportGenerator",
    "StateRule",
    "StateRuleRegistry",
    "Validator",
]
