"""Tests for the ReportGenerator."""

import json
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from dealtax.audit import AuditContext
from dealtax.engine import TaxEngine
from dealtax.models import TaxCalculationRequest, TransactionKind
from dealtax.report_generator import ReportGenerator


@pytest.fixture
def engine() -> TaxEngine:
    return TaxEngine()


@pytest.fixture
def rg(tmp_path) -> ReportGenerator:
    return ReportGenerator(output_dir=str(tmp_path / "reports"))


def _req(zip_code: str = "35203", state: str = "AL") -> TaxCalculationRequest:
    return TaxCalculationRequest(
        transaction_kind=TransactionKind.RETAIL,
        vehicle_price=Decimal("30000.00"),
        trade_in_value=Decimal("10000.00"),
        zip_code=zip_code,
        registration_state=state,
        as_of=date(2025, 6, 1),
    )


def test_quote_report_structure(rg: ReportGenerator, engine: TaxEngine):
    report = rg.quote_report(engine.calculate(_req()))
    assert report["report_type"] == "tax_quote"
    assert report["summary"]["total_tax"] == Decimal("1225.00")
    assert report["summary"]["rule_id"] == "AL-v2"
    assert len(report["lines"]) == 3
    assert report["validation"]["ok"] is True
    assert "Trade-in credit applied to state tax only" in report["warnings"]


def test_fallback_quote_has_alerts(rg: ReportGenerator, engine: TaxEngine):
    report = rg.quote_report(engine.calculate(_req(zip_code="35999")))
    assert report["summary"]["jurisdiction_source"] == "fallback"
    assert report["alerts"][0]["kind"] == "FallbackUsed"


def test_json_writes_decimals_as_strings(rg: ReportGenerator, engine: TaxEngine):
    report = rg.quote_report(engine.calculate(_req()))
    parsed = json.loads(rg.to_json(report, "quote.json"))
    assert parsed["summary"]["total_tax"] == "1225.00"
    assert parsed["lines"][0]["rate"] == "0.0200"
    assert (rg.output_dir / "quote.json").exists()


def test_csv_export_of_lines(rg: ReportGenerator, engine: TaxEngine):
    report = rg.quote_report(engine.calculate(_req()))
    csv_str = rg.to_csv(report, "lines.csv")
    rows = csv_str.strip().splitlines()
    assert rows[0].startswith("kind,jurisdiction,jurisdiction_id,base,rate,amount")
    assert len(rows) == 4
    assert "525.00" in rows[3]
    assert (rg.output_dir / "lines.csv").exists()


def test_csv_of_empty_section(rg: ReportGenerator):
    assert rg.to_csv({"lines": []}) == ""


def test_audit_report_counts_corrections(rg: ReportGenerator, engine: TaxEngine):
    first = engine.calculate(_req(), AuditContext(deal_id="D-9"))
    engine.calculate(_req(zip_code="36602"), AuditContext(deal_id="D-9", supersedes=first.calculation_id))
    engine.calculate(_req(), AuditContext(deal_id="D-10"))

    report = rg.audit_report(engine.recorder.store.entries(), deal_id="D-9")
    summary = report["summary"]
    assert summary["entry_count"] == 2
    assert summary["corrections"] == 1
    assert summary["integrity_failures"] == 0
    # only the correcting entry counts: 400 + 30000 x (1.25% + 2.5%)
    assert summary["current_total_tax"] == Decimal("1525.00")


def test_audit_report_flags_tampering(rg: ReportGenerator, engine: TaxEngine):
    quote = engine.calculate(_req())
    entry = engine.recorder.get(quote.calculation_id)
    tampered = replace(entry, result={**entry.result, "total_tax": "0.00"})

    report = rg.audit_report([tampered])
    assert report["summary"]["integrity_failures"] == 1
    assert not report["entries"][0]["integrity_ok"]
    assert "[TAMPERED]" in rg.format_text(report)


def test_format_text_sections(rg: ReportGenerator, engine: TaxEngine):
    text = rg.format_text(rg.quote_report(engine.calculate(_req(zip_code="35999"))))
    assert "Tax Quote" in text
    assert "SUMMARY" in text
    assert "TAX LINES" in text
    assert "ADVISORIES" in text
    assert "$600.00" in text
