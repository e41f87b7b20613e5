"""
Quote and audit report generator.

Produces:
- Itemized tax quote reports
- Audit trail reports per deal or for the whole log
- CSV (via pandas) and JSON export

Amounts stay Decimal inside reports and are written out as decimal
strings, never floats, so exported figures match the audit trail exactly.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional

import pandas as pd

from dealtax.audit import AuditLogEntry
from dealtax.engine import TaxQuote


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that writes Decimal as string and dates as ISO."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return super().default(o)


def _stringify(obj: Any) -> Any:
    """Recursively convert Decimal and date values to strings."""
    if isinstance(obj, dict):
        return {k: _stringify(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_stringify(i) for i in obj]
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    return obj


class ReportGenerator:
    """
    Builds structured reports from quotes and audit entries.

    All reports can be returned as dicts, rendered to console-friendly
    text, or exported to CSV/JSON files under ``output_dir``.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    def _write(self, filename: str, content: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename
        path.write_text(content, encoding="utf-8")
        return path

    # ------------------------------------------------------------------
    # Quote report
    # ------------------------------------------------------------------

    def quote_report(self, quote: TaxQuote) -> dict[str, Any]:
        """Summarize one quote with its itemized lines."""
        r = quote.result
        lines = [
            {
                "kind": line.kind.value,
                "jurisdiction": line.jurisdiction,
                "jurisdiction_id": line.jurisdiction_id or "",
                "base": line.base,
                "rate": line.rate,
                "amount": line.amount,
                "description": line.description,
            }
            for line in r.lines
        ]
        summary: dict[str, Any] = {
            "transaction_kind": r.transaction_kind.value,
            "state": r.state_code,
            "zip_code": quote.request.zip_code,
            "taxable_amount": r.taxable_amount,
            "total_tax": r.total_tax,
            "effective_rate": r.effective_rate,
            "state_rate": r.state_rate,
            "combined_local_rate": r.combined_local_rate,
            "rule_id": r.rule_id,
            "jurisdiction_source": r.jurisdiction_source,
        }
        if r.lease is not None:
            summary["lease_method"] = r.lease.method
            summary["tax_per_payment"] = r.lease.tax_per_payment
            summary["upfront_tax"] = r.lease.upfront_tax
        if r.reciprocity_credit:
            summary["reciprocity_credit"] = r.reciprocity_credit
        return {
            "report_type": "tax_quote",
            "generated_date": date.today().isoformat(),
            "calculation_id": quote.calculation_id,
            "summary": summary,
            "lines": lines,
            "validation": quote.validation.to_dict(),
            "alerts": [a.to_dict() for a in quote.advisories],
            "warnings": list(r.notes),
        }

    # ------------------------------------------------------------------
    # Audit report
    # ------------------------------------------------------------------

    def audit_frame(self, entries: Iterable[AuditLogEntry]) -> pd.DataFrame:
        """One row per audit entry, amounts as decimal strings."""
        rows = [
            {
                "audit_id": e.audit_id,
                "recorded_at": e.recorded_at.isoformat(),
                "actor": e.actor,
                "deal_id": e.deal_id or "",
                "supersedes": e.supersedes or "",
                "state": e.result.get("state_code", ""),
                "zip_code": e.request.get("zip_code", ""),
                "transaction_kind": e.result.get("transaction_kind", ""),
                "rule_id": e.rule_id,
                "total_tax": e.total_tax,
                "jurisdiction_ids": ";".join(e.jurisdiction_ids),
                "integrity_ok": e.verify_integrity(),
            }
            for e in entries
        ]
        columns = [
            "audit_id",
            "recorded_at",
            "actor",
            "deal_id",
            "supersedes",
            "state",
            "zip_code",
            "transaction_kind",
            "rule_id",
            "total_tax",
            "jurisdiction_ids",
            "integrity_ok",
        ]
        return pd.DataFrame(rows, columns=columns)

    def audit_report(
        self, entries: list[AuditLogEntry], deal_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Audit trail for one deal, or the whole log when ``deal_id`` is None."""
        if deal_id is not None:
            entries = [e for e in entries if e.deal_id == deal_id]
        frame = self.audit_frame(entries)
        tampered = [e.audit_id for e in entries if not e.verify_integrity()]
        superseded = {e.supersedes for e in entries if e.supersedes}
        total = sum(
            (Decimal(e.total_tax) for e in entries if e.audit_id not in superseded),
            Decimal("0"),
        )
        return {
            "report_type": "audit_trail",
            "generated_date": date.today().isoformat(),
            "deal_id": deal_id or "",
            "summary": {
                "entry_count": len(entries),
                "corrections": len(superseded),
                "current_total_tax": total,
                "integrity_failures": len(tampered),
            },
            "entries": frame.to_dict("records"),
            "warnings": [f"Integrity check failed for {a}" for a in tampered],
        }

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(self, report: dict[str, Any], filename: Optional[str] = None) -> str:
        """Export a report to JSON. Returns the JSON string."""
        json_str = json.dumps(_stringify(report), indent=2, cls=_DecimalEncoder)
        if filename:
            self._write(filename, json_str)
        return json_str

    def to_csv(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
        section: str = "lines",
    ) -> str:
        """
        Export one list section of a report to CSV. Returns the CSV string.
        """
        data = report.get(section, [])
        if not data:
            return ""
        if isinstance(data, dict):
            data = [{"key": k, "value": v} for k, v in data.items()]
        frame = pd.DataFrame(_stringify(data))
        csv_str = frame.to_csv(index=False)
        if filename:
            self._write(filename, csv_str)
        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        out: list[str] = []
        report_type = report.get("report_type", "report").replace("_", " ").title()
        out.append("=" * 60)
        out.append(f"  {report_type}")
        out.append(f"  Generated: {report.get('generated_date', '')}")
        if report.get("calculation_id"):
            out.append(f"  Calculation: {report['calculation_id']}")
        if report.get("deal_id"):
            out.append(f"  Deal: {report['deal_id']}")
        out.append("=" * 60)
        out.append("")

        summary = report.get("summary", {})
        if summary:
            out.append("SUMMARY")
            out.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, Decimal):
                    if "rate" in key:
                        out.append(f"  {label}: {value * 100:.4f}%")
                    else:
                        out.append(f"  {label}: ${value:,.2f}")
                else:
                    out.append(f"  {label}: {value}")
            out.append("")

        lines = report.get("lines", [])
        if lines:
            out.append("TAX LINES")
            out.append("-" * 40)
            for ln in lines:
                out.append(
                    f"  {ln['jurisdiction'][:28]:<28} {ln['kind']:<20} "
                    f"${Decimal(ln['base']):>12,.2f} x {Decimal(ln['rate']) * 100:.4f}% "
                    f"= ${Decimal(ln['amount']):>10,.2f}"
                )
            out.append("")

        entries = report.get("entries", [])
        if entries:
            out.append("ENTRIES")
            out.append("-" * 40)
            for e in entries:
                mark = "" if e.get("integrity_ok", True) else "  [TAMPERED]"
                out.append(
                    f"  {e['recorded_at'][:19]} {e['audit_id'][:12]} "
                    f"{e['rule_id']:<12} ${Decimal(e['total_tax']):>10,.2f}{mark}"
                )
            out.append("")

        alerts = report.get("alerts", [])
        if alerts:
            out.append("ADVISORIES")
            out.append("-" * 40)
            for a in alerts:
                out.append(f"  [{a['kind']}] {a['message']}")
            out.append("")

        warnings = report.get("warnings", [])
        if warnings:
            out.append("NOTES")
            out.append("-" * 40)
            for w in warnings:
                out.append(f"  * {w}")
            out.append("")

        return "\n".join(out)
