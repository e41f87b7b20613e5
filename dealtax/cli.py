"""
Command-line interface for the deal-desk tax engine.

Provides subcommands for calculating a deal's tax, browsing jurisdiction
rates and state rules, and reviewing the audit trail.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from dealtax.audit import AuditContext, AuditRecorder, InMemoryAuditStore, SQLiteAuditStore
from dealtax.cache import SnapshotCache
from dealtax.engine import TaxEngine, TaxQuote
from dealtax.errors import AuditWriteFailed, TaxEngineError
from dealtax.jurisdictions import JurisdictionResolver
from dealtax.loaders import jurisdiction_loader, rule_loader
from dealtax.models import TaxCalculationRequest
from dealtax.report_generator import ReportGenerator
from dealtax.state_rules import StateRuleRegistry

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("dealtax")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=verbose)],
        force=True,
    )


def _pct(rate: Decimal) -> str:
    return f"{rate * 100:.4f}%"


def _build_engine(args: argparse.Namespace) -> TaxEngine:
    if args.jurisdictions or args.zips:
        if not (args.jurisdictions and args.zips):
            console.print("[red]--jurisdictions and --zips must be given together[/red]")
            sys.exit(1)
        resolver = JurisdictionResolver(
            SnapshotCache(
                jurisdiction_loader(args.jurisdictions, args.zips, args.states),
                name="jurisdictions",
            )
        )
    else:
        resolver = JurisdictionResolver()

    if args.rules:
        registry = StateRuleRegistry(SnapshotCache(rule_loader(args.rules), name="state rules"))
    else:
        registry = StateRuleRegistry()

    store = SQLiteAuditStore(args.audit_db) if args.audit_db else InMemoryAuditStore()
    return TaxEngine(resolver=resolver, registry=registry, recorder=AuditRecorder(store))


# -----------------------------------------------------------------------
# Subcommand: calculate
# -----------------------------------------------------------------------


def _request_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Assemble the JSON request shape from command-line flags."""
    if not args.price or not args.zip or not args.state:
        console.print("[red]Provide --price, --zip and --state, or --request[/red]")
        sys.exit(1)

    payload: dict[str, Any] = {
        "transaction_kind": args.kind,
        "vehicle_price": args.price,
        "zip_code": args.zip,
        "registration_state": args.state,
        "trade_in_value": args.trade_in or "0",
        "trade_in_payoff": args.payoff or "0",
        "tax_paid_elsewhere": args.tax_paid_elsewhere or "0",
        "removed_from_state": args.removed,
        "proof_of_tax_paid": args.proof_of_tax_paid,
    }
    if args.dealer_state:
        payload["dealership_state"] = args.dealer_state
    if args.as_of:
        payload["as_of"] = args.as_of
    if args.tax_paid_date:
        payload["tax_paid_date"] = args.tax_paid_date

    rebates = []
    for item in args.rebate or []:
        source, _, amount = item.partition(":")
        if not amount:
            source, amount = "manufacturer", source
        rebates.append({"source": source, "amount": amount})
    payload["rebates"] = rebates

    fees = []
    if args.doc_fee:
        fees.append({"code": "DOC", "category": "doc_fee", "amount": args.doc_fee})
    if args.service_contract:
        fees.append(
            {"code": "VSC", "category": "service_contract", "amount": args.service_contract}
        )
    if args.gap:
        fees.append({"code": "GAP", "category": "gap", "amount": args.gap})
    payload["fees"] = fees

    if args.kind == "lease":
        lease: dict[str, Any] = {
            "residual_value": args.residual or "0",
            "term_months": args.term or 36,
            "cash_down": args.cash_down or "0",
        }
        if args.money_factor:
            lease["money_factor"] = args.money_factor
        elif args.apr:
            lease["apr"] = args.apr
        if args.payment:
            lease["monthly_payment"] = args.payment
        payload["lease_terms"] = lease
    return payload


def _print_quote(quote: TaxQuote) -> None:
    r = quote.result
    body = (
        f"[bold]Calculation:[/bold] {quote.calculation_id}\n"
        f"[bold]State / Rule:[/bold] {r.state_code} / {r.rule_id}\n"
        f"[bold]Jurisdictions:[/bold] {', '.join(r.jurisdiction_ids)} ({r.jurisdiction_source})\n"
        f"[bold]Taxable Amount:[/bold] ${r.taxable_amount:,.2f}\n"
        f"[bold]Rate:[/bold] {_pct(r.state_rate)} state + {_pct(r.combined_local_rate)} local\n"
        f"[bold]Total Tax:[/bold] ${r.total_tax:,.2f}\n"
        f"[bold]Effective Rate:[/bold] {_pct(r.effective_rate)}"
    )
    if r.lease is not None:
        body += (
            f"\n[bold]Lease:[/bold] {r.lease.method}, ${r.lease.upfront_tax:,.2f} at signing"
            f" + ${r.lease.tax_per_payment:,.2f} x {r.lease.term_months}"
        )
    console.print(Panel(body, title="Tax Quote", border_style="blue"))

    table = Table(title="Tax Lines", box=box.ROUNDED)
    table.add_column("Kind", style="dim")
    table.add_column("Jurisdiction")
    table.add_column("Base", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Tax", justify="right", style="bold")
    for line in r.lines:
        table.add_row(
            line.kind.value,
            line.jurisdiction,
            f"${line.base:,.2f}",
            _pct(line.rate),
            f"[green]${line.amount:,.2f}[/green]" if line.is_credit else f"${line.amount:,.2f}",
        )
    console.print(table)

    for note in r.notes:
        console.print(f"[dim]* {note}[/dim]")
    for adv in quote.advisories:
        console.print(f"[yellow]{adv.kind}: {adv.message}[/yellow]")


def cmd_calculate(args: argparse.Namespace) -> None:
    """Calculate the tax for one deal."""
    if args.request:
        path = Path(args.request)
        if not path.exists():
            console.print(f"[red]File not found: {args.request}[/red]")
            sys.exit(1)
        payload = json.loads(path.read_text(encoding="utf-8"))
    else:
        payload = _request_from_args(args)

    engine = _build_engine(args)
    context = AuditContext(actor=args.actor, deal_id=args.deal_id, supersedes=args.supersedes)

    try:
        request = TaxCalculationRequest.from_dict(payload)
        quote = engine.calculate(request, context)
    except AuditWriteFailed as e:
        if e.quote is not None:
            _print_quote(e.quote)
        console.print(f"[red]Audit write failed: {e}[/red]")
        sys.exit(2)
    except TaxEngineError as e:
        console.print(f"[red]{e.code}: {e}[/red]")
        sys.exit(1)

    if args.json:
        console.print_json(json.dumps(quote.to_dict()))
    else:
        _print_quote(quote)

    if args.export_json or args.export_csv:
        rg = ReportGenerator(args.output_dir or "reports")
        report = rg.quote_report(quote)
        if args.export_json:
            rg.to_json(report, args.export_json)
            console.print(f"[green]JSON exported to {args.export_json}[/green]")
        if args.export_csv:
            rg.to_csv(report, args.export_csv, section="lines")
            console.print(f"[green]CSV exported to {args.export_csv}[/green]")


# -----------------------------------------------------------------------
# Subcommand: rates
# -----------------------------------------------------------------------


def cmd_rates(args: argparse.Namespace) -> None:
    """Display jurisdiction rates for a ZIP or a state."""
    engine = _build_engine(args)
    resolver = engine.resolver
    as_of = date.fromisoformat(args.as_of) if args.as_of else date.today()

    try:
        if args.zip:
            js = resolver.resolve(args.zip, as_of, state_hint=args.state)
            table = Table(title=f"Jurisdictions for ZIP {js.zip_code} on {as_of}", box=box.ROUNDED)
            table.add_column("ID", style="dim")
            table.add_column("Level")
            table.add_column("Name")
            table.add_column("Rate", justify="right")
            table.add_column("Effective")
            for j in js.layers:
                table.add_row(
                    j.jurisdiction_id,
                    j.jurisdiction_type.value,
                    j.name,
                    _pct(j.rate),
                    f"{j.effective_date} to {j.end_date or '-'}",
                )
            console.print(table)
            console.print(
                f"[bold]Combined:[/bold] {_pct(js.total_rate)}  [dim]source: {js.source}[/dim]"
            )
            return

        if args.state:
            code = args.state.upper()
            rate = resolver.state_rate(code, as_of)
            bound = resolver.max_local_rate(code)
            zips = resolver.zips_for_state(code)
            console.print(
                Panel(
                    f"[bold]State Rate:[/bold] {_pct(rate)}\n"
                    f"[bold]Max Local:[/bold] {_pct(bound) if bound is not None else 'unknown'}\n"
                    f"[bold]Known ZIPs:[/bold] {', '.join(z.zip_code for z in zips) or 'none'}",
                    title=f"{resolver.table.state_names.get(code, code)} Vehicle Tax",
                    border_style="cyan",
                )
            )
            return
    except TaxEngineError as e:
        console.print(f"[red]{e.code}: {e}[/red]")
        sys.exit(1)

    table = Table(title="Vehicle Sales Tax - State Rates", box=box.ROUNDED)
    table.add_column("State", style="bold")
    table.add_column("Name")
    table.add_column("Rate", justify="right")
    table.add_column("Max Local", justify="right")
    for code in resolver.known_states():
        rate = resolver.state_rate(code, as_of)
        bound = resolver.max_local_rate(code)
        table.add_row(
            code,
            resolver.table.state_names.get(code, ""),
            _pct(rate) if rate > 0 else "None",
            _pct(bound) if bound else "-",
            style="dim" if rate == 0 else "",
        )
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: rules
# -----------------------------------------------------------------------


def cmd_rules(args: argparse.Namespace) -> None:
    """Show state rule versions."""
    registry = _build_engine(args).registry

    if args.state:
        as_of = date.fromisoformat(args.as_of) if args.as_of else date.today()
        rule = registry.get_rule(args.state, as_of)
        body = "\n".join(
            f"[bold]{k}:[/bold] {v}" for k, v in rule.to_dict().items() if k != "notes"
        )
        if rule.notes:
            body += f"\n\n{rule.notes}"
        console.print(Panel(body, title=f"{rule.rule_id} effective {as_of}", border_style="cyan"))
        versions = registry.versions(args.state)
        if len(versions) > 1:
            console.print(
                "[dim]Versions: "
                + ", ".join(f"{v.rule_id} from {v.effective_date}" for v in versions)
                + "[/dim]"
            )
        return

    table = Table(title="Configured State Rules", box=box.ROUNDED)
    table.add_column("Rule", style="bold")
    table.add_column("Effective")
    table.add_column("Trade-in")
    table.add_column("Lease")
    table.add_column("Doc Fee Cap", justify="right")
    table.add_column("Reciprocity")
    for code in registry.states():
        for rule in registry.versions(code):
            cap = f" ({rule.trade_in_cap})" if rule.trade_in_cap is not None else ""
            if rule.trade_in_percent is not None:
                cap = f" ({rule.trade_in_percent})"
            table.add_row(
                rule.rule_id,
                str(rule.effective_date),
                rule.trade_in_credit.value + cap,
                rule.lease_tax_method.value,
                f"${rule.doc_fee_cap:,.2f}" if rule.doc_fee_cap is not None else "-",
                rule.reciprocity.value,
            )
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: audit
# -----------------------------------------------------------------------


def cmd_audit(args: argparse.Namespace) -> None:
    """Review recorded calculations."""
    if not args.audit_db:
        console.print("[red]Provide --audit-db to read the audit trail[/red]")
        sys.exit(1)
    store = SQLiteAuditStore(args.audit_db)
    recorder = AuditRecorder(store)
    rg = ReportGenerator(args.output_dir or "reports")

    if args.id:
        chain = recorder.history(args.id)
        if not chain:
            console.print(f"[red]No audit entry {args.id}[/red]")
            sys.exit(1)
        console.print_json(json.dumps(chain[0].to_dict()))
        if len(chain) > 1:
            console.print(
                "[dim]Supersedes: " + " <- ".join(e.audit_id for e in chain[1:]) + "[/dim]"
            )
        return

    entries = recorder.find_by_deal(args.deal) if args.deal else store.entries()
    report = rg.audit_report(entries, deal_id=args.deal)
    console.print(rg.format_text(report), markup=False, highlight=False)

    if args.export_json:
        rg.to_json(report, args.export_json)
        console.print(f"[green]Report exported to {args.export_json}[/green]")
    if args.export_csv:
        rg.to_csv(report, args.export_csv, section="entries")
        console.print(f"[green]CSV exported to {args.export_csv}[/green]")


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dealtax",
        description="Deal Desk Tax Engine - Vehicle sales and lease tax calculation with audit trail",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--jurisdictions", help="Jurisdiction rows CSV")
    parser.add_argument("--zips", help="ZIP mapping CSV")
    parser.add_argument("--states", help="State names / max local rates CSV")
    parser.add_argument("--rules", help="State rule versions JSON")
    parser.add_argument("--audit-db", help="SQLite audit database path")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # calculate
    calc_p = subparsers.add_parser("calculate", help="Calculate tax for a deal")
    calc_p.add_argument("--request", "-r", help="JSON request file")
    calc_p.add_argument("--kind", choices=["retail", "lease"], default="retail")
    calc_p.add_argument("--price", help="Vehicle price (cap cost for leases)")
    calc_p.add_argument("--zip", help="ZIP code of the taxing location")
    calc_p.add_argument("--state", help="Registration state")
    calc_p.add_argument("--dealer-state", help="Dealership state (default: registration state)")
    calc_p.add_argument("--trade-in", help="Trade-in value")
    calc_p.add_argument("--payoff", help="Trade-in loan payoff")
    calc_p.add_argument(
        "--rebate", action="append", help="Rebate as SOURCE:AMOUNT (repeatable)"
    )
    calc_p.add_argument("--doc-fee", help="Documentation fee")
    calc_p.add_argument("--service-contract", help="Service contract price")
    calc_p.add_argument("--gap", help="GAP price")
    calc_p.add_argument("--residual", help="Lease residual value")
    calc_p.add_argument("--term", type=int, help="Lease term in months")
    calc_p.add_argument("--money-factor", help="Lease money factor")
    calc_p.add_argument("--apr", help="Lease APR in percent (converted to money factor)")
    calc_p.add_argument("--cash-down", help="Lease cash down")
    calc_p.add_argument("--payment", help="Scheduled monthly payment")
    calc_p.add_argument("--tax-paid-elsewhere", help="Tax already paid to another state")
    calc_p.add_argument("--tax-paid-date", help="Date that tax was paid (YYYY-MM-DD)")
    calc_p.add_argument(
        "--proof-of-tax-paid", action="store_true", help="Buyer showed a receipt for that tax"
    )
    calc_p.add_argument(
        "--removed", action="store_true", help="Vehicle will be removed from the dealer state"
    )
    calc_p.add_argument("--as-of", help="Calculation date (YYYY-MM-DD)")
    calc_p.add_argument("--deal-id", help="Deal identifier for the audit trail")
    calc_p.add_argument("--actor", default="cli", help="Who is running the calculation")
    calc_p.add_argument("--supersedes", help="Audit id this calculation corrects")
    calc_p.add_argument("--json", action="store_true", help="Print the JSON response")
    calc_p.add_argument("--export-json", help="Export quote report to JSON file")
    calc_p.add_argument("--export-csv", help="Export tax lines to CSV file")
    calc_p.add_argument("--output-dir", help="Output directory for exports")
    calc_p.set_defaults(func=cmd_calculate)

    # rates
    rates_p = subparsers.add_parser("rates", help="View jurisdiction rates")
    rates_p.add_argument("--state", "-s", help="State code to look up")
    rates_p.add_argument("--zip", "-z", help="ZIP code to resolve")
    rates_p.add_argument("--as-of", help="Date (YYYY-MM-DD)")
    rates_p.set_defaults(func=cmd_rates)

    # rules
    rules_p = subparsers.add_parser("rules", help="View state tax rules")
    rules_p.add_argument("--state", "-s", help="State code to look up")
    rules_p.add_argument("--as-of", help="Date (YYYY-MM-DD)")
    rules_p.set_defaults(func=cmd_rules)

    # audit
    audit_p = subparsers.add_parser("audit", help="Review the audit trail")
    audit_p.add_argument("--deal", help="Deal identifier")
    audit_p.add_argument("--id", help="Audit entry id")
    audit_p.add_argument("--export-json", help="Export report to JSON")
    audit_p.add_argument("--export-csv", help="Export entries to CSV")
    audit_p.add_argument("--output-dir", help="Output directory")
    audit_p.set_defaults(func=cmd_audit)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    _configure_logging(args.verbose)
    logger.debug("Running %s", args.command)
    args.func(args)
