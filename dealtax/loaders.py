"""
Loaders for externally maintained jurisdiction and rule data.

Jurisdiction rows and ZIP mappings come from CSV files (read with pandas,
every column as text so rates keep their exact decimal digits). Rule
versions come from a JSON list. Each loader returns a complete snapshot
and can be handed to :class:`dealtax.cache.SnapshotCache` as-is.

CSV layouts:

    jurisdictions.csv: jurisdiction_id,type,state_code,name,rate,effective_date,end_date
    zips.csv:          zip_code,state_code,county,city,jurisdiction_ids
    states.csv:        state_code,name,max_local_rate

``jurisdiction_ids`` is a semicolon separated list.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from functools import partial
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pandas as pd

from dealtax.jurisdictions import (
    Jurisdiction,
    JurisdictionTable,
    JurisdictionType,
    ZipRecord,
    build_table,
)
from dealtax.state_rules import (
    LeaseComponent,
    LeaseTaxMethod,
    ReciprocityMode,
    ReciprocityScope,
    RuleTable,
    StateRule,
    TradeInCredit,
    VehicleTaxScheme,
    build_rule_table,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_JURISDICTION_COLUMNS = ["jurisdiction_id", "type", "state_code", "name", "rate", "effective_date"]
_ZIP_COLUMNS = ["zip_code", "state_code", "county"]


def _read(path: PathLike, required: list[str]) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip().lower() for c in df.columns]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing columns {missing}")
    return df.apply(lambda col: col.str.strip())


def _decimal(value: str, where: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValueError(f"{where}: not a decimal: {value!r}") from None


def _date(value: str, where: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{where}: not an ISO date: {value!r}") from None


def read_jurisdictions(path: PathLike) -> list[Jurisdiction]:
    df = _read(path, _JURISDICTION_COLUMNS)
    rows: list[Jurisdiction] = []
    for i, rec in enumerate(df.to_dict("records"), start=2):
        where = f"{path}:{i}"
        effective = _date(rec["effective_date"], where)
        if effective is None:
            raise ValueError(f"{where}: effective_date is required")
        rows.append(
            Jurisdiction(
                jurisdiction_id=rec["jurisdiction_id"],
                jurisdiction_type=JurisdictionType(rec["type"].lower()),
                state_code=rec["state_code"].upper(),
                name=rec["name"],
                rate=_decimal(rec["rate"], where),
                effective_date=effective,
                end_date=_date(rec.get("end_date", ""), where),
            )
        )
    return rows


def read_zips(path: PathLike) -> list[ZipRecord]:
    df = _read(path, _ZIP_COLUMNS)
    records = []
    for rec in df.to_dict("records"):
        ids = rec.get("jurisdiction_ids", "")
        records.append(
            ZipRecord(
                zip_code=rec["zip_code"].zfill(5),
                state_code=rec["state_code"].upper(),
                county=rec["county"],
                city=rec.get("city") or None,
                jurisdiction_ids=tuple(j.strip() for j in ids.split(";") if j.strip()),
            )
        )
    return records


def read_states(path: PathLike) -> tuple[dict[str, str], dict[str, Decimal]]:
    df = _read(path, ["state_code", "name"])
    names: dict[str, str] = {}
    max_local: dict[str, Decimal] = {}
    for rec in df.to_dict("records"):
        code = rec["state_code"].upper()
        names[code] = rec["name"]
        if rec.get("max_local_rate"):
            max_local[code] = _decimal(rec["max_local_rate"], f"{path}:{code}")
    return names, max_local


def load_jurisdiction_table(
    jurisdictions_path: PathLike,
    zips_path: PathLike,
    states_path: Optional[PathLike] = None,
) -> JurisdictionTable:
    """Read the CSV files and build one immutable snapshot."""
    names: dict[str, str] = {}
    max_local: dict[str, Decimal] = {}
    if states_path is not None:
        names, max_local = read_states(states_path)
    table = build_table(
        read_jurisdictions(jurisdictions_path),
        read_zips(zips_path),
        state_names=names,
        max_local_rates=max_local,
    )
    logger.info(
        "Loaded %d jurisdictions and %d ZIPs from %s",
        len(table.jurisdictions),
        len(table.zips),
        jurisdictions_path,
    )
    return table


def jurisdiction_loader(
    jurisdictions_path: PathLike,
    zips_path: PathLike,
    states_path: Optional[PathLike] = None,
) -> Callable[[], JurisdictionTable]:
    """Zero-argument loader suitable for a SnapshotCache."""
    return partial(load_jurisdiction_table, jurisdictions_path, zips_path, states_path)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, float):
        raise ValueError(f"rule amounts must be decimal strings, got {value!r}")
    return Decimal(str(value))


def rule_from_dict(data: dict[str, Any]) -> StateRule:
    """Build a StateRule from its JSON form (the shape of ``StateRule.to_dict``)."""
    kwargs: dict[str, Any] = {
        "state_code": data["state_code"].upper(),
        "version": int(data.get("version", 1)),
    }
    if "effective_date" in data:
        kwargs["effective_date"] = date.fromisoformat(data["effective_date"])
    if "trade_in_credit" in data:
        kwargs["trade_in_credit"] = TradeInCredit(data["trade_in_credit"])
    if "lease_tax_method" in data:
        kwargs["lease_tax_method"] = LeaseTaxMethod(data["lease_tax_method"])
    if "reciprocity" in data:
        kwargs["reciprocity"] = ReciprocityMode(data["reciprocity"])
    if "reciprocity_scope" in data:
        kwargs["reciprocity_scope"] = ReciprocityScope(data["reciprocity_scope"])
    if "vehicle_tax_scheme" in data:
        kwargs["vehicle_tax_scheme"] = VehicleTaxScheme(data["vehicle_tax_scheme"])
    if data.get("reciprocity_window_days") is not None:
        kwargs["reciprocity_window_days"] = int(data["reciprocity_window_days"])
    if "hybrid_upfront_components" in data:
        kwargs["hybrid_upfront_components"] = frozenset(
            LeaseComponent(c) for c in data["hybrid_upfront_components"]
        )
    if "non_reciprocal_states" in data:
        kwargs["non_reciprocal_states"] = frozenset(
            s.upper() for s in data["non_reciprocal_states"]
        )
    for key in ("trade_in_cap", "trade_in_percent", "doc_fee_cap", "general_sales_rate"):
        if key in data:
            kwargs[key] = _optional_decimal(data[key])
    for key in (
        "trade_in_applies_to_local",
        "manufacturer_rebate_reduces_base",
        "dealer_rebate_reduces_base",
        "doc_fee_taxable",
        "service_contract_taxable",
        "gap_taxable",
        "accessories_taxable",
        "negative_equity_taxable_retail",
        "negative_equity_taxable_lease",
        "lease_trade_in_credit",
        "cap_reduction_reduces_base",
        "reciprocity_requires_proof",
        "reciprocity_requires_mutual_credit",
        "drive_out_eligible",
    ):
        if key in data:
            kwargs[key] = bool(data[key])
    if "notes" in data:
        kwargs["notes"] = str(data["notes"])
    return StateRule(**kwargs)


def load_rule_table(path: PathLike) -> RuleTable:
    """Read a JSON list of rule versions."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON list of rules")
    table = build_rule_table(rule_from_dict(r) for r in raw)
    logger.info("Loaded %d rule versions from %s", len(raw), path)
    return table


def rule_loader(path: PathLike) -> Callable[[], RuleTable]:
    return partial(load_rule_table, path)
