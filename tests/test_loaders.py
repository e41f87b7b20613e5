"""Tests for CSV/JSON data loaders."""

import json
from datetime import date
from decimal import Decimal

import pytest

from dealtax.cache import SnapshotCache
from dealtax.jurisdictions import JurisdictionResolver, JurisdictionType
from dealtax.loaders import (
    jurisdiction_loader,
    load_jurisdiction_table,
    load_rule_table,
    read_jurisdictions,
    read_zips,
    rule_from_dict,
)
from dealtax.seed import SEED_RULES
from dealtax.state_rules import StateRuleRegistry

JURISDICTIONS_CSV = """jurisdiction_id,type,state_code,name,rate,effective_date,end_date
AL-STATE,state,AL,Alabama,0.0200,2020-01-01,
AL-CO-JEFFERSON,county,AL,Jefferson County,0.0100,2020-01-01,
AL-CI-BIRMINGHAM,city,AL,Birmingham,0.0175,2020-01-01,2025-01-01
AL-CI-BIRMINGHAM-25,city,AL,Birmingham,0.0200,2025-01-01,
"""

ZIPS_CSV = """zip_code,state_code,county,city,jurisdiction_ids
35203,AL,Jefferson County,Birmingham,AL-CO-JEFFERSON;AL-CI-BIRMINGHAM;AL-CI-BIRMINGHAM-25
"""

STATES_CSV = """state_code,name,max_local_rate
AL,Alabama,0.075
"""


@pytest.fixture
def data_dir(tmp_path):
    (tmp_path / "jurisdictions.csv").write_text(JURISDICTIONS_CSV)
    (tmp_path / "zips.csv").write_text(ZIPS_CSV)
    (tmp_path / "states.csv").write_text(STATES_CSV)
    return tmp_path


# ── Jurisdictions ────────────────────────────────────────────────────


def test_read_jurisdictions_keeps_exact_rates(data_dir):
    rows = read_jurisdictions(data_dir / "jurisdictions.csv")
    assert len(rows) == 4
    assert rows[0].jurisdiction_type is JurisdictionType.STATE
    assert rows[2].rate == Decimal("0.0175")
    assert str(rows[2].rate) == "0.0175"
    assert rows[2].end_date == date(2025, 1, 1)
    assert rows[0].end_date is None


def test_read_zips_splits_ids(data_dir):
    (record,) = read_zips(data_dir / "zips.csv")
    assert record.zip_code == "35203"
    assert record.jurisdiction_ids == (
        "AL-CO-JEFFERSON",
        "AL-CI-BIRMINGHAM",
        "AL-CI-BIRMINGHAM-25",
    )


def test_leading_zeros_restored(tmp_path):
    path = tmp_path / "zips.csv"
    path.write_text("zip_code,state_code,county,city,jurisdiction_ids\n7102,NJ,Essex County,Newark,\n")
    (record,) = read_zips(path)
    assert record.zip_code == "07102"
    assert record.jurisdiction_ids == ()


def test_missing_column_rejected(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("jurisdiction_id,type,state_code,name\nAL-STATE,state,AL,Alabama\n")
    with pytest.raises(ValueError, match="missing columns"):
        read_jurisdictions(path)


def test_bad_rate_rejected(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text(
        "jurisdiction_id,type,state_code,name,rate,effective_date,end_date\n"
        "AL-STATE,state,AL,Alabama,two percent,2020-01-01,\n"
    )
    with pytest.raises(ValueError, match="not a decimal"):
        read_jurisdictions(path)


def test_loaded_table_drives_resolver(data_dir):
    table = load_jurisdiction_table(
        data_dir / "jurisdictions.csv", data_dir / "zips.csv", data_dir / "states.csv"
    )
    resolver = JurisdictionResolver(table)
    assert resolver.resolve("35203", date(2024, 6, 1)).total_rate == Decimal("0.0475")
    assert resolver.resolve("35203", date(2025, 6, 1)).total_rate == Decimal("0.0500")
    assert resolver.max_local_rate("AL") == Decimal("0.075")


def test_loader_feeds_snapshot_cache(data_dir):
    cache = SnapshotCache(
        jurisdiction_loader(data_dir / "jurisdictions.csv", data_dir / "zips.csv")
    )
    resolver = JurisdictionResolver(cache)
    assert resolver.state_rate("AL", date(2025, 6, 1)) == Decimal("0.0200")


# ── Rules ────────────────────────────────────────────────────────────


@pytest.mark.parametrize("rule", SEED_RULES, ids=lambda r: r.rule_id)
def test_rule_json_form_reloads_identically(rule):
    assert rule_from_dict(json.loads(json.dumps(rule.to_dict()))) == rule


def test_rule_amounts_must_not_be_floats():
    with pytest.raises(ValueError):
        rule_from_dict({"state_code": "MI", "trade_in_credit": "capped", "trade_in_cap": 11000.0})


def test_load_rule_table(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps(
            [
                {"state_code": "mi", "version": 1, "effective_date": "2024-01-01",
                 "trade_in_credit": "capped", "trade_in_cap": "10000.00"},
                {"state_code": "MI", "version": 2, "effective_date": "2025-01-01",
                 "trade_in_credit": "capped", "trade_in_cap": "11000.00"},
            ]
        )
    )
    registry = StateRuleRegistry(load_rule_table(path))
    assert registry.get_rule("MI", date(2024, 3, 1)).trade_in_cap == Decimal("10000.00")
    assert registry.get_rule("MI", date(2025, 3, 1)).rule_id == "MI-v2"


def test_rule_file_must_be_a_list(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text('{"state_code": "MI"}')
    with pytest.raises(ValueError, match="JSON list"):
        load_rule_table(path)


def test_rule_from_dict_reads_reciprocity_and_scheme_fields():
    rule = rule_from_dict(
        {
            "state_code": "de",
            "trade_in_credit": "percent",
            "trade_in_percent": "0.5",
            "vehicle_tax_scheme": "state_only",
            "reciprocity": "credit_up_to_state_tax",
            "reciprocity_scope": "retail_only",
            "reciprocity_window_days": 90,
            "reciprocity_requires_proof": True,
            "reciprocity_requires_mutual_credit": True,
        }
    )
    assert rule.rule_id == "DE-v1"
    assert rule.trade_in_percent == Decimal("0.5")
    assert rule.vehicle_tax_scheme.value == "state_only"
    assert rule.reciprocity_scope.value == "retail_only"
    assert rule.reciprocity_window_days == 90
    assert rule.reciprocity_requires_proof
    assert rule.reciprocity_requires_mutual_credit
