"""Tests for the append-only audit trail."""

import sqlite3
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from dealtax.audit import (
    AuditContext,
    AuditRecorder,
    InMemoryAuditStore,
    SQLiteAuditStore,
)
from dealtax.calculator import TaxCalculator
from dealtax.errors import AuditWriteFailed
from dealtax.jurisdictions import JurisdictionResolver
from dealtax.models import TaxCalculationRequest, TransactionKind
from dealtax.state_rules import StateRuleRegistry


@pytest.fixture
def deal():
    request = TaxCalculationRequest(
        transaction_kind=TransactionKind.RETAIL,
        vehicle_price=Decimal("30000.00"),
        trade_in_value=Decimal("10000.00"),
        zip_code="35203",
        registration_state="AL",
        as_of=date(2025, 6, 1),
    )
    jset = JurisdictionResolver().resolve("35203", request.as_of)
    rule = StateRuleRegistry().get_rule("AL", request.as_of)
    return request, TaxCalculator().calculate(request, jset, rule)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryAuditStore()
    return SQLiteAuditStore(str(tmp_path / "audit" / "log.db"))


# ── Recording ────────────────────────────────────────────────────────


def test_record_and_get(store, deal):
    request, result = deal
    recorder = AuditRecorder(store)
    audit_id = recorder.record(request, result, AuditContext(actor="desk-1", deal_id="D-1"))

    entry = recorder.get(audit_id)
    assert entry is not None
    assert entry.actor == "desk-1"
    assert entry.rule_id == "AL-v2"
    assert entry.jurisdiction_ids == result.jurisdiction_ids
    assert entry.result["total_tax"] == "1225.00"
    assert entry.request["vehicle_price"] == "30000.00"
    assert entry.verify_integrity()


def test_given_audit_id_is_used(store, deal):
    recorder = AuditRecorder(store)
    assert recorder.record(*deal, audit_id="abc123") == "abc123"


def test_duplicate_id_fails(store, deal):
    recorder = AuditRecorder(store)
    recorder.record(*deal, audit_id="abc123")
    with pytest.raises(AuditWriteFailed):
        recorder.record(*deal, audit_id="abc123")


def test_find_by_deal(store, deal):
    recorder = AuditRecorder(store)
    first = recorder.record(*deal, AuditContext(deal_id="D-1"))
    recorder.record(*deal, AuditContext(deal_id="D-2"))
    second = recorder.record(*deal, AuditContext(deal_id="D-1"))
    assert [e.audit_id for e in recorder.find_by_deal("D-1")] == [first, second]
    assert recorder.find_by_deal("D-3") == []


def test_correction_supersedes_original(store, deal):
    recorder = AuditRecorder(store)
    original = recorder.record(*deal, AuditContext(deal_id="D-1"))
    fixed = recorder.record(*deal, AuditContext(deal_id="D-1", supersedes=original))

    assert recorder.get(fixed).supersedes == original
    assert [e.audit_id for e in recorder.history(fixed)] == [fixed, original]
    # the original is untouched
    assert recorder.get(original).supersedes is None


def test_cannot_supersede_unknown_entry(store, deal):
    with pytest.raises(AuditWriteFailed, match="unknown audit entry"):
        AuditRecorder(store).record(*deal, AuditContext(supersedes="missing"))


def test_store_failure_surfaces_as_audit_write_failed(deal):
    class BrokenStore(InMemoryAuditStore):
        def append(self, entry):
            raise OSError("disk full")

    with pytest.raises(AuditWriteFailed, match="disk full"):
        AuditRecorder(BrokenStore()).record(*deal)


# ── Integrity ────────────────────────────────────────────────────────


def test_tampered_entry_fails_integrity(deal):
    recorder = AuditRecorder()
    entry = recorder.get(recorder.record(*deal))
    tampered = replace(entry, result={**entry.result, "total_tax": "1.00"})
    assert tampered.integrity_hash == entry.integrity_hash
    assert not tampered.verify_integrity()


def test_sqlite_round_trip_keeps_hash_valid(tmp_path, deal):
    path = str(tmp_path / "log.db")
    audit_id = AuditRecorder(SQLiteAuditStore(path)).record(*deal)
    reopened = SQLiteAuditStore(path)
    entry = reopened.get(audit_id)
    assert entry.verify_integrity()
    assert entry.recorded_at.tzinfo is not None


# ── Append-only enforcement ──────────────────────────────────────────


def test_sqlite_rejects_update(deal):
    store = SQLiteAuditStore()
    audit_id = AuditRecorder(store).record(*deal)
    with pytest.raises(sqlite3.DatabaseError, match="append-only"):
        store._conn.execute(
            "UPDATE tax_audit_log SET actor = 'mallory' WHERE audit_id = ?", (audit_id,)
        )


def test_sqlite_rejects_delete(deal):
    store = SQLiteAuditStore()
    AuditRecorder(store).record(*deal)
    with pytest.raises(sqlite3.DatabaseError, match="append-only"):
        store._conn.execute("DELETE FROM tax_audit_log")
    assert len(store.entries()) == 1


def test_entry_is_frozen(deal):
    recorder = AuditRecorder()
    entry = recorder.get(recorder.record(*deal))
    with pytest.raises(AttributeError):
        entry.actor = "someone else"
