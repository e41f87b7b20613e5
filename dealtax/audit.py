"""
Append-only audit trail of tax calculations.

Each calculation is written once, keyed by its calculation id, with a
snapshot of the request, the result, the rule version and the jurisdiction
rows used. Entries are never updated or deleted; a correction is a new
entry that points back at the one it supersedes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dealtax.errors import AuditWriteFailed
from dealtax.models import TaxCalculationRequest, TaxCalculationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditContext:
    """Who asked for a calculation, and for which deal."""

    actor: str = "system"
    deal_id: Optional[str] = None
    supersedes: Optional[str] = None


@dataclass(frozen=True)
class AuditLogEntry:
    audit_id: str
    request: dict[str, Any]
    result: dict[str, Any]
    rule_id: str
    jurisdiction_ids: tuple[str, ...]
    recorded_at: datetime
    actor: str = "system"
    deal_id: Optional[str] = None
    supersedes: Optional[str] = None
    integrity_hash: str = ""

    def __post_init__(self) -> None:
        if not self.integrity_hash:
            object.__setattr__(self, "integrity_hash", self._generate_hash())

    def _generate_hash(self) -> str:
        content = {
            "audit_id": self.audit_id,
            "request": self.request,
            "result": self.result,
            "rule_id": self.rule_id,
            "jurisdiction_ids": list(self.jurisdiction_ids),
            "recorded_at": self.recorded_at.isoformat(),
            "actor": self.actor,
            "deal_id": self.deal_id,
            "supersedes": self.supersedes,
        }
        blob = json.dumps(content, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(blob.encode()).hexdigest()

    def verify_integrity(self) -> bool:
        """True if the stored content still matches its hash."""
        return self._generate_hash() == self.integrity_hash

    @property
    def total_tax(self) -> str:
        return self.result.get("total_tax", "0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "request": self.request,
            "result": self.result,
            "rule_id": self.rule_id,
            "jurisdiction_ids": list(self.jurisdiction_ids),
            "recorded_at": self.recorded_at.isoformat(),
            "actor": self.actor,
            "deal_id": self.deal_id,
            "supersedes": self.supersedes,
            "integrity_hash": self.integrity_hash,
        }


class AuditStore(ABC):
    """Append-only storage for audit entries."""

    @abstractmethod
    def append(self, entry: AuditLogEntry) -> None:
        """Persist ``entry``; raise if its id already exists."""

    @abstractmethod
    def get(self, audit_id: str) -> Optional[AuditLogEntry]:
        pass

    @abstractmethod
    def find_by_deal(self, deal_id: str) -> list[AuditLogEntry]:
        pass

    @abstractmethod
    def entries(self) -> list[AuditLogEntry]:
        """All entries, oldest first."""


class InMemoryAuditStore(AuditStore):
    """Thread-safe, non-persistent store for tests and single runs."""

    def __init__(self) -> None:
        self._entries: dict[str, AuditLogEntry] = {}
        self._lock = threading.Lock()

    def append(self, entry: AuditLogEntry) -> None:
        with self._lock:
            if entry.audit_id in self._entries:
                raise ValueError(f"Audit entry {entry.audit_id} already recorded")
            self._entries[entry.audit_id] = entry

    def get(self, audit_id: str) -> Optional[AuditLogEntry]:
        with self._lock:
            return self._entries.get(audit_id)

    def find_by_deal(self, deal_id: str) -> list[AuditLogEntry]:
        with self._lock:
            found = [e for e in self._entries.values() if e.deal_id == deal_id]
        return sorted(found, key=lambda e: e.recorded_at)

    def entries(self) -> list[AuditLogEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.recorded_at)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS tax_audit_log (
    audit_id TEXT PRIMARY KEY,
    recorded_at TEXT NOT NULL,
    actor TEXT NOT NULL,
    deal_id TEXT,
    supersedes TEXT,
    rule_id TEXT NOT NULL,
    jurisdiction_ids TEXT NOT NULL,
    request TEXT NOT NULL,
    result TEXT NOT NULL,
    integrity_hash TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tax_audit_deal ON tax_audit_log(deal_id, recorded_at);
CREATE TRIGGER IF NOT EXISTS tax_audit_log_no_update
BEFORE UPDATE ON tax_audit_log
BEGIN
    SELECT RAISE(ABORT, 'tax_audit_log is append-only: UPDATE not allowed');
END;
CREATE TRIGGER IF NOT EXISTS tax_audit_log_no_delete
BEFORE DELETE ON tax_audit_log
BEGIN
    SELECT RAISE(ABORT, 'tax_audit_log is append-only: DELETE not allowed');
END;
"""


class SQLiteAuditStore(AuditStore):
    """
    Persistent store backed by SQLite.

    Database triggers reject UPDATE and DELETE on the audit table, so the
    log stays append-only even for writers that bypass this class.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    def append(self, entry: AuditLogEntry) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO tax_audit_log (
                        audit_id, recorded_at, actor, deal_id, supersedes, rule_id,
                        jurisdiction_ids, request, result, integrity_hash
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.audit_id,
                        entry.recorded_at.isoformat(),
                        entry.actor,
                        entry.deal_id,
                        entry.supersedes,
                        entry.rule_id,
                        json.dumps(list(entry.jurisdiction_ids)),
                        json.dumps(entry.request, sort_keys=True),
                        json.dumps(entry.result, sort_keys=True),
                        entry.integrity_hash,
                    ),
                )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> AuditLogEntry:
        return AuditLogEntry(
            audit_id=row["audit_id"],
            request=json.loads(row["request"]),
            result=json.loads(row["result"]),
            rule_id=row["rule_id"],
            jurisdiction_ids=tuple(json.loads(row["jurisdiction_ids"])),
            recorded_at=datetime.fromisoformat(row["recorded_at"]),
            actor=row["actor"],
            deal_id=row["deal_id"],
            supersedes=row["supersedes"],
            integrity_hash=row["integrity_hash"],
        )

    def _query(self, sql: str, params: tuple = ()) -> list[AuditLogEntry]:
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def get(self, audit_id: str) -> Optional[AuditLogEntry]:
        found = self._query(
            "SELECT * FROM tax_audit_log WHERE audit_id = ?", (audit_id,)
        )
        return found[0] if found else None

    def find_by_deal(self, deal_id: str) -> list[AuditLogEntry]:
        return self._query(
            "SELECT * FROM tax_audit_log WHERE deal_id = ? ORDER BY recorded_at, rowid",
            (deal_id,),
        )

    def entries(self) -> list[AuditLogEntry]:
        return self._query("SELECT * FROM tax_audit_log ORDER BY recorded_at, rowid")

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class AuditRecorder:
    """
    Writes one audit entry per calculation.

    A write is attempted exactly once. Any store failure surfaces as
    :class:`AuditWriteFailed`; retrying is the caller's decision.
    """

    def __init__(self, store: Optional[AuditStore] = None) -> None:
        self.store = store or InMemoryAuditStore()

    def record(
        self,
        request: TaxCalculationRequest,
        result: TaxCalculationResult,
        context: Optional[AuditContext] = None,
        audit_id: Optional[str] = None,
    ) -> str:
        """Append one entry and return its id (a new uuid4 hex if not given)."""
        audit_id = audit_id or uuid.uuid4().hex
        ctx = context or AuditContext()
        if ctx.supersedes is not None and self.store.get(ctx.supersedes) is None:
            raise AuditWriteFailed(
                f"Cannot supersede unknown audit entry {ctx.supersedes}"
            )
        entry = AuditLogEntry(
            audit_id=audit_id,
            request=request.to_dict(),
            result=result.to_dict(),
            rule_id=result.rule_id,
            jurisdiction_ids=result.jurisdiction_ids,
            recorded_at=datetime.now(timezone.utc),
            actor=ctx.actor,
            deal_id=ctx.deal_id,
            supersedes=ctx.supersedes,
        )
        try:
            self.store.append(entry)
        except Exception as e:
            logger.error("Audit write for %s failed: %s", audit_id, e)
            raise AuditWriteFailed(f"Audit write for {audit_id} failed: {e}") from e
        logger.info(
            "Recorded calculation %s (deal=%s, rule=%s)", audit_id, ctx.deal_id, result.rule_id
        )
        return audit_id

    def get(self, audit_id: str) -> Optional[AuditLogEntry]:
        return self.store.get(audit_id)

    def find_by_deal(self, deal_id: str) -> list[AuditLogEntry]:
        return self.store.find_by_deal(deal_id)

    def history(self, audit_id: str) -> list[AuditLogEntry]:
        """Follow ``supersedes`` links back from ``audit_id``, newest first."""
        chain: list[AuditLogEntry] = []
        current = self.store.get(audit_id)
        while current is not None:
            chain.append(current)
            current = self.store.get(current.supersedes) if current.supersedes else None
        return chain
