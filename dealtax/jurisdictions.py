"""
Jurisdiction data and ZIP code resolution.

Maps a ZIP code to the layered set of taxing authorities (state, county,
city, special districts) that apply on a given date. Rows are effective
dated and never edited in place; a newer row supersedes an older one, which
keeps point-in-time lookups possible.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional, Union

from dealtax.cache import SnapshotCache
from dealtax.errors import InvalidInput, UnknownJurisdiction, UnknownState

logger = logging.getLogger(__name__)

_ZIP_RE = re.compile(r"^\d{5}$")

SOURCE_DATABASE = "database"
SOURCE_FALLBACK = "fallback"


class JurisdictionType(Enum):
    STATE = "state"
    COUNTY = "county"
    CITY = "city"
    SPECIAL_DISTRICT = "special_district"


# Layer order used when building a JurisdictionSet
_LAYER_ORDER = {
    JurisdictionType.STATE: 0,
    JurisdictionType.COUNTY: 1,
    JurisdictionType.CITY: 2,
    JurisdictionType.SPECIAL_DISTRICT: 3,
}


@dataclass(frozen=True)
class Jurisdiction:
    """One taxing authority at one level, effective over a date range."""

    jurisdiction_id: str
    jurisdiction_type: JurisdictionType
    state_code: str
    name: str
    rate: Decimal  # e.g. Decimal("0.0200") = 2%
    effective_date: date
    end_date: Optional[date] = None  # exclusive; None = still active

    def is_effective(self, on: date) -> bool:
        if on < self.effective_date:
            return False
        return self.end_date is None or on < self.end_date

    @property
    def label(self) -> str:
        return f"{self.jurisdiction_type.value}:{self.name}"


@dataclass(frozen=True)
class ZipRecord:
    """Geography of a ZIP code and the local rows that cover it."""

    zip_code: str
    state_code: str
    county: str
    city: Optional[str] = None
    jurisdiction_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class JurisdictionTable:
    """
    Immutable snapshot of all jurisdiction data.

    Build with :func:`build_table`; the mappings are read-only views.
    """

    jurisdictions: Mapping[str, Jurisdiction]
    state_rows: Mapping[str, tuple[Jurisdiction, ...]]
    zips: Mapping[str, ZipRecord]
    state_names: Mapping[str, str]
    max_local_rates: Mapping[str, Decimal]

    def state_row(self, state_code: str, on: date) -> Optional[Jurisdiction]:
        rows = [r for r in self.state_rows.get(state_code, ()) if r.is_effective(on)]
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                "Overlapping state rows for %s on %s; using newest", state_code, on
            )
        return max(rows, key=lambda r: r.effective_date)


def build_table(
    jurisdictions: Iterable[Jurisdiction],
    zips: Iterable[ZipRecord],
    state_names: Optional[Mapping[str, str]] = None,
    max_local_rates: Optional[Mapping[str, Decimal]] = None,
) -> JurisdictionTable:
    """Assemble a snapshot, checking that every ZIP references known rows."""
    by_id: dict[str, Jurisdiction] = {}
    state_rows: dict[str, list[Jurisdiction]] = {}
    for j in jurisdictions:
        if j.jurisdiction_id in by_id:
            raise ValueError(f"Duplicate jurisdiction id: {j.jurisdiction_id}")
        by_id[j.jurisdiction_id] = j
        if j.jurisdiction_type is JurisdictionType.STATE:
            state_rows.setdefault(j.state_code, []).append(j)

    zip_map: dict[str, ZipRecord] = {}
    for z in zips:
        missing = [jid for jid in z.jurisdiction_ids if jid not in by_id]
        if missing:
            raise ValueError(
                f"ZIP {z.zip_code} references unknown jurisdictions: {missing}"
            )
        zip_map[z.zip_code] = z

    return JurisdictionTable(
        jurisdictions=MappingProxyType(by_id),
        state_rows=MappingProxyType(
            {
                code: tuple(sorted(rows, key=lambda r: r.effective_date))
                for code, rows in state_rows.items()
            }
        ),
        zips=MappingProxyType(zip_map),
        state_names=MappingProxyType(dict(state_names or {})),
        max_local_rates=MappingProxyType(dict(max_local_rates or {})),
    )


@dataclass(frozen=True)
class JurisdictionSet:
    """The layered jurisdictions that tax one ZIP on one date."""

    zip_code: str
    state_code: str
    as_of: date
    layers: tuple[Jurisdiction, ...]
    source: str = SOURCE_DATABASE
    county: Optional[str] = None
    city: Optional[str] = None

    @property
    def state(self) -> Jurisdiction:
        return self.layers[0]

    @property
    def locals(self) -> tuple[Jurisdiction, ...]:
        return self.layers[1:]

    @property
    def special_districts(self) -> tuple[Jurisdiction, ...]:
        return tuple(
            j
            for j in self.layers
            if j.jurisdiction_type is JurisdictionType.SPECIAL_DISTRICT
        )

    @property
    def state_rate(self) -> Decimal:
        return self.state.rate

    @property
    def combined_local_rate(self) -> Decimal:
        return sum((j.rate for j in self.locals), Decimal("0"))

    @property
    def total_rate(self) -> Decimal:
        return self.state_rate + self.combined_local_rate

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_FALLBACK

    @property
    def jurisdiction_ids(self) -> tuple[str, ...]:
        return tuple(j.jurisdiction_id for j in self.layers)


TableSource = Union[
    JurisdictionTable,
    SnapshotCache[JurisdictionTable],
    Callable[[], JurisdictionTable],
]


def _pick_effective(
    rows: list[Jurisdiction], on: date
) -> list[Jurisdiction]:
    """
    Keep one row per (type, name); overlapping districts with different
    names are all kept since their rates stack.
    """
    chosen: dict[tuple[JurisdictionType, str], Jurisdiction] = {}
    for row in rows:
        if not row.is_effective(on):
            continue
        key = (row.jurisdiction_type, row.name)
        current = chosen.get(key)
        if current is not None:
            logger.warning(
                "Ambiguous %s rows for %s on %s (%s, %s); using newest",
                row.jurisdiction_type.value,
                row.name,
                on,
                current.jurisdiction_id,
                row.jurisdiction_id,
            )
            if row.effective_date <= current.effective_date:
                continue
        chosen[key] = row
    return sorted(
        chosen.values(),
        key=lambda j: (_LAYER_ORDER[j.jurisdiction_type], j.name),
    )


class JurisdictionResolver:
    """
    Resolves ZIP codes to jurisdiction sets.

    Reads from a :class:`SnapshotCache`; a lookup never mutates shared
    state, so it is safe to call from any number of threads.
    """

    def __init__(self, source: Optional[TableSource] = None) -> None:
        if source is None:
            from dealtax.seed import seed_jurisdiction_table

            source = seed_jurisdiction_table()
        if isinstance(source, JurisdictionTable):
            self._cache = SnapshotCache.of(source, name="jurisdictions")
        elif isinstance(source, SnapshotCache):
            self._cache = source
        else:
            self._cache = SnapshotCache(source, name="jurisdictions")

    @property
    def cache(self) -> SnapshotCache[JurisdictionTable]:
        return self._cache

    @property
    def table(self) -> JurisdictionTable:
        return self._cache.get()

    def resolve(
        self,
        zip_code: str,
        as_of: Optional[date] = None,
        state_hint: Optional[str] = None,
    ) -> JurisdictionSet:
        """
        Look up every jurisdiction covering ``zip_code`` on ``as_of``.

        An unknown ZIP degrades to a state-only fallback set for
        ``state_hint``. Raises UnknownJurisdiction when no state can be
        determined at all.
        """
        if not isinstance(zip_code, str) or not _ZIP_RE.match(zip_code.strip()):
            raise InvalidInput("zip_code", f"expected a 5-digit ZIP, got {zip_code!r}")
        zip_code = zip_code.strip()
        on = as_of or date.today()
        hint = state_hint.strip().upper() if state_hint else None
        table = self.table

        record = table.zips.get(zip_code)
        if record is None:
            return self._fallback(table, zip_code, on, hint)

        if hint and hint != record.state_code:
            logger.warning(
                "ZIP %s state mismatch: expected %s, data has %s",
                zip_code,
                hint,
                record.state_code,
            )

        state_row = table.state_row(record.state_code, on)
        if state_row is None:
            raise UnknownJurisdiction(
                f"No state rate for {record.state_code} effective {on.isoformat()}"
            )

        local_rows = [
            table.jurisdictions[jid]
            for jid in record.jurisdiction_ids
            if table.jurisdictions[jid].jurisdiction_type is not JurisdictionType.STATE
        ]
        layers = (state_row, *_pick_effective(local_rows, on))
        return JurisdictionSet(
            zip_code=zip_code,
            state_code=record.state_code,
            as_of=on,
            layers=layers,
            source=SOURCE_DATABASE,
            county=record.county,
            city=record.city,
        )

    def _fallback(
        self,
        table: JurisdictionTable,
        zip_code: str,
        on: date,
        hint: Optional[str],
    ) -> JurisdictionSet:
        if not hint:
            raise UnknownJurisdiction(
                f"ZIP {zip_code} not found and no state given for fallback"
            )
        state_row = table.state_row(hint, on)
        if state_row is None:
            raise UnknownJurisdiction(
                f"ZIP {zip_code} not found and state {hint} is not recognized"
            )
        logger.warning(
            "ZIP %s not found, using state-only rate for %s", zip_code, hint
        )
        return JurisdictionSet(
            zip_code=zip_code,
            state_code=hint,
            as_of=on,
            layers=(state_row,),
            source=SOURCE_FALLBACK,
        )

    def state_rate(self, state_code: str, as_of: Optional[date] = None) -> Decimal:
        """Return the state-level vehicle rate effective on ``as_of``."""
        code = state_code.strip().upper()
        row = self.table.state_row(code, as_of or date.today())
        if row is None:
            raise UnknownState(code)
        return row.rate

    def max_local_rate(self, state_code: str) -> Optional[Decimal]:
        """Historical maximum combined local rate, if known."""
        return self.table.max_local_rates.get(state_code.upper())

    def known_states(self) -> list[str]:
        return sorted(self.table.state_rows)

    def zips_for_state(self, state_code: str) -> list[ZipRecord]:
        code = state_code.upper()
        return sorted(
            (z for z in self.table.zips.values() if z.state_code == code),
            key=lambda z: z.zip_code,
        )
