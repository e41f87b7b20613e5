"""
Seeded jurisdiction and rule data.

State-level motor vehicle rates for all 50 states plus DC, the historical
maximum local add-on per state, a sample of ZIP codes with their local
layers, and rule versions for the states the dealer group operates in.
Production deployments replace this with data loaded through
``dealtax.loaders``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from dealtax.jurisdictions import (
    Jurisdiction,
    JurisdictionTable,
    JurisdictionType,
    ZipRecord,
    build_table,
)
from dealtax.state_rules import (
    LeaseTaxMethod,
    ReciprocityMode,
    StateRule,
    TradeInCredit,
    VehicleTaxScheme,
)

_RATES_EFFECTIVE = date(2020, 1, 1)

# ---------------------------------------------------------------------------
# State motor vehicle rates + max historical local rate
# ---------------------------------------------------------------------------

_STATE_DATA: dict[str, dict] = {
    "AL": {"name": "Alabama", "rate": "0.0200", "max_local": "0.075"},
    "AK": {"name": "Alaska", "rate": "0.0000", "max_local": "0.075"},
    "AZ": {"name": "Arizona", "rate": "0.0560", "max_local": "0.058"},
    "AR": {"name": "Arkansas", "rate": "0.0650", "max_local": "0.0625"},
    "CA": {"name": "California", "rate": "0.0725", "max_local": "0.0375"},
    "CO": {"name": "Colorado", "rate": "0.0290", "max_local": "0.083"},
    "CT": {"name": "Connecticut", "rate": "0.0635", "max_local": "0.0"},
    "DE": {"name": "Delaware", "rate": "0.0000", "max_local": "0.0"},
    "FL": {"name": "Florida", "rate": "0.0600", "max_local": "0.025"},
    "GA": {"name": "Georgia", "rate": "0.0700", "max_local": "0.0"},
    "HI": {"name": "Hawaii", "rate": "0.0400", "max_local": "0.005"},
    "ID": {"name": "Idaho", "rate": "0.0600", "max_local": "0.03"},
    "IL": {"name": "Illinois", "rate": "0.0625", "max_local": "0.0525"},
    "IN": {"name": "Indiana", "rate": "0.0700", "max_local": "0.0"},
    "IA": {"name": "Iowa", "rate": "0.0500", "max_local": "0.01"},
    "KS": {"name": "Kansas", "rate": "0.0650", "max_local": "0.05"},
    "KY": {"name": "Kentucky", "rate": "0.0600", "max_local": "0.0"},
    "LA": {"name": "Louisiana", "rate": "0.0500", "max_local": "0.07"},
    "ME": {"name": "Maine", "rate": "0.0550", "max_local": "0.0"},
    "MD": {"name": "Maryland", "rate": "0.0650", "max_local": "0.0"},
    "MA": {"name": "Massachusetts", "rate": "0.0625", "max_local": "0.0"},
    "MI": {"name": "Michigan", "rate": "0.0600", "max_local": "0.0"},
    "MN": {"name": "Minnesota", "rate": "0.0650", "max_local": "0.02"},
    "MS": {"name": "Mississippi", "rate": "0.0500", "max_local": "0.01"},
    "MO": {"name": "Missouri", "rate": "0.04225", "max_local": "0.0588"},
    "MT": {"name": "Montana", "rate": "0.0000", "max_local": "0.0"},
    "NE": {"name": "Nebraska", "rate": "0.0550", "max_local": "0.02"},
    "NV": {"name": "Nevada", "rate": "0.0685", "max_local": "0.0153"},
    "NH": {"name": "New Hampshire", "rate": "0.0000", "max_local": "0.0"},
    "NJ": {"name": "New Jersey", "rate": "0.06625", "max_local": "0.0"},
    "NM": {"name": "New Mexico", "rate": "0.0400", "max_local": "0.0"},
    "NY": {"name": "New York", "rate": "0.0400", "max_local": "0.0875"},
    "NC": {"name": "North Carolina", "rate": "0.0300", "max_local": "0.0"},
    "ND": {"name": "North Dakota", "rate": "0.0500", "max_local": "0.035"},
    "OH": {"name": "Ohio", "rate": "0.0575", "max_local": "0.0225"},
    "OK": {"name": "Oklahoma", "rate": "0.0325", "max_local": "0.07"},
    "OR": {"name": "Oregon", "rate": "0.0000", "max_local": "0.0"},
    "PA": {"name": "Pennsylvania", "rate": "0.0600", "max_local": "0.02"},
    "RI": {"name": "Rhode Island", "rate": "0.0700", "max_local": "0.0"},
    "SC": {"name": "South Carolina", "rate": "0.0500", "max_local": "0.03"},
    "SD": {"name": "South Dakota", "rate": "0.0400", "max_local": "0.045"},
    "TN": {"name": "Tennessee", "rate": "0.0700", "max_local": "0.0275"},
    "TX": {"name": "Texas", "rate": "0.0625", "max_local": "0.0"},
    "UT": {"name": "Utah", "rate": "0.0485", "max_local": "0.04"},
    "VT": {"name": "Vermont", "rate": "0.0600", "max_local": "0.0"},
    "VA": {"name": "Virginia", "rate": "0.0415", "max_local": "0.0"},
    "WA": {"name": "Washington", "rate": "0.0650", "max_local": "0.04"},
    "WV": {"name": "West Virginia", "rate": "0.0600", "max_local": "0.01"},
    "WI": {"name": "Wisconsin", "rate": "0.0500", "max_local": "0.0175"},
    "WY": {"name": "Wyoming", "rate": "0.0400", "max_local": "0.04"},
    "DC": {"name": "District of Columbia", "rate": "0.0600", "max_local": "0.0"},
}

# ---------------------------------------------------------------------------
# Local layers: (id, type, state, name, rate, effective, end)
# ---------------------------------------------------------------------------

_C = JurisdictionType.COUNTY
_CITY = JurisdictionType.CITY
_D = JurisdictionType.SPECIAL_DISTRICT

_LOCAL_ROWS: list[tuple] = [
    ("AL-CO-MOBILE", _C, "AL", "Mobile County", "0.0125", date(2020, 1, 1), None),
    ("AL-CI-MOBILE", _CITY, "AL", "Mobile", "0.0250", date(2020, 1, 1), None),
    ("AL-CO-JEFFERSON", _C, "AL", "Jefferson County", "0.0100", date(2020, 1, 1), None),
    ("AL-CI-BIRMINGHAM", _CITY, "AL", "Birmingham", "0.0175", date(2020, 1, 1), None),
    ("CA-CO-LA", _C, "CA", "Los Angeles County", "0.0025", date(2020, 1, 1), None),
    ("CA-DI-LACT-2017", _D, "CA", "LA County Transportation", "0.0175", date(2017, 7, 1), date(2025, 4, 1)),
    ("CA-DI-LACT-2025", _D, "CA", "LA County Transportation", "0.0200", date(2025, 4, 1), None),
    ("CA-CO-SF", _C, "CA", "San Francisco County", "0.0025", date(2020, 1, 1), None),
    ("CA-DI-SFTA", _D, "CA", "SF Transportation Authority", "0.0050", date(2020, 1, 1), None),
    ("CA-DI-BART", _D, "CA", "Bay Area Rapid Transit", "0.0050", date(2020, 1, 1), None),
    ("CA-DI-SFPF", _D, "CA", "SF Public Financing Authority", "0.00125", date(2020, 1, 1), None),
    ("FL-CO-MIAMIDADE", _C, "FL", "Miami-Dade County", "0.0100", date(2020, 1, 1), None),
    ("IL-CO-COOK", _C, "IL", "Cook County", "0.0175", date(2020, 1, 1), None),
    ("IL-CI-CHICAGO", _CITY, "IL", "Chicago", "0.0125", date(2020, 1, 1), None),
    ("IL-DI-RTA", _D, "IL", "Regional Transportation Authority", "0.0100", date(2020, 1, 1), None),
    ("NY-CI-NYC", _CITY, "NY", "New York City", "0.0450", date(2020, 1, 1), None),
    ("NY-DI-MCTD", _D, "NY", "Metropolitan Commuter Transportation District", "0.00375", date(2020, 1, 1), None),
]

# zip -> (state, county, city, local ids)
_ZIP_DATA: dict[str, tuple] = {
    "36602": ("AL", "Mobile County", "Mobile", ("AL-CO-MOBILE", "AL-CI-MOBILE")),
    "35203": ("AL", "Jefferson County", "Birmingham", ("AL-CO-JEFFERSON", "AL-CI-BIRMINGHAM")),
    "90210": ("CA", "Los Angeles County", "Beverly Hills", ("CA-CO-LA", "CA-DI-LACT-2017", "CA-DI-LACT-2025")),
    "94103": ("CA", "San Francisco County", "San Francisco", ("CA-CO-SF", "CA-DI-SFTA", "CA-DI-BART", "CA-DI-SFPF")),
    "33101": ("FL", "Miami-Dade County", "Miami", ("FL-CO-MIAMIDADE",)),
    "60601": ("IL", "Cook County", "Chicago", ("IL-CO-COOK", "IL-CI-CHICAGO", "IL-DI-RTA")),
    "46204": ("IN", "Marion County", "Indianapolis", ()),
    "48226": ("MI", "Wayne County", "Detroit", ()),
    "07102": ("NJ", "Essex County", "Newark", ()),
    "10001": ("NY", "New York County", "New York City", ("NY-CI-NYC", "NY-DI-MCTD")),
    "77002": ("TX", "Harris County", "Houston", ()),
    "75201": ("TX", "Dallas County", "Dallas", ()),
}


def seed_jurisdiction_table() -> JurisdictionTable:
    rows: list[Jurisdiction] = [
        Jurisdiction(
            jurisdiction_id=f"{code}-STATE",
            jurisdiction_type=JurisdictionType.STATE,
            state_code=code,
            name=data["name"],
            rate=Decimal(data["rate"]),
            effective_date=_RATES_EFFECTIVE,
        )
        for code, data in _STATE_DATA.items()
    ]
    rows.extend(
        Jurisdiction(
            jurisdiction_id=jid,
            jurisdiction_type=jtype,
            state_code=state,
            name=name,
            rate=Decimal(rate),
            effective_date=start,
            end_date=end,
        )
        for jid, jtype, state, name, rate, start, end in _LOCAL_ROWS
    )
    zips = [
        ZipRecord(zip_code=z, state_code=s, county=county, city=city, jurisdiction_ids=ids)
        for z, (s, county, city, ids) in _ZIP_DATA.items()
    ]
    return build_table(
        rows,
        zips,
        state_names={code: d["name"] for code, d in _STATE_DATA.items()},
        max_local_rates={code: Decimal(d["max_local"]) for code, d in _STATE_DATA.items()},
    )


# ---------------------------------------------------------------------------
# State rule versions
# ---------------------------------------------------------------------------

SEED_RULES: list[StateRule] = [
    StateRule(
        state_code="AL",
        version=2,
        effective_date=date(2022, 7, 1),
        trade_in_credit=TradeInCredit.FULL,
        trade_in_applies_to_local=False,
        general_sales_rate=Decimal("0.04"),
        lease_trade_in_credit=False,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        drive_out_eligible=True,
        reciprocity_requires_proof=True,
        notes="Trade-in credits state tax only. 72-hour drive-out provision.",
    ),
    StateRule(
        state_code="CA",
        effective_date=date(2020, 1, 1),
        trade_in_credit=TradeInCredit.NONE,
        dealer_rebate_reduces_base=True,
        doc_fee_cap=Decimal("85.00"),
        lease_trade_in_credit=False,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        notes="No trade-in credit. Dealer discounts reduce the selling price.",
    ),
    StateRule(
        state_code="FL",
        effective_date=date(2020, 1, 1),
        dealer_rebate_reduces_base=True,
        service_contract_taxable=True,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
    ),
    StateRule(
        state_code="IL",
        effective_date=date(2020, 1, 1),
        manufacturer_rebate_reduces_base=True,
        doc_fee_cap=Decimal("358.03"),
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        reciprocity_requires_proof=True,
        notes="Lease payments taxed monthly since 2015.",
    ),
    StateRule(
        state_code="IN",
        version=2,
        effective_date=date(2020, 1, 1),
        manufacturer_rebate_reduces_base=True,
        doc_fee_cap=Decimal("250.00"),
        service_contract_taxable=True,
        gap_taxable=True,
        vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY,
        negative_equity_taxable_retail=True,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        reciprocity_requires_proof=True,
        non_reciprocal_states=frozenset({"AZ", "CA", "FL", "HI", "MA", "MI", "SC"}),
        notes="Flat 7% statewide. Negative equity taxable on purchases.",
    ),
    StateRule(
        state_code="MI",
        version=1,
        effective_date=date(2024, 1, 1),
        trade_in_credit=TradeInCredit.CAPPED,
        trade_in_cap=Decimal("10000.00"),
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
    ),
    StateRule(
        state_code="MI",
        version=2,
        effective_date=date(2025, 1, 1),
        trade_in_credit=TradeInCredit.CAPPED,
        trade_in_cap=Decimal("11000.00"),
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        notes="Trade-in cap rises $1,000 each January.",
    ),
    StateRule(
        state_code="NJ",
        effective_date=date(2020, 1, 1),
        service_contract_taxable=True,
        lease_tax_method=LeaseTaxMethod.UPFRONT,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        reciprocity_requires_proof=True,
        vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY,
    ),
    StateRule(
        state_code="NY",
        effective_date=date(2020, 1, 1),
        manufacturer_rebate_reduces_base=True,
        doc_fee_cap=Decimal("175.00"),
        service_contract_taxable=True,
        lease_tax_method=LeaseTaxMethod.UPFRONT,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        notes="Lease tax collected at inception on total lease price.",
    ),
    StateRule(
        state_code="TX",
        effective_date=date(2020, 1, 1),
        manufacturer_rebate_reduces_base=True,
        vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY,
        doc_fee_taxable=False,
        lease_tax_method=LeaseTaxMethod.UPFRONT,
        reciprocity=ReciprocityMode.CREDIT_UP_TO_STATE_TAX,
        notes="Motor vehicle sales tax is state-only.",
    ),
]
