from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, List, Optional


@dataclass
class CatalogEntry:
    id: str
    symbol: str
    name: str
    sector: str
    issue_price: float
    lot_size: int
    min_investment: float
    price_band: str
    risk_level: str
    open_date: str
    close_date: str
    listing_date: str
    status: str = "upcoming"
    allotted: bool = False
    listed: bool = False
    actual_listing_price: Optional[float] = None
    listing_gain: Optional[float] = None
    issue_size: Optional[str] = None
    description: str = ""
    source: str = "synthetic"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str) -> "CatalogEntry":
        return cls(**{**data, "source": source})

    def copy(self, **changes) -> "CatalogEntry":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


IPOS_OPEN: List[Dict[str, Any]] = [
    {
        "id": "IPO-1001",
        "symbol": "GRNENRG",
        "name": "Greenfield Energy Ltd",
        "sector": "Renewable Energy",
        "issue_price": 312,
        "lot_size": 48,
        "min_investment": 14976,
        "price_band": "₹296 - ₹312",
        "risk_level": "Medium",
        "open_date": "2026-01-12",
        "close_date": "2026-01-14",
        "listing_date": "2026-01-19",
        "issue_size": "₹1,850 Cr",
        "description": "Solar and wind developer with a 2.4 GW operational portfolio.",
    },
    {
        "id": "IPO-1002",
        "symbol": "KAVYAFIN",
        "name": "Kavya Finserv Ltd",
        "sector": "Financial Services",
        "issue_price": 148,
        "lot_size": 100,
        "min_investment": 14800,
        "price_band": "₹140 - ₹148",
        "risk_level": "High",
        "open_date": "2026-01-13",
        "close_date": "2026-01-15",
        "listing_date": "2026-01-20",
        "issue_size": "₹620 Cr",
        "description": "Gold-loan and microfinance lender focused on tier-3 towns.",
    },
    {
        "id": "IPO-1003",
        "symbol": "MEDIQR",
        "name": "MediQure Diagnostics Ltd",
        "sector": "Healthcare",
        "issue_price": 540,
        "lot_size": 27,
        "min_investment": 14580,
        "price_band": "₹512 - ₹540",
        "risk_level": "Low",
        "open_date": "2026-01-14",
        "close_date": "2026-01-16",
        "listing_date": "2026-01-21",
        "issue_size": "₹1,120 Cr",
        "description": "Pathology lab chain with 310 collection centres.",
    },
]

IPOS_UPCOMING: List[Dict[str, Any]] = [
    {
        "id": "IPO-2001",
        "symbol": "NAVTECH",
        "name": "Navrang Technologies Ltd",
        "sector": "Technology",
        "issue_price": 725,
        "lot_size": 20,
        "min_investment": 14500,
        "price_band": "₹690 - ₹725",
        "risk_level": "Medium",
        "open_date": "2026-02-02",
        "close_date": "2026-02-04",
        "listing_date": "2026-02-09",
        "issue_size": "₹2,400 Cr",
        "description": "Enterprise SaaS for logistics and warehouse automation.",
    },
    {
        "id": "IPO-2002",
        "symbol": "SHAKTIST",
        "name": "Shakti Steel Tubes Ltd",
        "sector": "Metals",
        "issue_price": 96,
        "lot_size": 150,
        "min_investment": 14400,
        "price_band": "₹91 - ₹96",
        "risk_level": "High",
        "open_date": "2026-02-09",
        "close_date": "2026-02-11",
        "listing_date": "2026-02-16",
        "issue_size": "₹410 Cr",
        "description": "ERW pipes and structural tubes for infrastructure projects.",
    },
    {
        "id": "IPO-2003",
        "symbol": "ANNAPRNA",
        "name": "Annapurna Foods Ltd",
        "sector": "FMCG",
        "issue_price": 265,
        "lot_size": 56,
        "min_investment": 14840,
        "price_band": "₹252 - ₹265",
        "risk_level": "Low",
        "open_date": "2026-02-16",
        "close_date": "2026-02-18",
        "listing_date": "2026-02-23",
        "issue_size": "₹760 Cr",
        "description": "Packaged staples and ready-to-cook brands across South India.",
    },
]

IPOS_CLOSED: List[Dict[str, Any]] = [
    {
        "id": "IPO-3001",
        "symbol": "SETUINFR",
        "name": "Setu Infra Projects Ltd",
        "sector": "Infrastructure",
        "issue_price": 210,
        "lot_size": 70,
        "min_investment": 14700,
        "price_band": "₹200 - ₹210",
        "risk_level": "Medium",
        "open_date": "2025-11-03",
        "close_date": "2025-11-05",
        "listing_date": "2025-11-10",
        "allotted": True,
        "listed": True,
        "actual_listing_price": 241,
        "listing_gain": 14.76,
        "issue_size": "₹980 Cr",
        "description": "Road and bridge EPC contractor.",
    },
    {
        "id": "IPO-3002",
        "symbol": "VAYUAIR",
        "name": "Vayu Aviation Services Ltd",
        "sector": "Aviation",
        "issue_price": 415,
        "lot_size": 36,
        "min_investment": 14940,
        "price_band": "₹395 - ₹415",
        "risk_level": "High",
        "open_date": "2025-11-17",
        "close_date": "2025-11-19",
        "listing_date": "2025-11-24",
        "allotted": True,
        "listed": True,
        "actual_listing_price": 382,
        "listing_gain": -7.95,
        "issue_size": "₹1,300 Cr",
        "description": "Ground handling and MRO services at 14 airports.",
    },
    {
        "id": "IPO-3003",
        "symbol": "TARANG",
        "name": "Tarang Textiles Ltd",
        "sector": "Textiles",
        "issue_price": 58,
        "lot_size": 250,
        "min_investment": 14500,
        "price_band": "₹55 - ₹58",
        "risk_level": "Medium",
        "open_date": "2025-12-01",
        "close_date": "2025-12-03",
        "listing_date": "2025-12-08",
        "issue_size": "₹290 Cr",
        "description": "Technical textiles exporter.",
    },
    {
        "id": "IPO-3004",
        "symbol": "PRITHVI",
        "name": "Prithvi Agro Chem Ltd",
        "sector": "Chemicals",
        "issue_price": 187,
        "lot_size": 80,
        "min_investment": 14960,
        "price_band": "₹178 - ₹187",
        "risk_level": "Low",
        "open_date": "2025-12-15",
        "close_date": "2025-12-17",
        "listing_date": "2025-12-22",
        "issue_size": "₹540 Cr",
        "description": "Crop protection formulations and bio-stimulants.",
    },
]


def seed_entries(
    open_seed: Optional[List[Dict[str, Any]]] = None,
    upcoming_seed: Optional[List[Dict[str, Any]]] = None,
    closed_seed: Optional[List[Dict[str, Any]]] = None,
) -> List[CatalogEntry]:
    """All seed definitions, tagged with the list they came from."""
    lists = (
        ("open", IPOS_OPEN if open_seed is None else open_seed),
        ("upcoming", IPOS_UPCOMING if upcoming_seed is None else upcoming_seed),
        ("closed", IPOS_CLOSED if closed_seed is None else closed_seed),
    )
    return [CatalogEntry.from_dict(item, source) for source, items in lists for item in items]
