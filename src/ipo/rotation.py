import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from src.config import Config
from src.ipo.catalog import CatalogEntry, seed_entries
from src.ipo.dates import (
    IST,
    DateLike,
    add_days,
    is_weekend,
    next_monday,
    normalize_date,
    today_ist,
)

logger = logging.getLogger(__name__)

SYNTHETIC_ISSUERS = [
    ("Tech Innovation Ltd", "TECH", "Technology"),
    ("Bharat Green Mobility Ltd", "BGMOB", "Automobile"),
    ("Sagar Logistics Ltd", "SAGAR", "Logistics"),
    ("Nirmal Pharma Ltd", "NIRPH", "Pharmaceuticals"),
    ("Utkarsh Retail Ltd", "UTKRT", "Retail"),
]

RISK_LEVELS = ["Low", "Medium", "High"]


@dataclass
class CatalogStatus:
    date: str
    open: List[CatalogEntry] = field(default_factory=list)
    upcoming: List[CatalogEntry] = field(default_factory=list)
    closed: List[CatalogEntry] = field(default_factory=list)

    @property
    def all(self) -> List[CatalogEntry]:
        return [*self.open, *self.upcoming, *self.closed]

    def copy(self) -> "CatalogStatus":
        return CatalogStatus(
            date=self.date,
            open=[e.copy() for e in self.open],
            upcoming=[e.copy() for e in self.upcoming],
            closed=[e.copy() for e in self.closed],
        )

    def to_dict(self):
        return {
            "date": self.date,
            "open": [e.to_dict() for e in self.open],
            "upcoming": [e.to_dict() for e in self.upcoming],
            "closed": [e.to_dict() for e in self.closed],
        }


class RotationEngine:
    """Daily open/upcoming/closed rotation of the IPO catalog.

    Buckets are re-derived from the immutable seed (plus entries this engine
    synthesized or recycled) at most once per IST calendar day. Only the
    closed list carries over between days.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        seed: Optional[List[CatalogEntry]] = None,
        rng: Optional[random.Random] = None,
        tz=IST,
    ):
        settings = (config or Config.from_dict({})).get_rotation()
        self.min_open = settings.get("min_open", 2)
        self.min_upcoming = settings.get("min_upcoming", 3)
        self.recycle_below_upcoming = settings.get("recycle_below_upcoming", 5)
        self.recycle_above_closed = settings.get("recycle_above_closed", 8)
        self.multiplier_min = settings.get("listing_multiplier_min", 0.9)
        self.multiplier_max = settings.get("listing_multiplier_max", 1.3)
        self.relist_days_min = settings.get("relist_days_min", 30)
        self.relist_days_max = settings.get("relist_days_max", 45)
        self.subscription_days = settings.get("subscription_days", 3)
        self.listing_days = settings.get("listing_days_after_close", 3)

        self._seed = [e.copy() for e in (seed_entries() if seed is None else seed)]
        self._rng = rng or random.Random()
        self._tz = tz
        self._lock = threading.Lock()
        self._init_state()

    def _init_state(self):
        self._closed: List[CatalogEntry] = []
        self._extra: List[CatalogEntry] = []
        self._retired: Set[str] = set()
        self._synthetic_count = 0
        self._bucket_counts = {"open": 0, "upcoming": 0}
        self._recycle_count = 0
        self._last_rotation_date: Optional[str] = None
        self._status: Optional[CatalogStatus] = None

    def get_current_status(self, today: Optional[DateLike] = None) -> CatalogStatus:
        today = normalize_date(today, self._tz) if today is not None else today_ist(self._tz)
        with self._lock:
            if self._last_rotation_date == today and self._status is not None:
                logger.debug(f"IPO state already rotated for {today}, using existing state")
                return self._status.copy()

            self._status = self._rotate(today)
            self._last_rotation_date = today
            logger.info(
                f"Rotation for {today}: Open={len(self._status.open)}, "
                f"Upcoming={len(self._status.upcoming)}, Closed={len(self._status.closed)}"
            )
            return self._status.copy()

    def refresh(self, today: Optional[DateLike] = None) -> CatalogStatus:
        """Force re-derivation for the given day; the closed list is kept."""
        with self._lock:
            self._last_rotation_date = None
        logger.info("Forcing IPO data refresh")
        return self.get_current_status(today)

    def reset(self):
        with self._lock:
            self._init_state()
        logger.info("IPO rotation state has been reset")

    # -- rotation steps -----------------------------------------------------

    def _rotate(self, today: str) -> CatalogStatus:
        yesterday = add_days(today, -1)
        catalog = [e for e in (*self._seed, *self._extra) if e.id not in self._retired]

        open_, upcoming, newly_closed = [], [], []
        for entry in catalog:
            if today < entry.open_date:
                upcoming.append(entry.copy())
            elif entry.close_date < today:
                newly_closed.append(entry)
            else:
                open_.append(entry.copy())

        closed_by_id: Dict[str, CatalogEntry] = {e.id: e for e in self._closed}
        for entry in newly_closed:
            existing = closed_by_id.get(entry.id)
            already_allotted = entry.allotted or (existing is not None and existing.allotted)
            if entry.close_date == yesterday and not already_allotted:
                listed = self._list_entry(entry)
                if existing is not None:
                    self._closed.remove(existing)
                self._closed.insert(0, listed)
                closed_by_id[entry.id] = listed
                logger.info(
                    f"{entry.name} ({entry.symbol}) listed at ₹{listed.actual_listing_price} "
                    f"({listed.listing_gain:+.2f}%)"
                )
            elif existing is None:
                if entry.listed:
                    closed = entry.copy(status="listed")
                else:
                    closed = entry.copy(status="closed", listing_date=add_days(entry.close_date, 1))
                self._closed.append(closed)
                closed_by_id[entry.id] = closed

        if len(open_) < self.min_open:
            entry = self._synthesize(today, "open")
            self._extra.append(entry)
            open_.append(entry.copy())
            logger.info(f"Synthesized open IPO {entry.name} ({entry.symbol})")

        if len(upcoming) < self.min_upcoming:
            entry = self._synthesize(today, "upcoming")
            self._extra.append(entry)
            upcoming.append(entry.copy())
            logger.info(f"Synthesized upcoming IPO {entry.name} ({entry.symbol}) opening {entry.open_date}")

        if len(upcoming) < self.recycle_below_upcoming and len(self._closed) > self.recycle_above_closed:
            oldest = min(self._closed, key=lambda e: e.close_date)
            self._closed.remove(oldest)
            recycled = self._recycle(oldest, today)
            self._extra.append(recycled)
            upcoming.append(recycled.copy())
            logger.info(f"Recycled {recycled.name} from CLOSED to UPCOMING, opening {recycled.open_date}")

        return CatalogStatus(
            date=today,
            open=[e.copy(status="open") for e in open_],
            upcoming=[e.copy(status="upcoming") for e in upcoming],
            closed=[e.copy() for e in self._closed],
        )

    def _list_entry(self, entry: CatalogEntry) -> CatalogEntry:
        multiplier = self._rng.uniform(self.multiplier_min, self.multiplier_max)
        price = round(entry.issue_price * multiplier)
        gain = round((price - entry.issue_price) / entry.issue_price * 100, 2)
        return entry.copy(
            status="listed",
            allotted=True,
            listed=True,
            actual_listing_price=price,
            listing_gain=gain,
        )

    def _synthesize(self, today: str, bucket: str) -> CatalogEntry:
        number = self._synthetic_count + 1
        self._synthetic_count = number
        # batches stagger by their position within the bucket
        index = self._bucket_counts[bucket]
        self._bucket_counts[bucket] = index + 1

        if bucket == "open":
            open_date = today
            close_date = add_days(today, self.subscription_days - 1 + index)
        else:
            if is_weekend(today):
                open_date = add_days(next_monday(today), index)
            else:
                open_date = add_days(today, 2 + index)
            close_date = add_days(open_date, self.subscription_days - 1)

        name, prefix, sector = self._rng.choice(SYNTHETIC_ISSUERS)
        band_low = self._rng.randint(100, 900)
        issue_price = band_low + self._rng.randint(10, 60)
        lot_size = self._rng.randint(10, 30)
        return CatalogEntry(
            id=f"SYNTHETIC-{today}-{number}",
            symbol=f"{prefix}{number:03d}",
            name=name,
            sector=sector,
            issue_price=issue_price,
            lot_size=lot_size,
            min_investment=issue_price * lot_size,
            price_band=f"₹{band_low} - ₹{issue_price}",
            risk_level=self._rng.choice(RISK_LEVELS),
            open_date=open_date,
            close_date=close_date,
            listing_date=add_days(close_date, self.listing_days),
            status=bucket,
            issue_size=f"₹{self._rng.randint(1000, 6000)} Cr",
            description="Growth-stage company raising fresh capital for expansion.",
            source="synthetic",
        )

    def _recycle(self, entry: CatalogEntry, today: str) -> CatalogEntry:
        self._recycle_count += 1
        self._retired.add(entry.id)
        open_date = add_days(today, self._rng.randint(self.relist_days_min, self.relist_days_max))
        close_date = add_days(open_date, self.subscription_days - 1)
        name = entry.name if entry.name.endswith("(Re-listed)") else f"{entry.name} (Re-listed)"
        return entry.copy(
            id=f"{entry.id}-RECYCLED-{self._recycle_count}",
            name=name,
            status="upcoming",
            open_date=open_date,
            close_date=close_date,
            listing_date=add_days(close_date, self.listing_days),
            allotted=False,
            listed=False,
            actual_listing_price=None,
            listing_gain=None,
            description=(entry.description + " Re-listed due to market demand.").strip(),
        )
