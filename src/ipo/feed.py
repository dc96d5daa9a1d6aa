import logging
from typing import Optional

from src.ipo.catalog import CatalogEntry
from src.ipo.dates import DateLike, normalize_date, today_ist
from src.ipo.rotation import CatalogStatus, RotationEngine

logger = logging.getLogger(__name__)


class CatalogFeed:
    """Today's rotated catalog, cached per day."""

    def __init__(self, engine: RotationEngine):
        self.engine = engine
        self._cached: Optional[CatalogStatus] = None

    def current(self, today: Optional[DateLike] = None) -> CatalogStatus:
        day = normalize_date(today) if today is not None else today_ist()
        if self._cached is None or self._cached.date != day:
            self._cached = self.engine.get_current_status(day)
        return self._cached

    def refresh(self, today: Optional[DateLike] = None) -> CatalogStatus:
        self._cached = self.engine.refresh(today)
        return self._cached

    def reset(self):
        """Reset the engine and drop the cached day."""
        self.engine.reset()
        self._cached = None

    def find_open(self, symbol: str, today: Optional[DateLike] = None) -> Optional[CatalogEntry]:
        return next((e for e in self.current(today).open if e.symbol == symbol), None)

    def find(self, symbol: str, today: Optional[DateLike] = None) -> Optional[CatalogEntry]:
        return next((e for e in self.current(today).all if e.symbol == symbol), None)
