"""
Shared fixtures: temporary SQLite database, deterministic random sources
and a catalog seed with known dates.
"""
import logging
import random

import pytest

from src.config import Config
from src.database.db import Database
from src.ipo.accelerated import TimelineSettings
from src.ipo.catalog import CatalogEntry

logging.basicConfig(level=logging.INFO)


class StubRandom(random.Random):
    """Random source whose uniform()/random() draws can be queued up front."""

    def __init__(self, uniform=None, random_values=None, seed=0):
        super().__init__(seed)
        self._uniform = list(uniform or [])
        self._random = list(random_values or [])

    def uniform(self, a, b):
        if self._uniform:
            return self._uniform.pop(0)
        return super().uniform(a, b)

    def random(self):
        if self._random:
            return self._random.pop(0)
        return super().random()


def make_entry(**overrides) -> CatalogEntry:
    data = dict(
        id="IPO-T1",
        symbol="TESTCO",
        name="Test Co Ltd",
        sector="Testing",
        issue_price=10,
        lot_size=100,
        min_investment=1000,
        price_band="₹9 - ₹10",
        risk_level="Low",
        open_date="2024-01-01",
        close_date="2024-01-05",
        listing_date="2024-01-08",
        source="open",
    )
    data.update(overrides)
    return CatalogEntry(**data)


@pytest.fixture
def config(tmp_path):
    return Config.from_dict({"database": {"type": "sqlite", "path": str(tmp_path / "ipo_test.db")}})


@pytest.fixture
def db(config):
    return Database(config)


@pytest.fixture
def user(db):
    return db.create_user("asha", balance=20000)


@pytest.fixture
def fast_timeline():
    return TimelineSettings(
        allotment_after=0.02,
        listing_after_allotment=0.02,
        auto_close_after_listing=0.02,
    )
