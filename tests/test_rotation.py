import random
from concurrent.futures import ThreadPoolExecutor

from conftest import StubRandom, make_entry
from src.ipo.catalog import seed_entries
from src.ipo.dates import add_days
from src.ipo.rotation import RotationEngine


def _closed_entry(n: int, close_date: str):
    return make_entry(
        id=f"IPO-C{n}",
        symbol=f"OLD{n}",
        name=f"Old Co {n}",
        open_date=add_days(close_date, -2),
        close_date=close_date,
        listing_date=add_days(close_date, 3),
        source="closed",
    )


def _assert_phases_consistent(status):
    today = status.date
    for entry in status.open:
        assert entry.open_date <= today <= entry.close_date
        assert entry.status == "open"
    for entry in status.upcoming:
        assert today < entry.open_date
        assert entry.status == "upcoming"
    for entry in status.closed:
        assert today > entry.close_date
        assert entry.status in ("closed", "listed")


class TestRotationEngine:
    def test_entry_closed_yesterday_is_listed(self):
        engine = RotationEngine(seed=[make_entry(issue_price=100)], rng=random.Random(7))

        status = engine.get_current_status("2024-01-06")

        listed = [e for e in status.closed if e.id == "IPO-T1"]
        assert len(listed) == 1
        entry = listed[0]
        assert entry.status == "listed"
        assert entry.allotted and entry.listed
        assert entry.actual_listing_price is not None
        assert 90 <= entry.actual_listing_price <= 130
        assert -10 <= entry.listing_gain <= 30
        assert status.closed[0].id == "IPO-T1"

    def test_listing_uses_injected_multiplier(self):
        engine = RotationEngine(seed=[make_entry(issue_price=200)], rng=StubRandom(uniform=[1.25]))

        entry = engine.get_current_status("2024-01-06").closed[0]

        assert entry.actual_listing_price == 250
        assert entry.listing_gain == 25.0

    def test_older_closed_entry_gets_provisional_listing_date(self):
        old = _closed_entry(1, "2023-12-20")
        engine = RotationEngine(seed=[old], rng=random.Random(1))

        status = engine.get_current_status("2024-01-06")

        entry = next(e for e in status.closed if e.id == old.id)
        assert entry.status == "closed"
        assert entry.listing_date == "2023-12-21"
        assert entry.actual_listing_price is None

    def test_already_listed_seed_stays_listed(self):
        seeded = make_entry(
            id="IPO-L", symbol="LISTD", close_date="2023-12-01", open_date="2023-11-28",
            listing_date="2023-12-06", allotted=True, listed=True, actual_listing_price=11,
            listing_gain=10.0, source="closed",
        )
        engine = RotationEngine(seed=[seeded], rng=random.Random(1))

        entry = engine.get_current_status("2024-01-06").closed[0]

        assert entry.status == "listed"
        assert entry.listing_date == "2023-12-06"
        assert entry.actual_listing_price == 11

    def test_buckets_follow_dates_over_many_days(self):
        engine = RotationEngine(rng=random.Random(3))
        day = "2025-10-20"
        for _ in range(120):
            _assert_phases_consistent(engine.get_current_status(day))
            day = add_days(day, 1)

    def test_same_day_is_idempotent(self):
        engine = RotationEngine(rng=random.Random(11))

        first = engine.get_current_status("2026-01-13")
        second = engine.get_current_status("2026-01-13")

        assert first.to_dict() == second.to_dict()
        assert first is not second

    def test_returned_buckets_are_copies(self):
        engine = RotationEngine(rng=random.Random(11))
        status = engine.get_current_status("2026-01-13")
        status.open[0].name = "mutated"
        status.open.clear()

        again = engine.get_current_status("2026-01-13")
        assert again.open
        assert all(e.name != "mutated" for e in again.open)

    def test_minimum_depth_synthesized_once_per_day(self):
        engine = RotationEngine(seed=[], rng=random.Random(5))

        day1 = engine.get_current_status("2024-01-03")
        assert len(day1.open) == 1
        assert len(day1.upcoming) == 1
        assert day1.open[0].source == "synthetic"

        assert len(engine.get_current_status("2024-01-03").open) == 1

        day2 = engine.get_current_status("2024-01-04")
        assert len(day2.open) == 2
        symbols = [e.symbol for e in day2.all]
        assert len(symbols) == len(set(symbols))

    def test_synthetic_dates(self):
        engine = RotationEngine(seed=[], rng=random.Random(5))

        status = engine.get_current_status("2024-01-03")  # Wednesday

        opened = status.open[0]
        assert opened.open_date == "2024-01-03"
        assert opened.open_date <= opened.close_date < opened.listing_date
        assert status.upcoming[0].open_date == "2024-01-05"

    def test_weekend_pushes_synthetic_offset_to_monday(self):
        engine = RotationEngine(seed=[], rng=random.Random(5))

        status = engine.get_current_status("2024-01-06")  # Saturday

        assert status.upcoming[0].open_date == "2024-01-08"
        assert status.open[0].open_date == "2024-01-06"

    def test_recycles_oldest_closed_entry(self):
        seed = [_closed_entry(n, add_days("2023-11-01", n)) for n in range(10)]
        engine = RotationEngine(seed=seed, rng=random.Random(9))

        status = engine.get_current_status("2024-01-10")

        assert len(status.closed) == 9
        assert "IPO-C0" not in {e.id for e in status.closed}
        recycled = [e for e in status.upcoming if e.name.endswith("(Re-listed)")]
        assert len(recycled) == 1
        entry = recycled[0]
        assert entry.id.startswith("IPO-C0-RECYCLED")
        assert entry.name == "Old Co 0 (Re-listed)"
        assert add_days("2024-01-10", 30) <= entry.open_date <= add_days("2024-01-10", 45)
        assert not entry.allotted and not entry.listed
        assert entry.actual_listing_price is None

    def test_recycled_entry_not_derived_again_from_seed(self):
        seed = [_closed_entry(n, add_days("2023-11-01", n)) for n in range(10)]
        engine = RotationEngine(seed=seed, rng=random.Random(9))
        engine.get_current_status("2024-01-10")

        status = engine.get_current_status("2024-01-11")

        ids = [e.id for e in status.all]
        assert "IPO-C0" not in ids
        assert len(ids) == len(set(ids))

    def test_reset_clears_derived_state(self):
        engine = RotationEngine(seed=[], rng=random.Random(5))
        engine.get_current_status("2024-01-03")
        assert len(engine.get_current_status("2024-01-04").open) == 2

        engine.reset()

        assert len(engine.get_current_status("2024-01-04").open) == 1

    def test_refresh_keeps_closed_listing(self):
        engine = RotationEngine(seed=[make_entry(issue_price=100)], rng=random.Random(2))
        before = engine.get_current_status("2024-01-06").closed[0]

        after = engine.refresh("2024-01-06").closed[0]

        assert after.actual_listing_price == before.actual_listing_price

    def test_default_seed_has_three_sources(self):
        sources = {e.source for e in seed_entries()}
        assert sources == {"open", "upcoming", "closed"}

    def test_concurrent_first_call_rotates_once(self):
        engine = RotationEngine(seed=[], rng=random.Random(5))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: engine.get_current_status("2024-01-03"), range(16)))

        assert all(r.to_dict() == results[0].to_dict() for r in results)
        assert len(results[0].open) == 1
