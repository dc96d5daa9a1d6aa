import asyncio
import random

import pytest
from sqlalchemy import event

from conftest import StubRandom, make_entry
from src.ipo.accelerated import AcceleratedScheduler, TimelineSettings
from src.ipo.errors import InsufficientFundsError, NotFoundError, StateConflictError
from src.ipo.feed import CatalogFeed
from src.ipo.rotation import RotationEngine
from src.ipo.service import IPOService
from src.ipo.settlement import SettlementMode

APPLY_DAY = "2024-01-03"


def _service(db, engine_rng=None, allot_ratio=0.25, scheduler=None):
    engine = RotationEngine(seed=[make_entry()], rng=engine_rng or random.Random(8))
    return IPOService(db, CatalogFeed(engine), scheduler=scheduler, rng=StubRandom(uniform=[allot_ratio]))


class TestApply:
    def test_blocks_funds_and_records_pending(self, db, user):
        service = _service(db)

        app = service.apply(user.id, "TESTCO", 1000, 10000, today=APPLY_DAY)

        assert app.status == "pending"
        assert app.ipo_id == "IPO-T1"
        assert app.ipo_name == "Test Co Ltd"
        assert db.get_balance(user.id) == 10000

    def test_duplicate_application_rejected(self, db, user):
        service = _service(db)
        service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        with pytest.raises(StateConflictError):
            service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)
        assert db.get_balance(user.id) == 19000

    def test_insufficient_balance(self, db, user):
        service = _service(db)

        with pytest.raises(InsufficientFundsError):
            service.apply(user.id, "TESTCO", 5000, 50000, today=APPLY_DAY)
        assert db.find_active_application("TESTCO", user.id) is None

    def test_symbol_must_be_open(self, db, user):
        service = _service(db)

        with pytest.raises(NotFoundError):
            service.apply(user.id, "TESTCO", 100, 1000, today="2024-01-10")
        with pytest.raises(NotFoundError):
            service.apply(user.id, "NOPE", 100, 1000, today=APPLY_DAY)

    def test_failed_timeline_start_releases_funds(self, db, user):
        scheduler = AcceleratedScheduler(db, TimelineSettings())
        service = _service(db, scheduler=scheduler)

        # no running event loop here, so the timeline cannot start
        with pytest.raises(RuntimeError):
            service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        assert db.get_balance(user.id) == 20000
        assert db.find_active_application("TESTCO", user.id) is None
        assert db.find_open_application("TESTCO", user.id) is None
        assert scheduler.get("TESTCO") is None

    @pytest.mark.parametrize("shares,amount", [(0, 1000), (10, 0), (-1, 1000)])
    def test_degenerate_input(self, db, user, shares, amount):
        with pytest.raises(ValueError):
            _service(db).apply(user.id, "TESTCO", shares, amount, today=APPLY_DAY)


class TestSettlementFlow:
    def test_immediate_refund_lifecycle(self, db, user):
        service = _service(db)
        app = service.apply(user.id, "TESTCO", 1000, 10000, today=APPLY_DAY)

        assert service.process_allotments("TESTCO", SettlementMode.IMMEDIATE_REFUND, today=APPLY_DAY) == 1
        allotted = db.get_application(app.id)
        assert allotted.shares_allotted == 250
        assert allotted.refund_amount == 7500
        assert db.get_balance(user.id) == 17500

        assert service.process_listing("TESTCO", 12) == 1
        listed = db.get_application(app.id)
        assert listed.status == "listed"
        assert listed.profit_loss == 500

        result = service.withdraw(app.id, user.id)
        assert result["withdrawal_amount"] == 2500 + 3000
        assert result["balance"] == 17500 + 5500
        assert db.get_application(app.id).status == "refunded"

    def test_full_block_loss_is_capped(self, db, user):
        service = _service(db)
        app = service.apply(user.id, "TESTCO", 1000, 10000, today=APPLY_DAY)

        service.process_allotments("TESTCO", SettlementMode.FULL_BLOCK, today=APPLY_DAY)
        assert db.get_application(app.id).refund_amount == 0
        assert db.get_balance(user.id) == 10000

        service.process_listing("TESTCO", 8)
        result = service.withdraw(app.id, user.id)

        assert result["profit_loss"] == -8000
        assert result["withdrawal_amount"] == 9000
        assert db.get_balance(user.id) == 19000

    def test_pending_withdrawal_returns_blocked_amount(self, db, user):
        service = _service(db)
        app = service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        assert service.withdraw(app.id, user.id)["withdrawal_amount"] == 1000
        assert db.get_balance(user.id) == 20000

    def test_double_withdrawal_rejected(self, db, user):
        service = _service(db)
        app = service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)
        service.withdraw(app.id, user.id)

        with pytest.raises(StateConflictError):
            service.withdraw(app.id, user.id)
        assert db.get_balance(user.id) == 20000

    def test_failed_withdrawal_pays_nothing_and_can_be_retried_once(self, db, user):
        service = _service(db)
        app = service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        def fail_application_update(conn, cursor, statement, parameters, context, executemany):
            if statement.startswith("UPDATE ipo_applications"):
                raise RuntimeError("disk I/O error")

        event.listen(db.engine, "before_cursor_execute", fail_application_update)
        try:
            with pytest.raises(RuntimeError):
                service.withdraw(app.id, user.id)
        finally:
            event.remove(db.engine, "before_cursor_execute", fail_application_update)

        assert db.get_balance(user.id) == 19000
        assert not db.get_application(app.id).is_withdrawn

        assert service.withdraw(app.id, user.id)["balance"] == 20000
        with pytest.raises(StateConflictError):
            service.withdraw(app.id, user.id)
        assert db.get_balance(user.id) == 20000

    def test_withdraw_requires_owner(self, db, user):
        service = _service(db)
        app = service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        with pytest.raises(NotFoundError):
            service.withdraw(app.id, user.id + 1)

    def test_allotment_for_unknown_symbol(self, db):
        with pytest.raises(NotFoundError):
            _service(db).process_allotments("NOPE", SettlementMode.FULL_BLOCK, today=APPLY_DAY)

    def test_auto_process_day_after_close(self, db, user):
        service = _service(db, engine_rng=StubRandom(uniform=[1.2]))
        app = service.apply(user.id, "TESTCO", 1000, 10000, today=APPLY_DAY)

        result = service.auto_process("2024-01-06")

        assert result == {"date": "2024-01-06", "allotted": 1, "listed": 1}
        record = db.get_application(app.id)
        assert record.status == "listed"
        assert record.settlement_mode == "immediate_refund"
        assert record.listing_price == 12
        assert record.profit_loss == 500


class TestAcceleratedWithdrawal:
    @pytest.mark.asyncio
    async def test_withdrawal_blocked_until_outcome_known(self, db, user):
        scheduler = AcceleratedScheduler(db, TimelineSettings(allotment_after=60))
        service = _service(db, scheduler=scheduler)
        app = service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        with pytest.raises(StateConflictError, match="phase: applied"):
            service.withdraw(app.id, user.id)
        assert db.get_balance(user.id) == 19000

        tasks = list(scheduler._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_symbol_held_by_another_users_timeline(self, db, user):
        other = db.create_user("ravi", balance=20000)
        scheduler = AcceleratedScheduler(db, TimelineSettings(allotment_after=60))
        service = _service(db, scheduler=scheduler)
        service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        with pytest.raises(StateConflictError, match="another user"):
            service.apply(other.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        assert db.get_balance(other.id) == 20000
        assert scheduler.get("TESTCO").user_id == user.id

        tasks = list(scheduler._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_not_allotted_refunds_full_amount(self, db, user, fast_timeline):
        scheduler = AcceleratedScheduler(db, fast_timeline, rng=StubRandom(random_values=[0.95]))
        service = _service(db, scheduler=scheduler)
        app = service.apply(user.id, "TESTCO", 100, 1000, today=APPLY_DAY)

        await scheduler.wait_idle()
        assert db.get_application(app.id).status == "not_allotted"

        result = service.withdraw(app.id, user.id)

        assert result["withdrawal_amount"] == 1000
        assert db.get_balance(user.id) == 20000
