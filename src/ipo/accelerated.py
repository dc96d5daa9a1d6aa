"""Compressed IPO timeline for demos.

Instead of waiting for calendar dates, every application gets three timers
(allotment, listing, auto-close) a few minutes apart. Timeline state lives
only in this process; the application record in the store is the fact, and
``recover`` rebuilds the timers from it after a restart.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set

from src.config import Config
from src.ipo import settlement

logger = logging.getLogger(__name__)

STATUS_TO_PHASE = {
    "pending": "applied",
    "allotted": "allotted",
    "not_allotted": "not_allotted",
    "listed": "listed",
}


@dataclass
class TimelineSettings:
    allotment_after: float = 60
    listing_after_allotment: float = 60
    auto_close_after_listing: float = 120
    allotment_probability: float = 0.7
    listing_gain_min: float = 0.10
    listing_gain_max: float = 0.30

    @classmethod
    def from_config(cls, config: Config) -> "TimelineSettings":
        section = config.get_timeline()
        return cls(
            allotment_after=section.get("allotment_after_seconds", 60),
            listing_after_allotment=section.get("listing_after_allotment_seconds", 60),
            auto_close_after_listing=section.get("auto_close_after_listing_seconds", 120),
            allotment_probability=section.get("allotment_probability", 0.7),
            listing_gain_min=section.get("listing_gain_min", 0.10),
            listing_gain_max=section.get("listing_gain_max", 0.30),
        )

    @property
    def listing_offset(self) -> float:
        return self.allotment_after + self.listing_after_allotment

    @property
    def close_offset(self) -> float:
        return self.listing_offset + self.auto_close_after_listing


@dataclass
class AcceleratedTimeline:
    symbol: str
    user_id: int
    amount: float
    shares: int
    applied_at: datetime
    allotment_at: datetime
    listing_at: datetime
    auto_close_at: datetime
    phase: str = "applied"
    is_allotted: bool = False
    listing_price: Optional[float] = None
    profit: Optional[float] = None
    application_id: Optional[int] = None
    # transitions of one timeline run one at a time, in firing order
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def issue_price(self) -> float:
        return self.amount / self.shares if self.shares else self.amount

    def milestones(self):
        return {
            "applied_at": self.applied_at.isoformat(),
            "allotment_at": self.allotment_at.isoformat(),
            "listing_at": self.listing_at.isoformat(),
            "auto_close_at": self.auto_close_at.isoformat(),
        }


def infer_phase(elapsed_seconds: float, persisted_status: Optional[str], settings: TimelineSettings) -> str:
    """Phase a recovered application should be in.

    Elapsed time gives the expected phase; a persisted status wins whenever
    the two disagree.
    """
    if elapsed_seconds >= settings.close_offset:
        inferred = "closed"
    elif elapsed_seconds >= settings.listing_offset:
        inferred = "listed"
    elif elapsed_seconds >= settings.allotment_after:
        inferred = "allotted"
    else:
        inferred = "applied"

    persisted = STATUS_TO_PHASE.get(persisted_status)
    if persisted is not None and persisted != inferred:
        logger.debug(f"Persisted status {persisted_status} overrides inferred phase {inferred}")
        return persisted
    return inferred


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AcceleratedScheduler:
    def __init__(
        self,
        store,
        settings: Optional[TimelineSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.settings = settings or TimelineSettings()
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._timelines: Dict[str, AcceleratedTimeline] = {}
        self._tasks: Set[asyncio.Task] = set()

    def get(self, symbol: str) -> Optional[AcceleratedTimeline]:
        return self._timelines.get(symbol)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._timelines

    def apply(
        self,
        symbol: str,
        user_id: int,
        amount: float,
        shares: int,
        application_id: Optional[int] = None,
    ):
        """Start the accelerated timeline for a new application.

        Must be called from inside a running event loop; raises
        ``RuntimeError`` otherwise, before any timeline is registered.
        """
        asyncio.get_running_loop()
        now = self._clock()
        timeline = self._build_timeline(symbol, user_id, amount, shares, now, application_id)
        displaced = self._timelines.get(symbol)
        if displaced is not None:
            logger.warning(
                f"{symbol}: replacing accelerated timeline of user {displaced.user_id} "
                f"(phase {displaced.phase}) with one for user {user_id}"
            )
        self._timelines[symbol] = timeline

        s = self.settings
        self._schedule(timeline, "allot", s.allotment_after)
        self._schedule(timeline, "list", s.listing_offset)
        self._schedule(timeline, "close", s.close_offset)
        logger.info(f"{symbol}: accelerated timeline started, allotment at {timeline.allotment_at.isoformat()}")

        return {
            "message": "IPO application submitted with accelerated timeline",
            "timeline": timeline.milestones(),
        }

    def recover(self, applications: Iterable) -> int:
        """Rebuild timelines for persisted applications after a restart.

        Returns the number of applications accepted; the timers themselves
        are set up in a background task.
        """
        accepted = []
        seen = set()
        for app in applications:
            symbol = app.ipo_symbol
            if app.is_withdrawn or app.status == "refunded":
                logger.debug(f"Skipping {symbol} - already withdrawn/refunded")
                continue
            if app.timeline_phase == "closed":
                logger.debug(f"Skipping {symbol} - timeline already closed")
                continue
            if symbol in self._timelines or symbol in seen:
                logger.debug(f"Skipping {symbol} - already in accelerated system")
                continue
            seen.add(symbol)
            accepted.append(app)

        logger.info(f"Recovering {len(accepted)} applications into accelerated system")
        if accepted:
            self._track(asyncio.get_running_loop().create_task(self._recover(accepted)))
        return len(accepted)

    async def _recover(self, applications: List):
        now = self._clock()
        for app in applications:
            symbol = app.ipo_symbol
            if symbol in self._timelines:
                continue
            applied_at = _as_utc(app.application_date) or now
            elapsed = (now - applied_at).total_seconds()
            phase = infer_phase(elapsed, app.status, self.settings)

            timeline = self._build_timeline(
                symbol, app.user_id, app.amount_applied, app.shares_applied, applied_at, app.id
            )
            timeline.phase = phase
            timeline.is_allotted = phase in ("allotted", "listed")
            timeline.listing_price = app.listing_price
            if phase == "allotted" and timeline.listing_price is None:
                self._draw_listing(timeline)
            self._timelines[symbol] = timeline

            remaining = {
                "allot": (timeline.allotment_at - now).total_seconds(),
                "list": (timeline.listing_at - now).total_seconds(),
                "close": (timeline.auto_close_at - now).total_seconds(),
            }
            if phase == "applied":
                actions = ("allot", "list", "close")
            elif phase == "allotted":
                actions = ("list", "close")
            else:
                actions = ("close",)
            for action in actions:
                self._schedule(timeline, action, remaining[action])
            logger.info(f"{symbol}: recovered in phase {phase}, scheduled {', '.join(actions)}")

    # -- transitions ----------------------------------------------------------

    async def process_allotment(self, symbol: str, expected: Optional[AcceleratedTimeline] = None):
        timeline = self._current(symbol, expected)
        if timeline is None:
            return
        async with timeline.write_lock:
            if timeline.phase != "applied":
                logger.debug(f"{symbol}: allotment skipped, phase {timeline.phase}")
                return
            if not await self._record_open(timeline):
                logger.info(f"{symbol}: application withdrawn, allotment skipped")
                return

            timeline.is_allotted = self._rng.random() < self.settings.allotment_probability
            timeline.phase = "allotted" if timeline.is_allotted else "not_allotted"
            if timeline.is_allotted:
                self._draw_listing(timeline)

            logger.info(f"{symbol}: {'ALLOTTED' if timeline.is_allotted else 'NOT ALLOTTED'}")
            await self._persist(timeline)

    async def process_listing(self, symbol: str, expected: Optional[AcceleratedTimeline] = None):
        timeline = self._current(symbol, expected)
        if timeline is None:
            return
        async with timeline.write_lock:
            if not timeline.is_allotted or timeline.phase != "allotted":
                return
            if not await self._record_open(timeline):
                logger.info(f"{symbol}: application withdrawn, listing skipped")
                return

            timeline.phase = "listed"
            logger.info(f"{symbol}: LISTED with price ₹{timeline.listing_price}")
            await self._persist(timeline)

    async def process_auto_close(self, symbol: str, expected: Optional[AcceleratedTimeline] = None):
        timeline = self._current(symbol, expected)
        if timeline is None:
            return
        async with timeline.write_lock:
            timeline.phase = "closed"
            logger.info(f"{symbol}: AUTO-CLOSED")
            await self._persist(timeline)
            if self._timelines.get(symbol) is timeline:
                del self._timelines[symbol]

    def _current(self, symbol: str, expected: Optional[AcceleratedTimeline]) -> Optional[AcceleratedTimeline]:
        timeline = self._timelines.get(symbol)
        if expected is not None and timeline is not expected:
            return None
        return timeline

    def _draw_listing(self, timeline: AcceleratedTimeline):
        gain = self._rng.uniform(self.settings.listing_gain_min, self.settings.listing_gain_max)
        timeline.listing_price = round(timeline.issue_price * (1 + gain), 2)
        timeline.profit = round((timeline.listing_price - timeline.issue_price) * timeline.shares, 2)

    # -- persistence ----------------------------------------------------------

    async def _record_open(self, timeline: AcceleratedTimeline) -> bool:
        """Whether the timeline's application is still live in the store.

        A failed lookup counts as live; the write-back re-checks anyway.
        """
        try:
            return await asyncio.to_thread(self._find_application, timeline) is not None
        except Exception as e:
            logger.error(f"Failed to look up {timeline.symbol} in database: {e}", exc_info=True)
            return True

    def _find_application(self, timeline: AcceleratedTimeline):
        application = self.store.find_active_application(timeline.symbol, timeline.user_id)
        if application is None:
            logger.warning(f"Application not found for {timeline.symbol}")
            return None
        if timeline.application_id is not None and application.id != timeline.application_id:
            logger.warning(f"{timeline.symbol}: active application changed")
            return None
        return application

    async def _persist(self, timeline: AcceleratedTimeline):
        # callers hold timeline.write_lock
        phase = timeline.phase
        try:
            await asyncio.to_thread(self._write_back, timeline, phase)
        except Exception as e:
            logger.error(f"Failed to update {timeline.symbol} in database: {e}", exc_info=True)

    def _write_back(self, timeline: AcceleratedTimeline, phase: str):
        application = self._find_application(timeline)
        if application is None:
            logger.debug(f"{timeline.symbol}: skipping write-back of phase {phase}")
            return

        now = self._clock()
        update = {"timeline_phase": phase}
        if phase == "allotted" and application.status == "pending":
            result = settlement.allot_full_block(application, timeline.issue_price, ratio=1.0)
            update.update(result.to_update())
            update["allotment_date"] = now
        elif phase == "not_allotted" and application.status == "pending":
            update.update(
                status="not_allotted",
                shares_allotted=0,
                amount_allotted=0,
                refund_amount=application.amount_applied,
                settlement_mode=settlement.SettlementMode.FULL_BLOCK.value,
                allotment_date=now,
            )
        elif phase == "listed" and application.status == "allotted":
            listing = settlement.list_holding(application, timeline.listing_price)
            update.update(
                status="listed",
                listing_date=now,
                listing_price=listing.listing_price,
                profit_loss=listing.profit_loss,
                profit_loss_percentage=listing.profit_loss_percentage,
            )
            logger.info(
                f"{timeline.symbol}: P&L ₹{listing.profit_loss:.2f} ({listing.profit_loss_percentage:.2f}%)"
            )

        self.store.update_application(application.id, **update)
        logger.debug(f"{timeline.symbol}: persisted phase {phase}")

    # -- scheduling -----------------------------------------------------------

    def _build_timeline(self, symbol, user_id, amount, shares, applied_at, application_id) -> AcceleratedTimeline:
        s = self.settings
        return AcceleratedTimeline(
            symbol=symbol,
            user_id=user_id,
            amount=amount,
            shares=shares,
            applied_at=applied_at,
            allotment_at=applied_at + timedelta(seconds=s.allotment_after),
            listing_at=applied_at + timedelta(seconds=s.listing_offset),
            auto_close_at=applied_at + timedelta(seconds=s.close_offset),
            application_id=application_id,
        )

    def _schedule(self, timeline: AcceleratedTimeline, action: str, delay: float):
        task = asyncio.get_running_loop().create_task(
            self._run_after(timeline, action, max(0.0, delay)),
            name=f"ipo-{timeline.symbol}-{action}",
        )
        self._track(task)

    def _track(self, task: asyncio.Task):
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_after(self, timeline: AcceleratedTimeline, action: str, delay: float):
        await asyncio.sleep(delay)
        handlers = {
            "allot": self.process_allotment,
            "list": self.process_listing,
            "close": self.process_auto_close,
        }
        await handlers[action](timeline.symbol, expected=timeline)

    async def wait_idle(self):
        """Wait until every scheduled transition has fired."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- views ----------------------------------------------------------------

    def get_timeline(self, symbol: str):
        timeline = self._timelines.get(symbol)
        if timeline is None:
            return None

        now = self._clock()
        if timeline.phase in ("allotted", "not_allotted", "listed", "closed"):
            result = "Allotted" if timeline.is_allotted else "Not Allotted"
        else:
            result = "Pending"
        return {
            "symbol": symbol,
            "status": timeline.phase,
            "timeline": {
                "applied": {"time": timeline.applied_at.isoformat(), "completed": True},
                "allotment": {
                    "time": timeline.allotment_at.isoformat(),
                    "completed": now >= timeline.allotment_at,
                    "result": result,
                },
                "listing": {
                    "time": timeline.listing_at.isoformat(),
                    "completed": timeline.phase in ("listed", "closed") and timeline.is_allotted,
                    "price": timeline.listing_price,
                },
                "close": {
                    "time": timeline.auto_close_at.isoformat(),
                    "completed": timeline.phase == "closed",
                },
            },
        }

    def get_user_timelines(self, user_id: int) -> List[dict]:
        return [self.get_timeline(symbol) for symbol, t in self._timelines.items() if t.user_id == user_id]
