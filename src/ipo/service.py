import logging
import random
from datetime import datetime, timezone
from typing import Optional

from src.config import Config
from src.database.db import Database
from src.database.models import IPOApplication
from src.ipo import settlement
from src.ipo.accelerated import AcceleratedScheduler
from src.ipo.dates import DateLike, add_days, normalize_date, today_ist
from src.ipo.errors import NotFoundError, StateConflictError
from src.ipo.feed import CatalogFeed
from src.ipo.settlement import SettlementMode
from src.ipo.withdrawal import WithdrawalOracle

logger = logging.getLogger(__name__)


class IPOService:
    """Applications against the rotated catalog, from blocking funds to withdrawal."""

    def __init__(
        self,
        db: Database,
        feed: CatalogFeed,
        scheduler: Optional[AcceleratedScheduler] = None,
        oracle: Optional[WithdrawalOracle] = None,
        config: Optional[Config] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.feed = feed
        self.scheduler = scheduler
        self.oracle = oracle or (WithdrawalOracle(scheduler) if scheduler else None)
        self.rng = rng or random.Random()

        section = (config or Config.from_dict({})).get_settlement()
        self.ratio_range = (
            section.get("allotment_ratio_min", settlement.DEFAULT_RATIO_RANGE[0]),
            section.get("allotment_ratio_max", settlement.DEFAULT_RATIO_RANGE[1]),
        )
        self.loss_cap = section.get("loss_cap", settlement.DEFAULT_LOSS_CAP)

    def apply(
        self,
        user_id: int,
        symbol: str,
        shares: int,
        amount: float,
        today: Optional[DateLike] = None,
    ) -> IPOApplication:
        if not symbol or shares <= 0 or amount <= 0:
            raise ValueError("Invalid input")

        ipo = self.feed.find_open(symbol, today)
        if ipo is None:
            raise NotFoundError(f"IPO {symbol} not found or not currently open")

        if self.db.find_open_application(symbol, user_id):
            raise StateConflictError(f"User {user_id} has already applied for {symbol}")

        if self.scheduler is not None:
            live = self.scheduler.get(symbol)
            if live is not None and live.user_id != user_id:
                raise StateConflictError(f"{symbol} has an accelerated timeline in progress for another user")

        application, balance = self.db.open_application(
            user_id=user_id,
            ipo_id=ipo.id,
            ipo_symbol=symbol,
            ipo_name=ipo.name,
            amount_applied=amount,
            shares_applied=shares,
        )
        logger.info(f"Blocked ₹{amount} for {shares} shares of {ipo.name}, balance now ₹{balance}")

        if self.scheduler is not None:
            try:
                self.scheduler.apply(symbol, user_id, amount, shares, application_id=application.id)
            except Exception as e:
                logger.error(f"Could not start accelerated timeline for {symbol}, releasing ₹{amount}: {e}")
                self.db.withdraw_application(application.id, user_id, amount)
                raise
        return application

    def process_allotments(self, symbol: str, mode: SettlementMode, today: Optional[DateLike] = None) -> int:
        ipo = self.feed.find(symbol, today)
        if ipo is None:
            raise NotFoundError(f"IPO {symbol} not found")

        mode = SettlementMode(mode)
        pending = self.db.get_applications_by_symbol(symbol, "pending")
        if not pending:
            logger.info(f"No pending applications for {ipo.name}, skipping")
            return 0

        now = datetime.now(timezone.utc)
        for app in pending:
            result = settlement.allot(app, ipo.issue_price, mode, rng=self.rng, ratio_range=self.ratio_range)
            self.db.update_application(app.id, allotment_date=now, **result.to_update())
            if mode is SettlementMode.IMMEDIATE_REFUND and result.refund_amount > 0:
                self.db.credit_balance(app.user_id, result.refund_amount)
            logger.info(
                f"{ipo.name}: {app.shares_applied} shares applied, {result.shares_allotted} allotted "
                f"({mode.value}, refund ₹{result.refund_amount})"
            )
        return len(pending)

    def process_listing(self, symbol: str, listing_price: float) -> int:
        allotted = self.db.get_applications_by_symbol(symbol, "allotted")
        if not allotted:
            logger.info(f"No allotted applications to list for {symbol}")
            return 0

        now = datetime.now(timezone.utc)
        for app in allotted:
            listing = settlement.list_holding(app, listing_price)
            self.db.update_application(
                app.id,
                status="listed",
                listing_price=listing.listing_price,
                profit_loss=listing.profit_loss,
                profit_loss_percentage=listing.profit_loss_percentage,
                listing_date=app.listing_date or now,
            )
            logger.info(
                f"{symbol} listed: invested ₹{listing.invested_value}, value ₹{listing.current_value}, "
                f"P&L ₹{listing.profit_loss:.2f} ({listing.profit_loss_percentage:.2f}%)"
            )
        return len(allotted)

    def auto_process(self, today: Optional[DateLike] = None):
        """Settle entries that closed yesterday or list today."""
        today = normalize_date(today) if today is not None else today_ist()
        yesterday = add_days(today, -1)
        status = self.feed.current(today)

        allotted = listed = 0
        for ipo in status.all:
            if ipo.close_date != yesterday and ipo.listing_date != today:
                continue
            allotted += self.process_allotments(ipo.symbol, SettlementMode.IMMEDIATE_REFUND, today)
            if ipo.actual_listing_price is not None:
                listed += self.process_listing(ipo.symbol, ipo.actual_listing_price)

        logger.info(f"Auto-processed {allotted} allotments and {listed} listings for {today}")
        return {"date": today, "allotted": allotted, "listed": listed}

    def withdraw(self, application_id: int, user_id: int):
        app = self.db.get_application(application_id, user_id)
        if app is None:
            raise NotFoundError(f"Application {application_id} not found")
        if app.is_withdrawn or app.status == "refunded":
            raise StateConflictError("Application already withdrawn")

        if self.oracle is not None:
            eligibility = self.oracle.can_withdraw(app.ipo_symbol, user_id)
            if not eligibility.eligible:
                raise StateConflictError(eligibility.reason)

        amount = self._withdrawal_amount(app)
        balance = self.db.withdraw_application(application_id, user_id, amount)
        logger.info(f"Withdrawal for {app.ipo_symbol} ({app.status}): ₹{amount}, balance ₹{balance}")
        return {
            "application_id": application_id,
            "symbol": app.ipo_symbol,
            "withdrawal_amount": amount,
            "profit_loss": app.profit_loss or 0,
            "balance": balance,
        }

    def _withdrawal_amount(self, app: IPOApplication) -> float:
        if app.status == "listed":
            invested = settlement.invested_value(app)
            return settlement.withdrawal_amount(invested, app.profit_loss or 0, self.loss_cap)
        if app.status == "allotted":
            return settlement.withdrawal_amount(settlement.invested_value(app))
        if app.status == "not_allotted":
            # immediate-refund already released the blocked amount at allotment
            if app.settlement_mode == SettlementMode.IMMEDIATE_REFUND.value:
                return 0
            return app.amount_applied
        return app.amount_applied
