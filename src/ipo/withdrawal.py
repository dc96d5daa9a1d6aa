import logging
from dataclasses import dataclass

from src.ipo.accelerated import AcceleratedScheduler

logger = logging.getLogger(__name__)

WITHDRAWABLE_PHASES = ("not_allotted", "listed")


@dataclass
class WithdrawalEligibility:
    eligible: bool
    reason: str


class WithdrawalOracle:
    def __init__(self, scheduler: AcceleratedScheduler):
        self.scheduler = scheduler

    def can_withdraw(self, symbol: str, user_id: int) -> WithdrawalEligibility:
        timeline = self.scheduler.get(symbol)

        # Timeline state is process-local and may be gone; never lock funds on it.
        if timeline is None:
            logger.info(f"{symbol}: no accelerated timeline, allowing withdrawal")
            return WithdrawalEligibility(True, "Accelerated IPO data expired - allowing withdrawal")

        if timeline.user_id != user_id:
            return WithdrawalEligibility(False, "IPO not found or unauthorized")

        if timeline.phase in WITHDRAWABLE_PHASES:
            return WithdrawalEligibility(True, "Eligible for withdrawal")

        return WithdrawalEligibility(False, f"Cannot withdraw yet (phase: {timeline.phase})")
