"""Allotment, listing and withdrawal arithmetic for IPO applications.

Every function here is pure: callers pass the application record (anything
exposing ``shares_applied``, ``amount_applied``, ``shares_allotted`` and
``amount_allotted``) and receive a result object to persist. Random draws
come from the ``rng`` argument so outcomes can be pinned.

Two refund policies exist and the caller has to name one:

``immediate_refund``
    the unallotted part of the blocked amount is released at allotment and
    profit/loss is measured against the allotted amount.
``full_block``
    nothing is released at allotment; the whole applied amount stays blocked
    and profit/loss is measured against it.
"""
import math
import random
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Tuple

DEFAULT_RATIO_RANGE = (0.10, 0.40)
DEFAULT_LOSS_CAP = 0.10

_default_rng = random.Random()


class SettlementMode(str, Enum):
    IMMEDIATE_REFUND = "immediate_refund"
    FULL_BLOCK = "full_block"


@dataclass
class AllotmentResult:
    status: str
    ratio: float
    shares_allotted: int
    amount_allotted: float
    refund_amount: float
    mode: SettlementMode

    def to_update(self):
        return {
            "status": self.status,
            "shares_allotted": self.shares_allotted,
            "amount_allotted": self.amount_allotted,
            "refund_amount": self.refund_amount,
            "settlement_mode": self.mode.value,
        }


@dataclass
class ListingResult:
    listing_price: float
    current_value: float
    invested_value: float
    profit_loss: float
    profit_loss_percentage: float

    def to_dict(self):
        return asdict(self)


def allot(
    application,
    issue_price: float,
    mode: SettlementMode,
    rng: Optional[random.Random] = None,
    ratio: Optional[float] = None,
    ratio_range: Tuple[float, float] = DEFAULT_RATIO_RANGE,
) -> AllotmentResult:
    mode = SettlementMode(mode)
    if ratio is None:
        ratio = (rng or _default_rng).uniform(*ratio_range)

    shares_allotted = math.floor(application.shares_applied * ratio)
    amount_allotted = shares_allotted * issue_price

    if shares_allotted <= 0:
        return AllotmentResult(
            status="not_allotted",
            ratio=ratio,
            shares_allotted=0,
            amount_allotted=0,
            refund_amount=application.amount_applied,
            mode=mode,
        )

    if mode is SettlementMode.IMMEDIATE_REFUND:
        refund_amount = application.amount_applied - amount_allotted
    else:
        refund_amount = 0

    return AllotmentResult(
        status="allotted",
        ratio=ratio,
        shares_allotted=shares_allotted,
        amount_allotted=amount_allotted,
        refund_amount=refund_amount,
        mode=mode,
    )


def allot_with_refund(application, issue_price: float, **kwargs) -> AllotmentResult:
    return allot(application, issue_price, SettlementMode.IMMEDIATE_REFUND, **kwargs)


def allot_full_block(application, issue_price: float, **kwargs) -> AllotmentResult:
    return allot(application, issue_price, SettlementMode.FULL_BLOCK, **kwargs)


def invested_value(application, mode: Optional[SettlementMode] = None) -> float:
    mode = _resolve_mode(application, mode)
    if mode is SettlementMode.FULL_BLOCK:
        return application.amount_applied
    return application.amount_allotted or 0


def list_holding(application, listing_price: float, mode: Optional[SettlementMode] = None) -> ListingResult:
    """Mark-to-market an allotted application at its listing price.

    ``mode`` defaults to the one recorded on the application at allotment.
    """
    invested = invested_value(application, mode)
    current_value = (application.shares_allotted or 0) * listing_price
    profit_loss = current_value - invested
    percentage = profit_loss / invested * 100 if invested else 0.0
    return ListingResult(
        listing_price=listing_price,
        current_value=current_value,
        invested_value=invested,
        profit_loss=profit_loss,
        profit_loss_percentage=percentage,
    )


def withdrawal_amount(
    invested_value: float,
    profit_loss: Optional[float] = None,
    loss_cap: float = DEFAULT_LOSS_CAP,
) -> float:
    """Amount released to the user when a holding is withdrawn.

    ``profit_loss`` is ``None`` while the holding has not listed. A profitable
    exit returns the principal *and* the market value. A losing exit is
    capped at ``loss_cap`` of the principal whatever the real loss.
    """
    # NOTE: principal + market value on profit pays the principal twice;
    # kept as-is pending product sign-off.
    if profit_loss is None:
        return invested_value
    if profit_loss >= 0:
        current_value = invested_value + profit_loss
        return invested_value + current_value
    return invested_value * (1 - loss_cap)


def _resolve_mode(application, mode: Optional[SettlementMode]) -> SettlementMode:
    if mode is None:
        mode = getattr(application, "settlement_mode", None)
    if mode is None:
        raise ValueError("Settlement mode must be given or recorded on the application")
    return SettlementMode(mode)
