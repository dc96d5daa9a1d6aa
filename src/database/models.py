from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Index
from datetime import datetime, timezone

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True)
    username = Column(String(255), nullable=False, unique=True)
    balance = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "balance": self.balance,
        }


class IPOApplication(Base):
    __tablename__ = "ipo_applications"
    __table_args__ = (
        Index("ix_ipo_applications_user_status", "user_id", "status"),
        Index("ix_ipo_applications_symbol", "ipo_symbol"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False)
    ipo_id = Column(String(255), nullable=False)
    ipo_symbol = Column(String(64), nullable=False)
    ipo_name = Column(String(255), nullable=False)
    amount_applied = Column(Float, nullable=False)
    shares_applied = Column(Integer, nullable=False)
    shares_allotted = Column(Integer, default=0)
    amount_allotted = Column(Float, default=0.0)
    refund_amount = Column(Float, default=0.0)
    # pending | allotted | not_allotted | listed | refunded
    status = Column(String(50), default="pending", nullable=False)
    settlement_mode = Column(String(50), nullable=True)
    timeline_phase = Column(String(50), nullable=True)
    application_date = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    allotment_date = Column(DateTime(timezone=True), nullable=True)
    listing_date = Column(DateTime(timezone=True), nullable=True)
    listing_price = Column(Float, nullable=True)
    profit_loss = Column(Float, default=0.0)
    profit_loss_percentage = Column(Float, default=0.0)
    is_withdrawn = Column(Boolean, default=False, nullable=False)
    withdrawal_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "ipo_id": self.ipo_id,
            "ipo_symbol": self.ipo_symbol,
            "ipo_name": self.ipo_name,
            "amount_applied": self.amount_applied,
            "shares_applied": self.shares_applied,
            "shares_allotted": self.shares_allotted,
            "amount_allotted": self.amount_allotted,
            "refund_amount": self.refund_amount,
            "status": self.status,
            "settlement_mode": self.settlement_mode,
            "timeline_phase": self.timeline_phase,
            "application_date": self.application_date.isoformat() if self.application_date else None,
            "allotment_date": self.allotment_date.isoformat() if self.allotment_date else None,
            "listing_date": self.listing_date.isoformat() if self.listing_date else None,
            "listing_price": self.listing_price,
            "profit_loss": self.profit_loss,
            "profit_loss_percentage": self.profit_loss_percentage,
            "is_withdrawn": self.is_withdrawn,
            "withdrawal_date": self.withdrawal_date.isoformat() if self.withdrawal_date else None,
        }
