from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from affiliate_ledger.core.db import Base
from affiliate_ledger.models.mixins import TimestampMixin


class Commission(TimestampMixin, Base):
    __tablename__ = "affiliate_commissions"
    __table_args__ = (
        UniqueConstraint("referral_id", name="uq_affiliate_commissions_referral"),
        CheckConstraint("amount >= 0", name="ck_affiliate_commissions_amount_non_negative"),
        Index("ix_affiliate_commissions_affiliate_status", "affiliate_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    referral_id = Column(Integer, ForeignKey("affiliate_referrals.id", ondelete="RESTRICT"), nullable=True)
    member_id = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(String, nullable=False, default="one_time")
    status = Column(String, nullable=False, default="unpaid")
    paid_at = Column(DateTime, nullable=True)
    payout_id = Column(Integer, ForeignKey("affiliate_payouts.id", ondelete="SET NULL"), nullable=True)
    # Set on the unpaid remainder when a payout settles part of a commission.
    split_from_id = Column(Integer, ForeignKey("affiliate_commissions.id", ondelete="SET NULL"), nullable=True)
