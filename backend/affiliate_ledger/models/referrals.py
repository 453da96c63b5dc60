from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from affiliate_ledger.core.db import Base
from affiliate_ledger.models.mixins import TimestampMixin


class Referral(TimestampMixin, Base):
    __tablename__ = "affiliate_referrals"
    __table_args__ = (
        # One referral per order; concurrent conversions race on this.
        UniqueConstraint("order_id", name="uq_affiliate_referrals_order"),
        Index("ix_affiliate_referrals_affiliate_status", "affiliate_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    visit_id = Column(Integer, ForeignKey("affiliate_visits.id", ondelete="SET NULL"), nullable=True)
    order_id = Column(String, nullable=False)
    order_amount = Column(Numeric(12, 2), nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default="approved")
    conversion_type = Column(String, nullable=False, default="one_time")
    notes = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
