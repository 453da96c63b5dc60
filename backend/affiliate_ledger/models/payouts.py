from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text

from affiliate_ledger.core.db import Base
from affiliate_ledger.core.time import utcnow
from affiliate_ledger.models.mixins import TimestampMixin


class PayoutRequest(TimestampMixin, Base):
    __tablename__ = "affiliate_payouts"
    __table_args__ = (
        Index("ix_affiliate_payouts_affiliate_status", "affiliate_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    amount_requested = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default="requested")
    payout_method = Column(String, nullable=True)
    payout_destination = Column(String, nullable=True)
    transaction_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    requested_at = Column(DateTime, default=utcnow, nullable=False)
    processing_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
