from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from affiliate_ledger.core.db import Base
from affiliate_ledger.models.mixins import TimestampMixin


class Affiliate(TimestampMixin, Base):
    __tablename__ = "affiliates"
    __table_args__ = (
        UniqueConstraint("code", name="uq_affiliates_code"),
        Index("ix_affiliates_status", "status"),
        Index("ix_affiliates_email", "email"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    code = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    commission_rate = Column(Numeric(5, 2), nullable=False, default=10)
    payout_method = Column(String, nullable=False, default="paypal")
    payout_destination = Column(String, nullable=True)

    # Cached aggregates, derivable from visits/referrals/commissions.
    total_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    total_referrals = Column(Integer, nullable=False, default=0)
    total_visits = Column(Integer, nullable=False, default=0)
    available_balance = Column(Numeric(12, 2), nullable=False, default=0)
    balance_version = Column(Integer, nullable=False, default=0)

    links = relationship("AffiliateLink", back_populates="affiliate", lazy="selectin")


class AffiliateLink(TimestampMixin, Base):
    __tablename__ = "affiliate_links"
    __table_args__ = (
        UniqueConstraint("code", name="uq_affiliate_links_code"),
        Index("ix_affiliate_links_affiliate", "affiliate_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    name = Column(String, nullable=False)
    tag = Column(String, nullable=True)
    code = Column(String, nullable=False)

    affiliate = relationship("Affiliate", back_populates="links")
