from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from affiliate_ledger.core.db import Base
from affiliate_ledger.core.time import utcnow


class Visit(Base):
    __tablename__ = "affiliate_visits"
    __table_args__ = (
        Index("ix_affiliate_visits_affiliate_created", "affiliate_id", "created_at"),
        Index("ix_affiliate_visits_affiliate_converted", "affiliate_id", "converted"),
    )

    id = Column(Integer, primary_key=True, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False)
    link_id = Column(Integer, ForeignKey("affiliate_links.id", ondelete="SET NULL"), nullable=True)
    referrer = Column(Text, nullable=True)
    page_url = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    device_type = Column(String, nullable=True)
    browser = Column(String, nullable=True)
    country = Column(String, nullable=True)
    converted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
