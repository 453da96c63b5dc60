from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from affiliate_ledger.core.db import Base
from affiliate_ledger.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class EmailQueue(TimestampMixin, Base):
    __tablename__ = "email_queue"
    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_email_queue_dedupe"),
        Index("ix_email_queue_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    to_email = Column(String, nullable=False)
    template_key = Column(String, nullable=False)
    dedupe_key = Column(String, nullable=False)
    trigger_event = Column(String, nullable=True)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="queued")
    sent_at = Column(DateTime, nullable=True)
    metadata_json = Column(JSON_TYPE, nullable=True)
