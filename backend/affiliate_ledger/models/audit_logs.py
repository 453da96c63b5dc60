from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from affiliate_ledger.core.db import Base
from affiliate_ledger.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_action_time", "action", "timestamp"),
        Index("ix_audit_actor_time", "actor_user_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    actor_user_id = Column(String, nullable=True)
    actor_email = Column(String, nullable=True)
    actor_role = Column(String, nullable=True)
    action = Column(String, nullable=False)
    context = Column(JSON_TYPE, nullable=True)
    ip_address = Column(String, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
