from sqlalchemy import JSON, Column, String
from sqlalchemy.dialects.postgresql import JSONB

from affiliate_ledger.core.db import Base
from affiliate_ledger.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class SystemSetting(TimestampMixin, Base):
    __tablename__ = "system_settings"

    key = Column(String, primary_key=True)
    value = Column(JSON_TYPE, nullable=True)
