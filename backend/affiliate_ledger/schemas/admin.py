from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class LeaderboardRecompute(BaseModel):
    force: bool = False
    metric: Optional[str] = None


class LeaderboardRunRead(BaseModel):
    affiliates_updated: int
    last_update: Optional[datetime] = None
    skipped: bool = False


class LeaderboardEntry(BaseModel):
    rank: int
    code: str
    total_referrals: int
    total_earnings: Optional[str] = None
    conversion_rate: Optional[float] = None


class ReconcileRequest(BaseModel):
    fix: bool = False


class TotalsDriftRead(BaseModel):
    affiliate_id: int
    code: str
    fields: list[str]
    cached: dict[str, Any]
    actual: dict[str, Any]


class AuditLogRead(BaseModel):
    id: int
    actor_user_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_role: Optional[str] = None
    action: str
    context: Optional[dict] = None
    ip_address: Optional[str] = None
    timestamp: datetime
