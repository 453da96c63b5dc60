from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class PayoutCreate(BaseModel):
    affiliate_id: int
    amount: Decimal


class PayoutCreated(BaseModel):
    payout_id: int
    status: str


class PayoutAdvance(BaseModel):
    status: str
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None


class PayoutRead(BaseModel):
    id: int
    affiliate_id: int
    amount_requested: Decimal
    status: str
    payout_method: Optional[str] = None
    payout_destination: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    requested_at: datetime
    processing_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
