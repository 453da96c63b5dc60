from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class VisitCreate(BaseModel):
    code: str
    referrer: Optional[str] = None
    page_url: Optional[str] = None
    user_agent: Optional[str] = None
    country: Optional[str] = None
    device_type: Optional[str] = None


class VisitCreated(BaseModel):
    visit_id: int


class ConversionCreate(BaseModel):
    order_id: Optional[str] = None
    order_amount: Optional[Decimal] = None
    conversion_type: str = "one_time"
    referral_code: Optional[str] = None
    visit_id: Optional[int] = None
    strict: bool = False


class ConversionResult(BaseModel):
    attributed: bool
    reason: str
    referral_id: Optional[int] = None
    commission_id: Optional[int] = None


class ReferralReview(BaseModel):
    decision: str
    notes: Optional[str] = None


class ReferralRead(BaseModel):
    id: int
    affiliate_id: int
    visit_id: Optional[int] = None
    order_id: str
    order_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    status: str
    conversion_type: str
    notes: Optional[str] = None


class VisitRead(BaseModel):
    id: int
    link_id: Optional[int] = None
    referrer: Optional[str] = None
    page_url: Optional[str] = None
    device_type: Optional[str] = None
    browser: Optional[str] = None
    country: Optional[str] = None
    converted: bool
    created_at: datetime


class CommissionRead(BaseModel):
    id: int
    referral_id: Optional[int] = None
    member_id: Optional[str] = None
    amount: Decimal
    type: str
    status: str
    payout_id: Optional[int] = None
    split_from_id: Optional[int] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
