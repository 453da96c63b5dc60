from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class AffiliateCreate(BaseModel):
    name: str
    email: str
    commission_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    payout_method: str = "paypal"
    payout_destination: Optional[str] = None
    user_id: Optional[str] = None


class AffiliateRead(BaseModel):
    id: int
    name: str
    email: str
    code: str
    status: str
    commission_rate: Decimal
    payout_method: str
    payout_destination: Optional[str] = None
    user_id: Optional[str] = None
    referral_url: str
    total_earnings: Decimal
    total_referrals: int
    total_visits: int
    available_balance: Decimal
    created_at: datetime
    updated_at: datetime


class AffiliateStatusUpdate(BaseModel):
    status: str


class AffiliatePayoutSettingsUpdate(BaseModel):
    payout_method: str
    payout_destination: Optional[str] = None


class AffiliateSummary(BaseModel):
    affiliate_id: int
    code: str
    status: str
    total_earnings: Decimal
    total_referrals: int
    total_visits: int
    available_balance: Decimal
    unpaid_total: Decimal
    withdrawable: Decimal
    conversion_rate: float


class AffiliateLinkCreate(BaseModel):
    name: str
    tag: Optional[str] = None


class AffiliateLinkUpdate(BaseModel):
    name: str
    tag: Optional[str] = None


class AffiliateLinkRead(BaseModel):
    id: int
    affiliate_id: int
    name: str
    tag: Optional[str] = None
    code: str
    referral_url: str
    created_at: datetime
