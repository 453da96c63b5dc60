"""
Commission calculator: turns approved referrals and direct entries into
ledger rows and keeps the affiliate's cached balance in step.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from affiliate_ledger.core import audit
from affiliate_ledger.core.affiliates import apply_commission, get_affiliate, require_active
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.errors import InsufficientBalance, InvalidAmount, InvalidField
from affiliate_ledger.core.metrics import COMMISSIONS_CREATED_TOTAL
from affiliate_ledger.core.money import money2, to_money
from affiliate_ledger.crud.affiliates import increment_totals
from affiliate_ledger.crud.commissions import (
    create_commission,
    get_commission_for_referral,
    list_unpaid_commissions,
    mark_paid,
    sum_commissions,
)
from affiliate_ledger.models.commissions import Commission
from affiliate_ledger.models.enums import CommissionTypeEnum
from affiliate_ledger.models.referrals import Referral

logger = logging.getLogger(__name__)

COMMISSION_TYPES = {item.value for item in CommissionTypeEnum}

CONVERSION_COMMISSION_TYPES = {
    "subscription": CommissionTypeEnum.RECURRING.value,
    "one_time": CommissionTypeEnum.ONE_TIME.value,
}


def commission_for(db: Session, referral: Referral) -> Commission:
    """Materialize the commission for a referral in the caller's transaction.

    The unique referral_id column makes this idempotent: a second call
    returns the existing row and leaves the balances alone.
    """
    existing = get_commission_for_referral(db, referral_id=referral.id)
    if existing:
        return existing
    commission = create_commission(
        db,
        affiliate_id=referral.affiliate_id,
        referral_id=referral.id,
        member_id=referral.order_id,
        amount=money2(Decimal(referral.commission_amount)),
        type=CONVERSION_COMMISSION_TYPES.get(referral.conversion_type, CommissionTypeEnum.ONE_TIME.value),
    )
    apply_commission(db, referral.affiliate_id, commission.amount)
    return commission


def record_direct_commission(
    db: Session,
    affiliate_id: int,
    member_id: str | None,
    amount,
    type: str = "one_time",
    actor: Actor | None = None,
) -> Commission:
    value = to_money(amount)
    if value < 0:
        raise InvalidAmount("amount must be non-negative", field="amount")
    commission_type = (type or "").strip().lower()
    if commission_type not in COMMISSION_TYPES:
        raise InvalidField(f"type must be one of {sorted(COMMISSION_TYPES)}", field="type")
    affiliate = require_active(get_affiliate(db, affiliate_id))

    commission = create_commission(
        db,
        affiliate_id=affiliate.id,
        member_id=member_id,
        amount=value,
        type=commission_type,
    )
    apply_commission(db, affiliate.id, value)
    db.commit()
    db.refresh(commission)
    COMMISSIONS_CREATED_TOTAL.labels(type=commission_type).inc()
    logger.info(
        "commission.recorded",
        extra={"commission_id": commission.id, "affiliate_id": affiliate.id, "amount": str(value)},
    )
    audit.record(
        db,
        actor,
        "commission_recorded",
        {
            "commission_id": commission.id,
            "affiliate_id": affiliate.id,
            "member_id": member_id,
            "amount": value,
            "type": commission_type,
        },
    )
    return commission


def unpaid_total(db: Session, affiliate_id: int) -> Decimal:
    return sum_commissions(db, affiliate_id=affiliate_id, status="unpaid")


def settle_commissions(
    db: Session,
    affiliate_id: int,
    amount: Decimal,
    payout_id: int,
    paid_at: datetime,
) -> list[Commission]:
    """Mark unpaid commissions paid, oldest first, until amount is covered.

    A commission that only partly fits is split: the original row keeps the
    paid portion and a new unpaid row carries the remainder. Runs in the
    caller's transaction.
    """
    remaining = money2(Decimal(amount))
    settled: list[Commission] = []
    for commission in list_unpaid_commissions(db, affiliate_id=affiliate_id):
        if remaining <= 0:
            break
        commission_amount = money2(Decimal(commission.amount))
        if commission_amount > remaining:
            remainder = create_commission(
                db,
                affiliate_id=commission.affiliate_id,
                member_id=commission.member_id,
                amount=commission_amount - remaining,
                type=commission.type,
                split_from_id=commission.id,
            )
            # Keep the remainder in the original's place in the FIFO order.
            remainder.created_at = commission.created_at
            commission.amount = remaining
            commission_amount = remaining
        mark_paid(db, commission=commission, payout_id=payout_id, paid_at=paid_at)
        remaining -= commission_amount
        settled.append(commission)

    if remaining > 0:
        raise InsufficientBalance(
            "Unpaid commissions do not cover the payout",
            payout_id=payout_id,
            shortfall=str(remaining),
        )
    increment_totals(db, affiliate_id=affiliate_id, balance=-money2(Decimal(amount)))
    db.flush()
    return settled
