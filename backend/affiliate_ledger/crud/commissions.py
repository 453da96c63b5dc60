from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from affiliate_ledger.models.commissions import Commission


def create_commission(
    db: Session,
    *,
    affiliate_id: int,
    amount: Decimal,
    type: str,
    referral_id: int | None = None,
    member_id: str | None = None,
    status: str = "unpaid",
    split_from_id: int | None = None,
) -> Commission:
    commission = Commission(
        affiliate_id=affiliate_id,
        referral_id=referral_id,
        member_id=member_id,
        amount=amount,
        type=type,
        status=status,
        split_from_id=split_from_id,
    )
    db.add(commission)
    db.flush()
    return commission


def get_commission_for_referral(db: Session, *, referral_id: int) -> Commission | None:
    return db.query(Commission).filter(Commission.referral_id == referral_id).first()


def list_unpaid_commissions(db: Session, *, affiliate_id: int) -> list[Commission]:
    return (
        db.query(Commission)
        .filter(Commission.affiliate_id == affiliate_id, Commission.status == "unpaid")
        .order_by(Commission.created_at.asc(), Commission.id.asc())
        .all()
    )


def list_commissions_for_affiliate(db: Session, *, affiliate_id: int) -> list[Commission]:
    return (
        db.query(Commission)
        .filter(Commission.affiliate_id == affiliate_id)
        .order_by(Commission.created_at.desc(), Commission.id.desc())
        .all()
    )


def mark_paid(db: Session, *, commission: Commission, payout_id: int, paid_at: datetime) -> Commission:
    commission.status = "paid"
    commission.payout_id = payout_id
    commission.paid_at = paid_at
    db.flush()
    return commission


def sum_commissions(db: Session, *, affiliate_id: int, status: str | None = None) -> Decimal:
    query = db.query(func.coalesce(func.sum(Commission.amount), 0)).filter(
        Commission.affiliate_id == affiliate_id
    )
    if status:
        query = query.filter(Commission.status == status)
    total = query.scalar()
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))
