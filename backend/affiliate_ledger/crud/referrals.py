from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from affiliate_ledger.models.referrals import Referral


def create_referral(
    db: Session,
    *,
    affiliate_id: int,
    order_id: str,
    order_amount: Decimal,
    commission_rate: Decimal,
    commission_amount: Decimal,
    status: str,
    conversion_type: str,
    visit_id: int | None = None,
) -> Referral:
    referral = Referral(
        affiliate_id=affiliate_id,
        visit_id=visit_id,
        order_id=order_id,
        order_amount=order_amount,
        commission_rate=commission_rate,
        commission_amount=commission_amount,
        status=status,
        conversion_type=conversion_type,
    )
    db.add(referral)
    # The unique order_id constraint decides concurrent conversions here.
    db.flush()
    return referral


def get_referral(db: Session, *, referral_id: int) -> Referral | None:
    return db.query(Referral).filter(Referral.id == referral_id).first()


def get_referral_by_order(db: Session, *, order_id: str) -> Referral | None:
    return db.query(Referral).filter(Referral.order_id == order_id).first()


def list_referrals_for_affiliate(
    db: Session,
    *,
    affiliate_id: int,
    status: str | None = None,
) -> list[Referral]:
    query = db.query(Referral).filter(Referral.affiliate_id == affiliate_id)
    if status:
        query = query.filter(Referral.status == status)
    return query.order_by(Referral.created_at.desc(), Referral.id.desc()).all()


def count_counted_referrals(db: Session, *, affiliate_id: int) -> int:
    return int(
        db.query(func.count(Referral.id))
        .filter(Referral.affiliate_id == affiliate_id, Referral.status != "rejected")
        .scalar()
        or 0
    )
