from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from affiliate_ledger.models.affiliates import Affiliate, AffiliateLink


IMMUTABLE_AFFILIATE_FIELDS = {"id", "code", "created_at"}


def create_affiliate(
    db: Session,
    *,
    name: str,
    email: str,
    code: str,
    status: str,
    commission_rate: Decimal,
    payout_method: str = "paypal",
    payout_destination: str | None = None,
    user_id: str | None = None,
) -> Affiliate:
    affiliate = Affiliate(
        name=name,
        email=email,
        code=code,
        status=status,
        commission_rate=commission_rate,
        payout_method=payout_method,
        payout_destination=payout_destination,
        user_id=user_id,
        total_earnings=Decimal("0.00"),
        total_referrals=0,
        total_visits=0,
        available_balance=Decimal("0.00"),
        balance_version=0,
    )
    db.add(affiliate)
    # Flush so the unique code constraint fires inside the caller's transaction.
    db.flush()
    return affiliate


def get_affiliate(db: Session, *, affiliate_id: int) -> Affiliate | None:
    return db.query(Affiliate).filter(Affiliate.id == affiliate_id).first()


def get_affiliate_by_code(db: Session, *, code: str) -> Affiliate | None:
    return db.query(Affiliate).filter(func.upper(Affiliate.code) == code.upper()).first()


def list_affiliates(db: Session, *, status: str | None = None) -> list[Affiliate]:
    query = db.query(Affiliate)
    if status:
        query = query.filter(Affiliate.status == status)
    return query.order_by(Affiliate.id.asc()).all()


def update_affiliate(db: Session, *, affiliate: Affiliate, updates: dict) -> Affiliate:
    forbidden = IMMUTABLE_AFFILIATE_FIELDS.intersection(updates)
    if forbidden:
        raise ValueError(f"Immutable affiliate fields: {', '.join(sorted(forbidden))}")
    for key, value in updates.items():
        setattr(affiliate, key, value)
    db.flush()
    return affiliate


def increment_totals(
    db: Session,
    *,
    affiliate_id: int,
    earnings: Decimal = Decimal("0"),
    balance: Decimal = Decimal("0"),
    referrals: int = 0,
    visits: int = 0,
) -> None:
    # Increments run SQL-side so concurrent writers never lose an update.
    values = {}
    if earnings:
        values["total_earnings"] = Affiliate.total_earnings + earnings
    if balance:
        values["available_balance"] = Affiliate.available_balance + balance
    if referrals:
        values["total_referrals"] = Affiliate.total_referrals + referrals
    if visits:
        values["total_visits"] = Affiliate.total_visits + visits
    if not values:
        return
    db.execute(
        update(Affiliate)
        .where(Affiliate.id == affiliate_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def bump_balance_version(db: Session, *, affiliate_id: int, expected_version: int) -> bool:
    result = db.execute(
        update(Affiliate)
        .where(Affiliate.id == affiliate_id, Affiliate.balance_version == expected_version)
        .values(balance_version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def overwrite_totals(db: Session, *, affiliate: Affiliate, totals: dict) -> Affiliate:
    for key, value in totals.items():
        setattr(affiliate, key, value)
    db.flush()
    return affiliate


def create_link(
    db: Session,
    *,
    affiliate_id: int,
    name: str,
    code: str,
    tag: str | None = None,
) -> AffiliateLink:
    link = AffiliateLink(affiliate_id=affiliate_id, name=name, code=code, tag=tag)
    db.add(link)
    db.flush()
    return link


def get_link(db: Session, *, link_id: int) -> AffiliateLink | None:
    return db.query(AffiliateLink).filter(AffiliateLink.id == link_id).first()


def get_link_by_code(db: Session, *, code: str) -> AffiliateLink | None:
    return db.query(AffiliateLink).filter(func.upper(AffiliateLink.code) == code.upper()).first()


def list_links(db: Session, *, affiliate_id: int) -> list[AffiliateLink]:
    return (
        db.query(AffiliateLink)
        .filter(AffiliateLink.affiliate_id == affiliate_id)
        .order_by(AffiliateLink.created_at.desc(), AffiliateLink.id.desc())
        .all()
    )


def code_in_use(db: Session, *, code: str) -> bool:
    return bool(get_affiliate_by_code(db, code=code) or get_link_by_code(db, code=code))
