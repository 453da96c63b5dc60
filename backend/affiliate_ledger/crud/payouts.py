from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from affiliate_ledger.core.time import utcnow
from affiliate_ledger.models.payouts import PayoutRequest


OPEN_PAYOUT_STATUSES = ("requested", "processing")


def create_payout(
    db: Session,
    *,
    affiliate_id: int,
    amount_requested: Decimal,
    payout_method: str | None,
    payout_destination: str | None,
) -> PayoutRequest:
    payout = PayoutRequest(
        affiliate_id=affiliate_id,
        amount_requested=amount_requested,
        status="requested",
        payout_method=payout_method,
        payout_destination=payout_destination,
    )
    db.add(payout)
    db.flush()
    return payout


def get_payout(db: Session, *, payout_id: int) -> PayoutRequest | None:
    return db.query(PayoutRequest).filter(PayoutRequest.id == payout_id).first()


def list_payouts_for_affiliate(db: Session, *, affiliate_id: int) -> list[PayoutRequest]:
    return (
        db.query(PayoutRequest)
        .filter(PayoutRequest.affiliate_id == affiliate_id)
        .order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc())
        .all()
    )


def sum_open_payouts(db: Session, *, affiliate_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(PayoutRequest.amount_requested), 0))
        .filter(
            PayoutRequest.affiliate_id == affiliate_id,
            PayoutRequest.status.in_(OPEN_PAYOUT_STATUSES),
        )
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def transition_status(
    db: Session,
    *,
    payout_id: int,
    from_status: str,
    to_status: str,
    values: dict | None = None,
) -> bool:
    """Move a payout only if it is still in from_status. Concurrent advances lose here."""
    result = db.execute(
        update(PayoutRequest)
        .where(PayoutRequest.id == payout_id, PayoutRequest.status == from_status)
        .values(status=to_status, updated_at=utcnow(), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
