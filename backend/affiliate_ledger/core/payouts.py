"""
Payout lifecycle: withdrawal requests and their admin-driven progress.

    requested -> processing | failed
    processing -> completed | failed

completed and failed are terminal. Completing a payout settles unpaid
commissions oldest-first; a failed payout releases its reservation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from affiliate_ledger.core import audit
from affiliate_ledger.core.affiliates import get_affiliate, require_active
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.commissions import settle_commissions, unpaid_total
from affiliate_ledger.core.config import settings
from affiliate_ledger.core.errors import (
    InsufficientBalance,
    InvalidAmount,
    InvalidField,
    InvalidTransition,
    NotFound,
    PayoutContention,
)
from affiliate_ledger.core.metrics import record_payout_transition
from affiliate_ledger.core.money import money2, to_money
from affiliate_ledger.core.permissions import Authorizer, require
from affiliate_ledger.core.time import as_naive_utc, utcnow
from affiliate_ledger.crud.affiliates import bump_balance_version
from affiliate_ledger.crud.payouts import (
    create_payout,
    get_payout,
    list_payouts_for_affiliate,
    sum_open_payouts,
    transition_status,
)
from affiliate_ledger.models.payouts import PayoutRequest
from affiliate_ledger.notifications.payouts import notify_payout_status

logger = logging.getLogger(__name__)

PAYOUT_TRANSITIONS: dict[str, set[str]] = {
    "requested": {"processing", "failed"},
    "processing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}

STATUS_TIMESTAMP_FIELDS = {
    "processing": "processing_at",
    "completed": "completed_at",
    "failed": "failed_at",
}


@dataclass
class RetryPolicy:
    max_attempts: int
    base_delay_ms: int


def _payout_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.PAYOUT_MAX_RETRIES,
        base_delay_ms=settings.PAYOUT_RETRY_BASE_DELAY_MS,
    )


def _backoff_seconds(policy: RetryPolicy, attempt: int) -> float:
    multiplier = 2 ** max(attempt - 1, 0)
    return (policy.base_delay_ms * multiplier) / 1000.0


def withdrawable_balance(db: Session, affiliate_id: int) -> Decimal:
    """Unpaid commissions minus amounts already reserved by open requests."""
    return money2(unpaid_total(db, affiliate_id) - sum_open_payouts(db, affiliate_id=affiliate_id))


def request_payout(
    db: Session,
    affiliate_id: int,
    amount,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
) -> PayoutRequest:
    value = to_money(amount)
    if value <= 0:
        raise InvalidAmount("amount must be positive", field="amount")
    minimum = money2(Decimal(settings.MIN_PAYOUT_AMOUNT))
    if value < minimum:
        raise InvalidAmount(
            f"Minimum withdrawal amount is {minimum}",
            field="amount",
            minimum=str(minimum),
        )
    require(authorizer, actor, "payout.request", get_affiliate(db, affiliate_id))

    policy = _payout_retry_policy()
    payout: PayoutRequest | None = None
    for attempt in range(1, policy.max_attempts + 1):
        # Re-read committed state on every attempt.
        db.expire_all()
        affiliate = require_active(get_affiliate(db, affiliate_id))
        version = affiliate.balance_version
        available = withdrawable_balance(db, affiliate_id)
        if value > available:
            db.rollback()
            logger.info(
                "payout.insufficient_balance",
                extra={"affiliate_id": affiliate_id, "requested": str(value), "available": str(available)},
            )
            raise InsufficientBalance(
                "Requested amount exceeds the withdrawable balance",
                requested=str(value),
                available=str(available),
            )
        # The insert only commits if nobody else moved the balance since the read.
        if bump_balance_version(db, affiliate_id=affiliate_id, expected_version=version):
            payout = create_payout(
                db,
                affiliate_id=affiliate_id,
                amount_requested=value,
                payout_method=affiliate.payout_method,
                payout_destination=affiliate.payout_destination,
            )
            db.commit()
            break
        db.rollback()
        delay = _backoff_seconds(policy, attempt)
        logger.info(
            "payout.version_conflict",
            extra={"affiliate_id": affiliate_id, "attempt": attempt, "retry_in_seconds": delay},
        )
        if attempt < policy.max_attempts:
            time.sleep(delay)

    if payout is None:
        db.expire_all()
        available = withdrawable_balance(db, affiliate_id)
        db.rollback()
        if value > available:
            raise InsufficientBalance(
                "Requested amount exceeds the withdrawable balance",
                requested=str(value),
                available=str(available),
            )
        logger.warning(
            "payout.contention_exhausted",
            extra={"affiliate_id": affiliate_id, "requested": str(value), "attempts": policy.max_attempts},
        )
        raise PayoutContention(
            "Balance changed concurrently; try again",
            requested=str(value),
            attempts=policy.max_attempts,
        )

    db.refresh(payout)
    record_payout_transition(payout.status)
    logger.info(
        "payout.transition",
        extra={"payout_id": payout.id, "affiliate_id": affiliate_id, "status": payout.status},
    )
    audit.record(
        db,
        actor,
        "payout_requested",
        {"payout_id": payout.id, "affiliate_id": affiliate_id, "amount": value},
    )
    return payout


def advance_payout(
    db: Session,
    payout_id: int,
    new_status: str,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
    completed_at: datetime | None = None,
    transaction_id: str | None = None,
    notes: str | None = None,
) -> PayoutRequest:
    payout = get_payout(db, payout_id=payout_id)
    if not payout:
        raise NotFound("Payout request not found", resource="payout", id=payout_id)
    require(authorizer, actor, "payout.advance", payout)

    previous = payout.status
    target = (new_status or "").strip().lower()
    if target not in PAYOUT_TRANSITIONS.get(previous, set()):
        raise InvalidTransition(
            f"Cannot move payout from {previous} to {target}",
            from_status=previous,
            to_status=target,
        )

    stamped_at = utcnow()
    if target == "completed" and completed_at is not None:
        stamped_at = as_naive_utc(completed_at)
        if stamped_at < payout.requested_at:
            raise InvalidField(
                "completed_at cannot precede requested_at",
                field="completed_at",
                requested_at=payout.requested_at.isoformat(),
            )
    values = {STATUS_TIMESTAMP_FIELDS[target]: stamped_at}
    if transaction_id:
        values["transaction_id"] = transaction_id
    if notes:
        values["notes"] = notes

    try:
        if not transition_status(
            db,
            payout_id=payout.id,
            from_status=previous,
            to_status=target,
            values=values,
        ):
            db.rollback()
            db.refresh(payout)
            raise InvalidTransition(
                f"Payout moved to {payout.status} concurrently",
                from_status=payout.status,
                to_status=target,
            )
        if target == "completed":
            settle_commissions(
                db,
                payout.affiliate_id,
                Decimal(payout.amount_requested),
                payout.id,
                stamped_at,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payout)
    affiliate = get_affiliate(db, payout.affiliate_id)
    record_payout_transition(target)
    logger.info(
        "payout.transition",
        extra={
            "payout_id": payout.id,
            "affiliate_id": payout.affiliate_id,
            "from_status": previous,
            "status": target,
        },
    )
    audit.record(
        db,
        actor,
        f"payout_{target}",
        {
            "payout_id": payout.id,
            "affiliate_id": payout.affiliate_id,
            "from_status": previous,
            "amount": Decimal(payout.amount_requested),
            "transaction_id": payout.transaction_id,
        },
    )
    notify_payout_status(db, payout, affiliate)
    return payout


def list_payouts(db: Session, affiliate_id: int) -> list[PayoutRequest]:
    get_affiliate(db, affiliate_id)
    return list_payouts_for_affiliate(db, affiliate_id=affiliate_id)
