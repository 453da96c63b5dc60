"""
Attribution engine: decides which affiliate, if any, earns a conversion.

Every order is attributed at most once. The unique order_id column on
referrals is the arbiter when two conversion events for the same order
race; the loser rolls back and reports the winner's referral.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_ledger.core import audit
from affiliate_ledger.core.affiliates import apply_referral, get_affiliate, resolve_code
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.commissions import commission_for
from affiliate_ledger.core.config import settings
from affiliate_ledger.core.errors import (
    DuplicateOrder,
    InvalidAmount,
    InvalidField,
    InvalidTransition,
    MissingField,
    NotFound,
)
from affiliate_ledger.core.metrics import COMMISSIONS_CREATED_TOTAL, REFERRALS_CREATED_TOTAL
from affiliate_ledger.core.money import calc_commission, money2, to_decimal
from affiliate_ledger.core.permissions import Authorizer, require
from affiliate_ledger.core.time import utcnow
from affiliate_ledger.crud.commissions import get_commission_for_referral
from affiliate_ledger.crud.referrals import create_referral, get_referral, get_referral_by_order
from affiliate_ledger.crud.visits import flag_converted, get_visit, list_open_visits
from affiliate_ledger.models.commissions import Commission
from affiliate_ledger.models.enums import ConversionTypeEnum, ReferralStatusEnum
from affiliate_ledger.models.referrals import Referral
from affiliate_ledger.models.visits import Visit

logger = logging.getLogger(__name__)

CONVERSION_TYPES = {item.value for item in ConversionTypeEnum}

REASON_ATTRIBUTED = "attributed"
REASON_ALREADY_ATTRIBUTED = "already_attributed"
REASON_NO_CODE = "no_code"
REASON_UNKNOWN_CODE = "unknown_code"
REASON_VISIT_EXPIRED = "visit_expired"
REASON_AFFILIATE_INACTIVE = "affiliate_inactive"

REVIEW_DECISIONS = {ReferralStatusEnum.APPROVED.value, ReferralStatusEnum.REJECTED.value}


@dataclass
class ConversionEvent:
    order_id: str | None
    order_amount: Any
    conversion_type: str = "one_time"
    referral_code: str | None = None
    visit_id: int | None = None


@dataclass
class AttributionResult:
    attributed: bool
    reason: str
    referral: Referral | None = None
    commission: Commission | None = None
    created: bool = False


VisitStrategy = Callable[[list[Visit]], Visit | None]


# Candidate lists arrive oldest first, ties already broken by id.
def pick_last_touch(visits: list[Visit]) -> Visit | None:
    return visits[-1] if visits else None


def pick_first_touch(visits: list[Visit]) -> Visit | None:
    return visits[0] if visits else None


ATTRIBUTION_STRATEGIES: dict[str, VisitStrategy] = {
    "last_touch": pick_last_touch,
    "first_touch": pick_first_touch,
}


def _validate_event(event: ConversionEvent) -> tuple[str, Decimal, str]:
    order_id = str(event.order_id).strip() if event.order_id is not None else ""
    if not order_id:
        raise MissingField("order_id is required", field="order_id")
    if event.order_amount is None or event.order_amount == "":
        raise MissingField("order_amount is required", field="order_amount")
    amount = to_decimal(event.order_amount, field="order_amount")
    if amount < 0:
        raise InvalidAmount("order_amount must be non-negative", field="order_amount")
    conversion_type = (event.conversion_type or "one_time").strip().lower()
    if conversion_type not in CONVERSION_TYPES:
        raise InvalidField(
            f"conversion_type must be one of {sorted(CONVERSION_TYPES)}",
            field="conversion_type",
        )
    return order_id, amount, conversion_type


def _unattributed(reason: str, **log_extra: Any) -> AttributionResult:
    logger.info("conversion.unattributed", extra={"reason": reason, **log_extra})
    return AttributionResult(attributed=False, reason=reason)


def _already_attributed(db: Session, referral: Referral) -> AttributionResult:
    return AttributionResult(
        attributed=True,
        reason=REASON_ALREADY_ATTRIBUTED,
        referral=referral,
        commission=get_commission_for_referral(db, referral_id=referral.id),
        created=False,
    )


def _window_start(now: datetime) -> datetime:
    return now - timedelta(days=settings.ATTRIBUTION_WINDOW_DAYS)


def attribute_conversion(
    db: Session,
    event: ConversionEvent,
    actor: Actor | None = None,
    *,
    now: datetime | None = None,
    strict: bool = False,
) -> AttributionResult:
    """Attribute one conversion event to at most one affiliate.

    Unattributable events are not errors: the result carries
    ``attributed=False`` and a reason. With ``strict=True`` a repeated
    order_id raises DuplicateOrder instead of returning the first referral.
    """
    order_id, amount, conversion_type = _validate_event(event)

    existing = get_referral_by_order(db, order_id=order_id)
    if existing:
        if strict:
            raise DuplicateOrder(
                "Order already attributed",
                order_id=order_id,
                referral_id=existing.id,
            )
        return _already_attributed(db, existing)

    now = now or utcnow()
    window_start = _window_start(now)
    visit: Visit | None = None
    explicit_visit = event.visit_id is not None

    if explicit_visit:
        visit = get_visit(db, visit_id=event.visit_id)
        if visit is None or visit.converted or not window_start <= visit.created_at <= now:
            return _unattributed(REASON_VISIT_EXPIRED, order_id=order_id, visit_id=event.visit_id)
        affiliate = get_affiliate(db, visit.affiliate_id)
    elif event.referral_code and event.referral_code.strip():
        resolved = resolve_code(db, event.referral_code)
        if resolved is None:
            return _unattributed(REASON_UNKNOWN_CODE, order_id=order_id, code=event.referral_code.strip())
        affiliate, _link = resolved
    else:
        return _unattributed(REASON_NO_CODE, order_id=order_id)

    if affiliate.status != "active":
        return _unattributed(
            REASON_AFFILIATE_INACTIVE,
            order_id=order_id,
            affiliate_id=affiliate.id,
            status=affiliate.status,
        )

    rate = Decimal(affiliate.commission_rate)
    # Commission is rounded once, from the order amount as given.
    commission_amount = calc_commission(amount, rate)
    amount = money2(amount)
    status = (
        ReferralStatusEnum.PENDING.value
        if settings.REFERRAL_REVIEW_REQUIRED
        else ReferralStatusEnum.APPROVED.value
    )

    if visit is None:
        strategy = ATTRIBUTION_STRATEGIES[settings.ATTRIBUTION_MODEL]
        candidates = list_open_visits(db, affiliate_id=affiliate.id, since=window_start, until=now)
        visit = strategy(candidates)

    commission: Commission | None = None
    try:
        referral = create_referral(
            db,
            affiliate_id=affiliate.id,
            visit_id=visit.id if visit else None,
            order_id=order_id,
            order_amount=amount,
            commission_rate=rate,
            commission_amount=commission_amount,
            status=status,
            conversion_type=conversion_type,
        )
        if visit is not None and not flag_converted(db, visit_id=visit.id):
            # Another conversion claimed this visit since it was read.
            if explicit_visit:
                db.rollback()
                return _unattributed(REASON_VISIT_EXPIRED, order_id=order_id, visit_id=visit.id)
            referral.visit_id = None
        apply_referral(db, affiliate.id, 1)
        if status == ReferralStatusEnum.APPROVED.value:
            commission = commission_for(db, referral)
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = get_referral_by_order(db, order_id=order_id)
        if winner is None:
            raise
        logger.info("referral.duplicate_order", extra={"order_id": order_id, "referral_id": winner.id})
        if strict:
            raise DuplicateOrder(
                "Order already attributed",
                order_id=order_id,
                referral_id=winner.id,
            )
        return _already_attributed(db, winner)
    except Exception:
        db.rollback()
        raise

    db.refresh(referral)
    if commission is not None:
        db.refresh(commission)
        COMMISSIONS_CREATED_TOTAL.labels(type=commission.type).inc()
    REFERRALS_CREATED_TOTAL.labels(status=referral.status).inc()
    logger.info(
        "referral.created",
        extra={
            "referral_id": referral.id,
            "affiliate_id": referral.affiliate_id,
            "order_id": order_id,
            "visit_id": referral.visit_id,
            "status": referral.status,
            "commission_amount": str(referral.commission_amount),
        },
    )
    audit.record(
        db,
        actor,
        "referral_created",
        {
            "referral_id": referral.id,
            "affiliate_id": referral.affiliate_id,
            "order_id": order_id,
            "order_amount": amount,
            "commission_amount": commission_amount,
            "status": referral.status,
            "visit_id": referral.visit_id,
        },
    )
    return AttributionResult(
        attributed=True,
        reason=REASON_ATTRIBUTED,
        referral=referral,
        commission=commission,
        created=True,
    )


def review_referral(
    db: Session,
    referral_id: int,
    decision: str,
    actor: Actor | None = None,
    notes: str | None = None,
    authorizer: Authorizer | None = None,
) -> Referral:
    referral = get_referral(db, referral_id=referral_id)
    if not referral:
        raise NotFound("Referral not found", resource="referral", id=referral_id)
    require(authorizer, actor, "referral.review", referral)
    target = (decision or "").strip().lower()
    if referral.status != ReferralStatusEnum.PENDING.value or target not in REVIEW_DECISIONS:
        raise InvalidTransition(
            f"Cannot move referral from {referral.status} to {target}",
            from_status=referral.status,
            to_status=target,
        )

    referral.status = target
    referral.reviewed_at = utcnow()
    if notes:
        referral.notes = notes
    commission: Commission | None = None
    try:
        if target == ReferralStatusEnum.APPROVED.value:
            commission = commission_for(db, referral)
        else:
            apply_referral(db, referral.affiliate_id, -1)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(referral)
    if commission is not None:
        COMMISSIONS_CREATED_TOTAL.labels(type=commission.type).inc()

    logger.info(
        "referral.reviewed",
        extra={"referral_id": referral.id, "status": target},
    )
    audit.record(
        db,
        actor,
        f"referral_{target}",
        {
            "referral_id": referral.id,
            "affiliate_id": referral.affiliate_id,
            "order_id": referral.order_id,
            "notes": notes,
        },
    )
    return referral
