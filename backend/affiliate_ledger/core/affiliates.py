from __future__ import annotations

import logging
import re
import secrets
import string
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_ledger.core import audit
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.config import settings
from affiliate_ledger.core.errors import (
    AffiliateInactive,
    CodeGenerationExhausted,
    InvalidAmount,
    InvalidField,
    InvalidTransition,
    MissingField,
    NotFound,
)
from affiliate_ledger.core.money import money2, to_money
from affiliate_ledger.core.permissions import Authorizer, require
from affiliate_ledger.crud.affiliates import (
    code_in_use,
    create_affiliate,
    create_link as create_link_row,
    get_affiliate as get_affiliate_row,
    get_affiliate_by_code,
    get_link,
    get_link_by_code,
    increment_totals,
    list_links as list_link_rows,
    update_affiliate,
)
from affiliate_ledger.models.affiliates import Affiliate, AffiliateLink
from affiliate_ledger.models.enums import AffiliateStatusEnum, PayoutMethodEnum

logger = logging.getLogger(__name__)

CodeFactory = Callable[[str], str]

PAYOUT_METHODS = {method.value for method in PayoutMethodEnum}

# Soft lifecycle; affiliates are never hard-deleted.
STATUS_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"active", "rejected"},
    "active": {"suspended"},
    "suspended": {"active", "rejected"},
    "rejected": set(),
}

LINK_CODE_ALPHABET = string.ascii_uppercase + string.digits
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


@dataclass
class AffiliateCandidate:
    name: str
    email: str
    commission_rate: Decimal | None = None
    payout_method: str = "paypal"
    payout_destination: str | None = None
    user_id: str | None = None


def generate_affiliate_code(name: str) -> str:
    """AF-<first initial><LASTNAME><4 digits>, e.g. AF-JDOE1234."""
    parts = [_NON_ALNUM.sub("", part) for part in (name or "").split()]
    parts = [part for part in parts if part]
    if not parts:
        raise MissingField("name is required", field="name")
    initial = parts[0][0].upper()
    last_name = parts[-1].upper() if len(parts) > 1 else ""
    number = 1000 + secrets.randbelow(9000)
    return f"AF-{initial}{last_name}{number}"


def generate_link_code(affiliate_code: str) -> str:
    suffix = "".join(secrets.choice(LINK_CODE_ALPHABET) for _ in range(4))
    return f"{affiliate_code}-{suffix}"


def build_referral_url(code: str) -> str:
    base = settings.APP_BASE_URL or "http://localhost:3000"
    return f"{base.rstrip('/')}/?ref={code}"


def _normalize_rate(value) -> Decimal:
    if value is None:
        return money2(Decimal(settings.DEFAULT_COMMISSION_RATE))
    rate = to_money(value, field="commission_rate")
    if rate < 0 or rate > 100:
        raise InvalidAmount("commission_rate must be between 0 and 100", field="commission_rate")
    return rate


def _validate_payout_method(method: str | None) -> str:
    value = (method or "").strip().lower()
    if value not in PAYOUT_METHODS:
        raise InvalidField(
            f"payout_method must be one of {sorted(PAYOUT_METHODS)}",
            field="payout_method",
        )
    return value


def register(
    db: Session,
    candidate: AffiliateCandidate,
    actor: Actor | None = None,
    *,
    code_factory: CodeFactory | None = None,
) -> Affiliate:
    name = (candidate.name or "").strip()
    email = (candidate.email or "").strip().lower()
    if not name:
        raise MissingField("name is required", field="name")
    if not email:
        raise MissingField("email is required", field="email")
    rate = _normalize_rate(candidate.commission_rate)
    payout_method = _validate_payout_method(candidate.payout_method)
    status = (
        AffiliateStatusEnum.PENDING.value
        if settings.AFFILIATE_MANUAL_REVIEW
        else AffiliateStatusEnum.ACTIVE.value
    )
    factory = code_factory or generate_affiliate_code

    attempts = settings.CODE_GENERATION_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        code = factory(name)
        if code_in_use(db, code=code):
            logger.info("affiliate.code_collision", extra={"code": code, "attempt": attempt})
            continue
        try:
            affiliate = create_affiliate(
                db,
                name=name,
                email=email,
                code=code,
                status=status,
                commission_rate=rate,
                payout_method=payout_method,
                payout_destination=candidate.payout_destination,
                user_id=candidate.user_id,
            )
            db.commit()
        except IntegrityError:
            # Lost a race for the same code against a concurrent registration.
            db.rollback()
            logger.info("affiliate.code_collision", extra={"code": code, "attempt": attempt})
            continue
        db.refresh(affiliate)
        logger.info(
            "affiliate.registered",
            extra={"affiliate_id": affiliate.id, "code": affiliate.code, "status": affiliate.status},
        )
        audit.record(
            db,
            actor,
            "affiliate_registered",
            {"affiliate_id": affiliate.id, "code": affiliate.code, "status": affiliate.status},
        )
        return affiliate

    logger.warning("affiliate.code_exhausted", extra={"attempts": attempts})
    raise CodeGenerationExhausted(
        f"Could not issue a unique referral code after {attempts} attempts",
        attempts=attempts,
    )


def get_affiliate(db: Session, affiliate_id: int) -> Affiliate:
    affiliate = get_affiliate_row(db, affiliate_id=affiliate_id)
    if not affiliate:
        raise NotFound("Affiliate not found", resource="affiliate", id=affiliate_id)
    return affiliate


def resolve_code(db: Session, code: str | None) -> tuple[Affiliate, AffiliateLink | None] | None:
    normalized = (code or "").strip()
    if not normalized:
        return None
    affiliate = get_affiliate_by_code(db, code=normalized)
    if affiliate:
        return affiliate, None
    link = get_link_by_code(db, code=normalized)
    if link:
        return link.affiliate, link
    return None


def require_active(affiliate: Affiliate) -> Affiliate:
    if affiliate.status != AffiliateStatusEnum.ACTIVE.value:
        raise AffiliateInactive(
            f"Affiliate is {affiliate.status}",
            affiliate_id=affiliate.id,
            status=affiliate.status,
        )
    return affiliate


def apply_commission(db: Session, affiliate_id: int, amount: Decimal) -> None:
    """Credit a commission to the cached totals inside the caller's transaction."""
    affiliate = require_active(get_affiliate(db, affiliate_id))
    amount = money2(Decimal(amount))
    increment_totals(db, affiliate_id=affiliate.id, earnings=amount, balance=amount)


def apply_visit(db: Session, affiliate_id: int) -> None:
    increment_totals(db, affiliate_id=affiliate_id, visits=1)


def apply_referral(db: Session, affiliate_id: int, delta: int = 1) -> None:
    increment_totals(db, affiliate_id=affiliate_id, referrals=delta)


def set_status(
    db: Session,
    affiliate_id: int,
    status: str,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
) -> Affiliate:
    affiliate = get_affiliate(db, affiliate_id)
    require(authorizer, actor, "affiliate.manage", affiliate)
    previous = affiliate.status
    target = (status or "").strip().lower()
    if target not in STATUS_TRANSITIONS.get(previous, set()):
        raise InvalidTransition(
            f"Cannot move affiliate from {previous} to {target}",
            from_status=previous,
            to_status=target,
        )
    update_affiliate(db, affiliate=affiliate, updates={"status": target})
    db.commit()
    db.refresh(affiliate)
    logger.info(
        "affiliate.status_changed",
        extra={"affiliate_id": affiliate.id, "from_status": previous, "to_status": target},
    )
    audit.record(
        db,
        actor,
        "affiliate_status_changed",
        {"affiliate_id": affiliate.id, "from_status": previous, "to_status": target},
    )
    return affiliate


def update_payout_settings(
    db: Session,
    affiliate_id: int,
    method: str,
    destination: str | None,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
) -> Affiliate:
    affiliate = get_affiliate(db, affiliate_id)
    require(authorizer, actor, "payout.request", affiliate)
    update_affiliate(
        db,
        affiliate=affiliate,
        updates={
            "payout_method": _validate_payout_method(method),
            "payout_destination": (destination or "").strip() or None,
        },
    )
    db.commit()
    db.refresh(affiliate)
    return affiliate


def create_link(
    db: Session,
    affiliate_id: int,
    name: str,
    tag: str | None = None,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
    *,
    code_factory: CodeFactory | None = None,
) -> AffiliateLink:
    affiliate = get_affiliate(db, affiliate_id)
    require(authorizer, actor, "link.manage", affiliate)
    if affiliate.status == AffiliateStatusEnum.REJECTED.value:
        raise AffiliateInactive("Rejected affiliates cannot create links", affiliate_id=affiliate.id)
    link_name = (name or "").strip()
    if not link_name:
        raise MissingField("name is required", field="name")
    factory = code_factory or generate_link_code

    attempts = settings.CODE_GENERATION_MAX_ATTEMPTS
    for _ in range(attempts):
        code = factory(affiliate.code)
        if code_in_use(db, code=code):
            continue
        try:
            link = create_link_row(
                db,
                affiliate_id=affiliate.id,
                name=link_name,
                code=code,
                tag=(tag or "").strip() or None,
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            continue
        db.refresh(link)
        audit.record(
            db,
            actor,
            "affiliate_link_created",
            {"affiliate_id": affiliate.id, "link_id": link.id, "code": link.code},
        )
        return link

    raise CodeGenerationExhausted(
        f"Could not issue a unique link code after {attempts} attempts",
        attempts=attempts,
    )


def rename_link(
    db: Session,
    link_id: int,
    name: str,
    tag: str | None = None,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
) -> AffiliateLink:
    link = get_link(db, link_id=link_id)
    if not link:
        raise NotFound("Link not found", resource="affiliate_link", id=link_id)
    require(authorizer, actor, "link.manage", link)
    link_name = (name or "").strip()
    if not link_name:
        raise MissingField("name is required", field="name")
    previous = link.name
    link.name = link_name
    if tag is not None:
        link.tag = tag.strip() or None
    db.commit()
    db.refresh(link)
    audit.record(
        db,
        actor,
        "affiliate_link_renamed",
        {"link_id": link.id, "from_name": previous, "to_name": link.name},
    )
    return link


def list_links(db: Session, affiliate_id: int) -> list[AffiliateLink]:
    get_affiliate(db, affiliate_id)
    return list_link_rows(db, affiliate_id=affiliate_id)
