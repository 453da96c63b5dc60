from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from affiliate_ledger.api.dependencies import get_actor, get_authorizer
from affiliate_ledger.core.affiliates import (
    build_referral_url,
    create_link,
    get_affiliate,
    list_links,
    rename_link,
    update_payout_settings,
)
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.commissions import unpaid_total
from affiliate_ledger.core.db import get_db
from affiliate_ledger.core.payouts import list_payouts, request_payout, withdrawable_balance
from affiliate_ledger.core.permissions import Authorizer, require
from affiliate_ledger.crud.commissions import list_commissions_for_affiliate
from affiliate_ledger.crud.referrals import list_referrals_for_affiliate
from affiliate_ledger.crud.visits import list_visits_for_affiliate
from affiliate_ledger.jobs.leaderboard import get_public_leaderboard
from affiliate_ledger.schemas.admin import LeaderboardEntry
from affiliate_ledger.schemas.affiliates import (
    AffiliateLinkCreate,
    AffiliateLinkRead,
    AffiliateLinkUpdate,
    AffiliatePayoutSettingsUpdate,
    AffiliateRead,
    AffiliateSummary,
)
from affiliate_ledger.schemas.conversions import CommissionRead, ReferralRead, VisitRead
from affiliate_ledger.schemas.payouts import PayoutCreate, PayoutCreated, PayoutRead


router = APIRouter(tags=["affiliates"])

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(value or 0).quantize(CENT)


def affiliate_read(affiliate) -> AffiliateRead:
    return AffiliateRead(
        id=affiliate.id,
        name=affiliate.name,
        email=affiliate.email,
        code=affiliate.code,
        status=affiliate.status,
        commission_rate=_money(affiliate.commission_rate),
        payout_method=affiliate.payout_method,
        payout_destination=affiliate.payout_destination,
        user_id=affiliate.user_id,
        referral_url=build_referral_url(affiliate.code),
        total_earnings=_money(affiliate.total_earnings),
        total_referrals=affiliate.total_referrals or 0,
        total_visits=affiliate.total_visits or 0,
        available_balance=_money(affiliate.available_balance),
        created_at=affiliate.created_at,
        updated_at=affiliate.updated_at,
    )


def _link_read(link) -> AffiliateLinkRead:
    return AffiliateLinkRead(
        id=link.id,
        affiliate_id=link.affiliate_id,
        name=link.name,
        tag=link.tag,
        code=link.code,
        referral_url=build_referral_url(link.code),
        created_at=link.created_at,
    )


def payout_read(payout) -> PayoutRead:
    return PayoutRead(
        id=payout.id,
        affiliate_id=payout.affiliate_id,
        amount_requested=_money(payout.amount_requested),
        status=payout.status,
        payout_method=payout.payout_method,
        payout_destination=payout.payout_destination,
        transaction_id=payout.transaction_id,
        notes=payout.notes,
        requested_at=payout.requested_at,
        processing_at=payout.processing_at,
        completed_at=payout.completed_at,
        failed_at=payout.failed_at,
    )


def referral_read(referral) -> ReferralRead:
    return ReferralRead(
        id=referral.id,
        affiliate_id=referral.affiliate_id,
        visit_id=referral.visit_id,
        order_id=referral.order_id,
        order_amount=_money(referral.order_amount),
        commission_rate=_money(referral.commission_rate),
        commission_amount=_money(referral.commission_amount),
        status=referral.status,
        conversion_type=referral.conversion_type,
        notes=referral.notes,
    )


@router.get("/affiliates/{affiliate_id}/summary", response_model=AffiliateSummary)
def affiliate_summary(
    affiliate_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    affiliate = get_affiliate(db, affiliate_id)
    require(authorizer, actor, "affiliate.read", affiliate)
    visits = affiliate.total_visits or 0
    referrals = affiliate.total_referrals or 0
    return AffiliateSummary(
        affiliate_id=affiliate.id,
        code=affiliate.code,
        status=affiliate.status,
        total_earnings=_money(affiliate.total_earnings),
        total_referrals=referrals,
        total_visits=visits,
        available_balance=_money(affiliate.available_balance),
        unpaid_total=unpaid_total(db, affiliate.id),
        withdrawable=withdrawable_balance(db, affiliate.id),
        conversion_rate=round(referrals / visits * 100, 2) if visits else 0.0,
    )


@router.put("/affiliates/{affiliate_id}/payout-settings", response_model=AffiliateRead)
def change_payout_settings(
    affiliate_id: int,
    payload: AffiliatePayoutSettingsUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    affiliate = update_payout_settings(
        db,
        affiliate_id,
        payload.payout_method,
        payload.payout_destination,
        actor=actor,
        authorizer=authorizer,
    )
    return affiliate_read(affiliate)


@router.get("/affiliates/{affiliate_id}/links", response_model=list[AffiliateLinkRead])
def get_links(
    affiliate_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    require(authorizer, actor, "link.manage", get_affiliate(db, affiliate_id))
    return [_link_read(link) for link in list_links(db, affiliate_id)]


@router.post(
    "/affiliates/{affiliate_id}/links",
    response_model=AffiliateLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def add_link(
    affiliate_id: int,
    payload: AffiliateLinkCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    link = create_link(db, affiliate_id, payload.name, payload.tag, actor=actor, authorizer=authorizer)
    return _link_read(link)


@router.patch("/affiliates/links/{link_id}", response_model=AffiliateLinkRead)
def update_link(
    link_id: int,
    payload: AffiliateLinkUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    link = rename_link(db, link_id, payload.name, payload.tag, actor=actor, authorizer=authorizer)
    return _link_read(link)


@router.post("/payouts", response_model=PayoutCreated, status_code=status.HTTP_201_CREATED)
def create_payout_request(
    payload: PayoutCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    payout = request_payout(db, payload.affiliate_id, payload.amount, actor=actor, authorizer=authorizer)
    return PayoutCreated(payout_id=payout.id, status=payout.status)


@router.get("/affiliates/{affiliate_id}/payouts", response_model=list[PayoutRead])
def get_payouts(
    affiliate_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    require(authorizer, actor, "affiliate.read", get_affiliate(db, affiliate_id))
    return [payout_read(payout) for payout in list_payouts(db, affiliate_id)]


@router.get("/affiliates/{affiliate_id}/referrals", response_model=list[ReferralRead])
def get_referrals(
    affiliate_id: int,
    status: str | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    require(authorizer, actor, "affiliate.read", get_affiliate(db, affiliate_id))
    return [
        referral_read(referral)
        for referral in list_referrals_for_affiliate(db, affiliate_id=affiliate_id, status=status)
    ]


@router.get("/affiliates/{affiliate_id}/visits", response_model=list[VisitRead])
def get_visits(
    affiliate_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    require(authorizer, actor, "affiliate.read", get_affiliate(db, affiliate_id))
    return [
        VisitRead(
            id=visit.id,
            link_id=visit.link_id,
            referrer=visit.referrer,
            page_url=visit.page_url,
            device_type=visit.device_type,
            browser=visit.browser,
            country=visit.country,
            converted=bool(visit.converted),
            created_at=visit.created_at,
        )
        for visit in list_visits_for_affiliate(db, affiliate_id=affiliate_id, limit=limit)
    ]


@router.get("/affiliates/{affiliate_id}/commissions", response_model=list[CommissionRead])
def get_commissions(
    affiliate_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    require(authorizer, actor, "affiliate.read", get_affiliate(db, affiliate_id))
    return [
        CommissionRead(
            id=commission.id,
            referral_id=commission.referral_id,
            member_id=commission.member_id,
            amount=_money(commission.amount),
            type=commission.type,
            status=commission.status,
            payout_id=commission.payout_id,
            split_from_id=commission.split_from_id,
            paid_at=commission.paid_at,
            created_at=commission.created_at,
        )
        for commission in list_commissions_for_affiliate(db, affiliate_id=affiliate_id)
    ]


@router.get("/leaderboard", response_model=list[LeaderboardEntry], response_model_exclude_none=True)
def public_leaderboard(
    limit: int | None = Query(default=None, ge=1, le=100),
    show_earnings: bool = False,
    show_conversion: bool = False,
    db: Session = Depends(get_db),
):
    return get_public_leaderboard(
        db,
        limit=limit,
        show_earnings=show_earnings,
        show_conversion=show_conversion,
    )
