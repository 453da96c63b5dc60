from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from affiliate_ledger.api.affiliates import affiliate_read, payout_read, referral_read
from affiliate_ledger.api.dependencies import get_actor, get_authorizer, require_capability
from affiliate_ledger.core.affiliates import AffiliateCandidate, get_affiliate, register, set_status
from affiliate_ledger.core.attribution import review_referral
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.db import get_db
from affiliate_ledger.core.payouts import advance_payout
from affiliate_ledger.core.permissions import Authorizer
from affiliate_ledger.crud.audit import list_audit_logs
from affiliate_ledger.jobs.leaderboard import recompute
from affiliate_ledger.jobs.reconcile_totals import reconcile_totals
from affiliate_ledger.schemas.admin import (
    AuditLogRead,
    LeaderboardRecompute,
    LeaderboardRunRead,
    ReconcileRequest,
    TotalsDriftRead,
)
from affiliate_ledger.schemas.affiliates import AffiliateCreate, AffiliateRead, AffiliateStatusUpdate
from affiliate_ledger.schemas.conversions import ReferralRead, ReferralReview
from affiliate_ledger.schemas.payouts import PayoutAdvance, PayoutRead


router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/affiliates", response_model=AffiliateRead, status_code=status.HTTP_201_CREATED)
def create_affiliate(
    payload: AffiliateCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("affiliate.manage")),
):
    affiliate = register(
        db,
        AffiliateCandidate(
            name=payload.name,
            email=payload.email,
            commission_rate=payload.commission_rate,
            payout_method=payload.payout_method,
            payout_destination=payload.payout_destination,
            user_id=payload.user_id,
        ),
        actor,
    )
    return affiliate_read(affiliate)


@router.get("/affiliates/{affiliate_id}", response_model=AffiliateRead)
def read_affiliate(
    affiliate_id: int,
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_capability("affiliate.manage")),
):
    return affiliate_read(get_affiliate(db, affiliate_id))


@router.post("/affiliates/{affiliate_id}/status", response_model=AffiliateRead)
def change_affiliate_status(
    affiliate_id: int,
    payload: AffiliateStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    affiliate = set_status(db, affiliate_id, payload.status, actor=actor, authorizer=authorizer)
    return affiliate_read(affiliate)


@router.post("/referrals/{referral_id}/review", response_model=ReferralRead)
def review(
    referral_id: int,
    payload: ReferralReview,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    referral = review_referral(
        db,
        referral_id,
        payload.decision,
        actor=actor,
        notes=payload.notes,
        authorizer=authorizer,
    )
    return referral_read(referral)


@router.post("/payouts/{payout_id}/advance", response_model=PayoutRead)
def advance(
    payout_id: int,
    payload: PayoutAdvance,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    payout = advance_payout(
        db,
        payout_id,
        payload.status,
        actor=actor,
        authorizer=authorizer,
        completed_at=payload.completed_at,
        transaction_id=payload.transaction_id,
        notes=payload.notes,
    )
    return payout_read(payout)


@router.post("/leaderboard/recompute", response_model=LeaderboardRunRead)
def recompute_leaderboard(
    payload: LeaderboardRecompute,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    run = recompute(db, force=payload.force, metric=payload.metric, actor=actor, authorizer=authorizer)
    return LeaderboardRunRead(
        affiliates_updated=run.affiliates_updated,
        last_update=run.last_update,
        skipped=run.skipped,
    )


@router.post("/reconcile", response_model=list[TotalsDriftRead])
def reconcile(
    payload: ReconcileRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    authorizer: Authorizer = Depends(get_authorizer),
):
    drifts = reconcile_totals(db, fix=payload.fix, actor=actor, authorizer=authorizer)
    return [
        TotalsDriftRead(
            affiliate_id=drift.affiliate_id,
            code=drift.code,
            fields=drift.fields,
            cached=drift.cached,
            actual=drift.actual,
        )
        for drift in drifts
    ]


@router.get("/audit", response_model=list[AuditLogRead])
def audit_log(
    action: str | None = None,
    actor_user_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _actor: Actor = Depends(require_capability("audit.read")),
):
    logs = list_audit_logs(db, action=action, actor_user_id=actor_user_id, limit=limit, offset=offset)
    return [
        AuditLogRead(
            id=log.id,
            actor_user_id=log.actor_user_id,
            actor_email=log.actor_email,
            actor_role=log.actor_role,
            action=log.action,
            context=log.context,
            ip_address=log.ip_address,
            timestamp=log.timestamp,
        )
        for log in logs
    ]
