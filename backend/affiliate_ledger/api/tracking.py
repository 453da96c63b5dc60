from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from affiliate_ledger.api.dependencies import get_actor, get_origin
from affiliate_ledger.core.attribution import ConversionEvent, attribute_conversion
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.db import get_db
from affiliate_ledger.core.visits import record_visit
from affiliate_ledger.schemas.conversions import (
    ConversionCreate,
    ConversionResult,
    VisitCreate,
    VisitCreated,
)


router = APIRouter(tags=["tracking"])


@router.post("/visits", response_model=VisitCreated, status_code=status.HTTP_201_CREATED)
def create_visit(
    payload: VisitCreate,
    request: Request,
    db: Session = Depends(get_db),
):
    metadata = payload.model_dump(exclude={"code"})
    metadata["ip_address"] = get_origin(request)
    if not metadata.get("user_agent"):
        metadata["user_agent"] = request.headers.get("User-Agent")
    visit = record_visit(db, payload.code, metadata)
    return VisitCreated(visit_id=visit.id)


@router.post("/conversions", response_model=ConversionResult)
def create_conversion(
    payload: ConversionCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    result = attribute_conversion(
        db,
        ConversionEvent(
            order_id=payload.order_id,
            order_amount=payload.order_amount,
            conversion_type=payload.conversion_type,
            referral_code=payload.referral_code,
            visit_id=payload.visit_id,
        ),
        actor,
        strict=payload.strict,
    )
    return ConversionResult(
        attributed=result.attributed,
        reason=result.reason,
        referral_id=result.referral.id if result.referral else None,
        commission_id=result.commission.id if result.commission else None,
    )
