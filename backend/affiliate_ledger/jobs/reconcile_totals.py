from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.orm import Session

from affiliate_ledger.core import audit
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.db import SessionLocal
from affiliate_ledger.core.permissions import Authorizer, require
from affiliate_ledger.crud.affiliates import list_affiliates, overwrite_totals
from affiliate_ledger.crud.commissions import sum_commissions
from affiliate_ledger.crud.referrals import count_counted_referrals
from affiliate_ledger.crud.visits import count_visits

logger = logging.getLogger(__name__)

CACHED_TOTALS = ("total_earnings", "available_balance", "total_referrals", "total_visits")


@dataclass
class TotalsDrift:
    affiliate_id: int
    code: str
    cached: dict = field(default_factory=dict)
    actual: dict = field(default_factory=dict)

    @property
    def fields(self) -> list[str]:
        return [name for name in CACHED_TOTALS if self.cached.get(name) != self.actual.get(name)]


def _cached_totals(affiliate) -> dict:
    return {
        "total_earnings": Decimal(affiliate.total_earnings or 0).quantize(Decimal("0.01")),
        "available_balance": Decimal(affiliate.available_balance or 0).quantize(Decimal("0.01")),
        "total_referrals": int(affiliate.total_referrals or 0),
        "total_visits": int(affiliate.total_visits or 0),
    }


def _actual_totals(db: Session, affiliate_id: int) -> dict:
    return {
        "total_earnings": sum_commissions(db, affiliate_id=affiliate_id),
        "available_balance": sum_commissions(db, affiliate_id=affiliate_id, status="unpaid"),
        "total_referrals": count_counted_referrals(db, affiliate_id=affiliate_id),
        "total_visits": count_visits(db, affiliate_id=affiliate_id),
    }


def reconcile_totals(
    db: Session,
    fix: bool = False,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
) -> list[TotalsDrift]:
    """Compare cached affiliate totals with the ledger rows they summarize."""
    require(authorizer, actor, "totals.reconcile")
    drifts: list[TotalsDrift] = []
    for affiliate in list_affiliates(db):
        cached = _cached_totals(affiliate)
        actual = _actual_totals(db, affiliate.id)
        if cached == actual:
            continue
        drift = TotalsDrift(affiliate_id=affiliate.id, code=affiliate.code, cached=cached, actual=actual)
        drifts.append(drift)
        logger.warning(
            "totals.drift",
            extra={"affiliate_id": affiliate.id, "fields": drift.fields},
        )
        if fix:
            overwrite_totals(db, affiliate=affiliate, totals=actual)

    if fix and drifts:
        db.commit()
        audit.record(
            db,
            actor,
            "totals_reconciled",
            {
                "affiliates_fixed": [drift.affiliate_id for drift in drifts],
                "fields": {str(drift.affiliate_id): drift.fields for drift in drifts},
            },
        )
    return drifts


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check cached affiliate totals against the ledger.")
    parser.add_argument("--fix", action="store_true", help="Overwrite drifted totals.")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    with SessionLocal() as db:
        drifts = reconcile_totals(db, fix=args.fix, actor=Actor.system())
    logger.info("totals.reconcile_finished", extra={"drifted": len(drifts), "fixed": args.fix})


if __name__ == "__main__":
    main()
