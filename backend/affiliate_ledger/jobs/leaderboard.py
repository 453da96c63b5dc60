from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from affiliate_ledger.core import audit
from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.config import LEADERBOARD_METRICS, settings
from affiliate_ledger.core.db import SessionLocal
from affiliate_ledger.core.errors import InvalidField
from affiliate_ledger.core.permissions import Authorizer, require
from affiliate_ledger.core.time import as_naive_utc, utcnow
from affiliate_ledger.crud.affiliates import list_affiliates
from affiliate_ledger.crud.system_settings import get_setting_value, upsert_setting

logger = logging.getLogger(__name__)

LEADERBOARD_KEY = "affiliate_leaderboard"
LAST_UPDATE_KEY = "last_leaderboard_update"


@dataclass
class LeaderboardRun:
    affiliates_updated: int
    last_update: datetime | None
    skipped: bool = False


def _parse_ts(value) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return as_naive_utc(parsed)


def _metric_value(affiliate, metric: str):
    if metric == "total_referrals":
        return int(affiliate.total_referrals or 0)
    return Decimal(affiliate.total_earnings or 0)


def _conversion_rate(referrals: int, visits: int) -> float:
    if not visits:
        return 0.0
    return round(referrals / visits * 100, 2)


def build_snapshot(db: Session, *, metric: str, generated_at: datetime) -> dict:
    affiliates = list_affiliates(db, status="active")
    # Highest first; lower id wins ties so reruns are stable.
    ranked = sorted(affiliates, key=lambda item: (-_metric_value(item, metric), item.id))
    entries = []
    for rank, affiliate in enumerate(ranked, start=1):
        entries.append(
            {
                "rank": rank,
                "affiliate_id": affiliate.id,
                "code": affiliate.code,
                "name": affiliate.name,
                "total_earnings": str(Decimal(affiliate.total_earnings or 0).quantize(Decimal("0.01"))),
                "total_referrals": int(affiliate.total_referrals or 0),
                "total_visits": int(affiliate.total_visits or 0),
            }
        )
    return {"metric": metric, "generated_at": generated_at.isoformat(), "entries": entries}


def recompute(
    db: Session,
    force: bool = False,
    metric: str | None = None,
    actor: Actor | None = None,
    authorizer: Authorizer | None = None,
    *,
    now: datetime | None = None,
) -> LeaderboardRun:
    require(authorizer, actor, "leaderboard.recompute")
    metric = (metric or settings.LEADERBOARD_METRIC).strip().lower()
    if metric not in LEADERBOARD_METRICS:
        raise InvalidField(f"metric must be one of {sorted(LEADERBOARD_METRICS)}", field="metric")
    now = now or utcnow()

    last_update = _parse_ts(get_setting_value(db, key=LAST_UPDATE_KEY))
    cadence = timedelta(days=settings.LEADERBOARD_CADENCE_DAYS)
    if not force and last_update is not None and now - last_update < cadence:
        logger.info(
            "leaderboard.skipped",
            extra={"last_update": last_update.isoformat(), "cadence_days": settings.LEADERBOARD_CADENCE_DAYS},
        )
        return LeaderboardRun(affiliates_updated=0, last_update=last_update, skipped=True)

    snapshot = build_snapshot(db, metric=metric, generated_at=now)
    upsert_setting(db, key=LEADERBOARD_KEY, value=snapshot)
    upsert_setting(db, key=LAST_UPDATE_KEY, value=now.isoformat())
    db.commit()

    updated = len(snapshot["entries"])
    logger.info("leaderboard.recomputed", extra={"affiliates_updated": updated, "metric": metric})
    audit.record(
        db,
        actor,
        "leaderboard_recomputed",
        {"affiliates_updated": updated, "metric": metric, "forced": force},
    )
    return LeaderboardRun(affiliates_updated=updated, last_update=now, skipped=False)


def get_public_leaderboard(
    db: Session,
    limit: int | None = None,
    show_earnings: bool = False,
    show_conversion: bool = False,
) -> list[dict]:
    snapshot = get_setting_value(db, key=LEADERBOARD_KEY, default=None) or {}
    limit = limit or settings.LEADERBOARD_LIMIT
    rows = []
    for entry in (snapshot.get("entries") or [])[:limit]:
        row = {
            "rank": entry["rank"],
            "code": entry["code"],
            "total_referrals": entry["total_referrals"],
        }
        if show_earnings:
            row["total_earnings"] = entry["total_earnings"]
        if show_conversion:
            row["conversion_rate"] = _conversion_rate(entry["total_referrals"], entry.get("total_visits", 0))
        rows.append(row)
    return rows


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute the affiliate leaderboard snapshot.")
    parser.add_argument("--force", action="store_true", help="Ignore the cadence window.")
    parser.add_argument(
        "--metric",
        type=str,
        default=None,
        choices=sorted(LEADERBOARD_METRICS),
        help="Ranking metric (defaults to LEADERBOARD_METRIC).",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    with SessionLocal() as db:
        run = recompute(db, force=args.force, metric=args.metric, actor=Actor.system())
    logger.info(
        "leaderboard.job_finished",
        extra={"affiliates_updated": run.affiliates_updated, "skipped": run.skipped},
    )


if __name__ == "__main__":
    main()
