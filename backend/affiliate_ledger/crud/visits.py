from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from affiliate_ledger.models.visits import Visit


def create_visit(
    db: Session,
    *,
    affiliate_id: int,
    link_id: int | None = None,
    referrer: str | None = None,
    page_url: str | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
    device_type: str | None = None,
    browser: str | None = None,
    country: str | None = None,
) -> Visit:
    visit = Visit(
        affiliate_id=affiliate_id,
        link_id=link_id,
        referrer=referrer,
        page_url=page_url,
        user_agent=user_agent,
        ip_address=ip_address,
        device_type=device_type,
        browser=browser,
        country=country,
        converted=False,
    )
    db.add(visit)
    db.flush()
    return visit


def get_visit(db: Session, *, visit_id: int) -> Visit | None:
    return db.query(Visit).filter(Visit.id == visit_id).first()


def flag_converted(db: Session, *, visit_id: int) -> bool:
    """Flip converted false -> true. Returns False when the visit was already converted."""
    result = db.execute(
        update(Visit)
        .where(Visit.id == visit_id, Visit.converted.is_(False))
        .values(converted=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def list_open_visits(
    db: Session,
    *,
    affiliate_id: int,
    since: datetime,
    until: datetime | None = None,
) -> list[Visit]:
    # Oldest first; id breaks ties between visits sharing a timestamp.
    filters = [
        Visit.affiliate_id == affiliate_id,
        Visit.converted.is_(False),
        Visit.created_at >= since,
    ]
    if until is not None:
        filters.append(Visit.created_at <= until)
    return (
        db.query(Visit)
        .filter(*filters)
        .order_by(Visit.created_at.asc(), Visit.id.asc())
        .all()
    )


def list_visits_for_affiliate(db: Session, *, affiliate_id: int, limit: int = 100) -> list[Visit]:
    return (
        db.query(Visit)
        .filter(Visit.affiliate_id == affiliate_id)
        .order_by(Visit.created_at.desc(), Visit.id.desc())
        .limit(limit)
        .all()
    )


def count_visits(db: Session, *, affiliate_id: int) -> int:
    return int(db.query(func.count(Visit.id)).filter(Visit.affiliate_id == affiliate_id).scalar() or 0)
