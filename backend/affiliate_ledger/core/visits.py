from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from affiliate_ledger.core.affiliates import apply_visit, resolve_code
from affiliate_ledger.core.errors import NotFound, UnknownReferralCode
from affiliate_ledger.core.metrics import VISITS_RECORDED_TOTAL
from affiliate_ledger.crud.visits import create_visit, flag_converted, get_visit
from affiliate_ledger.models.visits import Visit

logger = logging.getLogger(__name__)

MOBILE_MARKERS = ("Mobile", "Android", "iPhone", "iPad")

# Edge user agents also mention Chrome and Safari, so order matters.
BROWSER_MARKERS = (
    ("Edg", "Edge"),
    ("Chrome", "Chrome"),
    ("Firefox", "Firefox"),
    ("Safari", "Safari"),
)

VISIT_METADATA_FIELDS = (
    "referrer",
    "page_url",
    "user_agent",
    "ip_address",
    "device_type",
    "browser",
    "country",
)


def detect_device_type(user_agent: str | None) -> str:
    ua = user_agent or ""
    return "mobile" if any(marker in ua for marker in MOBILE_MARKERS) else "desktop"


def detect_browser(user_agent: str | None) -> str:
    ua = user_agent or ""
    for marker, browser in BROWSER_MARKERS:
        if marker in ua:
            return browser
    return "Other"


def _clean_metadata(metadata: dict[str, Any] | None) -> dict[str, str | None]:
    cleaned: dict[str, str | None] = {}
    for key in VISIT_METADATA_FIELDS:
        value = (metadata or {}).get(key)
        if isinstance(value, str):
            value = value.strip() or None
        cleaned[key] = value
    if not cleaned["device_type"]:
        cleaned["device_type"] = detect_device_type(cleaned["user_agent"])
    if not cleaned["browser"]:
        cleaned["browser"] = detect_browser(cleaned["user_agent"])
    if cleaned["country"]:
        cleaned["country"] = cleaned["country"].upper()
    return cleaned


def record_visit(db: Session, code: str | None, metadata: dict[str, Any] | None = None) -> Visit:
    resolved = resolve_code(db, code)
    if resolved is None:
        raise UnknownReferralCode("Referral code not recognised", code=(code or "").strip() or None)
    affiliate, link = resolved

    visit = create_visit(
        db,
        affiliate_id=affiliate.id,
        link_id=link.id if link else None,
        **_clean_metadata(metadata),
    )
    apply_visit(db, affiliate.id)
    db.commit()
    db.refresh(visit)
    VISITS_RECORDED_TOTAL.inc()
    logger.info(
        "visit.recorded",
        extra={
            "visit_id": visit.id,
            "affiliate_id": affiliate.id,
            "link_id": visit.link_id,
            "device_type": visit.device_type,
        },
    )
    return visit


def mark_converted(db: Session, visit_id: int, *, commit: bool = True) -> Visit:
    """Flip the visit to converted. Repeat calls leave it unchanged."""
    visit = get_visit(db, visit_id=visit_id)
    if not visit:
        raise NotFound("Visit not found", resource="visit", id=visit_id)
    changed = flag_converted(db, visit_id=visit_id)
    if commit:
        db.commit()
    db.refresh(visit)
    if changed:
        logger.debug("visit.converted", extra={"visit_id": visit_id})
    return visit
