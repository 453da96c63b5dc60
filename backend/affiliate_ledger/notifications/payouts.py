"""
Payout status notifications.

Each payout transition enqueues one templated email into the outbox
table; a separate sender delivers it. Enqueueing happens after the
payout commit and is best-effort: failures are logged and counted, and
the payout transition stands.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from affiliate_ledger.core.config import settings
from affiliate_ledger.core.metrics import NOTIFICATION_FAILURES_TOTAL
from affiliate_ledger.crud.email_queue import create_email_queue
from affiliate_ledger.models.affiliates import Affiliate
from affiliate_ledger.models.email_queue import EmailQueue
from affiliate_ledger.models.payouts import PayoutRequest

logger = logging.getLogger(__name__)

TEMPLATE_PAYOUT_STATUS = "payout_status"


@dataclass(frozen=True)
class PayoutStatusTemplate:
    subject: str
    body: str


PAYOUT_TEMPLATES: dict[str, PayoutStatusTemplate] = {
    "processing": PayoutStatusTemplate(
        subject="Your withdrawal is being processed",
        body="Hi {name},\n\nYour withdrawal of ${amount} ({affiliate_code}) is being processed.\n\n{from_name}",
    ),
    "completed": PayoutStatusTemplate(
        subject="Your withdrawal has been paid",
        body="Hi {name},\n\nYour withdrawal of ${amount} ({affiliate_code}) has been sent.\n\n{from_name}",
    ),
    "failed": PayoutStatusTemplate(
        subject="Your withdrawal could not be completed",
        body=(
            "Hi {name},\n\nYour withdrawal of ${amount} ({affiliate_code}) failed. "
            "The amount is available to request again.\n\n{from_name}"
        ),
    ),
}


def build_payout_payload(payout: PayoutRequest, affiliate: Affiliate) -> dict[str, Any]:
    return {
        "affiliate_email": affiliate.email,
        "status": payout.status,
        "amount": str(Decimal(payout.amount_requested).quantize(Decimal("0.01"))),
        "affiliate_code": affiliate.code,
    }


def notify_payout_status(db: Session, payout: PayoutRequest, affiliate: Affiliate) -> EmailQueue | None:
    try:
        payload = build_payout_payload(payout, affiliate)
        template = PAYOUT_TEMPLATES.get(payload["status"])
        if template is None:
            return None
        context = {**payload, "name": affiliate.name, "from_name": settings.NOTIFICATION_FROM_NAME}
        with Session(bind=db.get_bind()) as outbox_db:
            record = create_email_queue(
                outbox_db,
                to_email=payload["affiliate_email"],
                template_key=TEMPLATE_PAYOUT_STATUS,
                dedupe_key=f"payout:{payout.id}:{payload['status']}",
                subject=template.subject,
                body=template.body.format(**context),
                trigger_event=f"payout_{payload['status']}",
                metadata=payload,
            )
        if record is None:
            logger.info(
                "notification.duplicate",
                extra={"payout_id": payout.id, "status": payload["status"]},
            )
        return record
    except Exception:
        NOTIFICATION_FAILURES_TOTAL.inc()
        logger.exception(
            "notification.enqueue_failed",
            extra={"payout_id": getattr(payout, "id", None), "status": getattr(payout, "status", None)},
        )
        return None
