from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from affiliate_ledger.models.email_queue import EmailQueue


def create_email_queue(
    db: Session,
    *,
    to_email: str,
    template_key: str,
    dedupe_key: str,
    subject: str,
    body: str,
    trigger_event: str | None = None,
    metadata: dict | None = None,
) -> EmailQueue | None:
    record = EmailQueue(
        to_email=to_email,
        template_key=template_key,
        dedupe_key=dedupe_key,
        trigger_event=trigger_event,
        subject=subject,
        body=body,
        status="queued",
        metadata_json=metadata or None,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    db.refresh(record)
    return record
