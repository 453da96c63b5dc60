# Audit logs record who did what to the ledger: registrations,
# conversions, payout moves and admin jobs. Entries are append-only;
# there are deliberately no update or delete helpers here.

import logging

from sqlalchemy.orm import Session

from affiliate_ledger.models.audit_logs import AuditLog

logger = logging.getLogger(__name__)


# Insert a new audit entry and commit it. Callers pass None for the
# actor fields when the action was performed by the system itself.
def create_audit_log(
    db: Session,
    *,
    action: str,
    actor_user_id: str | None = None,
    actor_email: str | None = None,
    actor_role: str | None = None,
    context: dict | None = None,
    ip_address: str | None = None,
) -> AuditLog:
    log = AuditLog(
        actor_user_id=actor_user_id,
        actor_email=actor_email,
        actor_role=actor_role,
        action=action,
        context=context or {},
        ip_address=ip_address,
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    logger.debug(
        "audit.logged",
        extra={"action": action, "actor_user_id": actor_user_id, "audit_id": log.id},
    )
    return log


# Fetch audit entries, newest first, optionally narrowed by action
# or actor. Used by the admin audit endpoint.
def list_audit_logs(
    db: Session,
    *,
    action: str | None = None,
    actor_user_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditLog]:
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    if actor_user_id:
        query = query.filter(AuditLog.actor_user_id == actor_user_id)
    return (
        query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
