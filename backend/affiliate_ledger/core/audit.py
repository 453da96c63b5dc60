"""
Append-only audit trail for state-changing ledger actions.

Entries are written after the caller's primary commit, in a session of
their own, so a failed audit write never undoes the action it describes.
Failures are logged and counted instead of raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from affiliate_ledger.core.metrics import AUDIT_WRITE_FAILURES_TOTAL
from affiliate_ledger.crud.audit import create_audit_log
from affiliate_ledger.models.audit_logs import AuditLog

logger = logging.getLogger(__name__)

SYSTEM_ROLE = "system"


@dataclass(frozen=True)
class Actor:
    user_id: str | None = None
    email: str | None = None
    role: str | None = None
    impersonator_id: str | None = None
    impersonator_email: str | None = None
    ip_address: str | None = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=SYSTEM_ROLE)

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE

    @property
    def is_impersonated(self) -> bool:
        return bool(self.impersonator_id)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _build_context(actor: Actor, context: dict[str, Any] | None) -> dict[str, Any]:
    payload = _jsonable(dict(context or {}))
    if actor.is_impersonated:
        payload["impersonated_by"] = {
            "user_id": actor.impersonator_id,
            "email": actor.impersonator_email,
        }
    return payload


def record(
    db: Session,
    actor: Actor | None,
    action: str,
    context: dict[str, Any] | None = None,
    origin: str | None = None,
) -> AuditLog | None:
    actor = actor or Actor.system()
    try:
        payload = _build_context(actor, context)
        with Session(bind=db.get_bind()) as audit_db:
            return create_audit_log(
                audit_db,
                action=action,
                actor_user_id=None if actor.is_system else actor.user_id,
                actor_email=None if actor.is_system else actor.email,
                actor_role=None if actor.is_system else actor.role,
                context=payload,
                ip_address=origin or actor.ip_address,
            )
    except Exception:
        AUDIT_WRITE_FAILURES_TOTAL.inc()
        logger.exception(
            "audit.write_failed",
            extra={"action": action, "actor_user_id": actor.user_id},
        )
        return None
