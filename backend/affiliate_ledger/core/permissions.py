"""
Capability checks for ledger operations.

The access-control collaborator in front of the service authenticates
callers; this module only decides whether an already identified actor
may perform a capability on a resource. Services receive an
``Authorizer`` so deployments can swap the role table for their own
policy engine.
"""

from __future__ import annotations

from typing import Any, Protocol

from affiliate_ledger.core.audit import Actor
from affiliate_ledger.core.config import settings
from affiliate_ledger.core.errors import AccessDenied


ADMIN_CAPABILITIES = {
    "payout.advance",
    "referral.review",
    "leaderboard.recompute",
    "affiliate.manage",
    "totals.reconcile",
    "audit.read",
}

OWNER_CAPABILITIES = {
    "payout.request",
    "link.manage",
    "affiliate.read",
}


class Authorizer(Protocol):
    def authorize(self, actor: Actor, action: str, resource: Any = None) -> bool:
        ...


def normalize_role(role: str | None) -> str | None:
    if not role:
        return None
    value = role.strip().lower()
    if value in {alias.lower() for alias in settings.AFFILIATE_ROLE_ALIASES}:
        return "affiliate"
    return value


def _owner_user_id(resource: Any) -> str | None:
    # Affiliates carry user_id; links, payouts and referrals point at one.
    if resource is None:
        return None
    user_id = getattr(resource, "user_id", None)
    if user_id is None:
        affiliate = getattr(resource, "affiliate", None)
        user_id = getattr(affiliate, "user_id", None)
    return str(user_id) if user_id is not None else None


class RoleAuthorizer:
    def authorize(self, actor: Actor, action: str, resource: Any = None) -> bool:
        role = normalize_role(actor.role)
        if role == "admin":
            return action in ADMIN_CAPABILITIES or action in OWNER_CAPABILITIES
        if role == "affiliate" and action in OWNER_CAPABILITIES:
            owner = _owner_user_id(resource)
            return owner is not None and actor.user_id is not None and owner == str(actor.user_id)
        return False


default_authorizer = RoleAuthorizer()


def require(
    authorizer: Authorizer | None,
    actor: Actor | None,
    action: str,
    resource: Any = None,
) -> None:
    """Raise AccessDenied unless the actor holds the capability.

    A missing actor or the system actor means an internal caller, which
    is trusted.
    """
    if actor is None or actor.is_system:
        return
    authorizer = authorizer or default_authorizer
    if not authorizer.authorize(actor, action, resource):
        raise AccessDenied(
            f"{action} is not permitted for this user",
            action=action,
            role=actor.role,
        )
