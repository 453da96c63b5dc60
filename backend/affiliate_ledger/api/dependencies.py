from __future__ import annotations

from fastapi import Depends, Request

from affiliate_ledger.core.audit import SYSTEM_ROLE, Actor
from affiliate_ledger.core.permissions import Authorizer, default_authorizer, require


def _header(request: Request, name: str) -> str | None:
    value = request.headers.get(name)
    if value is None:
        return None
    return value.strip() or None


def get_actor(request: Request) -> Actor:
    """Identity asserted by the access-control layer in front of the service."""
    role = _header(request, "X-User-Role")
    if role and role.lower() == SYSTEM_ROLE:
        # The system identity is internal only.
        role = None
    return Actor(
        user_id=_header(request, "X-User-Id"),
        email=_header(request, "X-User-Email"),
        role=role,
        impersonator_id=_header(request, "X-Impersonator-Id"),
        impersonator_email=_header(request, "X-Impersonator-Email"),
        ip_address=getattr(request.state, "client_ip", None),
    )


def get_authorizer() -> Authorizer:
    return default_authorizer


def require_capability(action: str):
    def _dependency(
        actor: Actor = Depends(get_actor),
        authorizer: Authorizer = Depends(get_authorizer),
    ) -> Actor:
        require(authorizer, actor, action)
        return actor

    return _dependency


def get_origin(request: Request) -> str | None:
    return getattr(request.state, "client_ip", None)
