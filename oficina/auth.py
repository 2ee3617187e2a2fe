from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, HTTPException, Request, status

from oficina.dependencies import get_client_ip
from oficina.models import UserRole as Role


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    workshop_id: int
    active: bool
    created_at: datetime | None = None


@dataclass(frozen=True)
class WorkshopContext:
    """Tenant scope handed to every service call made on behalf of a request."""

    workshop_id: int
    actor_id: int | None = None
    role: Role = Role.OFICINA
    ip: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def context_for(principal: Principal, request: Request | None = None) -> WorkshopContext:
    return WorkshopContext(
        workshop_id=principal.workshop_id,
        actor_id=principal.id,
        role=principal.role,
        ip=get_client_ip(request) if request is not None else None,
    )


def get_workshop_context(request: Request, principal: Principal = Depends(get_current_principal)) -> WorkshopContext:
    return context_for(principal, request)


def require_admin_context(request: Request, principal: Principal = Depends(require_role(Role.ADMIN))) -> WorkshopContext:
    return context_for(principal, request)
