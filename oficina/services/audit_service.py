from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext
from oficina.models import AuditLog, AuthEvent


def log_auth_event(
    db: Session,
    *,
    attempted_username: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    user_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_username=attempted_username,
            success=success,
            failure_reason=failure_reason,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_audit(
    db: Session,
    *,
    ctx: WorkshopContext,
    action: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            workshop_id=ctx.workshop_id,
            actor_user_id=ctx.actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip=ctx.ip,
            meta=metadata or {},
        )
    )


def list_recent_audit(db: Session, *, ctx: WorkshopContext, entity_type: str | None = None, limit: int = 50) -> list[AuditLog]:
    query = select(AuditLog).where(AuditLog.workshop_id == ctx.workshop_id)
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    return list(db.execute(query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)).scalars().all())
