from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext, require_admin_context
from oficina.db import get_db
from oficina.dependencies import redirect_with, render
from oficina.models import UserRole
from oficina.security.csrf import verify_csrf
from oficina.services import workshop_service
from oficina.services.audit_service import list_recent_audit, log_audit

router = APIRouter(prefix='/workshop-settings', tags=['settings'])


@router.get('')
def workshop_settings_page(
    request: Request,
    ctx: WorkshopContext = Depends(require_admin_context),
    db: Session = Depends(get_db),
):
    try:
        workshop = workshop_service.get_workshop(db, ctx=ctx)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return render(
        request,
        'workshop_settings.html',
        {
            'workshop': workshop,
            'users': workshop_service.list_users(db, ctx=ctx),
            'roles': list(UserRole),
            'audit_rows': list_recent_audit(db, ctx=ctx, limit=25),
        },
    )


@router.post('')
async def workshop_settings_submit(
    request: Request,
    ctx: WorkshopContext = Depends(require_admin_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        data = workshop_service.parse_workshop_info(dict(form))
        workshop = workshop_service.update_workshop(db, ctx=ctx, data=data)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/workshop-settings', error=str(exc))

    log_audit(db, ctx=ctx, action='WORKSHOP_UPDATED', entity_type='workshop', entity_id=workshop.id)
    db.commit()
    return redirect_with('/workshop-settings', notice='Dados da oficina salvos.')


@router.post('/users')
async def create_user(
    request: Request,
    ctx: WorkshopContext = Depends(require_admin_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        user = workshop_service.create_user(
            db,
            ctx=ctx,
            username=str(form.get('username', '')),
            password=str(form.get('password', '')),
            role=str(form.get('role', UserRole.OFICINA.value)),
            display_name=str(form.get('display_name', '')),
        )
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/workshop-settings', error=str(exc))

    log_audit(
        db,
        ctx=ctx,
        action='USER_CREATED',
        entity_type='user_profile',
        entity_id=user.id,
        metadata={'username': user.username, 'role': user.role.value},
    )
    db.commit()
    return redirect_with('/workshop-settings', notice=f'Usuário {user.username} criado.')
