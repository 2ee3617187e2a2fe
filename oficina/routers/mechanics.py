from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext, get_workshop_context
from oficina.db import get_db
from oficina.dependencies import redirect_with, render
from oficina.security.csrf import verify_csrf
from oficina.services import mechanic_service
from oficina.services.audit_service import log_audit
from oficina.view_state import ConfirmingDelete, Editing, parse_view_state

router = APIRouter(prefix='/mechanics', tags=['mechanics'])


@router.get('')
def mechanics_page(
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
):
    view = parse_view_state(
        request.query_params,
        lambda mechanic_id: mechanic_service.get_mechanic(db, ctx=ctx, mechanic_id=mechanic_id),
        allowed=[Editing.kind, ConfirmingDelete.kind],
    )
    return render(request, 'mechanics.html', {'mechanics': mechanic_service.list_mechanics(db, ctx=ctx), 'view': view})


@router.post('/save')
async def save_mechanic(
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    raw_id = str(form.get('mechanic_id', '')).strip()
    mechanic_id = int(raw_id) if raw_id.isdigit() else None
    try:
        data = mechanic_service.parse_mechanic_input(dict(form))
        if mechanic_id is None:
            mechanic = mechanic_service.create_mechanic(db, ctx=ctx, data=data)
        else:
            mechanic = mechanic_service.update_mechanic(db, ctx=ctx, mechanic_id=mechanic_id, data=data)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/mechanics', error=str(exc), view=Editing.kind, id=mechanic_id)

    log_audit(
        db,
        ctx=ctx,
        action='MECHANIC_CREATED' if mechanic_id is None else 'MECHANIC_UPDATED',
        entity_type='mechanic',
        entity_id=mechanic.id,
    )
    db.commit()
    return redirect_with('/mechanics', notice=f'Mecânico {mechanic.name} salvo.')


@router.post('/{mechanic_id}/delete')
def delete_mechanic(
    mechanic_id: int,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        mechanic = mechanic_service.delete_mechanic(db, ctx=ctx, mechanic_id=mechanic_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    log_audit(db, ctx=ctx, action='MECHANIC_DELETED', entity_type='mechanic', entity_id=mechanic_id)
    db.commit()
    return redirect_with('/mechanics', notice=f'Mecânico {mechanic.name} excluído.')
