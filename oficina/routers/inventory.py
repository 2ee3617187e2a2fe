from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext, get_workshop_context
from oficina.db import get_db
from oficina.dependencies import redirect_with, render
from oficina.security.csrf import verify_csrf
from oficina.services import inventory_service
from oficina.services.audit_service import log_audit
from oficina.view_state import ConfirmingDelete, Editing, MovingStock, parse_view_state

router = APIRouter(prefix='/inventory', tags=['inventory'])


@router.get('')
def inventory_page(
    request: Request,
    search: str | None = None,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
):
    view = parse_view_state(
        request.query_params,
        lambda item_id: inventory_service.get_item(db, ctx=ctx, item_id=item_id),
        allowed=[Editing.kind, ConfirmingDelete.kind, MovingStock.kind],
    )
    items = inventory_service.list_items(db, ctx=ctx, search=search)
    return render(
        request,
        'inventory.html',
        {
            'items': items,
            'statuses': {item.id: inventory_service.stock_status(item.quantity, item.min_quantity) for item in items},
            'categories': inventory_service.STOCK_CATEGORIES,
            'search': search or '',
            'view': view,
        },
    )


@router.post('/save')
async def save_item(
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    raw_id = str(form.get('item_id', '')).strip()
    item_id = int(raw_id) if raw_id.isdigit() else None
    try:
        data = inventory_service.parse_item_input(dict(form))
        if item_id is None:
            item = inventory_service.create_item(db, ctx=ctx, data=data)
        else:
            item = inventory_service.update_item(db, ctx=ctx, item_id=item_id, data=data)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/inventory', error=str(exc), view=Editing.kind, id=item_id)

    log_audit(
        db,
        ctx=ctx,
        action='STOCK_ITEM_CREATED' if item_id is None else 'STOCK_ITEM_UPDATED',
        entity_type='stock_item',
        entity_id=item.id,
        metadata={'code': item.code, 'quantity': item.quantity},
    )
    db.commit()
    return redirect_with('/inventory', notice=f'Item {item.code} salvo.')


@router.post('/{item_id}/delete')
def delete_item(
    item_id: int,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        item = inventory_service.delete_item(db, ctx=ctx, item_id=item_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    log_audit(
        db,
        ctx=ctx,
        action='STOCK_ITEM_DELETED',
        entity_type='stock_item',
        entity_id=item_id,
        metadata={'code': item.code},
    )
    db.commit()
    return redirect_with('/inventory', notice=f'Item {item.code} excluído.')


@router.post('/{item_id}/move')
async def move_stock(
    item_id: int,
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    raw_quantity = str(form.get('quantity', '')).strip()
    try:
        quantity = int(raw_quantity)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid quantity') from exc

    try:
        result = inventory_service.move_stock(
            db,
            ctx=ctx,
            item_id=item_id,
            direction=str(form.get('direction', '')).strip().upper(),
            quantity=quantity,
            reason=str(form.get('reason', '')),
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/inventory', error=str(exc), view=MovingStock.kind, id=item_id)

    log_audit(
        db,
        ctx=ctx,
        action='STOCK_MOVED',
        entity_type='stock_item',
        entity_id=item_id,
        metadata={
            'direction': result.direction.value,
            'quantity': result.quantity,
            'quantity_before': result.quantity_before,
            'quantity_after': result.quantity_after,
            'reason': result.reason,
        },
    )
    db.commit()
    return redirect_with('/inventory', notice=f'Movimentação registrada. Quantidade atual: {result.quantity_after}.')
