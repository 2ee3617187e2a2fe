from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext, get_workshop_context
from oficina.config import settings
from oficina.db import get_db
from oficina.dependencies import redirect_with, render
from oficina.models import OrderStatus
from oficina.security.csrf import verify_csrf
from oficina.services import ai_service, order_service
from oficina.services.audit_service import log_audit
from oficina.services.inventory_service import list_items
from oficina.services.mechanic_service import list_mechanics
from oficina.view_state import ConfirmingDelete, Editing, RecordingPayment, parse_view_state

router = APIRouter(tags=['orders'])

BLANK_SERVICE_ROWS = 3
BLANK_PART_ROWS = 3


def _status_filter(raw: str | None) -> OrderStatus | None:
    if not raw:
        return None
    try:
        return OrderStatus(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid status filter') from exc


def _load_order(db: Session, ctx: WorkshopContext, order_id: int):
    try:
        return order_service.get_order(db, ctx=ctx, order_id=order_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/orders')
def orders_page(
    request: Request,
    search: str | None = None,
    status: str | None = None,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
):
    view = parse_view_state(
        request.query_params,
        lambda order_id: order_service.get_order(db, ctx=ctx, order_id=order_id),
        allowed=[Editing.kind, ConfirmingDelete.kind, RecordingPayment.kind],
    )
    services, parts = [], []
    if isinstance(view, Editing) and view.item is not None:
        if view.item.status == OrderStatus.FINALIZADO:
            return redirect_with('/orders', error='Ordem de serviço finalizada e paga. A edição não é permitida.')
        services, parts = order_service.get_order_lines(db, order_id=view.item.id)

    return render(
        request,
        'orders.html',
        {
            'orders': order_service.list_orders(db, ctx=ctx, search=search, status=_status_filter(status)),
            'search': search or '',
            'status_filter': status or '',
            'statuses': list(OrderStatus),
            'editable_statuses': order_service.EDITABLE_STATUSES,
            'payment_methods': order_service.PAYMENT_METHODS,
            'max_discount_percent': settings.max_discount_percent,
            'view': view,
            'services': services,
            'parts': parts,
            'blank_service_rows': BLANK_SERVICE_ROWS,
            'blank_part_rows': BLANK_PART_ROWS,
            'mechanics': list_mechanics(db, ctx=ctx),
            'stock_items': list_items(db, ctx=ctx),
        },
    )


@router.post('/orders/save')
async def save_order(
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    raw_id = str(form.get('order_id', '')).strip()
    order_id = int(raw_id) if raw_id.isdigit() else None
    try:
        data = order_service.parse_order_input(dict(form))
        result = order_service.save_order(db, ctx=ctx, data=data, order_id=order_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/orders', error=str(exc), view=Editing.kind, id=order_id)

    order = result.order
    log_audit(
        db,
        ctx=ctx,
        action='ORDER_CREATED' if result.created else 'ORDER_UPDATED',
        entity_type='service_order',
        entity_id=order.id,
        metadata={
            'display_id': order.display_id,
            'status': order.status.value,
            'total': str(order.total),
            'stock_applied': result.stock_applied,
            'shortages': [
                {'item_id': s.item_id, 'required': s.required, 'available': s.available} for s in result.shortages
            ],
        },
    )
    db.commit()

    verb = 'criada' if result.created else 'atualizada'
    notice = f'Ordem de serviço #{order.display_id} {verb} com sucesso.'
    if result.shortages:
        warning = ' '.join(shortage.message for shortage in result.shortages)
        return redirect_with('/orders', notice=notice, error=f'Estoque não atualizado. {warning}')
    if result.stock_applied:
        notice += ' Estoque atualizado.'
    return redirect_with('/orders', notice=notice)


@router.post('/orders/{order_id}/delete')
def delete_order(
    order_id: int,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        order = order_service.delete_order(db, ctx=ctx, order_id=order_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/orders', error=str(exc))

    log_audit(
        db,
        ctx=ctx,
        action='ORDER_DELETED',
        entity_type='service_order',
        entity_id=order_id,
        metadata={'display_id': order.display_id},
    )
    db.commit()
    return redirect_with('/orders', notice=f'Ordem de serviço #{order.display_id} excluída.')


@router.post('/orders/{order_id}/payment')
async def record_payment(
    order_id: int,
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        result = order_service.record_payment(
            db,
            ctx=ctx,
            order_id=order_id,
            payment_method=str(form.get('payment_method', '')),
            discount_percent=form.get('discount_percent', '0'),
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/orders', error=str(exc), view=RecordingPayment.kind, id=order_id)

    log_audit(
        db,
        ctx=ctx,
        action='ORDER_PAID',
        entity_type='service_order',
        entity_id=order_id,
        metadata={
            'transaction_id': result.transaction.id,
            'payment_method': result.order.payment_method,
            'discount_percent': str(result.discount_percent),
            'discount_value': str(result.discount_value),
            'final_total': str(result.final_total),
        },
    )
    db.commit()

    notice = f'Pagamento da OS #{result.order.display_id} registrado.'
    return redirect_with(
        f'/orders/{order_id}/receipt',
        notice=notice,
        error=' '.join(result.warnings) or None,
    )


@router.get('/orders/{order_id}/receipt')
def receipt_page(
    order_id: int,
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
):
    try:
        receipt = order_service.build_receipt(db, ctx=ctx, order_id=order_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return render(request, 'receipt.html', {'receipt': receipt})


@router.post('/orders/{order_id}/summary')
def order_summary(
    order_id: int,
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    order = _load_order(db, ctx, order_id)
    result = ai_service.summarize_saved_order(db, ctx=ctx, order_id=order.id)
    return render(request, 'order_summary.html', {'order': order, 'result': result})


@router.post('/orders/{order_id}/diagnosis')
def order_diagnosis(
    order_id: int,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    order = _load_order(db, ctx, order_id)
    if order.status == OrderStatus.FINALIZADO:
        return redirect_with('/orders', error='Ordem de serviço finalizada e paga. A edição não é permitida.')

    history = order_service.vehicle_history_text(db, ctx=ctx, plate=order.vehicle_plate, exclude_order_id=order.id)
    result = ai_service.diagnose(order.symptoms or '', history)
    if not result.ok:
        return redirect_with('/orders', error=result.message, view=Editing.kind, id=order.id)

    order.diagnosis = ai_service.format_diagnosis(result.data)
    log_audit(
        db,
        ctx=ctx,
        action='ORDER_DIAGNOSIS_GENERATED',
        entity_type='service_order',
        entity_id=order.id,
        metadata={'confidence_level': result.data.confidence_level},
    )
    db.commit()
    return redirect_with('/orders', notice='Diagnóstico gerado.', view=Editing.kind, id=order.id)


@router.get('/os-query')
def os_query_page(
    request: Request,
    number: str | None = None,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
):
    context = {'number': number or '', 'order': None, 'services': [], 'parts': [], 'message': None}
    if number is not None:
        try:
            order = order_service.find_by_display_id(db, ctx=ctx, raw=number)
        except (ValueError, LookupError) as exc:
            context['message'] = str(exc)
        else:
            services, parts = order_service.get_order_lines(db, order_id=order.id)
            context.update({'order': order, 'services': services, 'parts': parts})
    return render(request, 'os_query.html', context)
